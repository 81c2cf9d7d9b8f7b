"""
Git repository sync — keeps the infrastructure checkout current.

Clones the repository when there is no usable checkout, otherwise
pulls with rebase. Comparing HEAD before and after tells the
controller whether anything changed.

HTTPS credentials are supplied per invocation through ad-hoc config
overrides and an inline credential helper that reads the token from
the child's environment, so the token is never baked into
.git/config and can be rotated without re-cloning.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path

from stack_deploy.core.errors import SyncError
from stack_deploy.core.models.repo import RepoUpdate

logger = logging.getLogger(__name__)

TOKEN_ENV = "GITHUB_TOKEN"

_CREDENTIAL_HELPER = (
    "credential.helper="
    f'!f(){{ test "$1" = get && echo "password=${{{TOKEN_ENV}}}"; }}; f'
)


class GitRepoSync:
    """Clone-or-pull sync of ``repo_url`` into ``repo_dir``."""

    def __init__(
        self,
        repo_url: str,
        repo_dir: Path,
        username: str = "oauth2",
        token: str | None = None,
        timeout: int = 300,
    ):
        self.repo_url = repo_url
        self.repo_dir = repo_dir
        self._username = username
        self._token = token
        self._timeout = timeout

    def sync(self) -> RepoUpdate:
        """Clone or update the checkout.

        Raises:
            SyncError: git is missing, fails, or times out.
        """
        dot_git = self.repo_dir / ".git"
        if dot_git.is_dir():
            before = self._head()
            self._git(["pull", "--rebase"], cwd=self.repo_dir, authenticated=True)
            after = self._head()
            kind = "same" if before == after else "updated"
            logger.debug("Pulled %s: %s → %s", self.repo_url, before, after)
            return RepoUpdate(kind=kind, commit=after)

        if self.repo_dir.exists():
            logger.warning("%s is not a git checkout, removing it before cloning", self.repo_dir)
            shutil.rmtree(self.repo_dir, ignore_errors=True)
        self.repo_dir.parent.mkdir(parents=True, exist_ok=True)

        self._git(
            ["clone", self.repo_url, str(self.repo_dir)],
            cwd=self.repo_dir.parent,
            authenticated=True,
        )
        commit = self._head()
        logger.info("Cloned %s at %s", self.repo_url, commit)
        return RepoUpdate(kind="cloned", commit=commit)

    # ── Helpers ─────────────────────────────────────────────────

    def _head(self) -> str:
        return self._git(["rev-parse", "HEAD"], cwd=self.repo_dir).strip()

    def _git(self, args: list[str], cwd: Path, authenticated: bool = False) -> str:
        cmd = ["git"]
        env = dict(os.environ)
        if authenticated and self._token:
            cmd += ["-c", f"credential.username={self._username}", "-c", _CREDENTIAL_HELPER]
            env[TOKEN_ENV] = self._token
        cmd += args

        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise SyncError(f"git {args[0]} timed out after {self._timeout}s") from e
        except OSError as e:
            raise SyncError(f"failed to run git {args[0]} in {cwd}: {e}") from e

        if result.returncode != 0:
            raise SyncError(
                f"git {args[0]} failed for {self.repo_url} "
                f"(exit {result.returncode}): {result.stderr.strip()}"
            )
        return result.stdout


def local_head(repo_dir: Path) -> str:
    """HEAD of a local checkout, or empty string if it is not a git repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=repo_dir,
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return ""
    return result.stdout.strip() if result.returncode == 0 else ""


class LocalRepoSync:
    """No remote: use the working tree as it is, every tick counts as changed."""

    def __init__(self, repo_dir: Path):
        self.repo_dir = repo_dir

    def sync(self) -> RepoUpdate:
        if not self.repo_dir.is_dir():
            raise SyncError(f"Repository directory does not exist: {self.repo_dir}")
        return RepoUpdate(kind="local", commit=local_head(self.repo_dir))
