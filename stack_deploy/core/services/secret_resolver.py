"""
Secret resolver — turns a stack's secret bindings into values.

A stack gets either all of its secrets or none: the first binding that
does not resolve fails the whole resolution, and anything already
resolved is wiped before the error propagates.

Resolved values live in SecretValue objects backed by a bytearray that
is overwritten with zeros when the deployment attempt that used them
returns. Use ResolvedSecrets as a context manager:

    with resolve_secrets(store, stack.secret_bindings) as secrets:
        run_compose(env=secrets.env())
    # every value is zeroed here, success or not

Values are never logged: repr/str are masked.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping

from stack_deploy.core.errors import SecretError, SecretNotFound
from stack_deploy.core.models.stack import SecretPath
from stack_deploy.core.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class SecretValue:
    """A decrypted secret that can be explicitly zeroed."""

    __slots__ = ("_buf",)

    def __init__(self, value: str):
        self._buf = bytearray(value.encode("utf-8"))

    @property
    def cleared(self) -> bool:
        return not self._buf

    def reveal(self) -> str:
        if self.cleared:
            raise ValueError("secret value has been cleared")
        return self._buf.decode("utf-8")

    def clear(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf.clear()

    def __repr__(self) -> str:
        return "SecretValue(<cleared>)" if self.cleared else "SecretValue('***')"

    def __str__(self) -> str:
        return "***"


class ResolvedSecrets(Mapping[str, SecretValue]):
    """Env-var name → SecretValue for one deployment attempt."""

    def __init__(self, values: dict[str, SecretValue] | None = None):
        self._values = dict(values or {})

    def __getitem__(self, key: str) -> SecretValue:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def env(self) -> dict[str, str]:
        """Plain environment mapping for the compose invocation."""
        return {name: value.reveal() for name, value in self._values.items()}

    def clear(self) -> None:
        for value in self._values.values():
            value.clear()

    def __enter__(self) -> ResolvedSecrets:
        return self

    def __exit__(self, *exc: object) -> None:
        self.clear()

    def __repr__(self) -> str:
        return f"ResolvedSecrets({sorted(self._values)})"


def resolve_secrets(
    store: CredentialStore | None,
    bindings: Mapping[str, SecretPath],
) -> ResolvedSecrets:
    """Resolve every binding, or raise on the first one that fails.

    Bindings are looked up in env-var name order so the reported
    failure is the same on every run.

    Raises:
        SecretNotFound: A group, entry or field is missing.
        SecretError: Bindings exist but no store is open.
    """
    if not bindings:
        return ResolvedSecrets()
    if store is None:
        raise SecretError("stack declares secret_env but no credential store is open")

    resolved: dict[str, SecretValue] = {}
    try:
        for env_name in sorted(bindings):
            path = bindings[env_name]
            value = store.lookup(path)
            if value is None:
                logger.error("secret_env %s: %s was not found in database", env_name, path)
                raise SecretNotFound(str(path), env_name)
            resolved[env_name] = SecretValue(value)
    except BaseException:
        for value in resolved.values():
            value.clear()
        raise

    return ResolvedSecrets(resolved)
