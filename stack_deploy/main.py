"""
docker-stack-deploy — CLI entrypoint.

Usage:
    docker-stack-deploy --help
    docker-stack-deploy run --repo-dir /app/repo --repo-url https://github.com/org/infra
    docker-stack-deploy deploy --root . --kdbx .secrets.kdbx --interactive
    docker-stack-deploy plan --json
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from stack_deploy import __version__
from stack_deploy.core.observability.logging_config import resolve_level, setup_from_env

_OUTCOME_MARKERS = {
    "deployed": ("✓", "green"),
    "failed": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
}

_MISSING_PASSPHRASE = (
    "Missing --password and $STACK_KDBX_PASS env var value and --interactive is not set"
)


@click.group()
@click.version_option(version=__version__, prog_name="docker-stack-deploy")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Only log errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to stack-deploy.yml agent settings.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: Path | None,
) -> None:
    """docker-stack-deploy — keep this host's compose stacks in sync with git."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    # ── Logging setup (once, at process start) ──────────────────
    setup_from_env(resolve_level(debug, verbose, quiet))


# ── Shared helpers ──────────────────────────────────────────────────


def _fail(message: str) -> None:
    click.secho(f"❌ {message}", fg="red", err=True)
    sys.exit(1)


def _settings(ctx: click.Context, **overrides: Any):
    """Merge CLI/env overrides over the settings file (--config, else ./stack-deploy.yml)."""
    from stack_deploy.core.config.loader import find_settings_file, load_settings
    from stack_deploy.core.errors import ConfigError

    config_path = ctx.obj.get("config_path") or find_settings_file(Path.cwd())
    try:
        return load_settings(config_path, overrides)
    except ConfigError as e:
        _fail(str(e))


def _store_options(f: Callable) -> Callable:
    """--kdbx / --password / --interactive, shared by commands reading secrets."""
    f = click.option(
        "--interactive",
        is_flag=True,
        help="Prompt for the store passphrase when it is not otherwise given.",
    )(f)
    f = click.option(
        "--password",
        envvar="STACK_KDBX_PASS",
        default=None,
        help="Passphrase of the KeePass store (env: STACK_KDBX_PASS).",
    )(f)
    f = click.option(
        "--kdbx",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="Path to a KeePass .kdbx file containing secrets.",
    )(f)
    return f


def _stack_source_options(f: Callable) -> Callable:
    """--root / --file / --hostname, shared by one-shot commands."""
    f = click.option(
        "--hostname",
        envvar="STACK_DEPLOY_HOSTNAME",
        default=None,
        help="Host identity matched against runs_on (default: this machine).",
    )(f)
    f = click.option(
        "--file",
        "files",
        multiple=True,
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        help="Use this stack-deploy.toml instead of searching. Repeatable.",
    )(f)
    f = click.option(
        "--root",
        type=click.Path(exists=True, file_okay=False, path_type=Path),
        default=Path("."),
        show_default=True,
        help="Directory searched recursively for stack-deploy.toml files.",
    )(f)
    return f


def _passphrase(password: str | None, interactive: bool) -> str | None:
    if password:
        return password
    if interactive:
        return click.prompt("Password", hide_input=True)
    return None


def _store_opener(kdbx: Path | None, password: str | None, interactive: bool):
    from stack_deploy.core.services.credential_store import KeePassOpener

    if kdbx is None:
        return None
    passphrase = _passphrase(password, interactive)
    if passphrase is None:
        _fail(_MISSING_PASSPHRASE)
    return KeePassOpener(kdbx, passphrase)


def _host(hostname: str | None) -> str:
    import socket

    return hostname or socket.gethostname()


def _echo_outcomes(result: Any) -> None:
    report = result.report
    if report is None:
        return
    for outcome in report.outcomes:
        marker, color = _OUTCOME_MARKERS[outcome.status]
        click.secho(f"   {marker} {outcome.stack}", fg=color, nl=False)
        if outcome.failed:
            click.echo(f" — {outcome.error}")
        elif outcome.skipped:
            cause = f" ({outcome.causing_stack})" if outcome.causing_stack else ""
            click.echo(f" — {outcome.reason}{cause}")
        else:
            click.echo()


# ── run ─────────────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--repo-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Local path into which the repo is cloned.",
)
@click.option(
    "--repo-url",
    envvar="GITHUB_URL",
    default=None,
    help="URL the repo is cloned from (env: GITHUB_URL). Omit to use the directory as-is.",
)
@click.option(
    "--poll-interval",
    type=click.IntRange(min=0),
    envvar="POLL_INTERVAL",
    default=None,
    help="Seconds between checks for updates; 0 runs a single cycle. [default: 300]",
)
@click.option(
    "--hostname",
    envvar="STACK_DEPLOY_HOSTNAME",
    default=None,
    help="Host identity matched against runs_on (default: this machine).",
)
@click.option(
    "--git-username",
    envvar="GITHUB_USERNAME",
    default=None,
    help="Username for HTTPS git access (env: GITHUB_USERNAME). [default: oauth2]",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where agent.json and audit.ndjson are written.",
)
@click.option(
    "--wait-for-trigger",
    is_flag=True,
    help="With --poll-interval 0, wait for SIGHUP instead of exiting.",
)
@_store_options
@click.pass_context
def run(
    ctx: click.Context,
    repo_dir: Path | None,
    repo_url: str | None,
    poll_interval: int | None,
    hostname: str | None,
    git_username: str | None,
    state_dir: Path | None,
    wait_for_trigger: bool,
    kdbx: Path | None,
    password: str | None,
    interactive: bool,
) -> None:
    """Keep polling the repo and deploy this host's stacks when it changes."""
    from stack_deploy.core.errors import ConfigError, FatalStartupError
    from stack_deploy.core.use_cases.run import build_controller

    settings = _settings(
        ctx,
        repo_dir=repo_dir,
        repo_url=repo_url or None,
        poll_interval=poll_interval,
        hostname=hostname or None,
        git_username=git_username or None,
        state_dir=state_dir,
        kdbx=kdbx,
    )

    passphrase = _passphrase(password, interactive)
    if settings.kdbx is not None and passphrase is None:
        _fail(_MISSING_PASSPHRASE)

    try:
        controller = build_controller(
            settings,
            passphrase=passphrase,
            git_token=os.environ.get("GITHUB_TOKEN") or None,
            wait_for_trigger=wait_for_trigger,
        )
    except ConfigError as e:
        _fail(str(e))

    controller.install_signal_handlers()
    try:
        result = controller.serve()
    except FatalStartupError as e:
        _fail(str(e))

    single_shot = settings.poll_interval == 0 and not wait_for_trigger
    if single_shot and result is not None:
        _echo_outcomes(result)
        if result.error:
            _fail(result.error)
        sys.exit(result.exit_code)


# ── One-shot commands ───────────────────────────────────────────────


@cli.command()
@_stack_source_options
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def plan(root: Path, files: tuple[Path, ...], hostname: str | None, as_json: bool) -> None:
    """Show the order in which this host's stacks would be deployed."""
    from stack_deploy.core.use_cases.deploy import plan_stacks

    result = plan_stacks(_host(hostname), root, files)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.error is None else 1)

    if result.error:
        _fail(result.error)

    assert result.plan is not None
    click.secho(f"\n📋 Deployment plan for {result.host}", fg="cyan", bold=True)
    if not len(result.plan):
        click.echo("   (no stacks run on this host)")
    for index, stack in enumerate(result.plan, start=1):
        deps = f"  ← {', '.join(sorted(stack.depends_on))}" if stack.depends_on else ""
        click.echo(f"   {index}. {stack.name}{deps}")
    click.echo()


@cli.command()
@_stack_source_options
@_store_options
@click.option("--dry-run", is_flag=True, help="Resolve secrets and validate, but do not run compose.")
@click.option("--timeout", type=click.IntRange(min=1), default=900, show_default=True,
              help="Seconds allowed for each docker compose up.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def deploy(
    root: Path,
    files: tuple[Path, ...],
    hostname: str | None,
    kdbx: Path | None,
    password: str | None,
    interactive: bool,
    dry_run: bool,
    timeout: int,
    as_json: bool,
) -> None:
    """Deploy this host's stacks once, in dependency order."""
    from stack_deploy.adapters.containers.compose import ComposeAdapter
    from stack_deploy.core.use_cases.deploy import deploy_stacks

    result = deploy_stacks(
        _host(hostname),
        ComposeAdapter(),
        root=root,
        files=files,
        open_store=_store_opener(kdbx, password, interactive),
        timeout=timeout,
        dry_run=dry_run,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        _fail(result.error)

    _echo_outcomes(result)
    if not result.ok:
        sys.exit(1)


@cli.command()
@_stack_source_options
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def stop(root: Path, files: tuple[Path, ...], hostname: str | None, as_json: bool) -> None:
    """docker compose down this host's stacks, dependents first."""
    from stack_deploy.adapters.containers.compose import ComposeAdapter
    from stack_deploy.core.use_cases.deploy import stop_stacks

    result = stop_stacks(_host(hostname), ComposeAdapter(), root=root, files=files)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        _fail(result.error)

    _echo_outcomes(result)
    if not result.ok:
        sys.exit(1)


@cli.command("get-secret")
@click.argument("path")
@_store_options
def get_secret(path: str, kdbx: Path | None, password: str | None, interactive: bool) -> None:
    """Print the value at PATH (Group/Entry Title/field) from the store."""
    from stack_deploy.core.errors import StoreUnlockError
    from stack_deploy.core.models.stack import SecretPath

    if kdbx is None:
        _fail("no --kdbx file was specified")

    try:
        secret_path = SecretPath.parse(path)
    except ValueError as e:
        _fail(str(e))

    opener = _store_opener(kdbx, password, interactive)
    try:
        with opener() as store:
            value = store.lookup(secret_path)
    except StoreUnlockError as e:
        _fail(str(e))

    if value is None:
        _fail(f"{path} not found in {kdbx}")
    click.echo(value)


@cli.command()
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Agent state directory (default: from settings, else ./.state).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, state_dir: Path | None, as_json: bool) -> None:
    """Show what the agent's last cycles did."""
    from stack_deploy.core.use_cases.status import get_status

    settings = _settings(ctx, state_dir=state_dir)
    result = get_status(settings.state_path)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.found else 1)

    if not result.found or result.state is None:
        _fail(f"No agent state found in {result.state_dir}")

    state = result.state
    cycle = state.last_cycle
    click.secho(f"\n🖥  {state.hostname or '(unknown host)'}", fg="cyan", bold=True)
    if state.repo_dir:
        click.echo(f"   📦 {state.repo_dir}")
    click.echo(f"   Cycles run: {state.cycles_run}")
    click.echo(f"   Updated: {state.updated_at}")

    if cycle.cycle_id:
        color = {"ok": "green", "unchanged": "white", "partial": "yellow"}.get(cycle.status, "red")
        click.echo()
        click.secho("   Last cycle:", fg="white", bold=True)
        click.echo(f"     {cycle.cycle_id} ({cycle.trigger}) — ", nl=False)
        click.secho(cycle.status, fg=color)
        if cycle.commit:
            click.echo(f"     commit {cycle.commit}")
        if cycle.error:
            click.secho(f"     {cycle.error_kind}: {cycle.error}", fg="red")

    deploy_record = state.last_deploy
    if deploy_record is not None:
        click.echo()
        click.secho(f"   Last deploy ({deploy_record.ended_at}):", fg="white", bold=True)
        for outcome in deploy_record.outcomes:
            marker, color = _OUTCOME_MARKERS[outcome.status]
            click.secho(f"     {marker} {outcome.stack}", fg=color)
    click.echo()


@cli.command()
@click.option("--project-dir", required=True, type=click.Path(file_okay=False, path_type=Path),
              help="Where to place the compose.yml and .env.")
@click.option("--git-url", required=True, help="The repo that should be cloned.")
@click.option("--git-username", default="oauth2", show_default=True, help="The git username to use.")
@click.option("--poll-interval", type=click.IntRange(min=0), default=300, show_default=True,
              help="How many seconds between git pulls.")
@click.option("--image", default=None, help="Agent container image.")
@click.option("--no-start", is_flag=True, help="Write the files but do not start the agent.")
def bootstrap(
    project_dir: Path,
    git_url: str,
    git_username: str,
    poll_interval: int,
    image: str | None,
    no_start: bool,
) -> None:
    """Set up and start the agent container on this host."""
    from stack_deploy.adapters.containers.compose import ComposeAdapter
    from stack_deploy.core.use_cases.bootstrap import DEFAULT_IMAGE, bootstrap_project

    git_token = click.prompt("Github Token", hide_input=True)
    passphrase = click.prompt("KeePass Passphrase", hide_input=True, confirmation_prompt=True)

    try:
        result = bootstrap_project(
            project_dir,
            git_url=git_url,
            git_token=git_token,
            kdbx_passphrase=passphrase,
            compose=None if no_start else ComposeAdapter(),
            git_username=git_username,
            poll_interval=poll_interval,
            image=image or DEFAULT_IMAGE,
        )
    except OSError as e:
        _fail(f"Cannot write {project_dir}: {e}")

    click.secho(f"✅ Wrote {result.compose_file}", fg="green")
    click.secho(f"✅ Wrote {result.env_file}", fg="green")
    if not result.ok:
        assert result.receipt is not None
        _fail(f"docker compose up failed: {result.receipt.error}")
    if result.receipt is not None:
        click.secho("🚀 Agent started", fg="green", bold=True)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
