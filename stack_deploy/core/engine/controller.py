"""
Sync controller — the agent's poll / deploy loop.

States:

    IDLE ──tick/trigger──▶ SYNCING ──unchanged──▶ IDLE
                              │
                              ├──changed──▶ PLANNING ──ok──▶ DEPLOYING ──▶ COOLDOWN ──▶ IDLE
                              │                 │                 │
                              └──SyncError──────┴──Config/Graph───┴──store unlock──▶ COOLDOWN

Only the controller writes its state. Timer ticks, SIGHUP and
request_cycle() are requests: when a cycle is already running the
request is remembered (at most one) and replayed once the controller
is back in IDLE. A shutdown request lets the running compose call
finish, skips the stacks after it and starts no new cycle.

Each cycle rebuilds everything from the checkout: descriptors, graph
and plan are never carried over, and the credential store is opened
at the start of the deployment and closed at its end.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from stack_deploy.adapters.base import Adapter
from stack_deploy.core.engine.executor import DeploymentExecutor, generate_cycle_id
from stack_deploy.core.engine.graph import DeploymentPlan, build_plan
from stack_deploy.core.errors import (
    ConfigError,
    FatalStartupError,
    GraphError,
    StackDeployError,
    StoreUnlockError,
    SyncError,
)
from stack_deploy.core.models.outcome import DeploymentReport
from stack_deploy.core.models.repo import RepoSync, RepoUpdate
from stack_deploy.core.models.stack import StackDescriptor
from stack_deploy.core.models.state import AgentState, CycleRecord
from stack_deploy.core.persistence.audit import AuditEntry, AuditWriter
from stack_deploy.core.persistence.state_file import load_state, save_state
from stack_deploy.core.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

StoreOpener = Callable[[], CredentialStore]

# Error kinds that prevent any deployment in a cycle
FATAL_KINDS = frozenset({"sync", "config", "graph", "store"})


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class CycleState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    PLANNING = "planning"
    DEPLOYING = "deploying"
    COOLDOWN = "cooldown"


class Trigger(str, Enum):
    STARTUP = "startup"
    TIMER = "timer"
    MANUAL = "manual"   # "deploy now": plans even if the repo is unchanged


@dataclass
class CycleResult:
    """What one cycle did."""

    cycle_id: str
    trigger: Trigger
    started_at: str = ""
    ended_at: str = ""
    duration_ms: int = 0
    update: RepoUpdate | None = None
    plan: DeploymentPlan | None = None
    report: DeploymentReport | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def changed(self) -> bool:
        return self.update is not None and self.update.changed

    @property
    def status(self) -> str:
        if self.error:
            return "error"
        if self.report is None:
            return "unchanged"
        return self.report.status

    @property
    def fatal(self) -> bool:
        """Whether an error prevented every deployment attempt."""
        return self.error_kind in FATAL_KINDS

    @property
    def exit_code(self) -> int:
        return 1 if self.fatal else 0

    def to_record(self) -> CycleRecord:
        return CycleRecord(
            cycle_id=self.cycle_id,
            trigger=self.trigger.value,
            started_at=self.started_at,
            ended_at=self.ended_at,
            commit=self.update.commit if self.update else "",
            changed=self.changed,
            status=self.status,
            error=self.error,
            error_kind=self.error_kind,
            outcomes=list(self.report.outcomes) if self.report else [],
        )

    def to_audit(self, hostname: str) -> AuditEntry:
        report = self.report
        return AuditEntry(
            cycle_id=self.cycle_id,
            trigger=self.trigger.value,
            hostname=hostname,
            commit=self.update.commit if self.update else "",
            status=self.status,
            stacks_total=report.total if report else 0,
            stacks_deployed=report.deployed if report else 0,
            stacks_failed=report.failed if report else 0,
            stacks_skipped=report.skipped if report else 0,
            duration_ms=self.duration_ms,
            errors=[self.error] if self.error else [
                f"{o.stack}: {o.error}" for o in (report.outcomes if report else []) if o.failed
            ],
        )


class SyncController:
    """Drives sync → plan → deploy → cooldown, one cycle at a time.

    Args:
        repo_sync: Brings the checkout up to date and reports changes.
        load_descriptors: Reads every stack declaration of the checkout.
        local_host: This host's identity.
        compose: Adapter running docker compose for one stack.
        store_opener: Opens the credential store; None when not configured.
        poll_interval: Seconds between ticks; 0 disables the timer.
        cooldown: Seconds spent in COOLDOWN after a deploy or failed cycle.
        wait_for_trigger: With poll_interval 0, idle for SIGHUP instead of
            returning after the first cycle.
        state_path: agent.json location (None = not persisted).
        audit: Audit ledger (None = no ledger).
        compose_timeout: Per-stack compose timeout in seconds.
    """

    def __init__(
        self,
        repo_sync: RepoSync,
        load_descriptors: Callable[[], list[StackDescriptor]],
        local_host: str,
        compose: Adapter,
        store_opener: StoreOpener | None = None,
        poll_interval: int = 300,
        cooldown: float = 5.0,
        wait_for_trigger: bool = False,
        state_path: Path | None = None,
        audit: AuditWriter | None = None,
        compose_timeout: int = 900,
    ):
        self._repo_sync = repo_sync
        self._load_descriptors = load_descriptors
        self._host = local_host
        self._store_opener = store_opener
        self._poll_interval = poll_interval
        self._cooldown_seconds = cooldown if poll_interval > 0 else 0.0
        self._wait_for_trigger = wait_for_trigger
        self._state_path = state_path
        self._audit = audit
        self._compose = compose
        self._executor = DeploymentExecutor(
            compose,
            should_stop=self.stop_requested,
            timeout=compose_timeout,
        )

        self._state = CycleState.IDLE
        self._guard = threading.Lock()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._pending: Trigger | None = None
        self._deploy_pending = True
        self.last_result: CycleResult | None = None
        self.state_history: list[CycleState] = []  # transitions of the latest cycle

        self._agent_state = load_state(state_path) if state_path else AgentState()
        self._agent_state.hostname = local_host

    # ── Observation ─────────────────────────────────────────────

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def pending_trigger(self) -> Trigger | None:
        return self._pending

    @property
    def agent_state(self) -> AgentState:
        return self._agent_state

    def stop_requested(self) -> bool:
        return self._stop.is_set()

    # ── Requests (safe from signal handlers and other threads) ──

    def request_cycle(self, trigger: Trigger = Trigger.MANUAL) -> bool:
        """Ask for a cycle. Returns True if the controller was idle.

        While a cycle runs, the request is remembered instead (only one;
        a manual request replaces a remembered timer tick).
        """
        if self._stop.is_set():
            return False
        if self._state is not CycleState.IDLE:
            if self._pending is None or trigger is Trigger.MANUAL:
                logger.info("Cycle in progress (%s); %s trigger queued", self._state.value, trigger.value)
                self._pending = trigger
            return False
        if self._pending is None or trigger is Trigger.MANUAL:
            self._pending = trigger
        self._wake.set()
        return True

    def request_shutdown(self) -> None:
        """Finish the current compose call, then stop."""
        if not self._stop.is_set():
            logger.info("Shutdown requested")
        self._stop.set()
        self._wake.set()

    def install_signal_handlers(self) -> None:
        """SIGHUP → deploy now; SIGTERM/SIGINT → graceful shutdown."""
        signal.signal(signal.SIGHUP, lambda signum, frame: self.request_cycle(Trigger.MANUAL))
        signal.signal(signal.SIGTERM, lambda signum, frame: self.request_shutdown())
        signal.signal(signal.SIGINT, lambda signum, frame: self.request_shutdown())

    # ── Loop ────────────────────────────────────────────────────

    def serve(self) -> CycleResult | None:
        """Run cycles until shutdown (or after one cycle in single-shot mode).

        Raises:
            FatalStartupError: The credential store could not be unlocked
                in the first cycle. Later unlock failures abort only
                their own cycle.
        """
        if not self._compose.is_available():
            logger.warning("docker compose not found; deployments will fail until it is installed")

        trigger: Trigger = Trigger.STARTUP
        first_cycle = True
        while not self._stop.is_set():
            self._wake.clear()
            result = self.run_cycle(trigger)

            if result is not None:
                if first_cycle and result.error_kind == "store":
                    raise FatalStartupError(result.error or "credential store could not be opened")
                first_cycle = False
            if self._stop.is_set():
                break

            pending = self._take_pending()
            if pending is not None:
                trigger = pending
                continue

            if self._poll_interval == 0 and not self._wait_for_trigger:
                break

            self._wake.wait(self._poll_interval or None)
            if self._stop.is_set():
                break
            trigger = self._take_pending() or Trigger.TIMER

        logger.info("Controller stopped")
        return self.last_result

    def run_cycle(self, trigger: Trigger = Trigger.TIMER) -> CycleResult | None:
        """Run one cycle now; returns None if another cycle is active."""
        if not self._guard.acquire(blocking=False):
            self.request_cycle(trigger)
            return None
        try:
            return self._run_cycle(trigger)
        finally:
            self._transition(CycleState.IDLE)
            self._guard.release()

    def _take_pending(self) -> Trigger | None:
        pending, self._pending = self._pending, None
        return pending

    # ── Cycle ───────────────────────────────────────────────────

    def _run_cycle(self, trigger: Trigger) -> CycleResult:
        result = CycleResult(cycle_id=generate_cycle_id(), trigger=trigger, started_at=_now_iso())
        started = time.monotonic()
        self.state_history = [CycleState.IDLE]

        self._transition(CycleState.SYNCING)
        try:
            result.update = self._repo_sync.sync()
        except SyncError as e:
            return self._abort(result, "sync", e, started)

        commit = result.update.commit or "(no commit)"
        if not (result.update.changed or self._deploy_pending or trigger is Trigger.MANUAL):
            logger.info("Repository unchanged at %s; nothing to deploy", commit)
            self._transition(CycleState.IDLE)
            return self._finish(result, started)

        logger.info("Running a deploy (%s, %s, trigger=%s)", result.update.kind, commit, trigger.value)
        self._transition(CycleState.PLANNING)
        try:
            result.plan = build_plan(self._load_descriptors(), self._host)
        except ConfigError as e:
            return self._abort(result, "config", e, started)
        except GraphError as e:
            return self._abort(result, "graph", e, started)

        self._transition(CycleState.DEPLOYING)
        try:
            store = self._open_store(result.plan)
        except StoreUnlockError as e:
            return self._abort(result, "store", e, started)

        try:
            result.report = self._executor.execute(result.plan, store, result.cycle_id)
        finally:
            if store is not None:
                store.close()

        self._deploy_pending = False
        self._cooldown()
        return self._finish(result, started)

    def _open_store(self, plan: DeploymentPlan) -> CredentialStore | None:
        if not plan.requires_secrets:
            return None
        if self._store_opener is None:
            raise StoreUnlockError("stacks declare secret_env but no credential store is configured")
        return self._store_opener()

    def _abort(
        self,
        result: CycleResult,
        kind: str,
        error: StackDeployError,
        started: float,
    ) -> CycleResult:
        logger.error("Cycle %s aborted (%s): %s", result.cycle_id, kind, error)
        result.error = str(error)
        result.error_kind = kind
        if kind != "sync":
            self._deploy_pending = True
        self._cooldown()
        return self._finish(result, started)

    def _cooldown(self) -> None:
        self._transition(CycleState.COOLDOWN)
        if self._cooldown_seconds > 0:
            self._stop.wait(self._cooldown_seconds)
        self._transition(CycleState.IDLE)

    def _finish(self, result: CycleResult, started: float) -> CycleResult:
        result.ended_at = _now_iso()
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.last_result = result
        self._persist(result)
        return result

    def _persist(self, result: CycleResult) -> None:
        self._agent_state.record_cycle(result.to_record())
        if self._state_path is not None:
            try:
                save_state(self._agent_state, self._state_path)
            except Exception as e:
                logger.error("Could not persist agent state: %s", e)
        if self._audit is not None:
            self._audit.write(result.to_audit(self._host))

    def _transition(self, new: CycleState) -> None:
        if new is not self._state:
            logger.debug("Controller %s → %s", self._state.value, new.value)
            self.state_history.append(new)
        self._state = new
