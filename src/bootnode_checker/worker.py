"""Single bootnode check: lease, spawn, poll for a peer, tear down, report."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading
import time

from .allocator import PortLease, ResourceAllocator, WorkDirLease
from .errors import AllocationError, reason_code
from .logging_utils import NARRATIVE_LOGGER
from .models import TERMINAL_REASONS, CheckResult, CheckState, CheckStatus, CheckTarget
from .process import NodeHandle, PeerObservation, ProcessRunner

logger = logging.getLogger(__name__)
narrative_logger = logging.getLogger(NARRATIVE_LOGGER)


class CheckWorker:
    def __init__(
        self,
        *,
        allocator: ResourceAllocator,
        runner: ProcessRunner,
        poll_interval_seconds: float = 0.5,
        terminate_grace_seconds: float = 5.0,
        cancel_event: threading.Event | None = None,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self.allocator = allocator
        self.runner = runner
        self.poll_interval_seconds = float(poll_interval_seconds)
        self.terminate_grace_seconds = float(terminate_grace_seconds)
        self.cancel_event = cancel_event or threading.Event()

    def run_check(self, target: CheckTarget, timeout_seconds: float) -> CheckResult:
        state, duration_ms, detail = self._execute(target, float(timeout_seconds))
        logger.debug("Check %s target=%s terminal=%s", CheckState.RELEASED.value, target.label(), state.value)
        result = self._report(target, state, duration_ms, detail)
        logger.debug("Check %s target=%s", CheckState.REPORTED.value, target.label())
        return result

    def _execute(self, target: CheckTarget, timeout_seconds: float) -> tuple[CheckState, int, str | None]:
        port: PortLease | None = None
        workdir: WorkDirLease | None = None
        handle: NodeHandle | None = None
        started = time.monotonic()
        try:
            try:
                port = self.allocator.acquire_port()
                workdir = self.allocator.acquire_workdir(target)
            except AllocationError as exc:
                logger.warning("Resource allocation failed target=%s reason=%s", target.label(), exc.code)
                return CheckState.SPAWN_FAILED, _elapsed_ms(started), str(exc)

            started = time.monotonic()
            try:
                handle = self.runner.spawn(target, port, workdir)
            except Exception as exc:
                logger.warning("Node startup failed target=%s reason=%s", target.label(), reason_code(exc))
                return CheckState.SPAWN_FAILED, _elapsed_ms(started), str(exc)

            try:
                state, detail = self._await_connection(handle, started + timeout_seconds)
            except Exception as exc:
                logger.exception("Peer observation failed target=%s", target.label())
                state, detail = CheckState.PROCESS_ERRORED, f"{reason_code(exc)}:{exc}"
            return state, _elapsed_ms(started), detail
        finally:
            self._teardown(target, handle, port, workdir)

    def _await_connection(self, handle: NodeHandle, deadline: float) -> tuple[CheckState, str | None]:
        while True:
            observation = self.runner.observe_connection(
                handle,
                timeout_seconds=max(0.0, deadline - time.monotonic()),
            )
            if observation is PeerObservation.CONNECTED:
                return CheckState.CONNECTED, None
            if observation is PeerObservation.ERRORED:
                return CheckState.CONNECTION_REFUSED, "peer observation reported an error"
            exit_code = self.runner.exit_code(handle)
            if exit_code is not None:
                return CheckState.PROCESS_ERRORED, f"NODE_EXITED:exit_code={exit_code}"
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return CheckState.TIMED_OUT, None
            if self.cancel_event.wait(min(self.poll_interval_seconds, remaining)):
                return CheckState.TIMED_OUT, "RUN_DEADLINE_EXCEEDED"

    def _teardown(
        self,
        target: CheckTarget,
        handle: NodeHandle | None,
        port: PortLease | None,
        workdir: WorkDirLease | None,
    ) -> None:
        try:
            if handle is not None:
                self.runner.terminate(handle, self.terminate_grace_seconds)
        except Exception:
            logger.exception("Node termination failed target=%s pid=%s", target.label(), handle.pid if handle else None)
        finally:
            self.allocator.release(port)
            self.allocator.release(workdir)

    def _report(self, target: CheckTarget, state: CheckState, duration_ms: int, detail: str | None) -> CheckResult:
        reason = TERMINAL_REASONS[state]
        result = CheckResult(
            target=target,
            status=CheckStatus.UP if state is CheckState.CONNECTED else CheckStatus.DOWN,
            failure_reason=reason,
            duration_ms=duration_ms,
            completed_at=datetime.now(tz=timezone.utc),
            detail=detail,
        )
        if result.is_up:
            narrative_logger.info(
                "Bootnode up %s bootnode=%s duration_ms=%s",
                target.label(),
                target.bootnode_address,
                duration_ms,
            )
        else:
            narrative_logger.warning(
                "Bootnode down %s bootnode=%s reason=%s duration_ms=%s detail=%s",
                target.label(),
                target.bootnode_address,
                reason.value if reason else "-",
                duration_ms,
                detail or "-",
            )
        return result


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))
