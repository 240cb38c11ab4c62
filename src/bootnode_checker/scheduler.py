"""Bounded-concurrency dispatch of a check catalog."""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import threading
import time
from typing import Any, Sequence

from .allocator import ResourceAllocator
from .collector import ResultCollector, RunSnapshot
from .logging_utils import NARRATIVE_LOGGER
from .models import CheckResult, CheckStatus, CheckTarget, FailureReason
from .process import ProcessRunner
from .worker import CheckWorker

logger = logging.getLogger(__name__)
narrative_logger = logging.getLogger(NARRATIVE_LOGGER)


@dataclass(frozen=True)
class RunSummary:
    snapshot: RunSnapshot
    total: int
    skipped: tuple[CheckTarget, ...]
    elapsed_ms: int
    deadline_exceeded: bool = False

    @property
    def up_count(self) -> int:
        return len(self.snapshot.up())

    @property
    def down_count(self) -> int:
        return len(self.snapshot.down())

    def failed(self) -> list[CheckResult]:
        return sorted(self.snapshot.down(), key=lambda item: item.target.key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "up": self.up_count,
            "down": self.down_count,
            "skipped": [
                {"provider": t.provider, "network": t.network, "bootnode": t.bootnode_address} for t in self.skipped
            ],
            "failed": [
                {
                    "provider": r.target.provider,
                    "network": r.target.network,
                    "bootnode": r.target.bootnode_address,
                    "failure_reason": r.failure_reason.value if r.failure_reason else None,
                }
                for r in self.failed()
            ],
            "anomalies": [item.to_dict() for item in self.snapshot.anomalies],
            "elapsed_ms": self.elapsed_ms,
            "deadline_exceeded": self.deadline_exceeded,
        }


class WorkerPool:
    """Admission gate for CheckWorkers.

    Targets are dispatched in catalog order; a new check starts only when one of
    the ``max_concurrent`` slots is free. The pool keeps nothing per check beyond
    the undispatched queue and the in-flight count.
    """

    def __init__(
        self,
        *,
        allocator: ResourceAllocator,
        runner: ProcessRunner,
        poll_interval_seconds: float = 0.5,
        terminate_grace_seconds: float = 5.0,
    ) -> None:
        self.allocator = allocator
        self.runner = runner
        self.poll_interval_seconds = poll_interval_seconds
        self.terminate_grace_seconds = terminate_grace_seconds
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def run_all(
        self,
        catalog: Sequence[CheckTarget],
        max_concurrent: int,
        timeout_seconds: float,
        *,
        collector: ResultCollector | None = None,
    ) -> RunSnapshot:
        summary = self.dispatch(
            catalog,
            max_concurrent=max_concurrent,
            timeout_seconds=timeout_seconds,
            collector=collector,
        )
        return summary.snapshot

    def dispatch(
        self,
        catalog: Sequence[CheckTarget],
        *,
        max_concurrent: int,
        timeout_seconds: float,
        collector: ResultCollector | None = None,
        run_deadline_seconds: float | None = None,
    ) -> RunSummary:
        if int(max_concurrent) < 1:
            raise ValueError("max_concurrent must be >= 1")
        if float(timeout_seconds) <= 0:
            raise ValueError("timeout_seconds must be > 0")
        collector = collector if collector is not None else ResultCollector()
        cancel_event = threading.Event()
        worker = CheckWorker(
            allocator=self.allocator,
            runner=self.runner,
            poll_interval_seconds=self.poll_interval_seconds,
            terminate_grace_seconds=self.terminate_grace_seconds,
            cancel_event=cancel_event,
        )
        slots = threading.BoundedSemaphore(int(max_concurrent))
        started = time.monotonic()
        deadline = None if run_deadline_seconds is None else started + float(run_deadline_seconds)
        pending: deque[CheckTarget] = deque(catalog)
        futures: list[Future[CheckResult]] = []

        logger.info(
            "Dispatching %s checks max_concurrent=%s timeout_s=%s",
            len(pending),
            max_concurrent,
            timeout_seconds,
        )
        with ThreadPoolExecutor(max_workers=int(max_concurrent), thread_name_prefix="bootnode-check") as executor:
            try:
                while pending:
                    if not _acquire_slot(slots, deadline):
                        cancel_event.set()
                        break
                    target = pending.popleft()
                    with self._lock:
                        self._in_flight += 1
                    future = executor.submit(self._run_one, worker, target, float(timeout_seconds), collector)
                    future.add_done_callback(lambda _f: self._finish(slots))
                    futures.append(future)
                self._drain(futures, deadline, cancel_event)
            except KeyboardInterrupt:
                narrative_logger.warning("Run interrupted; stopping %s in-flight checks", self.in_flight)
                cancel_event.set()
                raise

        skipped = tuple(pending)
        if skipped:
            logger.warning("Run deadline exceeded; %s checks not dispatched", len(skipped))
        return RunSummary(
            snapshot=collector.snapshot(),
            total=len(catalog),
            skipped=skipped,
            elapsed_ms=int((time.monotonic() - started) * 1000),
            deadline_exceeded=cancel_event.is_set(),
        )

    def _run_one(
        self,
        worker: CheckWorker,
        target: CheckTarget,
        timeout_seconds: float,
        collector: ResultCollector,
    ) -> CheckResult:
        try:
            result = worker.run_check(target, timeout_seconds)
        except Exception as exc:
            logger.exception("Check crashed target=%s", target.label())
            result = CheckResult(
                target=target,
                status=CheckStatus.DOWN,
                failure_reason=FailureReason.PROCESS_ERROR,
                duration_ms=0,
                completed_at=datetime.now(tz=timezone.utc),
                detail=f"WORKER_CRASHED:{exc}",
            )
        collector.record(result)
        return result

    def _finish(self, slots: threading.BoundedSemaphore) -> None:
        with self._lock:
            self._in_flight -= 1
        slots.release()

    @staticmethod
    def _drain(futures: list[Future[CheckResult]], deadline: float | None, cancel_event: threading.Event) -> None:
        if not futures:
            return
        if deadline is not None:
            _, not_done = wait(futures, timeout=max(0.0, deadline - time.monotonic()))
            if not_done:
                narrative_logger.warning("Run deadline reached; stopping %s in-flight checks", len(not_done))
                cancel_event.set()
        wait(futures)


def _acquire_slot(slots: threading.BoundedSemaphore, deadline: float | None) -> bool:
    if deadline is None:
        return slots.acquire()
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        return False
    return slots.acquire(timeout=remaining)
