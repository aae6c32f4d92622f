import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Callable, Dict, List, Optional

from src.core.time.system_time_source import SystemTimeSource
from src.core.time.time_source import TimeSource
from src.execution.domain.command import Command
from src.execution.domain.command_outcome import CommandOutcome
from src.execution.logging.structured_runtime_logger import StructuredRuntimeLogger
from src.execution.retry.retry_scheduler import RetryPolicy, RetryScheduler

logger = logging.getLogger(__name__)


class RetryDecision(Enum):
    SCHEDULED = "scheduled"
    EXHAUSTED = "exhausted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class PendingRetry:
    command: Command
    priority: int
    due_at: datetime
    failed_at: datetime
    last_error: str

    @property
    def command_id(self) -> str:
        return self.command.command_id


class RetryCoordinator:
    """
    Custodian of failed commands that still have retry budget.

    A single background sweep re-submits every due entry; there are no
    per-command timers. The sweep interval bounds how late a retry can fire.
    """

    def __init__(
        self,
        resubmit: Callable[[Command, int], bool],
        scheduler: Optional[RetryScheduler] = None,
        time_source: Optional[TimeSource] = None,
        structured_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        self.resubmit = resubmit
        self.scheduler = scheduler or RetryScheduler(RetryPolicy())
        self.time_source = time_source or SystemTimeSource()
        self.structured_logger = structured_logger
        self._pending: Dict[str, PendingRetry] = {}
        self._lock = Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def policy(self) -> RetryPolicy:
        return self.scheduler.policy

    def handle_failure(self, command: Command, outcome: CommandOutcome, priority: int = 0) -> RetryDecision:
        now = self.time_source.now()
        with self._lock:
            if not self.scheduler.should_retry(command.metadata):
                return RetryDecision.EXHAUSTED
            max_pending = self.policy.max_pending
            if max_pending is not None and len(self._pending) >= max_pending:
                return RetryDecision.REJECTED
            command.metadata = command.metadata.with_retry(now)
            pending = PendingRetry(
                command=command,
                priority=priority,
                due_at=self.scheduler.next_retry_at(command.metadata, now),
                failed_at=now,
                last_error=outcome.reason,
            )
            self._pending[command.command_id] = pending
        self._log(
            "COMMAND_RETRY_SCHEDULED",
            command_id=command.command_id,
            command_type=command.metadata.command_type,
            retry_count=command.metadata.retry_count,
            max_retries=command.metadata.max_retries,
            due_at=pending.due_at,
            error=outcome.reason,
        )
        return RetryDecision.SCHEDULED

    def sweep(self) -> int:
        """Re-submit every due entry. Returns the number handed back to the queue."""
        now = self.time_source.now()
        resubmitted: List[PendingRetry] = []
        with self._lock:
            due = sorted(
                (p for p in self._pending.values() if p.due_at <= now),
                key=lambda p: p.due_at,
            )
            for pending in due:
                if not self.resubmit(pending.command, pending.priority):
                    # queue full or closed; keep custody until the next tick
                    continue
                del self._pending[pending.command_id]
                resubmitted.append(pending)
        for pending in resubmitted:
            self._log(
                "COMMAND_RETRY_RESUBMITTED",
                command_id=pending.command_id,
                retry_count=pending.command.metadata.retry_count,
            )
        return len(resubmitted)

    def contains(self, command_id: str) -> bool:
        with self._lock:
            return command_id in self._pending

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def list_pending(self) -> List[PendingRetry]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda p: p.due_at)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="retry-sweep", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Retry sweep thread did not stop within %ss", timeout)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def run_forever(self) -> None:
        while not self._stop_event.wait(self.policy.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Retry sweep failed; will try again on the next tick")

    def _log(self, event_type: str, **fields) -> None:
        if not self.structured_logger:
            return
        self.structured_logger.emit(event_type=event_type, **fields)
