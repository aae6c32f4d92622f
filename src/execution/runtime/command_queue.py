import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from src.core.time.time_source import TimeSource
from src.execution.dead_letter.dead_letter_store import DeadLetterStore, InMemoryDeadLetterStore
from src.execution.domain.command import Command
from src.execution.domain.command_outcome import CommandOutcome
from src.execution.domain.dead_letter_entry import DeadLetterEntry
from src.execution.domain.exceptions import (
    DeadLetterNotFoundError,
    DuplicateCommandError,
    EngineClosedError,
    QueueFullError,
)
from src.execution.domain.queue_entry import QueueEntry
from src.execution.domain.queue_stats import QueueStats
from src.execution.logging.structured_runtime_logger import StructuredRuntimeLogger
from src.execution.queue.work_queue import InMemoryWorkQueue, WorkQueue
from src.execution.retry.retry_coordinator import RetryCoordinator, RetryDecision
from src.execution.retry.retry_scheduler import RetryPolicy, RetryScheduler
from src.execution.worker.command_worker import CommandWorker, CommandWorkerConfig
from src.execution.worker.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


class BackpressureMode(Enum):
    BLOCK = "block"
    REJECT = "reject"


class ShutdownPolicy(Enum):
    DRAIN = "drain"
    DROP = "drop"


@dataclass(frozen=True)
class CommandQueueConfig:
    worker_count: int = 4
    queue_capacity: int = 1000
    backpressure_mode: BackpressureMode = BackpressureMode.REJECT
    enqueue_timeout_seconds: Optional[float] = None
    shutdown_policy: ShutdownPolicy = ShutdownPolicy.DRAIN
    shutdown_grace_seconds: float = 30.0
    worker_poll_interval_seconds: float = 0.2
    watchdog_interval_seconds: Optional[float] = 1.0
    autostart: bool = True

    def __post_init__(self):
        if self.worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        if self.queue_capacity < 1:
            raise ValueError("queue_capacity must be >= 1")


class CommandQueue:
    """
    Invoker facade: bounded work queue -> worker pool -> retry coordinator ->
    dead-letter store. The only component application code submits to.

    A command owned by the queue is always in exactly one of: queued,
    executing, retry-pending, dead-lettered, or completed (and discarded).
    """

    def __init__(
        self,
        config: Optional[CommandQueueConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        dead_letter_store: Optional[DeadLetterStore] = None,
        work_queue: Optional[WorkQueue] = None,
        time_source: Optional[TimeSource] = None,
        structured_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        self.config = config or CommandQueueConfig()
        self.structured_logger = structured_logger
        self.work_queue = work_queue or InMemoryWorkQueue(capacity=self.config.queue_capacity)
        self.dead_letter_store = dead_letter_store or InMemoryDeadLetterStore()
        self.retry_coordinator = RetryCoordinator(
            resubmit=self._resubmit,
            scheduler=RetryScheduler(retry_policy or RetryPolicy()),
            time_source=time_source,
            structured_logger=structured_logger,
        )
        self.workers = [
            CommandWorker(
                config=CommandWorkerConfig(
                    worker_id=f"worker-{idx + 1}",
                    poll_interval_seconds=self.config.worker_poll_interval_seconds,
                ),
                queue=self.work_queue,
                on_outcome=self._on_outcome,
                structured_logger=structured_logger,
            )
            for idx in range(self.config.worker_count)
        ]
        self.pool = WorkerPool(self.workers)

        self._counter_lock = threading.Lock()
        self._completed = 0
        self._failed_attempts = 0
        self._dead_letter_write_failures = 0

        self._lifecycle_lock = threading.Lock()
        self._dead_letter_lock = threading.Lock()
        self._accepting = True
        self._closed = False

        if self.config.autostart:
            self.start()

    def __enter__(self) -> "CommandQueue":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._closed:
                raise EngineClosedError("Command queue is closed")
            if self.pool.started:
                return
            self.pool.start()
            if self.config.watchdog_interval_seconds:
                self.pool.start_watchdog(self.config.watchdog_interval_seconds)
            self.retry_coordinator.start()

    def enqueue(self, command: Command, priority: Optional[int] = None) -> str:
        """Submit a command. Returns its id without waiting for execution."""
        if not isinstance(command, Command):
            raise TypeError(f"Expected a Command, got {type(command).__name__}")
        block = self.config.backpressure_mode == BackpressureMode.BLOCK
        entry = self._submit(command, priority, block=block)
        self._log(
            "COMMAND_ENQUEUED",
            command_id=entry.command_id,
            command_type=command.metadata.command_type,
            priority=entry.priority,
            sequence=entry.sequence,
        )
        return entry.command_id

    def _submit(self, command: Command, priority: Optional[int], block: bool) -> QueueEntry:
        if not self._accepting:
            raise EngineClosedError("Command queue is closed")
        if self.work_queue.contains(command.command_id) or self.retry_coordinator.contains(command.command_id):
            raise DuplicateCommandError(f"Command {command.command_id} is already queued or pending retry")
        if priority is None:
            priority = command.metadata.priority or 0
        timeout = self.config.enqueue_timeout_seconds if block else None
        started = time.monotonic()
        entry = self.work_queue.put(command, priority, block=block, timeout=timeout)
        if entry is None:
            if not self._accepting or self.work_queue.closed:
                raise EngineClosedError("Command queue is closed")
            waited = time.monotonic() - started if block else None
            raise QueueFullError(self.work_queue.capacity, waited_seconds=waited)
        return entry

    def _resubmit(self, command: Command, priority: int) -> bool:
        if not self._accepting:
            return False
        return self.work_queue.put(command, priority, block=False) is not None

    def _on_outcome(self, entry: QueueEntry, outcome: CommandOutcome) -> None:
        if outcome.succeeded:
            with self._counter_lock:
                self._completed += 1
            return
        with self._counter_lock:
            self._failed_attempts += 1
        command = entry.command
        decision = self.retry_coordinator.handle_failure(command, outcome, priority=entry.priority)
        if decision == RetryDecision.SCHEDULED:
            return
        reason = None
        if decision == RetryDecision.REJECTED:
            reason = f"retry table full: {outcome.reason}"
        self._dead_letter(command, outcome, reason)

    def _dead_letter(self, command: Command, outcome: CommandOutcome, reason: Optional[str]) -> None:
        try:
            with self._dead_letter_lock:
                entry = self.dead_letter_store.record(
                    command,
                    outcome.error,
                    failed_at=outcome.finished_at,
                    reason=reason,
                )
        except Exception:
            with self._counter_lock:
                self._dead_letter_write_failures += 1
            logger.exception("Dead-letter write failed for command %s", command.command_id)
            return
        self._log(
            "COMMAND_DEAD_LETTERED",
            command_id=command.command_id,
            command_type=command.metadata.command_type,
            attempts=entry.attempts,
            error=entry.error,
        )

    def stats(self) -> QueueStats:
        with self._counter_lock:
            completed = self._completed
            failed_attempts = self._failed_attempts
            write_failures = self._dead_letter_write_failures
        return QueueStats(
            queued=self.work_queue.depth(),
            in_flight=self.work_queue.in_flight(),
            retry_pending=self.retry_coordinator.pending_count(),
            dead_lettered=self.dead_letter_store.count(),
            completed=completed,
            failed_attempts=failed_attempts,
            dead_letter_write_failures=write_failures,
            workers_alive=self.pool.alive_count(),
            accepting=self._accepting,
        )

    def list_dead_letters(self, limit: Optional[int] = None) -> List[DeadLetterEntry]:
        return self.dead_letter_store.list(limit=limit)

    def get_dead_letter(self, command_id: str) -> Optional[DeadLetterEntry]:
        return self.dead_letter_store.get(command_id)

    def retry_dead_letter(self, command_id: str) -> str:
        """
        Re-submit a dead-lettered command with a fresh retry budget.
        The entry leaves the store once the queue accepted it. Never blocks.
        """
        with self._dead_letter_lock:
            entry = self.dead_letter_store.get(command_id)
            if entry is None:
                raise DeadLetterNotFoundError(f"No dead-lettered command {command_id}")
            command = entry.command
            previous = command.metadata
            command.metadata = previous.reset_retries()
            try:
                queued = self._submit(command, previous.priority, block=False)
            except Exception:
                command.metadata = previous
                raise
            self.dead_letter_store.remove(command_id)
        self._log(
            "DEAD_LETTER_RETRIED",
            command_id=command_id,
            command_type=command.metadata.command_type,
            priority=queued.priority,
        )
        return command_id

    def purge_dead_letters(self, command_id: Optional[str] = None, older_than: Optional[datetime] = None) -> int:
        with self._dead_letter_lock:
            purged = self.dead_letter_store.purge(command_id=command_id, older_than=older_than)
        if purged:
            self._log("DEAD_LETTERS_PURGED", count=purged, command_id=command_id, older_than=older_than)
        return purged

    def close(self, grace_period: Optional[float] = None) -> List[Command]:
        """
        Stop accepting work, stop the retry sweep, then drain or drop what is
        still queued according to the shutdown policy. Returns dropped commands.
        """
        with self._lifecycle_lock:
            if self._closed:
                return []
            self._closed = True
            self._accepting = False
        grace = self.config.shutdown_grace_seconds if grace_period is None else grace_period

        self.retry_coordinator.stop(timeout=grace)

        self.work_queue.close()
        dropped: List[Command] = []
        if self.config.shutdown_policy == ShutdownPolicy.DROP:
            dropped = [entry.command for entry in self.work_queue.drain()]
            for command in dropped:
                logger.warning("Dropped queued command %s (%s) on shutdown", command.command_id, command.name)

        if not self.pool.started and self.work_queue.depth():
            # never started: drain policy still executes what was queued
            self.pool.start()
        finished = self.pool.join(timeout=grace) if self.pool.started else True
        if not finished:
            self.pool.stop()

        stats = self.stats()
        if stats.queued or stats.in_flight:
            logger.warning(
                "Shutdown grace period elapsed with %d queued and %d executing commands",
                stats.queued,
                stats.in_flight,
            )
        if stats.retry_pending:
            logger.warning("%d commands left pending retry at shutdown", stats.retry_pending)
        self._log(
            "ENGINE_CLOSED",
            policy=self.config.shutdown_policy.value,
            dropped=len(dropped),
            queued=stats.queued,
            in_flight=stats.in_flight,
            retry_pending=stats.retry_pending,
            dead_lettered=stats.dead_lettered,
        )
        return dropped

    def _log(self, event_type: str, **fields) -> None:
        if not self.structured_logger:
            return
        self.structured_logger.emit(event_type=event_type, **fields)
