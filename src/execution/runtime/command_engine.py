import logging
from typing import List, Optional

from src.config.settings import Settings
from src.core.time.time_source import TimeSource
from src.execution.dead_letter.dead_letter_store import DeadLetterStore, InMemoryDeadLetterStore
from src.execution.dead_letter.sql_dead_letter_store import SqlDeadLetterStore
from src.execution.domain.command import Command, UndoableCommand
from src.execution.domain.dead_letter_entry import DeadLetterEntry
from src.execution.domain.queue_stats import QueueStats
from src.execution.logging.structured_runtime_logger import StructuredRuntimeLogger
from src.execution.retry.retry_scheduler import RetryPolicy
from src.execution.runtime.command_queue import (
    BackpressureMode,
    CommandQueue,
    CommandQueueConfig,
    ShutdownPolicy,
)
from src.execution.serialization import CommandTypeRegistry
from src.history.domain.history_info import HistoryInfo
from src.history.domain.history_result import HistoryResult
from src.history.services.command_history import CommandHistoryRegistry

DEFAULT_SESSION = "default"


class CommandEngine:
    """
    Application-facing surface: deferred execution through the command queue
    and synchronous undo/redo through per-session histories.

    Build one at startup and pass it to whoever needs it.
    """

    def __init__(
        self,
        queue: CommandQueue,
        histories: Optional[CommandHistoryRegistry] = None,
    ):
        self.queue = queue
        self.histories = histories or CommandHistoryRegistry(structured_logger=queue.structured_logger)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: Optional[CommandTypeRegistry] = None,
        dead_letter_store: Optional[DeadLetterStore] = None,
        time_source: Optional[TimeSource] = None,
        structured_logger: Optional[StructuredRuntimeLogger] = None,
        autostart: bool = True,
    ) -> "CommandEngine":
        if dead_letter_store is None:
            if settings.DEAD_LETTER_DSN:
                dead_letter_store = SqlDeadLetterStore.from_dsn(
                    settings.DEAD_LETTER_DSN,
                    registry or CommandTypeRegistry(),
                    max_entries=settings.DEAD_LETTER_MAX_ENTRIES,
                )
            else:
                dead_letter_store = InMemoryDeadLetterStore(max_entries=settings.DEAD_LETTER_MAX_ENTRIES)
        structured_logger = structured_logger or StructuredRuntimeLogger(
            level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
        )
        queue = CommandQueue(
            config=CommandQueueConfig(
                worker_count=settings.WORKER_COUNT,
                queue_capacity=settings.QUEUE_CAPACITY,
                backpressure_mode=BackpressureMode(settings.BACKPRESSURE_MODE),
                enqueue_timeout_seconds=settings.ENQUEUE_TIMEOUT_SECONDS,
                shutdown_policy=ShutdownPolicy(settings.SHUTDOWN_POLICY),
                shutdown_grace_seconds=settings.SHUTDOWN_GRACE_SECONDS,
                worker_poll_interval_seconds=settings.WORKER_POLL_INTERVAL_SECONDS,
                watchdog_interval_seconds=settings.WATCHDOG_INTERVAL_SECONDS,
                autostart=autostart,
            ),
            retry_policy=RetryPolicy(
                base_delay_seconds=settings.RETRY_BASE_DELAY_SECONDS,
                factor=settings.RETRY_BACKOFF_FACTOR,
                max_delay_seconds=settings.RETRY_MAX_DELAY_SECONDS,
                jitter_ratio=settings.RETRY_JITTER_RATIO,
                sweep_interval_seconds=settings.RETRY_SWEEP_INTERVAL_SECONDS,
                max_pending=settings.MAX_PENDING_RETRIES,
            ),
            dead_letter_store=dead_letter_store,
            time_source=time_source,
            structured_logger=structured_logger,
        )
        histories = CommandHistoryRegistry(
            max_history_size=settings.MAX_HISTORY_SIZE,
            structured_logger=structured_logger,
        )
        return cls(queue=queue, histories=histories)

    def __enter__(self) -> "CommandEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        self.queue.start()

    # deferred execution

    def enqueue(self, command: Command, priority: Optional[int] = None) -> str:
        return self.queue.enqueue(command, priority=priority)

    def get_stats(self) -> QueueStats:
        return self.queue.stats()

    def list_dead_letters(self, limit: Optional[int] = None) -> List[DeadLetterEntry]:
        return self.queue.list_dead_letters(limit=limit)

    def get_dead_letter(self, command_id: str) -> Optional[DeadLetterEntry]:
        return self.queue.get_dead_letter(command_id)

    def retry_dead_letter(self, command_id: str) -> str:
        return self.queue.retry_dead_letter(command_id)

    def purge_dead_letters(self, command_id: Optional[str] = None, older_than=None) -> int:
        return self.queue.purge_dead_letters(command_id=command_id, older_than=older_than)

    # undo / redo

    def execute_command(self, command: UndoableCommand, session_id: str = DEFAULT_SESSION) -> HistoryResult:
        return self.histories.get(session_id).execute_command(command)

    def undo(self, session_id: str = DEFAULT_SESSION) -> HistoryResult:
        return self.histories.get(session_id).undo()

    def redo(self, session_id: str = DEFAULT_SESSION) -> HistoryResult:
        return self.histories.get(session_id).redo()

    def get_history_info(self, session_id: str = DEFAULT_SESSION) -> HistoryInfo:
        history = self.histories.peek(session_id)
        if history is None:
            return HistoryInfo(undo_count=0, redo_count=0, can_undo=False, can_redo=False)
        return history.info()

    def end_session(self, session_id: str) -> bool:
        return self.histories.end_session(session_id)

    def close(self, grace_period: Optional[float] = None) -> List[Command]:
        return self.queue.close(grace_period=grace_period)
