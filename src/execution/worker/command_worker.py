import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from src.execution.domain.command_outcome import CommandOutcome, OutcomeNormalizer
from src.execution.domain.queue_entry import QueueEntry
from src.execution.logging.structured_runtime_logger import StructuredRuntimeLogger
from src.execution.queue.work_queue import WorkQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandWorkerConfig:
    worker_id: str
    poll_interval_seconds: float = 0.2


class CommandWorker:
    """
    One execution loop: take an entry, run it, hand the outcome on.
    Failures go to on_outcome and are never retried inline.
    """

    def __init__(
        self,
        config: CommandWorkerConfig,
        queue: WorkQueue,
        on_outcome: Callable[[QueueEntry, CommandOutcome], None],
        structured_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        self.config = config
        self.queue = queue
        self.on_outcome = on_outcome
        self.structured_logger = structured_logger
        self._stop_event = threading.Event()

    def run_forever(self) -> None:
        while not self._stop_event.is_set():
            if self.run_once() == 0 and self.queue.finished:
                break
        self._log("WORKER_STOPPED", worker_id=self.config.worker_id)

    def stop(self) -> None:
        self._stop_event.set()

    def run_once(self) -> int:
        if self._stop_event.is_set():
            return 0
        entry = self.queue.get(timeout=self.config.poll_interval_seconds)
        if entry is None:
            return 0
        self._handle_entry(entry)
        return 1

    def _handle_entry(self, entry: QueueEntry) -> None:
        command = entry.command
        started = time.monotonic()
        try:
            outcome = OutcomeNormalizer.run(command)
        finally:
            # in-flight ends before the retry table or dead-letter store takes custody
            self.queue.task_done(entry)
        duration_ms = (time.monotonic() - started) * 1000.0
        self._log(
            "COMMAND_SUCCEEDED" if outcome.succeeded else "COMMAND_FAILED",
            worker_id=self.config.worker_id,
            command_id=command.command_id,
            command_type=command.metadata.command_type,
            attempt=command.metadata.retry_count + 1,
            duration_ms=round(duration_ms, 3),
            error=outcome.reason or None,
        )
        try:
            self.on_outcome(entry, outcome)
        except Exception:
            # the loop must survive a broken failure path
            logger.exception(
                "Outcome handling failed for command %s on %s",
                command.command_id,
                self.config.worker_id,
            )

    def _log(self, event_type: str, **fields) -> None:
        if not self.structured_logger:
            return
        self.structured_logger.emit(event_type=event_type, **fields)
