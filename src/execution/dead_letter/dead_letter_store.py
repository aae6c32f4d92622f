import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timezone
from threading import Lock
from typing import List, Optional

from src.execution.domain.command import Command
from src.execution.domain.dead_letter_entry import DeadLetterEntry

logger = logging.getLogger(__name__)


def build_entry(
    command: Command,
    error: Optional[BaseException],
    failed_at: Optional[datetime] = None,
    reason: Optional[str] = None,
) -> DeadLetterEntry:
    return DeadLetterEntry(
        command=command,
        error=reason or (str(error) if error is not None else "unknown error"),
        error_type=type(error).__name__ if error is not None else "",
        failed_at=failed_at or datetime.now(timezone.utc),
        attempts=command.metadata.retry_count + 1,
    )


class DeadLetterStore(ABC):
    """
    Terminal sink for commands that exhausted their retries.
    Entries are never retried automatically.
    """

    @abstractmethod
    def record(
        self,
        command: Command,
        error: Optional[BaseException],
        failed_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> DeadLetterEntry:
        pass

    @abstractmethod
    def list(self, limit: Optional[int] = None) -> List[DeadLetterEntry]:
        pass

    @abstractmethod
    def get(self, command_id: str) -> Optional[DeadLetterEntry]:
        pass

    @abstractmethod
    def remove(self, command_id: str) -> Optional[DeadLetterEntry]:
        pass

    @abstractmethod
    def purge(self, command_id: Optional[str] = None, older_than: Optional[datetime] = None) -> int:
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class InMemoryDeadLetterStore(DeadLetterStore):
    """
    Process-local store. Without max_entries it grows until purged; keeping
    it bounded is left to the integrator.
    """

    def __init__(self, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, DeadLetterEntry]" = OrderedDict()
        self._lock = Lock()

    def record(self, command, error, failed_at=None, reason=None) -> DeadLetterEntry:
        entry = build_entry(command, error, failed_at=failed_at, reason=reason)
        evicted: List[str] = []
        with self._lock:
            self._entries.pop(entry.command_id, None)
            self._entries[entry.command_id] = entry
            while self.max_entries is not None and len(self._entries) > self.max_entries:
                evicted_id, _ = self._entries.popitem(last=False)
                evicted.append(evicted_id)
        for evicted_id in evicted:
            logger.warning("Dead-letter store full; evicted oldest entry %s", evicted_id)
        return entry

    def list(self, limit: Optional[int] = None) -> List[DeadLetterEntry]:
        with self._lock:
            items = list(reversed(self._entries.values()))
        return items if limit is None else items[:limit]

    def get(self, command_id: str) -> Optional[DeadLetterEntry]:
        with self._lock:
            return self._entries.get(command_id)

    def remove(self, command_id: str) -> Optional[DeadLetterEntry]:
        with self._lock:
            return self._entries.pop(command_id, None)

    def purge(self, command_id: Optional[str] = None, older_than: Optional[datetime] = None) -> int:
        with self._lock:
            doomed = [
                entry_id
                for entry_id, entry in self._entries.items()
                if (command_id is None or entry_id == command_id)
                and (older_than is None or entry.failed_at < older_than)
            ]
            for entry_id in doomed:
                del self._entries[entry_id]
            return len(doomed)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)
