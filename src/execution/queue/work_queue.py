import heapq
import itertools
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Condition, Lock
from typing import Dict, List, Optional, Set, Tuple

from src.execution.domain.command import Command
from src.execution.domain.queue_entry import QueueEntry


class WorkQueue(ABC):
    @abstractmethod
    def put(
        self,
        command: Command,
        priority: int = 0,
        block: bool = False,
        timeout: Optional[float] = None,
    ) -> Optional[QueueEntry]:
        pass

    @abstractmethod
    def get(self, timeout: Optional[float] = None) -> Optional[QueueEntry]:
        pass

    @abstractmethod
    def task_done(self, entry: QueueEntry) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def drain(self) -> List[QueueEntry]:
        pass

    @abstractmethod
    def depth(self) -> int:
        pass

    @abstractmethod
    def in_flight(self) -> int:
        pass

    @abstractmethod
    def contains(self, command_id: str) -> bool:
        pass

    @property
    @abstractmethod
    def capacity(self) -> int:
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass

    @property
    def finished(self) -> bool:
        return self.closed and self.depth() == 0


class InMemoryWorkQueue(WorkQueue):
    """
    Bounded priority queue shared by the worker pool.

    Entries leave the queued set and enter the in-flight set atomically in
    get(), and leave the in-flight set only through task_done(), so a command
    is always visible in exactly one place while the queue owns it.
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._heap: List[Tuple[int, int, QueueEntry]] = []
        self._queued_ids: Set[str] = set()
        self._in_flight: Dict[str, QueueEntry] = {}
        self._sequence = itertools.count()
        self._closed = False
        self._lock = Lock()
        self._not_empty = Condition(self._lock)
        self._not_full = Condition(self._lock)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def put(
        self,
        command: Command,
        priority: int = 0,
        block: bool = False,
        timeout: Optional[float] = None,
    ) -> Optional[QueueEntry]:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._not_full:
            while not self._closed and len(self._heap) >= self._capacity:
                if not block:
                    return None
                if deadline is None:
                    self._not_full.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._not_full.wait(remaining)
            if self._closed:
                return None
            entry = QueueEntry(
                command=command,
                priority=int(priority),
                sequence=next(self._sequence),
                enqueued_at=datetime.now(timezone.utc),
            )
            heapq.heappush(self._heap, (*entry.sort_key(), entry))
            self._queued_ids.add(entry.command_id)
            self._not_empty.notify()
            return entry

    def get(self, timeout: Optional[float] = None) -> Optional[QueueEntry]:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._not_empty:
            while not self._heap:
                if self._closed:
                    return None
                if deadline is None:
                    self._not_empty.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._not_empty.wait(remaining)
            _, _, entry = heapq.heappop(self._heap)
            self._queued_ids.discard(entry.command_id)
            self._in_flight[entry.command_id] = entry
            self._not_full.notify()
            return entry

    def task_done(self, entry: QueueEntry) -> None:
        with self._lock:
            if self._in_flight.get(entry.command_id) is entry:
                del self._in_flight[entry.command_id]

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()

    def drain(self) -> List[QueueEntry]:
        with self._lock:
            entries = [item[2] for item in sorted(self._heap, key=lambda item: item[:2])]
            self._heap.clear()
            self._queued_ids.clear()
            self._not_full.notify_all()
            return entries

    def depth(self) -> int:
        with self._lock:
            return len(self._heap)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def contains(self, command_id: str) -> bool:
        with self._lock:
            return command_id in self._queued_ids or command_id in self._in_flight
