from datetime import datetime, timedelta
from threading import Lock
from typing import Union

from src.core.time.time_source import TimeSource


class FrozenTimeSource(TimeSource):
    """
    Manually advanced clock for deterministic backoff tests.
    """

    def __init__(self, start_time: datetime):
        if start_time.tzinfo is None:
            raise ValueError("FrozenTimeSource requires timezone-aware datetime")
        self._current_time = start_time
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current_time

    def advance(self, delta: Union[timedelta, float]) -> datetime:
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=float(delta))
        with self._lock:
            self._current_time += delta
            return self._current_time
