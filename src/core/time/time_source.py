from abc import ABC, abstractmethod
from datetime import datetime


class TimeSource(ABC):
    """
    Abstract clock the retry coordinator schedules backoff against.
    All timestamps are UTC-aware.
    """

    @abstractmethod
    def now(self) -> datetime:
        pass
