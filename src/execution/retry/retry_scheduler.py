import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from src.execution.domain.command import CommandMetadata


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: float = 10.0
    factor: float = 2.0
    max_delay_seconds: float = 3600.0
    jitter_ratio: float = 0.0
    sweep_interval_seconds: float = 1.0
    max_pending: Optional[int] = 10000

    def __post_init__(self):
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")
        if not 0.0 <= self.jitter_ratio < 1.0:
            raise ValueError("jitter_ratio must be in [0, 1)")


class RetryScheduler:
    """
    Exponential backoff anchored at a command's first failure:
    retry n (1-based) becomes due base_delay * factor**(n-1) seconds after it.
    """

    def __init__(self, policy: RetryPolicy = RetryPolicy()):
        self.policy = policy

    def should_retry(self, metadata: CommandMetadata) -> bool:
        return not metadata.retries_exhausted

    def delay_for(self, previous_retries: int) -> float:
        base = self.policy.base_delay_seconds * (self.policy.factor ** max(0, previous_retries))
        capped = min(base, self.policy.max_delay_seconds)
        if not self.policy.jitter_ratio:
            return capped
        spread = capped * self.policy.jitter_ratio
        return max(0.0, capped + random.uniform(-spread, spread))

    def next_retry_at(self, metadata: CommandMetadata, failed_at: datetime) -> datetime:
        # metadata already carries the incremented retry_count
        anchor = metadata.first_failed_at or failed_at
        return anchor + timedelta(seconds=self.delay_for(metadata.retry_count - 1))
