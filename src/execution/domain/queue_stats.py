from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class QueueStats:
    queued: int
    in_flight: int
    retry_pending: int
    dead_lettered: int
    completed: int = 0
    failed_attempts: int = 0
    dead_letter_write_failures: int = 0
    workers_alive: int = 0
    accepting: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
