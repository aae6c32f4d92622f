from dataclasses import dataclass
from datetime import datetime
from typing import Tuple

from src.execution.domain.command import Command


@dataclass(frozen=True)
class QueueEntry:
    command: Command
    priority: int
    sequence: int
    enqueued_at: datetime

    @property
    def command_id(self) -> str:
        return self.command.command_id

    def sort_key(self) -> Tuple[int, int]:
        # Higher priority first; equal priorities keep submission order.
        return (-self.priority, self.sequence)
