from dataclasses import dataclass
from enum import Enum
from typing import Optional

from src.execution.domain.command import UndoableCommand
from src.execution.domain.exceptions import HistoryError


class HistoryAction(Enum):
    EXECUTE = "execute"
    UNDO = "undo"
    REDO = "redo"


@dataclass(frozen=True)
class HistoryResult:
    """
    Explicit outcome of a history operation. Errors are carried, not raised.
    """
    action: HistoryAction
    command: Optional[UndoableCommand] = None
    error: Optional[HistoryError] = None
    evicted: Optional[UndoableCommand] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def description(self) -> Optional[str]:
        return self.command.description if self.command is not None else None

    def raise_for_error(self) -> "HistoryResult":
        if self.error is not None:
            raise self.error
        return self
