from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class HistoryInfo:
    undo_count: int
    redo_count: int
    can_undo: bool
    can_redo: bool
    undo_description: Optional[str] = None
    redo_description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
