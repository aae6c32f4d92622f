import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class StructuredRuntimeLogger:
    """
    JSON-lines event logger for queue, worker, retry and history paths.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO):
        self._logger = logger or logging.getLogger("commands.runtime")
        self._level = level

    def emit(self, event_type: str, **fields: Any) -> None:
        if not self._logger.isEnabledFor(self._level):
            return
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
        }
        payload.update(fields)
        self._logger.log(self._level, json.dumps(payload, default=str, ensure_ascii=True))
