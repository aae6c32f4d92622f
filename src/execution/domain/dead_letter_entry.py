from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from src.execution.domain.command import Command


@dataclass(frozen=True)
class DeadLetterEntry:
    command: Command
    error: str
    error_type: str
    failed_at: datetime
    attempts: int

    @property
    def command_id(self) -> str:
        return self.command.command_id

    def to_dict(self) -> Dict[str, Any]:
        metadata = self.command.metadata
        return {
            "command_id": metadata.command_id,
            "command_type": metadata.command_type,
            "name": self.command.name,
            "user_id": metadata.user_id,
            "tenant_id": metadata.tenant_id,
            "retry_count": metadata.retry_count,
            "max_retries": metadata.max_retries,
            "attempts": self.attempts,
            "error": self.error,
            "error_type": self.error_type,
            "failed_at": self.failed_at.isoformat(),
        }
