from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from src.execution.domain.command import Command


class CommandStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class CommandOutcome:
    """
    Result of one execution attempt.
    The error is kept as an opaque payload; the engine only looks at status.
    """
    command_id: str
    status: CommandStatus
    finished_at: datetime
    error: Optional[BaseException] = None
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == CommandStatus.SUCCEEDED

    @property
    def error_type(self) -> str:
        return type(self.error).__name__ if self.error is not None else ""


class OutcomeNormalizer:
    """
    Turns whatever a command body does (return or raise) into a CommandOutcome.
    """

    @staticmethod
    def success(command_id: str, finished_at: Optional[datetime] = None) -> CommandOutcome:
        return CommandOutcome(
            command_id=command_id,
            status=CommandStatus.SUCCEEDED,
            finished_at=finished_at or datetime.now(timezone.utc),
        )

    @staticmethod
    def failure(
        command_id: str,
        error: BaseException,
        finished_at: Optional[datetime] = None,
    ) -> CommandOutcome:
        return CommandOutcome(
            command_id=command_id,
            status=CommandStatus.FAILED,
            finished_at=finished_at or datetime.now(timezone.utc),
            error=error,
            reason=f"{type(error).__name__}: {error}",
        )

    @staticmethod
    def run(command: Command) -> CommandOutcome:
        try:
            command.execute()
        except Exception as exc:
            return OutcomeNormalizer.failure(command.command_id, exc)
        return OutcomeNormalizer.success(command.command_id)
