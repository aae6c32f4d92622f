import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from src.execution.domain.exceptions import CommandSerializationError

DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class CommandMetadata:
    """
    Identity and bookkeeping for a command.
    The record is immutable: the retry coordinator swaps in an updated copy
    when retry_count changes.
    """
    command_id: str
    command_type: str
    created_at: datetime
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    priority: Optional[int] = None
    first_failed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")

    @classmethod
    def new(
        cls,
        command_type: str,
        command_id: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        priority: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> "CommandMetadata":
        return cls(
            command_id=command_id or str(uuid4()),
            command_type=command_type,
            created_at=created_at or datetime.now(timezone.utc),
            max_retries=max_retries,
            user_id=user_id,
            tenant_id=tenant_id,
            priority=priority,
        )

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def with_retry(self, failed_at: datetime) -> "CommandMetadata":
        return replace(
            self,
            retry_count=self.retry_count + 1,
            first_failed_at=self.first_failed_at or failed_at,
        )

    def reset_retries(self) -> "CommandMetadata":
        return replace(self, retry_count=0, first_failed_at=None)


class Command(ABC):
    """
    A reified unit of work.

    The payload is deep-copied on construction so the caller keeps no shared
    mutable state with a submitted command. Collaborators a command needs
    (clients, repositories) belong on the subclass, not in the payload.
    Failure is signalled by raising from execute().
    """

    command_type: str = "command"

    def __init__(
        self,
        payload: Optional[Dict[str, Any]] = None,
        *,
        name: Optional[str] = None,
        metadata: Optional[CommandMetadata] = None,
        command_id: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        priority: Optional[int] = None,
    ):
        self.payload: Dict[str, Any] = copy.deepcopy(dict(payload or {}))
        self.name = name or self.__class__.__name__
        self.metadata = metadata or CommandMetadata.new(
            command_type=self.command_type,
            command_id=command_id,
            max_retries=max_retries,
            user_id=user_id,
            tenant_id=tenant_id,
            priority=priority,
        )

    @property
    def command_id(self) -> str:
        return self.metadata.command_id

    @property
    def description(self) -> str:
        return self.name

    @abstractmethod
    def execute(self) -> None:
        pass

    @classmethod
    def from_payload(
        cls,
        name: str,
        payload: Dict[str, Any],
        metadata: CommandMetadata,
    ) -> "Command":
        return cls(payload, name=name, metadata=metadata)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(id={self.command_id!r}, name={self.name!r}, "
            f"retry_count={self.metadata.retry_count})"
        )


class UndoableCommand(Command):
    command_type = "undoable_command"

    @abstractmethod
    def undo(self) -> None:
        pass

    def can_undo(self) -> bool:
        return True


class CallableCommand(Command):
    """Adapts a zero-argument callable into a command."""

    command_type = "callable"

    def __init__(self, action: Callable[[], Any], payload: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(payload, **kwargs)
        self._action = action

    def execute(self) -> None:
        self._action()

    @classmethod
    def from_payload(cls, name, payload, metadata):
        raise CommandSerializationError(f"{cls.__name__} wraps a callable and cannot be rebuilt from a payload")


class CallableUndoableCommand(UndoableCommand):
    command_type = "callable_undoable"

    def __init__(
        self,
        action: Callable[[], Any],
        reverse: Callable[[], Any],
        payload: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        super().__init__(payload, **kwargs)
        self._action = action
        self._reverse = reverse

    def execute(self) -> None:
        self._action()

    def undo(self) -> None:
        self._reverse()

    @classmethod
    def from_payload(cls, name, payload, metadata):
        raise CommandSerializationError(f"{cls.__name__} wraps callables and cannot be rebuilt from a payload")
