from typing import Optional


class CommandEngineError(Exception):
    """Base class for every error raised or returned by the command engine."""
    pass


class QueueFullError(CommandEngineError):
    """Raised by enqueue when the work queue is at capacity and backpressure rejects."""

    def __init__(self, capacity: int, waited_seconds: Optional[float] = None):
        self.capacity = capacity
        self.waited_seconds = waited_seconds
        if waited_seconds is None:
            message = f"Work queue is full (capacity={capacity})"
        else:
            message = f"Work queue still full after {waited_seconds:.3f}s (capacity={capacity})"
        super().__init__(message)


class EngineClosedError(CommandEngineError):
    """Raised when work is submitted after close()."""
    pass


class DuplicateCommandError(CommandEngineError):
    """Raised when a command id is already queued, executing or awaiting retry."""
    pass


class DeadLetterNotFoundError(CommandEngineError):
    """Raised when a dead-letter id does not exist in the store."""
    pass


class CommandSerializationError(CommandEngineError):
    """Raised when a command cannot be turned into (or rebuilt from) a payload."""
    pass


class HistoryError(CommandEngineError):
    """Base class for undo/redo errors carried by HistoryResult."""
    pass


class NothingToUndoError(HistoryError):
    def __init__(self):
        super().__init__("Nothing to undo")


class NothingToRedoError(HistoryError):
    def __init__(self):
        super().__init__("Nothing to redo")


class CommandAlreadyInHistoryError(HistoryError):
    def __init__(self, command_id: str):
        self.command_id = command_id
        super().__init__(f"Command {command_id} is already in the undo history")


class CommandExecutionError(HistoryError):
    """Wraps an exception raised by a command body; the cause is kept opaque."""

    def __init__(self, command_name: str, cause: BaseException):
        self.command_name = command_name
        self.cause = cause
        super().__init__(f"{command_name} failed: {cause}")


class CommandUndoError(HistoryError):
    """Raised by a failed undo. The command is dropped from both stacks."""

    def __init__(self, command_name: str, cause: BaseException):
        self.command_name = command_name
        self.cause = cause
        super().__init__(f"Undo of {command_name} failed: {cause}")
