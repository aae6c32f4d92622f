from collections import deque
from threading import Lock, RLock
from typing import Deque, Dict, List, Optional

from src.execution.domain.command import UndoableCommand
from src.execution.domain.exceptions import (
    CommandAlreadyInHistoryError,
    CommandExecutionError,
    CommandUndoError,
    NothingToRedoError,
    NothingToUndoError,
)
from src.execution.logging.structured_runtime_logger import StructuredRuntimeLogger
from src.history.domain.history_info import HistoryInfo
from src.history.domain.history_result import HistoryAction, HistoryResult

DEFAULT_MAX_HISTORY_SIZE = 50


class CommandHistory:
    """
    Bounded undo/redo manager for one session.

    Both stacks are ring buffers of max_history_size; the oldest undo entry
    is evicted first. A command lives in at most one stack at a time. If a
    command's undo (or redo) raises, the command is dropped from both stacks
    and the error is returned.
    """

    def __init__(
        self,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        session_id: str = "default",
        structured_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        if max_history_size < 1:
            raise ValueError("max_history_size must be >= 1")
        self.max_history_size = max_history_size
        self.session_id = session_id
        self.structured_logger = structured_logger
        self._undo_stack: Deque[UndoableCommand] = deque(maxlen=max_history_size)
        self._redo_stack: Deque[UndoableCommand] = deque(maxlen=max_history_size)
        # held while a command body runs so operations in one session serialize
        self._lock = RLock()

    def execute_command(self, command: UndoableCommand) -> HistoryResult:
        if not isinstance(command, UndoableCommand):
            raise TypeError(f"Expected an UndoableCommand, got {type(command).__name__}")
        with self._lock:
            if any(c.command_id == command.command_id for c in self._undo_stack):
                return self._failed(HistoryAction.EXECUTE, command, CommandAlreadyInHistoryError(command.command_id))
            try:
                command.execute()
            except Exception as exc:
                return self._failed(HistoryAction.EXECUTE, command, CommandExecutionError(command.name, exc))
            self._redo_stack.clear()
            evicted = None
            if command.can_undo():
                evicted = self._push_undo(command)
        self._log("HISTORY_EXECUTE", command, evicted=evicted.command_id if evicted else None)
        return HistoryResult(action=HistoryAction.EXECUTE, command=command, evicted=evicted)

    def undo(self) -> HistoryResult:
        with self._lock:
            if not self._undo_stack:
                return self._failed(HistoryAction.UNDO, None, NothingToUndoError())
            command = self._undo_stack.pop()
            try:
                command.undo()
            except Exception as exc:
                return self._failed(HistoryAction.UNDO, command, CommandUndoError(command.name, exc))
            self._redo_stack.append(command)
        self._log("HISTORY_UNDO", command)
        return HistoryResult(action=HistoryAction.UNDO, command=command)

    def redo(self) -> HistoryResult:
        with self._lock:
            if not self._redo_stack:
                return self._failed(HistoryAction.REDO, None, NothingToRedoError())
            command = self._redo_stack.pop()
            try:
                command.execute()
            except Exception as exc:
                return self._failed(HistoryAction.REDO, command, CommandExecutionError(command.name, exc))
            evicted = self._push_undo(command)
        self._log("HISTORY_REDO", command)
        return HistoryResult(action=HistoryAction.REDO, command=command, evicted=evicted)

    def can_undo(self) -> bool:
        return bool(self._undo_stack)

    def can_redo(self) -> bool:
        return bool(self._redo_stack)

    def clear(self) -> None:
        with self._lock:
            self._undo_stack.clear()
            self._redo_stack.clear()

    def undo_commands(self) -> List[UndoableCommand]:
        """Undo stack, oldest first."""
        with self._lock:
            return list(self._undo_stack)

    def redo_commands(self) -> List[UndoableCommand]:
        """Redo stack, oldest first."""
        with self._lock:
            return list(self._redo_stack)

    def info(self) -> HistoryInfo:
        with self._lock:
            return HistoryInfo(
                undo_count=len(self._undo_stack),
                redo_count=len(self._redo_stack),
                can_undo=bool(self._undo_stack),
                can_redo=bool(self._redo_stack),
                undo_description=self._undo_stack[-1].description if self._undo_stack else None,
                redo_description=self._redo_stack[-1].description if self._redo_stack else None,
            )

    def _push_undo(self, command: UndoableCommand) -> Optional[UndoableCommand]:
        evicted = None
        if len(self._undo_stack) == self.max_history_size:
            evicted = self._undo_stack[0]
        self._undo_stack.append(command)
        return evicted

    def _failed(self, action: HistoryAction, command, error) -> HistoryResult:
        self._log(
            f"HISTORY_{action.name}_FAILED",
            command,
            error=str(error),
            error_type=type(error).__name__,
        )
        return HistoryResult(action=action, command=command, error=error)

    def _log(self, event_type: str, command: Optional[UndoableCommand], **fields) -> None:
        if not self.structured_logger:
            return
        self.structured_logger.emit(
            event_type=event_type,
            session_id=self.session_id,
            command_id=command.command_id if command is not None else None,
            command_name=command.name if command is not None else None,
            **fields,
        )


class CommandHistoryRegistry:
    """
    One CommandHistory per session, created on first use.
    """

    def __init__(
        self,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        structured_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        if max_history_size < 1:
            raise ValueError("max_history_size must be >= 1")
        self.max_history_size = max_history_size
        self.structured_logger = structured_logger
        self._histories: Dict[str, CommandHistory] = {}
        self._lock = Lock()

    def get(self, session_id: str) -> CommandHistory:
        with self._lock:
            history = self._histories.get(session_id)
            if history is None:
                history = CommandHistory(
                    max_history_size=self.max_history_size,
                    session_id=session_id,
                    structured_logger=self.structured_logger,
                )
                self._histories[session_id] = history
            return history

    def peek(self, session_id: str) -> Optional[CommandHistory]:
        with self._lock:
            return self._histories.get(session_id)

    def end_session(self, session_id: str) -> bool:
        with self._lock:
            history = self._histories.pop(session_id, None)
        if history is None:
            return False
        history.clear()
        return True

    def sessions(self) -> List[str]:
        with self._lock:
            return sorted(self._histories)
