import pytest

from src.execution.domain.command import CallableCommand, UndoableCommand
from src.execution.domain.exceptions import (
    CommandAlreadyInHistoryError,
    CommandExecutionError,
    CommandUndoError,
    NothingToRedoError,
    NothingToUndoError,
)
from src.history.services.command_history import CommandHistory, CommandHistoryRegistry


class Counter:
    def __init__(self):
        self.value = 0


class AddCommand(UndoableCommand):
    command_type = "add"

    def __init__(self, counter, amount, fail_on=None, undoable=True):
        super().__init__({"amount": amount}, name=f"add {amount}")
        self.counter = counter
        self.fail_on = fail_on or set()
        self.undoable = undoable

    def execute(self):
        if "execute" in self.fail_on:
            raise RuntimeError("execute failed")
        self.counter.value += self.payload["amount"]

    def undo(self):
        if "undo" in self.fail_on:
            raise RuntimeError("undo failed")
        self.counter.value -= self.payload["amount"]

    def can_undo(self):
        return self.undoable


@pytest.fixture
def counter():
    return Counter()


def test_execute_undo_redo_round_trip(counter):
    history = CommandHistory()
    command = AddCommand(counter, 5)

    assert history.execute_command(command).ok
    assert counter.value == 5

    undone = history.undo()
    assert undone.ok and undone.command is command
    assert counter.value == 0

    redone = history.redo()
    assert redone.ok and redone.command is command
    assert counter.value == 5
    assert history.undo_commands() == [command]
    assert history.redo_commands() == []


def test_new_execute_clears_redo(counter):
    history = CommandHistory()
    history.execute_command(AddCommand(counter, 1))
    history.execute_command(AddCommand(counter, 2))
    history.undo()
    assert history.can_redo()

    history.execute_command(AddCommand(counter, 3))

    assert not history.can_redo()
    assert isinstance(history.redo().error, NothingToRedoError)


def test_empty_history_returns_errors_without_state_change():
    history = CommandHistory()

    undo = history.undo()
    redo = history.redo()

    assert isinstance(undo.error, NothingToUndoError)
    assert isinstance(redo.error, NothingToRedoError)
    assert history.undo_commands() == []
    assert history.redo_commands() == []
    with pytest.raises(NothingToUndoError):
        undo.raise_for_error()


def test_bound_keeps_most_recent_commands_in_order(counter):
    history = CommandHistory(max_history_size=3)
    commands = [AddCommand(counter, n) for n in range(1, 6)]
    results = [history.execute_command(c) for c in commands]

    assert history.undo_commands() == commands[2:]
    assert results[3].evicted is commands[0]
    assert results[4].evicted is commands[1]

    undone = [history.undo().command for _ in range(3)]
    assert undone == list(reversed(commands[2:]))
    assert isinstance(history.undo().error, NothingToUndoError)


def test_failed_execute_leaves_history_untouched(counter):
    history = CommandHistory()
    kept = AddCommand(counter, 1)
    history.execute_command(kept)
    history.undo()

    result = history.execute_command(AddCommand(counter, 9, fail_on={"execute"}))

    assert isinstance(result.error, CommandExecutionError)
    assert isinstance(result.error.cause, RuntimeError)
    assert history.redo_commands() == [kept]
    assert history.undo_commands() == []
    assert counter.value == 0


def test_failed_undo_drops_the_command(counter):
    history = CommandHistory()
    first = AddCommand(counter, 1)
    broken = AddCommand(counter, 2, fail_on={"undo"})
    history.execute_command(first)
    history.execute_command(broken)

    result = history.undo()

    assert isinstance(result.error, CommandUndoError)
    assert result.command is broken
    assert history.undo_commands() == [first]
    assert history.redo_commands() == []


def test_failed_redo_drops_the_command(counter):
    history = CommandHistory()
    command = AddCommand(counter, 4)
    history.execute_command(command)
    history.undo()
    command.fail_on = {"execute"}

    result = history.redo()

    assert isinstance(result.error, CommandExecutionError)
    assert history.undo_commands() == []
    assert history.redo_commands() == []


def test_same_command_cannot_be_pushed_twice(counter):
    history = CommandHistory()
    command = AddCommand(counter, 1)
    history.execute_command(command)

    result = history.execute_command(command)

    assert isinstance(result.error, CommandAlreadyInHistoryError)
    assert counter.value == 1
    assert history.undo_commands() == [command]


def test_command_that_cannot_undo_is_not_recorded(counter):
    history = CommandHistory()
    history.execute_command(AddCommand(counter, 1))
    history.undo()

    result = history.execute_command(AddCommand(counter, 7, undoable=False))

    assert result.ok
    assert counter.value == 7
    assert history.undo_commands() == []
    assert history.redo_commands() == []


def test_plain_command_is_refused():
    with pytest.raises(TypeError):
        CommandHistory().execute_command(CallableCommand(lambda: None))


def test_info_describes_next_actions(counter):
    history = CommandHistory()
    history.execute_command(AddCommand(counter, 1))
    history.execute_command(AddCommand(counter, 2))
    history.undo()

    info = history.info()

    assert info.undo_count == 1
    assert info.redo_count == 1
    assert info.undo_description == "add 1"
    assert info.redo_description == "add 2"
    assert info == history.info()


def test_registry_isolates_sessions(counter):
    registry = CommandHistoryRegistry(max_history_size=5)
    registry.get("alice").execute_command(AddCommand(counter, 1))

    assert registry.get("bob").info().undo_count == 0
    assert registry.sessions() == ["alice", "bob"]
    assert registry.end_session("alice")
    assert not registry.end_session("alice")
    assert registry.peek("alice") is None
