from datetime import datetime, timezone

import pytest

from src.config.settings import Settings
from src.core.time.frozen_time_source import FrozenTimeSource
from src.execution.dead_letter.dead_letter_store import InMemoryDeadLetterStore
from src.execution.dead_letter.sql_dead_letter_store import SqlDeadLetterStore
from src.execution.domain.command import CallableCommand, CallableUndoableCommand, Command
from src.execution.domain.exceptions import EngineClosedError
from src.execution.runtime.command_engine import CommandEngine
from src.execution.runtime.command_queue import BackpressureMode, ShutdownPolicy
from src.execution.serialization import CommandTypeRegistry

T0 = datetime(2024, 2, 2, tzinfo=timezone.utc)


class SendReportCommand(Command):
    command_type = "send_report"

    def execute(self):
        raise ConnectionError("smtp unavailable")


def _settings(**overrides) -> Settings:
    values = dict(
        WORKER_COUNT=1,
        WORKER_POLL_INTERVAL_SECONDS=0.01,
        RETRY_BASE_DELAY_SECONDS=10.0,
        SHUTDOWN_POLICY="drop",
    )
    values.update(overrides)
    return Settings(**values)


def test_from_settings_wires_configuration():
    engine = CommandEngine.from_settings(
        _settings(QUEUE_CAPACITY=7, BACKPRESSURE_MODE="block", MAX_HISTORY_SIZE=3),
        autostart=False,
    )

    config = engine.queue.config
    assert config.worker_count == 1
    assert config.queue_capacity == 7
    assert config.backpressure_mode == BackpressureMode.BLOCK
    assert config.shutdown_policy == ShutdownPolicy.DROP
    assert engine.queue.retry_coordinator.policy.base_delay_seconds == 10.0
    assert engine.histories.max_history_size == 3
    assert isinstance(engine.queue.dead_letter_store, InMemoryDeadLetterStore)
    engine.close(grace_period=0.1)


def test_from_settings_uses_sql_store_when_dsn_given(tmp_path):
    registry = CommandTypeRegistry()
    registry.register(SendReportCommand)
    engine = CommandEngine.from_settings(
        _settings(DEAD_LETTER_DSN=f"sqlite:///{tmp_path / 'engine.db'}", RETRY_BASE_DELAY_SECONDS=0.0),
        registry=registry,
        time_source=FrozenTimeSource(T0),
        autostart=False,
    )
    command = SendReportCommand({"report": "weekly"}, max_retries=0)

    engine.enqueue(command)
    engine.queue.workers[0].run_once()

    assert isinstance(engine.queue.dead_letter_store, SqlDeadLetterStore)
    [entry] = engine.list_dead_letters()
    assert entry.command_id == command.command_id
    assert entry.error_type == "ConnectionError"
    assert engine.get_stats().dead_lettered == 1

    engine.retry_dead_letter(command.command_id)
    assert engine.get_stats().dead_lettered == 0
    assert engine.get_stats().queued == 1
    engine.close(grace_period=0.1)


def test_sessions_are_isolated():
    engine = CommandEngine.from_settings(_settings(), autostart=False)
    state = {"alice": 0, "bob": 0}

    def bump(user, delta):
        return CallableUndoableCommand(
            lambda: state.__setitem__(user, state[user] + delta),
            lambda: state.__setitem__(user, state[user] - delta),
            name=f"{user} +{delta}",
        )

    assert engine.execute_command(bump("alice", 2), session_id="alice").ok
    assert engine.execute_command(bump("bob", 5), session_id="bob").ok
    assert engine.undo(session_id="alice").ok

    assert state == {"alice": 0, "bob": 5}
    assert engine.get_history_info("alice").can_redo
    assert engine.get_history_info("bob").undo_description == "bob +5"

    assert engine.redo(session_id="alice").ok
    assert state["alice"] == 2
    engine.close(grace_period=0.1)


def test_history_info_for_unknown_session_is_empty():
    engine = CommandEngine.from_settings(_settings(), autostart=False)

    info = engine.get_history_info("nobody")

    assert info.undo_count == 0 and info.redo_count == 0
    assert not info.can_undo and not info.can_redo
    assert engine.histories.sessions() == []
    engine.close(grace_period=0.1)


def test_end_session_discards_history():
    engine = CommandEngine.from_settings(_settings(), autostart=False)
    engine.execute_command(CallableUndoableCommand(lambda: None, lambda: None), session_id="s1")

    assert engine.end_session("s1")
    assert engine.get_history_info("s1").undo_count == 0
    engine.close(grace_period=0.1)


def test_context_manager_closes_engine():
    with CommandEngine.from_settings(_settings(SHUTDOWN_POLICY="drain")) as engine:
        done = []
        engine.enqueue(CallableCommand(lambda: done.append(True)))

    assert done == [True]
    with pytest.raises(EngineClosedError):
        engine.enqueue(CallableCommand(lambda: None))
