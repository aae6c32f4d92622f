from datetime import datetime, timezone
from uuid import UUID

import pytest

from src.execution.domain.command import CallableCommand, Command, CommandMetadata
from src.execution.domain.exceptions import CommandSerializationError
from src.execution.serialization import (
    CommandTypeRegistry,
    deserialize_command,
    deserialize_metadata,
    serialize_command,
    serialize_metadata,
)


class ShipOrderCommand(Command):
    command_type = "ship_order"

    def execute(self):
        pass


def test_registered_command_is_rebuilt_with_metadata():
    registry = CommandTypeRegistry()
    registry.register(ShipOrderCommand)
    command = ShipOrderCommand(
        {"order_id": UUID("12345678-1234-5678-1234-567812345678"), "lines": (1, 2)},
        name="ship-42",
        user_id="u-1",
        tenant_id="t-1",
        priority=4,
        max_retries=5,
    )
    command.metadata = command.metadata.with_retry(datetime(2024, 1, 1, tzinfo=timezone.utc))

    rebuilt = deserialize_command(serialize_command(command), registry)

    assert isinstance(rebuilt, ShipOrderCommand)
    assert rebuilt.name == "ship-42"
    assert rebuilt.payload == {"order_id": "12345678-1234-5678-1234-567812345678", "lines": [1, 2]}
    assert rebuilt.metadata == command.metadata


def test_unknown_type_raises():
    data = serialize_command(ShipOrderCommand())
    with pytest.raises(CommandSerializationError):
        deserialize_command(data, CommandTypeRegistry())


def test_malformed_record_raises():
    with pytest.raises(CommandSerializationError):
        deserialize_command({"name": "x"}, CommandTypeRegistry())


def test_non_json_payload_raises():
    with pytest.raises(CommandSerializationError):
        serialize_command(ShipOrderCommand({"handle": object()}))


def test_custom_factory_by_type_tag():
    registry = CommandTypeRegistry()
    built = []

    def factory(name, payload, metadata):
        command = ShipOrderCommand(payload, name=name, metadata=metadata)
        built.append(command)
        return command

    registry.register("ship_order", factory)

    rebuilt = deserialize_command(serialize_command(ShipOrderCommand({"a": 1})), registry)

    assert built == [rebuilt]
    assert registry.known_types() == ["ship_order"]


def test_register_string_without_factory_is_rejected():
    with pytest.raises(ValueError):
        CommandTypeRegistry().register("ship_order")


def test_callable_commands_cannot_be_rebuilt():
    registry = CommandTypeRegistry()
    registry.register(CallableCommand)
    data = serialize_command(CallableCommand(lambda: None, {"x": 1}))

    with pytest.raises(CommandSerializationError):
        deserialize_command(data, registry)


def test_metadata_round_trip_keeps_optional_fields_empty():
    metadata = CommandMetadata.new("ship_order")
    data = serialize_metadata(metadata)

    assert data["first_failed_at"] is None
    assert deserialize_metadata(data) == metadata
