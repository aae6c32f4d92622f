import json
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Type, Union
from uuid import UUID

from src.execution.domain.command import Command, CommandMetadata
from src.execution.domain.exceptions import CommandSerializationError

CommandFactory = Callable[[str, Dict[str, Any], CommandMetadata], Command]


def _serialize(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


class CommandTypeRegistry:
    """
    Maps command_type tags to factories so persisted commands can be rebuilt.
    """

    def __init__(self):
        self._factories: Dict[str, CommandFactory] = {}
        self._lock = Lock()

    def register(
        self,
        command_type: Union[str, Type[Command]],
        factory: CommandFactory = None,
    ) -> None:
        if isinstance(command_type, type) and issubclass(command_type, Command):
            factory = factory or command_type.from_payload
            command_type = command_type.command_type
        if factory is None:
            raise ValueError(f"No factory given for command type {command_type!r}")
        with self._lock:
            self._factories[str(command_type)] = factory

    def known_types(self):
        with self._lock:
            return sorted(self._factories)

    def build(self, name: str, payload: Dict[str, Any], metadata: CommandMetadata) -> Command:
        with self._lock:
            factory = self._factories.get(metadata.command_type)
        if factory is None:
            raise CommandSerializationError(f"Unknown command type: {metadata.command_type}")
        return factory(name, payload, metadata)


def serialize_metadata(metadata: CommandMetadata) -> Dict[str, Any]:
    return _serialize(asdict(metadata))


def deserialize_metadata(data: Dict[str, Any]) -> CommandMetadata:
    first_failed_at = data.get("first_failed_at")
    priority = data.get("priority")
    return CommandMetadata(
        command_id=str(data["command_id"]),
        command_type=str(data["command_type"]),
        created_at=datetime.fromisoformat(data["created_at"]),
        retry_count=int(data.get("retry_count", 0)),
        max_retries=int(data["max_retries"]),
        user_id=data.get("user_id"),
        tenant_id=data.get("tenant_id"),
        priority=int(priority) if priority is not None else None,
        first_failed_at=datetime.fromisoformat(first_failed_at) if first_failed_at else None,
    )


def serialize_command(command: Command) -> Dict[str, Any]:
    payload = _serialize(command.payload)
    try:
        json.dumps(payload)
    except (TypeError, ValueError) as exc:
        raise CommandSerializationError(
            f"Payload of {command.name} ({command.command_id}) is not JSON-serializable: {exc}"
        ) from exc
    return {
        "name": command.name,
        "payload": payload,
        "metadata": serialize_metadata(command.metadata),
    }


def deserialize_command(data: Dict[str, Any], registry: CommandTypeRegistry) -> Command:
    try:
        metadata = deserialize_metadata(data["metadata"])
        name = str(data["name"])
        payload = dict(data.get("payload") or {})
    except (KeyError, TypeError, ValueError) as exc:
        raise CommandSerializationError(f"Malformed command record: {exc}") from exc
    return registry.build(name, payload, metadata)
