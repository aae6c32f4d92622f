import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from src.execution.dead_letter.dead_letter_store import DeadLetterStore, build_entry
from src.execution.domain.dead_letter_entry import DeadLetterEntry
from src.execution.domain.exceptions import CommandSerializationError
from src.execution.serialization import CommandTypeRegistry, deserialize_command, serialize_command

logger = logging.getLogger(__name__)


def _timestamp(value: datetime) -> str:
    # fixed-width UTC text keeps lexical and chronological order aligned
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqlDeadLetterStore(DeadLetterStore):
    """
    Dead-letter persistence through SQLAlchemy Core.
    Uses portable SQL only, so it runs on PostgreSQL and SQLite alike.
    Timestamps are stored as UTC ISO-8601 text.
    """

    def __init__(
        self,
        engine: Engine,
        registry: CommandTypeRegistry,
        max_entries: Optional[int] = None,
    ):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.engine = engine
        self.registry = registry
        self.max_entries = max_entries
        self.ensure_schema()

    @classmethod
    def from_dsn(
        cls,
        dsn: str,
        registry: CommandTypeRegistry,
        max_entries: Optional[int] = None,
    ) -> "SqlDeadLetterStore":
        engine = create_engine(dsn, pool_pre_ping=True, future=True)
        return cls(engine, registry, max_entries=max_entries)

    def ensure_schema(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    """
                    CREATE TABLE IF NOT EXISTS command_dead_letters (
                        command_id VARCHAR(128) PRIMARY KEY,
                        command_type VARCHAR(255) NOT NULL,
                        name VARCHAR(255) NOT NULL,
                        command_json TEXT NOT NULL,
                        error TEXT NOT NULL,
                        error_type VARCHAR(255) NOT NULL,
                        failed_at VARCHAR(64) NOT NULL,
                        attempts INTEGER NOT NULL
                    )
                    """
                )
            )
            conn.execute(
                text(
                    """
                    CREATE INDEX IF NOT EXISTS ix_command_dead_letters_failed_at
                    ON command_dead_letters (failed_at)
                    """
                )
            )

    def record(self, command, error, failed_at=None, reason=None) -> DeadLetterEntry:
        entry = build_entry(command, error, failed_at=failed_at, reason=reason)
        record = serialize_command(command)
        # a row that cannot be rebuilt could never be listed or retried
        deserialize_command(record, self.registry)
        with self.engine.begin() as conn:
            conn.execute(
                text("DELETE FROM command_dead_letters WHERE command_id = :command_id"),
                {"command_id": entry.command_id},
            )
            conn.execute(
                text(
                    """
                    INSERT INTO command_dead_letters (
                        command_id, command_type, name, command_json,
                        error, error_type, failed_at, attempts
                    ) VALUES (
                        :command_id, :command_type, :name, :command_json,
                        :error, :error_type, :failed_at, :attempts
                    )
                    """
                ),
                {
                    "command_id": entry.command_id,
                    "command_type": command.metadata.command_type,
                    "name": command.name,
                    "command_json": json.dumps(record),
                    "error": entry.error,
                    "error_type": entry.error_type,
                    "failed_at": _timestamp(entry.failed_at),
                    "attempts": entry.attempts,
                },
            )
            if self.max_entries is not None:
                self._evict_overflow(conn)
        return entry

    def _evict_overflow(self, conn) -> None:
        rows = conn.execute(
            text("SELECT command_id FROM command_dead_letters ORDER BY failed_at DESC, command_id DESC")
        ).fetchall()
        for row in rows[self.max_entries:]:
            logger.warning("Dead-letter store full; evicted oldest entry %s", row.command_id)
            conn.execute(
                text("DELETE FROM command_dead_letters WHERE command_id = :command_id"),
                {"command_id": row.command_id},
            )

    def _row_to_entry(self, row) -> Optional[DeadLetterEntry]:
        try:
            command = deserialize_command(json.loads(row.command_json), self.registry)
        except (CommandSerializationError, ValueError) as exc:
            logger.error("Cannot rebuild dead-lettered command %s: %s", row.command_id, exc)
            return None
        return DeadLetterEntry(
            command=command,
            error=row.error,
            error_type=row.error_type,
            failed_at=datetime.fromisoformat(row.failed_at),
            attempts=int(row.attempts),
        )

    def list(self, limit: Optional[int] = None) -> List[DeadLetterEntry]:
        query = "SELECT * FROM command_dead_letters ORDER BY failed_at DESC, command_id DESC"
        params = {}
        if limit is not None:
            query += " LIMIT :limit"
            params["limit"] = int(limit)
        with self.engine.begin() as conn:
            rows = conn.execute(text(query), params).fetchall()
        entries = [self._row_to_entry(row) for row in rows]
        return [entry for entry in entries if entry is not None]

    def get(self, command_id: str) -> Optional[DeadLetterEntry]:
        with self.engine.begin() as conn:
            row = conn.execute(
                text("SELECT * FROM command_dead_letters WHERE command_id = :command_id"),
                {"command_id": command_id},
            ).first()
        return self._row_to_entry(row) if row else None

    def remove(self, command_id: str) -> Optional[DeadLetterEntry]:
        entry = self.get(command_id)
        if entry is None:
            return None
        with self.engine.begin() as conn:
            conn.execute(
                text("DELETE FROM command_dead_letters WHERE command_id = :command_id"),
                {"command_id": command_id},
            )
        return entry

    def purge(self, command_id: Optional[str] = None, older_than: Optional[datetime] = None) -> int:
        clauses = []
        params = {}
        if command_id is not None:
            clauses.append("command_id = :command_id")
            params["command_id"] = command_id
        if older_than is not None:
            clauses.append("failed_at < :older_than")
            params["older_than"] = _timestamp(older_than)
        query = "DELETE FROM command_dead_letters"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        with self.engine.begin() as conn:
            result = conn.execute(text(query), params)
        return int(result.rowcount or 0)

    def count(self) -> int:
        with self.engine.begin() as conn:
            return int(conn.execute(text("SELECT COUNT(*) FROM command_dead_letters")).scalar_one())
