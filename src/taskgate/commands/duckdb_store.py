"""DuckDB-backed command store.

Each transition is a single conditional ``UPDATE ... WHERE id = ? AND status = ?``.
When no row comes back the precondition failed and the row is re-read to report
CommandNotFoundError or CommandConflictError precisely.

DuckDB calls are blocking, so they run in a worker thread via
``asyncio.to_thread``; an ``asyncio.Lock`` keeps one statement on the
connection at a time.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import duckdb

from taskgate.commands.errors import CommandNotFoundError, ExternalDependencyError
from taskgate.commands.records import TRANSITIONS, CommandRecord, CommandStatus
from taskgate.commands.store import CommandStore
from taskgate.db.connection import init_db

logger = logging.getLogger(__name__)

COLUMNS = (
    "id",
    "created_at",
    "updated_at",
    "source",
    "title",
    "details",
    "status",
    "requires_confirmation",
    "confirmation_prompt",
    "memos_query",
    "memos_context",
    "created_by",
    "confirmed_by",
    "confirmed_at",
    "started_by",
    "started_at",
    "finished_by",
    "finished_at",
    "result",
    "error",
)
_COLUMN_LIST = ", ".join(COLUMNS)
_TIMESTAMP_COLUMNS = {"created_at", "updated_at", "confirmed_at", "started_at", "finished_at"}


def _to_db_timestamp(value: datetime | None) -> datetime | None:
    # Stored as naive UTC TIMESTAMP
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def _from_db_timestamp(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_db_value(column: str, value: Any) -> Any:
    if column in _TIMESTAMP_COLUMNS:
        return _to_db_timestamp(value)
    if isinstance(value, CommandStatus):
        return value.value
    return value


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _row_to_record(row: tuple) -> CommandRecord:
    """Map a row selected with COLUMNS to a record, turning NULL text into ''."""
    data = dict(zip(COLUMNS, row, strict=True))
    return CommandRecord(
        id=str(data["id"]),
        created_at=_from_db_timestamp(data["created_at"]),
        updated_at=_from_db_timestamp(data["updated_at"]),
        source=_text(data["source"]),
        title=_text(data["title"]),
        details=_text(data["details"]),
        status=CommandStatus(data["status"]),
        requires_confirmation=bool(data["requires_confirmation"]),
        confirmation_prompt=_text(data["confirmation_prompt"]),
        memos_query=_text(data["memos_query"]),
        memos_context=_text(data["memos_context"]),
        created_by=_text(data["created_by"]),
        confirmed_by=_text(data["confirmed_by"]),
        confirmed_at=_from_db_timestamp(data["confirmed_at"]),
        started_by=_text(data["started_by"]),
        started_at=_from_db_timestamp(data["started_at"]),
        finished_by=_text(data["finished_by"]),
        finished_at=_from_db_timestamp(data["finished_at"]),
        result=_text(data["result"]),
        error=_text(data["error"]),
    )


class DuckDBCommandStore(CommandStore):
    """Durable command store on an embedded DuckDB database."""

    mode = "duckdb"

    def __init__(self, db_path: str) -> None:
        super().__init__()
        self.db_path = db_path
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        """Connect and create the schema if absent.

        Raises:
            ExternalDependencyError: If the database cannot be opened or migrated.
        """
        try:
            self._conn = await asyncio.to_thread(init_db, self.db_path)
        except (duckdb.Error, OSError) as e:
            raise ExternalDependencyError(
                f"Failed to initialize DuckDB store at {self.db_path}: {e}"
            ) from e
        logger.info("DuckDB command store ready at %s", self.db_path)

    async def close(self) -> None:
        if self._conn is not None:
            async with self._lock:
                await asyncio.to_thread(self._conn.close)
            self._conn = None

    async def _fetch(self, sql: str, params: list[Any]) -> list[tuple]:
        if self._conn is None:
            raise ExternalDependencyError("DuckDB command store is not initialized.")
        conn = self._conn

        def run() -> list[tuple]:
            return conn.execute(sql, params).fetchall()

        async with self._lock:
            try:
                return await asyncio.to_thread(run)
            except duckdb.Error as e:
                raise ExternalDependencyError(f"DuckDB operation failed: {e}") from e

    async def get(self, command_id: str) -> CommandRecord | None:
        rows = await self._fetch(
            f"SELECT {_COLUMN_LIST} FROM agent_commands WHERE id = ? LIMIT 1",
            [str(command_id or "").strip()],
        )
        return _row_to_record(rows[0]) if rows else None

    async def _select(
        self, status: CommandStatus | None, limit: int, oldest_first: bool = False
    ) -> list[CommandRecord]:
        order = "ASC" if oldest_first else "DESC"
        if status is not None:
            rows = await self._fetch(
                f"SELECT {_COLUMN_LIST} FROM agent_commands "
                f"WHERE status = ? ORDER BY created_at {order} LIMIT ?",
                [status.value, limit],
            )
        else:
            rows = await self._fetch(
                f"SELECT {_COLUMN_LIST} FROM agent_commands ORDER BY created_at {order} LIMIT ?",
                [limit],
            )
        return [_row_to_record(row) for row in rows]

    async def _insert(self, record: CommandRecord) -> None:
        values = [_to_db_value(column, getattr(record, column)) for column in COLUMNS]
        placeholders = ", ".join("?" for _ in COLUMNS)
        await self._fetch(
            f"INSERT INTO agent_commands ({_COLUMN_LIST}) VALUES ({placeholders}) "
            f"RETURNING id",
            values,
        )

    async def _transition(
        self, command_id: str, action: str, changes: dict[str, Any]
    ) -> CommandRecord:
        expected, target = TRANSITIONS[action]
        assignments = {"status": target, **changes}
        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        params = [_to_db_value(column, value) for column, value in assignments.items()]
        rows = await self._fetch(
            f"UPDATE agent_commands SET {set_clause} "
            f"WHERE id = ? AND status = ? RETURNING {_COLUMN_LIST}",
            [*params, command_id, expected.value],
        )
        if rows:
            return _row_to_record(rows[0])
        raise await self._precondition_error(command_id, action)

    async def _patch(self, command_id: str, changes: dict[str, Any]) -> CommandRecord:
        set_clause = ", ".join(f"{column} = ?" for column in changes)
        params = [_to_db_value(column, value) for column, value in changes.items()]
        rows = await self._fetch(
            f"UPDATE agent_commands SET {set_clause} WHERE id = ? RETURNING {_COLUMN_LIST}",
            [*params, command_id],
        )
        if not rows:
            raise CommandNotFoundError()
        return _row_to_record(rows[0])

