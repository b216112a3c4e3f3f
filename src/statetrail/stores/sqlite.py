"""
SQLite store implementations.

Lightweight legacy source and target store using SQLite with async
support via aiosqlite.

This implementation is suitable for:
- Development and testing environments
- Rehearsing a migration against a local snapshot

For production migrations use the PostgreSQL stores.

SQLite-specific adaptations:
- Durable ids stored as TEXT
- Timestamps stored as TEXT in ISO 8601 format
- JSON metadata stored as TEXT
- Booleans stored as INTEGER
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any, Self, TypeVar

import aiosqlite

from statetrail.exceptions import TransientStoreError
from statetrail.models import TARGET_DIRECT, TARGET_HISTORY, LookupKind
from statetrail.observability import (
    ATTR_BATCH_SIZE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_LOOKUP_KIND,
    ATTR_OFFSET,
    ATTR_RECORD_COUNT,
    ATTR_TARGET_TABLE,
    Tracer,
    create_tracer,
)
from statetrail.records import (
    CanonicalState,
    DirectStateRecord,
    LegacyStateRecord,
    StateHistoryRecord,
)
from statetrail.schemas import SchemaName, get_schema
from statetrail.stores.interface import LOOKUP_SOURCES, RowOutcome

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", DirectStateRecord, StateHistoryRecord)

_DIRECT_COLUMNS = (
    "legacy_state_id",
    "order_id",
    "status_code",
    "is_active",
    "changed_by_id",
    "changed_at",
    "notes",
    "metadata",
    "legacy_instruction_id",
    "legacy_actor_id",
)

_HISTORY_COLUMNS = (
    "legacy_state_id",
    "order_id",
    "from_state_id",
    "to_state_id",
    "changed_by_id",
    "duration_minutes",
    "notes",
    "metadata",
    "created_at",
)

_TRANSIENT_MARKERS = ("locked", "busy")


def _is_transient_operational_error(error: aiosqlite.OperationalError) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def _to_sqlite_row(row: dict[str, Any], columns: Sequence[str]) -> tuple[Any, ...]:
    values = []
    for column in columns:
        value = row[column]
        if column == "metadata":
            value = json.dumps(value)
        elif column in ("changed_at", "created_at"):
            value = value.isoformat()
        elif column == "is_active":
            value = int(value)
        values.append(value)
    return tuple(values)


class _SQLiteStore:
    """
    Connection lifecycle shared by the SQLite stores.

    Attributes:
        _database: Path to SQLite file or ':memory:' for in-memory database
        _busy_timeout: Timeout in ms for busy database
        _connection: The aiosqlite connection (set after connect/initialize)
        _write_lock: Serializes write transactions on the shared connection
    """

    _schema: SchemaName = "all"

    def __init__(
        self,
        database: str,
        *,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._database = database
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def __aenter__(self) -> Self:
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (busy_timeout=%d)",
            self._database,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """
        Close the database connection.

        Safe to call multiple times.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """
        Create the store's tables if they don't exist.

        This method is idempotent - safe to call multiple times.
        """
        if self._connection is None:
            await self._connect()

        assert self._connection is not None

        await self._connection.executescript(get_schema(self._schema, backend="sqlite"))
        await self._connection.commit()

        logger.info("Initialized SQLite %s schema: %s", self._schema, self._database)

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The active database connection.

        Raises:
            RuntimeError: If not connected
        """
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call 'initialize()' first."
            )
        return self._connection

    async def _fetch_scalar(self, query: str, operation: str) -> int:
        with self._tracer.span(
            f"statetrail.sqlite.{operation}",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_OPERATION: operation},
        ):
            async with self.connection.execute(query) as cursor:
                row = await cursor.fetchone()
            return int(row[0]) if row is not None else 0


class SQLiteLegacySource(_SQLiteStore):
    """
    SQLite implementation of the legacy state source.

    Reads ``dispatch_state`` with deterministic primary-key ordering.

    Example:
        >>> async with SQLiteLegacySource("legacy.db") as source:
        ...     total = await source.count_records()
        ...     page = await source.read_page(0, 100)
    """

    _schema: SchemaName = "legacy"

    async def count_records(self) -> int:
        """Count all legacy state records."""
        return await self._fetch_scalar("SELECT COUNT(*) FROM dispatch_state", "count_records")

    async def read_page(self, offset: int, limit: int) -> list[LegacyStateRecord]:
        """Read one page of records ordered by primary key ascending."""
        with self._tracer.span(
            "statetrail.sqlite.read_page",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_OFFSET: offset, ATTR_BATCH_SIZE: limit},
        ):
            try:
                async with self.connection.execute(
                    """
                    SELECT id, instruction_id, status, "on", changed_at, actor_id
                    FROM dispatch_state
                    ORDER BY id ASC
                    LIMIT ? OFFSET ?
                    """,
                    (limit, offset),
                ) as cursor:
                    rows = await cursor.fetchall()
            except aiosqlite.OperationalError as e:
                if _is_transient_operational_error(e):
                    raise TransientStoreError(str(e), cause=e) from e
                raise
            return [LegacyStateRecord.from_row(row) for row in rows]


class SQLiteTargetStore(_SQLiteStore):
    """
    SQLite implementation of the target store.

    Bulk inserts run in a single transaction with one savepoint per row,
    so a constraint violation rejects only the offending row.

    Example:
        >>> async with SQLiteTargetStore("target.db") as target:
        ...     await target.initialize()
        ...     states = await target.fetch_canonical_states()
    """

    _schema: SchemaName = "target"

    async def fetch_legacy_id_map(self, kind: LookupKind) -> list[tuple[int, str]]:
        """Read (legacy id, durable id) pairs for a lookup kind."""
        table, column = LOOKUP_SOURCES[kind]
        with self._tracer.span(
            "statetrail.sqlite.fetch_legacy_id_map",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_LOOKUP_KIND: kind.value},
        ):
            async with self.connection.execute(
                f"SELECT {column}, id FROM {table} WHERE {column} IS NOT NULL ORDER BY rowid"
            ) as cursor:
                rows = await cursor.fetchall()
            return [(int(row[0]), str(row[1])) for row in rows]

    async def fetch_canonical_states(self) -> list[CanonicalState]:
        """Read the active canonical workflow states."""
        with self._tracer.span(
            "statetrail.sqlite.fetch_canonical_states",
            {ATTR_DB_SYSTEM: "sqlite"},
        ):
            async with self.connection.execute(
                """
                SELECT id, key, name, sequence_order, is_active
                FROM order_states
                WHERE is_active = 1
                """
            ) as cursor:
                rows = await cursor.fetchall()
            return [CanonicalState.from_row(row) for row in rows]

    async def insert_direct_records(
        self,
        records: Sequence[DirectStateRecord],
    ) -> list[RowOutcome[DirectStateRecord]]:
        """Bulk insert into ``instruction_states``."""
        return await self._insert_rows(TARGET_DIRECT, _DIRECT_COLUMNS, records)

    async def insert_history_records(
        self,
        records: Sequence[StateHistoryRecord],
    ) -> list[RowOutcome[StateHistoryRecord]]:
        """Bulk insert into ``order_state_history``."""
        return await self._insert_rows(TARGET_HISTORY, _HISTORY_COLUMNS, records)

    async def count_direct_records(self) -> int:
        """Count ``instruction_states`` rows carrying a legacy state id."""
        return await self._fetch_scalar(
            "SELECT COUNT(*) FROM instruction_states WHERE legacy_state_id IS NOT NULL",
            "count_direct_records",
        )

    async def count_history_records(self) -> int:
        """Count ``order_state_history`` rows."""
        return await self._fetch_scalar(
            "SELECT COUNT(*) FROM order_state_history",
            "count_history_records",
        )

    async def count_missing_order_links(self) -> int:
        """Count ``instruction_states`` rows whose order does not exist."""
        return await self._fetch_scalar(
            """
            SELECT COUNT(*)
            FROM instruction_states s
            LEFT JOIN orders o ON o.id = s.order_id
            WHERE s.legacy_state_id IS NOT NULL AND o.id IS NULL
            """,
            "count_missing_order_links",
        )

    async def count_orphan_history_records(self) -> int:
        """Count ``order_state_history`` rows without a matching direct row."""
        return await self._fetch_scalar(
            """
            SELECT COUNT(*)
            FROM order_state_history h
            LEFT JOIN instruction_states s ON s.legacy_state_id = h.legacy_state_id
            WHERE h.legacy_state_id IS NOT NULL AND s.id IS NULL
            """,
            "count_orphan_history_records",
        )

    async def _insert_rows(
        self,
        table: str,
        columns: Sequence[str],
        records: Sequence[PayloadT],
    ) -> list[RowOutcome[PayloadT]]:
        if not records:
            return []

        conn = self.connection
        placeholders = ", ".join("?" for _ in columns)
        statement = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"

        with self._tracer.span(
            "statetrail.sqlite.insert",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_TARGET_TABLE: table,
                ATTR_RECORD_COUNT: len(records),
            },
        ):
            async with self._write_lock:
                outcomes: list[RowOutcome[PayloadT]] = []
                try:
                    await conn.execute("BEGIN")
                    for record in records:
                        await conn.execute("SAVEPOINT statetrail_row")
                        try:
                            await conn.execute(statement, _to_sqlite_row(record.to_row(), columns))
                        except aiosqlite.IntegrityError as e:
                            await conn.execute("ROLLBACK TO SAVEPOINT statetrail_row")
                            outcomes.append(RowOutcome(payload=record, success=False, error=str(e)))
                        else:
                            outcomes.append(RowOutcome(payload=record, success=True))
                        await conn.execute("RELEASE SAVEPOINT statetrail_row")
                    await conn.commit()
                except aiosqlite.OperationalError as e:
                    await conn.rollback()
                    if _is_transient_operational_error(e):
                        raise TransientStoreError(
                            f"Bulk insert into {table} failed: {e}", cause=e
                        ) from e
                    raise
                except BaseException:
                    # Includes cancellation by a call timeout
                    if conn.in_transaction:
                        await conn.rollback()
                    raise

                logger.debug(
                    "Inserted %d/%d rows into %s",
                    sum(1 for outcome in outcomes if outcome.success),
                    len(records),
                    table,
                )
                return outcomes


__all__ = [
    "SQLiteLegacySource",
    "SQLiteTargetStore",
]
