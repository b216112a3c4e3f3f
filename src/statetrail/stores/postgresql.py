"""
PostgreSQL store implementations.

Production stores built on SQLAlchemy's async engine with the asyncpg
driver. Both stores accept either an AsyncEngine or an AsyncConnection;
when given a connection the caller owns the transaction.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Sequence
from typing import Any, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from statetrail.models import TARGET_DIRECT, TARGET_HISTORY, LookupKind
from statetrail.observability import (
    ATTR_BATCH_SIZE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_LOOKUP_KIND,
    ATTR_OFFSET,
    ATTR_RECORD_COUNT,
    ATTR_ROWS_FAILED,
    ATTR_ROWS_WRITTEN,
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
from statetrail.stores._connection import connection_scope
from statetrail.stores.interface import LOOKUP_SOURCES, RowOutcome

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", DirectStateRecord, StateHistoryRecord)

_DIRECT_INSERT = text("""
    INSERT INTO instruction_states (
        legacy_state_id, order_id, status_code, is_active, changed_by_id,
        changed_at, notes, metadata, legacy_instruction_id, legacy_actor_id
    ) VALUES (
        :legacy_state_id, :order_id, :status_code, :is_active, :changed_by_id,
        :changed_at, :notes, :metadata, :legacy_instruction_id, :legacy_actor_id
    )
""")

_HISTORY_INSERT = text("""
    INSERT INTO order_state_history (
        legacy_state_id, order_id, from_state_id, to_state_id, changed_by_id,
        duration_minutes, notes, metadata, created_at
    ) VALUES (
        :legacy_state_id, :order_id, :from_state_id, :to_state_id, :changed_by_id,
        :duration_minutes, :notes, :metadata, :created_at
    )
""")


def _to_params(row: dict[str, Any]) -> dict[str, Any]:
    params = dict(row)
    params["metadata"] = json.dumps(params["metadata"])
    return params


class PostgreSQLLegacySource:
    """
    PostgreSQL implementation of the legacy state source.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> source = PostgreSQLLegacySource(engine)
        >>> page = await source.read_page(0, 100)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the legacy source.

        Args:
            conn: Database connection or engine
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn

    async def count_records(self) -> int:
        """Count all legacy state records."""
        with self._tracer.span(
            "statetrail.postgresql.count_records",
            {ATTR_DB_SYSTEM: "postgresql", ATTR_DB_OPERATION: "SELECT"},
        ):
            async with connection_scope(self._conn, "count_records") as conn:
                result = await conn.execute(text("SELECT COUNT(*) FROM dispatch_state"))
                return int(result.scalar_one())

    async def read_page(self, offset: int, limit: int) -> list[LegacyStateRecord]:
        """Read one page of records ordered by primary key ascending."""
        with self._tracer.span(
            "statetrail.postgresql.read_page",
            {
                ATTR_DB_SYSTEM: "postgresql",
                ATTR_DB_OPERATION: "SELECT",
                ATTR_OFFSET: offset,
                ATTR_BATCH_SIZE: limit,
            },
        ):
            query = text("""
                SELECT id, instruction_id, status, "on", changed_at, actor_id
                FROM dispatch_state
                ORDER BY id ASC
                LIMIT :limit OFFSET :offset
            """)
            async with connection_scope(self._conn, "read_page") as conn:
                result = await conn.execute(query, {"limit": limit, "offset": offset})
                rows = result.mappings().all()
            return [LegacyStateRecord.from_row(row) for row in rows]


class PostgreSQLTargetStore:
    """
    PostgreSQL implementation of the target store.

    Bulk inserts try a single multi-row statement first. If a constraint
    violation rejects it, the batch is replayed row by row inside nested
    transactions so that only the offending rows fail.

    On a single shared AsyncConnection, inserts into the two target tables
    are serialised, since their savepoints cannot interleave on one
    connection. On an engine each insert gets its own connection.

    Example:
        >>> async with engine.begin() as conn:
        ...     target = PostgreSQLTargetStore(conn)
        ...     outcomes = await target.insert_direct_records(records)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the target store.

        Args:
            conn: Database connection or engine
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn
        self._write_lock = asyncio.Lock()

    async def fetch_legacy_id_map(self, kind: LookupKind) -> list[tuple[int, str]]:
        """Read (legacy id, durable id) pairs for a lookup kind."""
        table, column = LOOKUP_SOURCES[kind]
        with self._tracer.span(
            "statetrail.postgresql.fetch_legacy_id_map",
            {
                ATTR_DB_SYSTEM: "postgresql",
                ATTR_DB_OPERATION: "SELECT",
                ATTR_LOOKUP_KIND: kind.value,
            },
        ):
            query = text(f"""
                SELECT {column}, id FROM {table}
                WHERE {column} IS NOT NULL
                ORDER BY id
            """)  # nosec B608 - table and column from LOOKUP_SOURCES
            async with connection_scope(self._conn, f"fetch {table}") as conn:
                result = await conn.execute(query)
                rows = result.fetchall()
            return [(int(row[0]), str(row[1])) for row in rows]

    async def fetch_canonical_states(self) -> list[CanonicalState]:
        """Read the active canonical workflow states."""
        with self._tracer.span(
            "statetrail.postgresql.fetch_canonical_states",
            {ATTR_DB_SYSTEM: "postgresql", ATTR_DB_OPERATION: "SELECT"},
        ):
            query = text("""
                SELECT id, key, name, sequence_order, is_active
                FROM order_states
                WHERE is_active = true
            """)
            async with connection_scope(self._conn, "fetch_canonical_states") as conn:
                result = await conn.execute(query)
                rows = result.mappings().all()
            return [CanonicalState.from_row(row) for row in rows]

    async def insert_direct_records(
        self,
        records: Sequence[DirectStateRecord],
    ) -> list[RowOutcome[DirectStateRecord]]:
        """Bulk insert into ``instruction_states``."""
        return await self._insert_rows(TARGET_DIRECT, _DIRECT_INSERT, records)

    async def insert_history_records(
        self,
        records: Sequence[StateHistoryRecord],
    ) -> list[RowOutcome[StateHistoryRecord]]:
        """Bulk insert into ``order_state_history``."""
        return await self._insert_rows(TARGET_HISTORY, _HISTORY_INSERT, records)

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

    async def _fetch_scalar(self, query: str, operation: str) -> int:
        with self._tracer.span(
            f"statetrail.postgresql.{operation}",
            {ATTR_DB_SYSTEM: "postgresql", ATTR_DB_OPERATION: "SELECT"},
        ):
            async with connection_scope(self._conn, operation) as conn:
                result = await conn.execute(text(query))
                return int(result.scalar_one())

    async def _insert_rows(
        self,
        table: str,
        statement: Any,
        records: Sequence[PayloadT],
    ) -> list[RowOutcome[PayloadT]]:
        if not records:
            return []

        params = [_to_params(record.to_row()) for record in records]

        with self._tracer.span(
            "statetrail.postgresql.insert",
            {
                ATTR_DB_SYSTEM: "postgresql",
                ATTR_DB_OPERATION: "INSERT",
                ATTR_TARGET_TABLE: table,
                ATTR_RECORD_COUNT: len(records),
            },
        ) as span:
            async with (
                self._shared_connection_lock(),
                connection_scope(self._conn, f"insert into {table}", write=True) as conn,
            ):
                try:
                    async with conn.begin_nested():
                        await conn.execute(statement, params)
                    outcomes = [RowOutcome(payload=record, success=True) for record in records]
                except IntegrityError:
                    logger.debug("Multi-row insert into %s rejected, retrying row by row", table)
                    outcomes = await self._insert_individually(conn, statement, records, params)

            written = sum(1 for outcome in outcomes if outcome.success)
            if span is not None:
                span.set_attribute(ATTR_ROWS_WRITTEN, written)
                span.set_attribute(ATTR_ROWS_FAILED, len(outcomes) - written)
            return outcomes

    def _shared_connection_lock(self) -> contextlib.AbstractAsyncContextManager[Any]:
        if isinstance(self._conn, AsyncConnection):
            return self._write_lock
        return contextlib.nullcontext()

    async def _insert_individually(
        self,
        conn: AsyncConnection,
        statement: Any,
        records: Sequence[PayloadT],
        params: list[dict[str, Any]],
    ) -> list[RowOutcome[PayloadT]]:
        outcomes: list[RowOutcome[PayloadT]] = []
        for record, row_params in zip(records, params, strict=True):
            try:
                async with conn.begin_nested():
                    await conn.execute(statement, row_params)
            except IntegrityError as e:
                outcomes.append(RowOutcome(payload=record, success=False, error=str(e.orig)))
            else:
                outcomes.append(RowOutcome(payload=record, success=True))
        return outcomes


__all__ = [
    "PostgreSQLLegacySource",
    "PostgreSQLTargetStore",
]
