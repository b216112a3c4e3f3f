"""
In-memory store implementations.

Useful for tests and dry runs. All data is lost when the process
terminates. The target store enforces the same ``legacy_state_id``
uniqueness the SQL schemas declare, and exposes failure-injection hooks so
tests can exercise partial-failure paths.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar
from uuid import uuid4

from statetrail.models import TARGET_DIRECT, TARGET_HISTORY, LookupKind
from statetrail.observability import (
    ATTR_BATCH_SIZE,
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
from statetrail.stores.interface import RowOutcome

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", DirectStateRecord, StateHistoryRecord)

CANONICAL_STATES_LOOKUP = "canonical_states"


class InMemoryLegacySource:
    """
    In-memory legacy state source.

    Example:
        >>> source = InMemoryLegacySource(records)
        >>> page = await source.read_page(0, 100)
    """

    def __init__(
        self,
        records: Iterable[LegacyStateRecord] = (),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the source.

        Args:
            records: Initial records, in any order.
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._records: dict[int, LegacyStateRecord] = {}
        self._read_failures: dict[int, BaseException] = {}
        self._lock = asyncio.Lock()
        self.add_records(records)

    def add_records(self, records: Iterable[LegacyStateRecord]) -> None:
        """Add records, replacing any with the same primary key."""
        for record in records:
            self._records[record.id] = record

    def fail_reads_at(self, offset: int, error: BaseException) -> None:
        """Make every read of the page starting at ``offset`` raise ``error``."""
        self._read_failures[offset] = error

    async def count_records(self) -> int:
        """Count all records."""
        with self._tracer.span(
            "statetrail.legacy_source.count_records",
            {ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                return len(self._records)

    async def read_page(self, offset: int, limit: int) -> list[LegacyStateRecord]:
        """
        Read one page ordered by primary key.

        Args:
            offset: Number of records to skip.
            limit: Maximum number of records to return.

        Returns:
            Records of the page.
        """
        with self._tracer.span(
            "statetrail.legacy_source.read_page",
            {ATTR_OFFSET: offset, ATTR_BATCH_SIZE: limit, ATTR_DB_SYSTEM: "memory"},
        ):
            if offset in self._read_failures:
                raise self._read_failures[offset]
            async with self._lock:
                ordered = [self._records[key] for key in sorted(self._records)]
            return ordered[offset : offset + limit]


class InMemoryTargetStore:
    """
    In-memory target store.

    Holds the lookup tables and the two output tables. Seed lookups with
    add_profile(), add_order() and add_state() before a run.

    Example:
        >>> target = InMemoryTargetStore()
        >>> order_id = target.add_order(legacy_instruction_id=42)
        >>> target.add_state(CanonicalState(id="s1", key="submitted", sequence_order=1))
    """

    def __init__(
        self,
        enforce_foreign_keys: bool = False,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an empty target store.

        Args:
            enforce_foreign_keys: Reject rows whose order_id is not a known order.
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._enforce_foreign_keys = enforce_foreign_keys
        self._profiles: list[tuple[int | None, str]] = []
        self._orders: list[tuple[int | None, str]] = []
        self._states: list[CanonicalState] = []
        self._direct: dict[int, DirectStateRecord] = {}
        self._history: dict[int, StateHistoryRecord] = {}
        self._lookup_failures: dict[str, BaseException] = {}
        self._insert_failures: dict[str, list[BaseException]] = {
            TARGET_DIRECT: [],
            TARGET_HISTORY: [],
        }
        self._row_rejections: dict[str, list[tuple[Callable[[object], bool], str]]] = {
            TARGET_DIRECT: [],
            TARGET_HISTORY: [],
        }
        self.insert_calls: dict[str, int] = {TARGET_DIRECT: 0, TARGET_HISTORY: 0}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Seeding and failure injection
    # ------------------------------------------------------------------

    def add_profile(self, legacy_user_id: int | None, profile_id: str | None = None) -> str:
        """Add a profile row and return its durable id."""
        profile_id = profile_id or str(uuid4())
        self._profiles.append((legacy_user_id, profile_id))
        return profile_id

    def add_order(self, legacy_instruction_id: int | None, order_id: str | None = None) -> str:
        """Add an order row and return its durable id."""
        order_id = order_id or str(uuid4())
        self._orders.append((legacy_instruction_id, order_id))
        return order_id

    def add_state(self, state: CanonicalState) -> None:
        """Add a canonical state."""
        self._states.append(state)

    def fail_lookup(self, lookup: LookupKind | str, error: BaseException) -> None:
        """
        Make a lookup read raise ``error``.

        Args:
            lookup: A LookupKind, or "canonical_states".
            error: Exception to raise.
        """
        key = lookup.value if isinstance(lookup, LookupKind) else lookup
        self._lookup_failures[key] = error

    def fail_next_inserts(self, target: str, error: BaseException, times: int = 1) -> None:
        """Make the next ``times`` bulk inserts into ``target`` raise ``error``."""
        self._insert_failures[target].extend([error] * times)

    def reject_rows(
        self,
        target: str,
        predicate: Callable[[object], bool],
        message: str = "row rejected",
    ) -> None:
        """Reject individual rows of ``target`` matching ``predicate``."""
        self._row_rejections[target].append((predicate, message))

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    @property
    def direct_rows(self) -> list[DirectStateRecord]:
        """Rows written to ``instruction_states``, by legacy id."""
        return [self._direct[key] for key in sorted(self._direct)]

    @property
    def history_rows(self) -> list[StateHistoryRecord]:
        """Rows written to ``order_state_history``, by legacy id."""
        return [self._history[key] for key in sorted(self._history)]

    # ------------------------------------------------------------------
    # TargetStore protocol
    # ------------------------------------------------------------------

    async def fetch_legacy_id_map(self, kind: LookupKind) -> list[tuple[int, str]]:
        """Read (legacy id, durable id) pairs for a lookup kind."""
        with self._tracer.span(
            "statetrail.target_store.fetch_legacy_id_map",
            {ATTR_LOOKUP_KIND: kind.value, ATTR_DB_SYSTEM: "memory"},
        ):
            if kind.value in self._lookup_failures:
                raise self._lookup_failures[kind.value]
            rows = self._profiles if kind == LookupKind.ACTOR else self._orders
            return [(legacy_id, durable_id) for legacy_id, durable_id in rows if legacy_id is not None]

    async def fetch_canonical_states(self) -> list[CanonicalState]:
        """Read active canonical states."""
        with self._tracer.span(
            "statetrail.target_store.fetch_canonical_states",
            {ATTR_DB_SYSTEM: "memory"},
        ):
            if CANONICAL_STATES_LOOKUP in self._lookup_failures:
                raise self._lookup_failures[CANONICAL_STATES_LOOKUP]
            return [state for state in self._states if state.is_active]

    async def insert_direct_records(
        self,
        records: Sequence[DirectStateRecord],
    ) -> list[RowOutcome[DirectStateRecord]]:
        """Bulk insert into ``instruction_states``."""
        return await self._insert(TARGET_DIRECT, self._direct, records)

    async def insert_history_records(
        self,
        records: Sequence[StateHistoryRecord],
    ) -> list[RowOutcome[StateHistoryRecord]]:
        """Bulk insert into ``order_state_history``."""
        return await self._insert(TARGET_HISTORY, self._history, records)

    async def count_direct_records(self) -> int:
        """Count ``instruction_states`` rows."""
        return len(self._direct)

    async def count_history_records(self) -> int:
        """Count ``order_state_history`` rows."""
        return len(self._history)

    async def count_missing_order_links(self) -> int:
        """Count direct rows whose order does not exist."""
        known = {durable_id for _, durable_id in self._orders}
        return sum(1 for row in self._direct.values() if row.order_id not in known)

    async def count_orphan_history_records(self) -> int:
        """Count history rows without a matching direct row."""
        return sum(1 for key in self._history if key not in self._direct)

    async def _insert(
        self,
        target: str,
        table: dict[int, PayloadT],
        records: Sequence[PayloadT],
    ) -> list[RowOutcome[PayloadT]]:
        with self._tracer.span(
            "statetrail.target_store.insert",
            {
                ATTR_TARGET_TABLE: target,
                ATTR_RECORD_COUNT: len(records),
                ATTR_DB_SYSTEM: "memory",
            },
        ):
            async with self._lock:
                self.insert_calls[target] += 1
                pending = self._insert_failures[target]
                if pending:
                    raise pending.pop(0)

                known_orders = {durable_id for _, durable_id in self._orders}
                outcomes: list[RowOutcome[PayloadT]] = []
                for record in records:
                    error = self._row_error(target, table, record, known_orders)
                    if error is None:
                        table[record.legacy_state_id] = record
                        outcomes.append(RowOutcome(payload=record, success=True))
                    else:
                        outcomes.append(RowOutcome(payload=record, success=False, error=error))
                return outcomes

    def _row_error(
        self,
        target: str,
        table: dict[int, PayloadT],
        record: PayloadT,
        known_orders: set[str],
    ) -> str | None:
        for predicate, message in self._row_rejections[target]:
            if predicate(record):
                return message
        if record.legacy_state_id in table:
            return (
                f'duplicate key value violates unique constraint "{target}_legacy_state_id_key"'
            )
        if self._enforce_foreign_keys and record.order_id not in known_orders:
            return f'insert or update on table "{target}" violates foreign key constraint'
        return None


__all__ = [
    "CANONICAL_STATES_LOOKUP",
    "InMemoryLegacySource",
    "InMemoryTargetStore",
]
