"""
Store boundaries for the state migration engine.

The engine talks to two stores through these protocols:

- LegacyStateSource: the read-only legacy store holding ``dispatch_state``.
  No writes ever occur against it.
- TargetStore: the new store. It provides the lookup tables (profiles,
  orders, order_states), bulk inserts into the two target tables, and the
  aggregate queries used by the validator.

Implementations:
    - InMemoryLegacySource / InMemoryTargetStore (statetrail.stores.in_memory)
    - SQLiteLegacySource / SQLiteTargetStore (statetrail.stores.sqlite)
    - PostgreSQLLegacySource / PostgreSQLTargetStore (statetrail.stores.postgresql)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar, runtime_checkable

from statetrail.models import LookupKind
from statetrail.records import (
    CanonicalState,
    DirectStateRecord,
    LegacyStateRecord,
    StateHistoryRecord,
)

PayloadT = TypeVar("PayloadT", DirectStateRecord, StateHistoryRecord)

# Columns holding the legacy integer id for each lookup kind.
LOOKUP_SOURCES: dict[LookupKind, tuple[str, str]] = {
    LookupKind.ACTOR: ("profiles", "legacy_user_id"),
    LookupKind.ORDER: ("orders", "legacy_instruction_id"),
}


@dataclass(frozen=True)
class RowOutcome(Generic[PayloadT]):
    """
    Result of one attempted row in a bulk insert.

    Attributes:
        payload: The payload that was attempted.
        success: Whether the row was persisted.
        error: Error text when the row was rejected.
    """

    payload: PayloadT
    success: bool
    error: str | None = None


@runtime_checkable
class LegacyStateSource(Protocol):
    """
    Read-only access to legacy state records.
    """

    async def count_records(self) -> int:
        """
        Count all legacy state records.

        Returns:
            Total number of records.
        """
        ...

    async def read_page(self, offset: int, limit: int) -> list[LegacyStateRecord]:
        """
        Read one page of records ordered by primary key ascending.

        Args:
            offset: Number of records to skip.
            limit: Maximum number of records to return.

        Returns:
            Records of the page; empty once offset reaches the record count.
        """
        ...


@runtime_checkable
class TargetStore(Protocol):
    """
    Lookup reads, bulk writes and validation queries against the new store.
    """

    async def fetch_legacy_id_map(self, kind: LookupKind) -> list[tuple[int, str]]:
        """
        Read (legacy id, durable id) pairs for rows with a non-null legacy id.

        Args:
            kind: Which lookup to read.

        Returns:
            Pairs in primary-key order of the underlying table.
        """
        ...

    async def fetch_canonical_states(self) -> list[CanonicalState]:
        """
        Read the active canonical workflow states.

        Returns:
            Active states, in no guaranteed order.
        """
        ...

    async def insert_direct_records(
        self,
        records: Sequence[DirectStateRecord],
    ) -> list[RowOutcome[DirectStateRecord]]:
        """
        Bulk insert into ``instruction_states``.

        Args:
            records: Payloads to insert.

        Returns:
            One outcome per attempted row.

        Raises:
            Exception: When the bulk write fails as a whole.
        """
        ...

    async def insert_history_records(
        self,
        records: Sequence[StateHistoryRecord],
    ) -> list[RowOutcome[StateHistoryRecord]]:
        """
        Bulk insert into ``order_state_history``.

        Args:
            records: Payloads to insert.

        Returns:
            One outcome per attempted row.

        Raises:
            Exception: When the bulk write fails as a whole.
        """
        ...

    async def count_direct_records(self) -> int:
        """Count ``instruction_states`` rows carrying a legacy state id."""
        ...

    async def count_history_records(self) -> int:
        """Count ``order_state_history`` rows."""
        ...

    async def count_missing_order_links(self) -> int:
        """Count ``instruction_states`` rows whose order does not exist."""
        ...

    async def count_orphan_history_records(self) -> int:
        """Count ``order_state_history`` rows without a matching direct row."""
        ...


__all__ = [
    "LOOKUP_SOURCES",
    "RowOutcome",
    "LegacyStateSource",
    "TargetStore",
]
