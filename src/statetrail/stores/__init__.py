"""
Store boundaries and implementations.

Protocols:
    - LegacyStateSource: read-only access to ``dispatch_state``
    - TargetStore: lookups, bulk inserts and validation queries

Implementations:
    - InMemoryLegacySource / InMemoryTargetStore
    - SQLiteLegacySource / SQLiteTargetStore
    - PostgreSQLLegacySource / PostgreSQLTargetStore
"""

from statetrail.stores.in_memory import (
    CANONICAL_STATES_LOOKUP,
    InMemoryLegacySource,
    InMemoryTargetStore,
)
from statetrail.stores.interface import (
    LOOKUP_SOURCES,
    LegacyStateSource,
    RowOutcome,
    TargetStore,
)
from statetrail.stores.postgresql import PostgreSQLLegacySource, PostgreSQLTargetStore
from statetrail.stores.sqlite import SQLiteLegacySource, SQLiteTargetStore

__all__ = [
    # Interfaces
    "LOOKUP_SOURCES",
    "LegacyStateSource",
    "RowOutcome",
    "TargetStore",
    # In-memory
    "CANONICAL_STATES_LOOKUP",
    "InMemoryLegacySource",
    "InMemoryTargetStore",
    # SQLite
    "SQLiteLegacySource",
    "SQLiteTargetStore",
    # PostgreSQL
    "PostgreSQLLegacySource",
    "PostgreSQLTargetStore",
]
