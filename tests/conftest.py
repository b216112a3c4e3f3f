"""
Shared pytest fixtures for the statetrail tests.

This module provides:
- Record factories (make_record, build_contiguous_records, build_interleaved_records)
- Canonical state, lookup table and status mapping fixtures
- In-memory store fixtures (legacy_source, target_store, seeded_target)
- Tracer fixtures (mock_tracer)
- SQLite fixtures (sqlite_connection) with availability checks
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Iterable
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

from statetrail.migration.resolver import IdentifierMappings, LookupStatus, LookupTable
from statetrail.migration.status_mapping import StatusMappingTable, build_mapping_table
from statetrail.models import LookupKind
from statetrail.observability import MockTracer
from statetrail.records import CanonicalState, LegacyStateRecord
from statetrail.stores.in_memory import InMemoryLegacySource, InMemoryTargetStore

if TYPE_CHECKING:
    import aiosqlite

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite

    AIOSQLITE_AVAILABLE = True
except ImportError:
    aiosqlite = None  # type: ignore[assignment]


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# ============================================================================
# Sample Data
# ============================================================================

BASE_TIME = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)

STATE_SUBMITTED = "state-submitted"
STATE_IN_PROGRESS = "state-in-progress"
STATE_COMPLETED = "state-completed"
STATE_CANCELLED = "state-cancelled"

# Status codes per step for the five records of each scenario order.
SCENARIO_STATUS_CODES = (1, 2, 3, 4, 5)
SCENARIO_MINUTE_OFFSETS = (0, 10, 25, 60, 90)


def canonical_states() -> list[CanonicalState]:
    """The four canonical workflow states used throughout the tests."""
    return [
        CanonicalState(id=STATE_SUBMITTED, key="submitted", sequence_order=1, name="Submitted"),
        CanonicalState(
            id=STATE_IN_PROGRESS, key="in_progress", sequence_order=2, name="In Progress"
        ),
        CanonicalState(id=STATE_COMPLETED, key="completed", sequence_order=3, name="Completed"),
        CanonicalState(id=STATE_CANCELLED, key="cancelled", sequence_order=4, name="Cancelled"),
    ]


def order_uuid(legacy_order_id: int) -> str:
    """Deterministic durable order id for a legacy instruction id."""
    return f"order-{legacy_order_id:04d}"


def profile_uuid(legacy_user_id: int) -> str:
    """Deterministic durable profile id for a legacy user id."""
    return f"profile-{legacy_user_id:04d}"


def make_record(
    id: int,
    order_id: int,
    status_code: int = 1,
    minutes: float = 0,
    actor_id: int | None = None,
    is_active: bool = True,
) -> LegacyStateRecord:
    """
    Create a legacy state record.

    Args:
        id: Legacy primary key.
        order_id: Legacy instruction id.
        status_code: Legacy status code.
        minutes: Minutes after BASE_TIME.
        actor_id: Legacy user id.
        is_active: Legacy active flag.
    """
    return LegacyStateRecord(
        id=id,
        order_id=order_id,
        status_code=status_code,
        is_active=is_active,
        changed_at=BASE_TIME + timedelta(minutes=minutes),
        actor_id=actor_id,
    )


def scenario_actor(legacy_order_id: int) -> int | None:
    """Actor of a scenario order; every tenth order has no actor."""
    if legacy_order_id % 10 == 0:
        return None
    return (legacy_order_id % 5) + 1


def build_contiguous_records(
    orders: int = 50,
    per_order: int = 5,
    status_codes: Iterable[int] = SCENARIO_STATUS_CODES,
) -> list[LegacyStateRecord]:
    """
    Build records whose ids keep each order's records adjacent.

    Order ``o`` owns ids ``(o - 1) * per_order + 1 .. o * per_order``.
    """
    codes = tuple(status_codes)
    records = []
    for order in range(1, orders + 1):
        for step in range(per_order):
            records.append(
                make_record(
                    id=(order - 1) * per_order + step + 1,
                    order_id=order,
                    status_code=codes[step % len(codes)],
                    minutes=SCENARIO_MINUTE_OFFSETS[step % len(SCENARIO_MINUTE_OFFSETS)]
                    + order,
                    actor_id=scenario_actor(order),
                )
            )
    return records


def build_interleaved_records(orders: int = 50, per_order: int = 5) -> list[LegacyStateRecord]:
    """
    Build records whose ids spread each order across pages.

    Step ``k`` of order ``o`` gets id ``k * orders + o``, so with a page
    size of 2 * orders every page holds two steps of every order.
    """
    records = []
    for step in range(per_order):
        for order in range(1, orders + 1):
            records.append(
                make_record(
                    id=step * orders + order,
                    order_id=order,
                    status_code=SCENARIO_STATUS_CODES[step % len(SCENARIO_STATUS_CODES)],
                    minutes=SCENARIO_MINUTE_OFFSETS[step % len(SCENARIO_MINUTE_OFFSETS)],
                    actor_id=scenario_actor(order),
                )
            )
    return records


def seed_target(
    target: InMemoryTargetStore,
    orders: Iterable[int] = range(1, 51),
    actors: Iterable[int] = range(1, 6),
    states: Iterable[CanonicalState] | None = None,
) -> None:
    """Seed an in-memory target with orders, profiles and canonical states."""
    for legacy_order_id in orders:
        target.add_order(legacy_order_id, order_uuid(legacy_order_id))
    for legacy_user_id in actors:
        target.add_profile(legacy_user_id, profile_uuid(legacy_user_id))
    for state in canonical_states() if states is None else states:
        target.add_state(state)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def record_factory() -> Callable[..., LegacyStateRecord]:
    """Provide the make_record factory."""
    return make_record


@pytest.fixture
def states() -> list[CanonicalState]:
    """Provide the canonical states."""
    return canonical_states()


@pytest.fixture
def mappings() -> IdentifierMappings:
    """Provide lookup tables matching seed_target's defaults."""
    return IdentifierMappings(
        actors=LookupTable(
            kind=LookupKind.ACTOR,
            mapping=MappingProxyType({i: profile_uuid(i) for i in range(1, 6)}),
            status=LookupStatus.LOADED,
        ),
        orders=LookupTable(
            kind=LookupKind.ORDER,
            mapping=MappingProxyType({i: order_uuid(i) for i in range(1, 51)}),
            status=LookupStatus.LOADED,
        ),
    )


@pytest.fixture
def status_table() -> StatusMappingTable:
    """Provide the status mapping over the canonical states."""
    return build_mapping_table(canonical_states())


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a MockTracer that records spans."""
    return MockTracer()


@pytest.fixture
def legacy_source() -> InMemoryLegacySource:
    """Provide an in-memory legacy source with the contiguous 250-record scenario."""
    return InMemoryLegacySource(build_contiguous_records(), enable_tracing=False)


@pytest.fixture
def target_store() -> InMemoryTargetStore:
    """Provide an empty in-memory target store."""
    return InMemoryTargetStore(enable_tracing=False)


@pytest.fixture
def seeded_target(target_store: InMemoryTargetStore) -> InMemoryTargetStore:
    """Provide an in-memory target seeded with 50 orders, 5 profiles and 4 states."""
    seed_target(target_store)
    return target_store


@pytest_asyncio.fixture
async def sqlite_connection() -> AsyncGenerator[aiosqlite.Connection, None]:
    """
    Provide an in-memory SQLite connection.

    Yields:
        aiosqlite connection with Row factory configured
    """
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    yield conn
    await conn.close()
