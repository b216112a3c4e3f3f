"""
Shared pytest fixtures for integration tests.

This module provides fixtures for PostgreSQL test infrastructure using
testcontainers for automatic container management, and file-backed SQLite
stores.

If testcontainers or Docker is not available, PostgreSQL tests are
automatically skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import pytest
import pytest_asyncio

from statetrail.records import LegacyStateRecord
from tests.conftest import AIOSQLITE_AVAILABLE, canonical_states

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from statetrail.stores.sqlite import SQLiteLegacySource, SQLiteTargetStore


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require docker)"
    )
    config.addinivalue_line("markers", "postgres: marks tests that require PostgreSQL")


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    PostgresContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_postgres_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="PostgreSQL test infrastructure not available",
)

skip_if_no_sqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# ============================================================================
# Seeding Helpers
# ============================================================================


def legacy_rows(records: Iterable[LegacyStateRecord]) -> list[dict[str, Any]]:
    """Turn legacy records into ``dispatch_state`` insert parameters."""
    return [
        {
            "id": r.id,
            "status": r.status_code,
            "on": r.is_active,
            "changed_at": r.changed_at,
            "actor_id": r.actor_id,
            "instruction_id": r.order_id,
        }
        for r in records
    ]


# ============================================================================
# PostgreSQL Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Provide PostgreSQL container for integration tests.

    Uses testcontainers to automatically start and stop a PostgreSQL container.
    Container is shared across all tests in the session for efficiency.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("PostgreSQL testcontainer not available")

    container = PostgresContainer("postgres:15")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def postgres_connection_url(postgres_container: Any) -> str:
    """Get PostgreSQL connection URL from container."""
    # testcontainers returns psycopg2 URL, convert to asyncpg
    url = postgres_container.get_connection_url()
    return url.replace("postgresql://", "postgresql+asyncpg://").replace("psycopg2", "asyncpg")


@pytest_asyncio.fixture
async def postgres_engine(postgres_connection_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide SQLAlchemy async engine connected to PostgreSQL container.

    Creates the legacy and target tables and empties them before each test.
    """
    from sqlalchemy import text
    from sqlalchemy.ext.asyncio import create_async_engine

    from statetrail.schemas import get_schema_statements

    engine = create_async_engine(postgres_connection_url, echo=False, pool_size=5)

    # Execute each statement individually for asyncpg compatibility
    async with engine.begin() as conn:
        for statement in get_schema_statements("all"):
            await conn.execute(text(statement))
        await conn.execute(
            text(
                "TRUNCATE TABLE order_state_history, instruction_states, order_states, "
                "orders, profiles, dispatch_state CASCADE"
            )
        )

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def seeded_postgres(postgres_engine: AsyncEngine) -> dict[str, dict[Any, str]]:
    """
    Seed orders 1-50, profiles 1-5 and the canonical states.

    Returns:
        Durable ids keyed by table, then by legacy id (or state key).
    """
    from sqlalchemy import text

    orders = {i: str(uuid4()) for i in range(1, 51)}
    profiles = {i: str(uuid4()) for i in range(1, 6)}
    states = {state.key: str(uuid4()) for state in canonical_states()}

    async with postgres_engine.begin() as conn:
        await conn.execute(
            text("INSERT INTO orders (id, legacy_instruction_id) VALUES (:id, :legacy)"),
            [{"id": durable, "legacy": legacy} for legacy, durable in orders.items()],
        )
        await conn.execute(
            text("INSERT INTO profiles (id, legacy_user_id) VALUES (:id, :legacy)"),
            [{"id": durable, "legacy": legacy} for legacy, durable in profiles.items()],
        )
        await conn.execute(
            text(
                "INSERT INTO order_states (id, name, key, sequence_order, is_active) "
                "VALUES (:id, :name, :key, :sequence_order, true)"
            ),
            [
                {
                    "id": states[state.key],
                    "name": state.name,
                    "key": state.key,
                    "sequence_order": state.sequence_order,
                }
                for state in canonical_states()
            ],
        )
    return {"orders": orders, "profiles": profiles, "states": states}


async def insert_legacy_postgres(engine: AsyncEngine, records: Iterable[LegacyStateRecord]) -> None:
    """Insert legacy records into ``dispatch_state``."""
    from sqlalchemy import text

    async with engine.begin() as conn:
        await conn.execute(
            text(
                'INSERT INTO dispatch_state (id, status, "on", changed_at, actor_id, '
                "instruction_id) VALUES (:id, :status, :on, :changed_at, :actor_id, "
                ":instruction_id)"
            ),
            legacy_rows(records),
        )


# ============================================================================
# SQLite Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def sqlite_legacy(tmp_path: Path) -> AsyncGenerator[SQLiteLegacySource, None]:
    """Provide a file-backed SQLite legacy source with its schema created."""
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")
    from statetrail.stores.sqlite import SQLiteLegacySource

    source = SQLiteLegacySource(str(tmp_path / "legacy.db"), enable_tracing=False)
    await source.initialize()
    yield source
    await source.close()


@pytest_asyncio.fixture
async def sqlite_target(tmp_path: Path) -> AsyncGenerator[SQLiteTargetStore, None]:
    """Provide a file-backed SQLite target seeded with orders 1-50, profiles 1-5 and states."""
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")
    from statetrail.stores.sqlite import SQLiteTargetStore
    from tests.conftest import order_uuid, profile_uuid

    target = SQLiteTargetStore(str(tmp_path / "target.db"), enable_tracing=False)
    await target.initialize()
    conn = target.connection
    await conn.executemany(
        "INSERT INTO orders (id, legacy_instruction_id) VALUES (?, ?)",
        [(order_uuid(i), i) for i in range(1, 51)],
    )
    await conn.executemany(
        "INSERT INTO profiles (id, legacy_user_id) VALUES (?, ?)",
        [(profile_uuid(i), i) for i in range(1, 6)],
    )
    await conn.executemany(
        "INSERT INTO order_states (id, name, key, sequence_order, is_active) "
        "VALUES (?, ?, ?, ?, 1)",
        [(s.id, s.name, s.key, s.sequence_order) for s in canonical_states()],
    )
    await conn.commit()
    yield target
    await target.close()


async def insert_legacy_sqlite(
    source: SQLiteLegacySource, records: Iterable[LegacyStateRecord]
) -> None:
    """Insert legacy records into the SQLite ``dispatch_state`` table."""
    await source.connection.executemany(
        'INSERT INTO dispatch_state (id, status, "on", changed_at, actor_id, instruction_id) '
        "VALUES (?, ?, ?, ?, ?, ?)",
        [
            (
                row["id"],
                row["status"],
                int(row["on"]),
                row["changed_at"].isoformat(),
                row["actor_id"],
                row["instruction_id"],
            )
            for row in legacy_rows(records)
        ],
    )
    await source.connection.commit()
