"""
Unit tests for IdentifierResolver.

Tests cover:
- Loaded, empty and failed lookup tables
- Duplicate legacy ids
- Immutability of the built tables
- Query timeouts
"""

import asyncio

import pytest

from statetrail.migration.resolver import (
    IdentifierResolver,
    LookupStatus,
    LookupTable,
)
from statetrail.models import LookupKind
from tests.conftest import order_uuid, profile_uuid


class TestLookupTable:
    """Tests for LookupTable."""

    def test_get_none_is_none(self):
        """Test an absent legacy id resolves to None."""
        table = LookupTable(kind=LookupKind.ACTOR)
        assert table.get(None) is None
        assert table.get(1) is None
        assert len(table) == 0


class TestIdentifierResolver:
    """Tests for IdentifierResolver.build_mappings."""

    @pytest.mark.asyncio
    async def test_builds_both_tables(self, seeded_target):
        """Test actor and order tables are loaded."""
        mappings = await IdentifierResolver(seeded_target, enable_tracing=False).build_mappings()

        assert mappings.orders.status == LookupStatus.LOADED
        assert len(mappings.orders) == 50
        assert mappings.orders.get(7) == order_uuid(7)
        assert mappings.actors.get(3) == profile_uuid(3)
        assert 3 in mappings.actors
        assert mappings.failed_kinds == []

    @pytest.mark.asyncio
    async def test_empty_lookup_is_not_failed(self, target_store):
        """Test an empty table is distinguishable from a failed one."""
        mappings = await IdentifierResolver(target_store, enable_tracing=False).build_mappings()

        assert mappings.actors.status == LookupStatus.EMPTY
        assert not mappings.actors.failed
        assert mappings.failed_kinds == []

    @pytest.mark.asyncio
    async def test_failed_lookup_is_reported(self, seeded_target):
        """Test a failing query yields a FAILED table instead of raising."""
        seeded_target.fail_lookup(LookupKind.ORDER, ConnectionError("connection refused"))

        mappings = await IdentifierResolver(seeded_target, enable_tracing=False).build_mappings()

        assert mappings.orders.failed
        assert len(mappings.orders) == 0
        assert "connection refused" in mappings.orders.error
        assert mappings.actors.status == LookupStatus.LOADED
        assert mappings.failed_kinds == [LookupKind.ORDER]
        assert mappings.table(LookupKind.ORDER) is mappings.orders

    @pytest.mark.asyncio
    async def test_duplicate_legacy_ids_keep_first(self, target_store):
        """Test the first durable id wins for a repeated legacy id."""
        target_store.add_order(5, "first")
        target_store.add_order(5, "second")

        table = await IdentifierResolver(target_store, enable_tracing=False).build_table(
            LookupKind.ORDER
        )

        assert table.get(5) == "first"
        assert table.duplicates == (5,)

    @pytest.mark.asyncio
    async def test_tables_are_read_only(self, seeded_target):
        """Test the built mapping cannot be modified."""
        mappings = await IdentifierResolver(seeded_target, enable_tracing=False).build_mappings()

        with pytest.raises(TypeError):
            mappings.orders.mapping[999] = "x"  # type: ignore[index]

    @pytest.mark.asyncio
    async def test_timeout_marks_table_failed(self, target_store):
        """Test a slow lookup query is bounded by the timeout."""

        async def slow_fetch(kind):
            await asyncio.sleep(1)
            return []

        target_store.fetch_legacy_id_map = slow_fetch
        resolver = IdentifierResolver(
            target_store, query_timeout_seconds=0.01, enable_tracing=False
        )

        table = await resolver.build_table(LookupKind.ACTOR)

        assert table.failed
        assert "timed out" in table.error

    @pytest.mark.asyncio
    async def test_spans(self, seeded_target, mock_tracer):
        """Test each lookup is traced."""
        await IdentifierResolver(seeded_target, tracer=mock_tracer).build_mappings()

        assert mock_tracer.span_names.count("statetrail.resolver.build_table") == 2
