"""
Unit tests for the in-memory stores.

Tests cover:
- InMemoryLegacySource paging and read failure injection
- InMemoryTargetStore lookups, inserts and validation counts
- Failure injection hooks used by the pipeline tests
- Tracing spans
"""

import pytest

from statetrail.models import TARGET_DIRECT, TARGET_HISTORY, LookupKind
from statetrail.records import CanonicalState, DirectStateRecord, StateHistoryRecord
from statetrail.stores import LegacyStateSource, TargetStore
from statetrail.stores.in_memory import (
    CANONICAL_STATES_LOOKUP,
    InMemoryLegacySource,
    InMemoryTargetStore,
)
from tests.conftest import BASE_TIME, make_record


def direct(legacy_state_id: int, order_id: str = "order-1") -> DirectStateRecord:
    return DirectStateRecord(
        legacy_state_id=legacy_state_id,
        order_id=order_id,
        status_code=1,
        is_active=True,
        changed_at=BASE_TIME,
        legacy_instruction_id=1,
    )


def history(legacy_state_id: int, order_id: str = "order-1") -> StateHistoryRecord:
    return StateHistoryRecord(
        legacy_state_id=legacy_state_id,
        order_id=order_id,
        to_state_id="state-submitted",
        created_at=BASE_TIME,
    )


class TestInMemoryLegacySource:
    """Tests for InMemoryLegacySource."""

    def test_satisfies_protocol(self):
        """Test the source is a LegacyStateSource."""
        assert isinstance(InMemoryLegacySource(enable_tracing=False), LegacyStateSource)

    @pytest.mark.asyncio
    async def test_pages_in_primary_key_order(self):
        """Test records are paged by id regardless of insertion order."""
        source = InMemoryLegacySource(
            [make_record(3, 1), make_record(1, 1), make_record(2, 2)], enable_tracing=False
        )

        assert await source.count_records() == 3
        assert [r.id for r in await source.read_page(0, 2)] == [1, 2]
        assert [r.id for r in await source.read_page(2, 2)] == [3]
        assert await source.read_page(3, 2) == []

    @pytest.mark.asyncio
    async def test_injected_read_failure(self):
        """Test fail_reads_at raises for that offset only."""
        source = InMemoryLegacySource([make_record(1, 1), make_record(2, 1)], enable_tracing=False)
        source.fail_reads_at(1, ConnectionError("reset"))

        assert len(await source.read_page(0, 1)) == 1
        with pytest.raises(ConnectionError):
            await source.read_page(1, 1)

    @pytest.mark.asyncio
    async def test_spans(self, mock_tracer):
        """Test reads are traced."""
        source = InMemoryLegacySource([make_record(1, 1)], tracer=mock_tracer)
        await source.count_records()
        await source.read_page(0, 10)

        assert mock_tracer.span_names == [
            "statetrail.legacy_source.count_records",
            "statetrail.legacy_source.read_page",
        ]


class TestInMemoryTargetLookups:
    """Tests for InMemoryTargetStore lookup reads."""

    def test_satisfies_protocol(self, target_store):
        """Test the store is a TargetStore."""
        assert isinstance(target_store, TargetStore)

    @pytest.mark.asyncio
    async def test_legacy_id_map_skips_null_legacy_ids(self, target_store):
        """Test rows without a legacy id are not part of the lookup."""
        order_id = target_store.add_order(42)
        target_store.add_order(None)
        profile_id = target_store.add_profile(7)

        assert await target_store.fetch_legacy_id_map(LookupKind.ORDER) == [(42, order_id)]
        assert await target_store.fetch_legacy_id_map(LookupKind.ACTOR) == [(7, profile_id)]

    @pytest.mark.asyncio
    async def test_generated_ids_are_unique(self, target_store):
        """Test durable ids are generated when not given."""
        assert target_store.add_order(1) != target_store.add_order(2)

    @pytest.mark.asyncio
    async def test_canonical_states_only_active(self, target_store, states):
        """Test inactive states are filtered out."""
        for state in states:
            target_store.add_state(state)
        target_store.add_state(
            CanonicalState(id="state-old", key="archived", sequence_order=9, is_active=False)
        )

        fetched = await target_store.fetch_canonical_states()
        assert {s.id for s in fetched} == {s.id for s in states}

    @pytest.mark.asyncio
    async def test_lookup_failure_injection(self, target_store):
        """Test lookups can be made to fail."""
        target_store.fail_lookup(LookupKind.ACTOR, ConnectionError("down"))
        target_store.fail_lookup(CANONICAL_STATES_LOOKUP, RuntimeError("gone"))

        with pytest.raises(ConnectionError):
            await target_store.fetch_legacy_id_map(LookupKind.ACTOR)
        with pytest.raises(RuntimeError):
            await target_store.fetch_canonical_states()
        assert await target_store.fetch_legacy_id_map(LookupKind.ORDER) == []


class TestInMemoryTargetInserts:
    """Tests for InMemoryTargetStore bulk inserts."""

    @pytest.mark.asyncio
    async def test_insert_and_count(self, target_store):
        """Test successful inserts are counted per table."""
        outcomes = await target_store.insert_direct_records([direct(1), direct(2)])
        await target_store.insert_history_records([history(1)])

        assert all(o.success for o in outcomes)
        assert await target_store.count_direct_records() == 2
        assert await target_store.count_history_records() == 1
        assert [r.legacy_state_id for r in target_store.direct_rows] == [1, 2]

    @pytest.mark.asyncio
    async def test_duplicate_legacy_state_id_rejected(self, target_store):
        """Test the unique legacy_state_id rejects a replayed row."""
        await target_store.insert_direct_records([direct(1)])
        outcomes = await target_store.insert_direct_records([direct(1), direct(2)])

        assert [o.success for o in outcomes] == [False, True]
        assert "instruction_states_legacy_state_id_key" in outcomes[0].error
        assert await target_store.count_direct_records() == 2

    @pytest.mark.asyncio
    async def test_enforced_foreign_keys(self):
        """Test rows referencing unknown orders are rejected when enforced."""
        target = InMemoryTargetStore(enforce_foreign_keys=True, enable_tracing=False)
        known = target.add_order(1)

        outcomes = await target.insert_history_records([history(1, known), history(2, "nope")])
        assert [o.success for o in outcomes] == [True, False]
        assert "foreign key" in outcomes[1].error

    @pytest.mark.asyncio
    async def test_fail_next_inserts(self, target_store):
        """Test injected bulk failures raise before anything is written."""
        target_store.fail_next_inserts(TARGET_DIRECT, ConnectionError("reset"), times=2)

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await target_store.insert_direct_records([direct(1)])
        assert await target_store.count_direct_records() == 0

        await target_store.insert_direct_records([direct(1)])
        assert target_store.insert_calls[TARGET_DIRECT] == 3
        assert target_store.insert_calls[TARGET_HISTORY] == 0

    @pytest.mark.asyncio
    async def test_reject_rows(self, target_store):
        """Test predicate-based row rejection."""
        target_store.reject_rows(
            TARGET_HISTORY, lambda row: row.legacy_state_id == 2, "check constraint"
        )

        outcomes = await target_store.insert_history_records([history(1), history(2)])
        assert outcomes[1].error == "check constraint"
        assert [r.legacy_state_id for r in target_store.history_rows] == [1]


class TestInMemoryTargetValidationCounts:
    """Tests for the validation queries."""

    @pytest.mark.asyncio
    async def test_missing_order_links(self, target_store):
        """Test direct rows pointing at unknown orders are counted."""
        known = target_store.add_order(1)
        await target_store.insert_direct_records([direct(1, known), direct(2, "ghost")])

        assert await target_store.count_missing_order_links() == 1

    @pytest.mark.asyncio
    async def test_orphan_history_records(self, target_store):
        """Test history rows without a direct row are counted."""
        await target_store.insert_direct_records([direct(1)])
        await target_store.insert_history_records([history(1), history(2), history(3)])

        assert await target_store.count_orphan_history_records() == 2
