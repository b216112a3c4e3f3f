"""
Unit tests for MigrationValidator.
"""

import pytest

from statetrail.migration.timeline import TimelineEnhancer
from statetrail.migration.transformer import Transformer
from statetrail.migration.validator import MigrationValidator
from statetrail.models import MigrationStatsSnapshot
from tests.conftest import build_contiguous_records, make_record


@pytest.fixture
def transformed(mappings, status_table):
    page = TimelineEnhancer(mappings, status_table).enhance(build_contiguous_records()[:20])
    return Transformer().transform(page.records)


class TestMigrationValidator:
    """Tests for MigrationValidator.validate."""

    @pytest.mark.asyncio
    async def test_consistent_target(self, seeded_target, transformed):
        """Test a cleanly written target passes every check."""
        await seeded_target.insert_direct_records(transformed.direct_records)
        await seeded_target.insert_history_records(transformed.history_records)

        report = await MigrationValidator(seeded_target, enable_tracing=False).validate(
            MigrationStatsSnapshot(direct_records_created=20, history_records_created=20)
        )

        assert report.is_consistent
        assert report.direct_count == 20
        assert report.history_count == 20
        assert report.error is None

    @pytest.mark.asyncio
    async def test_empty_target(self, seeded_target):
        """Test an empty target is consistent without expectations."""
        report = await MigrationValidator(seeded_target, enable_tracing=False).validate()

        assert report.is_consistent
        assert report.direct_count == 0

    @pytest.mark.asyncio
    async def test_orphan_history(self, seeded_target, transformed):
        """Test history rows without a direct row are reported."""
        await seeded_target.insert_direct_records(transformed.direct_records[:15])
        await seeded_target.insert_history_records(transformed.history_records)

        report = await MigrationValidator(seeded_target, enable_tracing=False).validate()

        assert not report.is_consistent
        (violation,) = report.violations
        assert violation.violation_type == "orphan_history_records"
        assert violation.actual == 5

    @pytest.mark.asyncio
    async def test_missing_order_links(self, target_store, mappings, status_table):
        """Test direct rows pointing at unknown orders are reported."""
        page = TimelineEnhancer(mappings, status_table).enhance([make_record(1, 1)])
        await target_store.insert_direct_records(Transformer().transform(page.records).direct_records)

        report = await MigrationValidator(target_store, enable_tracing=False).validate()

        assert report.missing_order_links == 1
        assert [v.violation_type for v in report.violations] == ["missing_order_links"]

    @pytest.mark.asyncio
    async def test_count_mismatch(self, seeded_target, transformed):
        """Test counts are compared with what the run reported."""
        await seeded_target.insert_direct_records(transformed.direct_records)
        await seeded_target.insert_history_records(transformed.history_records)

        report = await MigrationValidator(seeded_target, enable_tracing=False).validate(
            MigrationStatsSnapshot(direct_records_created=25, history_records_created=20)
        )

        (violation,) = report.violations
        assert violation.violation_type == "direct_count_mismatch"
        assert violation.expected == 25
        assert violation.actual == 20
        assert "expected=25, actual=20" in str(violation)

    @pytest.mark.asyncio
    async def test_query_failure_is_reported(self, seeded_target):
        """Test a failing query sets the error instead of raising."""

        async def broken():
            raise ConnectionError("server closed the connection")

        seeded_target.count_orphan_history_records = broken

        report = await MigrationValidator(seeded_target, enable_tracing=False).validate()

        assert not report.is_consistent
        assert "orphan_history_records" in report.error
        assert report.direct_count == 0
        assert report.violations == []

    @pytest.mark.asyncio
    async def test_to_dict(self, seeded_target):
        """Test the report serializes with its consistency flag."""
        report = await MigrationValidator(seeded_target, enable_tracing=False).validate()

        data = report.to_dict()

        assert data["is_consistent"] is True
        assert data["violations"] == []
        assert data["error"] is None
