"""
MigrationValidator - Post-run consistency checks on the target store.

Runs read-only aggregate queries once a migration has completed:

- ``direct_count``: ``instruction_states`` rows carrying a legacy id
- ``history_count``: ``order_state_history`` rows
- ``missing_order_links``: direct rows whose order does not exist
- ``orphan_history_records``: history rows without a matching direct row

When the run's statistics are supplied, the counts are also compared with
what the run reported writing. A failing query is reported in the result
and never raised: validation must not unwind migration output.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from statetrail.exceptions import ValidationError
from statetrail.migration._timeout import bounded
from statetrail.models import MigrationStatsSnapshot, ValidationReport, ValidationViolation
from statetrail.observability import Tracer, create_tracer
from statetrail.stores.interface import TargetStore

logger = logging.getLogger(__name__)


class MigrationValidator:
    """
    Validates the target tables after a migration.

    Example:
        >>> validator = MigrationValidator(target)
        >>> report = await validator.validate(expected=migrator.stats)
        >>> report.is_consistent
        True
    """

    def __init__(
        self,
        target_store: TargetStore,
        *,
        query_timeout_seconds: float = 60.0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the validator.

        Args:
            target_store: Store to validate.
            query_timeout_seconds: Timeout for each validation query.
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._target = target_store
        self._query_timeout_seconds = query_timeout_seconds

    async def validate(self, expected: MigrationStatsSnapshot | None = None) -> ValidationReport:
        """
        Run every check.

        Args:
            expected: Statistics of the run to compare counts against.

        Returns:
            ValidationReport; ``error`` is set if a query failed.
        """
        with self._tracer.span("statetrail.validator.validate"):
            start = time.perf_counter()
            validated_at = datetime.now(UTC)

            try:
                direct_count = await self._check("direct_count", self._target.count_direct_records)
                history_count = await self._check(
                    "history_count", self._target.count_history_records
                )
                missing_order_links = await self._check(
                    "missing_order_links", self._target.count_missing_order_links
                )
                orphan_history = await self._check(
                    "orphan_history_records", self._target.count_orphan_history_records
                )
            except ValidationError as e:
                logger.error("Migration validation could not complete: %s", e)
                return ValidationReport(
                    direct_count=0,
                    history_count=0,
                    missing_order_links=0,
                    orphan_history_records=0,
                    violations=[],
                    validated_at=validated_at,
                    duration_seconds=time.perf_counter() - start,
                    error=str(e),
                )

            violations: list[ValidationViolation] = []
            if missing_order_links:
                violations.append(
                    ValidationViolation(
                        violation_type="missing_order_links",
                        expected=0,
                        actual=missing_order_links,
                        details="instruction_states rows reference orders that do not exist",
                    )
                )
            if orphan_history:
                violations.append(
                    ValidationViolation(
                        violation_type="orphan_history_records",
                        expected=0,
                        actual=orphan_history,
                        details="order_state_history rows without a matching instruction_states row",
                    )
                )
            if expected is not None:
                if direct_count != expected.direct_records_created:
                    violations.append(
                        ValidationViolation(
                            violation_type="direct_count_mismatch",
                            expected=expected.direct_records_created,
                            actual=direct_count,
                        )
                    )
                if history_count != expected.history_records_created:
                    violations.append(
                        ValidationViolation(
                            violation_type="history_count_mismatch",
                            expected=expected.history_records_created,
                            actual=history_count,
                        )
                    )

            report = ValidationReport(
                direct_count=direct_count,
                history_count=history_count,
                missing_order_links=missing_order_links,
                orphan_history_records=orphan_history,
                violations=violations,
                validated_at=validated_at,
                duration_seconds=time.perf_counter() - start,
            )

            if report.is_consistent:
                logger.info(
                    "Validation passed: %d direct, %d history records",
                    direct_count,
                    history_count,
                )
            else:
                for violation in violations:
                    logger.warning("Validation violation: %s", violation)
            return report

    async def _check(self, name: str, query: Callable[[], Awaitable[int]]) -> int:
        try:
            return await bounded(query(), name, self._query_timeout_seconds)
        except Exception as e:
            raise ValidationError(name, str(e), cause=e) from e


__all__ = ["MigrationValidator"]
