"""
StateMigrator - Drives a state migration run end to end.

The migrator moves through a fixed set of phases:

    IDLE -> BUILDING_LOOKUPS -> MAPPING -> PAGING -> COMPLETED
                     any non-terminal phase -> FAILED

Lookup tables and the status mapping are built once, then the legacy
records are processed one page at a time, strictly in sequence. Each page
is read, enhanced, transformed and written to both targets before the next
page is read. Per-record misses, page read failures and write failures are
recorded and the loop continues; only lookup build failures and errors
escaping the page loop stop the run.

Usage:
    >>> migrator = StateMigrator(source, target, config=MigrationConfig())
    >>> result = await migrator.run()
    >>> result.stats.direct_records_created
    250

    >>> # Or observe each page as it completes
    >>> async for progress in migrator.iter_pages():
    ...     print(f"{progress.progress_percent:.1f}%")
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import AsyncIterator, Callable

from statetrail.exceptions import (
    ErrorHandler,
    InvalidPhaseTransitionError,
    LookupBuildError,
    MigrationError,
    MigrationStateError,
    PageReadError,
)
from statetrail.migration.reader import BatchReader
from statetrail.migration.resolver import IdentifierMappings, IdentifierResolver
from statetrail.migration.status_mapping import StatusMapper, StatusMappingTable
from statetrail.migration.timeline import TimelineEnhancer
from statetrail.migration.transformer import Transformer
from statetrail.migration.validator import MigrationValidator
from statetrail.migration.writer import BatchWriter
from statetrail.models import (
    MigrationConfig,
    MigrationPhase,
    MigrationResult,
    MigrationStats,
    MigrationStatsSnapshot,
    PageProgress,
    RecordIssue,
    ValidationReport,
    WriteFailure,
)
from statetrail.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_MIGRATION_PHASE,
    ATTR_MIGRATION_RECORDS_TOTAL,
    ATTR_OFFSET,
    Tracer,
    create_tracer,
)
from statetrail.stores.interface import LegacyStateSource, TargetStore

logger = logging.getLogger(__name__)


class StateMigrator:
    """
    Orchestrates one migration run.

    Each instance owns its statistics and can run once. Create a new
    instance for another run.

    Attributes:
        _config: Run configuration.
        _phase: Current phase.
        _stats: Mutable statistics for this run.
        _is_cancelled: Flag checked at page boundaries.
    """

    def __init__(
        self,
        source: LegacyStateSource,
        target: TargetStore,
        *,
        config: MigrationConfig | None = None,
        progress_callback: Callable[[PageProgress], None] | None = None,
        error_handler: ErrorHandler | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the migrator.

        Args:
            source: Legacy store holding ``dispatch_state``.
            target: Target store holding the lookups and output tables.
            config: Run configuration (defaults to MigrationConfig()).
            progress_callback: Called with a PageProgress after each page.
            error_handler: Handler for write retries (one is created if omitted).
            tracer: Optional tracer shared with the components
                (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._config = config or MigrationConfig()
        self._progress_callback = progress_callback

        timeout = self._config.query_timeout_seconds
        self._resolver = IdentifierResolver(
            target, query_timeout_seconds=timeout, tracer=self._tracer
        )
        self._mapper = StatusMapper(
            target,
            default_range=self._config.status_default_range,
            query_timeout_seconds=timeout,
            tracer=self._tracer,
        )
        self._reader = BatchReader(source, query_timeout_seconds=timeout, tracer=self._tracer)
        self._transformer = Transformer()
        self._writer = BatchWriter(
            target,
            retry_config=self._config.retry_config,
            query_timeout_seconds=timeout,
            error_handler=error_handler,
            tracer=self._tracer,
        )
        self._validator = MigrationValidator(
            target, query_timeout_seconds=timeout, tracer=self._tracer
        )

        self._phase = MigrationPhase.IDLE
        self._stats = MigrationStats()
        self._issues: list[RecordIssue] = []
        self._failures: list[WriteFailure] = []
        self._skipped_offsets: list[int] = []
        self._validation: ValidationReport | None = None
        self._result: MigrationResult | None = None
        self._is_cancelled = False
        self._started_at: float | None = None
        self._finished_at: float | None = None

    @property
    def config(self) -> MigrationConfig:
        """Run configuration."""
        return self._config

    @property
    def phase(self) -> MigrationPhase:
        """Current phase."""
        return self._phase

    @property
    def stats(self) -> MigrationStatsSnapshot:
        """Read-only snapshot of the run statistics, available at any time."""
        self._stats.processing_time_ms = self._elapsed_ms()
        return self._stats.snapshot()

    @property
    def result(self) -> MigrationResult | None:
        """Result of the run once it has ended, including failed runs."""
        return self._result

    @property
    def is_cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._is_cancelled

    def cancel(self) -> None:
        """
        Request cancellation.

        The current page finishes; the run then ends as COMPLETED with
        ``cancelled=True``.
        """
        self._is_cancelled = True
        logger.info("State migration cancellation requested")

    async def run(self) -> MigrationResult:
        """
        Run the migration to completion.

        Returns:
            MigrationResult for the run.

        Raises:
            MigrationError: If the run fails; the phase is then FAILED.
            MigrationStateError: If this migrator has already been started.
        """
        async for _ in self.iter_pages():
            pass
        assert self._result is not None
        return self._result

    async def iter_pages(self) -> AsyncIterator[PageProgress]:
        """
        Run the migration, yielding progress after each page.

        Closing the iterator early (``aclose()``) ends the run as COMPLETED
        with ``cancelled=True``; post-run validation is skipped then.

        Yields:
            PageProgress for every page, including skipped ones.

        Raises:
            MigrationError: If the run fails; the phase is then FAILED.
            MigrationStateError: If this migrator has already been started.
        """
        if self._phase != MigrationPhase.IDLE:
            raise MigrationStateError(
                f"Migrator already started (phase={self._phase.value}); "
                "create a new StateMigrator for another run"
            )

        with self._tracer.span(
            "statetrail.migrator.run",
            {ATTR_BATCH_SIZE: self._config.batch_size},
        ) as span:
            self._started_at = time.perf_counter()
            logger.info("Starting state migration with config %s", self._config.to_dict())

            try:
                self._transition(MigrationPhase.BUILDING_LOOKUPS)
                mappings = await self._build_lookups()

                self._transition(MigrationPhase.MAPPING)
                status_table = await self._mapper.build_status_mapping()

                self._transition(MigrationPhase.PAGING)
                total = await self._reader.count_total()
                self._stats.total_records = total
                if span is not None:
                    span.set_attribute(ATTR_MIGRATION_RECORDS_TOTAL, total)

                if total == 0:
                    logger.warning("No legacy states found to migrate")

                async for progress in self._page_loop(total, mappings, status_table):
                    yield progress

                self._transition(MigrationPhase.COMPLETED)
            except GeneratorExit:
                # Consumer closed the iterator between pages
                self._is_cancelled = True
                if self._phase == MigrationPhase.PAGING:
                    self._transition(MigrationPhase.COMPLETED)
                self._finished_at = time.perf_counter()
                self._result = self._build_result(success=True)
                logger.warning(
                    "Progress iteration closed early; run ends as cancelled after %d pages",
                    self._stats.pages_processed,
                )
                raise
            except MigrationError as e:
                self._fail(e)
                raise
            except Exception as e:
                error = MigrationError(
                    f"State migration failed: {e}",
                    phase=self._phase.value,
                    cause=e,
                )
                self._fail(error)
                raise error from e

            self._finished_at = time.perf_counter()

            if self._config.validate_after_run:
                self._validation = await self._validator.validate(expected=self.stats)

            self._result = self._build_result(success=True)
            if span is not None:
                span.set_attribute(ATTR_MIGRATION_PHASE, self._phase.value)
            self._log_summary()

    async def _build_lookups(self) -> IdentifierMappings:
        mappings = await self._resolver.build_mappings()
        for kind in mappings.failed_kinds:
            table = mappings.table(kind)
            if self._config.fail_on_lookup_error:
                raise LookupBuildError(
                    kind.value,
                    table.error or "lookup query failed",
                    phase=MigrationPhase.BUILDING_LOOKUPS.value,
                )
            logger.warning(
                "Continuing with an empty %s lookup after failure: %s",
                kind.value,
                table.error,
            )
        return mappings

    async def _page_loop(
        self,
        total: int,
        mappings: IdentifierMappings,
        status_table: StatusMappingTable,
    ) -> AsyncIterator[PageProgress]:
        batch_size = self._config.batch_size
        total_batches = math.ceil(total / batch_size)
        enhancer = TimelineEnhancer(
            mappings,
            status_table,
            carry_over=self._config.carry_timeline_across_pages,
            calculate_durations=self._config.calculate_durations,
        )

        for batch_number, offset in self._reader.pages(total, batch_size):
            if self._is_cancelled:
                logger.info(
                    "State migration cancelled before batch %d/%d",
                    batch_number,
                    total_batches,
                )
                break

            if batch_number > 1 and self._config.inter_batch_delay_ms:
                await asyncio.sleep(self._config.inter_batch_delay_ms / 1000.0)

            progress = await self._process_page(
                enhancer, batch_number, total_batches, offset, total
            )
            if self._progress_callback:
                self._progress_callback(progress)
            yield progress

    async def _process_page(
        self,
        enhancer: TimelineEnhancer,
        batch_number: int,
        total_batches: int,
        offset: int,
        total: int,
    ) -> PageProgress:
        with self._tracer.span(
            "statetrail.migrator.process_page",
            {ATTR_BATCH_NUMBER: batch_number, ATTR_OFFSET: offset},
        ):
            try:
                records = await self._reader.read_page(offset, self._config.batch_size)
            except PageReadError as e:
                logger.error("Batch %d/%d skipped: %s", batch_number, total_batches, e)
                self._stats.pages_failed += 1
                self._skipped_offsets.append(offset)
                return PageProgress(
                    batch_number=batch_number,
                    total_batches=total_batches,
                    offset=offset,
                    records_processed=offset,
                    records_total=total,
                    page_failed=True,
                )

            if not records:
                logger.warning("No states found in batch %d", batch_number)

            page = enhancer.enhance(records)
            transformed = self._transformer.transform(page.records)
            batch = await self._writer.write_batch(
                transformed.direct_records,
                transformed.history_records,
                batch_number=batch_number,
            )

            stats = self._stats
            stats.records_read += len(records)
            stats.pages_processed += 1
            stats.missing_order_ids += page.missing_order_ids
            stats.missing_actor_ids += page.missing_actor_ids
            stats.missing_state_ids += page.missing_state_ids
            stats.direct_records_created += len(batch.direct.written)
            stats.history_records_created += len(batch.history.written)
            stats.records_failed += (
                len(transformed.errors) + len(batch.direct.failed) + len(batch.history.failed)
            )
            stats.processing_time_ms = self._elapsed_ms()

            self._issues.extend(transformed.issues)
            self._failures.extend(batch.failures)

            logger.info(
                "Batch %d/%d processed: %d records, %d direct written, %d history written, "
                "%d failed",
                batch_number,
                total_batches,
                len(records),
                len(batch.direct.written),
                len(batch.history.written),
                len(transformed.errors) + len(batch.failures),
            )

            return PageProgress(
                batch_number=batch_number,
                total_batches=total_batches,
                offset=offset,
                records_processed=offset + len(records),
                records_total=total,
                direct_written=len(batch.direct.written),
                direct_failed=len(batch.direct.failed),
                history_written=len(batch.history.written),
                history_failed=len(batch.history.failed),
            )

    def _transition(self, target: MigrationPhase) -> None:
        if not self._phase.can_transition_to(target):
            raise InvalidPhaseTransitionError(self._phase.value, target.value)
        logger.debug("Migration phase %s -> %s", self._phase.value, target.value)
        self._phase = target

    def _fail(self, error: MigrationError) -> None:
        if not self._phase.is_terminal:
            self._phase = MigrationPhase.FAILED
        self._finished_at = time.perf_counter()
        self._result = self._build_result(success=False, error_message=str(error))
        logger.error("State migration failed: %s", error)

    def _build_result(self, *, success: bool, error_message: str | None = None) -> MigrationResult:
        return MigrationResult(
            success=success,
            phase=self._phase,
            stats=self.stats,
            issues=list(self._issues),
            failures=list(self._failures),
            skipped_offsets=list(self._skipped_offsets),
            validation=self._validation,
            cancelled=self._is_cancelled,
            error_message=error_message,
        )

    def _elapsed_ms(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._finished_at if self._finished_at is not None else time.perf_counter()
        return (end - self._started_at) * 1000

    def _log_summary(self) -> None:
        stats = self._stats
        logger.info(
            "State migration %s: %d total, %d direct created, %d history created, "
            "%d failed, missing ids (orders=%d, actors=%d, states=%d), "
            "%d pages skipped, %.1fms",
            "cancelled" if self._is_cancelled else "completed",
            stats.total_records,
            stats.direct_records_created,
            stats.history_records_created,
            stats.records_failed,
            stats.missing_order_ids,
            stats.missing_actor_ids,
            stats.missing_state_ids,
            stats.pages_failed,
            stats.processing_time_ms,
        )


__all__ = ["StateMigrator"]
