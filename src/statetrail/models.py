"""
Data models for the state migration engine.

This module defines the configuration, phase state machine, transient
pipeline values, and reporting structures shared by the migration
components.

Models in this module:

Enums:
    - MigrationPhase: Orchestrator lifecycle phases
    - LookupKind: Identifier lookups resolved during a run
    - IssueTarget / IssueSeverity: Classification of per-record issues

Configuration:
    - MigrationConfig: Tunables for a migration run

Pipeline values:
    - EnhancedRecord: Legacy record plus resolved ids and timeline fields
    - RecordIssue, TransformResult: Output of the transformer
    - WriteFailure, TargetWriteResult, BatchResult: Output of the batch writer

Reporting:
    - MigrationStats / MigrationStatsSnapshot: Run statistics
    - PageProgress: Progress emitted after each page
    - ValidationViolation / ValidationReport: Post-run validation
    - MigrationResult: Final result of a run
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from statetrail.exceptions import RetryConfig
from statetrail.records import DirectStateRecord, LegacyStateRecord, StateHistoryRecord

TARGET_DIRECT = "instruction_states"
TARGET_HISTORY = "order_state_history"


class MigrationPhase(Enum):
    """
    Orchestrator lifecycle phases.

    State machine transitions:
        IDLE -> BUILDING_LOOKUPS -> MAPPING -> PAGING -> COMPLETED
        Any non-terminal phase -> FAILED (unrecoverable error)

    Attributes:
        IDLE: Migrator created, not started.
        BUILDING_LOOKUPS: Building actor and order identifier tables.
        MAPPING: Building the status code to canonical state table.
        PAGING: Processing pages of legacy records.
        COMPLETED: Every page has been processed (or the run was cancelled).
        FAILED: The run stopped on an unrecoverable error.
    """

    IDLE = "idle"
    BUILDING_LOOKUPS = "building_lookups"
    MAPPING = "mapping"
    PAGING = "paging"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal phase."""
        return self in (MigrationPhase.COMPLETED, MigrationPhase.FAILED)

    def can_transition_to(self, target: MigrationPhase) -> bool:
        """
        Check if transition to target phase is valid.

        Args:
            target: The target phase to transition to.

        Returns:
            True if the transition is valid.
        """
        valid_transitions: dict[MigrationPhase, set[MigrationPhase]] = {
            MigrationPhase.IDLE: {MigrationPhase.BUILDING_LOOKUPS, MigrationPhase.FAILED},
            MigrationPhase.BUILDING_LOOKUPS: {MigrationPhase.MAPPING, MigrationPhase.FAILED},
            MigrationPhase.MAPPING: {MigrationPhase.PAGING, MigrationPhase.FAILED},
            MigrationPhase.PAGING: {MigrationPhase.COMPLETED, MigrationPhase.FAILED},
            MigrationPhase.COMPLETED: set(),
            MigrationPhase.FAILED: set(),
        }
        return target in valid_transitions[self]


class LookupKind(Enum):
    """
    Identifier lookups bridging legacy integer ids to durable target ids.

    Attributes:
        ACTOR: Users, from ``profiles.legacy_user_id``.
        ORDER: Orders, from ``orders.legacy_instruction_id``.
    """

    ACTOR = "actor"
    ORDER = "order"


class IssueTarget(Enum):
    """Target table a per-record issue applies to."""

    DIRECT = TARGET_DIRECT
    HISTORY = TARGET_HISTORY


class IssueSeverity(Enum):
    """
    Severity of a per-record issue.

    ERROR excludes the record from a target and counts as a failure.
    WARNING excludes the record from a target but is tracked only through
    the missing-id counters.
    """

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for a state migration run.

    This class is immutable (frozen) so it cannot change mid-run.

    Attributes:
        batch_size: Legacy records per page (default 100).
        inter_batch_delay_ms: Pause between pages to bound store load (default 100).
        query_timeout_seconds: Timeout for each individual store call (default 60).
        max_write_attempts: Attempts per bulk write for transient errors (default 3).
        retry_base_delay_ms: Base backoff delay for write retries (default 1000).
        retry_max_delay_ms: Maximum backoff delay for write retries (default 30000).
        carry_timeline_across_pages: Keep each order's last state between pages
            so records straddling a page boundary keep their predecessor (default True).
        calculate_durations: Compute from-states and durations (default True).
        fail_on_lookup_error: Abort when an identifier lookup query fails,
            instead of continuing with an empty table (default True).
        validate_after_run: Run the validator once the run completes (default True).
        status_default_range: Inclusive range of status codes that fall back
            to the first canonical state when not explicitly mapped (default 6..20).

    Example:
        >>> config = MigrationConfig(batch_size=500, inter_batch_delay_ms=0)
        >>> config.batch_size
        500
    """

    batch_size: int = 100
    inter_batch_delay_ms: int = 100
    query_timeout_seconds: float = 60.0
    max_write_attempts: int = 3
    retry_base_delay_ms: float = 1000.0
    retry_max_delay_ms: float = 30000.0
    carry_timeline_across_pages: bool = True
    calculate_durations: bool = True
    fail_on_lookup_error: bool = True
    validate_after_run: bool = True
    status_default_range: tuple[int, int] = (6, 20)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")

        if self.inter_batch_delay_ms < 0:
            raise ValueError(
                f"inter_batch_delay_ms must be >= 0, got {self.inter_batch_delay_ms}"
            )

        if self.query_timeout_seconds <= 0:
            raise ValueError(
                f"query_timeout_seconds must be > 0, got {self.query_timeout_seconds}"
            )

        if self.max_write_attempts < 1:
            raise ValueError(f"max_write_attempts must be >= 1, got {self.max_write_attempts}")

        if self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ValueError(
                f"retry_max_delay_ms ({self.retry_max_delay_ms}) must be >= "
                f"retry_base_delay_ms ({self.retry_base_delay_ms})"
            )

        low, high = self.status_default_range
        if low > high:
            raise ValueError(f"status_default_range is empty: {self.status_default_range}")

    @property
    def retry_config(self) -> RetryConfig:
        """Retry policy for bulk writes."""
        return RetryConfig(
            max_attempts=self.max_write_attempts,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for logging or storage.

        Returns:
            Dictionary representation suitable for JSON serialization.
        """
        return {
            "batch_size": self.batch_size,
            "inter_batch_delay_ms": self.inter_batch_delay_ms,
            "query_timeout_seconds": self.query_timeout_seconds,
            "max_write_attempts": self.max_write_attempts,
            "retry_base_delay_ms": self.retry_base_delay_ms,
            "retry_max_delay_ms": self.retry_max_delay_ms,
            "carry_timeline_across_pages": self.carry_timeline_across_pages,
            "calculate_durations": self.calculate_durations,
            "fail_on_lookup_error": self.fail_on_lookup_error,
            "validate_after_run": self.validate_after_run,
            "status_default_range": list(self.status_default_range),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfig:
        """
        Create from dictionary.

        Args:
            data: Dictionary containing configuration values.

        Returns:
            MigrationConfig instance.
        """
        return cls(
            batch_size=data.get("batch_size", 100),
            inter_batch_delay_ms=data.get("inter_batch_delay_ms", 100),
            query_timeout_seconds=data.get("query_timeout_seconds", 60.0),
            max_write_attempts=data.get("max_write_attempts", 3),
            retry_base_delay_ms=data.get("retry_base_delay_ms", 1000.0),
            retry_max_delay_ms=data.get("retry_max_delay_ms", 30000.0),
            carry_timeline_across_pages=data.get("carry_timeline_across_pages", True),
            calculate_durations=data.get("calculate_durations", True),
            fail_on_lookup_error=data.get("fail_on_lookup_error", True),
            validate_after_run=data.get("validate_after_run", True),
            status_default_range=tuple(data.get("status_default_range", (6, 20))),  # type: ignore[arg-type]
        )


@dataclass
class EnhancedRecord:
    """
    A legacy record plus the fields derived by the timeline enhancer.

    Transient: created per page and discarded once the page is written.

    Attributes:
        legacy: The source record.
        resolved_order_id: Durable order id, if the legacy id resolved.
        resolved_actor_id: Durable user id, if the legacy actor resolved.
        to_state_id: Canonical state the record transitions into.
        from_state_id: Canonical state of the order's preceding record.
        duration_minutes: Minutes since the order's preceding record.
    """

    legacy: LegacyStateRecord
    resolved_order_id: str | None = None
    resolved_actor_id: str | None = None
    to_state_id: str | None = None
    from_state_id: str | None = None
    duration_minutes: int | None = None


@dataclass(frozen=True)
class RecordIssue:
    """
    A per-record, per-target problem found while transforming.

    Attributes:
        legacy_state_id: Primary key of the legacy record.
        target: Target table the issue applies to.
        severity: ERROR or WARNING.
        message: Human-readable description.
    """

    legacy_state_id: int
    target: IssueTarget
    severity: IssueSeverity
    message: str


@dataclass
class TransformResult:
    """
    Target-shaped payloads for one page.

    Attributes:
        direct_records: Payloads for ``instruction_states``.
        history_records: Payloads for ``order_state_history``.
        issues: Errors and warnings, per record and per target.
    """

    direct_records: list[DirectStateRecord] = field(default_factory=list)
    history_records: list[StateHistoryRecord] = field(default_factory=list)
    issues: list[RecordIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[RecordIssue]:
        """Issues that exclude a record and count as failures."""
        return [i for i in self.issues if i.severity == IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[RecordIssue]:
        """Issues that exclude a record from the history target only."""
        return [i for i in self.issues if i.severity == IssueSeverity.WARNING]


@dataclass(frozen=True)
class WriteFailure:
    """
    A payload that was not written, with the reason.

    Attributes:
        target: Target table name.
        payload: The payload that failed.
        error: Error text from the store.
        attempts: Number of write attempts made.
        batch_number: Page the payload belonged to.
    """

    target: str
    payload: DirectStateRecord | StateHistoryRecord
    error: str
    attempts: int = 1
    batch_number: int = 0

    @property
    def legacy_state_id(self) -> int:
        """Legacy primary key of the failed payload."""
        return self.payload.legacy_state_id


@dataclass
class TargetWriteResult:
    """
    Outcome of a bulk write to one target.

    Attributes:
        target: Target table name.
        written: Payloads persisted.
        failed: Payloads not persisted.
        attempts: Bulk write attempts made.
    """

    target: str
    written: list[DirectStateRecord | StateHistoryRecord] = field(default_factory=list)
    failed: list[WriteFailure] = field(default_factory=list)
    attempts: int = 0


@dataclass
class BatchResult:
    """
    Outcome of writing one page to both targets.

    Attributes:
        batch_number: 1-based page number.
        direct: Result for ``instruction_states``.
        history: Result for ``order_state_history``.
        processing_time_ms: Time spent writing.
    """

    batch_number: int
    direct: TargetWriteResult
    history: TargetWriteResult
    processing_time_ms: float = 0.0

    @property
    def failures(self) -> list[WriteFailure]:
        """Failures across both targets."""
        return [*self.direct.failed, *self.history.failed]


@dataclass(frozen=True)
class MigrationStatsSnapshot:
    """
    Read-only copy of a run's statistics.

    Attributes:
        total_records: Legacy records counted up front.
        direct_records_created: Rows written to ``instruction_states``.
        history_records_created: Rows written to ``order_state_history``.
        records_failed: Transform errors plus rows rejected by either target.
        missing_order_ids: Records whose legacy order id did not resolve.
        missing_actor_ids: Records whose legacy actor id did not resolve.
        missing_state_ids: Records whose status code did not map to a state.
        processing_time_ms: Wall time of the run so far.
        records_read: Records actually read from the source.
        pages_processed: Pages read successfully.
        pages_failed: Pages skipped after a read failure.
    """

    total_records: int = 0
    direct_records_created: int = 0
    history_records_created: int = 0
    records_failed: int = 0
    missing_order_ids: int = 0
    missing_actor_ids: int = 0
    missing_state_ids: int = 0
    processing_time_ms: float = 0.0
    records_read: int = 0
    pages_processed: int = 0
    pages_failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging or JSON output."""
        return asdict(self)


@dataclass
class MigrationStats:
    """
    Mutable statistics owned by a single orchestrator instance.

    Use snapshot() to hand out a read-only copy.
    """

    total_records: int = 0
    direct_records_created: int = 0
    history_records_created: int = 0
    records_failed: int = 0
    missing_order_ids: int = 0
    missing_actor_ids: int = 0
    missing_state_ids: int = 0
    processing_time_ms: float = 0.0
    records_read: int = 0
    pages_processed: int = 0
    pages_failed: int = 0

    def snapshot(self) -> MigrationStatsSnapshot:
        """Return a frozen copy of the current values."""
        return MigrationStatsSnapshot(**asdict(self))


@dataclass(frozen=True)
class PageProgress:
    """
    Progress reported after each page.

    Attributes:
        batch_number: 1-based page number.
        total_batches: Pages expected for the run.
        offset: Offset of the page.
        records_processed: Records covered so far (offset + page length).
        records_total: Total records counted up front.
        direct_written: Rows written to ``instruction_states`` for this page.
        direct_failed: Rows not written to ``instruction_states`` for this page.
        history_written: Rows written to ``order_state_history`` for this page.
        history_failed: Rows rejected by ``order_state_history`` for this page.
        page_failed: Whether the page read failed and was skipped.
    """

    batch_number: int
    total_batches: int
    offset: int
    records_processed: int
    records_total: int
    direct_written: int = 0
    direct_failed: int = 0
    history_written: int = 0
    history_failed: int = 0
    page_failed: bool = False

    @property
    def progress_percent(self) -> float:
        """Progress as a percentage (0-100), 0.0 when the total is unknown."""
        if self.records_total == 0:
            return 0.0
        return min(100.0, (self.records_processed / self.records_total) * 100)


@dataclass(frozen=True)
class ValidationViolation:
    """
    A consistency problem found by the validator.

    Attributes:
        violation_type: Short machine-readable type.
        expected: Expected value, if applicable.
        actual: Observed value, if applicable.
        details: Additional description.
    """

    violation_type: str
    expected: int | None = None
    actual: int | None = None
    details: str | None = None

    def __str__(self) -> str:
        """Human-readable violation description."""
        parts = [f"[{self.violation_type}]"]
        if self.expected is not None and self.actual is not None:
            parts.append(f"expected={self.expected}, actual={self.actual}")
        if self.details:
            parts.append(f"({self.details})")
        return " ".join(parts)


@dataclass(frozen=True)
class ValidationReport:
    """
    Result of the post-migration validation pass.

    Attributes:
        direct_count: Rows in ``instruction_states`` carrying a legacy id.
        history_count: Rows in ``order_state_history``.
        missing_order_links: Direct rows whose order does not exist.
        orphan_history_records: History rows without a matching direct row.
        violations: Consistency problems found.
        validated_at: When validation ran.
        duration_seconds: Time taken.
        error: Error text if a validation query failed.
    """

    direct_count: int
    history_count: int
    missing_order_links: int
    orphan_history_records: int
    violations: list[ValidationViolation]
    validated_at: datetime
    duration_seconds: float
    error: str | None = None

    @property
    def is_consistent(self) -> bool:
        """True when every check ran and no violation was found."""
        return self.error is None and not self.violations

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "direct_count": self.direct_count,
            "history_count": self.history_count,
            "missing_order_links": self.missing_order_links,
            "orphan_history_records": self.orphan_history_records,
            "is_consistent": self.is_consistent,
            "violations": [str(v) for v in self.violations],
            "validated_at": self.validated_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "error": self.error,
        }


@dataclass(frozen=True)
class MigrationResult:
    """
    Final result of a migration run.

    Every record that was not written is traceable through ``issues``
    (transform-time exclusions) and ``failures`` (rows rejected by a target).

    Attributes:
        success: True when the run completed without an unrecoverable error.
        phase: Terminal phase reached.
        stats: Statistics at the end of the run.
        issues: Transform errors and warnings across all pages.
        failures: Write failures across all pages.
        skipped_offsets: Offsets of pages whose read failed.
        validation: Validation report, when validation ran.
        cancelled: Whether the run stopped early on request.
        error_message: Error text for failed runs.
    """

    success: bool
    phase: MigrationPhase
    stats: MigrationStatsSnapshot
    issues: list[RecordIssue] = field(default_factory=list)
    failures: list[WriteFailure] = field(default_factory=list)
    skipped_offsets: list[int] = field(default_factory=list)
    validation: ValidationReport | None = None
    cancelled: bool = False
    error_message: str | None = None


__all__ = [
    "TARGET_DIRECT",
    "TARGET_HISTORY",
    "MigrationPhase",
    "LookupKind",
    "IssueTarget",
    "IssueSeverity",
    "MigrationConfig",
    "EnhancedRecord",
    "RecordIssue",
    "TransformResult",
    "WriteFailure",
    "TargetWriteResult",
    "BatchResult",
    "MigrationStats",
    "MigrationStatsSnapshot",
    "PageProgress",
    "ValidationViolation",
    "ValidationReport",
    "MigrationResult",
]
