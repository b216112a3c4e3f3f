"""
statetrail - Legacy order state history migration for Python.

This library provides:
- Read-only paging over legacy point-in-time status records
- Immutable identifier and status mapping tables built once per run
- Per-order timeline reconstruction with from-states and durations
- Independent, retried bulk writes to a direct table and a history table
- In-memory, SQLite and PostgreSQL store backends
- Post-run validation of the target tables
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("statetrail")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from statetrail.exceptions import (
    BatchWriteError,
    ErrorClassification,
    ErrorHandler,
    ErrorRecoverability,
    ErrorSeverity,
    InvalidPhaseTransitionError,
    LookupBuildError,
    MigrationError,
    MigrationStateError,
    PageReadError,
    RetryConfig,
    StoreTimeoutError,
    TransientStoreError,
    ValidationError,
)
from statetrail.migration import (
    BatchReader,
    BatchWriter,
    IdentifierMappings,
    IdentifierResolver,
    LoggingProgressReporter,
    LookupStatus,
    LookupTable,
    MigrationValidator,
    StateMigrator,
    StatusMapper,
    StatusMappingTable,
    TimelineEnhancer,
    Transformer,
)
from statetrail.models import (
    TARGET_DIRECT,
    TARGET_HISTORY,
    BatchResult,
    EnhancedRecord,
    IssueSeverity,
    IssueTarget,
    LookupKind,
    MigrationConfig,
    MigrationPhase,
    MigrationResult,
    MigrationStatsSnapshot,
    PageProgress,
    RecordIssue,
    TransformResult,
    ValidationReport,
    ValidationViolation,
    WriteFailure,
)
from statetrail.observability import MockTracer, NullTracer, Tracer
from statetrail.records import (
    CanonicalState,
    DirectStateRecord,
    LegacyStateRecord,
    StateHistoryRecord,
)
from statetrail.schemas import get_schema, get_schema_statements
from statetrail.stores import (
    InMemoryLegacySource,
    InMemoryTargetStore,
    LegacyStateSource,
    PostgreSQLLegacySource,
    PostgreSQLTargetStore,
    RowOutcome,
    SQLiteLegacySource,
    SQLiteTargetStore,
    TargetStore,
)

__all__ = [
    "__version__",
    # Records
    "LegacyStateRecord",
    "CanonicalState",
    "DirectStateRecord",
    "StateHistoryRecord",
    # Models
    "TARGET_DIRECT",
    "TARGET_HISTORY",
    "MigrationConfig",
    "MigrationPhase",
    "MigrationResult",
    "MigrationStatsSnapshot",
    "LookupKind",
    "EnhancedRecord",
    "IssueSeverity",
    "IssueTarget",
    "RecordIssue",
    "TransformResult",
    "WriteFailure",
    "BatchResult",
    "PageProgress",
    "ValidationReport",
    "ValidationViolation",
    # Migration
    "StateMigrator",
    "LoggingProgressReporter",
    "IdentifierResolver",
    "IdentifierMappings",
    "LookupTable",
    "LookupStatus",
    "StatusMapper",
    "StatusMappingTable",
    "BatchReader",
    "TimelineEnhancer",
    "Transformer",
    "BatchWriter",
    "MigrationValidator",
    # Stores
    "LegacyStateSource",
    "TargetStore",
    "RowOutcome",
    "InMemoryLegacySource",
    "InMemoryTargetStore",
    "SQLiteLegacySource",
    "SQLiteTargetStore",
    "PostgreSQLLegacySource",
    "PostgreSQLTargetStore",
    # Schemas
    "get_schema",
    "get_schema_statements",
    # Errors
    "MigrationError",
    "MigrationStateError",
    "InvalidPhaseTransitionError",
    "LookupBuildError",
    "PageReadError",
    "BatchWriteError",
    "TransientStoreError",
    "StoreTimeoutError",
    "ValidationError",
    "ErrorHandler",
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "RetryConfig",
    # Observability
    "Tracer",
    "NullTracer",
    "MockTracer",
]
