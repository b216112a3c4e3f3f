"""
Standard span attributes for statetrail.

Attribute constants used across all statetrail components for consistent
span naming. Database attributes follow OpenTelemetry semantic conventions.

Example:
    >>> from statetrail.observability.attributes import ATTR_OFFSET, ATTR_BATCH_SIZE
    >>>
    >>> with tracer.span(
    ...     "statetrail.batch_reader.read_page",
    ...     {ATTR_OFFSET: offset, ATTR_BATCH_SIZE: limit},
    ... ):
    ...     pass
"""

# =============================================================================
# Paging Attributes
# =============================================================================

ATTR_OFFSET = "statetrail.page.offset"
"""Offset of the page being read (integer)."""

ATTR_BATCH_SIZE = "statetrail.page.batch_size"
"""Requested page size (integer)."""

ATTR_BATCH_NUMBER = "statetrail.page.batch_number"
"""1-based number of the page within the run (integer)."""

ATTR_RECORD_COUNT = "statetrail.record.count"
"""Number of records involved in an operation (integer)."""

# =============================================================================
# Lookup Attributes
# =============================================================================

ATTR_LOOKUP_KIND = "statetrail.lookup.kind"
"""Identifier lookup being built ('actor', 'order')."""

ATTR_LOOKUP_SIZE = "statetrail.lookup.size"
"""Number of entries in a lookup table (integer)."""

ATTR_STATUS_MAPPING_VERSION = "statetrail.status_mapping.version"
"""Version tag of the status rule table in use."""

# =============================================================================
# Write Attributes
# =============================================================================

ATTR_TARGET_TABLE = "statetrail.target.table"
"""Target table of a bulk write ('instruction_states', 'order_state_history')."""

ATTR_ROWS_WRITTEN = "statetrail.rows.written"
"""Rows successfully written (integer)."""

ATTR_ROWS_FAILED = "statetrail.rows.failed"
"""Rows rejected or lost (integer)."""

ATTR_RETRY_COUNT = "statetrail.retry.count"
"""Number of retries performed (integer)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_MIGRATION_PHASE = "statetrail.migration.phase"
"""Current orchestrator phase."""

ATTR_MIGRATION_RECORDS_TOTAL = "statetrail.migration.records_total"
"""Total legacy records to migrate (integer)."""

# =============================================================================
# Database Attributes (OpenTelemetry Semantic Conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql', 'sqlite')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'SELECT', 'INSERT')."""


__all__ = [
    "ATTR_OFFSET",
    "ATTR_BATCH_SIZE",
    "ATTR_BATCH_NUMBER",
    "ATTR_RECORD_COUNT",
    "ATTR_LOOKUP_KIND",
    "ATTR_LOOKUP_SIZE",
    "ATTR_STATUS_MAPPING_VERSION",
    "ATTR_TARGET_TABLE",
    "ATTR_ROWS_WRITTEN",
    "ATTR_ROWS_FAILED",
    "ATTR_RETRY_COUNT",
    "ATTR_MIGRATION_PHASE",
    "ATTR_MIGRATION_RECORDS_TOTAL",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
]
