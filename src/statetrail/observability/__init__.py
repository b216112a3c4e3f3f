"""
Observability utilities for statetrail.

Provides the composition-based Tracer used by every component and the
standard span attribute names.

Example:
    >>> from statetrail.observability import create_tracer
    >>>
    >>> class MyWriter:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from statetrail.observability.attributes import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_LOOKUP_KIND,
    ATTR_LOOKUP_SIZE,
    ATTR_MIGRATION_PHASE,
    ATTR_MIGRATION_RECORDS_TOTAL,
    ATTR_OFFSET,
    ATTR_RECORD_COUNT,
    ATTR_RETRY_COUNT,
    ATTR_ROWS_FAILED,
    ATTR_ROWS_WRITTEN,
    ATTR_STATUS_MAPPING_VERSION,
    ATTR_TARGET_TABLE,
)
from statetrail.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_LOOKUP_KIND",
    "ATTR_LOOKUP_SIZE",
    "ATTR_MIGRATION_PHASE",
    "ATTR_MIGRATION_RECORDS_TOTAL",
    "ATTR_OFFSET",
    "ATTR_RECORD_COUNT",
    "ATTR_RETRY_COUNT",
    "ATTR_ROWS_FAILED",
    "ATTR_ROWS_WRITTEN",
    "ATTR_STATUS_MAPPING_VERSION",
    "ATTR_TARGET_TABLE",
]
