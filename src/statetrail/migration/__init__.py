"""
Legacy state migration pipeline.

Reconstructs order state history from legacy point-in-time status records
and writes it, alongside a legacy-compatible direct copy, into the target
store.

Key Components:
    - IdentifierResolver: Legacy id to durable id lookup tables
    - StatusMapper: Versioned status code to canonical state mapping
    - BatchReader: Deterministic offset paging over the legacy records
    - TimelineEnhancer: Per-order grouping, from-states and durations
    - Transformer: Direct and history payloads with per-target issues
    - BatchWriter: Independent, retried bulk writes to both targets
    - StateMigrator: Phase state machine driving the run
    - MigrationValidator: Post-run consistency checks

Migration Phases:
    1. IDLE: Migrator created, not started
    2. BUILDING_LOOKUPS: Actor and order lookups being built
    3. MAPPING: Status mapping being built
    4. PAGING: Pages being processed
    5. COMPLETED: All pages processed (or run cancelled)

Usage:
    >>> from statetrail.migration import StateMigrator, LoggingProgressReporter
    >>>
    >>> migrator = StateMigrator(
    ...     source,
    ...     target,
    ...     progress_callback=LoggingProgressReporter(),
    ... )
    >>> result = await migrator.run()
    >>> result.validation.is_consistent
    True
"""

from statetrail.migration.orchestrator import StateMigrator
from statetrail.migration.progress import LoggingProgressReporter
from statetrail.migration.reader import BatchReader
from statetrail.migration.resolver import (
    IdentifierMappings,
    IdentifierResolver,
    LookupStatus,
    LookupTable,
)
from statetrail.migration.status_mapping import (
    DEFAULT_STATUS_RANGE,
    STATUS_RULES_V1,
    PositionalFallback,
    StatusMapper,
    StatusMappingTable,
    StatusRule,
    build_mapping_table,
)
from statetrail.migration.timeline import (
    EnhancedPage,
    TimelineCursor,
    TimelineEnhancer,
    duration_minutes,
)
from statetrail.migration.transformer import Transformer
from statetrail.migration.validator import MigrationValidator
from statetrail.migration.writer import BatchWriter

__all__ = [
    # Orchestration
    "StateMigrator",
    "LoggingProgressReporter",
    # Lookups
    "IdentifierResolver",
    "IdentifierMappings",
    "LookupTable",
    "LookupStatus",
    # Status mapping
    "StatusMapper",
    "StatusMappingTable",
    "StatusRule",
    "PositionalFallback",
    "STATUS_RULES_V1",
    "DEFAULT_STATUS_RANGE",
    "build_mapping_table",
    # Pipeline
    "BatchReader",
    "TimelineEnhancer",
    "TimelineCursor",
    "EnhancedPage",
    "duration_minutes",
    "Transformer",
    "BatchWriter",
    "MigrationValidator",
]
