"""
IdentifierResolver - Builds legacy-to-durable identifier lookup tables.

Earlier migration steps stamped each migrated user and order with its
legacy integer id (``profiles.legacy_user_id`` and
``orders.legacy_instruction_id``). The resolver reads those columns once
per run and builds immutable in-memory tables so records can be resolved
without a query per record.

A failing lookup query does not raise here. The resulting table is marked
FAILED so the orchestrator can tell a broken lookup apart from one that is
legitimately empty, and decide whether to abort.

Usage:
    >>> resolver = IdentifierResolver(target_store)
    >>> mappings = await resolver.build_mappings()
    >>> mappings.orders.get(42)
    '7c0e...'
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from statetrail.migration._timeout import bounded
from statetrail.models import LookupKind
from statetrail.observability import (
    ATTR_LOOKUP_KIND,
    ATTR_LOOKUP_SIZE,
    Tracer,
    create_tracer,
)
from statetrail.stores.interface import TargetStore

logger = logging.getLogger(__name__)


class LookupStatus(Enum):
    """
    How a lookup table was built.

    Attributes:
        LOADED: Query succeeded and returned rows.
        EMPTY: Query succeeded and returned no rows.
        FAILED: Query failed; the table is empty.
    """

    LOADED = "loaded"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class LookupTable:
    """
    Immutable legacy id to durable id table for one lookup kind.

    Attributes:
        kind: Which lookup this table holds.
        mapping: Read-only legacy id to durable id mapping.
        status: How the table was built.
        error: Error text when status is FAILED.
        duplicates: Legacy ids seen more than once (first durable id kept).
    """

    kind: LookupKind
    mapping: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))
    status: LookupStatus = LookupStatus.EMPTY
    error: str | None = None
    duplicates: tuple[int, ...] = ()

    def get(self, legacy_id: int | None) -> str | None:
        """Resolve a legacy id, or None when absent or unknown."""
        if legacy_id is None:
            return None
        return self.mapping.get(legacy_id)

    @property
    def failed(self) -> bool:
        """Whether the lookup query failed."""
        return self.status == LookupStatus.FAILED

    def __len__(self) -> int:
        return len(self.mapping)

    def __contains__(self, legacy_id: object) -> bool:
        return legacy_id in self.mapping

    def __iter__(self) -> Iterator[int]:
        return iter(self.mapping)


@dataclass(frozen=True)
class IdentifierMappings:
    """
    The identifier tables for a run.

    Attributes:
        actors: Legacy user id to profile id.
        orders: Legacy instruction id to order id.
    """

    actors: LookupTable
    orders: LookupTable

    @property
    def failed_kinds(self) -> list[LookupKind]:
        """Lookups whose query failed."""
        return [table.kind for table in (self.actors, self.orders) if table.failed]

    def table(self, kind: LookupKind) -> LookupTable:
        """Get the table for a lookup kind."""
        return self.actors if kind == LookupKind.ACTOR else self.orders


class IdentifierResolver:
    """
    Builds the actor and order lookup tables from the target store.

    Example:
        >>> resolver = IdentifierResolver(target, query_timeout_seconds=30)
        >>> mappings = await resolver.build_mappings()
        >>> if mappings.failed_kinds:
        ...     print("lookups failed:", mappings.failed_kinds)
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
        Initialize the resolver.

        Args:
            target_store: Store holding the profiles and orders tables.
            query_timeout_seconds: Timeout for each lookup query.
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._target = target_store
        self._query_timeout_seconds = query_timeout_seconds

    async def build_mappings(self) -> IdentifierMappings:
        """
        Build both lookup tables.

        Returns:
            IdentifierMappings with one table per LookupKind.
        """
        actors = await self.build_table(LookupKind.ACTOR)
        orders = await self.build_table(LookupKind.ORDER)

        logger.info(
            "Built identifier lookups: %d actors (%s), %d orders (%s)",
            len(actors),
            actors.status.value,
            len(orders),
            orders.status.value,
        )
        return IdentifierMappings(actors=actors, orders=orders)

    async def build_table(self, kind: LookupKind) -> LookupTable:
        """
        Build the lookup table for one kind.

        Args:
            kind: Which lookup to build.

        Returns:
            LookupTable; FAILED with an empty mapping if the query failed.
        """
        with self._tracer.span(
            "statetrail.resolver.build_table",
            {ATTR_LOOKUP_KIND: kind.value},
        ) as span:
            try:
                pairs = await bounded(
                    self._target.fetch_legacy_id_map(kind),
                    f"fetch_legacy_id_map({kind.value})",
                    self._query_timeout_seconds,
                )
            except Exception as e:
                logger.warning("Failed to build %s lookup: %s", kind.value, e)
                return LookupTable(kind=kind, status=LookupStatus.FAILED, error=str(e))

            mapping: dict[int, str] = {}
            duplicates: list[int] = []
            for legacy_id, durable_id in pairs:
                if legacy_id in mapping:
                    duplicates.append(legacy_id)
                    continue
                mapping[legacy_id] = durable_id

            if duplicates:
                logger.warning(
                    "%d duplicate legacy ids in %s lookup; keeping first durable id: %s",
                    len(duplicates),
                    kind.value,
                    duplicates[:10],
                )

            if span is not None:
                span.set_attribute(ATTR_LOOKUP_SIZE, len(mapping))

            return LookupTable(
                kind=kind,
                mapping=MappingProxyType(mapping),
                status=LookupStatus.LOADED if mapping else LookupStatus.EMPTY,
                duplicates=tuple(duplicates),
            )


__all__ = [
    "LookupStatus",
    "LookupTable",
    "IdentifierMappings",
    "IdentifierResolver",
]
