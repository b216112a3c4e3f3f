"""
StatusMapper - Maps legacy numeric status codes to canonical workflow states.

The mapping is built once per run from a versioned rule table:

    code  state key     positional fallback
    ----  -----------   -------------------
    1     submitted     first state
    2     in_progress   second state
    3     in_progress   second state
    4     completed     last state
    5     cancelled     last state

A rule prefers the canonical state whose key matches. When no state has
that key, the rule falls back to a position in the active states sorted by
sequence order. Codes in the default range (6..20) that no rule covers map
to the first state. Any other code stays unmapped and is reported as a
missing state.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from statetrail.exceptions import LookupBuildError
from statetrail.migration._timeout import bounded
from statetrail.observability import (
    ATTR_LOOKUP_SIZE,
    ATTR_STATUS_MAPPING_VERSION,
    Tracer,
    create_tracer,
)
from statetrail.records import CanonicalState
from statetrail.stores.interface import TargetStore

logger = logging.getLogger(__name__)


class PositionalFallback(Enum):
    """Position in the sorted canonical states used when no key matches."""

    FIRST = "first"
    SECOND = "second"
    LAST = "last"

    def pick(self, states: Sequence[CanonicalState]) -> CanonicalState | None:
        """Pick the fallback state, or None if there are too few states."""
        if not states:
            return None
        if self == PositionalFallback.FIRST:
            return states[0]
        if self == PositionalFallback.SECOND:
            return states[1] if len(states) > 1 else None
        return states[-1]


@dataclass(frozen=True)
class StatusRule:
    """
    Mapping rule for one legacy status code.

    Attributes:
        status_code: Legacy numeric status code.
        state_key: Preferred canonical state key.
        fallback: Position used when no state has ``state_key``.
    """

    status_code: int
    state_key: str
    fallback: PositionalFallback


STATUS_RULES_V1: tuple[StatusRule, ...] = (
    StatusRule(1, "submitted", PositionalFallback.FIRST),
    StatusRule(2, "in_progress", PositionalFallback.SECOND),
    StatusRule(3, "in_progress", PositionalFallback.SECOND),
    StatusRule(4, "completed", PositionalFallback.LAST),
    StatusRule(5, "cancelled", PositionalFallback.LAST),
)

DEFAULT_STATUS_RANGE: tuple[int, int] = (6, 20)


@dataclass(frozen=True)
class StatusMappingTable:
    """
    Immutable status code to canonical state id table.

    Attributes:
        version: Version of the rule table used.
        mapping: Read-only code to state id mapping.
        explicit_codes: Codes mapped by a rule.
        defaulted_codes: Codes mapped by the default range.
        states: Active canonical states in sequence order.
    """

    version: str
    mapping: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))
    explicit_codes: frozenset[int] = frozenset()
    defaulted_codes: frozenset[int] = frozenset()
    states: tuple[CanonicalState, ...] = ()

    def resolve(self, status_code: int) -> str | None:
        """Canonical state id for a code, or None when unmapped."""
        return self.mapping.get(status_code)

    def is_defaulted(self, status_code: int) -> bool:
        """Whether a code was mapped by the default range."""
        return status_code in self.defaulted_codes

    def __len__(self) -> int:
        return len(self.mapping)

    def __contains__(self, status_code: object) -> bool:
        return status_code in self.mapping


class StatusMapper:
    """
    Builds the status mapping table from the target's canonical states.

    Example:
        >>> mapper = StatusMapper(target)
        >>> table = await mapper.build_status_mapping()
        >>> table.resolve(4) == mapper.map_code(4)
        True
    """

    def __init__(
        self,
        target_store: TargetStore,
        *,
        rules: Sequence[StatusRule] = STATUS_RULES_V1,
        default_range: tuple[int, int] = DEFAULT_STATUS_RANGE,
        version: str = "v1",
        query_timeout_seconds: float = 60.0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the mapper.

        Args:
            target_store: Store holding the order_states table.
            rules: Explicit code rules.
            default_range: Inclusive range of codes defaulting to the first state.
            version: Version label of the rule table.
            query_timeout_seconds: Timeout for the states query.
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._target = target_store
        self._rules = tuple(rules)
        self._default_range = default_range
        self._version = version
        self._query_timeout_seconds = query_timeout_seconds
        self._table: StatusMappingTable | None = None

    @property
    def table(self) -> StatusMappingTable | None:
        """The table from the last build, if any."""
        return self._table

    async def build_status_mapping(self) -> StatusMappingTable:
        """
        Read the canonical states and build the mapping table.

        Returns:
            StatusMappingTable; empty when there are no active states.

        Raises:
            LookupBuildError: If the canonical states cannot be read.
        """
        with self._tracer.span(
            "statetrail.status_mapper.build",
            {ATTR_STATUS_MAPPING_VERSION: self._version},
        ) as span:
            try:
                states = await bounded(
                    self._target.fetch_canonical_states(),
                    "fetch_canonical_states",
                    self._query_timeout_seconds,
                )
            except Exception as e:
                raise LookupBuildError(
                    "canonical_states",
                    str(e),
                    phase="mapping",
                    cause=e,
                ) from e

            self._table = build_mapping_table(
                states,
                rules=self._rules,
                default_range=self._default_range,
                version=self._version,
            )

            if span is not None:
                span.set_attribute(ATTR_LOOKUP_SIZE, len(self._table))

            if not self._table.states:
                logger.warning(
                    "No active canonical states found; every record will be missing a state"
                )
            else:
                logger.info(
                    "Built status mapping %s: %d codes (%d explicit, %d defaulted) over %d states",
                    self._version,
                    len(self._table),
                    len(self._table.explicit_codes),
                    len(self._table.defaulted_codes),
                    len(self._table.states),
                )
            return self._table

    def map_code(self, status_code: int) -> str | None:
        """
        Map a code using the last built table.

        Raises:
            RuntimeError: If build_status_mapping() has not run.
        """
        if self._table is None:
            raise RuntimeError("Status mapping not built. Call build_status_mapping() first.")
        return self._table.resolve(status_code)


def build_mapping_table(
    states: Sequence[CanonicalState],
    *,
    rules: Sequence[StatusRule] = STATUS_RULES_V1,
    default_range: tuple[int, int] = DEFAULT_STATUS_RANGE,
    version: str = "v1",
) -> StatusMappingTable:
    """
    Build a status mapping table from canonical states.

    Args:
        states: Canonical states in any order; inactive ones are ignored.
        rules: Explicit code rules.
        default_range: Inclusive range of codes defaulting to the first state.
        version: Version label of the rule table.

    Returns:
        StatusMappingTable.
    """
    ordered = tuple(
        sorted(
            (state for state in states if state.is_active),
            key=lambda state: (state.sequence_order, state.key),
        )
    )
    # Lowest sequence wins when two active states share a key
    by_key: dict[str, CanonicalState] = {}
    for state in ordered:
        by_key.setdefault(state.key, state)

    mapping: dict[int, str] = {}
    explicit: set[int] = set()
    for rule in rules:
        state = by_key.get(rule.state_key) or rule.fallback.pick(ordered)
        if state is None:
            continue
        mapping[rule.status_code] = state.id
        explicit.add(rule.status_code)

    defaulted: set[int] = set()
    if ordered:
        low, high = default_range
        for code in range(low, high + 1):
            if code not in mapping:
                mapping[code] = ordered[0].id
                defaulted.add(code)

    return StatusMappingTable(
        version=version,
        mapping=MappingProxyType(mapping),
        explicit_codes=frozenset(explicit),
        defaulted_codes=frozenset(defaulted),
        states=ordered,
    )


__all__ = [
    "PositionalFallback",
    "StatusRule",
    "STATUS_RULES_V1",
    "DEFAULT_STATUS_RANGE",
    "StatusMappingTable",
    "StatusMapper",
    "build_mapping_table",
]
