"""
TimelineEnhancer - Reconstructs per-order state transitions.

Legacy records are point-in-time observations. The enhancer groups a
page's records by order, sorts each group chronologically, resolves
identifiers and states, and links every record to its predecessor so the
history target gets from-states and durations.

By default the last record seen for each order is kept between pages, so
an order whose records straddle a page boundary keeps its predecessor
link. With carry-over disabled every page starts fresh timelines.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from statetrail.migration.resolver import IdentifierMappings
from statetrail.migration.status_mapping import StatusMappingTable
from statetrail.models import EnhancedRecord
from statetrail.records import LegacyStateRecord

logger = logging.getLogger(__name__)


def duration_minutes(start: datetime, end: datetime) -> int:
    """
    Whole minutes between two timestamps, rounding halves up.

    Zero and negative values are returned as-is.
    """
    return math.floor((end - start).total_seconds() / 60 + 0.5)


@dataclass(frozen=True)
class TimelineCursor:
    """
    Last record seen for one order.

    Attributes:
        to_state_id: Canonical state the record transitioned into.
        changed_at: When it happened.
        legacy_state_id: Legacy primary key of the record.
    """

    to_state_id: str | None
    changed_at: datetime
    legacy_state_id: int


@dataclass
class EnhancedPage:
    """
    Output of enhancing one page.

    Attributes:
        records: Enhanced records, grouped by order in first-seen order.
        missing_order_ids: Records whose legacy order id did not resolve.
        missing_actor_ids: Records with an actor id that did not resolve.
        missing_state_ids: Records whose status code did not map.
        carried_over: Records linked to a predecessor from an earlier page.
    """

    records: list[EnhancedRecord] = field(default_factory=list)
    missing_order_ids: int = 0
    missing_actor_ids: int = 0
    missing_state_ids: int = 0
    carried_over: int = 0


class TimelineEnhancer:
    """
    Enhances pages of legacy records with resolved ids and transitions.

    Example:
        >>> enhancer = TimelineEnhancer(mappings, status_table)
        >>> page = enhancer.enhance(records)
        >>> page.records[1].duration_minutes
        10
    """

    def __init__(
        self,
        mappings: IdentifierMappings,
        status_table: StatusMappingTable,
        *,
        carry_over: bool = True,
        calculate_durations: bool = True,
    ) -> None:
        """
        Initialize the enhancer.

        Args:
            mappings: Actor and order lookup tables.
            status_table: Status code to state id table.
            carry_over: Keep each order's last record between pages.
            calculate_durations: Set from-states and durations.
        """
        self._mappings = mappings
        self._status_table = status_table
        self._carry_over = carry_over
        self._calculate_durations = calculate_durations
        self._cursors: dict[int, TimelineCursor] = {}

    @property
    def tracked_orders(self) -> int:
        """Number of orders with a carried-over cursor."""
        return len(self._cursors)

    def cursor(self, legacy_order_id: int) -> TimelineCursor | None:
        """Last record seen for an order, if carried over."""
        return self._cursors.get(legacy_order_id)

    def reset(self) -> None:
        """Forget every carried-over cursor."""
        self._cursors.clear()

    def enhance(self, records: Iterable[LegacyStateRecord]) -> EnhancedPage:
        """
        Enhance one page of records.

        Args:
            records: Legacy records of the page, in any order.

        Returns:
            EnhancedPage with one EnhancedRecord per input record.
        """
        groups: dict[int, list[LegacyStateRecord]] = {}
        for record in records:
            groups.setdefault(record.order_id, []).append(record)

        page = EnhancedPage()
        for legacy_order_id, group in groups.items():
            group.sort(key=lambda r: (r.changed_at, r.id))
            previous = self._cursors.get(legacy_order_id) if self._carry_over else None
            if previous is not None and self._calculate_durations:
                page.carried_over += 1

            for record in group:
                enhanced = self._resolve(record, page)
                if previous is not None and self._calculate_durations:
                    enhanced.from_state_id = previous.to_state_id
                    enhanced.duration_minutes = duration_minutes(
                        previous.changed_at, record.changed_at
                    )
                page.records.append(enhanced)
                previous = TimelineCursor(
                    to_state_id=enhanced.to_state_id,
                    changed_at=record.changed_at,
                    legacy_state_id=record.id,
                )

            if self._carry_over and previous is not None:
                self._cursors[legacy_order_id] = previous

        if page.missing_order_ids or page.missing_state_ids:
            logger.debug(
                "Page enhanced with %d missing orders, %d missing actors, %d missing states",
                page.missing_order_ids,
                page.missing_actor_ids,
                page.missing_state_ids,
            )
        return page

    def _resolve(self, record: LegacyStateRecord, page: EnhancedPage) -> EnhancedRecord:
        enhanced = EnhancedRecord(
            legacy=record,
            resolved_order_id=self._mappings.orders.get(record.order_id),
            resolved_actor_id=self._mappings.actors.get(record.actor_id),
            to_state_id=self._status_table.resolve(record.status_code),
        )
        if enhanced.resolved_order_id is None:
            page.missing_order_ids += 1
        if record.actor_id is not None and enhanced.resolved_actor_id is None:
            page.missing_actor_ids += 1
        if enhanced.to_state_id is None:
            page.missing_state_ids += 1
        return enhanced


__all__ = [
    "duration_minutes",
    "TimelineCursor",
    "EnhancedPage",
    "TimelineEnhancer",
]
