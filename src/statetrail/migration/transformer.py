"""
Transformer - Shapes enhanced records into target payloads.

Each enhanced record yields up to two payloads:

- a direct ``instruction_states`` row, when the order resolved;
- an ``order_state_history`` row, when both the order and the target
  state resolved.

Problems are reported per record and per target, so a record can succeed
on one target and be skipped on the other.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import ValidationError as PydanticValidationError

from statetrail.models import (
    EnhancedRecord,
    IssueSeverity,
    IssueTarget,
    RecordIssue,
    TransformResult,
)
from statetrail.records import DirectStateRecord, StateHistoryRecord

logger = logging.getLogger(__name__)


class Transformer:
    """
    Builds direct and history payloads from enhanced records.

    Never raises for a bad record: payload validation errors become ERROR
    issues on the affected target.
    """

    def transform(self, enhanced: Iterable[EnhancedRecord]) -> TransformResult:
        """
        Transform one page of enhanced records.

        Args:
            enhanced: Records from the timeline enhancer.

        Returns:
            TransformResult with payloads for both targets and the issues found.
        """
        result = TransformResult()
        for record in enhanced:
            self._add_direct(record, result)
            self._add_history(record, result)

        if result.issues:
            logger.debug(
                "Transformed page with %d errors and %d warnings",
                len(result.errors),
                len(result.warnings),
            )
        return result

    def build_direct(self, record: EnhancedRecord) -> DirectStateRecord:
        """Build the ``instruction_states`` payload for a resolved record."""
        legacy = record.legacy
        return DirectStateRecord(
            legacy_state_id=legacy.id,
            order_id=record.resolved_order_id,
            status_code=legacy.status_code,
            is_active=legacy.is_active,
            changed_by_id=record.resolved_actor_id,
            changed_at=legacy.changed_at,
            legacy_instruction_id=legacy.order_id,
            legacy_actor_id=legacy.actor_id,
        )

    def build_history(self, record: EnhancedRecord) -> StateHistoryRecord:
        """Build the ``order_state_history`` payload for a resolved record."""
        legacy = record.legacy
        return StateHistoryRecord(
            legacy_state_id=legacy.id,
            order_id=record.resolved_order_id,
            from_state_id=record.from_state_id,
            to_state_id=record.to_state_id,
            changed_by_id=record.resolved_actor_id,
            duration_minutes=record.duration_minutes,
            metadata={
                "legacy_state_id": legacy.id,
                "legacy_status_code": legacy.status_code,
                "legacy_instruction_id": legacy.order_id,
                "legacy_actor_id": legacy.actor_id,
            },
            created_at=legacy.changed_at,
        )

    def _add_direct(self, record: EnhancedRecord, result: TransformResult) -> None:
        if record.resolved_order_id is None:
            self._issue(
                result,
                record,
                IssueTarget.DIRECT,
                IssueSeverity.ERROR,
                f"Missing order_id for instruction {record.legacy.order_id}",
            )
            return
        try:
            result.direct_records.append(self.build_direct(record))
        except PydanticValidationError as e:
            self._issue(
                result,
                record,
                IssueTarget.DIRECT,
                IssueSeverity.ERROR,
                f"Transformation failed: {e}",
            )

    def _add_history(self, record: EnhancedRecord, result: TransformResult) -> None:
        missing = [
            name
            for name, value in (
                ("order_id", record.resolved_order_id),
                ("to_state_id", record.to_state_id),
            )
            if value is None
        ]
        for name in missing:
            self._issue(
                result,
                record,
                IssueTarget.HISTORY,
                IssueSeverity.WARNING,
                f"Skipping order_state_history - missing {name}",
            )
        if missing:
            return
        try:
            result.history_records.append(self.build_history(record))
        except PydanticValidationError as e:
            self._issue(
                result,
                record,
                IssueTarget.HISTORY,
                IssueSeverity.ERROR,
                f"Transformation failed: {e}",
            )

    @staticmethod
    def _issue(
        result: TransformResult,
        record: EnhancedRecord,
        target: IssueTarget,
        severity: IssueSeverity,
        message: str,
    ) -> None:
        result.issues.append(
            RecordIssue(
                legacy_state_id=record.legacy.id,
                target=target,
                severity=severity,
                message=message,
            )
        )


__all__ = ["Transformer"]
