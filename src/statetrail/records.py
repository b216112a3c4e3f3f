"""
Record payloads exchanged with the source and target stores.

Records are immutable pydantic models. Rows read from either store are
validated into these models, which also coerces driver-specific
representations (SQLite stores timestamps as ISO 8601 text and booleans
as integers) into proper Python types.

Models in this module:
    - LegacyStateRecord: One row of the legacy ``dispatch_state`` table
    - CanonicalState: One workflow state of the target ``order_states`` table
    - DirectStateRecord: Legacy-compatible ``instruction_states`` row
    - StateHistoryRecord: Reconstructed ``order_state_history`` row
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class LegacyStateRecord(BaseModel):
    """
    A point-in-time status record from the legacy store.

    Accepts both the legacy column names (``instruction_id``, ``status``,
    ``on``) and the model's own field names.

    Attributes:
        id: Legacy primary key.
        order_id: Legacy integer id of the order (``instruction_id``).
        status_code: Legacy numeric status code (``status``).
        is_active: Legacy active flag (``on``).
        changed_at: When the status was observed.
        actor_id: Legacy integer id of the user who made the change.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    order_id: int = Field(validation_alias=AliasChoices("order_id", "instruction_id"))
    status_code: int = Field(validation_alias=AliasChoices("status_code", "status"))
    is_active: bool = Field(validation_alias=AliasChoices("is_active", "on"))
    changed_at: datetime
    actor_id: int | None = None

    @field_validator("changed_at")
    @classmethod
    def _changed_at_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> LegacyStateRecord:
        """
        Build a record from a database row mapping.

        Args:
            row: Column name to value mapping (aiosqlite.Row, SQLAlchemy
                RowMapping, or a plain dict).

        Returns:
            Validated LegacyStateRecord.
        """
        return cls.model_validate(dict(row))


class CanonicalState(BaseModel):
    """
    A member of the target workflow's ordered set of valid states.

    Attributes:
        id: Durable state identifier.
        key: Semantic key (e.g. "submitted", "completed").
        sequence_order: Position in the canonical progression.
        is_active: Whether the state is in use.
        name: Display name.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    sequence_order: int
    is_active: bool = True
    name: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CanonicalState:
        """Build a state from a database row mapping."""
        return cls.model_validate(dict(row))


class DirectStateRecord(BaseModel):
    """
    Legacy-compatible ``instruction_states`` row.

    Mirrors one legacy record one-to-one. ``legacy_state_id`` is the
    idempotency key and is unique in the target table.
    """

    model_config = ConfigDict(frozen=True)

    legacy_state_id: int
    order_id: str
    status_code: int
    is_active: bool
    changed_by_id: str | None = None
    changed_at: datetime
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    legacy_instruction_id: int
    legacy_actor_id: int | None = None

    @field_validator("changed_at")
    @classmethod
    def _changed_at_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def to_row(self) -> dict[str, Any]:
        """Column name to value mapping for insertion."""
        return self.model_dump()


class StateHistoryRecord(BaseModel):
    """
    Reconstructed ``order_state_history`` row.

    ``from_state_id`` and ``duration_minutes`` are None for the first
    observed transition of an order. ``metadata`` preserves the legacy
    identifiers for traceability.
    """

    model_config = ConfigDict(frozen=True)

    legacy_state_id: int
    order_id: str
    from_state_id: str | None = None
    to_state_id: str
    changed_by_id: str | None = None
    duration_minutes: int | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def to_row(self) -> dict[str, Any]:
        """Column name to value mapping for insertion."""
        return self.model_dump()


__all__ = [
    "LegacyStateRecord",
    "CanonicalState",
    "DirectStateRecord",
    "StateHistoryRecord",
]
