"""Pydantic models shared by the scheduling engine, the stores and the HTTP layer.

These classes are intentionally framework-agnostic so they can be reused by
workers, API responses, and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TimeSlot(str, Enum):
    """Named hour ranges a delivery instant is drawn from."""

    MORNING = "morning"
    FORENOON = "forenoon"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

    @property
    def hours(self) -> Tuple[int, int]:
        """``[start, end)`` hour range of the slot."""
        return SLOT_HOURS[self]


SLOT_HOURS: Dict[TimeSlot, Tuple[int, int]] = {
    TimeSlot.MORNING: (6, 9),
    TimeSlot.FORENOON: (9, 12),
    TimeSlot.AFTERNOON: (12, 18),
    TimeSlot.EVENING: (18, 22),
    TimeSlot.NIGHT: (22, 24),
}


class Category(str, Enum):
    QUESTION = "question"
    COMFORT = "comfort"
    WISDOM = "wisdom"


class Message(BaseModel):
    """Immutable catalog entry."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: Category
    content: str
    emoji: Optional[str] = None

    @field_validator("id")
    def _non_empty_id(cls, v: str):  # noqa: N805
        if not v.strip():
            raise ValueError("message id must be a non-empty string")
        return v


# ──────────────────────────────
# Archive
# ──────────────────────────────


class DeliveredRecord(BaseModel):
    """A message the user has actually received."""

    message_id: str
    content: str
    category: Category
    received_at: datetime
    is_read: bool = False
    is_favorite: bool = False

    @field_validator("received_at")
    def _require_aware(cls, v: datetime):  # noqa: N805
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("received_at must be timezone-aware")
        return v

    @classmethod
    def from_message(cls, message: Message, received_at: datetime) -> "DeliveredRecord":
        return cls(
            message_id=message.id,
            content=message.content,
            category=message.category,
            received_at=received_at,
        )


# ──────────────────────────────
# Device schedule
# ──────────────────────────────


class TriggerPayload(BaseModel):
    message_id: Optional[str] = None


class ScheduledTrigger(BaseModel):
    """A pending notification as reported by the notification scheduler.

    ``fires_at`` is ``None`` when the stored fire time is missing or could not
    be parsed; such triggers are purged by the engine.
    """

    identifier: str
    fires_at: Optional[datetime] = None
    payload: TriggerPayload = Field(default_factory=TriggerPayload)
    created_at: Optional[datetime] = None
    title: Optional[str] = None
    body: Optional[str] = None

    @property
    def message_id(self) -> Optional[str]:
        return self.payload.message_id


# ──────────────────────────────
# Engine bookkeeping
# ──────────────────────────────


class LedgerState(BaseModel):
    """Snapshot of the durable scheduling ledger."""

    last_run_date: Optional[date] = None
    assigned: Dict[date, str] = Field(default_factory=dict)


class ScheduleResult(BaseModel):
    """Outcome of a single engine run, returned to callers for logging/tests."""

    skipped: bool = False
    completed: bool = False
    today: Optional[DeliveredRecord] = None
    purged: List[str] = Field(default_factory=list)
    created: List[ScheduledTrigger] = Field(default_factory=list)
    error: Optional[str] = None


# ──────────────────────────────
# Preferences
# ──────────────────────────────


class Preferences(BaseModel):
    preferred_slots: List[TimeSlot] = Field(default_factory=list)
    notifications_enabled: bool = True

    @field_validator("preferred_slots")
    def _dedupe(cls, v: List[TimeSlot]):  # noqa: N805
        seen: List[TimeSlot] = []
        for slot in v:
            if slot not in seen:
                seen.append(slot)
        return seen
