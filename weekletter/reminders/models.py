"""
Reminder models.

Reminders are either typed in by a person (manual) or derived from a week
letter by the extraction service (auto_extracted). Auto-extracted ones carry
the source document id, event type and model confidence.
"""

from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class ReminderSource(str, Enum):
    MANUAL = "manual"
    AUTO_EXTRACTED = "auto_extracted"


class EventType(str, Enum):
    DEADLINE = "deadline"
    PERMISSION_FORM = "permission_form"
    EVENT = "event"
    SUPPLY_NEEDED = "supply_needed"


class ReminderCreate(BaseModel):
    """Fields needed to create a reminder."""

    text: str = Field(min_length=1, max_length=1000)
    remind_date: date
    remind_time: time
    subject_id: str | None = None
    source: ReminderSource = ReminderSource.MANUAL
    document_id: int | None = None
    event_type: EventType | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _confidence_only_when_extracted(self) -> ReminderCreate:
        if self.source is ReminderSource.MANUAL and self.confidence is not None:
            raise ValueError("confidence is only recorded for auto-extracted reminders")
        return self


class Reminder(ReminderCreate):
    """A persisted reminder row."""

    id: int
    sent: bool = False
    created_at: datetime

    @property
    def due_at(self) -> datetime:
        return datetime.combine(self.remind_date, self.remind_time)

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "remind_date": self.remind_date.isoformat(),
            "remind_time": self.remind_time.strftime("%H:%M"),
            "subject_id": self.subject_id,
            "sent": int(self.sent),
            "source": self.source.value,
            "document_id": self.document_id,
            "event_type": self.event_type.value if self.event_type else None,
            "confidence": self.confidence,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Reminder:
        return cls(
            id=row["id"],
            text=row["text"],
            remind_date=date.fromisoformat(row["remind_date"]),
            remind_time=time.fromisoformat(row["remind_time"]),
            subject_id=row["subject_id"],
            sent=bool(row["sent"]),
            source=ReminderSource(row["source"]),
            document_id=row["document_id"],
            event_type=EventType(row["event_type"]) if row["event_type"] else None,
            confidence=row["confidence"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
