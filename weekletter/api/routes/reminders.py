"""
Reminders API endpoints.

Manual reminders are created here; auto-extracted ones come from the
extraction service and can be listed or deleted like any other.
"""

from __future__ import annotations

from datetime import date, time

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError

from weekletter.config import API_LIST_LIMIT_DEFAULT, API_LIST_LIMIT_MAX
from weekletter.observability.logging import get_logger
from weekletter.reminders.models import Reminder, ReminderCreate, ReminderSource
from weekletter.reminders.repository import ReminderRepository
from weekletter.subjects import normalize_subject_id

router = APIRouter(prefix="/api/reminders", tags=["reminders"])
logger = get_logger(__name__)


# ============================================================================
# Request/Response Models
# ============================================================================


class ReminderResponse(BaseModel):
    """API response for a single reminder."""

    id: int
    text: str
    remind_date: str
    remind_time: str
    subject_id: str | None
    sent: bool
    source: str
    document_id: int | None
    event_type: str | None
    confidence: float | None
    created_at: str

    @classmethod
    def from_reminder(cls, reminder: Reminder) -> ReminderResponse:
        return cls(
            id=reminder.id,
            text=reminder.text,
            remind_date=reminder.remind_date.isoformat(),
            remind_time=reminder.remind_time.strftime("%H:%M"),
            subject_id=reminder.subject_id,
            sent=reminder.sent,
            source=reminder.source.value,
            document_id=reminder.document_id,
            event_type=reminder.event_type.value if reminder.event_type else None,
            confidence=reminder.confidence,
            created_at=reminder.created_at.isoformat(),
        )


class CreateReminderRequest(BaseModel):
    """Request to create a manual reminder."""

    text: str = Field(min_length=1, max_length=1000)
    remind_date: date
    remind_time: time
    subject_id: str | None = None


# ============================================================================
# Endpoints
# ============================================================================


@router.get("", response_model=list[ReminderResponse])
async def list_reminders(
    subject: str | None = Query(None, description="Subject id or name"),
    pending: bool = Query(False, description="Only reminders not sent yet"),
    limit: int = Query(API_LIST_LIMIT_DEFAULT, ge=1, le=API_LIST_LIMIT_MAX),
    offset: int = Query(0, ge=0),
) -> list[ReminderResponse]:
    """List reminders ordered by due date and time."""
    try:
        subject_id = normalize_subject_id(subject) if subject else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    reminders = ReminderRepository.list_reminders(
        subject_id=subject_id,
        pending_only=pending,
        limit=limit,
        offset=offset,
    )
    return [ReminderResponse.from_reminder(r) for r in reminders]


@router.get("/{reminder_id}", response_model=ReminderResponse)
async def get_reminder(reminder_id: int) -> ReminderResponse:
    reminder = ReminderRepository.get_by_id(reminder_id)
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return ReminderResponse.from_reminder(reminder)


@router.post("", response_model=ReminderResponse, status_code=201)
async def create_reminder(request: CreateReminderRequest) -> ReminderResponse:
    """Create a manual reminder."""
    try:
        reminder = ReminderRepository.create(
            ReminderCreate(
                text=request.text,
                remind_date=request.remind_date,
                remind_time=request.remind_time.replace(second=0, microsecond=0),
                subject_id=normalize_subject_id(request.subject_id) if request.subject_id else None,
                source=ReminderSource.MANUAL,
            )
        )
    except (ValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    return ReminderResponse.from_reminder(reminder)


@router.delete("/{reminder_id}", status_code=204)
async def delete_reminder(reminder_id: int) -> None:
    if not ReminderRepository.delete(reminder_id):
        raise HTTPException(status_code=404, detail="Reminder not found")
