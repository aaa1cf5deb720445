"""
Retry bookkeeping endpoints.

Exhausted records stay put until someone clears them here.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from weekletter.letters.models import RetryRecord
from weekletter.letters.retries import RetryTracker
from weekletter.letters.types import Period
from weekletter.subjects import normalize_subject_id

router = APIRouter(prefix="/api/retries", tags=["retries"])


class RetryResponse(BaseModel):
    subject_id: str
    week: int
    year: int
    attempt_count: int
    max_attempts: int
    last_attempt: str
    next_attempt: str
    exhausted: bool
    exhausted_at: str | None

    @classmethod
    def from_record(cls, record: RetryRecord) -> RetryResponse:
        return cls(
            subject_id=record.subject_id,
            week=record.week,
            year=record.year,
            attempt_count=record.attempt_count,
            max_attempts=record.max_attempts,
            last_attempt=record.last_attempt.isoformat(),
            next_attempt=record.next_attempt.isoformat(),
            exhausted=record.is_exhausted,
            exhausted_at=record.exhausted_at.isoformat() if record.exhausted_at else None,
        )


def _tracker(request: Request) -> RetryTracker:
    runtime = getattr(request.app.state, "runtime", None)
    return runtime.retry_tracker if runtime is not None else RetryTracker()


@router.get("", response_model=list[RetryResponse])
async def list_retries(
    request: Request,
    include_exhausted: bool = Query(False, description="Also list exhausted records"),
) -> list[RetryResponse]:
    tracker = _tracker(request)
    records = tracker.all_records() if include_exhausted else tracker.pending()
    return [RetryResponse.from_record(r) for r in records]


@router.delete("/{subject}/{year}/{week}", status_code=204)
async def clear_retry(subject: str, year: int, week: int, request: Request) -> None:
    """Drop a retry record so the next letter check starts from scratch."""
    try:
        subject_id = normalize_subject_id(subject)
        period = Period.of(week, year)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    if not _tracker(request).clear(subject_id, period):
        raise HTTPException(status_code=404, detail="Retry record not found")
