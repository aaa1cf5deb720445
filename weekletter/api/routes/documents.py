"""
Week letter endpoints: read the latest stored letter, purge a period.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from weekletter.letters.models import StoredDocument
from weekletter.letters.repository import DocumentRepository
from weekletter.letters.types import Period
from weekletter.observability.logging import get_logger
from weekletter.subjects import normalize_subject_id

router = APIRouter(prefix="/api/documents", tags=["documents"])
logger = get_logger(__name__)


class DocumentResponse(BaseModel):
    id: int
    subject_id: str
    week: int
    year: int
    content: str
    content_hash: str
    published: bool
    posted_flags: dict[str, bool]
    auto_extracted: bool
    updated_at: str

    @classmethod
    def from_stored(cls, stored: StoredDocument) -> DocumentResponse:
        return cls(
            id=stored.id,
            subject_id=stored.subject_id,
            week=stored.week,
            year=stored.year,
            content=stored.content,
            content_hash=stored.content_hash,
            published=stored.is_published,
            posted_flags=stored.posted_flags,
            auto_extracted=stored.auto_extracted,
            updated_at=stored.updated_at.isoformat(),
        )


def _subject_and_period(subject: str, year: int | None = None, week: int | None = None):
    try:
        subject_id = normalize_subject_id(subject)
        period = Period.of(week, year) if week is not None else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    return subject_id, period


@router.get("/{subject}/latest", response_model=DocumentResponse)
async def latest_document(subject: str) -> DocumentResponse:
    subject_id, _ = _subject_and_period(subject)
    stored = DocumentRepository.latest(subject_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="No week letter stored for subject")
    return DocumentResponse.from_stored(stored)


@router.delete("/{subject}/{year}/{week}", status_code=204)
async def purge_document(subject: str, year: int, week: int, request: Request) -> None:
    """
    Hard-delete a stored week letter.

    Reminders derived from it stay; their document link is cleared.
    """
    subject_id, period = _subject_and_period(subject, year, week)
    if not DocumentRepository.purge(subject_id, period):
        raise HTTPException(status_code=404, detail="Week letter not found")

    runtime = getattr(request.app.state, "runtime", None)
    if runtime is not None:
        runtime.acquisition.invalidate(subject_id, period)
