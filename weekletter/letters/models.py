"""
Persisted week letter models.

StoredDocument is one row of the documents table; RetryRecord is one row of
retry_attempts. Both convert to/from SQLite rows.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from weekletter.letters.types import Period


class StoredDocument(BaseModel):
    """The stored week letter for one (subject, period)."""

    id: int | None = None
    subject_id: str
    week: int = Field(ge=1, le=53)
    year: int = Field(ge=2000, le=2100)
    content: str
    content_hash: str
    posted_flags: dict[str, bool] = Field(default_factory=dict)
    published_hash: str | None = None
    auto_extracted: bool = False
    extracted_hash: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def period(self) -> Period:
        return Period.of(self.week, self.year)

    @property
    def is_published(self) -> bool:
        """True once the current content has been announced."""
        return self.published_hash is not None and self.published_hash == self.content_hash

    def needs_extraction(self, content_hash: str) -> bool:
        return not (self.auto_extracted and self.extracted_hash == content_hash)

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "week": self.week,
            "year": self.year,
            "content": self.content,
            "content_hash": self.content_hash,
            "posted_flags": json.dumps(self.posted_flags, sort_keys=True),
            "published_hash": self.published_hash,
            "auto_extracted": int(self.auto_extracted),
            "extracted_hash": self.extracted_hash,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> StoredDocument:
        return cls(
            id=row["id"],
            subject_id=row["subject_id"],
            week=row["week"],
            year=row["year"],
            content=row["content"],
            content_hash=row["content_hash"],
            posted_flags=json.loads(row["posted_flags"] or "{}"),
            published_hash=row["published_hash"],
            auto_extracted=bool(row["auto_extracted"]),
            extracted_hash=row["extracted_hash"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class RetryRecord(BaseModel):
    """Outstanding retry state for a period that has not been acquired yet."""

    subject_id: str
    week: int
    year: int
    attempt_count: int = Field(ge=0)
    last_attempt: datetime
    next_attempt: datetime
    max_attempts: int = Field(ge=1)
    exhausted_at: datetime | None = None
    created_at: datetime

    @property
    def period(self) -> Period:
        return Period.of(self.week, self.year)

    @property
    def is_exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts

    def is_due(self, now: datetime) -> bool:
        return now >= self.next_attempt

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> RetryRecord:
        exhausted_at = row["exhausted_at"]
        return cls(
            subject_id=row["subject_id"],
            week=row["week"],
            year=row["year"],
            attempt_count=row["attempt_count"],
            last_attempt=datetime.fromisoformat(row["last_attempt"]),
            next_attempt=datetime.fromisoformat(row["next_attempt"]),
            max_attempts=row["max_attempts"],
            exhausted_at=datetime.fromisoformat(exhausted_at) if exhausted_at else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
