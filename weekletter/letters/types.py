"""
Value types for week letter acquisition.

Period addressing, the tagged result a content source returns, and the
resolved Document handed to the scheduler.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from weekletter.letters.models import StoredDocument

MIN_YEAR = 2000
MAX_YEAR = 2100


def content_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass(frozen=True, order=True)
class Period:
    """ISO (week, year) a week letter is addressed by."""

    year: int
    week: int

    def __post_init__(self) -> None:
        if not 1 <= self.week <= 53:
            raise ValueError(f"Week number must be between 1 and 53, got {self.week}")
        if not MIN_YEAR <= self.year <= MAX_YEAR:
            raise ValueError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}, got {self.year}")

    @classmethod
    def of(cls, week: int, year: int) -> Period:
        return cls(year=year, week=week)

    @classmethod
    def for_date(cls, d: date) -> Period:
        # ISO year, not calendar year: 2024-12-30 belongs to week 1 of 2025
        iso_year, iso_week, _ = d.isocalendar()
        return cls(year=iso_year, week=iso_week)

    def monday(self) -> date:
        return date.fromisocalendar(self.year, self.week, 1)

    def next(self) -> Period:
        return Period.for_date(self.monday() + timedelta(days=7))

    def __str__(self) -> str:
        return f"{self.week}/{self.year}"


class FetchStatus(str, Enum):
    PUBLISHED = "published"
    NOT_PUBLISHED = "not_published"


@dataclass(frozen=True)
class FetchResult:
    """
    What a ContentSource returns for a period.

    NOT_PUBLISHED means the source answered but nothing is written for the
    period yet. Real failures are raised, never encoded here.
    """

    status: FetchStatus
    content: str = ""

    @classmethod
    def published(cls, content: str) -> FetchResult:
        if not content.strip():
            return cls.not_published()
        return cls(status=FetchStatus.PUBLISHED, content=content)

    @classmethod
    def not_published(cls) -> FetchResult:
        return cls(status=FetchStatus.NOT_PUBLISHED)

    @property
    def is_published(self) -> bool:
        return self.status is FetchStatus.PUBLISHED


class DocumentOrigin(str, Enum):
    CACHE = "cache"
    STORE = "store"
    SOURCE = "source"
    NONE = "none"


@dataclass(frozen=True)
class Document:
    """A resolved week letter, or the empty placeholder for an unwritten period."""

    subject_id: str
    period: Period
    content: str
    content_hash: str
    document_id: int | None = None
    origin: DocumentOrigin = DocumentOrigin.NONE
    is_empty: bool = False

    @classmethod
    def empty(cls, subject_id: str, period: Period) -> Document:
        return cls(
            subject_id=subject_id,
            period=period,
            content="",
            content_hash="",
            is_empty=True,
        )

    @classmethod
    def from_stored(cls, stored: StoredDocument, origin: DocumentOrigin) -> Document:
        return cls(
            subject_id=stored.subject_id,
            period=stored.period,
            content=stored.content,
            content_hash=stored.content_hash,
            document_id=stored.id,
            origin=origin,
        )
