"""
Extraction Service - derive auto reminders from a stored week letter.

Stage after publication: ask the event extractor for candidates, keep the
confident ones, and replace the document's previous auto-extracted reminders
in a single transaction. Re-running on unchanged content is a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time

from pydantic import ValidationError

from weekletter.config import DEFAULT_REMINDER_TIME, EXTRACTION_CONFIDENCE_THRESHOLD
from weekletter.letters.repository import DocumentRepository
from weekletter.letters.types import Document, Period
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter, log_event, time_block
from weekletter.reminders.event_extractor import EventExtractor, ExtractedEvent
from weekletter.reminders.models import Reminder, ReminderCreate, ReminderSource
from weekletter.reminders.repository import ReminderRepository

logger = get_logger(__name__)


@dataclass
class ExtractionResult:
    """Outcome of one extraction run."""

    created: int = 0
    none_found: bool = False
    skipped: bool = False
    error: str | None = None
    superseded: int = 0
    reminders: list[Reminder] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, message: str) -> ExtractionResult:
        return cls(error=message)

    @classmethod
    def already_extracted(cls) -> ExtractionResult:
        return cls(skipped=True)


class ExtractionService:
    """Turns extractor candidates into auto-extracted reminders."""

    def __init__(
        self,
        extractor: EventExtractor,
        confidence_threshold: float = EXTRACTION_CONFIDENCE_THRESHOLD,
        default_time: time | str = DEFAULT_REMINDER_TIME,
        documents: type[DocumentRepository] = DocumentRepository,
        reminders: type[ReminderRepository] = ReminderRepository,
    ):
        if not 0.1 <= confidence_threshold <= 1.0:
            raise ValueError(
                f"confidence_threshold must be between 0.1 and 1.0, got {confidence_threshold}"
            )

        self.extractor = extractor
        self.confidence_threshold = confidence_threshold
        self.default_time = (
            time.fromisoformat(default_time) if isinstance(default_time, str) else default_time
        )
        self.documents = documents
        self.reminders = reminders

    def extract_and_store(
        self,
        subject_id: str,
        period: Period,
        document: Document,
        content_hash: str,
    ) -> ExtractionResult:
        """
        Extract reminders from `document` and store them.

        Returns:
            ExtractionResult; AI failures come back as result.error and leave
            the stored reminders and the document flag unchanged

        Raises:
            sqlite3.Error: Storage failures propagate to the caller
        """
        stored = self.documents.get(subject_id, period)
        if stored is None or stored.id is None:
            logger.warning("Cannot extract reminders: no stored letter for %s week %s", subject_id, period)
            return ExtractionResult.failed("No stored document")

        if stored.content_hash != content_hash:
            logger.info(
                "Skipping extraction for %s week %s: content changed since it was resolved",
                subject_id,
                period,
            )
            return ExtractionResult.failed("Document content changed")

        if not stored.needs_extraction(content_hash):
            logger.info("Reminders already extracted for %s week %s, skipping", subject_id, period)
            counter("extraction.skipped")
            return ExtractionResult.already_extracted()

        if document.content.strip():
            try:
                with time_block("extraction.extract"):
                    candidates = self.extractor.extract(document.content, subject_id, period)
            except Exception as e:
                counter("extraction.error")
                logger.error("Reminder extraction failed for %s week %s: %s", subject_id, period, e)
                return ExtractionResult.failed(str(e))
        else:
            candidates = []

        accepted = [c for c in candidates if c.confidence >= self.confidence_threshold]
        dropped = len(candidates) - len(accepted)
        if dropped:
            counter("extraction.below_threshold", dropped)
            logger.info(
                "Dropped %d low-confidence candidates for %s week %s (threshold %.2f)",
                dropped,
                subject_id,
                period,
                self.confidence_threshold,
            )

        try:
            to_create = [self._to_reminder(subject_id, stored.id, event) for event in accepted]
        except ValidationError as e:
            counter("extraction.error")
            logger.error(
                "Extracted events for %s week %s are not valid reminders: %s", subject_id, period, e
            )
            return ExtractionResult.failed(f"Invalid extracted event: {e.error_count()} errors")

        created, superseded = self.reminders.replace_auto_extracted(stored.id, to_create, content_hash)

        log_event(
            "extraction.completed",
            subject_id=subject_id,
            period=str(period),
            candidates=len(candidates),
            created=len(created),
            superseded=superseded,
        )
        return ExtractionResult(
            created=len(created),
            none_found=not created,
            superseded=superseded,
            reminders=created,
        )

    def _to_reminder(self, subject_id: str, document_id: int, event: ExtractedEvent) -> ReminderCreate:
        text = event.description or event.title
        if event.description and event.title and event.title.lower() not in event.description.lower():
            text = f"{event.title}: {event.description}"

        return ReminderCreate(
            text=text[:1000],
            remind_date=event.event_date,
            remind_time=event.event_time or self.default_time,
            subject_id=subject_id,
            source=ReminderSource.AUTO_EXTRACTED,
            document_id=document_id,
            event_type=event.event_type,
            confidence=event.confidence,
        )
