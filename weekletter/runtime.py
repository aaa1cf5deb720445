"""
Process wiring: build every service from configuration and hand back one
Runtime object that the API (or a script) starts and stops.
"""

from __future__ import annotations

from dataclasses import dataclass

from weekletter.config import (
    FETCH_TIMEOUT_SECONDS,
    SCHEDULER_MAX_WORKERS,
    SOURCE_TIMEOUT_SECONDS,
    SOURCE_TOKEN,
    SOURCE_URL_TEMPLATE,
    USE_LLM,
)
from weekletter.distribution.publisher import Distributor
from weekletter.errors import ConfigurationError
from weekletter.infrastructure.database import init_database
from weekletter.letters.acquisition import AcquisitionService
from weekletter.letters.retries import RetryTracker
from weekletter.letters.source import ContentSource, HttpContentSource
from weekletter.observability.logging import get_logger
from weekletter.reminders.event_extractor import (
    DisabledEventExtractor,
    EventExtractor,
    GeminiEventExtractor,
)
from weekletter.reminders.extraction import ExtractionService
from weekletter.scheduling.scheduler import Scheduler
from weekletter.storage.cache import DocumentCache
from weekletter.subjects import SubjectConfig, load_subjects, register_subjects

logger = get_logger(__name__)


@dataclass
class Runtime:
    subjects: list[SubjectConfig]
    acquisition: AcquisitionService
    distributor: Distributor
    retry_tracker: RetryTracker
    extraction: ExtractionService
    scheduler: Scheduler

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()
        self.acquisition.close()
        close_extractor = getattr(self.extraction.extractor, "close", None)
        if close_extractor is not None:
            close_extractor()


def _default_source() -> ContentSource:
    if not SOURCE_URL_TEMPLATE:
        raise ConfigurationError("WEEKLETTER_SOURCE_URL_TEMPLATE is not set")
    return HttpContentSource(
        SOURCE_URL_TEMPLATE, token=SOURCE_TOKEN, timeout_seconds=SOURCE_TIMEOUT_SECONDS
    )


def _default_extractor() -> EventExtractor:
    if not USE_LLM:
        logger.warning("WEEKLETTER_USE_LLM=false, reminders will not be extracted")
        return DisabledEventExtractor()
    return GeminiEventExtractor()


def build_runtime(
    subjects: list[SubjectConfig] | None = None,
    source: ContentSource | None = None,
    extractor: EventExtractor | None = None,
) -> Runtime:
    """
    Assemble the pipeline.

    Args:
        subjects: Subject configs; loaded from WEEKLETTER_SUBJECTS_FILE when None
        source: Content source; an HttpContentSource from env when None
        extractor: Event extractor; Gemini unless WEEKLETTER_USE_LLM=false

    Raises:
        ConfigurationError: Subjects file or source settings are missing or invalid
    """
    init_database()

    subjects = load_subjects() if subjects is None else subjects
    distributor = Distributor()
    register_subjects(distributor, subjects)

    acquisition = AcquisitionService(
        source=source or _default_source(),
        cache=DocumentCache("documents"),
        fetch_timeout_seconds=FETCH_TIMEOUT_SECONDS,
        max_workers=SCHEDULER_MAX_WORKERS,
    )
    retry_tracker = RetryTracker()
    extraction = ExtractionService(extractor or _default_extractor())
    scheduler = Scheduler(
        acquisition=acquisition,
        extraction=extraction,
        distributor=distributor,
        retry_tracker=retry_tracker,
        subjects=[subject.id for subject in subjects],
    )

    logger.info("Runtime ready for subjects: %s", ", ".join(s.id for s in subjects) or "(none)")
    return Runtime(
        subjects=subjects,
        acquisition=acquisition,
        distributor=distributor,
        retry_tracker=retry_tracker,
        extraction=extraction,
        scheduler=scheduler,
    )
