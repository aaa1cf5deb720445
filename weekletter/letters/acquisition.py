"""
Acquisition Service - resolve the week letter for a (subject, date).

Lookup order: in-process cache, then the documents table, then the content
source. Only the last step touches the network, and only when the caller
allows it. Fetch errors are not retried here; the scheduler owns retry
accounting.
"""

from __future__ import annotations

import concurrent.futures
from datetime import date

from weekletter.config import FETCH_TIMEOUT_SECONDS, SCHEDULER_MAX_WORKERS
from weekletter.errors import ContentFetchError
from weekletter.letters.models import StoredDocument
from weekletter.letters.repository import DocumentRepository
from weekletter.letters.source import ContentSource
from weekletter.letters.types import Document, DocumentOrigin, Period
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter, time_block
from weekletter.storage.cache import DocumentCache

logger = get_logger(__name__)


class AcquisitionService:
    """Resolves documents through cache, store and source."""

    def __init__(
        self,
        source: ContentSource,
        cache: DocumentCache,
        repository: type[DocumentRepository] = DocumentRepository,
        fetch_timeout_seconds: float = FETCH_TIMEOUT_SECONDS,
        max_workers: int = SCHEDULER_MAX_WORKERS,
    ):
        self.source = source
        self.cache = cache
        self.repository = repository
        self.fetch_timeout_seconds = fetch_timeout_seconds
        # Long-lived pool: a `with` block would join a hung fetch on exit
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="fetch"
        )

    def resolve(
        self,
        subject_id: str,
        for_date: date,
        allow_remote_fetch: bool,
        *,
        force_refresh: bool = False,
    ) -> Document:
        """
        Resolve the document for the period containing `for_date`.

        Args:
            subject_id: Normalized subject id
            for_date: Any day inside the wanted ISO week
            allow_remote_fetch: When False, never call the source; an unknown
                period resolves to the empty placeholder
            force_refresh: Skip cache and store and go straight to the source

        Returns:
            The document, or Document.empty() when nothing is written yet

        Raises:
            ContentFetchError: The source failed or timed out (nothing was stored)
        """
        period = Period.for_date(for_date)

        if not force_refresh:
            cached = self.cache.get(subject_id, period)
            if cached is not None:
                return cached

            stored = self.repository.get(subject_id, period)
            if stored is not None:
                document = Document.from_stored(stored, DocumentOrigin.STORE)
                self.cache.put(document)
                return document

        if not allow_remote_fetch:
            counter("acquisition.placeholder")
            return Document.empty(subject_id, period)

        result = self._fetch(subject_id, period)
        if not result.is_published:
            logger.info("No week letter published yet for %s week %s", subject_id, period)
            counter("acquisition.not_published")
            return Document.empty(subject_id, period)

        stored, _ = self.repository.upsert(subject_id, period, result.content)
        document = Document.from_stored(stored, DocumentOrigin.SOURCE)
        self.cache.put(document)
        counter("acquisition.fetched")
        return document

    def latest_document(self, subject_id: str) -> StoredDocument | None:
        return self.repository.latest(subject_id)

    def invalidate(self, subject_id: str, period: Period) -> None:
        self.cache.invalidate(subject_id, period)

    def _fetch(self, subject_id: str, period: Period):
        future = self._executor.submit(self.source.fetch, subject_id, period)
        try:
            with time_block("acquisition.fetch"):
                return future.result(timeout=self.fetch_timeout_seconds)
        except concurrent.futures.TimeoutError:
            future.cancel()
            counter("acquisition.fetch_timeout")
            logger.warning(
                "Fetch for %s week %s timed out after %.0fs",
                subject_id,
                period,
                self.fetch_timeout_seconds,
            )
            raise ContentFetchError(
                subject_id, f"timed out after {self.fetch_timeout_seconds:.0f}s"
            ) from None
        except Exception as e:
            counter("acquisition.fetch_error")
            logger.warning("Fetch for %s week %s failed: %s", subject_id, period, e)
            raise ContentFetchError(subject_id, str(e)) from e

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
