"""
In-process cache of resolved week letters, keyed by (subject, period).

Constructed once by the runtime and injected into the AcquisitionService.
Keys are always subject-scoped, so last-writer-wins is enough; the lock only
protects the dict itself across worker threads.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass

from weekletter.letters.types import Document, Period
from weekletter.observability.telemetry import counter, log_event

DEFAULT_TTL_SECONDS = float(os.getenv("WEEKLETTER_CACHE_TTL_SECONDS", "3600"))

CacheKey = tuple[str, Period]


@dataclass
class CacheEntry:
    value: Document
    expires_at: float


class DocumentCache:
    """TTL cache for Document values."""

    def __init__(self, name: str = "documents", ttl_seconds: float = DEFAULT_TTL_SECONDS):
        """
        Args:
            name: Cache name used in counter names
            ttl_seconds: Lifetime of an entry
        """
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._store: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, subject_id: str, period: Period) -> Document | None:
        """Cached document, or None if missing or expired."""
        key = (subject_id, period)
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                counter(f"cache.{self.name}.miss")
                return None

            if time.monotonic() > entry.expires_at:
                del self._store[key]
                counter(f"cache.{self.name}.expired")
                return None

        counter(f"cache.{self.name}.hit")
        return entry.value

    def put(self, document: Document) -> None:
        """
        Cache a document under its own (subject, period)

        Placeholders are never cached; an empty period must be re-checked.
        """
        if document.is_empty:
            return

        entry = CacheEntry(value=document, expires_at=time.monotonic() + self.ttl_seconds)
        with self._lock:
            self._store[(document.subject_id, document.period)] = entry
        counter(f"cache.{self.name}.write")

    def invalidate(self, subject_id: str, period: Period) -> None:
        with self._lock:
            removed = self._store.pop((subject_id, period), None)
        if removed is not None:
            counter(f"cache.{self.name}.invalidate")

    def clear(self) -> None:
        with self._lock:
            count = len(self._store)
            self._store.clear()
        log_event("cache.cleared", cache=self.name, count=count)

    def stats(self) -> dict[str, int]:
        now = time.monotonic()
        with self._lock:
            active = sum(1 for entry in self._store.values() if now <= entry.expires_at)
            total = len(self._store)

        return {"total_entries": total, "active_entries": active, "expired_entries": total - active}
