"""Tests for the in-process document cache."""

from __future__ import annotations

import time

from weekletter.letters.types import Document, DocumentOrigin, Period, content_hash
from weekletter.observability.telemetry import get_counter
from weekletter.storage.cache import DocumentCache

WEEK_10 = Period.of(10, 2025)


def document(subject_id: str = "emma", text: str = "<p>Photo day</p>") -> Document:
    return Document(
        subject_id=subject_id,
        period=WEEK_10,
        content=text,
        content_hash=content_hash(text),
        origin=DocumentOrigin.SOURCE,
    )


def test_entries_are_subject_scoped():
    cache = DocumentCache("unit")
    cache.put(document("emma", "a"))
    cache.put(document("oliver", "b"))

    assert cache.get("emma", WEEK_10).content == "a"
    assert cache.get("oliver", WEEK_10).content == "b"
    assert get_counter("cache.unit.hit") == 2


def test_placeholders_are_not_cached():
    cache = DocumentCache("unit")
    cache.put(Document.empty("emma", WEEK_10))

    assert cache.get("emma", WEEK_10) is None
    assert cache.stats()["total_entries"] == 0


def test_expired_entries_are_dropped():
    cache = DocumentCache("unit", ttl_seconds=0.01)
    cache.put(document())
    time.sleep(0.05)

    assert cache.get("emma", WEEK_10) is None
    assert get_counter("cache.unit.expired") == 1


def test_invalidate_and_clear():
    cache = DocumentCache("unit")
    cache.put(document("emma"))
    cache.put(document("oliver"))

    cache.invalidate("emma", WEEK_10)
    assert cache.get("emma", WEEK_10) is None

    cache.clear()
    assert cache.stats() == {"total_entries": 0, "active_entries": 0, "expired_entries": 0}
