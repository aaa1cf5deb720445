"""
Tests for the acquisition service: cache -> store -> source resolution.
"""

from __future__ import annotations

import threading
from datetime import date

import pytest

from weekletter.errors import ContentFetchError
from weekletter.letters.acquisition import AcquisitionService
from weekletter.letters.repository import DocumentRepository
from weekletter.letters.retries import RetryTracker
from weekletter.letters.types import DocumentOrigin, Period, content_hash
from weekletter.observability.telemetry import get_counter
from weekletter.storage.cache import DocumentCache

# Week 20/2024 runs 13-19 May
WEEK_20 = Period.of(20, 2024)
IN_WEEK_20 = date(2024, 5, 15)


@pytest.fixture
def service(source):
    svc = AcquisitionService(source, DocumentCache("test"), fetch_timeout_seconds=2, max_workers=2)
    yield svc
    svc.close()


def test_placeholder_without_remote_fetch(service, source):
    document = service.resolve("emma", IN_WEEK_20, allow_remote_fetch=False)

    assert document.is_empty
    assert document.period == WEEK_20
    assert source.calls == []
    assert DocumentRepository.get("emma", WEEK_20) is None
    assert RetryTracker().get("emma", WEEK_20) is None


def test_fetch_stores_and_caches(service, source):
    source.publish("emma", WEEK_20, "X")

    document = service.resolve("emma", IN_WEEK_20, allow_remote_fetch=True)

    assert document.origin is DocumentOrigin.SOURCE
    assert document.content_hash == content_hash("X")
    assert DocumentRepository.get("emma", WEEK_20).content == "X"

    again = service.resolve("emma", IN_WEEK_20, allow_remote_fetch=True)
    assert again.content_hash == document.content_hash
    assert len(source.calls) == 1
    assert get_counter("cache.test.hit") == 1


def test_store_hit_skips_source(source):
    DocumentRepository.upsert("emma", WEEK_20, "stored")
    svc = AcquisitionService(source, DocumentCache("cold"))
    try:
        document = svc.resolve("emma", IN_WEEK_20, allow_remote_fetch=True)
    finally:
        svc.close()

    assert document.origin is DocumentOrigin.STORE
    assert document.content == "stored"
    assert source.calls == []


def test_repeated_resolution_is_idempotent(service, source):
    source.publish("emma", WEEK_20, "X")

    hashes = {
        service.resolve("emma", IN_WEEK_20, True, force_refresh=True).content_hash for _ in range(3)
    }

    assert hashes == {content_hash("X")}
    assert DocumentRepository.count("emma", WEEK_20) == 1
    assert get_counter("documents.upsert.written") == 1
    assert get_counter("documents.upsert.unchanged") == 2


def test_force_refresh_picks_up_edits(service, source):
    source.publish("emma", WEEK_20, "v1")
    service.resolve("emma", IN_WEEK_20, True)
    source.publish("emma", WEEK_20, "v2")

    cached = service.resolve("emma", IN_WEEK_20, True)
    refreshed = service.resolve("emma", IN_WEEK_20, True, force_refresh=True)

    assert cached.content == "v1"
    assert refreshed.content == "v2"
    assert DocumentRepository.get("emma", WEEK_20).content == "v2"


def test_not_published_returns_placeholder_and_stores_nothing(service, source):
    document = service.resolve("emma", IN_WEEK_20, True)

    assert document.is_empty
    assert len(source.calls) == 1
    assert DocumentRepository.get("emma", WEEK_20) is None
    # Placeholders are not cached: the next call asks again
    service.resolve("emma", IN_WEEK_20, True)
    assert len(source.calls) == 2


def test_source_error_becomes_fetch_error(service, source):
    source.fail("emma", WEEK_20, PermissionError("login rejected"))

    with pytest.raises(ContentFetchError) as exc_info:
        service.resolve("emma", IN_WEEK_20, True)

    assert exc_info.value.subject_id == "emma"
    assert "login rejected" in str(exc_info.value)
    assert DocumentRepository.get("emma", WEEK_20) is None


def test_slow_source_times_out(source):
    source.publish("emma", WEEK_20, "late")
    source.gate = threading.Event()
    svc = AcquisitionService(source, DocumentCache("slow"), fetch_timeout_seconds=0.1)
    try:
        with pytest.raises(ContentFetchError, match="timed out"):
            svc.resolve("emma", IN_WEEK_20, True)
    finally:
        source.gate.set()
        svc.close()

    assert get_counter("acquisition.fetch_timeout") == 1


def test_invalidate_forces_store_lookup(service, source):
    source.publish("emma", WEEK_20, "X")
    service.resolve("emma", IN_WEEK_20, True)
    DocumentRepository.purge("emma", WEEK_20)
    service.invalidate("emma", WEEK_20)

    document = service.resolve("emma", IN_WEEK_20, allow_remote_fetch=False)

    assert document.is_empty
