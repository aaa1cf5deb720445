"""
Tests for the content store.

Validates:
1. One row per (subject, period), even under concurrent upserts
2. Re-storing identical content is a no-op
3. Changed content resets the posted and extracted flags
4. mark_published only applies to the hash it was given
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date, time

from weekletter.letters.repository import DocumentRepository
from weekletter.letters.types import Period, content_hash
from weekletter.observability.telemetry import get_counter
from weekletter.reminders.models import EventType, ReminderCreate, ReminderSource
from weekletter.reminders.repository import ReminderRepository

WEEK_10 = Period.of(10, 2025)


def test_upsert_creates_document():
    stored, changed = DocumentRepository.upsert("emma", WEEK_10, "<p>Week 10</p>")

    assert changed
    assert stored.id is not None
    assert stored.content_hash == content_hash("<p>Week 10</p>")
    assert stored.period == WEEK_10
    assert not stored.is_published
    assert DocumentRepository.count("emma", WEEK_10) == 1


def test_identical_content_is_a_no_op():
    first, _ = DocumentRepository.upsert("emma", WEEK_10, "same")
    second, changed = DocumentRepository.upsert("emma", WEEK_10, "same")

    assert not changed
    assert second.id == first.id
    assert second.updated_at == first.updated_at
    assert get_counter("documents.upsert.written") == 1
    assert get_counter("documents.upsert.unchanged") == 1


def test_changed_content_resets_flags():
    stored, _ = DocumentRepository.upsert("emma", WEEK_10, "v1")
    DocumentRepository.mark_published("emma", WEEK_10, stored.content_hash, {"chat": True})
    ReminderRepository.replace_auto_extracted(stored.id, [], stored.content_hash)

    updated, changed = DocumentRepository.upsert("emma", WEEK_10, "v2")

    assert changed
    assert updated.id == stored.id
    assert updated.posted_flags == {}
    assert not updated.auto_extracted
    # The old announcement is remembered but no longer matches
    assert updated.published_hash == stored.content_hash
    assert not updated.is_published


def test_concurrent_upserts_never_duplicate():
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: DocumentRepository.upsert("emma", WEEK_10, "X"), range(16)))

    assert DocumentRepository.count("emma", WEEK_10) == 1
    assert sum(1 for _, changed in results if changed) == 1
    assert len({stored.id for stored, _ in results}) == 1


def test_mark_published_merges_flags():
    stored, _ = DocumentRepository.upsert("emma", WEEK_10, "X")

    assert DocumentRepository.mark_published("emma", WEEK_10, stored.content_hash, {"chat": True})
    assert DocumentRepository.mark_published("emma", WEEK_10, stored.content_hash, {"mail": False})

    reloaded = DocumentRepository.get("emma", WEEK_10)
    assert reloaded.is_published
    assert reloaded.posted_flags == {"chat": True, "mail": False}


def test_mark_published_rejects_stale_hash():
    stored, _ = DocumentRepository.upsert("emma", WEEK_10, "v1")
    DocumentRepository.upsert("emma", WEEK_10, "v2")

    assert not DocumentRepository.mark_published("emma", WEEK_10, stored.content_hash, {"chat": True})
    assert DocumentRepository.get("emma", WEEK_10).published_hash is None


def test_subjects_and_periods_are_independent():
    DocumentRepository.upsert("emma", WEEK_10, "X")
    DocumentRepository.upsert("oliver", WEEK_10, "X")
    DocumentRepository.upsert("emma", WEEK_10.next(), "Y")

    assert DocumentRepository.count("emma", WEEK_10) == 1
    assert DocumentRepository.count("oliver", WEEK_10) == 1
    assert DocumentRepository.latest("emma").period == Period.of(11, 2025)
    assert [d.week for d in DocumentRepository.list_for_subject("emma")] == [11, 10]


def test_get_missing_returns_none():
    assert DocumentRepository.get("emma", WEEK_10) is None
    assert DocumentRepository.latest("emma") is None


def test_purge_keeps_reminders_and_clears_link():
    stored, _ = DocumentRepository.upsert("emma", WEEK_10, "X")
    created, _ = ReminderRepository.replace_auto_extracted(
        stored.id,
        [
            ReminderCreate(
                text="Photo day",
                remind_date=date(2025, 3, 5),
                remind_time=time(6, 45),
                subject_id="emma",
                source=ReminderSource.AUTO_EXTRACTED,
                document_id=stored.id,
                event_type=EventType.EVENT,
                confidence=0.9,
            )
        ],
        stored.content_hash,
    )

    assert DocumentRepository.purge("emma", WEEK_10)
    assert not DocumentRepository.purge("emma", WEEK_10)
    assert DocumentRepository.get("emma", WEEK_10) is None

    reminder = ReminderRepository.get_by_id(created[0].id)
    assert reminder is not None
    assert reminder.document_id is None
