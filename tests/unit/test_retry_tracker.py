"""
Tests for the retry tracker.

Validates:
1. Attempt counts only move up, one per failure, and stop at max_attempts
2. Only the first failure reports "created" (one retry notice)
3. "Not published yet" never increments, polls slower and still gives up
4. Exhaustion is reported once
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from weekletter.letters.retries import RetryTracker
from weekletter.letters.types import Period
from weekletter.observability.telemetry import get_counter

WEEK_10 = Period.of(10, 2025)


@pytest.fixture
def tracker(clock):
    return RetryTracker(
        interval_hours=2, max_duration_hours=6, clock=clock, not_published_interval_hours=3
    )


class TestRecordFailure:
    def test_three_failures_then_exhaustion(self, tracker, clock):
        assert tracker.max_attempts == 3

        created = []
        for _ in range(3):
            created.append(tracker.record_failure("emma", WEEK_10))
            clock.advance(hours=2)

        assert created == [True, False, False]
        assert tracker.get_attempts("emma", WEEK_10) == 3
        assert tracker.get("emma", WEEK_10).is_exhausted

        # A fourth failure does not increment past the bound
        assert tracker.record_failure("emma", WEEK_10) is False
        assert tracker.get_attempts("emma", WEEK_10) == 3

    def test_attempts_never_decrease(self, tracker, clock):
        seen = []
        for _ in range(5):
            tracker.record_failure("emma", WEEK_10)
            seen.append(tracker.get_attempts("emma", WEEK_10))
            clock.advance(hours=2)

        assert seen == sorted(seen)
        assert seen == [1, 2, 3, 3, 3]

    def test_schedules_next_attempt_one_interval_out(self, tracker, clock):
        tracker.record_failure("emma", WEEK_10)
        record = tracker.get("emma", WEEK_10)

        assert record.last_attempt == clock()
        assert record.next_attempt == clock() + timedelta(hours=2)
        assert not record.is_due(clock())
        assert record.is_due(clock() + timedelta(hours=2))

    def test_records_are_per_subject_and_period(self, tracker):
        assert tracker.record_failure("emma", WEEK_10)
        assert tracker.record_failure("oliver", WEEK_10)
        assert tracker.record_failure("emma", WEEK_10.next())
        assert tracker.get_attempts("emma", WEEK_10) == 1


class TestRecordNotPublished:
    def test_creates_once_and_never_increments(self, tracker, clock):
        assert tracker.record_not_published("emma", WEEK_10) is True
        clock.advance(hours=3)
        assert tracker.record_not_published("emma", WEEK_10) is False

        record = tracker.get("emma", WEEK_10)
        assert record.attempt_count == 1
        assert not record.is_exhausted
        assert record.next_attempt == clock() + timedelta(hours=3)

    def test_never_polls_faster_than_failures(self, clock):
        tracker = RetryTracker(
            interval_hours=2, max_duration_hours=6, clock=clock, not_published_interval_hours=1
        )

        assert tracker.not_published_interval_hours == 2

    def test_gives_up_after_max_duration(self, tracker, clock):
        tracker.record_not_published("emma", WEEK_10)
        clock.advance(hours=3)
        tracker.record_not_published("emma", WEEK_10)
        assert not tracker.get("emma", WEEK_10).is_exhausted

        clock.advance(hours=3)
        assert tracker.record_not_published("emma", WEEK_10) is False

        record = tracker.get("emma", WEEK_10)
        assert record.is_exhausted
        assert record.attempt_count == record.max_attempts == 3
        assert get_counter("retries.not_published_expired") == 1

        assert tracker.mark_exhausted("emma", WEEK_10)
        assert tracker.pending() == []

    def test_hard_failure_after_not_published_increments(self, tracker):
        tracker.record_not_published("emma", WEEK_10)
        assert tracker.record_failure("emma", WEEK_10) is False
        assert tracker.get_attempts("emma", WEEK_10) == 2


class TestExhaustionAndCleanup:
    def test_mark_exhausted_only_once(self, tracker):
        tracker.record_failure("emma", WEEK_10)
        assert not tracker.mark_exhausted("emma", WEEK_10)

        tracker.record_failure("emma", WEEK_10)
        tracker.record_failure("emma", WEEK_10)
        assert tracker.mark_exhausted("emma", WEEK_10)
        assert not tracker.mark_exhausted("emma", WEEK_10)
        assert tracker.get("emma", WEEK_10).exhausted_at is not None

    def test_pending_excludes_exhausted(self, tracker):
        for _ in range(3):
            tracker.record_failure("emma", WEEK_10)
        tracker.mark_exhausted("emma", WEEK_10)
        tracker.record_failure("oliver", WEEK_10)

        assert [r.subject_id for r in tracker.pending()] == ["oliver"]
        assert len(tracker.all_records()) == 2

    def test_success_deletes_record(self, tracker):
        tracker.record_failure("emma", WEEK_10)
        tracker.record_success("emma", WEEK_10)

        assert tracker.get("emma", WEEK_10) is None
        assert tracker.get_attempts("emma", WEEK_10) == 0

    def test_clear_removes_exhausted_record(self, tracker):
        for _ in range(3):
            tracker.record_failure("emma", WEEK_10)
        tracker.mark_exhausted("emma", WEEK_10)

        assert tracker.clear("emma", WEEK_10)
        assert not tracker.clear("emma", WEEK_10)
        assert tracker.record_failure("emma", WEEK_10) is True


class TestConfiguration:
    def test_max_attempts_derived_from_interval_and_duration(self):
        assert RetryTracker(interval_hours=1, max_duration_hours=48).max_attempts == 48
        assert RetryTracker(interval_hours=5, max_duration_hours=7).max_attempts == 1

    @pytest.mark.parametrize("interval,duration", [(0, 10), (-1, 10), (4, 2)])
    def test_rejects_invalid_settings(self, interval, duration):
        with pytest.raises(ValueError):
            RetryTracker(interval_hours=interval, max_duration_hours=duration)
