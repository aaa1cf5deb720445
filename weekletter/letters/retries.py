"""
Retry Tracker - persisted backoff state for week letters that failed to arrive.

"How often" (interval) and "how long" (max duration) are configured separately;
the attempt bound is derived from both when a record is created, so changing
the settings never needs a code change and a restart keeps the schedule.

A source that answers "nothing published yet" is polled on its own, slower
interval and does not use up attempts. Such a record still gives up once it
is older than the max duration.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from weekletter.config import (
    MAX_RETRY_DURATION_HOURS,
    NOT_PUBLISHED_RETRY_INTERVAL_HOURS,
    RETRY_INTERVAL_HOURS,
)
from weekletter.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from weekletter.letters.models import RetryRecord
from weekletter.letters.types import Period
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter, log_event

logger = get_logger(__name__)

_KEY = "subject_id = :subject_id AND week = :week AND year = :year"

_INSERT = """
    INSERT OR IGNORE INTO retry_attempts (
        subject_id, week, year, attempt_count, last_attempt, next_attempt, max_attempts, created_at
    ) VALUES (:subject_id, :week, :year, 1, :now, :next, :max_attempts, :now)
"""


class RetryTracker:
    """Attempt counting per (subject, period) in the retry_attempts table."""

    def __init__(
        self,
        interval_hours: int = RETRY_INTERVAL_HOURS,
        max_duration_hours: int = MAX_RETRY_DURATION_HOURS,
        clock: Callable[[], datetime] = datetime.now,
        not_published_interval_hours: int = NOT_PUBLISHED_RETRY_INTERVAL_HOURS,
    ):
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        if max_duration_hours < interval_hours:
            raise ValueError("max_duration_hours must be at least interval_hours")

        self.interval_hours = interval_hours
        self.max_duration_hours = max_duration_hours
        # Never polls faster than a hard failure would
        self.not_published_interval_hours = max(interval_hours, not_published_interval_hours)
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return max(1, self.max_duration_hours // self.interval_hours)

    def _params(self, subject_id: str, period: Period, interval_hours: int | None = None) -> dict:
        now = self._clock()
        return {
            "subject_id": subject_id,
            "week": period.week,
            "year": period.year,
            "now": now.isoformat(),
            "next": (now + timedelta(hours=interval_hours or self.interval_hours)).isoformat(),
            "expires_before": (now - timedelta(hours=self.max_duration_hours)).isoformat(),
            "max_attempts": self.max_attempts,
        }

    @retry_on_db_lock()
    def record_failure(self, subject_id: str, period: Period) -> bool:
        """
        Count a failed acquisition.

        Returns:
            True only when this created the record (the first failure)

        Side Effects:
            - Inserts the record with count=1, or increments it and pushes
              next_attempt out by one interval
            - At the attempt bound the count is left alone
        """
        params = self._params(subject_id, period)

        with db_transaction() as conn:
            cursor = conn.execute(_INSERT, params)
            if cursor.rowcount == 1:
                logger.info(
                    "First failed attempt for %s week %s, retrying every %dh (max %d attempts)",
                    subject_id,
                    period,
                    self.interval_hours,
                    self.max_attempts,
                )
                counter("retries.created")
                return True

            cursor = conn.execute(
                f"""
                UPDATE retry_attempts
                SET attempt_count = attempt_count + 1, last_attempt = :now, next_attempt = :next
                WHERE {_KEY} AND attempt_count < max_attempts
                """,
                params,
            )

        if cursor.rowcount == 0:
            logger.warning("Retry attempts exhausted for %s week %s", subject_id, period)
            counter("retries.exhausted_failure")
        else:
            counter("retries.incremented")
        return False

    @retry_on_db_lock()
    def record_not_published(self, subject_id: str, period: Period) -> bool:
        """
        Note that the source answered with nothing published yet.

        Creates the record on first sight so the retry schedule is announced
        once. Later calls do not count an attempt; they push next_attempt out
        by the not-published interval. A record older than max_duration_hours
        is raised to max_attempts instead, which makes it exhausted.

        Returns:
            True when this created the record
        """
        params = self._params(subject_id, period, self.not_published_interval_hours)

        with db_transaction() as conn:
            cursor = conn.execute(_INSERT, params)
            if cursor.rowcount == 1:
                counter("retries.created")
                return True

            expired = conn.execute(
                f"""
                UPDATE retry_attempts
                SET attempt_count = max_attempts, last_attempt = :now, next_attempt = :now
                WHERE {_KEY} AND attempt_count < max_attempts AND created_at <= :expires_before
                """,
                params,
            ).rowcount
            if not expired:
                conn.execute(
                    f"""
                    UPDATE retry_attempts SET last_attempt = :now, next_attempt = :next
                    WHERE {_KEY} AND attempt_count < max_attempts
                    """,
                    params,
                )

        if expired:
            logger.warning(
                "Nothing published for %s week %s within %dh, giving up",
                subject_id,
                period,
                self.max_duration_hours,
            )
            counter("retries.not_published_expired")
        else:
            counter("retries.not_published")
        return False

    @retry_on_db_lock()
    def record_success(self, subject_id: str, period: Period) -> None:
        """Delete the record; no history is kept."""
        with db_transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM retry_attempts WHERE {_KEY}",
                {"subject_id": subject_id, "week": period.week, "year": period.year},
            )

        if cursor.rowcount:
            log_event("retries.resolved", subject_id=subject_id, period=str(period))

    def get(self, subject_id: str, period: Period) -> RetryRecord | None:
        with get_db_connection() as conn:
            row = conn.execute(
                f"SELECT * FROM retry_attempts WHERE {_KEY}",
                {"subject_id": subject_id, "week": period.week, "year": period.year},
            ).fetchone()

        return RetryRecord.from_db_row(dict(row)) if row else None

    def get_attempts(self, subject_id: str, period: Period) -> int:
        record = self.get(subject_id, period)
        return record.attempt_count if record else 0

    @retry_on_db_lock()
    def mark_exhausted(self, subject_id: str, period: Period) -> bool:
        """
        Stamp exhausted_at.

        Returns:
            True only on the first call, so the terminal notice goes out once
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE retry_attempts SET exhausted_at = :now
                WHERE {_KEY} AND exhausted_at IS NULL AND attempt_count >= max_attempts
                """,
                self._params(subject_id, period),
            )

        if cursor.rowcount:
            log_event("retries.exhausted", subject_id=subject_id, period=str(period))
            return True
        return False

    def pending(self) -> list[RetryRecord]:
        """Records still being retried, soonest first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM retry_attempts WHERE exhausted_at IS NULL ORDER BY next_attempt"
            ).fetchall()

        return [RetryRecord.from_db_row(dict(row)) for row in rows]

    def all_records(self) -> list[RetryRecord]:
        with get_db_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM retry_attempts ORDER BY year, week, subject_id"
            ).fetchall()

        return [RetryRecord.from_db_row(dict(row)) for row in rows]

    @retry_on_db_lock()
    def clear(self, subject_id: str, period: Period) -> bool:
        """Manually drop a record, exhausted or not."""
        with db_transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM retry_attempts WHERE {_KEY}",
                {"subject_id": subject_id, "week": period.week, "year": period.year},
            )

        if cursor.rowcount:
            logger.info("Cleared retry record for %s week %s", subject_id, period)
        return cursor.rowcount > 0
