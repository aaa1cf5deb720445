"""
Scheduled job rows and cron evaluation.

A job is due when now falls inside [next_run, next_run + window]. next_run is
read from the row, or derived from the cron expression (croniter) relative to
last_run, or to a point just before now when the job has never run.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from croniter import croniter
from pydantic import BaseModel

from weekletter.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from weekletter.observability.logging import get_logger

logger = get_logger(__name__)


class ScheduledJob(BaseModel):
    name: str
    cron_expression: str
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> ScheduledJob:
        return cls(
            name=row["name"],
            cron_expression=row["cron_expression"],
            enabled=bool(row["enabled"]),
            last_run=datetime.fromisoformat(row["last_run"]) if row["last_run"] else None,
            next_run=datetime.fromisoformat(row["next_run"]) if row["next_run"] else None,
        )


def is_valid_cron(expression: str) -> bool:
    try:
        croniter(expression)
        return True
    except (ValueError, KeyError):
        return False


def next_occurrence(expression: str, after: datetime) -> datetime:
    """
    First cron occurrence strictly after `after`.

    Raises:
        ValueError: Invalid cron expression
    """
    return croniter(expression, after).get_next(datetime)


def resolve_next_run(job: ScheduledJob, now: datetime, initial_offset_minutes: int) -> datetime:
    """The occurrence the job is waiting for."""
    if job.next_run is not None:
        return job.next_run
    base = job.last_run or now - timedelta(minutes=initial_offset_minutes)
    return next_occurrence(job.cron_expression, base)


class JobRepository:
    """CRUD for the jobs table."""

    @staticmethod
    def list_jobs() -> list[ScheduledJob]:
        with get_db_connection() as conn:
            rows = conn.execute("SELECT * FROM jobs ORDER BY name").fetchall()
        return [ScheduledJob.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def get(name: str) -> ScheduledJob | None:
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE name = ?", (name,)).fetchone()
        return ScheduledJob.from_db_row(dict(row)) if row else None

    @staticmethod
    @retry_on_db_lock()
    def save(job: ScheduledJob) -> ScheduledJob:
        """
        Insert or replace a job definition.

        Raises:
            ValueError: Invalid cron expression
        """
        if not is_valid_cron(job.cron_expression):
            raise ValueError(f"Invalid cron expression: {job.cron_expression!r}")

        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO jobs (name, cron_expression, enabled, last_run, next_run, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    cron_expression = excluded.cron_expression,
                    enabled = excluded.enabled,
                    next_run = excluded.next_run,
                    updated_at = excluded.updated_at
                """,
                (
                    job.name,
                    job.cron_expression,
                    int(job.enabled),
                    job.last_run.isoformat() if job.last_run else None,
                    job.next_run.isoformat() if job.next_run else None,
                    datetime.now().isoformat(),
                ),
            )
        return job

    @staticmethod
    @retry_on_db_lock()
    def record_run(name: str, last_run: datetime | None, next_run: datetime) -> None:
        """Persist run bookkeeping; written before the job handler executes."""
        with db_transaction() as conn:
            conn.execute(
                "UPDATE jobs SET last_run = ?, next_run = ?, updated_at = ? WHERE name = ?",
                (
                    last_run.isoformat() if last_run else None,
                    next_run.isoformat(),
                    datetime.now().isoformat(),
                    name,
                ),
            )

    @staticmethod
    @retry_on_db_lock()
    def set_enabled(name: str, enabled: bool) -> bool:
        with db_transaction() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET enabled = ?, updated_at = ? WHERE name = ?",
                (int(enabled), datetime.now().isoformat(), name),
            )
        return cursor.rowcount > 0
