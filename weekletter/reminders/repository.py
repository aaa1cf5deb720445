"""
Reminder Repository - CRUD operations for the reminders table.

Follows the database patterns in weekletter/infrastructure/database.py.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from weekletter.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter
from weekletter.reminders.models import Reminder, ReminderCreate, ReminderSource

logger = get_logger(__name__)

_INSERT_SQL = """
    INSERT INTO reminders (
        text, remind_date, remind_time, subject_id, sent, source,
        document_id, event_type, confidence, created_at
    ) VALUES (
        :text, :remind_date, :remind_time, :subject_id, 0, :source,
        :document_id, :event_type, :confidence, :created_at
    )
"""


def _insert_params(reminder: ReminderCreate, created_at: datetime) -> dict[str, Any]:
    return {
        "text": reminder.text,
        "remind_date": reminder.remind_date.isoformat(),
        "remind_time": reminder.remind_time.strftime("%H:%M"),
        "subject_id": reminder.subject_id,
        "source": reminder.source.value,
        "document_id": reminder.document_id,
        "event_type": reminder.event_type.value if reminder.event_type else None,
        "confidence": reminder.confidence,
        "created_at": created_at.isoformat(),
    }


def _to_reminder(reminder: ReminderCreate, reminder_id: int, created_at: datetime) -> Reminder:
    return Reminder(id=reminder_id, created_at=created_at, **reminder.model_dump())


class ReminderRepository:
    """
    Repository for Reminder rows.

    All methods use connection pooling and proper transaction handling.
    """

    @staticmethod
    @retry_on_db_lock()
    def create(reminder: ReminderCreate) -> Reminder:
        """
        Create a reminder.

        Side Effects:
            - Inserts row into reminders table
        """
        now = datetime.now()
        with db_transaction() as conn:
            cursor = conn.execute(_INSERT_SQL, _insert_params(reminder, now))
            reminder_id = cursor.lastrowid

        logger.info(
            "Created %s reminder %s for %s on %s",
            reminder.source.value,
            reminder_id,
            reminder.subject_id or "-",
            reminder.remind_date,
        )
        return _to_reminder(reminder, reminder_id, now)

    @staticmethod
    def get_by_id(reminder_id: int) -> Reminder | None:
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()

        return Reminder.from_db_row(dict(row)) if row else None

    @staticmethod
    def list_reminders(
        subject_id: str | None = None,
        pending_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Reminder]:
        """List reminders ordered by due date/time, optionally per subject or unsent only."""
        clauses: list[str] = []
        params: list[Any] = []
        if subject_id is not None:
            clauses.append("subject_id = ?")
            params.append(subject_id)
        if pending_only:
            clauses.append("sent = 0")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])

        with get_db_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM reminders {where} "
                "ORDER BY remind_date, remind_time, id LIMIT ? OFFSET ?",
                params,
            ).fetchall()

        return [Reminder.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def get_pending(now: datetime) -> list[Reminder]:
        """
        Unsent reminders due at or before `now`, oldest first.
        """
        today = now.date().isoformat()
        current_time = now.strftime("%H:%M")

        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders
                WHERE sent = 0
                  AND (remind_date < ? OR (remind_date = ? AND remind_time <= ?))
                ORDER BY remind_date, remind_time, id
                """,
                (today, today, current_time),
            ).fetchall()

        return [Reminder.from_db_row(dict(row)) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def mark_sent(reminder_id: int) -> bool:
        """
        Flip sent from 0 to 1.

        Returns:
            False if the reminder was already sent (or does not exist)
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET sent = 1 WHERE id = ? AND sent = 0",
                (reminder_id,),
            )

        return cursor.rowcount == 1

    @staticmethod
    @retry_on_db_lock()
    def delete(reminder_id: int) -> bool:
        with db_transaction() as conn:
            cursor = conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))

        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted reminder %s", reminder_id)
        return deleted

    @staticmethod
    def list_for_document(
        document_id: int,
        source: ReminderSource = ReminderSource.AUTO_EXTRACTED,
    ) -> list[Reminder]:
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders WHERE document_id = ? AND source = ?
                ORDER BY remind_date, remind_time, id
                """,
                (document_id, source.value),
            ).fetchall()

        return [Reminder.from_db_row(dict(row)) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def replace_auto_extracted(
        document_id: int,
        reminders: list[ReminderCreate],
        content_hash: str,
    ) -> tuple[list[Reminder], int]:
        """
        Swap a document's auto-extracted reminders for a new set.

        Everything happens in one transaction: delete the superseded
        auto-extracted rows, insert the new ones, and mark the document as
        extracted with `content_hash`. Manual reminders are never touched.

        Returns:
            (created reminders, number of superseded rows deleted)
        """
        now = datetime.now()
        created: list[Reminder] = []

        with db_transaction() as conn:
            updated = conn.execute(
                """
                UPDATE documents SET auto_extracted = 1, extracted_hash = ?, updated_at = ?
                WHERE id = ?
                """,
                (content_hash, now.isoformat(), document_id),
            ).rowcount
            if updated != 1:
                raise LookupError(f"Document {document_id} not found")

            deleted = conn.execute(
                "DELETE FROM reminders WHERE document_id = ? AND source = ?",
                (document_id, ReminderSource.AUTO_EXTRACTED.value),
            ).rowcount

            for reminder in reminders:
                cursor = conn.execute(_INSERT_SQL, _insert_params(reminder, now))
                created.append(_to_reminder(reminder, cursor.lastrowid, now))

        counter("reminders.auto_extracted", len(created))
        if deleted:
            logger.info(
                "Replaced %d superseded auto-extracted reminders for document %s",
                deleted,
                document_id,
            )
        return created, deleted
