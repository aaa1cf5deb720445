"""
Document Repository - the content store for week letters.

One row per (subject, period), enforced by a UNIQUE constraint. Writes are
single-statement upserts so concurrent workers can never create a duplicate.
"""

from __future__ import annotations

import json
from datetime import datetime

from weekletter.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from weekletter.letters.models import StoredDocument
from weekletter.letters.types import Period, content_hash
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter

logger = get_logger(__name__)

_SELECT = "SELECT * FROM documents"


class DocumentRepository:
    """CRUD for the documents table."""

    @staticmethod
    @retry_on_db_lock()
    def upsert(subject_id: str, period: Period, content: str) -> tuple[StoredDocument, bool]:
        """
        Insert or update the document for (subject, period).

        Identical content is a no-op: the conflict branch only fires when the
        hash differs, so re-delivery never rewrites the row. A content change
        clears the posted flags and the auto-extracted flag.

        Returns:
            (stored document, True if a row was inserted or changed)
        """
        now = datetime.now().isoformat()
        params = {
            "subject_id": subject_id,
            "week": period.week,
            "year": period.year,
            "content": content,
            "content_hash": content_hash(content),
            "now": now,
        }

        with db_transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO documents (
                    subject_id, week, year, content, content_hash,
                    posted_flags, auto_extracted, created_at, updated_at
                ) VALUES (
                    :subject_id, :week, :year, :content, :content_hash,
                    '{}', 0, :now, :now
                )
                ON CONFLICT(subject_id, week, year) DO UPDATE SET
                    content = excluded.content,
                    content_hash = excluded.content_hash,
                    posted_flags = '{}',
                    auto_extracted = 0,
                    updated_at = excluded.updated_at
                WHERE documents.content_hash != excluded.content_hash
                """,
                params,
            )
            changed = cursor.rowcount > 0
            row = conn.execute(
                f"{_SELECT} WHERE subject_id = ? AND week = ? AND year = ?",
                (subject_id, period.week, period.year),
            ).fetchone()

        if changed:
            counter("documents.upsert.written")
            logger.info("Stored week letter for %s week %s", subject_id, period)
        else:
            counter("documents.upsert.unchanged")
            logger.debug("Week letter for %s week %s unchanged", subject_id, period)

        return StoredDocument.from_db_row(dict(row)), changed

    @staticmethod
    def get(subject_id: str, period: Period) -> StoredDocument | None:
        with get_db_connection() as conn:
            row = conn.execute(
                f"{_SELECT} WHERE subject_id = ? AND week = ? AND year = ?",
                (subject_id, period.week, period.year),
            ).fetchone()

        return StoredDocument.from_db_row(dict(row)) if row else None

    @staticmethod
    def get_by_id(document_id: int) -> StoredDocument | None:
        with get_db_connection() as conn:
            row = conn.execute(f"{_SELECT} WHERE id = ?", (document_id,)).fetchone()

        return StoredDocument.from_db_row(dict(row)) if row else None

    @staticmethod
    def latest(subject_id: str) -> StoredDocument | None:
        """Most recent period stored for a subject."""
        with get_db_connection() as conn:
            row = conn.execute(
                f"{_SELECT} WHERE subject_id = ? ORDER BY year DESC, week DESC LIMIT 1",
                (subject_id,),
            ).fetchone()

        return StoredDocument.from_db_row(dict(row)) if row else None

    @staticmethod
    def list_for_subject(subject_id: str, limit: int = 20) -> list[StoredDocument]:
        with get_db_connection() as conn:
            rows = conn.execute(
                f"{_SELECT} WHERE subject_id = ? ORDER BY year DESC, week DESC LIMIT ?",
                (subject_id, limit),
            ).fetchall()

        return [StoredDocument.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def count(subject_id: str, period: Period) -> int:
        with get_db_connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM documents WHERE subject_id = ? AND week = ? AND year = ?",
                (subject_id, period.week, period.year),
            ).fetchone()[0]

    @staticmethod
    @retry_on_db_lock()
    def mark_published(
        subject_id: str,
        period: Period,
        published_hash: str,
        posted_flags: dict[str, bool],
    ) -> bool:
        """
        Record that `published_hash` was announced, merging per-sink flags.

        Conditional on the stored hash still matching, so an edit that landed
        in between is not marked as announced.

        Returns:
            True if the row was updated
        """
        with db_transaction() as conn:
            row = conn.execute(
                "SELECT posted_flags FROM documents "
                "WHERE subject_id = ? AND week = ? AND year = ? AND content_hash = ?",
                (subject_id, period.week, period.year, published_hash),
            ).fetchone()
            if row is None:
                logger.warning(
                    "Not marking %s week %s as published: content changed", subject_id, period
                )
                return False

            flags = json.loads(row["posted_flags"] or "{}")
            flags.update(posted_flags)
            conn.execute(
                """
                UPDATE documents
                SET published_hash = ?, posted_flags = ?, updated_at = ?
                WHERE subject_id = ? AND week = ? AND year = ? AND content_hash = ?
                """,
                (
                    published_hash,
                    json.dumps(flags, sort_keys=True),
                    datetime.now().isoformat(),
                    subject_id,
                    period.week,
                    period.year,
                    published_hash,
                ),
            )

        return True

    @staticmethod
    @retry_on_db_lock()
    def reset_auto_extracted(subject_id: str, period: Period) -> bool:
        """Clear the auto-extracted flag so the next check re-runs extraction."""
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE documents SET auto_extracted = 0, extracted_hash = NULL, updated_at = ?
                WHERE subject_id = ? AND week = ? AND year = ?
                """,
                (datetime.now().isoformat(), subject_id, period.week, period.year),
            )
        return cursor.rowcount > 0

    @staticmethod
    @retry_on_db_lock()
    def purge(subject_id: str, period: Period) -> bool:
        """
        Administrative hard delete.

        Side Effects:
            - Deletes the documents row; linked reminders keep existing with
              document_id set to NULL
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM documents WHERE subject_id = ? AND week = ? AND year = ?",
                (subject_id, period.week, period.year),
            )

        purged = cursor.rowcount > 0
        if purged:
            logger.info("Purged week letter for %s week %s", subject_id, period)
            counter("documents.purged")
        return purged
