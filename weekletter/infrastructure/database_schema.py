"""
Database schema for weekletter.

Four tables: documents (content store), retry_attempts (retry tracker),
reminders (reminder store) and jobs (scheduler bookkeeping).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from weekletter.config import (
    LETTER_JOB_CRON,
    LETTER_JOB_NAME,
    REMINDER_JOB_CRON,
    REMINDER_JOB_NAME,
)
from weekletter.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS documents (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        subject_id TEXT NOT NULL,
        week INTEGER NOT NULL CHECK (week BETWEEN 1 AND 53),
        year INTEGER NOT NULL CHECK (year BETWEEN 2000 AND 2100),
        content TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        posted_flags TEXT NOT NULL DEFAULT '{}',
        published_hash TEXT,
        auto_extracted INTEGER NOT NULL DEFAULT 0,
        extracted_hash TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(subject_id, week, year)
    );

    CREATE INDEX IF NOT EXISTS idx_documents_subject_updated
        ON documents(subject_id, updated_at DESC);

    CREATE TABLE IF NOT EXISTS retry_attempts (
        subject_id TEXT NOT NULL,
        week INTEGER NOT NULL,
        year INTEGER NOT NULL,
        attempt_count INTEGER NOT NULL DEFAULT 0 CHECK (attempt_count >= 0),
        last_attempt TEXT NOT NULL,
        next_attempt TEXT NOT NULL,
        max_attempts INTEGER NOT NULL CHECK (max_attempts >= 1),
        exhausted_at TEXT,
        created_at TEXT NOT NULL,
        PRIMARY KEY (subject_id, week, year)
    );

    CREATE TABLE IF NOT EXISTS reminders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        text TEXT NOT NULL,
        remind_date TEXT NOT NULL,
        remind_time TEXT NOT NULL,
        subject_id TEXT,
        sent INTEGER NOT NULL DEFAULT 0,
        source TEXT NOT NULL DEFAULT 'manual',
        document_id INTEGER REFERENCES documents(id) ON DELETE SET NULL,
        event_type TEXT,
        confidence REAL,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_reminders_pending
        ON reminders(sent, remind_date, remind_time);
    CREATE INDEX IF NOT EXISTS idx_reminders_document
        ON reminders(document_id, source);

    CREATE TABLE IF NOT EXISTS jobs (
        name TEXT PRIMARY KEY,
        cron_expression TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        last_run TEXT,
        next_run TEXT,
        updated_at TEXT
    );
"""

REQUIRED_TABLES: dict[str, list[str]] = {
    "documents": ["id", "subject_id", "week", "year", "content", "content_hash", "posted_flags"],
    "retry_attempts": ["subject_id", "week", "year", "attempt_count", "next_attempt", "created_at"],
    "reminders": ["id", "text", "remind_date", "remind_time", "sent", "source", "document_id"],
    "jobs": ["name", "cron_expression", "enabled", "last_run", "next_run"],
}


def create_schema(db_path: Path) -> None:
    """
    Create tables and indexes, then seed the default jobs.

    Side Effects:
        - Creates the parent directory of db_path
        - Inserts ReminderCheck and WeeklyLetterCheck unless rows already exist
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.executemany(
            "INSERT OR IGNORE INTO jobs (name, cron_expression, enabled) VALUES (?, ?, 1)",
            [
                (REMINDER_JOB_NAME, REMINDER_JOB_CRON),
                (LETTER_JOB_NAME, LETTER_JOB_CRON),
            ],
        )
        conn.commit()
    finally:
        conn.close()

    logger.info("Schema ready at %s", db_path)


def check_schema(conn: sqlite3.Connection) -> bool:
    """
    Confirm every table in REQUIRED_TABLES exists with its columns.

    Raises:
        ValueError: If tables or columns are missing
    """
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(REQUIRED_TABLES) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in REQUIRED_TABLES.items():
        # Table names come from the constant above; PRAGMA cannot be parameterized
        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}
        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table {table} missing columns: {missing_cols}")

    return True
