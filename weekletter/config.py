"""Centralized configuration for weekletter.

Re-exports everything from weekletter.infrastructure.settings, then adds typed
constants for database, scheduling, retry, extraction and API settings.
Environment variable overrides use safe defaults so the service starts
without extra env configuration.
"""

from __future__ import annotations

import os

from weekletter.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "1.0.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("WEEKLETTER_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("WEEKLETTER_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("WEEKLETTER_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("WEEKLETTER_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("WEEKLETTER_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("WEEKLETTER_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("WEEKLETTER_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("WEEKLETTER_DB_RETRY_JITTER", "0.1"))

# --- Scheduling ---
SCHEDULER_INTERVAL_SECONDS: int = int(os.getenv("WEEKLETTER_SCHEDULER_INTERVAL_SECONDS", "10"))
SCHEDULER_WINDOW_SECONDS: int = int(os.getenv("WEEKLETTER_SCHEDULER_WINDOW_SECONDS", "10"))
TASK_EXECUTION_WINDOW_MINUTES: int = int(os.getenv("WEEKLETTER_TASK_WINDOW_MINUTES", "1"))
INITIAL_OCCURRENCE_OFFSET_MINUTES: int = int(
    os.getenv("WEEKLETTER_INITIAL_OCCURRENCE_OFFSET_MINUTES", "1")
)
SCHEDULER_MAX_WORKERS: int = int(os.getenv("WEEKLETTER_SCHEDULER_MAX_WORKERS", "4"))
FETCH_TIMEOUT_SECONDS: float = float(os.getenv("WEEKLETTER_FETCH_TIMEOUT_SECONDS", "60"))
RECHECK_PUBLISHED: bool = os.getenv("WEEKLETTER_RECHECK_PUBLISHED", "false").lower() == "true"

REMINDER_JOB_NAME: str = "ReminderCheck"
LETTER_JOB_NAME: str = "WeeklyLetterCheck"
REMINDER_JOB_CRON: str = os.getenv("WEEKLETTER_REMINDER_CRON", "*/5 * * * *")
LETTER_JOB_CRON: str = os.getenv("WEEKLETTER_LETTER_CRON", "0 16 * * 5,6,0")

# --- Retries ---
RETRY_INTERVAL_HOURS: int = int(os.getenv("WEEKLETTER_RETRY_INTERVAL_HOURS", "1"))
MAX_RETRY_DURATION_HOURS: int = int(os.getenv("WEEKLETTER_MAX_RETRY_DURATION_HOURS", "48"))
# Slower polling while the source reports nothing published yet
NOT_PUBLISHED_RETRY_INTERVAL_HOURS: int = int(
    os.getenv("WEEKLETTER_NOT_PUBLISHED_RETRY_INTERVAL_HOURS", "4")
)

# --- Extraction ---
EXTRACTION_CONFIDENCE_THRESHOLD: float = float(
    os.getenv("WEEKLETTER_EXTRACTION_CONFIDENCE_THRESHOLD", "0.8")
)
DEFAULT_REMINDER_TIME: str = os.getenv("WEEKLETTER_DEFAULT_REMINDER_TIME", "06:45")
EXTRACTION_MAX_CHARS: int = 12000

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("WEEKLETTER_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("WEEKLETTER_LLM_MAX_RETRIES", "3"))

# --- Subjects & delivery ---
SUBJECTS_FILE: str = os.getenv("WEEKLETTER_SUBJECTS_FILE", "config/subjects.yaml")
SOURCE_URL_TEMPLATE: str | None = os.getenv("WEEKLETTER_SOURCE_URL_TEMPLATE")
SOURCE_TOKEN: str | None = os.getenv("WEEKLETTER_SOURCE_TOKEN")
SOURCE_TIMEOUT_SECONDS: float = float(os.getenv("WEEKLETTER_SOURCE_TIMEOUT", "30"))
WEBHOOK_TIMEOUT_SECONDS: float = float(os.getenv("WEEKLETTER_WEBHOOK_TIMEOUT", "10"))

# --- API ---
API_LIST_LIMIT_DEFAULT: int = 100
API_LIST_LIMIT_MAX: int = 500
