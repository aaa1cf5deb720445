"""Exception types shared across the pipeline."""

from __future__ import annotations


class WeekLetterError(Exception):
    """Base class for weekletter errors."""


class ContentFetchError(WeekLetterError):
    """The content source failed, timed out, or rejected our credentials.

    Always treated as transient: the scheduler records it with the retry
    tracker instead of crashing the tick.
    """

    def __init__(self, subject_id: str, message: str):
        super().__init__(f"Fetch failed for {subject_id}: {message}")
        self.subject_id = subject_id


class ExtractionError(WeekLetterError):
    """The AI extractor failed or returned output we could not parse."""


class ConfigurationError(WeekLetterError):
    """Subject file or settings are invalid."""
