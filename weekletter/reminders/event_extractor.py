"""
Event Extractor - turn week letter text into candidate calendar events.

The AI collaborator behind the extraction service. GeminiEventExtractor asks
Gemini for a JSON array of events and validates every item against a pydantic
schema; anything that is not valid JSON of that shape is an ExtractionError,
never a partial result.
"""

from __future__ import annotations

import concurrent.futures
import html
import json
import re
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Any, Protocol

from pydantic import BaseModel, TypeAdapter, ValidationError, field_validator
from pydantic import Field as PydanticField
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from weekletter.config import (
    EXTRACTION_MAX_CHARS,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT_SECONDS,
    SCHEDULER_MAX_WORKERS,
)
from weekletter.errors import ExtractionError
from weekletter.letters.types import Period
from weekletter.llm.gemini import get_gemini_model
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter, log_event
from weekletter.reminders.models import EventType

logger = get_logger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass(frozen=True)
class ExtractedEvent:
    """One candidate event proposed by the extractor."""

    event_type: EventType
    title: str
    description: str
    event_date: date
    confidence: float
    event_time: time | None = None


class EventExtractor(Protocol):
    def extract(self, text: str, subject_id: str, period: Period) -> list[ExtractedEvent]: ...


class CandidateEventSchema(BaseModel):
    """Schema for one item of the LLM response array."""

    type: EventType = PydanticField(description="deadline | permission_form | event | supply_needed")
    title: str = PydanticField(min_length=1, description="Short title")
    description: str = PydanticField(default="", description="What to prepare or bring")
    event_date: date = PydanticField(alias="date", description="YYYY-MM-DD")
    event_time: str | None = PydanticField(
        default=None, alias="time", description="HH:MM if the letter states a time"
    )
    confidence: float = PydanticField(ge=0.0, le=1.0)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_").replace(" ", "_")
        return value

    # "&nbsp;" must not slip past min_length as a non-empty title
    @field_validator("title", "description", mode="before")
    @classmethod
    def _unescape_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return html.unescape(value).strip()
        return value

    def to_event(self) -> ExtractedEvent:
        return ExtractedEvent(
            event_type=self.type,
            title=self.title,
            description=self.description,
            event_date=self.event_date,
            event_time=_parse_time(self.event_time),
            confidence=self.confidence,
        )


_EVENTS_ADAPTER = TypeAdapter(list[CandidateEventSchema])


def _parse_time(value: str | None) -> time | None:
    """Parse '9.30', '09:30' or 'kl. 9:30'; None when missing or unparseable."""
    if not value:
        return None
    match = re.search(r"(\d{1,2})[:.](\d{2})", value)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def html_to_text(content: str) -> str:
    """Strip tags and entities, collapse whitespace."""
    text = _TAG_RE.sub(" ", content)
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def parse_events(raw: str) -> list[ExtractedEvent]:
    """
    Parse the model response into events.

    Accepts a bare JSON array, an array wrapped in a markdown fence, or an
    object of the form {"events": [...]}.

    Raises:
        ExtractionError: Response is not valid JSON of the expected shape
    """
    cleaned = _FENCE_RE.sub("", raw.strip())
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Extractor returned invalid JSON: {e}") from e

    if isinstance(payload, dict) and "events" in payload:
        payload = payload["events"]

    try:
        candidates = _EVENTS_ADAPTER.validate_python(payload)
    except ValidationError as e:
        raise ExtractionError(f"Extractor output failed validation: {e.error_count()} errors") from e

    return [candidate.to_event() for candidate in candidates]


class GeminiEventExtractor:
    """Gemini-backed EventExtractor."""

    EXTRACTION_PROMPT = """You must respond with ONLY valid JSON. No explanations, no markdown.

Extract ONLY actionable events that need parent or student preparation from this
school week letter for week {period}.

Week {week} dates:
{week_dates}

Week letter:
\"\"\"{content}\"\"\"

INCLUDE: tests and exams, photo sessions, permission forms and payment deadlines,
supplies to bring, field trips, sports days, performances, parent meetings.
EXCLUDE: normal curriculum work, routine lessons, books started or finished.

Map weekday names to the exact dates above. Write descriptions in the language of
the letter and include times and preparation details when the letter gives them.

Output a JSON array:
[
  {{
    "type": "deadline" | "permission_form" | "event" | "supply_needed",
    "title": "short title",
    "description": "what happens and what to prepare",
    "date": "YYYY-MM-DD",
    "time": "HH:MM" or null,
    "confidence": 0.0-1.0
  }}
]

Return [] if there is nothing actionable."""

    def __init__(self, model=None, timeout_seconds: float = LLM_TIMEOUT_SECONDS):
        """
        Args:
            model: Object with generate_content(); defaults to the shared Gemini model
            timeout_seconds: How long one call may take before it counts as timed out
        """
        self._model = model
        self.timeout_seconds = timeout_seconds
        # generate_content takes no timeout argument
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=SCHEDULER_MAX_WORKERS, thread_name_prefix="gemini"
        )

    def _get_model(self):
        if self._model is None:
            self._model = get_gemini_model()
        return self._model

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def build_prompt(self, text: str, period: Period) -> str:
        monday = period.monday()
        week_dates = "\n".join(
            f"  * {(monday + timedelta(days=offset)):%A}: {(monday + timedelta(days=offset)).isoformat()}"
            for offset in range(5)
        )
        return self.EXTRACTION_PROMPT.format(
            period=period,
            week=period.week,
            week_dates=week_dates,
            content=html_to_text(text)[:EXTRACTION_MAX_CHARS],
        )

    @retry(
        stop=stop_after_attempt(LLM_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((TimeoutError, ConnectionError)),
        reraise=True,
    )
    def _call_llm_with_retry(self, prompt: str) -> str:
        """Call Gemini, retrying timeouts and unavailability with backoff."""
        from google.api_core.exceptions import DeadlineExceeded, ServiceUnavailable

        model = self._get_model()
        future = self._executor.submit(
            model.generate_content,
            prompt,
            generation_config={"temperature": 0.1, "response_mime_type": "application/json"},
        )
        try:
            return future.result(timeout=self.timeout_seconds).text
        except concurrent.futures.TimeoutError:
            future.cancel()
            counter("extractor.gemini.timeout")
            logger.warning("Gemini call timed out after %.0fs", self.timeout_seconds)
            raise TimeoutError(f"LLM call timed out after {self.timeout_seconds:.0f}s") from None
        except DeadlineExceeded as e:
            counter("extractor.gemini.timeout")
            logger.warning("Gemini deadline exceeded: %s", e)
            raise TimeoutError(f"LLM call timed out: {e}") from e
        except ServiceUnavailable as e:
            counter("extractor.gemini.service_unavailable")
            logger.warning("Gemini unavailable, will retry: %s", e)
            raise ConnectionError(f"LLM service unavailable: {e}") from e

    def extract(self, text: str, subject_id: str, period: Period) -> list[ExtractedEvent]:
        """
        Extract candidate events from a week letter.

        Raises:
            ExtractionError: The call failed after retries or the output was invalid
        """
        prompt = self.build_prompt(text, period)
        try:
            raw = self._call_llm_with_retry(prompt)
        except Exception as e:
            counter("extractor.gemini.error")
            raise ExtractionError(f"Gemini call failed: {e}") from e

        events = parse_events(raw)
        log_event(
            "extractor.gemini.completed",
            subject_id=subject_id,
            period=str(period),
            candidates=len(events),
        )
        return events


class DisabledEventExtractor:
    """Used when WEEKLETTER_USE_LLM=false: letters are announced, nothing is extracted."""

    def extract(self, text: str, subject_id: str, period: Period) -> list[ExtractedEvent]:
        logger.debug("LLM disabled, skipping extraction for %s week %s", subject_id, period)
        return []
