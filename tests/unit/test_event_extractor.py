"""
Tests for parsing and prompting in the Gemini event extractor.

No network: the model is a stub with generate_content().
"""

from __future__ import annotations

import json
import threading
from datetime import date, time
from types import SimpleNamespace

import pytest

from weekletter.errors import ExtractionError
from weekletter.letters.types import Period
from weekletter.observability.telemetry import get_counter
from weekletter.reminders.event_extractor import (
    DisabledEventExtractor,
    GeminiEventExtractor,
    html_to_text,
    parse_events,
)
from weekletter.reminders.models import EventType

WEEK_10 = Period.of(10, 2025)

PHOTO_DAY = {
    "type": "event",
    "title": "Photo day",
    "description": "Class photos, nice clothes",
    "date": "2025-03-05",
    "time": "kl. 9.30",
    "confidence": 0.92,
}


class StubModel:
    """Answers in order; an Event response hangs until it is set."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []
        self.configs = []

    def generate_content(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        self.configs.append(generation_config)
        response = self.responses.pop(0)
        if isinstance(response, threading.Event):
            response.wait(5)
            return SimpleNamespace(text="[]")
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(text=response)


class TestParseEvents:
    def test_bare_array(self):
        events = parse_events(json.dumps([PHOTO_DAY]))

        assert len(events) == 1
        assert events[0].event_type is EventType.EVENT
        assert events[0].event_date == date(2025, 3, 5)
        assert events[0].event_time == time(9, 30)
        assert events[0].confidence == 0.92

    def test_markdown_fence_and_wrapper_object(self):
        raw = "```json\n" + json.dumps({"events": [PHOTO_DAY]}) + "\n```"

        assert [e.title for e in parse_events(raw)] == ["Photo day"]

    def test_empty_array(self):
        assert parse_events("[]") == []

    def test_type_is_normalized(self):
        item = {**PHOTO_DAY, "type": "Permission Form"}

        assert parse_events(json.dumps([item]))[0].event_type is EventType.PERMISSION_FORM

    def test_entities_are_unescaped(self):
        item = {**PHOTO_DAY, "title": " Tur &amp; leg ", "description": "Madpakke&nbsp;"}

        event = parse_events(json.dumps([item]))[0]

        assert event.title == "Tur & leg"
        assert event.description == "Madpakke"

    def test_missing_or_bad_time_is_none(self):
        item = {**PHOTO_DAY, "time": None}
        other = {**PHOTO_DAY, "time": "after lunch"}

        events = parse_events(json.dumps([item, other]))

        assert [e.event_time for e in events] == [None, None]

    def test_invalid_json_raises(self):
        with pytest.raises(ExtractionError, match="invalid JSON"):
            parse_events("Here are the events: Photo day on Wednesday")

    @pytest.mark.parametrize(
        "item",
        [
            {**PHOTO_DAY, "type": "party"},
            {**PHOTO_DAY, "confidence": 1.7},
            {**PHOTO_DAY, "date": "next Wednesday"},
            {key: value for key, value in PHOTO_DAY.items() if key != "title"},
            {**PHOTO_DAY, "title": "&nbsp;"},
        ],
    )
    def test_invalid_items_fail_the_whole_response(self, item):
        with pytest.raises(ExtractionError, match="validation"):
            parse_events(json.dumps([PHOTO_DAY, item]))


def test_html_to_text():
    assert html_to_text("<p>Hej&nbsp;alle</p>\n<ul><li>Tur</li></ul>") == "Hej alle Tur"


class TestGeminiEventExtractor:
    def test_prompt_lists_week_dates(self):
        prompt = GeminiEventExtractor(model=StubModel()).build_prompt("<b>Letter</b>", WEEK_10)

        assert "Monday: 2025-03-03" in prompt
        assert "Friday: 2025-03-07" in prompt
        assert '"""Letter"""' in prompt

    def test_extract_parses_model_output(self):
        model = StubModel(json.dumps([PHOTO_DAY]))

        events = GeminiEventExtractor(model=model).extract("<p>Photo day</p>", "emma", WEEK_10)

        assert [e.title for e in events] == ["Photo day"]
        assert len(model.prompts) == 1
        assert model.configs[0]["response_mime_type"] == "application/json"

    def test_unexpected_model_error_is_wrapped(self):
        model = StubModel(RuntimeError("quota exceeded"))

        with pytest.raises(ExtractionError, match="quota exceeded"):
            GeminiEventExtractor(model=model).extract("x", "emma", WEEK_10)

    def test_service_unavailable_is_retried(self):
        from google.api_core.exceptions import ServiceUnavailable

        model = StubModel(ServiceUnavailable("try later"), json.dumps([]))

        assert GeminiEventExtractor(model=model).extract("x", "emma", WEEK_10) == []
        assert len(model.prompts) == 2

    def test_hung_call_times_out_and_is_retried(self):
        release = threading.Event()
        model = StubModel(release, json.dumps([PHOTO_DAY]))
        extractor = GeminiEventExtractor(model=model, timeout_seconds=0.05)
        try:
            events = extractor.extract("x", "emma", WEEK_10)
        finally:
            release.set()
            extractor.close()

        assert [e.title for e in events] == ["Photo day"]
        assert len(model.prompts) == 2
        assert get_counter("extractor.gemini.timeout") == 1


def test_disabled_extractor_finds_nothing():
    assert DisabledEventExtractor().extract("<p>Photo day</p>", "emma", WEEK_10) == []
