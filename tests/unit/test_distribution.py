"""
Tests for the distributor fan-out and the rendered notification texts.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, time
from types import SimpleNamespace

import pytest

from weekletter.distribution.messages import Notification, SignalKind, render
from weekletter.distribution.publisher import Distributor
from weekletter.distribution.sinks import WebhookSink
from weekletter.letters.types import Period
from weekletter.observability.telemetry import get_counter
from weekletter.reminders.models import Reminder

WEEK_10 = Period.of(10, 2025)


def reminder(text: str = "Gym clothes", day: date = date(2025, 3, 7), at: time = time(7, 0), **kw):
    return Reminder(
        id=kw.pop("id", 1),
        text=text,
        remind_date=day,
        remind_time=at,
        subject_id=kw.pop("subject_id", "emma"),
        created_at=datetime(2025, 3, 1, 12, 0),
        **kw,
    )


class TestPublish:
    def test_every_sink_receives_the_signal_in_registration_order(self, make_sink):
        distributor = Distributor()
        first, second = make_sink("telegram"), make_sink("slack")
        distributor.register("emma", first)
        distributor.register("emma", second)

        results = distributor.publish("emma", SignalKind.REMINDER_DUE, {"reminder": reminder()})

        assert list(results) == ["telegram", "slack"]
        assert results == {"telegram": True, "slack": True}
        assert first.kinds == second.kinds == ["reminder_due"]
        assert first.delivered[0][1].text == "⏰ Reminder: Gym clothes"

    def test_failing_sinks_do_not_block_the_others(self, make_sink):
        distributor = Distributor()
        broken, refusing, working = (
            make_sink("broken", raises=True),
            make_sink("refusing", fail=True),
            make_sink("working"),
        )
        for sink in (broken, refusing, working):
            distributor.register("emma", sink)

        results = distributor.publish("emma", SignalKind.REMINDER_DUE, {"reminder": reminder()})

        assert results == {"broken": False, "refusing": False, "working": True}
        assert working.kinds == ["reminder_due"]
        assert get_counter("distribution.reminder_due.failed") == 2
        assert get_counter("distribution.reminder_due.delivered") == 1

    def test_subject_without_sinks(self, make_sink):
        distributor = Distributor()
        distributor.register("emma", make_sink())

        assert distributor.publish("oliver", SignalKind.REMINDER_DUE, {"reminder": reminder()}) == {}
        assert get_counter("distribution.no_sinks") == 1

    def test_sink_names_are_unique_per_subject(self, make_sink):
        distributor = Distributor()
        distributor.register("emma", make_sink("chat"))
        distributor.register("oliver", make_sink("chat"))

        with pytest.raises(ValueError):
            distributor.register("emma", make_sink("chat"))
        assert distributor.subjects() == ["emma", "oliver"]

    def test_signals_for_one_subject_arrive_in_publish_order(self, make_sink):
        distributor = Distributor()
        sink = make_sink()
        distributor.register("emma", sink)
        texts = [f"reminder {i}" for i in range(20)]
        lock = threading.Lock()
        published: list[str] = []

        def publish(text):
            # record and publish under one lock so the expected order is known
            with lock:
                published.append(text)
                distributor.publish("emma", SignalKind.REMINDER_DUE, {"reminder": reminder(text)})

        threads = [threading.Thread(target=publish, args=(text,)) for text in texts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        received = [n.payload["reminder"].text for _, n in sink.delivered]
        assert received == published


class TestRender:
    def test_missed_reminder_mentions_delay(self):
        text = render(
            SignalKind.MISSED_REMINDER,
            {"reminder": reminder(at=time(8, 0)), "delay_minutes": 125},
        )

        assert "Missed reminder (emma): Gym clothes" in text
        assert "2025-03-07 08:00" in text
        assert "(125 minutes ago)" in text

    def test_retry_scheduled(self):
        text = render(
            SignalKind.RETRY_SCHEDULED,
            {"period": WEEK_10, "interval_hours": 1, "max_duration_hours": 48, "max_attempts": 49},
        )

        assert "week 10/2025" in text
        assert "every 1 hour(s)" in text
        assert "next 48 hours" in text

    def test_extraction_summary_lists_weekday_and_time(self):
        reminders = [
            reminder("Photo day", day=date(2025, 3, 5), at=time(6, 45), id=2),
            reminder("Bring swimwear", day=date(2025, 3, 3), at=time(6, 45), id=3),
        ]

        text = render(SignalKind.EXTRACTION_SUMMARY, {"period": WEEK_10, "reminders": reminders})

        lines = text.splitlines()
        assert lines[0] == f"I created 2 reminders for week {WEEK_10}:"
        assert lines[1] == "• Monday: Bring swimwear at 06:45"
        assert lines[2] == "• Wednesday: Photo day at 06:45"

    def test_document_ready_strips_html(self):
        text = render(SignalKind.DOCUMENT_READY, {"period": WEEK_10, "content": "<p>Hi <b>all</b></p>"})

        assert text.endswith("Hi all")


class TestWebhookSink:
    class Session:
        def __init__(self, status_code: int):
            self.status_code = status_code
            self.posts = []

        def post(self, url, json=None, timeout=None):
            self.posts.append((url, json, timeout))
            return SimpleNamespace(status_code=self.status_code)

    def _notification(self):
        return Notification(subject_id="emma", kind=SignalKind.REMINDER_DUE, text="⏰ Reminder: Gym clothes")

    def test_posts_json(self):
        session = self.Session(200)
        sink = WebhookSink("https://hooks.example.com/emma", session=session, timeout_seconds=3)

        assert sink.deliver("emma", self._notification())

        url, body, timeout = session.posts[0]
        assert url == "https://hooks.example.com/emma"
        assert body["kind"] == "reminder_due"
        assert body["subject_id"] == "emma"
        assert timeout == 3

    def test_http_error_is_a_failed_delivery(self):
        sink = WebhookSink("https://hooks.example.com/emma", session=self.Session(500))

        assert not sink.deliver("emma", self._notification())
