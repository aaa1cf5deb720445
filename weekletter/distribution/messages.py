"""
Signal kinds and the user-facing text rendered for each.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from weekletter.reminders.event_extractor import html_to_text
from weekletter.reminders.models import Reminder


class SignalKind(str, Enum):
    DOCUMENT_READY = "document_ready"
    REMINDER_DUE = "reminder_due"
    MISSED_REMINDER = "missed_reminder"
    RETRY_SCHEDULED = "retry_scheduled"
    FETCH_EXHAUSTED = "fetch_exhausted"
    EXTRACTION_SUMMARY = "extraction_summary"
    EXTRACTION_EMPTY = "extraction_empty"


@dataclass(frozen=True)
class Notification:
    """What a sink receives: rendered text plus the raw payload."""

    subject_id: str
    kind: SignalKind
    text: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)


def _document_ready(payload: dict[str, Any]) -> str:
    title = payload.get("title") or f"Week letter for week {payload['period']}"
    return f"📬 {title}\n\n{html_to_text(payload.get('content', ''))}"


def _reminder_due(payload: dict[str, Any]) -> str:
    reminder: Reminder = payload["reminder"]
    return f"⏰ Reminder: {reminder.text}"


def _missed_reminder(payload: dict[str, Any]) -> str:
    reminder: Reminder = payload["reminder"]
    who = f" ({reminder.subject_id})" if reminder.subject_id else ""
    return (
        f"⚠️ Missed reminder{who}: {reminder.text}\n"
        f"Was scheduled for {reminder.remind_date:%Y-%m-%d} {reminder.remind_time:%H:%M} "
        f"({payload['delay_minutes']} minutes ago)"
    )


def _retry_scheduled(payload: dict[str, Any]) -> str:
    return (
        f"⚠️ The week letter for week {payload['period']} is not available yet.\n\n"
        f"I will try again every {payload['interval_hours']} hour(s) for the next "
        f"{payload['max_duration_hours']} hours (up to {payload['max_attempts']} attempts).\n\n"
        "You will hear from me as soon as it is available."
    )


def _fetch_exhausted(payload: dict[str, Any]) -> str:
    return (
        f"❌ Gave up fetching the week letter for week {payload['period']} "
        f"after {payload['attempts']} attempts. It will not be retried until the "
        "retry record is cleared."
    )


def _extraction_summary(payload: dict[str, Any]) -> str:
    reminders: list[Reminder] = sorted(
        payload["reminders"], key=lambda r: (r.remind_date, r.remind_time)
    )
    lines = [f"I created {len(reminders)} reminders for week {payload['period']}:"]
    for reminder in reminders:
        lines.append(f"• {reminder.remind_date:%A}: {reminder.text} at {reminder.remind_time:%H:%M}")
    return "\n".join(lines)


def _extraction_empty(payload: dict[str, Any]) -> str:
    return (
        f"No reminders were found in the week letter for week {payload['period']}; "
        "no automatic reminders were created."
    )


_RENDERERS = {
    SignalKind.DOCUMENT_READY: _document_ready,
    SignalKind.REMINDER_DUE: _reminder_due,
    SignalKind.MISSED_REMINDER: _missed_reminder,
    SignalKind.RETRY_SCHEDULED: _retry_scheduled,
    SignalKind.FETCH_EXHAUSTED: _fetch_exhausted,
    SignalKind.EXTRACTION_SUMMARY: _extraction_summary,
    SignalKind.EXTRACTION_EMPTY: _extraction_empty,
}


def render(kind: SignalKind, payload: dict[str, Any]) -> str:
    return _RENDERERS[kind](payload)
