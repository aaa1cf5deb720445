"""
Reminders - manual and auto-extracted, plus the extraction stage.
"""

from weekletter.reminders.models import EventType, Reminder, ReminderCreate, ReminderSource
from weekletter.reminders.repository import ReminderRepository

__all__ = [
    "EventType",
    "Reminder",
    "ReminderCreate",
    "ReminderRepository",
    "ReminderSource",
]
