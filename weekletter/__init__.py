"""weekletter - fetch school week letters, announce them, and turn them into reminders"""

from __future__ import annotations

__version__ = "1.0.0"


# Lazy imports so lightweight modules load without FastAPI or Vertex AI
def __getattr__(name: str):
    if name in ("Period", "Document", "FetchResult"):
        from weekletter.letters import types

        return getattr(types, name)

    if name in ("Reminder", "ReminderCreate", "ReminderRepository"):
        from weekletter.reminders import models, repository

        if name == "ReminderRepository":
            return repository.ReminderRepository
        return getattr(models, name)

    if name == "Scheduler":
        from weekletter.scheduling.scheduler import Scheduler

        return Scheduler

    if name == "build_runtime":
        from weekletter.runtime import build_runtime

        return build_runtime

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "Period",
    "Document",
    "FetchResult",
    "Reminder",
    "ReminderCreate",
    "ReminderRepository",
    "Scheduler",
    "build_runtime",
]
