"""
Distribution Layer - fan a signal out to every sink registered for a subject.

Each sink is called independently; a failing sink is logged and counted and
the remaining sinks still receive the signal. Publishing for one subject is
serialized so every sink sees that subject's signals in publish order.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any

from weekletter.distribution.messages import Notification, SignalKind, render
from weekletter.distribution.sinks import NotificationSink
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter

logger = get_logger(__name__)


class Distributor:
    """Registry of sinks per subject plus the publish fan-out."""

    def __init__(self) -> None:
        self._sinks: dict[str, list[NotificationSink]] = defaultdict(list)
        self._subject_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def register(self, subject_id: str, sink: NotificationSink) -> None:
        with self._registry_lock:
            if any(existing.name == sink.name for existing in self._sinks[subject_id]):
                raise ValueError(f"Sink {sink.name!r} already registered for {subject_id}")
            self._sinks[subject_id].append(sink)
        logger.info("Registered sink %s for %s", sink.name, subject_id)

    def sinks_for(self, subject_id: str) -> list[NotificationSink]:
        with self._registry_lock:
            return list(self._sinks.get(subject_id, []))

    def subjects(self) -> list[str]:
        with self._registry_lock:
            return sorted(self._sinks)

    def _lock_for(self, subject_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._subject_locks.setdefault(subject_id, threading.Lock())

    def publish(self, subject_id: str, kind: SignalKind, payload: dict[str, Any]) -> dict[str, bool]:
        """
        Deliver a signal to every sink of `subject_id`.

        Returns:
            Sink name -> delivered. Empty when the subject has no sinks.
        """
        sinks = self.sinks_for(subject_id)
        if not sinks:
            logger.warning("No sinks registered for %s, dropping %s", subject_id, kind.value)
            counter("distribution.no_sinks")
            return {}

        notification = Notification(
            subject_id=subject_id,
            kind=kind,
            text=render(kind, payload),
            payload=payload,
        )

        results: dict[str, bool] = {}
        with self._lock_for(subject_id):
            for sink in sinks:
                try:
                    delivered = bool(sink.deliver(subject_id, notification))
                except Exception as e:
                    logger.error(
                        "Sink %s failed to deliver %s for %s: %s",
                        sink.name,
                        kind.value,
                        subject_id,
                        e,
                    )
                    delivered = False

                results[sink.name] = delivered
                counter(f"distribution.{kind.value}.{'delivered' if delivered else 'failed'}")

        return results
