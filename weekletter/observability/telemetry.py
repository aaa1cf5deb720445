"""
In-process telemetry.

Events are written as structured log lines; counters and timings are kept in
memory only, so tests can assert on them. Field values must be ids and
periods, never letter content.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections import Counter, defaultdict
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("weekletter.telemetry")


class _Registry:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.counts: Counter[str] = Counter()
        self.timings: defaultdict[str, list[float]] = defaultdict(list)


_registry = _Registry()


def _timing_key(metric_name: str) -> str:
    return metric_name if metric_name.endswith("_ms") else f"{metric_name}_ms"


def log_event(event_name: str, **fields: Any) -> None:
    """Emit `event=<name> key=value ...` at info level."""
    rendered = " ".join(f"{key}={value}" for key, value in fields.items())
    logger.info("event=%s %s", event_name, rendered)


def counter(name: str, increment: int = 1) -> int:
    """Bump a named counter and return its new value."""
    with _registry.lock:
        _registry.counts[name] += increment
        value = _registry.counts[name]
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    with _registry.lock:
        return _registry.counts[name]


def reset_counters() -> None:
    """Forget all counters and timings."""
    with _registry.lock:
        _registry.counts.clear()
        _registry.timings.clear()


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """Record the wall time of the with-block under `<metric_name>_ms`."""
    key = _timing_key(metric_name)
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        with _registry.lock:
            _registry.timings[key].append(elapsed_ms)
        logger.debug("timing=%s ms=%.2f", key, elapsed_ms)


def get_latency_samples(metric_name: str) -> list[float]:
    """Recorded durations in milliseconds, oldest first."""
    with _registry.lock:
        return list(_registry.timings.get(_timing_key(metric_name), []))
