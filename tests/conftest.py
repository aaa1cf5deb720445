"""
Pytest configuration for weekletter tests

Every test gets its own SQLite file (WEEKLETTER_DB_PATH) and clean counters.
Fakes stand in for the portal, the chat channels and Gemini.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pytest

from weekletter.distribution.publisher import Distributor
from weekletter.infrastructure.database import init_database, reset_pool
from weekletter.letters.acquisition import AcquisitionService
from weekletter.letters.retries import RetryTracker
from weekletter.letters.types import FetchResult, Period
from weekletter.observability.telemetry import reset_counters
from weekletter.reminders.extraction import ExtractionService
from weekletter.scheduling.scheduler import Scheduler
from weekletter.storage.cache import DocumentCache

# Friday of ISO week 10/2025, five seconds into the minute
FRIDAY_AFTERNOON = datetime(2025, 3, 7, 16, 0, 5)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime = FRIDAY_AFTERNOON):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeSource:
    """ContentSource with canned answers; unknown periods are not published."""

    def __init__(self):
        self.responses: dict[tuple[str, Period], object] = {}
        self.calls: list[tuple[str, Period]] = []
        self.gate: threading.Event | None = None

    def publish(self, subject_id: str, period: Period, content: str) -> None:
        self.responses[(subject_id, period)] = FetchResult.published(content)

    def fail(self, subject_id: str, period: Period, error: Exception | None = None) -> None:
        self.responses[(subject_id, period)] = error or ConnectionError("portal unreachable")

    def fetch(self, subject_id: str, period: Period) -> FetchResult:
        self.calls.append((subject_id, period))
        if self.gate is not None:
            self.gate.wait(5)
        response = self.responses.get((subject_id, period), FetchResult.not_published())
        if isinstance(response, Exception):
            raise response
        return response


class FakeSink:
    def __init__(self, name: str = "chat", *, fail: bool = False, raises: bool = False):
        self.name = name
        self.fail = fail
        self.raises = raises
        self.delivered = []

    def deliver(self, subject_id, notification) -> bool:
        if self.raises:
            raise RuntimeError(f"{self.name} is down")
        self.delivered.append((subject_id, notification))
        return not self.fail

    @property
    def kinds(self) -> list[str]:
        return [notification.kind.value for _, notification in self.delivered]

    def of_kind(self, kind: str) -> list:
        return [n for _, n in self.delivered if n.kind.value == kind]


class FakeExtractor:
    """EventExtractor returning a fixed list, or raising `error`."""

    def __init__(self, events=None, error: Exception | None = None):
        self.events = list(events or [])
        self.error = error
        self.calls = 0

    def extract(self, text, subject_id, period):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.events)


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Fresh database file and counters for every test."""
    db_path = tmp_path / "weekletter.db"
    monkeypatch.setenv("WEEKLETTER_DB_PATH", str(db_path))
    reset_pool()
    init_database()
    reset_counters()
    yield db_path
    reset_pool()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def make_sink():
    return FakeSink


@dataclass
class Pipeline:
    clock: FakeClock
    source: FakeSource
    extractor: FakeExtractor
    distributor: Distributor
    acquisition: AcquisitionService
    retry_tracker: RetryTracker
    extraction: ExtractionService
    scheduler: Scheduler
    sinks: dict[str, FakeSink] = field(default_factory=dict)

    @property
    def sink(self) -> FakeSink:
        return self.sinks["emma"]


@pytest.fixture
def pipeline(clock, source, extractor):
    """
    Scheduler wired to fakes for two subjects, emma and oliver.

    Retries every 2h for 6h, so max_attempts is 3. Unpublished letters are
    polled every 4h.
    """
    distributor = Distributor()
    sinks = {}
    for subject_id in ("emma", "oliver"):
        sinks[subject_id] = FakeSink("chat")
        distributor.register(subject_id, sinks[subject_id])

    acquisition = AcquisitionService(
        source, DocumentCache("test"), fetch_timeout_seconds=2, max_workers=2
    )
    retry_tracker = RetryTracker(
        interval_hours=2, max_duration_hours=6, clock=clock, not_published_interval_hours=4
    )
    extraction = ExtractionService(extractor, confidence_threshold=0.8)
    scheduler = Scheduler(
        acquisition=acquisition,
        extraction=extraction,
        distributor=distributor,
        retry_tracker=retry_tracker,
        subjects=["emma", "oliver"],
        clock=clock,
        interval_seconds=0.05,
        max_workers=2,
        recheck_published=False,
    )

    yield Pipeline(
        clock=clock,
        source=source,
        extractor=extractor,
        distributor=distributor,
        acquisition=acquisition,
        retry_tracker=retry_tracker,
        extraction=extraction,
        scheduler=scheduler,
        sinks=sinks,
    )

    scheduler.stop(timeout=5)
    acquisition.close()
