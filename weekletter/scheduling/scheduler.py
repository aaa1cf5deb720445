"""
Scheduler - the polling loop that drives the whole pipeline.

Every tick:
1. Dispatch due reminders (no cron gate).
2. Inside the first seconds of each minute, evaluate cron jobs and due retries.

WeeklyLetterCheck resolves each configured subject's current week letter,
announces new content, derives reminders and keeps retry bookkeeping. Subjects
are checked in parallel on a bounded worker pool. The tick only submits them,
so a slow fetch or model call never holds up reminder dispatch.

Ticks are single-flight: a tick that fires while another is running returns
immediately. stop() halts the timer and waits for in-flight subjects.
"""

from __future__ import annotations

import concurrent.futures
import functools
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from enum import Enum

from weekletter.config import (
    INITIAL_OCCURRENCE_OFFSET_MINUTES,
    LETTER_JOB_NAME,
    RECHECK_PUBLISHED,
    REMINDER_JOB_NAME,
    SCHEDULER_INTERVAL_SECONDS,
    SCHEDULER_MAX_WORKERS,
    SCHEDULER_WINDOW_SECONDS,
    TASK_EXECUTION_WINDOW_MINUTES,
)
from weekletter.distribution.messages import SignalKind
from weekletter.distribution.publisher import Distributor
from weekletter.errors import ContentFetchError
from weekletter.letters.acquisition import AcquisitionService
from weekletter.letters.models import RetryRecord
from weekletter.letters.repository import DocumentRepository
from weekletter.letters.retries import RetryTracker
from weekletter.letters.types import Document, DocumentOrigin, Period
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter, log_event
from weekletter.reminders.extraction import ExtractionResult, ExtractionService
from weekletter.reminders.models import Reminder
from weekletter.reminders.repository import ReminderRepository
from weekletter.scheduling.jobs import JobRepository, ScheduledJob, next_occurrence, resolve_next_run

logger = get_logger(__name__)


class CheckOutcome(str, Enum):
    """What happened to one subject during a week letter check."""

    PUBLISHED = "published"
    UNCHANGED = "unchanged"
    ALREADY_PUBLISHED = "already_published"
    EXTRACTION_RETRIED = "extraction_retried"
    NOT_PUBLISHED = "not_published"
    FAILED = "failed"
    WAITING = "waiting"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    ERROR = "error"


Outcomes = dict[tuple[str, Period], CheckOutcome]


class Scheduler:
    """Single polling loop for reminders, cron jobs and retries."""

    def __init__(
        self,
        *,
        acquisition: AcquisitionService,
        extraction: ExtractionService,
        distributor: Distributor,
        retry_tracker: RetryTracker,
        subjects: Iterable[str],
        documents: type[DocumentRepository] = DocumentRepository,
        reminders: type[ReminderRepository] = ReminderRepository,
        jobs: type[JobRepository] = JobRepository,
        clock: Callable[[], datetime] = datetime.now,
        interval_seconds: float = SCHEDULER_INTERVAL_SECONDS,
        scheduling_window_seconds: int = SCHEDULER_WINDOW_SECONDS,
        execution_window_minutes: int = TASK_EXECUTION_WINDOW_MINUTES,
        initial_offset_minutes: int = INITIAL_OCCURRENCE_OFFSET_MINUTES,
        max_workers: int = SCHEDULER_MAX_WORKERS,
        recheck_published: bool = RECHECK_PUBLISHED,
    ):
        self.acquisition = acquisition
        self.extraction = extraction
        self.distributor = distributor
        self.retry_tracker = retry_tracker
        self.subjects = list(subjects)
        self.documents = documents
        self.reminders = reminders
        self.jobs = jobs
        self._clock = clock
        self.interval_seconds = interval_seconds
        self.scheduling_window_seconds = scheduling_window_seconds
        self.execution_window = timedelta(minutes=execution_window_minutes)
        self.initial_offset_minutes = initial_offset_minutes
        self.max_workers = max_workers
        self.recheck_published = recheck_published

        self._tick_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._loop_thread: threading.Thread | None = None
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None
        self._running = False
        self._in_flight: dict[tuple[str, Period], concurrent.futures.Future] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """
        Recover missed reminders, then start the timer thread.

        Side Effects:
            - Publishes missed_reminder signals and marks them sent
            - Starts a daemon thread that fires a tick every interval_seconds
        """
        with self._state_lock:
            if self._running:
                logger.warning("Scheduler is already running")
                return
            self._running = True
            self._stop_event.clear()

        logger.info("Starting scheduler (interval %ss)", self.interval_seconds)
        try:
            self.recover_missed_reminders()
        except Exception as e:
            logger.error("Error checking for missed reminders on startup: %s", e)

        self._loop_thread = threading.Thread(
            target=self._run_loop, name="scheduler-timer", daemon=True
        )
        self._loop_thread.start()

    def stop(self, timeout: float | None = 30.0) -> None:
        """
        Halt the timer and wait for the in-flight tick.

        Subjects already being checked finish; queued ones are skipped.
        """
        with self._state_lock:
            was_running = self._running
            self._running = False
            self._stop_event.set()

        if was_running:
            logger.info("Stopping scheduler")
            if self._loop_thread is not None:
                self._loop_thread.join(timeout)
                self._loop_thread = None

            # Holding the tick lock means no tick is mid-flight
            if self._tick_lock.acquire(timeout=-1 if timeout is None else timeout):
                self._tick_lock.release()
            else:
                logger.warning("In-flight tick did not finish within %ss", timeout)

        with self._state_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        if was_running:
            logger.info("Scheduler stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            tick_thread = threading.Thread(
                target=self._safe_tick, name="scheduler-tick", daemon=True
            )
            tick_thread.start()
            self._stop_event.wait(self.interval_seconds)

    def _safe_tick(self) -> None:
        try:
            self.tick()
        except Exception as e:
            logger.error("Unhandled error in scheduler tick: %s", e)

    def _get_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._state_lock:
            if self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="subject"
                )
            return self._executor

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> bool:
        """
        Run one scheduler pass.

        Returns:
            False if another tick was still running (nothing was done)
        """
        if not self._tick_lock.acquire(blocking=False):
            counter("scheduler.tick_skipped")
            logger.debug("Previous tick still running, skipping")
            return False

        try:
            now = now or self._clock()
            try:
                self.dispatch_due_reminders(now)
            except Exception as e:
                logger.error("Error executing pending reminders: %s", e)

            if now.second < self.scheduling_window_seconds:
                # Subject checks go to the worker pool; the tick does not wait for them
                self.evaluate_jobs(now, wait=False)
                self.process_due_retries(now, wait=False)
            return True
        finally:
            self._tick_lock.release()

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def dispatch_due_reminders(self, now: datetime | None = None, *, missed: bool = False) -> int:
        """
        Deliver every unsent reminder due at or before `now`, oldest first.

        Each reminder is published and then marked sent. A failure on one
        reminder is logged and the rest still go out.

        Returns:
            Number of reminders marked sent
        """
        now = now or self._clock()
        pending = self.reminders.get_pending(now)
        if not pending:
            return 0

        if missed:
            logger.warning("Found %d missed reminders on startup", len(pending))
        else:
            logger.info("Found %d pending reminders to send", len(pending))

        sent = 0
        for reminder in pending:
            try:
                self._publish_reminder(reminder, now, missed)
                if self.reminders.mark_sent(reminder.id):
                    sent += 1
            except Exception as e:
                counter("scheduler.reminder_error")
                logger.error("Error sending reminder %s: %s", reminder.id, e)
        return sent

    def recover_missed_reminders(self, now: datetime | None = None) -> int:
        """Startup pass: deliver reminders that came due while stopped, with their delay."""
        return self.dispatch_due_reminders(now, missed=True)

    def _publish_reminder(self, reminder: Reminder, now: datetime, missed: bool) -> None:
        if missed:
            kind = SignalKind.MISSED_REMINDER
            delay_minutes = max(0, int((now - reminder.due_at).total_seconds() // 60))
            payload = {"reminder": reminder, "delay_minutes": delay_minutes}
        else:
            kind = SignalKind.REMINDER_DUE
            payload = {"reminder": reminder}

        # Reminders without a subject go to every configured subject
        targets = [reminder.subject_id] if reminder.subject_id else self.subjects
        for subject_id in targets:
            self.distributor.publish(subject_id, kind, payload)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def evaluate_jobs(self, now: datetime, *, wait: bool = True) -> list[str]:
        """
        Run every enabled job whose next_run window contains `now`.

        Returns:
            Names of the jobs that ran
        """
        ran: list[str] = []
        for job in self.jobs.list_jobs():
            try:
                if self._claim_job(job, now):
                    logger.info("Executing scheduled job: %s", job.name)
                    self.run_job(job.name, now, wait=wait)
                    ran.append(job.name)
            except Exception as e:
                logger.error("Error processing scheduled job %s: %s", job.name, e)
        return ran

    def _claim_job(self, job: ScheduledJob, now: datetime) -> bool:
        if not job.enabled:
            return False

        try:
            next_run = resolve_next_run(job, now, self.initial_offset_minutes)
        except ValueError as e:
            logger.error("Invalid cron expression for job %s: %s (%s)", job.name, job.cron_expression, e)
            return False

        if now < next_run:
            return False

        if now > next_run + self.execution_window:
            # Window passed while we were down; wait for the next occurrence
            rolled = next_occurrence(job.cron_expression, now)
            logger.info("Job %s missed its window at %s, next run %s", job.name, next_run, rolled)
            self.jobs.record_run(job.name, job.last_run, rolled)
            return False

        self.jobs.record_run(job.name, now, next_occurrence(job.cron_expression, now))
        return True

    def run_job(self, name: str, now: datetime, *, wait: bool = True) -> None:
        if name == REMINDER_JOB_NAME:
            self.dispatch_due_reminders(now)
        elif name == LETTER_JOB_NAME:
            self.check_documents(now, wait=wait)
        else:
            logger.warning("Unknown scheduled job: %s", name)

    # ------------------------------------------------------------------
    # Week letters
    # ------------------------------------------------------------------

    @staticmethod
    def target_period(now: datetime) -> Period:
        """Current ISO week; on Sundays the coming week, whose letter is usually out."""
        period = Period.for_date(now.date())
        if now.weekday() == 6:
            return period.next()
        return period

    def check_documents(self, now: datetime | None = None, *, wait: bool = True) -> Outcomes:
        """Check every configured subject's week letter in parallel."""
        now = now or self._clock()
        if not self.subjects:
            logger.warning("No subjects configured for week letter check")
            return {}

        period = self.target_period(now)
        work = [(subject_id, period) for subject_id in self.subjects]
        return self._run_checks(work, now, wait=wait)

    def process_due_retries(self, now: datetime, *, wait: bool = True) -> Outcomes:
        """Re-check periods whose retry backoff has elapsed."""
        due = [
            (record.subject_id, record.period)
            for record in self.retry_tracker.pending()
            if record.is_due(now) and record.subject_id in self.subjects
        ]
        if not due:
            return {}
        logger.info("Retrying %d week letter fetches", len(due))
        return self._run_checks(due, now, wait=wait)

    def wait_for_checks(self, timeout: float | None = None) -> bool:
        """
        Block until every submitted subject check has finished.

        Returns:
            False if some were still running when the timeout expired
        """
        with self._state_lock:
            running = list(self._in_flight.values())
        _, not_done = concurrent.futures.wait(running, timeout=timeout)
        return not not_done

    def _run_checks(
        self, work: list[tuple[str, Period]], now: datetime, *, wait: bool = True
    ) -> Outcomes:
        """
        Submit one check_subject per (subject, period) to the worker pool.

        A (subject, period) whose previous check is still running is skipped.
        With wait=False the outcomes are only logged and {} is returned.
        """
        executor = self._get_executor()
        futures: dict[concurrent.futures.Future, tuple[str, Period]] = {}
        for key in work:
            with self._state_lock:
                previous = self._in_flight.get(key)
                if previous is not None and not previous.done():
                    logger.info("Check for %s week %s still running, skipping", key[0], key[1])
                    continue
                future = executor.submit(self.check_subject, key[0], key[1], now)
                self._in_flight[key] = future
            future.add_done_callback(functools.partial(self._check_finished, key))
            futures[future] = key

        if not wait:
            return {}

        outcomes: Outcomes = {}
        for future in concurrent.futures.as_completed(futures):
            outcomes[futures[future]] = (
                CheckOutcome.ERROR if future.exception() is not None else future.result()
            )
        return outcomes

    def _check_finished(self, key: tuple[str, Period], future: concurrent.futures.Future) -> None:
        subject_id, period = key
        with self._state_lock:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            counter("scheduler.subject_error")
            logger.error("Error checking week letter for %s week %s: %s", subject_id, period, error)
            return
        log_event(
            "scheduler.letter_check",
            subject_id=subject_id,
            period=str(period),
            outcome=future.result().value,
        )

    def check_subject(self, subject_id: str, period: Period, now: datetime) -> CheckOutcome:
        """
        Acquire, dedup, announce and extract one subject's week letter.

        Raises:
            sqlite3.Error: Storage failures abort this subject for this tick
        """
        if self._stop_event.is_set():
            return CheckOutcome.CANCELLED

        record = self.retry_tracker.get(subject_id, period)
        if record is not None:
            if record.is_exhausted:
                self._give_up(subject_id, period, record)
                return CheckOutcome.EXHAUSTED
            if not record.is_due(now):
                return CheckOutcome.WAITING

        stored = self.documents.get(subject_id, period)
        force_refresh = False
        if stored is not None and stored.is_published:
            if stored.needs_extraction(stored.content_hash):
                self._extract(subject_id, period, Document.from_stored(stored, DocumentOrigin.STORE))
                return CheckOutcome.EXTRACTION_RETRIED
            if not self.recheck_published:
                logger.info("Week letter for %s week %s already posted", subject_id, period)
                return CheckOutcome.ALREADY_PUBLISHED
            force_refresh = True

        try:
            document = self.acquisition.resolve(
                subject_id, period.monday(), True, force_refresh=force_refresh
            )
        except ContentFetchError as e:
            logger.warning("Week letter fetch failed for %s week %s: %s", subject_id, period, e)
            if self.retry_tracker.record_failure(subject_id, period):
                self._announce_retry(subject_id, period)
            return CheckOutcome.FAILED

        if document.is_empty:
            logger.info("No week letter available for %s week %s, will retry later", subject_id, period)
            if self.retry_tracker.record_not_published(subject_id, period):
                self._announce_retry(subject_id, period)
                return CheckOutcome.NOT_PUBLISHED
            record = self.retry_tracker.get(subject_id, period)
            if record is not None and record.is_exhausted:
                self._give_up(subject_id, period, record)
                return CheckOutcome.EXHAUSTED
            return CheckOutcome.NOT_PUBLISHED

        stored = self.documents.get(subject_id, period)
        if stored is not None and stored.published_hash == document.content_hash:
            logger.info("Week letter content unchanged for %s week %s", subject_id, period)
            self.retry_tracker.record_success(subject_id, period)
            return CheckOutcome.UNCHANGED

        delivered = self.distributor.publish(
            subject_id,
            SignalKind.DOCUMENT_READY,
            {"period": period, "content": document.content},
        )
        self.documents.mark_published(subject_id, period, document.content_hash, delivered)
        self.retry_tracker.record_success(subject_id, period)
        log_event("scheduler.document_ready", subject_id=subject_id, period=str(period))

        self._extract(subject_id, period, document)
        return CheckOutcome.PUBLISHED

    def _give_up(self, subject_id: str, period: Period, record: RetryRecord) -> None:
        if self.retry_tracker.mark_exhausted(subject_id, period):
            self.distributor.publish(
                subject_id,
                SignalKind.FETCH_EXHAUSTED,
                {"period": period, "attempts": record.attempt_count},
            )

    def _announce_retry(self, subject_id: str, period: Period) -> None:
        self.distributor.publish(
            subject_id,
            SignalKind.RETRY_SCHEDULED,
            {
                "period": period,
                "interval_hours": self.retry_tracker.interval_hours,
                "max_duration_hours": self.retry_tracker.max_duration_hours,
                "max_attempts": self.retry_tracker.max_attempts,
            },
        )

    def _extract(self, subject_id: str, period: Period, document: Document) -> ExtractionResult:
        result = self.extraction.extract_and_store(
            subject_id, period, document, document.content_hash
        )
        if not result.success:
            logger.error("Failed to extract reminders for %s: %s", subject_id, result.error)
        elif result.created:
            self.distributor.publish(
                subject_id,
                SignalKind.EXTRACTION_SUMMARY,
                {"period": period, "reminders": result.reminders},
            )
        elif result.none_found:
            self.distributor.publish(subject_id, SignalKind.EXTRACTION_EMPTY, {"period": period})
        return result
