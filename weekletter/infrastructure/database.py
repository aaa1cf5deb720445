"""SQLite access for weekletter

Documents, retry attempts, reminders and jobs share one database file
(get_db_path()). Repositories never open connections themselves; they borrow
one through get_db_connection() or db_transaction().

The pool hands out connections opened with check_same_thread=False, WAL
journaling and foreign keys on, because the API thread, the scheduler timer
and the per-subject workers all write. When every pooled connection is busy a
bounded number of overflow connections is opened and closed again on return.
"""

from __future__ import annotations

import atexit
import os
import random
import sqlite3
import threading
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import lru_cache, wraps
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, TypeVar

from weekletter.config import (
    DB_CONNECT_TIMEOUT,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
    DB_TEMP_CONN_MAX,
)
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter, log_event

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "weekletter.db"

logger = get_logger(__name__)


def _is_busy(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Re-run a write when SQLite answers "database is locked".

    Only lock/busy errors are retried, with exponential backoff plus jitter.
    Anything else propagates on the first attempt.

    Usage:
        @staticmethod
        @retry_on_db_lock()
        def mark_sent(reminder_id: int) -> bool:
            with db_transaction() as conn:
                ...
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    if not _is_busy(e):
                        raise
                    if attempt == max_retries:
                        counter("database.lock_retry_exhausted")
                        logger.error("%s still locked after %d retries: %s", func.__name__, attempt, e)
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    delay += random.uniform(0, delay * DB_RETRY_JITTER)
                    attempt += 1
                    counter("database.lock_retry")
                    logger.warning(
                        "%s hit a locked database, retry %d/%d in %.2fs",
                        func.__name__,
                        attempt,
                        max_retries,
                        delay,
                    )
                    time.sleep(delay)

        return wrapper  # type: ignore[return-value]

    return decorator


def open_connection(db_path: Path) -> sqlite3.Connection:
    """
    Open and configure one connection.

    Raises:
        RuntimeError: quick_check reports a damaged database file
    """
    conn = sqlite3.connect(str(db_path), timeout=DB_CONNECT_TIMEOUT, check_same_thread=False)
    try:
        status = conn.execute("PRAGMA quick_check(1)").fetchone()[0]
    except sqlite3.DatabaseError as e:
        status = str(e)
    if status != "ok":
        conn.close()
        counter("database.corruption_detected")
        logger.critical("Integrity check failed for %s: %s", db_path, status)
        raise RuntimeError(f"Database integrity check failed: {status}")

    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


class ConnectionPool:
    """Fixed set of shared connections plus bounded overflow."""

    def __init__(
        self,
        db_path: Path,
        pool_size: int = DB_POOL_SIZE,
        overflow_max: int = DB_TEMP_CONN_MAX,
    ):
        self.db_path = db_path
        self.pool_size = pool_size
        self.overflow_max = overflow_max
        self.closed = False
        self._idle: Queue[sqlite3.Connection] = Queue(maxsize=pool_size)
        self._overflow_ids: set[int] = set()
        self._lock = threading.Lock()

        for _ in range(pool_size):
            try:
                self._idle.put_nowait(open_connection(db_path))
            except (sqlite3.Error, RuntimeError) as e:
                logger.warning("Could not pre-open pooled connection: %s", e)

        atexit.register(self.close_all)

    @property
    def available(self) -> int:
        return self._idle.qsize()

    @property
    def overflow_in_use(self) -> int:
        with self._lock:
            return len(self._overflow_ids)

    def acquire(self) -> sqlite3.Connection:
        """
        Borrow a connection, waiting up to DB_POOL_TIMEOUT for an idle one.

        Raises:
            RuntimeError: Pool closed, or pool and overflow both exhausted
        """
        if self.closed:
            raise RuntimeError("Connection pool is closed")

        try:
            return self._idle.get(timeout=DB_POOL_TIMEOUT)
        except Empty:
            pass

        with self._lock:
            in_overflow = len(self._overflow_ids)
        if in_overflow >= self.overflow_max:
            logger.critical(
                "No database connection available: %d pooled and %d overflow all in use",
                self.pool_size,
                in_overflow,
            )
            raise RuntimeError(
                f"Database pool exhausted (pool_size={self.pool_size}, "
                f"overflow_max={self.overflow_max})"
            )

        conn = open_connection(self.db_path)
        with self._lock:
            self._overflow_ids.add(id(conn))
            in_overflow = len(self._overflow_ids)
        log_event("database.pool_overflow", pool_size=self.pool_size, overflow=in_overflow)
        return conn

    def release(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            overflow = id(conn) in self._overflow_ids
            self._overflow_ids.discard(id(conn))

        if overflow or self.closed:
            conn.close()
            return
        try:
            self._idle.put_nowait(conn)
        except Full:
            conn.close()

    def close_all(self) -> None:
        self.closed = True
        while True:
            try:
                self._idle.get_nowait().close()
            except Empty:
                break


def get_db_path() -> Path:
    """WEEKLETTER_DB_PATH when set, otherwise weekletter/data/weekletter.db."""
    configured = os.getenv("WEEKLETTER_DB_PATH")
    return Path(configured) if configured else DEFAULT_DB_PATH


@lru_cache(maxsize=1)
def get_pool() -> ConnectionPool:
    return ConnectionPool(get_db_path())


def reset_pool() -> None:
    """Close the pool; the next borrow re-reads WEEKLETTER_DB_PATH (tests)."""
    if get_pool.cache_info().currsize:
        get_pool().close_all()
    get_pool.cache_clear()


@contextmanager
def get_db_connection() -> Generator[sqlite3.Connection, None, None]:
    """
    Borrow a pooled connection for reads.

    Raises:
        FileNotFoundError: init_database() has not been run for this path
    """
    db_path = get_db_path()
    if not db_path.exists():
        raise FileNotFoundError(f"Database not found: {db_path} (run init_database() first)")

    pool = get_pool()
    conn = pool.acquire()
    try:
        yield conn
    finally:
        pool.release(conn)


@contextmanager
def db_transaction() -> Generator[sqlite3.Connection, None, None]:
    """Borrow a connection and commit on exit, or roll back if the block raised."""
    with get_db_connection() as conn:
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        conn.commit()


def init_database() -> None:
    """Create the file, tables and default job rows. Safe to call repeatedly."""
    from weekletter.infrastructure.database_schema import create_schema

    create_schema(get_db_path())


def validate_schema() -> bool:
    """
    Raises:
        ValueError: A required table or column is missing
    """
    from weekletter.infrastructure.database_schema import check_schema

    with get_db_connection() as conn:
        return check_schema(conn)


def get_pool_stats() -> dict[str, Any]:
    pool = get_pool()
    in_use = pool.pool_size - pool.available
    return {
        "pool_size": pool.pool_size,
        "available": pool.available,
        "in_use": in_use,
        "overflow_in_use": pool.overflow_in_use,
        "usage_percent": round(in_use / pool.pool_size * 100, 1) if pool.pool_size else 0.0,
        "closed": pool.closed,
    }


def checkpoint_wal() -> dict[str, Any]:
    """
    Run PRAGMA wal_checkpoint(TRUNCATE).

    The service never restarts on its own, so the -wal file only shrinks
    when something checkpoints it.
    """
    db_path = get_db_path()
    wal_path = db_path.with_name(f"{db_path.name}-wal")

    def wal_size() -> int:
        return wal_path.stat().st_size if wal_path.exists() else 0

    before = wal_size()
    with get_db_connection() as conn:
        busy, log_pages, checkpointed = conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
    after = wal_size()

    logger.info("WAL checkpoint: %d pages, %d bytes freed", checkpointed, before - after)
    return {
        "wal_size_before_bytes": before,
        "wal_size_after_bytes": after,
        "bytes_freed": before - after,
        "checkpointed_pages": checkpointed,
        "log_pages": log_pages,
        "busy": bool(busy),
    }
