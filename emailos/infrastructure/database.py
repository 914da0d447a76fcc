"""SQLite connection helpers for the durable record store.

The core is single-threaded, so one connection per store is enough; this
module only centralizes the connection settings, the transaction boundary and
the retry policy for SQLITE_BUSY.
"""

from __future__ import annotations

import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

from emailos.config import (
    DB_CONNECT_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
)
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> Callable[[F], F]:
    """
    Retry a database operation on "database is locked" / "busy" errors.

    Exponential backoff with jitter. Any other OperationalError is re-raised
    immediately.

    Side Effects:
        - Sleeps between retries
        - Logs a warning per retry and an error when retries are exhausted
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s", max_retries, e
                        )
                        counter("database.lock_exhausted")
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    sleep_time = delay + random.uniform(0, delay * DB_RETRY_JITTER)
                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )
                    sleep_fn(sleep_time)
            raise AssertionError("unreachable")

        return wrapper  # type: ignore[return-value]

    return decorator


def connect(db_path: Path | str) -> sqlite3.Connection:
    """
    Open a SQLite connection with the project's settings.

    ``":memory:"`` is accepted for tests.

    Side Effects:
        - Creates the parent directory of a file-backed database
        - Executes PRAGMA statements (journal_mode, synchronous, foreign_keys)
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=DB_CONNECT_TIMEOUT)
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def db_transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """
    Commit on success, roll back and re-raise on any error.

    Usage:
        with db_transaction(conn) as tx:
            tx.execute("INSERT INTO ...")
    """
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
