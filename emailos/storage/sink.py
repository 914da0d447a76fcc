"""
Record stores the core writes through to.

The pipeline depends only on ``RecordStore``. ``MemoryStore`` keeps records in
lists for tests and one-off runs; ``SqliteStore`` persists them. Reads are used
only at startup (seeds, insights) and by the CLI reporting commands, never in
the middle of a cycle.
"""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from emailos.infrastructure.database import connect, db_transaction, retry_on_db_lock
from emailos.infrastructure.database_schema import init_database
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter, log_event
from emailos.storage.models import Classification, Insight, Review, Seed, SeedOutcome, Thread

logger = get_logger(__name__)

T = TypeVar("T")


class RecordStore(ABC):
    """Write-through sink for classifications, seeds, threads, insights and reviews."""

    @abstractmethod
    def save_classification(self, classification: Classification) -> None: ...

    @abstractmethod
    def save_seed(self, seed: Seed) -> None:
        """Insert or replace by seed id."""

    @abstractmethod
    def save_thread(self, thread: Thread) -> None:
        """Insert or replace by thread id."""

    @abstractmethod
    def save_insight(self, insight: Insight) -> None: ...

    @abstractmethod
    def save_review(self, review: Review) -> None: ...

    @abstractmethod
    def load_seeds(self) -> list[Seed]: ...

    @abstractmethod
    def load_insights(self, limit: int = 100) -> list[Insight]:
        """Most recent first."""

    @abstractmethod
    def zone_counts(self) -> dict[str, int]: ...

    def close(self) -> None:
        return None


class MemoryStore(RecordStore):
    """Ephemeral store; everything is lost when the process exits."""

    def __init__(self) -> None:
        self.classifications: list[Classification] = []
        self.seeds: dict[str, Seed] = {}
        self.threads: dict[str, Thread] = {}
        self.insights: list[Insight] = []
        self.reviews: list[Review] = []

    def save_classification(self, classification: Classification) -> None:
        self.classifications.append(classification)

    def save_seed(self, seed: Seed) -> None:
        self.seeds[seed.id] = seed.model_copy(deep=True)

    def save_thread(self, thread: Thread) -> None:
        self.threads[thread.thread_id] = thread.model_copy(deep=True)

    def save_insight(self, insight: Insight) -> None:
        self.insights.append(insight)

    def save_review(self, review: Review) -> None:
        self.reviews.append(review)

    def load_seeds(self) -> list[Seed]:
        return [seed.model_copy(deep=True) for seed in self.seeds.values()]

    def load_insights(self, limit: int = 100) -> list[Insight]:
        return sorted(self.insights, key=lambda i: i.created_at, reverse=True)[:limit]

    def zone_counts(self) -> dict[str, int]:
        return dict(Counter(c.zone.value for c in self.classifications))


class SqliteStore(RecordStore):
    """Durable store backed by one SQLite database."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path
        self.conn = connect(db_path)
        init_database(self.conn)
        logger.info("Opened record store at %s", db_path)

    @retry_on_db_lock()
    def _write(self, query: str, params: tuple[Any, ...]) -> None:
        with db_transaction(self.conn) as conn:
            conn.execute(query, params)

    def save_classification(self, classification: Classification) -> None:
        data = classification.model_dump(mode="json")
        self._write(
            """
            INSERT INTO classifications
                (email_id, thread_id, zone, score, confidence, method, forced,
                 signals, reasoning, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["email_id"],
                data["thread_id"],
                data["zone"],
                data["score"],
                data["confidence"],
                data["method"],
                int(data["forced"]),
                json.dumps(data["signals"], ensure_ascii=False),
                data["reasoning"],
                data["timestamp"],
            ),
        )

    def save_seed(self, seed: Seed) -> None:
        data = seed.model_dump(mode="json")
        self._write(
            """
            INSERT OR REPLACE INTO seeds
                (id, type, status, email_id, thread_id, source_from, source_subject,
                 zone, score, shelf_life, planted_at, expires_at, escalated,
                 harvested_at, outcome)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["id"],
                data["type"],
                data["status"],
                data["email_id"],
                data["thread_id"],
                data["source_from"],
                data["source_subject"],
                data["zone"],
                data["score"],
                data["shelf_life"],
                data["planted_at"],
                data["expires_at"],
                int(data["escalated"]),
                data["harvested_at"],
                json.dumps(data["outcome"], ensure_ascii=False) if data["outcome"] else None,
            ),
        )

    def save_thread(self, thread: Thread) -> None:
        data = thread.model_dump(mode="json")
        self._write(
            """
            INSERT OR REPLACE INTO threads
                (thread_id, subject, participants, messages, message_count, velocity,
                 temperature, trajectory, first_message_at, last_message_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["thread_id"],
                data["subject"],
                json.dumps(data["participants"], ensure_ascii=False),
                json.dumps(data["messages"], ensure_ascii=False),
                thread.message_count,
                data["velocity"],
                data["temperature"],
                data["trajectory"],
                data["first_message_at"],
                data["last_message_at"],
            ),
        )

    def save_insight(self, insight: Insight) -> None:
        data = insight.model_dump(mode="json")
        self._write(
            """
            INSERT INTO insights (thread_id, type, message, severity, data, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                data["thread_id"],
                data["type"],
                data["message"],
                data["severity"],
                json.dumps(data["data"], ensure_ascii=False),
                data["created_at"],
            ),
        )

    def save_review(self, review: Review) -> None:
        data = review.model_dump(mode="json")
        self._write(
            """
            INSERT INTO reviews
                (agent, cycle_number, sample_size, scores, feedback, evolution, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["agent"],
                data["cycle_number"],
                data["sample_size"],
                json.dumps(data["scores"]),
                json.dumps(data["feedback"], ensure_ascii=False),
                json.dumps(data["evolution"], ensure_ascii=False) if data["evolution"] else None,
                data["timestamp"],
            ),
        )

    def load_seeds(self) -> list[Seed]:
        rows = self.conn.execute("SELECT * FROM seeds ORDER BY planted_at").fetchall()
        return [_row_to_seed(row) for row in rows]

    def load_insights(self, limit: int = 100) -> list[Insight]:
        rows = self.conn.execute(
            "SELECT * FROM insights ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [
            Insight(
                thread_id=row["thread_id"],
                type=row["type"],
                message=row["message"] or "",
                severity=row["severity"],
                data=json.loads(row["data"]) if row["data"] else {},
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def zone_counts(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT zone, COUNT(*) AS n FROM classifications GROUP BY zone"
        ).fetchall()
        return {row["zone"]: row["n"] for row in rows}

    def close(self) -> None:
        self.conn.close()


def _row_to_seed(row: sqlite3.Row) -> Seed:
    outcome = json.loads(row["outcome"]) if row["outcome"] else None
    return Seed(
        id=row["id"],
        type=row["type"],
        status=row["status"],
        email_id=row["email_id"] or "",
        thread_id=row["thread_id"] or "",
        source_from=row["source_from"] or "",
        source_subject=row["source_subject"] or "",
        zone=row["zone"],
        score=row["score"] or 0,
        shelf_life=row["shelf_life"],
        planted_at=row["planted_at"],
        expires_at=row["expires_at"],
        escalated=bool(row["escalated"]),
        harvested_at=row["harvested_at"],
        outcome=SeedOutcome(**outcome) if outcome else None,
    )


def write_through(save: Callable[[T], None], record: T, entity: str) -> bool:
    """
    Persist one record; a failing sink never interrupts the pipeline.

    Returns:
        True when the write succeeded

    Side Effects:
        - Calls the store
        - On failure: logs a warning, increments ``storage.write_error``
    """
    try:
        save(record)
        return True
    except Exception as e:
        # The in-memory record stays authoritative for the rest of the cycle.
        logger.warning("Write-through of %s failed: %s", entity, e)
        counter("storage.write_error")
        log_event("storage.write_error", entity=entity, error=str(e)[:200])
        return False


def create_store(backend: str, db_path: Path | str) -> RecordStore:
    """Build the configured store (``sqlite`` or ``memory``)."""
    if backend == "memory":
        return MemoryStore()
    if backend == "sqlite":
        return SqliteStore(db_path)
    raise ValueError(f"Unknown storage backend: {backend!r}")
