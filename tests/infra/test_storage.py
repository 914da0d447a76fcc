"""Tests for the record stores and the SQLite helpers behind them."""

from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from emailos.infrastructure.database import retry_on_db_lock
from emailos.observability.telemetry import get_counters
from emailos.storage.models import (
    ActionRequiredSignal,
    Classification,
    Insight,
    InsightType,
    Method,
    Review,
    Seed,
    SeedOutcome,
    SeedStatus,
    SeedType,
    Severity,
    Thread,
    Zone,
)
from emailos.storage.sink import MemoryStore, SqliteStore, create_store, write_through
from tests.fixtures.fakes import START


@pytest.fixture(params=["memory", "sqlite"])
def record_store(request):
    store = MemoryStore() if request.param == "memory" else SqliteStore(":memory:")
    yield store
    store.close()


def seed(seed_id="s1", **overrides):
    fields = dict(
        id=seed_id,
        type=SeedType.DECISION_NEEDED,
        email_id="m1",
        thread_id="t1",
        source_from="boss@corp.test",
        source_subject="Approve budget",
        zone=Zone.YELLOW,
        score=60,
        shelf_life="2h",
        planted_at=START,
        expires_at=START + timedelta(hours=2),
    )
    fields.update(overrides)
    return Seed(**fields)


def insight(minutes, thread_id="t1"):
    return Insight(
        thread_id=thread_id,
        type=InsightType.HOT_THREAD,
        message="hot",
        severity=Severity.CRITICAL,
        data={"temperature": 90},
        created_at=START + timedelta(minutes=minutes),
    )


def classification(zone, score):
    return Classification(
        email_id="m1",
        zone=zone,
        score=score,
        confidence=0.8,
        signals=(ActionRequiredSignal(keyword="簽核"),),
        method=Method.KEYWORD,
        timestamp=START,
    )


def test_seed_round_trip_and_upsert(record_store):
    original = seed()
    record_store.save_seed(original)

    harvested = original.model_copy(deep=True)
    harvested.harvested_at = START + timedelta(minutes=30)
    harvested.outcome = SeedOutcome(action="replied", result="approved")
    harvested.status = SeedStatus.HARVESTED
    record_store.save_seed(harvested)
    record_store.save_seed(seed("s2", type=SeedType.OPPORTUNITY, shelf_life="3d",
                                expires_at=START + timedelta(days=3)))

    loaded = {s.id: s for s in record_store.load_seeds()}

    assert sorted(loaded) == ["s1", "s2"]
    assert loaded["s1"].model_dump() == harvested.model_dump()
    assert loaded["s2"].type == SeedType.OPPORTUNITY


def test_insights_load_newest_first(record_store):
    for minutes in (0, 10, 5):
        record_store.save_insight(insight(minutes))

    loaded = record_store.load_insights()

    assert [i.created_at for i in loaded] == [
        START + timedelta(minutes=10),
        START + timedelta(minutes=5),
        START,
    ]
    assert loaded[0].data == {"temperature": 90}
    assert len(record_store.load_insights(limit=1)) == 1


def test_zone_counts(record_store):
    record_store.save_classification(classification(Zone.RED, 90))
    record_store.save_classification(classification(Zone.RED, 80))
    record_store.save_classification(classification(Zone.GREEN, 20))

    assert record_store.zone_counts() == {"red": 2, "green": 1}


def test_threads_and_reviews_are_accepted(record_store):
    record_store.save_thread(Thread(thread_id="t1", subject="Plan", participants=["a@x.test"]))
    record_store.save_thread(Thread(thread_id="t1", subject="Plan", temperature=40))
    record_store.save_review(Review(agent="classify", cycle_number=1, timestamp=START))


def test_sqlite_store_persists_to_file(tmp_path):
    path = tmp_path / "nested" / "emailos.db"
    store = SqliteStore(path)
    store.save_seed(seed())
    store.close()

    reopened = SqliteStore(path)
    try:
        assert [s.id for s in reopened.load_seeds()] == ["s1"]
    finally:
        reopened.close()


def test_memory_store_keeps_snapshots():
    store = MemoryStore()
    live = seed()
    store.save_seed(live)

    live.escalated = True

    assert store.load_seeds()[0].escalated is False


def test_create_store(tmp_path):
    assert isinstance(create_store("memory", tmp_path / "unused.db"), MemoryStore)
    sqlite_store = create_store("sqlite", tmp_path / "emailos.db")
    assert isinstance(sqlite_store, SqliteStore)
    sqlite_store.close()

    with pytest.raises(ValueError):
        create_store("postgres", tmp_path / "x")


def test_write_through_reports_failure():
    def broken(record):
        raise sqlite3.OperationalError("disk I/O error")

    assert write_through(broken, seed(), "seed") is False
    assert write_through(lambda record: None, seed(), "seed") is True
    assert get_counters("storage.") == {"storage.write_error": 1}


class TestRetryOnDbLock:
    def test_retries_locked_database_then_succeeds(self):
        sleeps = []
        attempts = []

        @retry_on_db_lock(max_retries=3, base_delay=0.01, sleep_fn=sleeps.append)
        def write():
            attempts.append(1)
            if len(attempts) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        assert write() == "ok"
        assert len(sleeps) == 2
        assert sleeps[1] > sleeps[0]

    def test_other_operational_errors_are_not_retried(self):
        sleeps = []

        @retry_on_db_lock(sleep_fn=sleeps.append)
        def write():
            raise sqlite3.OperationalError("no such table: seeds")

        with pytest.raises(sqlite3.OperationalError, match="no such table"):
            write()
        assert sleeps == []

    def test_gives_up_after_max_retries(self):
        sleeps = []

        @retry_on_db_lock(max_retries=2, sleep_fn=sleeps.append)
        def write():
            raise sqlite3.OperationalError("database is busy")

        with pytest.raises(sqlite3.OperationalError):
            write()
        assert len(sleeps) == 2
        assert get_counters("database.")["database.lock_exhausted"] == 1
