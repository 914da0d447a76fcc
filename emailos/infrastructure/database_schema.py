"""
Schema for the durable record store.

One table per persisted entity. Signals, messages and feedback are stored as
JSON columns inside the record that produced them.
"""

from __future__ import annotations

import sqlite3

from emailos.observability.logging import get_logger

logger = get_logger(__name__)


def init_database(conn: sqlite3.Connection) -> None:
    """
    Create tables and indexes (idempotent).

    Side Effects:
        - Creates tables and indexes if they don't exist
    """
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS classifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email_id TEXT NOT NULL,
            thread_id TEXT,
            zone TEXT NOT NULL,
            score INTEGER NOT NULL,
            confidence REAL NOT NULL,
            method TEXT NOT NULL,
            forced INTEGER DEFAULT 0,
            signals TEXT,
            reasoning TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS seeds (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            status TEXT NOT NULL,
            email_id TEXT,
            thread_id TEXT,
            source_from TEXT,
            source_subject TEXT,
            zone TEXT NOT NULL,
            score INTEGER,
            shelf_life TEXT NOT NULL,
            planted_at TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            escalated INTEGER DEFAULT 0,
            harvested_at TEXT,
            outcome TEXT
        );

        CREATE TABLE IF NOT EXISTS threads (
            thread_id TEXT PRIMARY KEY,
            subject TEXT,
            participants TEXT,
            messages TEXT,
            message_count INTEGER DEFAULT 0,
            velocity REAL DEFAULT 0,
            temperature INTEGER DEFAULT 0,
            trajectory TEXT DEFAULT 'new',
            first_message_at TEXT,
            last_message_at TEXT
        );

        CREATE TABLE IF NOT EXISTS insights (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            thread_id TEXT NOT NULL,
            type TEXT NOT NULL,
            message TEXT,
            severity TEXT NOT NULL,
            data TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS reviews (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            agent TEXT NOT NULL,
            cycle_number INTEGER NOT NULL,
            sample_size INTEGER DEFAULT 0,
            scores TEXT,
            feedback TEXT,
            evolution TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_classifications_zone ON classifications(zone);
        CREATE INDEX IF NOT EXISTS idx_classifications_thread ON classifications(thread_id);
        CREATE INDEX IF NOT EXISTS idx_seeds_status ON seeds(status);
        CREATE INDEX IF NOT EXISTS idx_seeds_expires ON seeds(expires_at);
        CREATE INDEX IF NOT EXISTS idx_seeds_zone ON seeds(zone);
        CREATE INDEX IF NOT EXISTS idx_threads_temperature ON threads(temperature);
        CREATE INDEX IF NOT EXISTS idx_insights_thread ON insights(thread_id);
    """)
    conn.commit()
    logger.debug("Record store schema ready")
