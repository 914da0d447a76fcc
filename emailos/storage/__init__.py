"""Storage - domain models and write-through record stores"""

from __future__ import annotations

from emailos.storage.sink import MemoryStore, RecordStore, SqliteStore, create_store, write_through

__all__ = ["MemoryStore", "RecordStore", "SqliteStore", "create_store", "write_through"]
