"""Per-thread velocity / temperature / trajectory tracking and insights."""

from __future__ import annotations

from emailos.threads.tracker import ThreadTracker

__all__ = ["ThreadTracker"]
