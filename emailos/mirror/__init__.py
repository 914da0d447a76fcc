"""Self-review of classifier and seed output."""

from __future__ import annotations

from emailos.mirror.review import Mirror

__all__ = ["Mirror"]
