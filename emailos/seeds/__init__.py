"""Seed lifecycle: plant, escalate, harvest, expire."""

from __future__ import annotations

from emailos.seeds.lifecycle import SeedManager, SeedTransitionError, parse_shelf_life

__all__ = ["SeedManager", "SeedTransitionError", "parse_shelf_life"]
