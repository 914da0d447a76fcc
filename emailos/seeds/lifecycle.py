"""
Seed lifecycle manager.

A seed is a typed, time-boxed follow-up obligation planted from a
classification. Lifecycle:

    planted --(past half-life)--> planted + escalated (zone forced to red)
    planted --harvest()---------> harvested   (terminal)
    planted --(past expiry)-----> expired     (terminal)

Escalation is one-way and idempotent. Terminal seeds are never mutated again.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any

from emailos.bus import EventBus
from emailos.classification.keywords import OPPORTUNITY_KEYWORDS
from emailos.config import SEED_DEFAULT_SHELF_LIFE, SEED_SHELF_LIVES, SEED_SKIP_GREEN_CONFIDENCE
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter
from emailos.storage.models import (
    Classification,
    Email,
    Seed,
    SeedOutcome,
    SeedStats,
    SeedStatus,
    SeedType,
    UrgencyLevel,
    Zone,
)
from emailos.storage.sink import MemoryStore, RecordStore, write_through
from emailos.utils.clock import Clock, utcnow

logger = get_logger(__name__)

_SHELF_LIFE = re.compile(r"^(\d+)(m|h|d)$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days"}
_SEED_ID = re.compile(r"^s(\d+)$")


class SeedTransitionError(RuntimeError):
    """Raised when a lifecycle step is attempted on a terminal seed."""


def parse_shelf_life(value: str) -> timedelta:
    """
    Parse "30m", "2h" or "7d" into a timedelta.

    Raises:
        ValueError: Malformed or zero-length shelf life
    """
    match = _SHELF_LIFE.match(value.strip()) if isinstance(value, str) else None
    if not match or int(match.group(1)) == 0:
        raise ValueError(f"Invalid shelf life {value!r} (expected e.g. '2h', '7d', '30m')")
    return timedelta(**{_UNITS[match.group(2)]: int(match.group(1))})


class SeedManager:
    """Plants seeds from classifications and drives them through their lifecycle."""

    def __init__(
        self,
        bus: EventBus,
        store: RecordStore | None = None,
        shelf_lives: Mapping[str, str] = SEED_SHELF_LIVES,
        default_shelf_life: str = SEED_DEFAULT_SHELF_LIFE,
        clock: Clock = utcnow,
    ) -> None:
        self.bus = bus
        self.store = store or MemoryStore()
        self.shelf_lives = dict(shelf_lives)
        self.default_shelf_life = default_shelf_life
        self._clock = clock
        self._seeds: dict[str, Seed] = {}
        self._sequence = 0

        # Fail at startup, not on the first planted seed.
        for shelf_life in [*self.shelf_lives.values(), default_shelf_life]:
            parse_shelf_life(shelf_life)

    def load(self, seeds: Iterable[Seed]) -> int:
        """
        Restore seeds persisted by an earlier run. Ids continue after the highest one.

        Returns:
            Number of seeds loaded
        """
        loaded = 0
        for seed in seeds:
            self._seeds[seed.id] = seed
            match = _SEED_ID.match(seed.id)
            if match:
                self._sequence = max(self._sequence, int(match.group(1)))
            loaded += 1
        logger.info("Loaded %d seeds (next id s%d)", loaded, self._sequence + 1)
        return loaded

    def evaluate(self, email: Email, classification: Classification) -> Seed | None:
        """Plant a seed for this classification when it warrants one."""
        if classification.zone == Zone.GREEN and classification.confidence > SEED_SKIP_GREEN_CONFIDENCE:
            return None
        seed_type = self.detect_seed_type(email, classification)
        if seed_type is None:
            return None
        return self.plant(email, seed_type, classification)

    def detect_seed_type(self, email: Email, classification: Classification) -> SeedType | None:
        """First matching rule wins; None when no seed is warranted."""
        text = f"{email.subject} {email.snippet}".lower()

        if classification.has_urgency(UrgencyLevel.HIGH):
            return SeedType.DECISION_NEEDED
        if classification.has_signal("vip-sender") or any(k in text for k in OPPORTUNITY_KEYWORDS):
            return SeedType.OPPORTUNITY
        if email.in_reply_to or classification.has_urgency(UrgencyLevel.MEDIUM):
            return SeedType.FOLLOW_UP
        if classification.has_signal("frequent-sender") and classification.zone != Zone.GREEN:
            return SeedType.RELATIONSHIP_BUILD
        if classification.zone == Zone.RED:
            return SeedType.FOLLOW_UP
        return None

    def shelf_life_for(self, seed_type: SeedType) -> str:
        return self.shelf_lives.get(seed_type.value, self.default_shelf_life)

    def plant(self, email: Email, seed_type: SeedType, classification: Classification) -> Seed:
        """
        Create a planted seed expiring one shelf life from now.

        Side Effects:
            - Writes the seed through to the store
            - Publishes ``seed.planted``
        """
        self._sequence += 1
        shelf_life = self.shelf_life_for(seed_type)
        planted_at = self._clock()
        seed = Seed(
            id=f"s{self._sequence}",
            type=seed_type,
            email_id=email.id,
            thread_id=email.thread_id,
            source_from=email.sender_email,
            source_subject=email.subject,
            zone=classification.zone,
            score=classification.score,
            shelf_life=shelf_life,
            planted_at=planted_at,
            expires_at=planted_at + parse_shelf_life(shelf_life),
        )
        self._seeds[seed.id] = seed
        counter(f"seeds.planted.{seed_type.value}")
        self._persist(seed)
        self.bus.publish(
            "seed",
            "seed.planted",
            {
                "seed_id": seed.id,
                "type": seed_type.value,
                "zone": seed.zone.value,
                "expires_at": seed.expires_at.isoformat(),
            },
        )
        return seed

    def check_escalation(self) -> list[Seed]:
        """
        Escalate planted seeds past their half-life. Running it twice is a no-op.

        Returns:
            Seeds escalated by this call

        Side Effects:
            - Sets escalated=True, zone=red on each
            - Publishes ``seed.escalated``
        """
        now = self._clock()
        escalated: list[Seed] = []
        for seed in self._seeds.values():
            if seed.status != SeedStatus.PLANTED or seed.escalated:
                continue
            remaining = seed.expires_at - now
            half_life = (seed.expires_at - seed.planted_at) / 2
            if remaining < half_life:
                seed.escalated = True
                seed.zone = Zone.RED
                escalated.append(seed)
                counter("seeds.escalated")
                self._persist(seed)
                self.bus.publish(
                    "seed",
                    "seed.escalated",
                    {
                        "seed_id": seed.id,
                        "type": seed.type.value,
                        "remaining_minutes": round(remaining.total_seconds() / 60),
                    },
                )
        return escalated

    def expire_overdue(self) -> list[Seed]:
        """
        Move planted seeds past ``expires_at`` to the terminal expired status.

        Side Effects:
            - Publishes ``seed.expired``
        """
        now = self._clock()
        expired: list[Seed] = []
        for seed in self._seeds.values():
            if seed.status == SeedStatus.PLANTED and now >= seed.expires_at:
                seed.status = SeedStatus.EXPIRED
                expired.append(seed)
                counter("seeds.expired")
                self._persist(seed)
                self.bus.publish(
                    "seed", "seed.expired", {"seed_id": seed.id, "type": seed.type.value}
                )
        return expired

    def harvest(
        self, seed_id: str, outcome: SeedOutcome | Mapping[str, Any] | None = None
    ) -> Seed | None:
        """
        Resolve a planted seed with an outcome.

        Returns:
            The harvested seed, or None for an unknown id

        Raises:
            SeedTransitionError: The seed is already harvested or expired

        Side Effects:
            - Publishes ``seed.harvested`` with the planted-to-harvested duration
        """
        seed = self._seeds.get(seed_id)
        if seed is None:
            logger.warning("Harvest requested for unknown seed %s", seed_id)
            return None
        if seed.is_terminal:
            raise SeedTransitionError(f"Seed {seed_id} is {seed.status.value}; cannot harvest")

        if outcome is None:
            outcome = SeedOutcome()
        elif not isinstance(outcome, SeedOutcome):
            outcome = SeedOutcome(**dict(outcome))

        now = self._clock()
        seed.harvested_at = now
        seed.outcome = outcome
        seed.status = SeedStatus.HARVESTED
        counter("seeds.harvested")
        self._persist(seed)
        self.bus.publish(
            "seed",
            "seed.harvested",
            {
                "seed_id": seed.id,
                "type": seed.type.value,
                "duration_seconds": round((now - seed.planted_at).total_seconds()),
            },
        )
        return seed

    def get(self, seed_id: str) -> Seed | None:
        return self._seeds.get(seed_id)

    def get_active(self) -> list[Seed]:
        """Planted seeds: red first, then soonest to expire."""
        active = [s for s in self._seeds.values() if s.status == SeedStatus.PLANTED]
        return sorted(active, key=lambda s: (s.zone != Zone.RED, s.expires_at))

    def all(self) -> list[Seed]:
        return list(self._seeds.values())

    def stats(self) -> SeedStats:
        seeds = list(self._seeds.values())
        active = [s for s in seeds if s.status == SeedStatus.PLANTED]
        return SeedStats(
            total=len(seeds),
            active=len(active),
            harvested=sum(1 for s in seeds if s.status == SeedStatus.HARVESTED),
            expired=sum(1 for s in seeds if s.status == SeedStatus.EXPIRED),
            escalated=sum(1 for s in active if s.escalated),
            by_type=dict(Counter(s.type.value for s in seeds)),
        )

    def _persist(self, seed: Seed) -> None:
        write_through(self.store.save_seed, seed, "seed")
