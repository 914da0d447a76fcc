"""
Mirror: periodic self-review of classifier and seed output.

Each review scores a window of recent output and raises feedback when a
distribution crosses its threshold. Every ``review_cycle``-th classification
review also runs ``evolve()``, which looks for feedback that keeps recurring
and for drift in average classifier confidence.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from typing import Any

from emailos.bus import EventBus
from emailos.config import (
    MIRROR_ACTIVE_SEEDS_MAX,
    MIRROR_ESCALATION_RATE,
    MIRROR_GREEN_SHARE,
    MIRROR_LOW_CONFIDENCE_RATE,
    MIRROR_RED_SHARE,
    MIRROR_TREND_DELTA,
    REVIEW_CYCLE,
)
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter
from emailos.storage.models import (
    Classification,
    Evolution,
    Feedback,
    Recommendation,
    Review,
    SeedStats,
    Zone,
)
from emailos.storage.sink import MemoryStore, RecordStore, write_through
from emailos.utils.clock import Clock, utcnow

logger = get_logger(__name__)

LOW_CONFIDENCE = 0.5


def _avg(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


class Mirror:
    """Audits output distributions and proposes parameter adjustments."""

    def __init__(
        self,
        bus: EventBus,
        store: RecordStore | None = None,
        review_cycle: int = REVIEW_CYCLE,
        clock: Clock = utcnow,
    ) -> None:
        if review_cycle <= 0:
            raise ValueError("review_cycle must be positive")
        self.bus = bus
        self.store = store or MemoryStore()
        self.review_cycle = review_cycle
        self._clock = clock
        self._reviews: list[Review] = []
        self._evolutions: list[Evolution] = []
        self._cycle_count = 0

    def review_classifications(self, classifications: Sequence[Classification]) -> Review:
        """
        Score a window of classifications; evolve every ``review_cycle`` cycles.

        Side Effects:
            - Advances the cycle counter
            - Writes the review through to the store
            - Publishes ``review.completed`` (and ``evolution.completed``)
        """
        self._cycle_count += 1
        sample = len(classifications)
        confidences = [c.confidence for c in classifications]
        zone_balance = {zone.value: 0 for zone in Zone}
        for c in classifications:
            zone_balance[c.zone.value] += 1

        low_rate = sum(1 for c in confidences if c < LOW_CONFIDENCE) / (sample or 1)
        scores: dict[str, Any] = {
            "avg_confidence": _avg(confidences),
            "low_confidence_rate": round(low_rate, 4),
            "zone_balance": zone_balance,
        }

        feedback: list[Feedback] = []
        if low_rate > MIRROR_LOW_CONFIDENCE_RATE:
            feedback.append(
                Feedback(
                    type="low-confidence",
                    message=(
                        f"Over {MIRROR_LOW_CONFIDENCE_RATE:.0%} of emails have low confidence: "
                        "do we need more signal sources?"
                    ),
                    proposal={"parameter": "classification.confidence_threshold", "direction": "lower"},
                )
            )
        if sample and zone_balance[Zone.RED.value] / sample > MIRROR_RED_SHARE:
            feedback.append(
                Feedback(
                    type="red-heavy",
                    message=f"Over {MIRROR_RED_SHARE:.0%} classified as red: are thresholds too sensitive?",
                    proposal={"parameter": "zone.red_min_score", "direction": "raise"},
                )
            )
        if sample and zone_balance[Zone.GREEN.value] / sample > MIRROR_GREEN_SHARE:
            feedback.append(
                Feedback(
                    type="green-heavy",
                    message=f"Over {MIRROR_GREEN_SHARE:.0%} are green: are we missing important signals?",
                    proposal={"parameter": "zone.yellow_min_score", "direction": "lower"},
                )
            )

        review = Review(
            agent="classify",
            cycle_number=self._cycle_count,
            sample_size=sample,
            timestamp=self._clock(),
            scores=scores,
            feedback=tuple(feedback),
        )
        self._reviews.append(review)

        if self._cycle_count % self.review_cycle == 0:
            evolution = self.evolve()
            review = review.model_copy(update={"evolution": evolution})
            self._reviews[-1] = review

        self._finish(review)
        self.bus.publish(
            "mirror",
            "review.completed",
            {
                "agent": "classify",
                "cycle": self._cycle_count,
                "avg_confidence": scores["avg_confidence"],
                "feedback_count": len(feedback),
                "evolved": review.evolution is not None,
            },
        )
        return review

    def review_seeds(self, stats: SeedStats) -> Review:
        """
        Score seed statistics: harvest rate and escalation rate.

        Side Effects:
            - Writes the review through to the store
            - Publishes ``review.completed``
        """
        harvest_rate = stats.harvested / stats.total if stats.total else 0.0
        escalation_rate = stats.escalated / stats.active if stats.active else 0.0
        scores: dict[str, Any] = {
            "harvest_rate": round(harvest_rate, 4),
            "escalation_rate": round(escalation_rate, 4),
            "active": stats.active,
        }

        feedback: list[Feedback] = []
        if stats.active > MIRROR_ACTIVE_SEEDS_MAX:
            feedback.append(
                Feedback(
                    type="seed-overload",
                    message=f"{stats.active} active seeds: planting too many without harvesting?",
                    proposal={"parameter": "seeds.skip_green_confidence", "direction": "lower"},
                )
            )
        if escalation_rate > MIRROR_ESCALATION_RATE:
            feedback.append(
                Feedback(
                    type="seed-escalation",
                    message=f"Over {MIRROR_ESCALATION_RATE:.0%} of seeds escalating: shelf lives too short?",
                    proposal={"parameter": "seeds.shelf_life", "direction": "lengthen"},
                )
            )

        review = Review(
            agent="seed",
            cycle_number=self._cycle_count,
            sample_size=stats.total,
            timestamp=self._clock(),
            scores=scores,
            feedback=tuple(feedback),
        )
        self._reviews.append(review)
        self._finish(review)
        self.bus.publish(
            "mirror",
            "review.completed",
            {"agent": "seed", "harvest_rate": scores["harvest_rate"], "feedback_count": len(feedback)},
        )
        return review

    def evolve(self) -> Evolution:
        """
        Aggregate feedback over the last ``review_cycle`` reviews.

        Feedback types seen in at least half of them become high-priority
        recommendations. With three or more classification reviews in the
        window, a confidence change beyond +/-0.1 is reported as well.

        Side Effects:
            - Publishes ``evolution.completed``
        """
        recent = self._reviews[-self.review_cycle:]
        patterns: Counter[str] = Counter(fb.type for review in recent for fb in review.feedback)

        recommendations: list[Recommendation] = []
        recurring_min = math.ceil(self.review_cycle / 2)
        for feedback_type, count in patterns.items():
            if count >= recurring_min:
                recommendations.append(
                    Recommendation(
                        priority="high",
                        message=(
                            f'Recurring "{feedback_type}" appeared {count}/{self.review_cycle} '
                            "cycles: consider a structural fix"
                        ),
                        feedback_type=feedback_type,
                    )
                )

        classify_reviews = [r for r in recent if r.agent == "classify"]
        if len(classify_reviews) >= 3:
            first = classify_reviews[0].scores.get("avg_confidence", 0.0)
            last = classify_reviews[-1].scores.get("avg_confidence", 0.0)
            trend = last - first
            if trend > MIRROR_TREND_DELTA:
                recommendations.append(
                    Recommendation(
                        priority="positive",
                        message=f"Confidence improving (+{trend * 100:.1f}%)",
                        actionable=False,
                    )
                )
            elif trend < -MIRROR_TREND_DELTA:
                recommendations.append(
                    Recommendation(priority="warning", message=f"Confidence declining ({trend * 100:.1f}%)")
                )

        evolution = Evolution(
            cycle=self._cycle_count,
            timestamp=self._clock(),
            feedback_patterns=dict(patterns),
            recommendations=tuple(recommendations),
        )
        self._evolutions.append(evolution)
        counter("mirror.evolutions")
        logger.info(
            "Evolution at cycle %d: %d recommendation(s)", self._cycle_count, len(recommendations)
        )
        self.bus.publish(
            "mirror",
            "evolution.completed",
            {"cycle": self._cycle_count, "recommendations": len(recommendations)},
        )
        return evolution

    def history(self) -> dict[str, Any]:
        return {
            "reviews": list(self._reviews),
            "evolutions": list(self._evolutions),
            "total_cycles": self._cycle_count,
        }

    def _finish(self, review: Review) -> None:
        counter(f"mirror.reviews.{review.agent}")
        for fb in review.feedback:
            counter(f"mirror.feedback.{fb.type}")
        write_through(self.store.save_review, review, "review")
