"""
Thread intelligence tracker.

Aggregates classified messages per thread and keeps three derived metrics
current:

- velocity: messages per day between the first and last message
- temperature: 0-100 heat from volume, participants, velocity, red/yellow
  messages across the whole history and recency of the last message
- trajectory: recent-3 heat vs. whole-history heat (heating/cooling/steady)

Threshold crossings become insights, deduplicated per (type, thread) within a
rolling window.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from cachetools import TTLCache

from emailos.bus import EventBus
from emailos.config import (
    INSIGHT_CACHE_SIZE,
    INSIGHT_DEDUPE_HOURS,
    INSIGHT_HOT_TEMPERATURE,
    INSIGHT_MULTI_PARTY,
    INSIGHT_VELOCITY_SPIKE,
)
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter
from emailos.storage.models import (
    Classification,
    Email,
    Insight,
    InsightType,
    Severity,
    Thread,
    ThreadMessage,
    Trajectory,
    Zone,
)
from emailos.storage.sink import MemoryStore, RecordStore, write_through
from emailos.utils.clock import Clock, utcnow

logger = get_logger(__name__)

ZONE_HEAT = {Zone.RED: 3, Zone.YELLOW: 2, Zone.GREEN: 1}
TRAJECTORY_MARGIN = 0.5
TRAJECTORY_RECENT = 3


def compute_velocity(thread: Thread) -> float:
    """Messages per day; 0 with fewer than two messages or a zero span."""
    if thread.message_count < 2:
        return 0.0
    dates = sorted(m.date for m in thread.messages)
    span_days = (dates[-1] - dates[0]).total_seconds() / 86400
    if span_days <= 0:
        return 0.0
    return round(thread.message_count / span_days, 2)


def compute_temperature(thread: Thread, now: datetime) -> int:
    temp = 0.0
    temp += min(thread.message_count * 10, 30)
    temp += min(thread.participant_count * 10, 20)
    temp += thread.velocity * 5

    zones = thread.zones
    temp += 15 * zones.count(Zone.RED)
    temp += 5 * zones.count(Zone.YELLOW)

    if thread.last_message_at is not None:
        hours_since = (now - thread.last_message_at).total_seconds() / 3600
        if hours_since < 2:
            temp += 20
        elif hours_since < 24:
            temp += 10
        elif hours_since > 168:
            temp -= 20

    return int(round(max(0.0, min(100.0, temp))))


def compute_trajectory(thread: Thread) -> Trajectory:
    zones = thread.zones
    if len(zones) < TRAJECTORY_RECENT:
        return Trajectory.NEW
    recent = zones[-TRAJECTORY_RECENT:]
    recent_heat = sum(ZONE_HEAT[z] for z in recent) / len(recent)
    history_heat = sum(ZONE_HEAT[z] for z in zones) / len(zones)
    if recent_heat > history_heat + TRAJECTORY_MARGIN:
        return Trajectory.HEATING
    if recent_heat < history_heat - TRAJECTORY_MARGIN:
        return Trajectory.COOLING
    return Trajectory.STEADY


class ThreadTracker:
    """Per-thread aggregate store plus insight generation."""

    def __init__(
        self,
        bus: EventBus,
        store: RecordStore | None = None,
        clock: Clock = utcnow,
        dedupe_window: timedelta = timedelta(hours=INSIGHT_DEDUPE_HOURS),
    ) -> None:
        self.bus = bus
        self.store = store or MemoryStore()
        self._clock = clock
        self.dedupe_window = dedupe_window
        self._threads: dict[str, Thread] = {}
        self._insights: list[Insight] = []
        # (type, thread_id) -> created_at of the last emitted insight
        self._recent_keys: TTLCache[tuple[str, str], datetime] = TTLCache(
            maxsize=INSIGHT_CACHE_SIZE,
            ttl=dedupe_window.total_seconds(),
            timer=lambda: self._clock().timestamp(),
        )

    def load_insights(self, insights: Iterable[Insight]) -> int:
        """Restore insights from an earlier run so dedupe survives restarts."""
        now = self._clock()
        loaded = 0
        for insight in sorted(insights, key=lambda i: i.created_at):
            self._insights.append(insight)
            if now - insight.created_at < self.dedupe_window:
                self._recent_keys[(insight.type.value, insight.thread_id)] = insight.created_at
            loaded += 1
        return loaded

    def track_thread(self, email: Email, classification: Classification) -> Thread | None:
        """
        Add one classified message to its thread and refresh the metrics.

        Returns:
            The updated thread, or None when the email has no thread id

        Side Effects:
            - Writes the thread through to the store
            - May generate insights
            - Publishes ``thread.updated``
        """
        if not email.thread_id:
            return None

        now = self._clock()
        sent_at = email.date or now
        thread = self._threads.get(email.thread_id)
        if thread is None:
            thread = Thread(
                thread_id=email.thread_id,
                subject=email.subject or "(no subject)",
                first_message_at=sent_at,
                last_message_at=sent_at,
            )
            self._threads[email.thread_id] = thread

        sender = email.sender_email
        if sender and sender not in thread.participants:
            thread.participants.append(sender)
        thread.messages.append(
            ThreadMessage(id=email.id, sender=sender, zone=classification.zone, date=sent_at)
        )
        if thread.first_message_at is None or sent_at < thread.first_message_at:
            thread.first_message_at = sent_at
        if thread.last_message_at is None or sent_at > thread.last_message_at:
            thread.last_message_at = sent_at

        thread.velocity = compute_velocity(thread)
        thread.temperature = compute_temperature(thread, now)
        thread.trajectory = compute_trajectory(thread)

        write_through(self.store.save_thread, thread, "thread")
        self.check_insight_triggers(thread)

        self.bus.publish(
            "insight",
            "thread.updated",
            {
                "thread_id": thread.thread_id,
                "message_count": thread.message_count,
                "velocity": thread.velocity,
                "temperature": thread.temperature,
                "trajectory": thread.trajectory.value,
            },
        )
        return thread

    def check_insight_triggers(self, thread: Thread) -> list[Insight]:
        generated: list[Insight] = []
        subject = thread.subject

        if thread.velocity > INSIGHT_VELOCITY_SPIKE:
            insight = self.generate_insight(
                thread.thread_id,
                InsightType.VELOCITY_SPIKE,
                f'Thread "{subject}" has high velocity ({thread.velocity} msgs/day)',
                Severity.WARNING,
                {"velocity": thread.velocity},
            )
            if insight:
                generated.append(insight)

        if thread.temperature > INSIGHT_HOT_TEMPERATURE:
            insight = self.generate_insight(
                thread.thread_id,
                InsightType.HOT_THREAD,
                f'Thread "{subject}" is very hot (temp: {thread.temperature})',
                Severity.CRITICAL,
                {"temperature": thread.temperature},
            )
            if insight:
                generated.append(insight)

        if thread.participant_count >= INSIGHT_MULTI_PARTY:
            insight = self.generate_insight(
                thread.thread_id,
                InsightType.MULTI_PARTY,
                f'Thread "{subject}" has {thread.participant_count} participants',
                Severity.INFO,
                {"participants": list(thread.participants)},
            )
            if insight:
                generated.append(insight)

        return generated

    def generate_insight(
        self,
        thread_id: str,
        insight_type: InsightType,
        message: str,
        severity: Severity,
        data: dict[str, Any] | None = None,
    ) -> Insight | None:
        """
        Store and publish an insight unless the same (type, thread) was emitted
        within the dedupe window.

        Returns:
            The new insight, or None when suppressed

        Side Effects:
            - Writes the insight through to the store
            - Publishes ``insight.generated``
        """
        now = self._clock()
        key = (insight_type.value, thread_id)
        last = self._recent_keys.get(key)
        if last is not None and now - last < self.dedupe_window:
            counter("insights.suppressed")
            logger.debug("Suppressed duplicate %s insight for %s", insight_type.value, thread_id)
            return None

        insight = Insight(
            thread_id=thread_id,
            type=insight_type,
            message=message,
            severity=severity,
            data=data or {},
            created_at=now,
        )
        self._recent_keys[key] = now
        self._insights.append(insight)
        counter(f"insights.generated.{insight_type.value}")
        write_through(self.store.save_insight, insight, "insight")
        self.bus.publish(
            "insight",
            "insight.generated",
            {"type": insight_type.value, "severity": severity.value, "thread_id": thread_id},
        )
        return insight

    def get(self, thread_id: str) -> Thread | None:
        return self._threads.get(thread_id)

    def get_hot_threads(self, limit: int = 5) -> list[Thread]:
        return sorted(self._threads.values(), key=lambda t: t.temperature, reverse=True)[:limit]

    def get_recent_insights(self, limit: int = 10) -> list[Insight]:
        """Latest insights, oldest first."""
        return self._insights[-limit:] if limit > 0 else []

    @property
    def insights(self) -> list[Insight]:
        return list(self._insights)
