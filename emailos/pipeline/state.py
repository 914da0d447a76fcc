r"""
Sync-cycle state machine.

    IDLE -> SYNCING -> PROCESSING -> SUGGESTING -> COMPLETE -> IDLE
                 \            \             \
                  +------------+-------------+--> ERROR -> IDLE

Illegal transitions are rejected (and published), never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from emailos.bus import EventBus
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter
from emailos.utils.clock import Clock, utcnow

logger = get_logger(__name__)


class State(str, Enum):
    IDLE = "IDLE"
    SYNCING = "SYNCING"
    PROCESSING = "PROCESSING"
    SUGGESTING = "SUGGESTING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


TRANSITIONS: dict[State, set[State]] = {
    State.IDLE: {State.SYNCING},
    State.SYNCING: {State.PROCESSING, State.ERROR},
    State.PROCESSING: {State.SUGGESTING, State.ERROR},
    State.SUGGESTING: {State.COMPLETE, State.ERROR},
    State.COMPLETE: {State.IDLE},
    State.ERROR: {State.IDLE},
}


@dataclass(frozen=True)
class StateTransition:
    """One accepted transition."""

    from_state: State
    to_state: State
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


class StateMachine:
    """Tracks the current sync-cycle state and its append-only history."""

    def __init__(self, bus: EventBus, clock: Clock = utcnow) -> None:
        self.bus = bus
        self._clock = clock
        self.state = State.IDLE
        self.error_count = 0
        self.last_error: str | None = None
        self._history: list[StateTransition] = []
        self._started_at: datetime | None = None

    def can_transition(self, to_state: State) -> bool:
        return to_state in TRANSITIONS.get(self.state, set())

    def transition(self, to_state: State, metadata: dict[str, Any] | None = None) -> bool:
        """
        Move to ``to_state`` if the table allows it.

        Returns:
            True on success, False (state unchanged) for an illegal transition

        Side Effects:
            - Publishes ``state.transition`` or ``state.invalid_transition``
            - Entering SYNCING records the cycle start time
            - Entering ERROR increments error_count and records last_error
        """
        metadata = dict(metadata or {})
        if not self.can_transition(to_state):
            counter("state.invalid_transition")
            logger.warning("Invalid transition: %s -> %s", self.state.value, to_state.value)
            self.bus.publish(
                "state",
                "state.invalid_transition",
                {"from": self.state.value, "to": to_state.value, "metadata": metadata},
            )
            return False

        previous = self.state
        now = self._clock()
        self.state = to_state
        self._history.append(
            StateTransition(from_state=previous, to_state=to_state, timestamp=now, metadata=metadata)
        )

        if to_state == State.SYNCING:
            self._started_at = now
        if to_state == State.ERROR:
            self.error_count += 1
            self.last_error = str(metadata.get("error") or "Unknown error")

        logger.debug("State %s -> %s", previous.value, to_state.value)
        self.bus.publish(
            "state",
            "state.transition",
            {
                "from": previous.value,
                "to": to_state.value,
                "metadata": metadata,
                "error_count": self.error_count,
            },
        )
        return True

    def is_in(self, state: State) -> bool:
        return self.state == state

    def elapsed(self) -> float:
        """Seconds since the current cycle entered SYNCING (0 when none started)."""
        if self._started_at is None:
            return 0.0
        return (self._clock() - self._started_at).total_seconds()

    def reset(self) -> None:
        """Force IDLE regardless of the table. History is kept."""
        previous = self.state
        self.state = State.IDLE
        self._started_at = None
        self.bus.publish("state", "state.reset", {"from": previous.value})

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    def summary(self) -> dict[str, Any]:
        return {
            "current": self.state.value,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "elapsed_seconds": self.elapsed(),
            "transition_count": len(self._history),
        }
