"""
Call throttle for the LLM provider.

Classification is strictly sequential; the throttle enforces a fixed minimum
gap between consecutive provider calls (60 / requests_per_minute seconds), so
the rate ceiling lives here instead of inside the classification loop.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter

logger = get_logger(__name__)


class CallThrottle:
    """Fixed minimum inter-call gap with injectable clock and sleep."""

    def __init__(
        self,
        requests_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.min_interval = 60.0 / requests_per_minute
        self._clock = clock
        self._sleep = sleep_fn
        self._last_call: float | None = None

    def wait(self) -> float:
        """
        Block until the next call is allowed, then reserve the slot.

        Returns:
            Seconds slept (0.0 when no wait was needed)

        Side Effects:
            - May sleep
            - Increments ``llm.throttle.waits`` when it does
        """
        now = self._clock()
        waited = 0.0
        if self._last_call is not None:
            remaining = self.min_interval - (now - self._last_call)
            if remaining > 0:
                logger.debug("Throttling LLM call for %.2fs", remaining)
                counter("llm.throttle.waits")
                self._sleep(remaining)
                waited = remaining
                now = self._clock()
        self._last_call = now
        return waited

    def reset(self) -> None:
        self._last_call = None
