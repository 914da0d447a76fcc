"""
Zone classifier: keyword scoring with an LLM second opinion.

Decision flow:
1. Keyword confidence >= threshold: keyword result.
2. Otherwise ask the LLM provider (throttled, retried on transient errors,
   behind a circuit breaker). A forced zone from a precision rule scores only
   one signal, so it is asked too.
3. Provider error / unusable reply / open breaker: keyword result tagged
   ``fallback``.

Batch classification is strictly sequential and never aborts: an email whose
classification raises degrades to a fixed yellow default.
"""

from __future__ import annotations

import time
from collections import Counter, deque
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from emailos.bus import EventBus
from emailos.classification.signals import SignalDetector
from emailos.config import (
    CLASSIFICATION_LOG_SIZE,
    CONFIDENCE_THRESHOLD,
    LLM_BREAKER_MIN_SAMPLES,
    LLM_BREAKER_THRESHOLD,
    LLM_BREAKER_WINDOW,
    LLM_MAX_RETRIES,
    LLM_MAX_TOKENS,
    LLM_RPM,
    LLM_TEMPERATURE,
)
from emailos.infrastructure.circuitbreaker import InvalidJSONCircuitBreaker
from emailos.infrastructure.throttle import CallThrottle
from emailos.llm.prompts import ZONE_SYSTEM_PROMPT, ZoneReply, build_user_message, parse_zone_reply
from emailos.llm.provider import ChatMessage, ChatResult, LLMError, LLMProvider
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter, log_event, time_block
from emailos.storage.models import (
    NEGATIVE_SIGNAL_TYPES,
    Classification,
    DuplicateSignal,
    Email,
    FrequentSenderSignal,
    LlmSignal,
    Method,
    Signal,
    SignalDetection,
    UrgencyLevel,
    UrgencySignal,
    Zone,
)
from emailos.storage.sink import MemoryStore, RecordStore, write_through
from emailos.utils.clock import Clock, utcnow

logger = get_logger(__name__)

BASELINE_SCORE = 50
SIGNAL_WEIGHTS: dict[str, int] = {
    "action-required": 40,
    "vip-sender": 15,
    "gmail-important": 5,
    "gmail-starred": 15,
    "thread-reply": 10,
    "newsletter": -30,
    "seasonal-greeting": -40,
    "auto-notification": -25,
    "marketing": -20,
}
URGENCY_WEIGHTS: dict[UrgencyLevel, int] = {
    UrgencyLevel.HIGH: 25,
    UrgencyLevel.MEDIUM: 10,
    UrgencyLevel.LOW: -5,
}
DUPLICATE_WEIGHT = -20
REPEATED_DUPLICATE_WEIGHT = -35
REPEATED_DUPLICATE_MIN = 3
FREQUENT_SENDER_CAP = 5
ACTION_OVERRIDE_FLOOR = 75

FAILED_SCORE = 50
FAILED_CONFIDENCE = 0.3


def is_transient_llm_error(error: BaseException) -> bool:
    """Rate limits, 5xx, timeouts and network errors are worth another attempt."""
    return isinstance(error, LLMError) and error.retryable


def _log_retry(retry_state: RetryCallState) -> None:
    counter("classify.llm.retry")
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("LLM call failed (attempt %d), will retry: %s", retry_state.attempt_number, error)


def calculate_score(detection: SignalDetection) -> int:
    """
    Score 0-100 from signals.

    A forced zone returns its canonical score. If any negative signal fired
    together with an action-required signal, the score is at least 75.
    """
    if detection.forced_zone is not None:
        return detection.forced_zone.canonical_score

    score = BASELINE_SCORE
    has_negative = False
    for signal in detection.signals:
        if isinstance(signal, UrgencySignal):
            score += URGENCY_WEIGHTS[signal.level]
        elif isinstance(signal, DuplicateSignal):
            score += (
                REPEATED_DUPLICATE_WEIGHT
                if signal.count >= REPEATED_DUPLICATE_MIN
                else DUPLICATE_WEIGHT
            )
        elif isinstance(signal, FrequentSenderSignal):
            score += min(signal.count, FREQUENT_SENDER_CAP)
        else:
            score += SIGNAL_WEIGHTS.get(signal.type, 0)
        if signal.type in NEGATIVE_SIGNAL_TYPES:
            has_negative = True

    score = max(0, min(100, score))
    if has_negative and any(s.type == "action-required" for s in detection.signals):
        score = max(score, ACTION_OVERRIDE_FLOOR)
    return score


def score_to_zone(score: float) -> Zone:
    return Zone.from_score(score)


def zone_to_score(zone: Zone) -> int:
    return zone.canonical_score


def calculate_confidence(signals: Sequence[Signal]) -> float:
    """0 signals -> 0.3, 3 or more -> 0.9, otherwise 0.5 + 0.15 per signal."""
    if not signals:
        return 0.3
    if len(signals) >= 3:
        return 0.9
    return round(0.5 + 0.15 * len(signals), 2)


def generate_reasoning(signals: Sequence[Signal], zone: Zone) -> str:
    if not signals:
        return f"Zone {zone.value}: no strong signals detected"
    top = ", ".join(s.type for s in signals[:3])
    return f"Zone {zone.value}: detected {len(signals)} signal(s): {top}"


@dataclass(frozen=True)
class ClassifiedItem:
    email: Email
    classification: Classification


@dataclass
class ClassifiedBatch:
    """Batch result in input order, with per-zone views."""

    items: list[ClassifiedItem] = field(default_factory=list)

    def __iter__(self) -> Iterator[ClassifiedItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def in_zone(self, zone: Zone) -> list[ClassifiedItem]:
        return [item for item in self.items if item.classification.zone == zone]

    @property
    def red(self) -> list[ClassifiedItem]:
        return self.in_zone(Zone.RED)

    @property
    def yellow(self) -> list[ClassifiedItem]:
        return self.in_zone(Zone.YELLOW)

    @property
    def green(self) -> list[ClassifiedItem]:
        return self.in_zone(Zone.GREEN)

    @property
    def classifications(self) -> list[Classification]:
        return [item.classification for item in self.items]


class ZoneClassifier:
    """Hybrid keyword / LLM zone classifier."""

    def __init__(
        self,
        bus: EventBus,
        detector: SignalDetector | None = None,
        provider: LLMProvider | None = None,
        store: RecordStore | None = None,
        throttle: CallThrottle | None = None,
        breaker: InvalidJSONCircuitBreaker | None = None,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        clock: Clock = utcnow,
        log_size: int = CLASSIFICATION_LOG_SIZE,
        max_retries: int = LLM_MAX_RETRIES,
        retry_sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.bus = bus
        self.detector = detector or SignalDetector()
        self.provider = provider
        self.store = store or MemoryStore()
        self.throttle = throttle or CallThrottle(LLM_RPM)
        self.breaker = breaker or InvalidJSONCircuitBreaker(
            window=LLM_BREAKER_WINDOW,
            threshold=LLM_BREAKER_THRESHOLD,
            min_samples=LLM_BREAKER_MIN_SAMPLES,
        )
        self.confidence_threshold = confidence_threshold
        self._retrying = Retrying(
            stop=stop_after_attempt(max(1, max_retries)),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception(is_transient_llm_error),
            before_sleep=_log_retry,
            sleep=retry_sleep,
            reraise=True,
        )
        self._clock = clock
        self._log: deque[Classification] = deque(maxlen=log_size)
        self._stats: Counter[str] = Counter()
        self._total = 0

    def classify(self, email: Email) -> Classification:
        """
        Classify one email.

        Side Effects:
            - Updates detector counters
            - May call the LLM provider (throttled)
            - Writes the classification through to the store
            - Publishes ``email.classified``
        """
        detection = self.detector.detect(email)
        score = calculate_score(detection)
        confidence = calculate_confidence(detection.signals)
        keyword_zone = detection.forced_zone or score_to_zone(score)
        forced = detection.forced_zone is not None

        if confidence >= self.confidence_threshold or self.provider is None:
            return self._finish(email, detection.signals, keyword_zone, score, confidence,
                                Method.KEYWORD, forced=forced)

        if self.breaker.is_tripped():
            counter("classify.llm.breaker_open")
            logger.warning(
                "LLM circuit open (invalid rate %.2f), keyword fallback for %s",
                self.breaker.invalid_rate(),
                email.id,
            )
            return self._finish(email, detection.signals, keyword_zone, score, confidence,
                                Method.FALLBACK, forced=forced)

        try:
            reply = self.classify_with_llm(email)
        except Exception as e:
            self.breaker.record(False)
            counter("classify.llm.error")
            logger.warning("LLM fallback for %r: %s", email.subject[:30], e)
            log_event("classify.llm.fallback", email_id=email.id, error=str(e)[:200])
            return self._finish(email, detection.signals, keyword_zone, score, confidence,
                                Method.FALLBACK, forced=forced)

        self.breaker.record(True)
        merged = (*detection.signals, *(LlmSignal(label=label) for label in reply.signals))
        return self._finish(email, merged, reply.zone, zone_to_score(reply.zone),
                            reply.confidence, Method.LLM, reasoning=reply.reasoning)

    def classify_with_llm(self, email: Email) -> ZoneReply:
        """
        Ask the provider for a zone.

        Transient provider errors are retried with exponential backoff; each
        attempt waits on the throttle.

        Raises:
            LLMError: Provider failure (after retries when transient)
            LLMSchemaError: Reply is not valid JSON or has an invalid zone
        """
        if self.provider is None:
            raise RuntimeError("No LLM provider configured")

        messages = [
            ChatMessage(role="system", content=ZONE_SYSTEM_PROMPT),
            ChatMessage(role="user", content=build_user_message(email)),
        ]
        result = self._retrying(self._chat, self.provider, messages)
        return parse_zone_reply(result.content)

    def _chat(self, provider: LLMProvider, messages: list[ChatMessage]) -> ChatResult:
        self.throttle.wait()
        counter("classify.llm.calls")
        with time_block("classify.llm.latency"):
            return provider.chat(
                messages, temperature=LLM_TEMPERATURE, max_tokens=LLM_MAX_TOKENS, json=True
            )

    def batch_classify(self, emails: Iterable[Email]) -> ClassifiedBatch:
        """
        Classify emails one after another.

        Side Effects:
            - Everything classify() does, per email
            - Publishes ``batch.classified`` with zone totals and stats
        """
        batch = ClassifiedBatch()
        for email in emails:
            try:
                classification = self.classify(email)
            except Exception as e:
                logger.error("Classification failed for %s: %s", email.id, e, exc_info=True)
                counter("classify.failed")
                classification = self._record(
                    Classification(
                        email_id=email.id,
                        thread_id=email.thread_id,
                        zone=Zone.YELLOW,
                        score=FAILED_SCORE,
                        confidence=FAILED_CONFIDENCE,
                        reasoning="Classification failed: defaulting to yellow",
                        method=Method.FALLBACK,
                        timestamp=self._clock(),
                    )
                )
            batch.items.append(ClassifiedItem(email=email, classification=classification))

        self.bus.publish(
            "classify",
            "batch.classified",
            {
                "total": len(batch),
                "red": len(batch.red),
                "yellow": len(batch.yellow),
                "green": len(batch.green),
                "stats": self.stats(),
            },
        )
        return batch

    def stats(self) -> dict[str, int]:
        return {
            "keyword": self._stats[Method.KEYWORD.value],
            "llm": self._stats[Method.LLM.value],
            "fallback": self._stats[Method.FALLBACK.value],
            "total": self._total,
        }

    def recent(self, limit: int | None = None) -> list[Classification]:
        """Rolling window of the latest classifications, oldest first."""
        items = list(self._log)
        return items[-limit:] if limit else items

    def _finish(
        self,
        email: Email,
        signals: Sequence[Signal],
        zone: Zone,
        score: int,
        confidence: float,
        method: Method,
        reasoning: str | None = None,
        forced: bool = False,
    ) -> Classification:
        classification = Classification(
            email_id=email.id,
            thread_id=email.thread_id,
            zone=zone,
            score=score,
            confidence=confidence,
            signals=tuple(signals),
            reasoning=reasoning or generate_reasoning(signals, zone),
            method=method,
            forced=forced,
            timestamp=self._clock(),
        )
        return self._record(classification)

    def _record(self, classification: Classification) -> Classification:
        self._log.append(classification)
        self._total += 1
        self._stats[classification.method.value] += 1
        counter(f"classify.method.{classification.method.value}")
        write_through(self.store.save_classification, classification, "classification")
        self.bus.publish(
            "classify",
            "email.classified",
            {
                "email_id": classification.email_id,
                "zone": classification.zone.value,
                "confidence": classification.confidence,
                "signals": len(classification.signals),
                "method": classification.method.value,
            },
        )
        return classification
