"""Tests for ZoneClassifier: keyword scoring, LLM second opinion, fallbacks."""

from __future__ import annotations

import pytest

from emailos.classification.zone_classifier import (
    ZoneClassifier,
    calculate_confidence,
    calculate_score,
    generate_reasoning,
)
from emailos.infrastructure.circuitbreaker import InvalidJSONCircuitBreaker
from emailos.infrastructure.throttle import CallThrottle
from emailos.llm.provider import LLMError
from emailos.observability.telemetry import get_counters
from emailos.storage.models import (
    ActionRequiredSignal,
    DuplicateSignal,
    FrequentSenderSignal,
    LlmSignal,
    MarketingSignal,
    Method,
    NewsletterSignal,
    SignalDetection,
    UrgencyLevel,
    UrgencySignal,
    Zone,
)
from tests.fixtures.fakes import FakeProvider, make_email


@pytest.fixture
def throttle():
    return CallThrottle(60_000, sleep_fn=lambda _: None)


def make_classifier(bus, clock, store, throttle, provider=None, **kwargs):
    return ZoneClassifier(
        bus, provider=provider, store=store, throttle=throttle, clock=clock, **kwargs
    )


# --- pure scoring -------------------------------------------------------------


def test_score_baseline_and_clamping():
    assert calculate_score(SignalDetection()) == 50
    high = SignalDetection(
        signals=(
            ActionRequiredSignal(keyword="approve"),
            UrgencySignal(level=UrgencyLevel.HIGH, keyword="urgent"),
        )
    )
    assert calculate_score(high) == 100


def test_duplicate_penalty_grows_on_third_copy():
    assert calculate_score(SignalDetection(signals=(DuplicateSignal(count=2),))) == 30
    assert calculate_score(SignalDetection(signals=(DuplicateSignal(count=3),))) == 15


def test_frequent_sender_bonus_is_capped():
    detection = SignalDetection(signals=(FrequentSenderSignal(count=40),))
    assert calculate_score(detection) == 55


def test_action_override_floor_with_negative_signals():
    detection = SignalDetection(
        signals=(
            NewsletterSignal(source="domain", match="mail.adobe.com"),
            MarketingSignal(keyword="learn more"),
            ActionRequiredSignal(keyword="approve"),
        )
    )
    assert calculate_score(detection) == 75


def test_forced_zone_uses_canonical_score():
    assert calculate_score(SignalDetection(forced_zone=Zone.GREEN)) == 30


@pytest.mark.parametrize("count,expected", [(0, 0.3), (1, 0.65), (2, 0.8), (3, 0.9), (7, 0.9)])
def test_confidence_from_signal_count(count, expected):
    signals = tuple(MarketingSignal(keyword=str(i)) for i in range(count))
    assert calculate_confidence(signals) == expected


def test_reasoning_lists_first_three_signal_types():
    signals = (
        ActionRequiredSignal(keyword="a"),
        UrgencySignal(level=UrgencyLevel.LOW, keyword="b"),
        MarketingSignal(keyword="c"),
        DuplicateSignal(count=2),
    )
    reasoning = generate_reasoning(signals, Zone.YELLOW)
    assert reasoning == "Zone yellow: detected 4 signal(s): action-required, urgency, marketing"
    assert generate_reasoning((), Zone.GREEN) == "Zone green: no strong signals detected"


# --- classify -----------------------------------------------------------------


def test_high_confidence_keyword_result_skips_llm(bus, clock, store, throttle, events):
    provider = FakeProvider()
    classifier = make_classifier(bus, clock, store, throttle, provider)

    result = classifier.classify(
        make_email("URGENT: approval needed 簽核", sender="boss@example.com")
    )

    assert result.zone == Zone.RED
    assert result.score == 100
    assert result.confidence == 0.8
    assert result.method == Method.KEYWORD
    assert len(result.signals) == 2
    assert provider.calls == []
    assert store.classifications == [result]
    assert events[-1].event_type == "email.classified"
    assert events[-1].payload["zone"] == "red"


def test_newsletter_greeting_is_green(bus, clock, store, throttle):
    classifier = make_classifier(bus, clock, store, throttle)

    result = classifier.classify(make_email("新年快樂 特別優惠", sender="news@edm.taitra.org.tw"))

    assert result.zone == Zone.GREEN
    assert result.score <= 10
    assert not result.has_signal("action-required")


def test_forced_zone_still_gets_llm_second_opinion(bus, clock, store, throttle):
    provider = FakeProvider(replies=['{"zone": "yellow", "confidence": 0.6}'])
    classifier = make_classifier(bus, clock, store, throttle, provider)

    result = classifier.classify(
        make_email("Security alert for your account", sender="no-reply@accounts.google.com")
    )

    assert len(provider.calls) == 1
    assert result.method == Method.LLM
    assert result.zone == Zone.YELLOW
    assert result.score == 60
    assert result.forced is False


def test_forced_zone_survives_llm_failure(bus, clock, store, throttle, failing_provider):
    classifier = make_classifier(bus, clock, store, throttle, failing_provider)

    result = classifier.classify(
        make_email("Security alert for your account", sender="no-reply@accounts.google.com")
    )

    assert result.method == Method.FALLBACK
    assert result.zone == Zone.RED
    assert result.score == 85
    assert result.forced is True


def test_forced_zone_without_provider_is_keyword(bus, clock, store, throttle):
    classifier = make_classifier(bus, clock, store, throttle, provider=None)

    result = classifier.classify(
        make_email("Security alert for your account", sender="no-reply@accounts.google.com")
    )

    assert (result.zone, result.score, result.method) == (Zone.RED, 85, Method.KEYWORD)
    assert result.forced is True


def test_low_confidence_asks_llm(bus, clock, store, throttle):
    provider = FakeProvider(
        replies=['{"zone": "yellow", "confidence": 0.7, "reasoning": "social", "signals": ["lunch"]}']
    )
    classifier = make_classifier(bus, clock, store, throttle, provider)

    result = classifier.classify(make_email("Lunch next week?", sender="friend@example.com"))

    assert result.method == Method.LLM
    assert result.zone == Zone.YELLOW
    assert result.score == 60
    assert result.confidence == 0.7
    assert result.reasoning == "social"
    assert LlmSignal(label="lunch") in result.signals
    assert len(provider.calls) == 1
    system, user = provider.calls[0]
    assert system.role == "system"
    assert "Subject: Lunch next week?" in user.content


def test_without_provider_low_confidence_stays_keyword(bus, clock, store, throttle):
    classifier = make_classifier(bus, clock, store, throttle, provider=None)

    result = classifier.classify(make_email("Lunch next week?"))

    assert result.method == Method.KEYWORD
    assert result.zone == Zone.YELLOW
    assert result.confidence == 0.3


def test_provider_error_falls_back(bus, clock, store, throttle, failing_provider):
    classifier = make_classifier(bus, clock, store, throttle, failing_provider)

    result = classifier.classify(make_email("Lunch next week?"))

    assert result.method == Method.FALLBACK
    assert result.zone == Zone.YELLOW
    assert result.score == 50
    assert get_counters("classify.")["classify.llm.error"] == 1


def test_invalid_llm_reply_falls_back(bus, clock, store, throttle):
    provider = FakeProvider(replies=['{"zone": "purple"}'])
    classifier = make_classifier(bus, clock, store, throttle, provider)

    result = classifier.classify(make_email("Lunch next week?"))

    assert result.method == Method.FALLBACK
    assert classifier.breaker.invalid_rate() == 1.0


def test_non_canonical_zone_spelling_falls_back(bus, clock, store, throttle):
    provider = FakeProvider(replies=['{"zone": "Yellow", "confidence": 0.7}'])
    classifier = make_classifier(bus, clock, store, throttle, provider)

    result = classifier.classify(make_email("Lunch next week?"))

    assert result.method == Method.FALLBACK
    assert result.confidence == 0.3


class FlakyProvider(FakeProvider):
    """Raises the queued errors first, then answers normally."""

    def __init__(self, errors, replies=None):
        super().__init__(replies=replies)
        self.errors = list(errors)

    def chat(self, messages, temperature=0.1, max_tokens=200, json=False):
        if self.errors:
            self.calls.append(list(messages))
            raise self.errors.pop(0)
        return super().chat(messages, temperature, max_tokens, json)


def test_transient_llm_error_is_retried(bus, clock, store, throttle):
    provider = FlakyProvider(
        errors=[LLMError("503", provider="fake/test", retryable=True)],
        replies=['{"zone": "green", "confidence": 0.9}'],
    )
    waits = []
    classifier = make_classifier(bus, clock, store, throttle, provider, retry_sleep=waits.append)

    result = classifier.classify(make_email("Lunch next week?"))

    assert len(provider.calls) == 2
    assert len(waits) == 1
    assert result.method == Method.LLM
    assert result.zone == Zone.GREEN
    assert classifier.breaker.invalid_rate() == 0.0
    assert get_counters("classify.")["classify.llm.retry"] == 1


def test_transient_errors_give_up_after_max_retries(bus, clock, store, throttle):
    provider = FakeProvider(error=LLMError("429", provider="fake/test", retryable=True))
    waits = []
    classifier = make_classifier(
        bus, clock, store, throttle, provider, max_retries=3, retry_sleep=waits.append
    )

    result = classifier.classify(make_email("Lunch next week?"))

    assert len(provider.calls) == 3
    assert len(waits) == 2
    assert waits[1] >= waits[0]
    assert result.method == Method.FALLBACK


def test_permanent_llm_error_is_not_retried(bus, clock, store, throttle, failing_provider):
    waits = []
    classifier = make_classifier(
        bus, clock, store, throttle, failing_provider, retry_sleep=waits.append
    )

    result = classifier.classify(make_email("Lunch next week?"))

    assert len(failing_provider.calls) == 1
    assert waits == []
    assert result.method == Method.FALLBACK


def test_open_breaker_skips_provider(bus, clock, store, throttle):
    provider = FakeProvider()
    breaker = InvalidJSONCircuitBreaker(window=10, threshold=0.5, min_samples=2)
    breaker.record(False)
    breaker.record(False)
    classifier = make_classifier(bus, clock, store, throttle, provider, breaker=breaker)

    result = classifier.classify(make_email("Lunch next week?"))

    assert result.method == Method.FALLBACK
    assert provider.calls == []


def test_llm_calls_go_through_throttle(bus, clock, store):
    slept = []
    ticks = iter([0.0, 1.0, 4.0])
    throttle = CallThrottle(15, clock=lambda: next(ticks), sleep_fn=slept.append)
    provider = FakeProvider(replies=['{"zone": "green"}', '{"zone": "green"}'])
    classifier = make_classifier(bus, clock, store, throttle, provider)

    classifier.classify(make_email("Lunch?"))
    classifier.classify(make_email("Dinner?"))

    assert slept == [3.0]


# --- batch --------------------------------------------------------------------


def test_batch_continues_after_provider_failure(bus, clock, store, throttle, failing_provider, events):
    classifier = make_classifier(bus, clock, store, throttle, failing_provider)
    emails = [
        make_email("Lunch next week?"),
        make_email("URGENT: approval needed 簽核", sender="boss@example.com"),
        make_email("Coffee?"),
    ]

    batch = classifier.batch_classify(emails)

    assert [item.email.id for item in batch] == [e.id for e in emails]
    assert [c.method for c in batch.classifications] == [
        Method.FALLBACK,
        Method.KEYWORD,
        Method.FALLBACK,
    ]
    assert len(batch.red) == 1
    assert classifier.stats() == {"keyword": 1, "llm": 0, "fallback": 2, "total": 3}
    summary = events[-1]
    assert summary.event_type == "batch.classified"
    assert summary.payload["total"] == 3
    assert summary.payload["red"] == 1


def test_batch_degrades_unexpected_error_to_yellow(bus, clock, store, throttle):
    classifier = make_classifier(bus, clock, store, throttle)

    def explode(email):
        raise KeyError("detector bug")

    classifier.detector.detect = explode

    batch = classifier.batch_classify([make_email("anything")])

    only = batch.classifications[0]
    assert (only.zone, only.score, only.confidence, only.method) == (
        Zone.YELLOW,
        50,
        0.3,
        Method.FALLBACK,
    )
    assert get_counters("classify.")["classify.failed"] == 1


def test_recent_is_bounded(bus, clock, store, throttle):
    classifier = make_classifier(bus, clock, store, throttle, log_size=2)
    for subject in ("a", "b", "c"):
        classifier.classify(make_email(subject))

    assert len(classifier.recent()) == 2
    assert len(classifier.recent(1)) == 1
    assert classifier.stats()["total"] == 3


def test_store_failure_does_not_break_classification(bus, clock, throttle):
    class BrokenStore:
        def save_classification(self, classification):
            raise OSError("disk full")

    classifier = ZoneClassifier(bus, store=BrokenStore(), throttle=throttle, clock=clock)

    result = classifier.classify(make_email("URGENT: approval needed 簽核"))

    assert result.zone == Zone.RED
    assert get_counters("storage.")["storage.write_error"] == 1
