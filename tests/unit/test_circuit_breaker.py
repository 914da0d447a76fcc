from __future__ import annotations

from emailos.infrastructure.circuitbreaker import InvalidJSONCircuitBreaker


def test_starts_closed():
    breaker = InvalidJSONCircuitBreaker()

    assert breaker.invalid_rate() == 0.0
    assert not breaker.is_tripped()


def test_needs_min_samples_before_tripping():
    breaker = InvalidJSONCircuitBreaker(window=10, threshold=0.5, min_samples=4)
    for _ in range(3):
        breaker.record(False)

    assert breaker.invalid_rate() == 1.0
    assert not breaker.is_tripped()

    breaker.record(True)
    assert breaker.is_tripped()


def test_window_evicts_old_failures():
    breaker = InvalidJSONCircuitBreaker(window=4, threshold=0.5, min_samples=4)
    for success in (False, False, False, False, True, True, True):
        breaker.record(success)

    assert breaker.invalid_rate() == 0.25
    assert not breaker.is_tripped()


def test_reset_clears_window():
    breaker = InvalidJSONCircuitBreaker(window=4, threshold=0.5, min_samples=1)
    breaker.record(False)
    assert breaker.is_tripped()

    breaker.reset()

    assert not breaker.is_tripped()
    assert breaker.invalid_rate() == 0.0
