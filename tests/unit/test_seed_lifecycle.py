"""Tests for SeedManager: typing, planting, escalation, harvest, expiry."""

from __future__ import annotations

from datetime import timedelta

import pytest

from emailos.seeds.lifecycle import SeedManager, SeedTransitionError, parse_shelf_life
from emailos.storage.models import (
    FrequentSenderSignal,
    SeedOutcome,
    SeedStatus,
    SeedType,
    UrgencyLevel,
    UrgencySignal,
    VipSenderSignal,
    Zone,
)
from tests.fixtures.fakes import make_classification, make_email


@pytest.fixture
def seeds(bus, store, clock):
    return SeedManager(bus, store=store, clock=clock)


def plant_decision(seeds, subject="Sign the contract"):
    email = make_email(subject)
    classification = make_classification(
        email,
        zone=Zone.YELLOW,
        signals=[UrgencySignal(level=UrgencyLevel.HIGH, keyword="urgent")],
    )
    return seeds.evaluate(email, classification)


@pytest.mark.parametrize(
    "value,expected",
    [("30m", timedelta(minutes=30)), ("2h", timedelta(hours=2)), ("7d", timedelta(days=7))],
)
def test_parse_shelf_life(value, expected):
    assert parse_shelf_life(value) == expected


@pytest.mark.parametrize("value", ["", "2", "h2", "0h", "2w", "1.5h"])
def test_parse_shelf_life_rejects_malformed(value):
    with pytest.raises(ValueError):
        parse_shelf_life(value)


def test_invalid_configured_shelf_life_fails_at_startup(bus):
    with pytest.raises(ValueError):
        SeedManager(bus, shelf_lives={"follow-up": "soon"})


def test_seed_type_rules(seeds):
    high = make_classification(
        make_email(), signals=[UrgencySignal(level=UrgencyLevel.HIGH, keyword="urgent")]
    )
    vip = make_classification(make_email(), signals=[VipSenderSignal(email="ceo@corp.test")])
    medium = make_classification(
        make_email(), signals=[UrgencySignal(level=UrgencyLevel.MEDIUM, keyword="meeting")]
    )
    frequent = make_classification(make_email(), signals=[FrequentSenderSignal(count=9)])
    red = make_classification(make_email(), zone=Zone.RED)

    assert seeds.detect_seed_type(make_email(), high) == SeedType.DECISION_NEEDED
    assert seeds.detect_seed_type(make_email(), vip) == SeedType.OPPORTUNITY
    assert seeds.detect_seed_type(make_email("RFQ for 500 units"), medium) == SeedType.OPPORTUNITY
    assert seeds.detect_seed_type(make_email(), medium) == SeedType.FOLLOW_UP
    assert seeds.detect_seed_type(make_email(in_reply_to="<x@y>"), red) == SeedType.FOLLOW_UP
    assert seeds.detect_seed_type(make_email(), frequent) == SeedType.RELATIONSHIP_BUILD
    assert seeds.detect_seed_type(make_email(), red) == SeedType.FOLLOW_UP
    assert seeds.detect_seed_type(make_email(), make_classification(make_email())) is None


def test_confident_green_is_skipped(seeds):
    email = make_email("Quarterly partnership proposal")
    green = make_classification(email, zone=Zone.GREEN, confidence=0.9)

    assert seeds.evaluate(email, green) is None


def test_low_confidence_green_can_still_plant(seeds):
    email = make_email("Quarterly partnership proposal")
    green = make_classification(email, zone=Zone.GREEN, confidence=0.5)

    seed = seeds.evaluate(email, green)

    assert seed.type == SeedType.OPPORTUNITY
    assert seed.shelf_life == "3d"


def test_plant_assigns_ids_expiry_and_publishes(seeds, store, clock, events):
    first = plant_decision(seeds)
    second = plant_decision(seeds, "Pick a vendor")

    assert (first.id, second.id) == ("s1", "s2")
    assert first.status == SeedStatus.PLANTED
    assert first.shelf_life == "2h"
    assert first.planted_at == clock.now
    assert first.expires_at == clock.now + timedelta(hours=2)
    assert set(store.seeds) == {"s1", "s2"}
    planted = [e for e in events if e.event_type == "seed.planted"]
    assert planted[0].payload["seed_id"] == "s1"
    assert planted[0].payload["type"] == "decision-needed"


def test_escalation_after_half_life(seeds, clock, events):
    seed = plant_decision(seeds)

    clock.advance(minutes=59)
    assert seeds.check_escalation() == []

    clock.advance(minutes=6)
    escalated = seeds.check_escalation()

    assert escalated == [seed]
    assert seed.escalated is True
    assert seed.zone == Zone.RED
    event = [e for e in events if e.event_type == "seed.escalated"][0]
    assert event.payload["remaining_minutes"] == 55


def test_escalation_is_idempotent(seeds, clock, events):
    plant_decision(seeds)
    clock.advance(minutes=65)

    seeds.check_escalation()
    assert seeds.check_escalation() == []
    assert len([e for e in events if e.event_type == "seed.escalated"]) == 1


def test_harvest_records_outcome_and_duration(seeds, clock, events):
    seed = plant_decision(seeds)
    clock.advance(minutes=30)

    harvested = seeds.harvest(seed.id, {"action": "replied", "result": "approved"})

    assert harvested.status == SeedStatus.HARVESTED
    assert harvested.harvested_at == clock.now
    assert harvested.outcome == SeedOutcome(action="replied", result="approved")
    assert events[-1].event_type == "seed.harvested"
    assert events[-1].payload["duration_seconds"] == 1800


def test_harvest_unknown_seed_returns_none(seeds):
    assert seeds.harvest("s404") is None


def test_terminal_seeds_cannot_be_harvested_again(seeds):
    seed = plant_decision(seeds)
    seeds.harvest(seed.id)

    with pytest.raises(SeedTransitionError):
        seeds.harvest(seed.id)


def test_expired_seeds_are_terminal(seeds, clock, events):
    seed = plant_decision(seeds)
    clock.advance(hours=2)

    expired = seeds.expire_overdue()

    assert expired == [seed]
    assert seed.status == SeedStatus.EXPIRED
    assert [e.event_type for e in events].count("seed.expired") == 1
    assert seeds.check_escalation() == []
    with pytest.raises(SeedTransitionError):
        seeds.harvest(seed.id)


def test_active_seeds_red_first_then_soonest(seeds, clock):
    email = make_email("Catch up")
    slow = seeds.plant(email, SeedType.RELATIONSHIP_BUILD, make_classification(email))
    soon = seeds.plant(email, SeedType.FOLLOW_UP, make_classification(email))
    red = seeds.plant(email, SeedType.OPPORTUNITY, make_classification(email, zone=Zone.RED))

    assert seeds.get_active() == [red, soon, slow]


def test_stats(seeds, clock):
    first = plant_decision(seeds)
    plant_decision(seeds)
    email = make_email("Catch up")
    seeds.plant(email, SeedType.RELATIONSHIP_BUILD, make_classification(email))
    seeds.harvest(first.id)
    clock.advance(minutes=90)
    seeds.check_escalation()

    stats = seeds.stats()

    assert stats.total == 3
    assert stats.active == 2
    assert stats.harvested == 1
    assert stats.expired == 0
    assert stats.escalated == 1
    assert stats.by_type == {"decision-needed": 2, "relationship-build": 1}


def test_load_continues_id_sequence(bus, store, clock):
    first = SeedManager(bus, store=store, clock=clock)
    plant_decision(first)
    plant_decision(first)

    restarted = SeedManager(bus, store=store, clock=clock)
    assert restarted.load(store.load_seeds()) == 2

    assert plant_decision(restarted).id == "s3"
    assert restarted.get("s1") is not None
