"""Tests for SignalDetector: precision rules, negative/positive signals, counters."""

from __future__ import annotations

from emailos.classification.keywords import PrecisionRule
from emailos.classification.signals import SignalDetector
from emailos.storage.models import (
    DuplicateSignal,
    FrequentSenderSignal,
    NewsletterSignal,
    UrgencyLevel,
    UrgencySignal,
    VipPrecisionSignal,
    Zone,
)
from tests.fixtures.fakes import make_email


def types(detection):
    return [s.type for s in detection.signals]


def test_action_and_urgency_signals():
    detector = SignalDetector()
    detection = detector.detect(
        make_email("URGENT: approval needed 簽核", sender="boss@example.com")
    )

    assert detection.forced_zone is None
    assert types(detection) == ["action-required", "urgency"]
    urgency = detection.signals[1]
    assert isinstance(urgency, UrgencySignal)
    assert urgency.level == UrgencyLevel.HIGH


def test_newsletter_domain_and_seasonal_greeting():
    detector = SignalDetector()
    detection = detector.detect(make_email("新年快樂 特別優惠", sender="news@edm.taitra.org.tw"))

    assert types(detection) == ["newsletter", "seasonal-greeting"]
    newsletter = detection.signals[0]
    assert isinstance(newsletter, NewsletterSignal)
    assert newsletter.source == "domain"
    assert detector.negative_stats() == {"newsletter": 1, "seasonal": 1}


def test_one_signal_per_negative_category():
    detector = SignalDetector()
    detection = detector.detect(make_email("newsletter digest: unsubscribe anytime"))

    assert types(detection).count("newsletter") == 1
    assert detection.signals[0].source == "keyword"
    assert detection.signals[0].match == "newsletter"


def test_precision_rule_forces_zone_and_short_circuits():
    detector = SignalDetector()
    email = make_email("Security alert for your account", sender="no-reply@accounts.google.com")

    detection = detector.detect(email)

    assert detection.forced_zone == Zone.RED
    assert len(detection.signals) == 1
    assert isinstance(detection.signals[0], VipPrecisionSignal)
    assert detection.signals[0].rule == "google.com+security"
    # Forced emails don't feed the frequency counters
    assert sum(detector.sender_history.values()) == 0
    assert sum(detector.subject_history.values()) == 0


def test_subject_rule_that_does_not_match_is_skipped():
    rules = (
        PrecisionRule("bank.example", "statement", Zone.YELLOW),
        PrecisionRule("bank.example", None, None),
    )
    detector = SignalDetector(precision_rules=rules)

    detection = detector.detect(make_email("Lunch?", sender="ceo@bank.example"))

    assert detection.forced_zone is None
    assert "vip-sender" in types(detection)


def test_domain_only_rule_marks_vip_without_forcing():
    detector = SignalDetector()
    detection = detector.detect(make_email("公文", sender="clerk@mol.gov.tw"))

    assert detection.forced_zone is None
    assert "vip-sender" in types(detection)


def test_explicit_vip_sender():
    detector = SignalDetector(vip_senders={"partner@acme.test"})
    detector.add_vip("cfo@acme.test")

    assert "vip-sender" in types(detector.detect(make_email("hi", sender="cfo@acme.test")))
    assert "vip-sender" in types(detector.detect(make_email("hi", sender="partner@acme.test")))
    assert "vip-sender" not in types(detector.detect(make_email("hi", sender="x@acme.test")))


def test_duplicate_subjects_from_same_domain():
    detector = SignalDetector()
    detector.detect(make_email("Weekly sync", sender="a@corp.test"))
    second = detector.detect(make_email("Weekly sync", sender="b@corp.test"))
    third = detector.detect(make_email("Weekly sync", sender="c@corp.test"))
    other_domain = detector.detect(make_email("Weekly sync", sender="a@other.test"))

    assert [s.count for s in second.signals if isinstance(s, DuplicateSignal)] == [2]
    assert [s.count for s in third.signals if isinstance(s, DuplicateSignal)] == [3]
    assert "duplicate" not in types(other_domain)


def test_gmail_flags_and_thread_reply():
    detector = SignalDetector()
    detection = detector.detect(
        make_email("Re: plan", is_important=True, is_starred=True, in_reply_to="<abc@mail>")
    )

    assert types(detection) == ["gmail-important", "gmail-starred", "thread-reply"]


def test_frequent_sender_counts_prior_messages_only():
    detector = SignalDetector(frequent_sender_min=2)
    results = [
        detector.detect(make_email(f"note {i}", sender="pal@friends.test")) for i in range(4)
    ]

    frequent = [
        [s.count for s in r.signals if isinstance(s, FrequentSenderSignal)] for r in results
    ]
    assert frequent == [[], [], [], [3]]


def test_detectors_do_not_share_counters():
    first = SignalDetector()
    second = SignalDetector()
    first.detect(make_email("Same subject", sender="a@corp.test"))
    first.detect(make_email("Same subject", sender="a@corp.test"))

    detection = second.detect(make_email("Same subject", sender="a@corp.test"))

    assert "duplicate" not in types(detection)


def test_missing_sender_is_tolerated():
    detector = SignalDetector()
    email = make_email("hello").model_copy(update={"sender": None})

    detection = detector.detect(email)

    assert detection.forced_zone is None
    assert detection.signals == ()
