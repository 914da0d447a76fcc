"""
Signal detection for zone classification.

Turns one normalized email into an ordered tuple of typed signals. The only
state is owned by the detector instance: sender and subject frequency
counters, the explicit VIP set and per-category tallies of negative signals.
Two detectors never share counters.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from emailos.classification.keywords import (
    ACTION_REQUIRED_KEYWORDS,
    AUTO_NOTIFICATION_KEYWORDS,
    KNOWN_NEWSLETTER_DOMAINS,
    MARKETING_KEYWORDS,
    NEWSLETTER_KEYWORDS,
    SEASONAL_GREETING_KEYWORDS,
    URGENCY_KEYWORDS,
    VIP_DOMAIN_PATTERNS,
    VIP_PRECISION_RULES,
    PrecisionRule,
)
from emailos.config import FREQUENT_SENDER_MIN
from emailos.observability.logging import get_logger
from emailos.storage.models import (
    ActionRequiredSignal,
    AutoNotificationSignal,
    DuplicateSignal,
    Email,
    FrequentSenderSignal,
    GmailImportantSignal,
    GmailStarredSignal,
    MarketingSignal,
    NewsletterSignal,
    SeasonalGreetingSignal,
    Signal,
    SignalDetection,
    ThreadReplySignal,
    UrgencySignal,
    VipPrecisionSignal,
    VipSenderSignal,
)
from emailos.utils.email import extract_domain

logger = get_logger(__name__)

DEDUP_SUBJECT_CHARS = 50


def _first_match(text: str, keywords: Iterable[str]) -> str | None:
    for keyword in keywords:
        if keyword.lower() in text:
            return keyword
    return None


class SignalDetector:
    """Extract weighted signals from an email, in priority order."""

    def __init__(
        self,
        vip_senders: Iterable[str] = (),
        precision_rules: tuple[PrecisionRule, ...] = VIP_PRECISION_RULES,
        frequent_sender_min: int = FREQUENT_SENDER_MIN,
    ) -> None:
        self.vip_senders: set[str] = set(vip_senders)
        self.precision_rules = precision_rules
        self.frequent_sender_min = frequent_sender_min
        self.sender_history: Counter[str] = Counter()
        self.subject_history: Counter[str] = Counter()
        self._negative_stats: Counter[str] = Counter()

    def add_vip(self, address: str) -> None:
        self.vip_senders.add(address)

    def negative_stats(self) -> dict[str, int]:
        return dict(self._negative_stats)

    def detect(self, email: Email) -> SignalDetection:
        """
        Detect signals for one email.

        A precision rule with a matching subject short-circuits everything
        else and returns a forced zone.

        Side Effects:
            - Increments the sender and subject counters (unless forced)
            - Increments negative-signal tallies
        """
        text = f"{email.subject} {email.snippet}".lower()
        subject = email.subject.lower()
        sender = email.sender_email
        domain = extract_domain(sender)
        signals: list[Signal] = []

        forced = self._apply_precision_rules(domain, subject, sender, signals)
        if forced is not None:
            return SignalDetection(forced_zone=forced.zone, signals=tuple(signals))

        self._detect_negative(text, domain, signals)
        self._detect_duplicate(domain, subject, signals)
        self._detect_positive(email, text, sender, domain, signals)

        return SignalDetection(signals=tuple(signals))

    def _apply_precision_rules(
        self, domain: str, subject: str, sender: str, signals: list[Signal]
    ) -> PrecisionRule | None:
        """Return the forcing rule, or None after (maybe) tagging a VIP sender."""
        if not domain:
            return None
        for rule in self.precision_rules:
            if rule.domain_contains not in domain:
                continue
            if rule.subject_contains is None:
                signals.append(VipSenderSignal(email=sender))
                return None
            if rule.subject_contains.lower() in subject and rule.zone is not None:
                signals.append(VipPrecisionSignal(zone=rule.zone, rule=rule.label))
                self._negative_stats["vip_override"] += 1
                return rule
        return None

    def _detect_negative(self, text: str, domain: str, signals: list[Signal]) -> None:
        newsletter_domain = domain and next(
            (d for d in KNOWN_NEWSLETTER_DOMAINS if d in domain), None
        )
        if newsletter_domain:
            signals.append(NewsletterSignal(source="domain", match=domain))
            self._negative_stats["newsletter"] += 1
        elif keyword := _first_match(text, NEWSLETTER_KEYWORDS):
            signals.append(NewsletterSignal(source="keyword", match=keyword))
            self._negative_stats["newsletter"] += 1

        if keyword := _first_match(text, SEASONAL_GREETING_KEYWORDS):
            signals.append(SeasonalGreetingSignal(keyword=keyword))
            self._negative_stats["seasonal"] += 1

        if keyword := _first_match(text, AUTO_NOTIFICATION_KEYWORDS):
            signals.append(AutoNotificationSignal(keyword=keyword))
            self._negative_stats["auto_notification"] += 1

        if keyword := _first_match(text, MARKETING_KEYWORDS):
            signals.append(MarketingSignal(keyword=keyword))
            self._negative_stats["marketing"] += 1

    def _detect_duplicate(self, domain: str, subject: str, signals: list[Signal]) -> None:
        key = f"{domain}::{subject[:DEDUP_SUBJECT_CHARS]}"
        self.subject_history[key] += 1
        seen = self.subject_history[key]
        if seen > 1:
            signals.append(DuplicateSignal(count=seen))
            self._negative_stats["duplicate"] += 1

    def _detect_positive(
        self, email: Email, text: str, sender: str, domain: str, signals: list[Signal]
    ) -> None:
        if keyword := _first_match(text, ACTION_REQUIRED_KEYWORDS):
            signals.append(ActionRequiredSignal(keyword=keyword))

        for level, keywords in URGENCY_KEYWORDS.items():
            for keyword in keywords:
                if keyword.lower() in text:
                    signals.append(UrgencySignal(level=level, keyword=keyword))

        if sender in self.vip_senders or (
            domain and any(pattern in domain for pattern in VIP_DOMAIN_PATTERNS)
        ):
            signals.append(VipSenderSignal(email=sender))

        if email.is_important:
            signals.append(GmailImportantSignal())
        if email.is_starred:
            signals.append(GmailStarredSignal())
        if email.in_reply_to:
            signals.append(ThreadReplySignal())

        # Count is read before this email is added.
        seen_before = self.sender_history[sender]
        self.sender_history[sender] += 1
        if seen_before > self.frequent_sender_min:
            signals.append(FrequentSenderSignal(count=seen_before))
