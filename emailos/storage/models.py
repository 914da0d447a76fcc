"""
Domain models (Pydantic v2) for the triage core.

Emails, signals, classifications and insights are frozen once built. Seeds and
threads are the two mutable aggregates: seeds validate on every assignment so
a lifecycle step can never leave one in an impossible state, threads grow as
messages arrive.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RED_MIN_SCORE = 75
YELLOW_MIN_SCORE = 45


class Zone(str, Enum):
    """Urgency tier of an email or seed."""

    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"

    @classmethod
    def from_score(cls, score: float) -> Zone:
        if score >= RED_MIN_SCORE:
            return cls.RED
        if score >= YELLOW_MIN_SCORE:
            return cls.YELLOW
        return cls.GREEN

    @property
    def canonical_score(self) -> int:
        return _CANONICAL_SCORES[self]


_CANONICAL_SCORES = {Zone.RED: 85, Zone.YELLOW: 60, Zone.GREEN: 30}


class Method(str, Enum):
    KEYWORD = "keyword"
    LLM = "llm"
    FALLBACK = "fallback"


class UrgencyLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SeedType(str, Enum):
    DECISION_NEEDED = "decision-needed"
    OPPORTUNITY = "opportunity"
    FOLLOW_UP = "follow-up"
    RELATIONSHIP_BUILD = "relationship-build"


class SeedStatus(str, Enum):
    PLANTED = "planted"
    HARVESTED = "harvested"
    EXPIRED = "expired"


class Trajectory(str, Enum):
    NEW = "new"
    HEATING = "heating"
    COOLING = "cooling"
    STEADY = "steady"


class InsightType(str, Enum):
    VELOCITY_SPIKE = "velocity-spike"
    HOT_THREAD = "hot-thread"
    MULTI_PARTY = "multi-party"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# Email
# ============================================================================


class EmailAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    email: str = ""

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>" if self.name else self.email


class Email(BaseModel):
    """Normalized mailbox message. Missing fields default to empty values."""

    model_config = ConfigDict(frozen=True)

    id: str
    thread_id: str = ""
    sender: EmailAddress | None = None
    to: EmailAddress | None = None
    subject: str = ""
    snippet: str = ""
    body: str = ""
    label_ids: tuple[str, ...] = ()
    is_important: bool = False
    is_starred: bool = False
    is_unread: bool = False
    in_reply_to: str | None = None
    date: datetime | None = None

    @field_validator("thread_id", "subject", "snippet", "body", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("label_ids", mode="before")
    @classmethod
    def _none_to_no_labels(cls, value: Any) -> Any:
        return () if value is None else value

    @field_validator("date")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def sender_email(self) -> str:
        return self.sender.email if self.sender else ""

    @property
    def sender_name(self) -> str:
        return self.sender.name if self.sender else ""


# ============================================================================
# Signals (closed tagged union on ``type``)
# ============================================================================


class _SignalBase(BaseModel):
    model_config = ConfigDict(frozen=True)


class VipPrecisionSignal(_SignalBase):
    type: Literal["vip-precision"] = "vip-precision"
    zone: Zone
    rule: str


class VipSenderSignal(_SignalBase):
    type: Literal["vip-sender"] = "vip-sender"
    email: str = ""


class NewsletterSignal(_SignalBase):
    type: Literal["newsletter"] = "newsletter"
    source: Literal["domain", "keyword"]
    match: str


class SeasonalGreetingSignal(_SignalBase):
    type: Literal["seasonal-greeting"] = "seasonal-greeting"
    keyword: str


class AutoNotificationSignal(_SignalBase):
    type: Literal["auto-notification"] = "auto-notification"
    keyword: str


class MarketingSignal(_SignalBase):
    type: Literal["marketing"] = "marketing"
    keyword: str


class DuplicateSignal(_SignalBase):
    type: Literal["duplicate"] = "duplicate"
    count: int


class ActionRequiredSignal(_SignalBase):
    type: Literal["action-required"] = "action-required"
    keyword: str


class UrgencySignal(_SignalBase):
    type: Literal["urgency"] = "urgency"
    level: UrgencyLevel
    keyword: str


class GmailImportantSignal(_SignalBase):
    type: Literal["gmail-important"] = "gmail-important"


class GmailStarredSignal(_SignalBase):
    type: Literal["gmail-starred"] = "gmail-starred"


class ThreadReplySignal(_SignalBase):
    type: Literal["thread-reply"] = "thread-reply"


class FrequentSenderSignal(_SignalBase):
    type: Literal["frequent-sender"] = "frequent-sender"
    count: int


class LlmSignal(_SignalBase):
    type: Literal["llm"] = "llm"
    label: str


Signal = Annotated[
    Union[
        VipPrecisionSignal,
        VipSenderSignal,
        NewsletterSignal,
        SeasonalGreetingSignal,
        AutoNotificationSignal,
        MarketingSignal,
        DuplicateSignal,
        ActionRequiredSignal,
        UrgencySignal,
        GmailImportantSignal,
        GmailStarredSignal,
        ThreadReplySignal,
        FrequentSenderSignal,
        LlmSignal,
    ],
    Field(discriminator="type"),
]

NEGATIVE_SIGNAL_TYPES = frozenset(
    {"newsletter", "seasonal-greeting", "auto-notification", "marketing", "duplicate"}
)


class SignalDetection(BaseModel):
    """Detector output: the signals plus an explicit forced zone (or None)."""

    model_config = ConfigDict(frozen=True)

    forced_zone: Zone | None = None
    signals: tuple[Signal, ...] = ()


# ============================================================================
# Classification
# ============================================================================


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    email_id: str
    thread_id: str = ""
    zone: Zone
    score: int = Field(ge=0, le=100)
    confidence: float = Field(ge=0.0, le=1.0)
    signals: tuple[Signal, ...] = ()
    reasoning: str = ""
    method: Method
    forced: bool = False
    timestamp: datetime

    @model_validator(mode="after")
    def _zone_matches_score(self) -> Classification:
        if not self.forced and Zone.from_score(self.score) != self.zone:
            raise ValueError(f"score {self.score} does not map to zone {self.zone.value}")
        return self

    def has_signal(self, signal_type: str) -> bool:
        return any(s.type == signal_type for s in self.signals)

    def has_urgency(self, level: UrgencyLevel) -> bool:
        return any(isinstance(s, UrgencySignal) and s.level == level for s in self.signals)


# ============================================================================
# Seeds
# ============================================================================


class SeedOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: str = ""
    result: str = ""
    notes: str = ""


class Seed(BaseModel):
    """Typed follow-up obligation. Validated on every assignment."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    type: SeedType
    status: SeedStatus = SeedStatus.PLANTED
    email_id: str
    thread_id: str = ""
    source_from: str = ""
    source_subject: str = ""
    zone: Zone
    score: int = 0
    shelf_life: str
    planted_at: datetime
    expires_at: datetime
    escalated: bool = False
    harvested_at: datetime | None = None
    outcome: SeedOutcome | None = None

    @model_validator(mode="after")
    def _check_lifecycle(self) -> Seed:
        if self.expires_at <= self.planted_at:
            raise ValueError("expires_at must be after planted_at")
        if self.status == SeedStatus.HARVESTED and self.harvested_at is None:
            raise ValueError("harvested seeds need harvested_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status != SeedStatus.PLANTED


class SeedStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    active: int = 0
    harvested: int = 0
    expired: int = 0
    escalated: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)


# ============================================================================
# Threads and insights
# ============================================================================


class ThreadMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sender: str = ""
    zone: Zone
    date: datetime


class Thread(BaseModel):
    thread_id: str
    subject: str = ""
    participants: list[str] = Field(default_factory=list)
    messages: list[ThreadMessage] = Field(default_factory=list)
    velocity: float = 0.0
    temperature: int = 0
    trajectory: Trajectory = Trajectory.NEW
    first_message_at: datetime | None = None
    last_message_at: datetime | None = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def zones(self) -> list[Zone]:
        return [m.zone for m in self.messages]


class Insight(BaseModel):
    model_config = ConfigDict(frozen=True)

    thread_id: str
    type: InsightType
    message: str
    severity: Severity
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# ============================================================================
# Mirror
# ============================================================================


class Feedback(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    message: str
    actionable: bool = True
    proposal: dict[str, Any] | None = None


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    priority: Literal["high", "positive", "warning"]
    message: str
    actionable: bool = True
    feedback_type: str | None = None


class Evolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    cycle: int
    timestamp: datetime
    feedback_patterns: dict[str, int] = Field(default_factory=dict)
    recommendations: tuple[Recommendation, ...] = ()


class Review(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent: Literal["classify", "seed"]
    cycle_number: int
    sample_size: int = 0
    timestamp: datetime
    scores: dict[str, Any] = Field(default_factory=dict)
    feedback: tuple[Feedback, ...] = ()
    evolution: Evolution | None = None
