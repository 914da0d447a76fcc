"""
Zone-classification prompt and reply schema.

The classifier sends exactly one system message (the rubric below) and one
user message describing the email, and expects a JSON object
``{zone, confidence, reasoning, signals}`` back.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from emailos.observability.logging import get_logger
from emailos.storage.models import Email, Zone

logger = get_logger(__name__)

DEFAULT_LLM_CONFIDENCE = 0.8

ZONE_SYSTEM_PROMPT = """You are an email triage assistant for a Taiwanese business executive.
Classify this email into exactly one zone based on how urgently it needs attention:

RED - Requires action within 2 hours:
- Decisions needed, hard deadlines, security alerts
- Government/legal (勞保、健保、稅務、法規)
- Financial transactions needing approval (轉帳待放行)
- System security warnings, password changes
- Messages from VIP contacts about urgent matters

YELLOW - Handle today:
- HR requests needing approval (請假簽核、考勤)
- Business partner communications requiring response
- Meeting invitations and schedule changes
- Follow-ups on active projects
- Account statements and invoices (對帳單、電子發票)

GREEN - Batch weekly:
- Marketing newsletters and promotions
- Event invitations (講座、研討會)
- Automated system notifications (非緊急)
- Holiday greetings (新年快樂、春節祝福)
- Product announcements and advertising
- FYI-only notifications

Respond ONLY with valid JSON, no markdown:
{"zone":"red|yellow|green","confidence":0.85,"reasoning":"one concise line","signals":["signal1","signal2"]}"""

_INJECTION_PATTERNS = [
    (
        r"(?i)(ignore|disregard|forget).*(previous|prior|above).*(instruction|directive|command|prompt)",
        "[REDACTED]",
    ),
    (r"(?i)system\s*:", ""),
    (r"(?i)assistant\s*:", ""),
    (r"(?i)you\s+are\s+now", "[REDACTED]"),
    (r"(?i)new\s+instructions?:", "[REDACTED]"),
]


class LLMSchemaError(ValueError):
    """Raised when the LLM reply is not JSON or doesn't match ZoneReply."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


def sanitize_user_input(text: str, max_length: int = 500) -> str:
    """
    Strip prompt-injection markers from email-controlled text and truncate.

    Side Effects:
        - Logs a warning when a pattern is found
    """
    if not text:
        return ""

    for pattern, replacement in _INJECTION_PATTERNS:
        if re.search(pattern, text):
            logger.warning(
                "Potential prompt injection sanitized: pattern=%s, original_length=%d",
                pattern[:50],
                len(text),
            )
            text = re.sub(pattern, replacement, text)

    return text[:max_length]


def build_user_message(email: Email) -> str:
    """Describe one email for the rubric: sender, subject, preview, labels, flags."""
    name = sanitize_user_input(email.sender_name, max_length=100)
    address = sanitize_user_input(email.sender_email, max_length=200)
    lines = [
        f"From: {name} <{address}>",
        f"Subject: {sanitize_user_input(email.subject, max_length=200) or '(no subject)'}",
        f"Preview: {sanitize_user_input(email.snippet, max_length=500)}",
        f"Labels: {', '.join(email.label_ids)}",
    ]
    if email.is_important:
        lines.append("Gmail: IMPORTANT")
    if email.is_starred:
        lines.append("Gmail: STARRED")
    lines.append("Type: Reply in thread" if email.in_reply_to else "Type: New email")
    return "\n".join(lines)


class ZoneReply(BaseModel):
    """
    Validated LLM reply.

    ``zone`` must be exactly red, yellow or green. A missing or zero
    confidence becomes 0.8; anything else is clamped to [0, 1].
    """

    zone: Zone
    confidence: float = DEFAULT_LLM_CONFIDENCE
    reasoning: str = "LLM classification"
    signals: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if not value or isinstance(value, bool):
            return DEFAULT_LLM_CONFIDENCE
        try:
            number = float(value)
        except (TypeError, ValueError):
            return DEFAULT_LLM_CONFIDENCE
        if math.isnan(number):
            return DEFAULT_LLM_CONFIDENCE
        return min(1.0, max(0.0, number))

    @field_validator("reasoning", mode="before")
    @classmethod
    def _default_reasoning(cls, value: Any) -> Any:
        return value or "LLM classification"

    @field_validator("signals", mode="before")
    @classmethod
    def _signals_as_strings(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item]


def parse_zone_reply(content: str) -> ZoneReply:
    """
    Parse and validate the reply (markdown code fences tolerated).

    Raises:
        LLMSchemaError: Not JSON, not an object, or zone outside red/yellow/green
    """
    text = (content or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LLMSchemaError(f"LLM reply is not JSON: {e}", raw=content) from e

    if not isinstance(data, dict):
        raise LLMSchemaError("LLM reply is not a JSON object", raw=content)

    try:
        return ZoneReply.model_validate(data)
    except ValidationError as e:
        raise LLMSchemaError(f"Invalid zone reply: {e.errors()[0]['msg']}", raw=content) from e
