"""Centralized configuration for the email-os triage core.

Typed constants with ``EMAILOS_*`` environment overrides, plus the tunable
policy (shelf lives, review cadence, insight thresholds) loaded from
config/emailos_policy.yaml. Every value has a safe default so the core starts
without any extra configuration.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from emailos.observability.logging import get_logger

logger = get_logger(__name__)


def _load_policy_config() -> dict[str, Any]:
    """
    Load the policy file, trying the env override first.

    Side Effects:
        - Reads config/emailos_policy.yaml from the filesystem
    """
    override = os.getenv("EMAILOS_POLICY_PATH")
    possible_paths = [Path(override)] if override else []
    possible_paths += [
        Path(__file__).parent.parent / "config" / "emailos_policy.yaml",
        Path("config/emailos_policy.yaml"),
    ]

    for config_path in possible_paths:
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
            logger.debug("Loaded policy config from %s", config_path)
            return config

    logger.warning("emailos_policy.yaml not found, using hardcoded defaults")
    return {}


_POLICY = _load_policy_config()
_CLASSIFICATION = _POLICY.get("classification", {})
_SEEDS = _POLICY.get("seeds", {})
_THREADS = _POLICY.get("threads", {})
_MIRROR = _POLICY.get("mirror", {})
_LLM = _POLICY.get("llm", {})

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Storage ---
STORAGE_BACKEND: str = os.getenv("EMAILOS_STORAGE", "sqlite")  # sqlite | memory
DB_PATH: Path = Path(os.getenv("EMAILOS_DB_PATH", "data/emailos.db"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("EMAILOS_DB_CONNECT_TIMEOUT", "30.0"))
DB_RETRY_MAX: int = int(os.getenv("EMAILOS_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("EMAILOS_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("EMAILOS_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("EMAILOS_DB_RETRY_JITTER", "0.1"))

# --- Gmail ---
GMAIL_TOKEN_PATH: Path = Path(os.getenv("EMAILOS_GMAIL_TOKEN", "credentials/token.json"))
GMAIL_DEFAULT_QUERY: str = os.getenv("EMAILOS_GMAIL_QUERY", "is:inbox is:unread")
GMAIL_MAX_RESULTS: int = int(os.getenv("EMAILOS_GMAIL_MAX_RESULTS", "50"))
GMAIL_SEEN_IDS_MAX: int = int(os.getenv("EMAILOS_GMAIL_SEEN_IDS_MAX", "10000"))
GMAIL_SEEN_IDS_TTL_HOURS: float = float(os.getenv("EMAILOS_GMAIL_SEEN_IDS_TTL_HOURS", "168"))
GMAIL_SCOPES: list[str] = ["https://www.googleapis.com/auth/gmail.readonly"]

# --- Event bus ---
BUS_MAX_HISTORY: int = int(os.getenv("EMAILOS_BUS_MAX_HISTORY", "1000"))

# --- Classification ---
CONFIDENCE_THRESHOLD: float = float(_CLASSIFICATION.get("confidence_threshold", 0.8))
FREQUENT_SENDER_MIN: int = int(_CLASSIFICATION.get("frequent_sender_min", 5))
CLASSIFICATION_LOG_SIZE: int = int(_CLASSIFICATION.get("log_size", 500))

# --- LLM ---
GEMINI_MODEL: str = os.getenv("EMAILOS_GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_LOCATION: str = os.getenv("EMAILOS_GEMINI_LOCATION", "us-central1")
OPENAI_MODEL: str = os.getenv("EMAILOS_OPENAI_MODEL", "gpt-4o-mini")
OPENAI_BASE_URL: str = os.getenv("EMAILOS_OPENAI_BASE_URL", "https://api.openai.com/v1")
LLM_TIMEOUT_SECONDS: int = int(os.getenv("EMAILOS_LLM_TIMEOUT", "30"))
LLM_RPM: int = int(os.getenv("EMAILOS_LLM_RPM", str(_LLM.get("requests_per_minute", 15))))
LLM_TEMPERATURE: float = float(_LLM.get("temperature", 0.1))
LLM_MAX_TOKENS: int = int(_LLM.get("max_tokens", 200))
LLM_BREAKER_WINDOW: int = int(_LLM.get("breaker_window", 50))
LLM_BREAKER_THRESHOLD: float = float(_LLM.get("breaker_threshold", 0.5))
LLM_BREAKER_MIN_SAMPLES: int = int(_LLM.get("breaker_min_samples", 10))
LLM_MAX_RETRIES: int = int(_LLM.get("max_retries", 3))

# --- Seeds ---
SEED_SHELF_LIVES: dict[str, str] = {
    "decision-needed": "2h",
    "follow-up": "1d",
    "opportunity": "3d",
    "relationship-build": "7d",
    **_SEEDS.get("shelf_life", {}),
}
SEED_DEFAULT_SHELF_LIFE: str = str(_SEEDS.get("default_shelf_life", "7d"))
SEED_SKIP_GREEN_CONFIDENCE: float = float(_SEEDS.get("skip_green_confidence", 0.7))

# --- Threads ---
INSIGHT_VELOCITY_SPIKE: float = float(_THREADS.get("velocity_spike", 3))
INSIGHT_HOT_TEMPERATURE: float = float(_THREADS.get("hot_temperature", 80))
INSIGHT_MULTI_PARTY: int = int(_THREADS.get("multi_party", 5))
INSIGHT_DEDUPE_HOURS: float = float(_THREADS.get("insight_dedupe_hours", 24))
INSIGHT_CACHE_SIZE: int = int(_THREADS.get("insight_cache_size", 4096))

# --- Mirror ---
REVIEW_CYCLE: int = int(_MIRROR.get("review_cycle", 10))
REVIEW_WINDOW: int = int(_MIRROR.get("review_window", 50))
MIRROR_LOW_CONFIDENCE_RATE: float = float(_MIRROR.get("low_confidence_rate", 0.3))
MIRROR_RED_SHARE: float = float(_MIRROR.get("red_share", 0.5))
MIRROR_GREEN_SHARE: float = float(_MIRROR.get("green_share", 0.7))
MIRROR_ACTIVE_SEEDS_MAX: int = int(_MIRROR.get("active_seeds_max", 20))
MIRROR_ESCALATION_RATE: float = float(_MIRROR.get("escalation_rate", 0.4))
MIRROR_TREND_DELTA: float = float(_MIRROR.get("trend_delta", 0.1))
