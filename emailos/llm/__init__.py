"""LLM providers and the zone-classification prompt."""

from __future__ import annotations

from emailos.llm.provider import (
    ChatMessage,
    ChatResult,
    LLMConfigurationError,
    LLMError,
    LLMProvider,
    create_provider_from_env,
)

__all__ = [
    "ChatMessage",
    "ChatResult",
    "LLMConfigurationError",
    "LLMError",
    "LLMProvider",
    "create_provider_from_env",
]
