"""
LLM providers for the zone classifier.

One operation, ``chat(messages, temperature, max_tokens, json)``, with two
backends:
  1. Gemini through the Vertex AI SDK (GOOGLE_CLOUD_PROJECT + service account)
  2. OpenAI-compatible chat completions over HTTP (OPENAI_API_KEY)

``create_provider_from_env`` picks one from LLM_PROVIDER. Leaving it unset (or
"none") runs the classifier in keyword-only mode; naming a provider without
its credentials is a startup error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import requests
from google.api_core import exceptions as google_exceptions

from emailos.config import (
    GEMINI_LOCATION,
    GEMINI_MODEL,
    LLM_MAX_TOKENS,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    OPENAI_BASE_URL,
    OPENAI_MODEL,
)
from emailos.infrastructure.env import ConfigurationError, get_optional_env
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter

logger = get_logger(__name__)

_PLACEHOLDER_KEYS = {"your-openai-api-key", "changeme"}
_RETRYABLE_GOOGLE_ERRORS = (
    google_exceptions.ResourceExhausted,
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.DeadlineExceeded,
)


class LLMError(RuntimeError):
    """Raised when an LLM call fails (network, API, empty or unusable reply)."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        raw: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.raw = raw
        self.retryable = retryable


class LLMConfigurationError(ConfigurationError):
    """Raised at startup when the selected provider cannot be configured."""


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class ChatResult:
    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)


class LLMProvider(Protocol):
    name: str

    def chat(
        self,
        messages: list[ChatMessage],
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = LLM_MAX_TOKENS,
        json: bool = False,
    ) -> ChatResult: ...


class GeminiProvider:
    """Gemini via Vertex AI. Models are built lazily, one per system prompt."""

    def __init__(self, project: str, location: str = GEMINI_LOCATION, model: str = GEMINI_MODEL):
        self.project = project
        self.location = location
        self.model = model
        self.name = f"gemini/{model}"
        self._initialized = False
        self._models: dict[str, Any] = {}

    def _get_model(self, system_prompt: str) -> Any:
        """Lazy-load the Vertex AI SDK and a model bound to ``system_prompt``."""
        if system_prompt not in self._models:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            if not self._initialized:
                vertexai.init(project=self.project, location=self.location)
                self._initialized = True
                logger.info(
                    "Initialized Gemini (Vertex AI): project=%s, location=%s, model=%s",
                    self.project,
                    self.location,
                    self.model,
                )

            self._models[system_prompt] = GenerativeModel(
                self.model,
                system_instruction=[system_prompt] if system_prompt else None,
            )
        return self._models[system_prompt]

    def chat(
        self,
        messages: list[ChatMessage],
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = LLM_MAX_TOKENS,
        json: bool = False,
    ) -> ChatResult:
        """
        Side Effects:
            - Calls the Vertex AI generate_content API
        """
        from vertexai.generative_models import Content, GenerationConfig, Part

        system_prompt = "\n\n".join(m.content for m in messages if m.role == "system")
        contents = [
            Content(
                role="model" if m.role == "assistant" else "user",
                parts=[Part.from_text(m.content)],
            )
            for m in messages
            if m.role != "system"
        ]
        config_kwargs: dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if json:
            config_kwargs["response_mime_type"] = "application/json"

        try:
            response = self._get_model(system_prompt).generate_content(
                contents, generation_config=GenerationConfig(**config_kwargs)
            )
            content = response.text
        except _RETRYABLE_GOOGLE_ERRORS as e:
            raise LLMError(f"Gemini API error: {e}", provider=self.name, retryable=True) from e
        except google_exceptions.GoogleAPIError as e:
            raise LLMError(f"Gemini API error: {e}", provider=self.name) from e
        except ValueError as e:
            # response.text raises ValueError when the candidate was blocked or empty
            raise LLMError(f"Empty response from Gemini: {e}", provider=self.name) from e

        if not content:
            raise LLMError("Empty response from Gemini", provider=self.name)

        usage = getattr(response, "usage_metadata", None)
        return ChatResult(
            content=content,
            model=self.model,
            usage={
                "prompt_tokens": getattr(usage, "prompt_token_count", 0) or 0,
                "completion_tokens": getattr(usage, "candidates_token_count", 0) or 0,
            },
        )


class OpenAIProvider:
    """OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = OPENAI_MODEL,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = LLM_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key or api_key in _PLACEHOLDER_KEYS:
            raise LLMConfigurationError("OPENAI_API_KEY not configured")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.name = f"openai/{model}"
        self._session = session or requests.Session()

    def chat(
        self,
        messages: list[ChatMessage],
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = LLM_MAX_TOKENS,
        json: bool = False,
    ) -> ChatResult:
        """
        Side Effects:
            - POSTs to {base_url}/chat/completions
        """
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json:
            body["response_format"] = {"type": "json_object"}

        try:
            response = self._session.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise LLMError(
                f"OpenAI request failed: {e}", provider=self.name, retryable=True
            ) from e

        if response.status_code != 200:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise LLMError(
                f"OpenAI API error ({response.status_code}): {response.text[:200]}",
                provider=self.name,
                retryable=retryable,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError(
                f"Malformed OpenAI response: {e}", provider=self.name, raw=response.text[:500]
            ) from e

        if not content:
            raise LLMError("Empty response from OpenAI", provider=self.name)

        usage = data.get("usage") or {}
        return ChatResult(
            content=content,
            model=self.model,
            usage={
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
            },
        )


def create_provider_from_env() -> LLMProvider | None:
    """
    Build the provider named by LLM_PROVIDER.

    Returns:
        The provider, or None for keyword-only mode

    Raises:
        LLMConfigurationError: Unknown provider or missing credentials
    """
    provider = get_optional_env("LLM_PROVIDER").strip().lower()
    model = get_optional_env("LLM_MODEL").strip()

    if provider in ("", "none", "off"):
        logger.info("LLM_PROVIDER not set, classifier runs keyword-only")
        counter("llm.disabled")
        return None

    if provider == "gemini":
        project = get_optional_env("GOOGLE_CLOUD_PROJECT").strip()
        if not project:
            raise LLMConfigurationError("LLM_PROVIDER=gemini requires GOOGLE_CLOUD_PROJECT")
        return GeminiProvider(project=project, model=model or GEMINI_MODEL)

    if provider == "openai":
        return OpenAIProvider(
            api_key=get_optional_env("OPENAI_API_KEY").strip(),
            model=model or OPENAI_MODEL,
        )

    raise LLMConfigurationError(f"Unknown LLM provider: {provider!r}. Use 'gemini' or 'openai'.")
