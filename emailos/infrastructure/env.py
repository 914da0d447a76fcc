"""
Environment variable loader for email-os.

Entry points call ensure_env_loaded() once before reading provider settings.

Side Effects:
    - Loads .env file from the project root (or the working directory)

Usage:
    from emailos.infrastructure.env import ensure_env_loaded, get_required_env

    ensure_env_loaded()
    api_key = get_required_env("OPENAI_API_KEY")
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

_ENV_LOADED = False


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing or invalid."""


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Ensure .env file is loaded exactly once.

    Args:
        env_path: Optional path to .env file. If None, walks up from this package.

    Side Effects:
        - Loads environment variables from .env file (existing vars win)
        - Sets module-level flag to prevent double-loading
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    if env_path is None:
        current = Path(__file__).parent
        while current != current.parent:
            candidate = current / ".env"
            if candidate.exists():
                env_path = candidate
                break
            current = current.parent

    if env_path and env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()
    _ENV_LOADED = True


def get_required_env(key: str, error_msg: str | None = None) -> str:
    """
    Get required environment variable or fail with a clear error.

    Raises:
        ConfigurationError: If the variable is unset or empty
    """
    ensure_env_loaded()
    value = os.getenv(key)
    if not value:
        raise ConfigurationError(error_msg or f"{key} not found in environment (add it to .env)")
    return value


def get_optional_env(key: str, default: str = "") -> str:
    """Get optional environment variable with default value."""
    ensure_env_loaded()
    return os.getenv(key, default)
