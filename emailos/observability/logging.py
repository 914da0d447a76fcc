"""Process-wide logging setup.

Every module asks for its logger through ``get_logger(__name__)``; the first
call attaches one stream handler to the root logger so that log lines from the
bus, classifier and orchestrator share a single format.
"""

from __future__ import annotations

import logging
import os
from typing import Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_LEVEL_OVERRIDE: int | None = None


def _resolve_level() -> int:
    if _LEVEL_OVERRIDE is not None:
        return _LEVEL_OVERRIDE
    level_name = os.getenv("EMAILOS_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger configured with a single stream handler."""
    global _HANDLER_ATTACHED

    level = _resolve_level()
    root = logging.getLogger()

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        _HANDLER_ATTACHED = True
    root.setLevel(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


def set_level(level: int) -> None:
    """Override the env-derived level for every emailos logger (CLI ``--verbose``)."""
    global _LEVEL_OVERRIDE

    _LEVEL_OVERRIDE = level
    logging.getLogger().setLevel(level)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("emailos"):
            logging.getLogger(name).setLevel(level)
