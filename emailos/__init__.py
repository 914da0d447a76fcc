"""Email-OS - keyword + LLM email triage with seeds and thread intelligence"""

from __future__ import annotations

__version__ = "0.1.0"


# Lazy imports so lightweight modules don't pull in the Gmail / Vertex AI stacks
def __getattr__(name: str):
    if name == "EventBus":
        from emailos.bus import EventBus
        return EventBus

    if name == "Orchestrator":
        from emailos.pipeline.orchestrator import Orchestrator
        return Orchestrator

    if name in ("ZoneClassifier", "SignalDetector"):
        from emailos.classification import signals, zone_classifier
        if name == "ZoneClassifier":
            return zone_classifier.ZoneClassifier
        return signals.SignalDetector

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "EventBus",
    "Orchestrator",
    "SignalDetector",
    "ZoneClassifier",
]
