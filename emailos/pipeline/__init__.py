"""Sync-cycle state machine and orchestrator."""

from __future__ import annotations

from emailos.pipeline.orchestrator import EscalationReport, Orchestrator, SyncReport
from emailos.pipeline.state import TRANSITIONS, State, StateMachine, StateTransition

__all__ = [
    "TRANSITIONS",
    "EscalationReport",
    "Orchestrator",
    "State",
    "StateMachine",
    "StateTransition",
    "SyncReport",
]
