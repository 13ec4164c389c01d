"""
Interpretation of Forklift status conditions.

Phases are derived in models.phase; this module decides when a stage has reached
its goal and why it failed.
"""

from typing import Any

from forklift_orchestrator.models.phase import (
    CRITICAL_CATEGORY,
    FAILED_TYPES,
    Phase,
    derive_phase,
    true_conditions,
)
from forklift_orchestrator.models.workflow import Kind, WorkflowObject

__all__ = ["GOAL_PHASES", "derive_phase", "failure_reason", "goal_reached", "has_failed"]

# Phases at which each kind is usable by the next stage.
GOAL_PHASES: dict[Kind, tuple[Phase, ...]] = {
    Kind.PROVIDER: (Phase.READY, Phase.RUNNING, Phase.SUCCEEDED),
    Kind.NETWORK_MAP: (Phase.READY, Phase.RUNNING, Phase.SUCCEEDED),
    Kind.STORAGE_MAP: (Phase.READY, Phase.RUNNING, Phase.SUCCEEDED),
    Kind.PLAN: (Phase.READY, Phase.RUNNING, Phase.SUCCEEDED),
    Kind.MIGRATION: (Phase.SUCCEEDED,),
}


def failure_reason(status: dict[str, Any] | None) -> str | None:
    """Return the message of the condition responsible for a FAILED phase."""
    conditions = true_conditions(status)
    for condition in conditions:
        if condition.get("type") in FAILED_TYPES:
            return condition.get("message") or condition.get("type")
    for condition in conditions:
        if condition.get("category") == CRITICAL_CATEGORY:
            return condition.get("message") or condition.get("type")
    return None


def goal_reached(obj: WorkflowObject) -> bool:
    """True once the object is usable by the next stage."""
    return obj.phase in GOAL_PHASES[obj.kind]


def has_failed(obj: WorkflowObject) -> bool:
    return obj.phase is Phase.FAILED
