"""
Phases of Forklift resources.

Forklift controllers report progress as a list of conditions under
status.conditions, each with a type, a "True"/"False" status, a category
(Required, Advisory, Critical, Error, Warn) and a message. This module maps that
list onto a single Phase.
"""

from enum import Enum
from typing import Any

FAILED_TYPES = ("Failed", "Canceled")
RUNNING_TYPES = ("Executing", "Running")
CRITICAL_CATEGORY = "Critical"


class Phase(Enum):
    """
    Observed phase of a WorkflowObject, derived from its status conditions.

    Phases:
        PENDING: No status yet, or controllers still validating
        READY: Resource validated and usable by dependent resources
        RUNNING: Execution in progress (Plan/Migration)
        SUCCEEDED: Execution finished successfully (Plan/Migration)
        FAILED: Controllers reported a critical or failed condition
    """

    PENDING = "Pending"
    READY = "Ready"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    def __str__(self) -> str:
        return self.value


def true_conditions(status: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not status:
        return []
    return [c for c in status.get("conditions") or [] if str(c.get("status")) == "True"]


def derive_phase(status: dict[str, Any] | None) -> Phase:
    """
    Derive the phase of an object from its status conditions.

    Rules are applied in order, first match wins:
    failed/canceled, succeeded, critical category, executing/running, ready.

    Args:
        status: Raw status block written by the controllers (may be None)

    Returns:
        Derived Phase (PENDING when nothing conclusive is reported)

    Example:
        >>> derive_phase({"conditions": [{"type": "Ready", "status": "True"}]})
        <Phase.READY: 'Ready'>
    """
    conditions = true_conditions(status)
    types = {c.get("type") for c in conditions}

    if types.intersection(FAILED_TYPES):
        return Phase.FAILED
    if "Succeeded" in types:
        return Phase.SUCCEEDED
    if any(c.get("category") == CRITICAL_CATEGORY for c in conditions):
        return Phase.FAILED
    if types.intersection(RUNNING_TYPES):
        return Phase.RUNNING
    if "Ready" in types:
        return Phase.READY
    return Phase.PENDING
