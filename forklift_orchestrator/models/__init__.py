"""
Data models for migration requests and workflow state.

Modules:
- request: MigrationRequest and its parts (source, destination, mappings)
- phase: Phase and its derivation from status conditions
- workflow: WorkflowObject, stages and the WorkflowState of a run
"""

from forklift_orchestrator.models.request import (
    Credentials,
    DestinationProvider,
    EndpointRef,
    MigrationRequest,
    NetworkMapping,
    SourceProvider,
    StorageMapping,
    VMRef,
)
from forklift_orchestrator.models.workflow import (
    STAGE_ORDER,
    Kind,
    Outcome,
    Phase,
    Stage,
    StageRecord,
    StageStatus,
    WorkflowObject,
    WorkflowState,
)

__all__ = [
    "Credentials",
    "DestinationProvider",
    "EndpointRef",
    "Kind",
    "MigrationRequest",
    "NetworkMapping",
    "Outcome",
    "Phase",
    "STAGE_ORDER",
    "SourceProvider",
    "Stage",
    "StageRecord",
    "StageStatus",
    "StorageMapping",
    "VMRef",
    "WorkflowObject",
    "WorkflowState",
]
