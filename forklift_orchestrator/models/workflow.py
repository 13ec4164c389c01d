"""
Workflow objects and run state.

A workflow is the ordered chain of Forklift resources created for one migration
request. Each resource is a WorkflowObject; the progress of the chain is tracked
in a WorkflowState made of append-only StageRecords.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from forklift_orchestrator.models.phase import Phase, derive_phase

FORKLIFT_GROUP = "forklift.konveyor.io"
DEFAULT_API_VERSION = "v1beta1"


class Kind(Enum):
    """
    Forklift custom resource kinds driven by the orchestrator.

    Examples:
        >>> Kind.NETWORK_MAP.value
        'NetworkMap'
        >>> Kind.NETWORK_MAP.plural
        'networkmaps'
    """

    PROVIDER = "Provider"
    NETWORK_MAP = "NetworkMap"
    STORAGE_MAP = "StorageMap"
    PLAN = "Plan"
    MIGRATION = "Migration"

    def __str__(self) -> str:
        """Return the string value for display."""
        return self.value

    @property
    def plural(self) -> str:
        """Return the lowercase plural used in API paths."""
        return self.value.lower() + "s"


@dataclass
class WorkflowObject:
    """
    One Forklift resource in the migration chain.

    The spec is owned by the orchestrator; status is written by the Forklift
    controllers and is only ever read here.
    """

    kind: Kind
    name: str
    namespace: str
    spec: dict[str, Any]
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    status: dict[str, Any] | None = None
    api_version: str = f"{FORKLIFT_GROUP}/{DEFAULT_API_VERSION}"

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity of the object on the backend: (kind, namespace, name)."""
        return (self.kind.value, self.namespace, self.name)

    @property
    def phase(self) -> Phase:
        """Phase derived from the current status conditions."""
        return derive_phase(self.status)

    @property
    def ref(self) -> dict[str, str]:
        """Object reference as used inside other Forklift specs."""
        return {"name": self.name, "namespace": self.namespace}

    def to_manifest(self) -> dict[str, Any]:
        """Render as a Kubernetes object body (status omitted)."""
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        return {
            "apiVersion": self.api_version,
            "kind": self.kind.value,
            "metadata": metadata,
            "spec": self.spec,
        }

    @classmethod
    def from_manifest(cls, data: dict[str, Any]) -> "WorkflowObject":
        """Build a WorkflowObject from a Kubernetes object body returned by the API."""
        metadata = data.get("metadata") or {}
        return cls(
            kind=Kind(data["kind"]),
            name=metadata["name"],
            namespace=metadata.get("namespace", ""),
            spec=data.get("spec") or {},
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            status=data.get("status"),
            api_version=data.get("apiVersion", f"{FORKLIFT_GROUP}/{DEFAULT_API_VERSION}"),
        )


class Stage(Enum):
    """Ordered stages of a migration workflow."""

    SOURCE_PROVIDER = "source-provider"
    DESTINATION_PROVIDER = "destination-provider"
    NETWORK_MAP = "network-map"
    STORAGE_MAP = "storage-map"
    PLAN = "plan"
    MIGRATION = "migration"

    def __str__(self) -> str:
        return self.value


STAGE_ORDER = [
    Stage.SOURCE_PROVIDER,
    Stage.DESTINATION_PROVIDER,
    Stage.NETWORK_MAP,
    Stage.STORAGE_MAP,
    Stage.PLAN,
    Stage.MIGRATION,
]


class StageStatus(Enum):
    """Driver-side status of a stage."""

    PENDING = "Pending"
    OBSERVING = "Observing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.CANCELLED)


@dataclass
class StageRecord:
    """
    Progress of one stage.

    Attributes:
        stage: Which stage of the workflow this is
        obj: Desired object; replaced by the last observed copy as the stage advances
        status: Driver-side status
        created: True when this run created the object, False when it was adopted
        error: Exception that ended the stage, if it failed or was cancelled
        attempts: Number of backend calls retried after transient errors
    """

    stage: Stage
    obj: WorkflowObject
    status: StageStatus = StageStatus.PENDING
    created: bool = False
    error: Exception | None = None
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def phase(self) -> Phase:
        return self.obj.phase

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for reports and JSON output.

        Returns:
            Dictionary representation with enum values converted to strings
        """
        return {
            "stage": self.stage.value,
            "kind": self.obj.kind.value,
            "name": self.obj.name,
            "namespace": self.obj.namespace,
            "status": self.status.value,
            "phase": self.phase.value,
            "created": self.created,
            "attempts": self.attempts,
            "error": str(self.error) if self.error else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class Outcome(Enum):
    """Overall outcome of a workflow run."""

    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    def __str__(self) -> str:
        return self.value


@dataclass
class WorkflowState:
    """
    Ordered record of a workflow run.

    Records are append-only: a new stage can only begin once the previous one
    has succeeded, and no stage is ever begun twice.
    """

    request_name: str
    records: list[StageRecord] = field(default_factory=list)

    @property
    def current(self) -> int:
        """Index of the stage currently in progress (or last finished)."""
        return len(self.records) - 1

    @property
    def stages(self) -> list[Stage]:
        return [record.stage for record in self.records]

    def begin(self, stage: Stage, obj: WorkflowObject) -> StageRecord:
        """
        Append a record for the next stage.

        Raises:
            RuntimeError: If the previous stage has not succeeded, or the stage
                is out of order
        """
        expected = STAGE_ORDER[len(self.records)] if len(self.records) < len(STAGE_ORDER) else None
        if stage is not expected:
            raise RuntimeError(f"Stage {stage} cannot begin; next stage is {expected}")
        if self.records and self.records[-1].status is not StageStatus.SUCCEEDED:
            raise RuntimeError(
                f"Stage {stage} cannot begin; {self.records[-1].stage} is "
                f"{self.records[-1].status}"
            )

        record = StageRecord(stage=stage, obj=obj, started_at=datetime.now())
        self.records.append(record)
        return record

    def get(self, stage: Stage) -> StageRecord | None:
        for record in self.records:
            if record.stage is stage:
                return record
        return None

    @property
    def failed_stage(self) -> StageRecord | None:
        """The record that halted the run, if any."""
        for record in self.records:
            if record.status in (StageStatus.FAILED, StageStatus.CANCELLED):
                return record
        return None

    @property
    def error(self) -> Exception | None:
        failed = self.failed_stage
        return failed.error if failed else None

    @property
    def outcome(self) -> Outcome:
        failed = self.failed_stage
        if failed is not None:
            if failed.status is StageStatus.CANCELLED:
                return Outcome.CANCELLED
            return Outcome.FAILED
        if len(self.records) == len(STAGE_ORDER) and all(
            r.status is StageStatus.SUCCEEDED for r in self.records
        ):
            return Outcome.SUCCEEDED
        return Outcome.RUNNING

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED

    def raise_for_status(self) -> None:
        """Re-raise the error of the failed stage, if any."""
        error = self.error
        if error is not None:
            raise error

    def to_dict(self) -> dict[str, Any]:
        return {
            "request": self.request_name,
            "outcome": self.outcome.value,
            "stages": [record.to_dict() for record in self.records],
        }
