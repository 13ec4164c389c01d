"""
In-memory cluster gateway (no cluster required).

Simulates the Forklift controllers: every object walks through a scripted list
of status blocks, one step per `get`. Errors can be injected per operation and
kind. Useful for tests and for dry runs with `backend: fake`.
"""

import copy
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from forklift_orchestrator.exceptions import ConflictError, NotFoundError
from forklift_orchestrator.gateway.base import ClusterGateway
from forklift_orchestrator.models.workflow import Kind, WorkflowObject


def condition(type_: str, category: str = "Required", message: str = "", status: str = "True"):
    """Build a Forklift status condition."""
    return {
        "type": type_,
        "status": status,
        "category": category,
        "message": message or type_,
    }


READY = {"conditions": [condition("Ready", "Required", "The provider is ready.")]}
RUNNING = {
    "conditions": [
        condition("Ready", "Required"),
        condition("Running", "Advisory", "The migration is running."),
    ]
}
SUCCEEDED = {
    "conditions": [
        condition("Ready", "Required"),
        condition("Succeeded", "Advisory", "The migration has SUCCEEDED."),
    ]
}


def failed_status(message: str = "Failed", critical: bool = False) -> dict[str, Any]:
    """Status block of an object the controllers marked as failed."""
    if critical:
        return {"conditions": [condition("ConnectionTestFailed", "Critical", message)]}
    return {"conditions": [condition("Failed", "Advisory", message)]}


DEFAULT_PROGRESSIONS: dict[Kind, list[dict[str, Any]]] = {
    Kind.PROVIDER: [READY],
    Kind.NETWORK_MAP: [READY],
    Kind.STORAGE_MAP: [READY],
    Kind.PLAN: [READY],
    Kind.MIGRATION: [RUNNING, SUCCEEDED],
}


@dataclass
class _Injection:
    operation: str
    kind: Kind | None
    name: str | None
    error: Exception
    times: int | None


class FakeGateway(ClusterGateway):
    """
    Thread-safe in-memory backend.

    Attributes:
        calls: (operation, kind, name) tuples in call order
        created: Keys (kind, namespace, name) of objects created through create()
        secrets: Applied Secret manifests keyed by (namespace, name)
    """

    def __init__(self, config: dict | None = None, **kwargs):
        super().__init__(config, **kwargs)
        self._lock = threading.RLock()
        self._objects: dict[tuple[str, str, str], WorkflowObject] = {}
        self._pending: dict[tuple[str, str, str], list[dict[str, Any]]] = {}
        self._progressions: dict[Any, list[dict[str, Any]]] = {
            kind: list(statuses) for kind, statuses in DEFAULT_PROGRESSIONS.items()
        }
        self._injections: list[_Injection] = []
        self.calls: list[tuple[str, str, str]] = []
        self.created: list[tuple[str, str, str]] = []
        self.secrets: dict[tuple[str, str], dict[str, Any]] = {}

    # -- scripting -----------------------------------------------------------

    def set_progression(
        self, kind: Kind, statuses: Iterable[dict[str, Any]], name: str | None = None
    ) -> None:
        """
        Script the status blocks an object walks through after creation.

        Args:
            kind: Resource kind
            statuses: Status blocks, one applied per `get`; the last one sticks
            name: Restrict to one object name (default: every object of the kind)
        """
        with self._lock:
            self._progressions[(kind, name) if name else kind] = list(statuses)

    def inject_error(
        self,
        operation: str,
        error: Exception,
        kind: Kind | None = None,
        name: str | None = None,
        times: int | None = None,
    ) -> None:
        """
        Make an operation raise `error`.

        Args:
            operation: "create", "get" or "apply_secret"
            error: Exception instance to raise
            kind: Restrict to a kind (default: any)
            name: Restrict to an object name (default: any)
            times: Number of calls to fail (default: every call)
        """
        with self._lock:
            self._injections.append(_Injection(operation, kind, name, error, times))

    def seed(self, obj: WorkflowObject, status: dict[str, Any] | None = None) -> None:
        """Store an object as if it already existed on the cluster."""
        with self._lock:
            stored = copy.deepcopy(obj)
            if status is not None:
                stored.status = copy.deepcopy(status)
            self._objects[stored.key] = stored

    def set_status(self, kind: Kind, name: str, namespace: str, status: dict[str, Any]) -> None:
        """Overwrite the status of a stored object, dropping any scripted steps."""
        with self._lock:
            key = (kind.value, namespace, name)
            self._objects[key].status = copy.deepcopy(status)
            self._pending.pop(key, None)

    def operations(self, operation: str) -> list[tuple[str, str, str]]:
        """Calls of one operation type."""
        with self._lock:
            return [call for call in self.calls if call[0] == operation]

    # -- ClusterGateway ------------------------------------------------------

    def _maybe_fail(self, operation: str, kind: Kind | None, name: str) -> None:
        for injection in self._injections:
            if injection.operation != operation:
                continue
            if injection.kind is not None and injection.kind is not kind:
                continue
            if injection.name is not None and injection.name != name:
                continue
            if injection.times is not None:
                if injection.times <= 0:
                    continue
                injection.times -= 1
            raise injection.error

    def _progression_for(self, obj: WorkflowObject) -> list[dict[str, Any]]:
        statuses = self._progressions.get((obj.kind, obj.name))
        if statuses is None:
            statuses = self._progressions.get(obj.kind, [])
        return [copy.deepcopy(s) for s in statuses]

    def create(self, obj: WorkflowObject) -> WorkflowObject:
        with self._lock:
            self.calls.append(("create", obj.kind.value, obj.name))
            self._maybe_fail("create", obj.kind, obj.name)

            if obj.key in self._objects:
                raise ConflictError(obj.kind.value, obj.name, obj.namespace)

            stored = copy.deepcopy(obj)
            stored.status = None
            self._objects[stored.key] = stored
            self._pending[stored.key] = self._progression_for(stored)
            self.created.append(stored.key)
            return copy.deepcopy(stored)

    def get(self, kind: Kind, name: str, namespace: str) -> WorkflowObject:
        with self._lock:
            self.calls.append(("get", kind.value, name))
            self._maybe_fail("get", kind, name)

            key = (kind.value, namespace, name)
            if key not in self._objects:
                raise NotFoundError(kind.value, name, namespace)

            pending = self._pending.get(key)
            if pending:
                self._objects[key].status = pending.pop(0)
            return copy.deepcopy(self._objects[key])

    def apply_secret(self, name: str, namespace: str, manifest: dict[str, Any]) -> None:
        with self._lock:
            self.calls.append(("apply_secret", "Secret", name))
            self._maybe_fail("apply_secret", None, name)
            self.secrets[(namespace, name)] = copy.deepcopy(manifest)
