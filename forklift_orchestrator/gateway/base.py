"""
Abstract base class for cluster gateways.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from forklift_orchestrator.exceptions import (
    CancelledError,
    NotFoundError,
    StageFailedError,
    WaitTimeoutError,
)
from forklift_orchestrator.models.workflow import Kind, WorkflowObject
from forklift_orchestrator.status import failure_reason
from forklift_orchestrator.util.retry import BackoffPolicy

logger = logging.getLogger(__name__)

Predicate = Callable[[WorkflowObject], bool]


class ClusterGateway(ABC):
    """
    Capability interface to the orchestration backend.

    Implementations must be safe to share between threads: they keep no
    per-request state, only connection pools.
    """

    def __init__(self, config: dict | None = None, clock: Callable[[], float] = time.monotonic):
        """
        Initialize gateway.

        Args:
            config: Backend configuration dict (the `backend` section)
            clock: Monotonic clock used for wait deadlines
        """
        self.config = config or {}
        self.clock = clock

    @abstractmethod
    def create(self, obj: WorkflowObject) -> WorkflowObject:
        """
        Create an object on the backend.

        Returns:
            The object as stored by the backend

        Raises:
            ConflictError: If an object with the same name exists
            TransientError: On retryable backend failures
            FatalError: If the backend rejects the request
        """
        pass

    @abstractmethod
    def get(self, kind: Kind, name: str, namespace: str) -> WorkflowObject:
        """
        Fetch the current state of an object.

        Raises:
            NotFoundError: If the object does not exist
            TransientError: On retryable backend failures
            FatalError: If the backend rejects the request
        """
        pass

    @abstractmethod
    def apply_secret(
        self, name: str, namespace: str, manifest: dict[str, Any]
    ) -> None:
        """
        Create the Secret, replacing it when it already exists.

        The secret is never read back.
        """
        pass

    def wait_for_condition(
        self,
        kind: Kind,
        name: str,
        namespace: str,
        predicate: Predicate,
        timeout: float,
        *,
        failed: Predicate | None = None,
        backoff: BackoffPolicy | None = None,
        cancel: threading.Event | None = None,
    ) -> WorkflowObject:
        """
        Poll an object until `predicate` holds.

        Polls follow the backoff delays, each sleep clipped to the remaining
        budget, and one last check is made at the budget boundary.

        Args:
            kind: Resource kind
            name: Resource name
            namespace: Resource namespace
            predicate: Returns True once the desired condition is reached
            timeout: Wait budget in seconds
            failed: Returns True when the object reports a terminal failure
            backoff: Poll cadence (defaults to a 1s base, 30s cap policy)
            cancel: Event that aborts the wait when set

        Returns:
            The last observed object, for which `predicate` holds

        Raises:
            StageFailedError: If `failed` holds for an observed object
            WaitTimeoutError: When the budget is spent; carries the last observed object
            CancelledError: When `cancel` is set
            TransientError / FatalError: Propagated from `get`
        """
        backoff = backoff or BackoffPolicy()
        deadline = self.clock() + timeout
        delays = backoff.delays()
        last_observed: WorkflowObject | None = None

        while True:
            if cancel is not None and cancel.is_set():
                raise CancelledError(kind.value, name)

            try:
                last_observed = self.get(kind, name, namespace)
            except NotFoundError:
                # Freshly created objects may not be visible yet.
                logger.debug(f"{kind} {namespace}/{name} not visible yet")
            else:
                if failed is not None and failed(last_observed):
                    raise StageFailedError(
                        kind.value, name, namespace, failure_reason(last_observed.status)
                    )
                if predicate(last_observed):
                    return last_observed

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise WaitTimeoutError(kind.value, name, namespace, timeout, last_observed)

            delay = min(next(delays), remaining)
            if cancel is None:
                time.sleep(delay)
            elif cancel.wait(delay):
                raise CancelledError(kind.value, name)
