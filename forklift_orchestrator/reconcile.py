"""
Reconciliation driver.

Takes one WorkflowObject from Pending through creation to its goal phase:

    Pending -> (create issued) -> Observing -> Succeeded | Failed | Cancelled

Transient backend errors are retried with exponential backoff inside the kind's
timeout budget. Fatal errors and failure conditions reported by the controllers
end the stage immediately.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from forklift_orchestrator.exceptions import (
    CancelledError,
    ConflictError,
    NotFoundError,
    OrchestratorError,
    TransientError,
    WaitTimeoutError,
)
from forklift_orchestrator.gateway.base import ClusterGateway
from forklift_orchestrator.models.workflow import Kind, StageRecord, StageStatus, WorkflowObject
from forklift_orchestrator.status import goal_reached, has_failed
from forklift_orchestrator.util.redact import redact_sensitive
from forklift_orchestrator.util.retry import BackoffPolicy, retry_transient

logger = logging.getLogger(__name__)

# Seconds; Migration covers the disk copy itself, so it gets the largest budget.
DEFAULT_TIMEOUTS: dict[Kind, float] = {
    Kind.PROVIDER: 300.0,
    Kind.NETWORK_MAP: 120.0,
    Kind.STORAGE_MAP: 120.0,
    Kind.PLAN: 600.0,
    Kind.MIGRATION: 14400.0,
}

# A cancel event cannot wake a waiter blocked on the in-flight condition, so
# waiters re-check it at this interval.
CLAIM_POLL_INTERVAL = 0.1


def spec_differences(desired: Any, observed: Any, path: str = "spec") -> list[str]:
    """
    Compare a desired spec against an observed one.

    Fields present only in the observed spec are ignored, since controllers and
    admission webhooks add defaults.

    Args:
        desired: Spec the orchestrator would create
        observed: Spec found on the backend
        path: Dotted path used in the messages

    Returns:
        List of differences (empty when `desired` is contained in `observed`)

    Example:
        >>> spec_differences({"url": "https://a"}, {"url": "https://b", "type": "vsphere"})
        ["spec.url: expected 'https://a', found 'https://b'"]
    """
    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            return [f"{path}: expected a mapping, found {observed!r}"]
        differences = []
        for key, value in desired.items():
            if key not in observed:
                differences.append(f"{path}.{key}: missing")
            else:
                differences.extend(spec_differences(value, observed[key], f"{path}.{key}"))
        return differences

    if isinstance(desired, list):
        if not isinstance(observed, list):
            return [f"{path}: expected a list, found {observed!r}"]
        if len(desired) != len(observed):
            return [f"{path}: expected {len(desired)} item(s), found {len(observed)}"]
        differences = []
        for i, (want, have) in enumerate(zip(desired, observed)):
            differences.extend(spec_differences(want, have, f"{path}[{i}]"))
        return differences

    if desired != observed:
        return [f"{path}: expected {desired!r}, found {observed!r}"]
    return []


class Reconciler:
    """
    Drives WorkflowObjects to their goal phase through a ClusterGateway.

    One Reconciler can be shared by concurrent workflows. Reconciles of the same
    object are serialised: a second caller waits for the first to finish, then
    adopts what it left behind.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        backoff: BackoffPolicy | None = None,
        timeouts: dict[Kind, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.backoff = backoff or BackoffPolicy()
        self.timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self.clock = clock
        self._inflight: set[tuple[str, str, str]] = set()
        self._inflight_done = threading.Condition()

    def timeout_for(self, kind: Kind) -> float:
        return self.timeouts[kind]

    @contextmanager
    def _claim(
        self, obj: WorkflowObject, deadline: float, cancel: threading.Event | None
    ) -> Iterator[None]:
        """Hold the object's key, waiting for a reconcile of it already in flight."""
        with self._inflight_done:
            if obj.key in self._inflight:
                logger.info(
                    f"Waiting for in-flight reconcile of {obj.kind} {obj.namespace}/{obj.name}"
                )
            while obj.key in self._inflight:
                if cancel is not None and cancel.is_set():
                    raise CancelledError(obj.kind.value, obj.name)
                remaining = deadline - self.clock()
                if remaining <= 0:
                    raise WaitTimeoutError(
                        obj.kind.value, obj.name, obj.namespace, self.timeout_for(obj.kind)
                    )
                self._inflight_done.wait(min(remaining, CLAIM_POLL_INTERVAL))
            self._inflight.add(obj.key)
        try:
            yield
        finally:
            with self._inflight_done:
                self._inflight.discard(obj.key)
                self._inflight_done.notify_all()

    def _retry(
        self,
        record: StageRecord,
        func: Callable[[], Any],
        deadline: float,
        cancel: threading.Event | None,
    ) -> Any:
        def on_retry(error: Exception, attempt: int, delay: float) -> None:
            record.attempts += 1
            logger.warning(
                f"{record.obj.kind} {record.obj.name}: attempt {attempt} failed "
                f"({redact_sensitive(str(error))}); retrying in {delay:.1f}s"
            )

        return retry_transient(
            func,
            policy=self.backoff,
            deadline=deadline,
            cancel=cancel,
            clock=self.clock,
            on_retry=on_retry,
        )

    def reconcile(
        self,
        record: StageRecord,
        *,
        adopt_existing: bool = False,
        cancel: threading.Event | None = None,
    ) -> WorkflowObject:
        """
        Create (or adopt) the record's object and wait for its goal phase.

        The record is updated in place: status, created flag, attempts, error and
        the last observed object.

        Args:
            record: Stage record holding the desired object
            adopt_existing: Take over an existing object whatever its spec
                (used for the destination provider lookup)
            cancel: Event that aborts waiting when set

        Returns:
            The observed object once its goal phase is reached

        Raises:
            ConflictError: Existing object with a different spec
            FatalError: Backend rejected a request
            StageFailedError: Controllers reported a failure condition
            WaitTimeoutError: Goal not reached within the kind's timeout
            CancelledError: `cancel` was set
        """
        obj = record.obj
        timeout = self.timeout_for(obj.kind)

        deadline = self.clock() + timeout
        try:
            with self._claim(obj, deadline, cancel):
                try:
                    self._ensure(record, adopt_existing, deadline, cancel)
                except TransientError as e:
                    raise WaitTimeoutError(obj.kind.value, obj.name, obj.namespace, timeout) from e
                record.status = StageStatus.OBSERVING
                observed = self._observe(record, deadline, timeout, cancel)
        except CancelledError as e:
            self._finish(record, StageStatus.CANCELLED, e)
            raise
        except OrchestratorError as e:
            self._finish(record, StageStatus.FAILED, e)
            raise

        record.obj = observed
        self._finish(record, StageStatus.SUCCEEDED)
        logger.info(f"{obj.kind} {obj.namespace}/{obj.name} reached {observed.phase}")
        return observed

    def _finish(self, record: StageRecord, status: StageStatus, error: Exception = None) -> None:
        record.status = status
        record.error = error
        record.finished_at = datetime.now()
        if error is not None:
            logger.error(f"{record.stage}: {status} - {error.message}")

    def _ensure(
        self,
        record: StageRecord,
        adopt_existing: bool,
        deadline: float,
        cancel: threading.Event | None,
    ) -> None:
        obj = record.obj
        gateway = self.gateway

        if adopt_existing:
            try:
                record.obj = self._retry(
                    record, lambda: gateway.get(obj.kind, obj.name, obj.namespace), deadline, cancel
                )
                logger.info(f"Using existing {obj.kind} {obj.namespace}/{obj.name}")
                return
            except NotFoundError:
                logger.info(f"{obj.kind} {obj.namespace}/{obj.name} not found; creating it")

        try:
            record.obj = self._retry(record, lambda: gateway.create(obj), deadline, cancel)
            record.created = True
            return
        except ConflictError:
            pass

        existing = self._retry(
            record, lambda: gateway.get(obj.kind, obj.name, obj.namespace), deadline, cancel
        )
        differences = spec_differences(obj.spec, existing.spec)
        if differences:
            raise ConflictError(obj.kind.value, obj.name, obj.namespace, differences)

        logger.info(f"{obj.kind} {obj.namespace}/{obj.name} already exists with matching spec")
        record.obj = existing

    def _observe(
        self,
        record: StageRecord,
        deadline: float,
        timeout: float,
        cancel: threading.Event | None,
    ) -> WorkflowObject:
        obj = record.obj

        def wait() -> WorkflowObject:
            return self.gateway.wait_for_condition(
                obj.kind,
                obj.name,
                obj.namespace,
                goal_reached,
                max(deadline - self.clock(), 0.0),
                failed=has_failed,
                backoff=self.backoff,
                cancel=cancel,
            )

        try:
            return self._retry(record, wait, deadline, cancel)
        except WaitTimeoutError as e:
            raise WaitTimeoutError(
                obj.kind.value, obj.name, obj.namespace, timeout, e.last_observed
            ) from None
        except TransientError as e:
            raise WaitTimeoutError(obj.kind.value, obj.name, obj.namespace, timeout) from e

    def check_existing(
        self, obj: WorkflowObject, cancel: threading.Event | None = None
    ) -> WorkflowObject | None:
        """
        Look up an object before anything it depends on is written.

        Args:
            obj: Desired object
            cancel: Event that aborts retries when set

        Returns:
            The existing object when its spec matches, None when it does not exist

        Raises:
            ConflictError: Existing object with a different spec
            WaitTimeoutError: Backend kept failing transiently
        """
        timeout = self.timeout_for(obj.kind)
        try:
            existing = retry_transient(
                lambda: self.gateway.get(obj.kind, obj.name, obj.namespace),
                policy=self.backoff,
                deadline=self.clock() + timeout,
                cancel=cancel,
                clock=self.clock,
            )
        except NotFoundError:
            return None
        except TransientError as e:
            raise WaitTimeoutError(obj.kind.value, obj.name, obj.namespace, timeout) from e

        differences = spec_differences(obj.spec, existing.spec)
        if differences:
            raise ConflictError(obj.kind.value, obj.name, obj.namespace, differences)
        return existing

    def ensure_secret(
        self,
        name: str,
        namespace: str,
        manifest: dict[str, Any],
        cancel: threading.Event | None = None,
    ) -> None:
        """Write the provider credentials secret, retrying transient errors."""
        deadline = self.clock() + self.timeout_for(Kind.PROVIDER)
        retry_transient(
            lambda: self.gateway.apply_secret(name, namespace, manifest),
            policy=self.backoff,
            deadline=deadline,
            cancel=cancel,
            clock=self.clock,
        )
