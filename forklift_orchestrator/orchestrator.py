"""
Migration orchestrator.

Sequences the Forklift resource chain for one MigrationRequest:

    source Provider -> destination Provider -> NetworkMap -> StorageMap -> Plan -> Migration

Each stage is built from the objects observed in the previous stages, then
reconciled to its goal phase before the next stage starts. The first failing
stage halts the run; nothing is rolled back.
"""

import logging
import threading
from datetime import datetime
from typing import Any

from forklift_orchestrator.builder import (
    build_destination_provider,
    build_migration,
    build_network_map,
    build_plan,
    build_secret,
    build_source_provider,
    build_storage_map,
)
from forklift_orchestrator.config import timeouts_from_config
from forklift_orchestrator.exceptions import CancelledError, OrchestratorError
from forklift_orchestrator.gateway.base import ClusterGateway
from forklift_orchestrator.models.request import MigrationRequest
from forklift_orchestrator.models.workflow import (
    DEFAULT_API_VERSION,
    STAGE_ORDER,
    Stage,
    StageRecord,
    StageStatus,
    WorkflowObject,
    WorkflowState,
)
from forklift_orchestrator.reconcile import Reconciler
from forklift_orchestrator.util.retry import BackoffPolicy

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Runs migration workflows against a cluster gateway.

    The orchestrator keeps no per-run state, so `run` may be called concurrently
    from several threads for different requests.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        reconciler: Reconciler | None = None,
        api_version: str = DEFAULT_API_VERSION,
    ):
        self.gateway = gateway
        self.reconciler = reconciler or Reconciler(gateway)
        self.api_version = api_version

    @classmethod
    def from_config(cls, config: dict[str, Any], gateway: ClusterGateway | None = None):
        """
        Build an orchestrator from a loaded configuration.

        Args:
            config: Configuration dict (see config.DEFAULT_CONFIG)
            gateway: Gateway to use; created from the `backend` section when omitted
        """
        if gateway is None:
            from forklift_orchestrator.gateway import get_gateway

            gateway = get_gateway(config)

        reconciler = Reconciler(
            gateway,
            backoff=BackoffPolicy.from_config(config.get("reconcile", {})),
            timeouts=timeouts_from_config(config),
        )
        api_version = config.get("forklift", {}).get("api_version", DEFAULT_API_VERSION)
        return cls(gateway, reconciler=reconciler, api_version=api_version)

    def run(
        self, request: MigrationRequest, cancel: threading.Event | None = None
    ) -> WorkflowState:
        """
        Drive the full resource chain for a request.

        Args:
            request: Migration request
            cancel: Event that stops the run promptly when set

        Returns:
            WorkflowState; when a stage fails or is cancelled, the state ends with
            that stage marked and its error attached

        Raises:
            ValidationError: If the request is invalid
        """
        request.validate()

        state = WorkflowState(request_name=request.name)
        observed: dict[Stage, WorkflowObject] = {}
        logger.info(
            f"Starting migration workflow '{request.name}' in namespace {request.namespace} "
            f"({len(request.vms)} VM(s))"
        )

        for stage in STAGE_ORDER:
            obj = self._build(stage, request, observed)
            record = state.begin(stage, obj)
            try:
                if cancel is not None and cancel.is_set():
                    raise CancelledError(obj.kind.value, obj.name)
                if stage is Stage.SOURCE_PROVIDER:
                    # A conflicting provider must not see its credentials replaced.
                    self.reconciler.check_existing(obj, cancel)
                    self._write_secret(request, cancel)
                observed[stage] = self.reconciler.reconcile(
                    record,
                    adopt_existing=stage is Stage.DESTINATION_PROVIDER,
                    cancel=cancel,
                )
            except OrchestratorError as e:
                self._mark_halted(record, e)
                logger.error(f"Workflow '{request.name}' halted at stage {stage}")
                break

        logger.info(f"Workflow '{request.name}' finished: {state.outcome}")
        return state

    def _mark_halted(self, record: StageRecord, error: OrchestratorError) -> None:
        # The reconciler marks its own failures; this covers errors raised
        # before it (provider lookup, secret write, cancellation).
        if record.status.is_terminal:
            return
        if isinstance(error, CancelledError):
            record.status = StageStatus.CANCELLED
        else:
            record.status = StageStatus.FAILED
        record.error = error
        record.finished_at = datetime.now()

    def _write_secret(self, request: MigrationRequest, cancel: threading.Event | None) -> None:
        credentials = request.source.credentials
        if credentials is None:
            logger.info(f"Using existing secret {request.namespace}/{request.secret_name}")
            return

        manifest = build_secret(
            name=request.secret_name,
            namespace=request.namespace,
            credentials=credentials,
            provider_type=request.source.type,
            request_name=request.name,
        )
        self.reconciler.ensure_secret(request.secret_name, request.namespace, manifest, cancel)

    def _build(
        self, stage: Stage, request: MigrationRequest, observed: dict[Stage, WorkflowObject]
    ) -> WorkflowObject:
        """Build the desired object of a stage from the objects observed so far."""
        common = {
            "namespace": request.namespace,
            "request_name": request.name,
            "api_version": self.api_version,
        }

        if stage is Stage.SOURCE_PROVIDER:
            return build_source_provider(request, self.api_version)
        if stage is Stage.DESTINATION_PROVIDER:
            return build_destination_provider(request, self.api_version)

        source = observed[Stage.SOURCE_PROVIDER]
        destination = observed[Stage.DESTINATION_PROVIDER]

        if stage is Stage.NETWORK_MAP:
            return build_network_map(
                name=request.network_map_name,
                source_provider=source,
                destination_provider=destination,
                mappings=request.network_mappings,
                **common,
            )
        if stage is Stage.STORAGE_MAP:
            return build_storage_map(
                name=request.storage_map_name,
                source_provider=source,
                destination_provider=destination,
                mappings=request.storage_mappings,
                **common,
            )
        if stage is Stage.PLAN:
            return build_plan(
                name=request.plan_name,
                source_provider=source,
                destination_provider=destination,
                network_map=observed[Stage.NETWORK_MAP],
                storage_map=observed[Stage.STORAGE_MAP],
                target_namespace=request.target_namespace,
                vms=request.vms,
                warm=request.warm,
                **common,
            )
        return build_migration(name=request.migration_name, plan=observed[Stage.PLAN], **common)
