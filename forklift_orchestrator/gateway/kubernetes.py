"""
Kubernetes cluster gateway backed by the official kubernetes client.
"""

import logging
from typing import Any

from kubernetes import client
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from forklift_orchestrator.exceptions import (
    BackendError,
    ConflictError,
    FatalError,
    NotFoundError,
    TransientError,
)
from forklift_orchestrator.gateway.base import ClusterGateway
from forklift_orchestrator.models.workflow import (
    DEFAULT_API_VERSION,
    FORKLIFT_GROUP,
    Kind,
    WorkflowObject,
)
from forklift_orchestrator.util.redact import redact_sensitive
from forklift_orchestrator.util.retry import is_retryable_error, is_retryable_status

logger = logging.getLogger(__name__)


def classify_api_exception(error: ApiException, what: str) -> BackendError:
    """
    Map an ApiException onto the orchestrator error taxonomy.

    404 and 409 are handled by the callers; everything else is transient
    (throttling, 5xx, no response) or fatal (schema, permission).
    """
    reason = redact_sensitive(str(error.reason or error))
    message = f"{what} failed: {error.status} {reason}"
    if is_retryable_status(error.status):
        return TransientError(message, status=error.status)
    return FatalError(message, status=error.status)


class KubernetesGateway(ClusterGateway):
    """
    Gateway using CustomObjectsApi for Forklift resources and CoreV1Api for secrets.

    A single instance can serve concurrent workflows; the underlying ApiClient
    pools connections and the gateway itself keeps no per-request state.
    """

    def __init__(
        self,
        config: dict | None = None,
        api_client: client.ApiClient | None = None,
        api_version: str = DEFAULT_API_VERSION,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self.api_client = api_client or client.ApiClient()
        self.custom_api = client.CustomObjectsApi(self.api_client)
        self.core_api = client.CoreV1Api(self.api_client)
        self.api_version = api_version

    def _call(self, what: str, func, *args, **kwargs) -> Any:
        """Run one API call, translating transport errors into TransientError."""
        try:
            return func(*args, **kwargs)
        except ApiException:
            raise
        except (Urllib3HTTPError, OSError) as e:
            raise TransientError(f"{what} failed: {redact_sensitive(str(e))}") from e
        except Exception as e:
            if is_retryable_error(e):
                raise TransientError(f"{what} failed: {redact_sensitive(str(e))}") from e
            raise

    def create(self, obj: WorkflowObject) -> WorkflowObject:
        what = f"create {obj.kind} {obj.namespace}/{obj.name}"
        body = obj.to_manifest()
        body["apiVersion"] = f"{FORKLIFT_GROUP}/{self.api_version}"
        try:
            created = self._call(
                what,
                self.custom_api.create_namespaced_custom_object,
                group=FORKLIFT_GROUP,
                version=self.api_version,
                namespace=obj.namespace,
                plural=obj.kind.plural,
                body=body,
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(obj.kind.value, obj.name, obj.namespace) from e
            raise classify_api_exception(e, what) from e

        logger.info(f"Created {obj.kind} {obj.namespace}/{obj.name}")
        return WorkflowObject.from_manifest(created)

    def get(self, kind: Kind, name: str, namespace: str) -> WorkflowObject:
        what = f"get {kind} {namespace}/{name}"
        try:
            data = self._call(
                what,
                self.custom_api.get_namespaced_custom_object,
                group=FORKLIFT_GROUP,
                version=self.api_version,
                namespace=namespace,
                plural=kind.plural,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind.value, name, namespace) from e
            raise classify_api_exception(e, what) from e

        return WorkflowObject.from_manifest(data)

    def apply_secret(self, name: str, namespace: str, manifest: dict[str, Any]) -> None:
        what = f"apply Secret {namespace}/{name}"
        try:
            self._call(
                what,
                self.core_api.create_namespaced_secret,
                namespace=namespace,
                body=manifest,
            )
            logger.info(f"Created Secret {namespace}/{name}")
            return
        except ApiException as e:
            if e.status != 409:
                raise classify_api_exception(e, what) from e

        try:
            self._call(
                what,
                self.core_api.replace_namespaced_secret,
                name=name,
                namespace=namespace,
                body=manifest,
            )
        except ApiException as e:
            raise classify_api_exception(e, what) from e
        logger.info(f"Replaced existing Secret {namespace}/{name}")
