"""
Cluster gateway abstraction layer.
"""

import logging

from forklift_orchestrator.gateway.base import ClusterGateway
from forklift_orchestrator.gateway.fake import FakeGateway

logger = logging.getLogger(__name__)


def _kubernetes_gateway(backend_config: dict, api_version: str) -> ClusterGateway:
    import kubernetes

    from forklift_orchestrator.gateway.kubernetes import KubernetesGateway

    kubeconfig = backend_config.get("kubeconfig")
    context = backend_config.get("context")

    if kubeconfig or context:
        kubernetes.config.load_kube_config(config_file=kubeconfig, context=context)
        logger.info("Using kubeconfig for Kubernetes configuration")
    else:
        try:
            kubernetes.config.load_incluster_config()
            logger.info("Using in-cluster Kubernetes configuration")
        except kubernetes.config.ConfigException:
            kubernetes.config.load_kube_config()
            logger.info("Using kubeconfig for Kubernetes configuration")

    return KubernetesGateway(
        backend_config, api_client=kubernetes.client.ApiClient(), api_version=api_version
    )


def get_gateway(config: dict) -> ClusterGateway:
    """
    Factory function to get a cluster gateway based on config.

    Args:
        config: Configuration dict with 'backend' and 'forklift' sections

    Returns:
        ClusterGateway instance

    Raises:
        ValueError: If the backend type is not supported
    """
    backend_config = config.get("backend", {})
    backend_type = backend_config.get("type", "kubernetes").lower()
    api_version = config.get("forklift", {}).get("api_version", "v1beta1")

    if backend_type == "fake":
        return FakeGateway(backend_config)
    if backend_type == "kubernetes":
        return _kubernetes_gateway(backend_config, api_version)

    raise ValueError(f"Unsupported backend: {backend_type}. Must be one of: ['kubernetes', 'fake']")


__all__ = ["ClusterGateway", "FakeGateway", "get_gateway"]
