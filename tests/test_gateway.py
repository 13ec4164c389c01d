"""
Tests for cluster gateways.
"""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from forklift_orchestrator.builder import build_provider, build_secret
from forklift_orchestrator.exceptions import (
    CancelledError,
    ConflictError,
    FatalError,
    NotFoundError,
    StageFailedError,
    TransientError,
    WaitTimeoutError,
)
from forklift_orchestrator.gateway import get_gateway
from forklift_orchestrator.gateway.fake import READY, RUNNING, FakeGateway, failed_status
from forklift_orchestrator.gateway.kubernetes import KubernetesGateway, classify_api_exception
from forklift_orchestrator.models.request import Credentials
from forklift_orchestrator.models.workflow import Kind, Phase
from forklift_orchestrator.status import goal_reached, has_failed
from forklift_orchestrator.util.retry import BackoffPolicy

NS = "openshift-mtv"


def _provider(name="vcenter"):
    return build_provider(
        name=name,
        namespace=NS,
        provider_type="vsphere",
        url="https://vcenter.example.com",
        secret={"name": "vcenter-secret"},
    )


class TestFakeGateway:
    """Tests for the in-memory gateway."""

    def test_create_then_get_walks_progression(self):
        """Test that each get applies the next scripted status."""
        gateway = FakeGateway()
        gateway.set_progression(Kind.PROVIDER, [None, READY])
        created = gateway.create(_provider())

        assert created.status is None
        assert gateway.get(Kind.PROVIDER, "vcenter", NS).phase is Phase.PENDING
        assert gateway.get(Kind.PROVIDER, "vcenter", NS).phase is Phase.READY
        assert gateway.get(Kind.PROVIDER, "vcenter", NS).phase is Phase.READY
        assert gateway.created == [("Provider", NS, "vcenter")]

    def test_create_existing_conflicts(self):
        """Test duplicate creates."""
        gateway = FakeGateway()
        gateway.create(_provider())
        with pytest.raises(ConflictError):
            gateway.create(_provider())
        assert len(gateway.created) == 1

    def test_get_missing(self):
        """Test unknown objects."""
        with pytest.raises(NotFoundError):
            FakeGateway().get(Kind.PLAN, "missing", NS)

    def test_progression_per_name(self):
        """Test that a named progression overrides the kind default."""
        gateway = FakeGateway()
        gateway.set_progression(Kind.PROVIDER, [failed_status("bad")], name="broken")
        gateway.create(_provider("broken"))
        gateway.create(_provider("fine"))

        assert gateway.get(Kind.PROVIDER, "broken", NS).phase is Phase.FAILED
        assert gateway.get(Kind.PROVIDER, "fine", NS).phase is Phase.READY

    def test_inject_error_times(self):
        """Test errors injected for a limited number of calls."""
        gateway = FakeGateway()
        gateway.inject_error("create", TransientError("busy"), kind=Kind.PROVIDER, times=1)

        with pytest.raises(TransientError):
            gateway.create(_provider())
        gateway.create(_provider())
        assert gateway.operations("create") == [
            ("create", "Provider", "vcenter"),
            ("create", "Provider", "vcenter"),
        ]

    def test_inject_error_other_kind_untouched(self):
        """Test that injections are scoped by kind."""
        gateway = FakeGateway()
        gateway.inject_error("create", FatalError("denied", 403), kind=Kind.PLAN)
        gateway.create(_provider())

    def test_seed_and_set_status(self):
        """Test pre-existing objects."""
        gateway = FakeGateway()
        gateway.seed(_provider(), status=RUNNING)
        assert gateway.get(Kind.PROVIDER, "vcenter", NS).phase is Phase.RUNNING
        gateway.set_status(Kind.PROVIDER, "vcenter", NS, READY)
        assert gateway.get(Kind.PROVIDER, "vcenter", NS).phase is Phase.READY
        assert gateway.created == []

    def test_returned_objects_are_copies(self):
        """Test callers cannot modify stored state."""
        gateway = FakeGateway()
        gateway.create(_provider())
        obj = gateway.get(Kind.PROVIDER, "vcenter", NS)
        obj.spec["url"] = "changed"
        assert gateway.get(Kind.PROVIDER, "vcenter", NS).spec["url"] == "https://vcenter.example.com"

    def test_apply_secret(self):
        """Test secrets are stored, replaced on re-apply."""
        gateway = FakeGateway()
        gateway.apply_secret("s", NS, build_secret("s", NS, Credentials("a", "1")))
        gateway.apply_secret("s", NS, build_secret("s", NS, Credentials("a", "2")))
        assert gateway.secrets[(NS, "s")]["stringData"]["password"] == "2"


class TestWaitForCondition:
    """Tests for the polling loop shared by every gateway."""

    def test_returns_when_predicate_holds(self):
        """Test the object is returned once the goal is reached."""
        gateway = FakeGateway()
        gateway.set_progression(Kind.PROVIDER, [None, None, READY])
        gateway.create(_provider())

        obj = gateway.wait_for_condition(
            Kind.PROVIDER,
            "vcenter",
            NS,
            goal_reached,
            5,
            backoff=BackoffPolicy(base_delay=0.001, jitter=0.0),
        )
        assert obj.phase is Phase.READY
        assert len(gateway.operations("get")) == 3

    def test_not_found_is_polled_again(self):
        """Test that an object not visible yet is waited for."""
        gateway = FakeGateway()
        obj = _provider()

        def create_later():
            time.sleep(0.02)
            gateway.create(obj)

        thread = threading.Thread(target=create_later)
        thread.start()
        result = gateway.wait_for_condition(
            Kind.PROVIDER,
            "vcenter",
            NS,
            goal_reached,
            5,
            backoff=BackoffPolicy(base_delay=0.005, max_delay=0.005, jitter=0.0),
        )
        thread.join()
        assert result.name == "vcenter"

    def test_failed_predicate_raises(self):
        """Test that a failure condition ends the wait immediately."""
        gateway = FakeGateway()
        gateway.set_progression(Kind.PROVIDER, [failed_status("Connection refused", critical=True)])
        gateway.create(_provider())

        with pytest.raises(StageFailedError) as exc_info:
            gateway.wait_for_condition(
                Kind.PROVIDER, "vcenter", NS, goal_reached, 5, failed=has_failed
            )
        assert exc_info.value.reason == "Connection refused"

    def test_timeout_at_boundary(self):
        """Test the budget is honored and the last observed object kept."""
        gateway = FakeGateway()
        gateway.set_progression(Kind.PROVIDER, [None])
        gateway.create(_provider())

        start = time.monotonic()
        with pytest.raises(WaitTimeoutError) as exc_info:
            gateway.wait_for_condition(
                Kind.PROVIDER,
                "vcenter",
                NS,
                goal_reached,
                0.05,
                backoff=BackoffPolicy(base_delay=0.01, max_delay=0.02, jitter=0.0),
            )
        elapsed = time.monotonic() - start

        assert elapsed >= 0.05
        assert elapsed < 1.0
        assert exc_info.value.timeout == 0.05
        assert exc_info.value.last_observed.phase is Phase.PENDING

    def test_sleep_clipped_to_budget(self):
        """Test that a long backoff delay does not overrun the budget."""
        gateway = FakeGateway()
        gateway.set_progression(Kind.PROVIDER, [None])
        gateway.create(_provider())

        start = time.monotonic()
        with pytest.raises(WaitTimeoutError):
            gateway.wait_for_condition(
                Kind.PROVIDER,
                "vcenter",
                NS,
                goal_reached,
                0.05,
                backoff=BackoffPolicy(base_delay=10, max_delay=10, jitter=0.0),
            )
        assert time.monotonic() - start < 1.0
        # One check at start, then the final check at the boundary.
        assert 2 <= len(gateway.operations("get")) <= 3

    def test_zero_budget_checks_once(self):
        """Test that a spent budget still gets one check."""
        gateway = FakeGateway()
        gateway.create(_provider())
        obj = gateway.wait_for_condition(Kind.PROVIDER, "vcenter", NS, goal_reached, 0)
        assert obj.phase is Phase.READY

    def test_never_observed_timeout(self):
        """Test timeout for an object that never appears."""
        gateway = FakeGateway()
        with pytest.raises(WaitTimeoutError) as exc_info:
            gateway.wait_for_condition(Kind.PROVIDER, "ghost", NS, goal_reached, 0)
        assert exc_info.value.last_observed is None

    def test_cancel_interrupts_sleep(self):
        """Test that cancellation surfaces within one polling interval."""
        gateway = FakeGateway()
        gateway.set_progression(Kind.PROVIDER, [None])
        gateway.create(_provider())
        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()

        start = time.monotonic()
        with pytest.raises(CancelledError):
            gateway.wait_for_condition(
                Kind.PROVIDER,
                "vcenter",
                NS,
                goal_reached,
                60,
                backoff=BackoffPolicy(base_delay=5, jitter=0.0),
                cancel=cancel,
            )
        timer.cancel()
        assert time.monotonic() - start < 2.0

    def test_backend_errors_propagate(self):
        """Test that get errors other than not-found escape the loop."""
        gateway = FakeGateway()
        gateway.create(_provider())
        gateway.inject_error("get", TransientError("busy"))
        with pytest.raises(TransientError):
            gateway.wait_for_condition(Kind.PROVIDER, "vcenter", NS, goal_reached, 5)


@pytest.fixture
def kube_gateway():
    """KubernetesGateway with mocked API objects."""
    gateway = KubernetesGateway(api_client=MagicMock())
    gateway.custom_api = MagicMock()
    gateway.core_api = MagicMock()
    return gateway


class TestClassifyApiException:
    """Tests for ApiException classification."""

    @pytest.mark.parametrize("status", [429, 500, 503, 0])
    def test_transient(self, status):
        """Test throttling, server errors and missing responses."""
        error = classify_api_exception(ApiException(status=status, reason="x"), "get")
        assert isinstance(error, TransientError)

    @pytest.mark.parametrize("status", [400, 401, 403, 422])
    def test_fatal(self, status):
        """Test rejected requests."""
        error = classify_api_exception(ApiException(status=status, reason="x"), "create")
        assert isinstance(error, FatalError)
        assert error.status == status


class TestKubernetesGateway:
    """Tests for KubernetesGateway against mocked client APIs."""

    def test_create(self, kube_gateway):
        """Test the custom object call and the returned object."""
        obj = _provider()
        kube_gateway.custom_api.create_namespaced_custom_object.return_value = obj.to_manifest()

        created = kube_gateway.create(obj)

        kwargs = kube_gateway.custom_api.create_namespaced_custom_object.call_args.kwargs
        assert kwargs["group"] == "forklift.konveyor.io"
        assert kwargs["version"] == "v1beta1"
        assert kwargs["plural"] == "providers"
        assert kwargs["namespace"] == NS
        assert kwargs["body"]["spec"] == obj.spec
        assert created.name == "vcenter"
        assert created.kind is Kind.PROVIDER

    def test_create_conflict(self, kube_gateway):
        """Test 409 maps to ConflictError."""
        kube_gateway.custom_api.create_namespaced_custom_object.side_effect = ApiException(
            status=409, reason="AlreadyExists"
        )
        with pytest.raises(ConflictError):
            kube_gateway.create(_provider())

    def test_create_forbidden(self, kube_gateway):
        """Test 403 maps to FatalError."""
        kube_gateway.custom_api.create_namespaced_custom_object.side_effect = ApiException(
            status=403, reason="Forbidden"
        )
        with pytest.raises(FatalError) as exc_info:
            kube_gateway.create(_provider())
        assert exc_info.value.status == 403

    def test_create_connection_error(self, kube_gateway):
        """Test transport failures map to TransientError."""
        kube_gateway.custom_api.create_namespaced_custom_object.side_effect = MaxRetryError(
            None, "/apis", "connection refused"
        )
        with pytest.raises(TransientError):
            kube_gateway.create(_provider())

    def test_get(self, kube_gateway):
        """Test status is carried into the returned object."""
        manifest = _provider().to_manifest()
        manifest["status"] = READY
        kube_gateway.custom_api.get_namespaced_custom_object.return_value = manifest

        obj = kube_gateway.get(Kind.PROVIDER, "vcenter", NS)

        assert obj.phase is Phase.READY
        kwargs = kube_gateway.custom_api.get_namespaced_custom_object.call_args.kwargs
        assert kwargs["plural"] == "providers"
        assert kwargs["name"] == "vcenter"

    def test_get_not_found(self, kube_gateway):
        """Test 404 maps to NotFoundError."""
        kube_gateway.custom_api.get_namespaced_custom_object.side_effect = ApiException(
            status=404, reason="NotFound"
        )
        with pytest.raises(NotFoundError):
            kube_gateway.get(Kind.PLAN, "p", NS)

    def test_get_throttled(self, kube_gateway):
        """Test 429 maps to TransientError."""
        kube_gateway.custom_api.get_namespaced_custom_object.side_effect = ApiException(
            status=429, reason="TooManyRequests"
        )
        with pytest.raises(TransientError):
            kube_gateway.get(Kind.PLAN, "p", NS)

    def test_apply_secret_creates(self, kube_gateway):
        """Test a new secret is created."""
        manifest = build_secret("s", NS, Credentials("a", "b"))
        kube_gateway.apply_secret("s", NS, manifest)
        kube_gateway.core_api.create_namespaced_secret.assert_called_once_with(
            namespace=NS, body=manifest
        )
        kube_gateway.core_api.replace_namespaced_secret.assert_not_called()

    def test_apply_secret_replaces_existing(self, kube_gateway):
        """Test an existing secret is replaced, never read."""
        manifest = build_secret("s", NS, Credentials("a", "b"))
        kube_gateway.core_api.create_namespaced_secret.side_effect = ApiException(status=409)

        kube_gateway.apply_secret("s", NS, manifest)

        kube_gateway.core_api.replace_namespaced_secret.assert_called_once_with(
            name="s", namespace=NS, body=manifest
        )
        kube_gateway.core_api.read_namespaced_secret.assert_not_called()

    def test_apply_secret_forbidden(self, kube_gateway):
        """Test permission errors on secrets."""
        kube_gateway.core_api.create_namespaced_secret.side_effect = ApiException(status=403)
        with pytest.raises(FatalError):
            kube_gateway.apply_secret("s", NS, {})


class TestGetGateway:
    """Tests for the gateway factory."""

    def test_fake_backend(self):
        """Test the in-memory backend."""
        assert isinstance(get_gateway({"backend": {"type": "fake"}}), FakeGateway)

    def test_unknown_backend(self):
        """Test unsupported backend types."""
        with pytest.raises(ValueError, match="Unsupported backend"):
            get_gateway({"backend": {"type": "vmware"}})

    def test_kubernetes_backend_with_kubeconfig(self):
        """Test the kubeconfig path and context are passed to the loader."""
        config = {
            "backend": {"type": "kubernetes", "kubeconfig": "/tmp/kc", "context": "prod"},
            "forklift": {"api_version": "v1beta1"},
        }
        with patch("kubernetes.config.load_kube_config") as load:
            gateway = get_gateway(config)
        load.assert_called_once_with(config_file="/tmp/kc", context="prod")
        assert isinstance(gateway, KubernetesGateway)
        assert gateway.api_version == "v1beta1"

    def test_kubernetes_backend_falls_back_to_kubeconfig(self):
        """Test in-cluster config is tried first."""
        import kubernetes

        with (
            patch(
                "kubernetes.config.load_incluster_config",
                side_effect=kubernetes.config.ConfigException("not in cluster"),
            ),
            patch("kubernetes.config.load_kube_config") as load,
        ):
            get_gateway({"backend": {"type": "kubernetes"}})
        load.assert_called_once_with()
