"""
Pytest configuration and shared fixtures.
"""

import copy

import pytest
import yaml

from forklift_orchestrator.gateway.fake import FakeGateway
from forklift_orchestrator.models.request import MigrationRequest
from forklift_orchestrator.models.workflow import Kind
from forklift_orchestrator.orchestrator import Orchestrator
from forklift_orchestrator.reconcile import Reconciler
from forklift_orchestrator.util.retry import BackoffPolicy

REQUEST_DATA = {
    "name": "demo",
    "target_namespace": "migrated-vms",
    "source": {
        "host": "vcenter.example.com",
        "username": "administrator@vsphere.local",
        "password": "s3cret-pass",
        "datacenter": "dc1",
        "cluster": "cluster1",
    },
    "vms": ["vm-101", {"name": "db-01"}],
    "network_mappings": [
        {"source": "network-11", "destination": {"type": "pod"}},
        {"source": {"name": "VM Network"}, "destination": {"type": "multus", "name": "vlan-20"}},
    ],
    "storage_mappings": [
        {
            "source": "datastore-7",
            "destination": {
                "storage_class": "ocs-storagecluster-ceph-rbd",
                "access_mode": "ReadWriteMany",
                "volume_mode": "Block",
            },
        }
    ],
}

FAST_TIMEOUTS = {kind: 2.0 for kind in Kind}


@pytest.fixture
def request_data():
    """Return a fresh copy of the sample request document."""
    return copy.deepcopy(REQUEST_DATA)


@pytest.fixture
def migration_request(request_data):
    """Return the sample request as a MigrationRequest."""
    return MigrationRequest.from_dict(request_data)


@pytest.fixture
def request_file(tmp_path, request_data):
    """Write the sample request to a YAML file."""
    path = tmp_path / "request.yaml"
    path.write_text(yaml.safe_dump(request_data))
    return path


@pytest.fixture
def fast_backoff():
    """Backoff policy with millisecond delays and no jitter."""
    return BackoffPolicy(base_delay=0.001, max_delay=0.01, jitter=0.0)


@pytest.fixture
def gateway():
    """Return an in-memory gateway with the default status progressions."""
    return FakeGateway()


@pytest.fixture
def reconciler(gateway, fast_backoff):
    return Reconciler(gateway, backoff=fast_backoff, timeouts=FAST_TIMEOUTS)


@pytest.fixture
def orchestrator(gateway, reconciler):
    return Orchestrator(gateway, reconciler=reconciler)


@pytest.fixture
def fake_config_file(tmp_path):
    """Write a configuration using the fake backend and fast polling."""
    path = tmp_path / "forklift-orchestrator.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "backend": {"type": "fake"},
                "reconcile": {
                    "base_delay": 0.001,
                    "max_delay": 0.01,
                    "jitter": 0.0,
                    "timeouts": {
                        "provider": 2,
                        "network_map": 2,
                        "storage_map": 2,
                        "plan": 2,
                        "migration": 2,
                    },
                },
                "logging": {"level": "WARNING"},
            }
        )
    )
    return path
