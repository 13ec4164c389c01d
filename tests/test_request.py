"""
Tests for the migration request model.
"""

import dataclasses

import pytest

from forklift_orchestrator.exceptions import ValidationError
from forklift_orchestrator.models.request import (
    Credentials,
    EndpointRef,
    MigrationRequest,
    SourceProvider,
)


class TestFromDict:
    """Tests for loading request documents."""

    def test_loads_sample_request(self, migration_request):
        """Test every section of the document is mapped."""
        request = migration_request
        assert request.name == "demo"
        assert request.namespace == "openshift-mtv"
        assert request.target_namespace == "migrated-vms"
        assert request.source.host == "vcenter.example.com"
        assert request.source.credentials.username == "administrator@vsphere.local"
        assert request.source.datacenter == "dc1"
        assert request.destination.name == "host"
        assert request.destination.type == "openshift"
        assert request.warm is False

    def test_vm_strings_become_ids(self, migration_request):
        """Test that bare strings are inventory ids."""
        assert migration_request.vms == (EndpointRef(id="vm-101"), EndpointRef(name="db-01"))

    def test_mappings(self, migration_request):
        """Test network and storage mapping conversion."""
        pod, multus = migration_request.network_mappings
        assert pod.destination_type == "pod"
        assert multus.source == EndpointRef(name="VM Network")
        assert multus.destination_name == "vlan-20"

        (storage,) = migration_request.storage_mappings
        assert storage.storage_class == "ocs-storagecluster-ceph-rbd"
        assert storage.volume_mode == "Block"

    def test_default_namespace_used_when_missing(self, request_data):
        """Test that the configured namespace applies to documents without one."""
        request = MigrationRequest.from_dict(request_data, default_namespace="mtv")
        assert request.namespace == "mtv"

    def test_document_namespace_wins(self, request_data):
        """Test that an explicit namespace overrides the default."""
        request_data["namespace"] = "team-a"
        request = MigrationRequest.from_dict(request_data, default_namespace="mtv")
        assert request.namespace == "team-a"

    def test_schema_rejects_unknown_fields(self, request_data):
        """Test that misspelled keys are reported."""
        request_data["source"]["hostname"] = "x"
        with pytest.raises(ValidationError) as exc_info:
            MigrationRequest.from_dict(request_data)
        assert "source" in exc_info.value.errors[0]

    def test_schema_requires_source(self, request_data):
        """Test missing required sections."""
        del request_data["source"]
        with pytest.raises(ValidationError):
            MigrationRequest.from_dict(request_data)

    def test_from_file(self, request_file):
        """Test loading a YAML file."""
        request = MigrationRequest.from_file(request_file)
        assert request.plan_name == "demo-plan"

    def test_from_file_not_a_mapping(self, tmp_path):
        """Test that non-mapping documents are rejected."""
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValidationError, match="expected a mapping"):
            MigrationRequest.from_file(path)


class TestDerivedNames:
    """Tests for names derived from the request name."""

    def test_derived_names(self, migration_request):
        """Test every derived object name."""
        request = migration_request
        assert request.source_provider_name == "demo"
        assert request.secret_name == "demo-secret"
        assert request.network_map_name == "demo-network-map"
        assert request.storage_map_name == "demo-storage-map"
        assert request.plan_name == "demo-plan"
        assert request.migration_name == "demo-migration"

    def test_explicit_source_name(self, request_data):
        """Test that the source provider name can be set."""
        request_data["source"]["name"] = "vcenter-east"
        request = MigrationRequest.from_dict(request_data)
        assert request.source_provider_name == "vcenter-east"
        assert request.secret_name == "vcenter-east-secret"

    def test_existing_secret_name(self, request_data):
        """Test referencing a pre-existing secret instead of credentials."""
        del request_data["source"]["username"]
        del request_data["source"]["password"]
        request_data["source"]["secret_name"] = "vcenter-creds"
        request = MigrationRequest.from_dict(request_data).validate()
        assert request.source.credentials is None
        assert request.secret_name == "vcenter-creds"

    def test_source_url(self):
        """Test the provider URL built from the host."""
        assert SourceProvider(host="vcenter.example.com").url == "https://vcenter.example.com"
        assert SourceProvider(host="https://vc/sdk").url == "https://vc/sdk"


class TestValidate:
    """Tests for request validation."""

    def test_valid_request(self, migration_request):
        """Test that validate returns the request itself."""
        assert migration_request.validate() is migration_request

    def test_collects_every_problem(self, migration_request):
        """Test that all problems are reported in one error."""
        request = dataclasses.replace(
            migration_request,
            name="Bad_Name",
            target_namespace="",
            vms=(),
            storage_mappings=(),
        )
        with pytest.raises(ValidationError) as exc_info:
            request.validate()

        errors = "\n".join(exc_info.value.errors)
        assert "name 'Bad_Name'" in errors
        assert "target_namespace is required" in errors
        assert "vms must list at least one VM" in errors
        assert "storage_mappings must contain at least one mapping" in errors

    def test_missing_credentials(self, migration_request):
        """Test that a source needs credentials or a secret."""
        source = dataclasses.replace(migration_request.source, credentials=None)
        request = dataclasses.replace(migration_request, source=source)
        with pytest.raises(ValidationError, match="username/password or secret_name"):
            request.validate()

    def test_empty_password(self, migration_request):
        """Test that an empty password is rejected."""
        source = dataclasses.replace(
            migration_request.source, credentials=Credentials("admin", "")
        )
        request = dataclasses.replace(migration_request, source=source)
        with pytest.raises(ValidationError, match="source.password is required"):
            request.validate()

    def test_unknown_source_type(self, migration_request):
        """Test unsupported source provider types."""
        source = dataclasses.replace(migration_request.source, type="hyperv")
        request = dataclasses.replace(migration_request, source=source)
        with pytest.raises(ValidationError, match="source.type 'hyperv'"):
            request.validate()

    def test_multus_mapping_needs_name(self, request_data):
        """Test multus destinations need a NetworkAttachmentDefinition name."""
        request_data["network_mappings"][1]["destination"] = {"type": "multus"}
        request = MigrationRequest.from_dict(request_data)
        with pytest.raises(ValidationError, match=r"network_mappings\[1\].destination.name"):
            request.validate()

    def test_bad_destination_type(self, request_data):
        """Test unknown network destination types."""
        request_data["network_mappings"][0]["destination"] = {"type": "bridge"}
        request = MigrationRequest.from_dict(request_data)
        with pytest.raises(ValidationError, match="destination.type 'bridge'"):
            request.validate()

    def test_long_name_breaks_derived_names(self, migration_request):
        """Test that derived names are held to the length limit too."""
        request = dataclasses.replace(migration_request, name="a" * 250)
        with pytest.raises(ValidationError, match="network map name"):
            request.validate()

    def test_trailing_newline_in_namespaces(self, migration_request):
        """Test that a trailing newline does not slip past the naming rules."""
        request = dataclasses.replace(
            migration_request,
            namespace="openshift-mtv\n",
            target_namespace="migrated-vms\n",
        )
        with pytest.raises(ValidationError) as exc_info:
            request.validate()

        errors = "\n".join(exc_info.value.errors)
        assert "namespace 'openshift-mtv\n'" in errors
        assert "target_namespace 'migrated-vms\n'" in errors

    def test_password_not_in_repr(self, migration_request):
        """Test credentials stay out of reprs."""
        assert "s3cret-pass" not in repr(migration_request)

    def test_request_is_immutable(self, migration_request):
        """Test requests cannot be modified after creation."""
        with pytest.raises(dataclasses.FrozenInstanceError):
            migration_request.name = "other"
