"""
Migration request model.

A MigrationRequest holds everything needed to build the Forklift resource chain:
the vSphere source, the destination provider, the VMs to migrate and the
network/storage mappings. Requests are immutable once built; validate() reports
every problem at once.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validate

from forklift_orchestrator.exceptions import ValidationError
from forklift_orchestrator.util.naming import name_errors

SCHEMA_DIR = Path(__file__).parent.parent / "schema"

DEFAULT_NAMESPACE = "openshift-mtv"
DEFAULT_DESTINATION_PROVIDER = "host"

SOURCE_PROVIDER_TYPES = ("vsphere", "ovirt", "openstack", "ova")
DESTINATION_TYPES = ("pod", "multus", "ignored")


@dataclass(frozen=True)
class Credentials:
    """Username/password pair written to the provider secret."""

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class SourceProvider:
    """Connection descriptor for the source virtualization platform."""

    host: str
    name: str | None = None
    type: str = "vsphere"
    credentials: Credentials | None = None
    secret_name: str | None = None
    datacenter: str | None = None
    cluster: str | None = None

    @property
    def url(self) -> str:
        if self.host.startswith(("https://", "http://")):
            return self.host
        return f"https://{self.host}"


@dataclass(frozen=True)
class DestinationProvider:
    """Destination provider; the local cluster provider by default."""

    name: str = DEFAULT_DESTINATION_PROVIDER
    type: str = "openshift"
    url: str = ""
    secret_name: str | None = None


@dataclass(frozen=True)
class EndpointRef:
    """Reference to a source-side object by inventory id or by name."""

    id: str | None = None
    name: str | None = None

    def to_spec(self) -> dict[str, str]:
        if self.id:
            return {"id": self.id}
        return {"name": self.name}

    def __str__(self) -> str:
        return self.id or self.name or "<unset>"


# VMs are referenced the same way as networks and datastores.
VMRef = EndpointRef


@dataclass(frozen=True)
class NetworkMapping:
    """Source network to destination network (pod network, multus NAD, or ignored)."""

    source: EndpointRef
    destination_type: str = "pod"
    destination_name: str | None = None
    destination_namespace: str | None = None


@dataclass(frozen=True)
class StorageMapping:
    """Source datastore to destination storage class."""

    source: EndpointRef
    storage_class: str
    access_mode: str | None = None
    volume_mode: str | None = None


@dataclass(frozen=True)
class MigrationRequest:
    """
    Everything needed to migrate a set of VMs.

    Attributes:
        name: Base name from which every resource name is derived
        namespace: Namespace holding the Forklift resources
        target_namespace: Namespace receiving the migrated VMs
        source: Source provider connection descriptor
        destination: Destination provider
        vms: VMs to migrate
        network_mappings: Source network to destination network choices
        storage_mappings: Source datastore to storage class choices
        warm: Run a warm migration instead of a cold one
    """

    name: str
    target_namespace: str
    source: SourceProvider
    vms: tuple[VMRef, ...]
    network_mappings: tuple[NetworkMapping, ...]
    storage_mappings: tuple[StorageMapping, ...]
    namespace: str = DEFAULT_NAMESPACE
    destination: DestinationProvider = field(default_factory=DestinationProvider)
    warm: bool = False

    @property
    def source_provider_name(self) -> str:
        return self.source.name or self.name

    @property
    def secret_name(self) -> str:
        if self.source.secret_name:
            return self.source.secret_name
        return f"{self.source_provider_name}-secret"

    @property
    def network_map_name(self) -> str:
        return f"{self.name}-network-map"

    @property
    def storage_map_name(self) -> str:
        return f"{self.name}-storage-map"

    @property
    def plan_name(self) -> str:
        return f"{self.name}-plan"

    @property
    def migration_name(self) -> str:
        return f"{self.name}-migration"

    def validate(self) -> "MigrationRequest":
        """
        Validate the request.

        Returns:
            self, so calls can be chained

        Raises:
            ValidationError: Listing every problem found
        """
        errors: list[str] = []

        errors.extend(name_errors(self.name, "name"))
        errors.extend(name_errors(self.namespace, "namespace"))
        errors.extend(name_errors(self.target_namespace, "target_namespace"))

        # Derived names only need checking once the base name is valid.
        if not errors:
            for label, derived in [
                ("source provider name", self.source_provider_name),
                ("secret name", self.secret_name),
                ("network map name", self.network_map_name),
                ("storage map name", self.storage_map_name),
                ("plan name", self.plan_name),
                ("migration name", self.migration_name),
            ]:
                errors.extend(name_errors(derived, label))

        errors.extend(self._source_errors())
        errors.extend(name_errors(self.destination.name, "destination.name"))

        if not self.vms:
            errors.append("vms must list at least one VM")
        for i, vm in enumerate(self.vms):
            if not (vm.id or vm.name):
                errors.append(f"vms[{i}] needs an id or a name")

        if not self.network_mappings:
            errors.append("network_mappings must contain at least one mapping")
        for i, mapping in enumerate(self.network_mappings):
            errors.extend(_network_mapping_errors(i, mapping))

        if not self.storage_mappings:
            errors.append("storage_mappings must contain at least one mapping")
        for i, mapping in enumerate(self.storage_mappings):
            if not (mapping.source.id or mapping.source.name):
                errors.append(f"storage_mappings[{i}].source needs an id or a name")
            if not mapping.storage_class:
                errors.append(f"storage_mappings[{i}].storage_class is required")

        if errors:
            raise ValidationError(errors, subject=f"migration request '{self.name}'")
        return self

    def _source_errors(self) -> list[str]:
        source = self.source
        errors = []
        if not source.host:
            errors.append("source.host is required")
        if source.type not in SOURCE_PROVIDER_TYPES:
            errors.append(
                f"source.type '{source.type}' must be one of: {', '.join(SOURCE_PROVIDER_TYPES)}"
            )
        if source.credentials is None and not source.secret_name:
            errors.append("source needs either username/password or secret_name")
        if source.credentials is not None:
            if not source.credentials.username:
                errors.append("source.username is required")
            if not source.credentials.password:
                errors.append("source.password is required")
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_namespace: str = None) -> "MigrationRequest":
        """
        Build a request from its YAML/JSON document form.

        The document is checked against the request JSON schema first; semantic
        checks are left to validate().

        Args:
            data: Parsed request document
            default_namespace: Namespace used when the document has none

        Raises:
            ValidationError: If the document does not match the request schema
        """
        _validate_request_schema(data)

        source_data = data["source"]
        credentials = None
        if "username" in source_data or "password" in source_data:
            credentials = Credentials(
                username=source_data.get("username", ""),
                password=source_data.get("password", ""),
            )

        source = SourceProvider(
            host=source_data.get("host", ""),
            name=source_data.get("name"),
            type=source_data.get("type", "vsphere"),
            credentials=credentials,
            secret_name=source_data.get("secret_name"),
            datacenter=source_data.get("datacenter"),
            cluster=source_data.get("cluster"),
        )

        dest_data = data.get("destination") or {}
        destination = DestinationProvider(
            name=dest_data.get("name", DEFAULT_DESTINATION_PROVIDER),
            type=dest_data.get("type", "openshift"),
            url=dest_data.get("url", ""),
            secret_name=dest_data.get("secret_name"),
        )

        vms = tuple(_endpoint(vm) for vm in data.get("vms", []))

        network_mappings = tuple(
            NetworkMapping(
                source=_endpoint(m["source"]),
                destination_type=m.get("destination", {}).get("type", "pod"),
                destination_name=m.get("destination", {}).get("name"),
                destination_namespace=m.get("destination", {}).get("namespace"),
            )
            for m in data.get("network_mappings", [])
        )

        storage_mappings = tuple(
            StorageMapping(
                source=_endpoint(m["source"]),
                storage_class=m.get("destination", {}).get("storage_class", ""),
                access_mode=m.get("destination", {}).get("access_mode"),
                volume_mode=m.get("destination", {}).get("volume_mode"),
            )
            for m in data.get("storage_mappings", [])
        )

        return cls(
            name=data["name"],
            namespace=data.get("namespace") or default_namespace or DEFAULT_NAMESPACE,
            target_namespace=data.get("target_namespace", ""),
            source=source,
            destination=destination,
            vms=vms,
            network_mappings=network_mappings,
            storage_mappings=storage_mappings,
            warm=data.get("warm", False),
        )

    @classmethod
    def from_file(cls, path: Path, default_namespace: str = None) -> "MigrationRequest":
        """Load a request from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValidationError(
                [f"expected a mapping, got {type(data).__name__}"], subject=str(path)
            )
        return cls.from_dict(data, default_namespace=default_namespace)


def _endpoint(value: str | dict[str, Any]) -> EndpointRef:
    # A bare string is an inventory id, matching how Forklift plans list VMs.
    if isinstance(value, str):
        return EndpointRef(id=value)
    return EndpointRef(id=value.get("id"), name=value.get("name"))


def _network_mapping_errors(index: int, mapping: NetworkMapping) -> list[str]:
    prefix = f"network_mappings[{index}]"
    errors = []
    if not (mapping.source.id or mapping.source.name):
        errors.append(f"{prefix}.source needs an id or a name")
    if mapping.destination_type not in DESTINATION_TYPES:
        errors.append(
            f"{prefix}.destination.type '{mapping.destination_type}' must be one of: "
            f"{', '.join(DESTINATION_TYPES)}"
        )
    if mapping.destination_type == "multus":
        errors.extend(name_errors(mapping.destination_name, f"{prefix}.destination.name"))
        if mapping.destination_namespace:
            errors.extend(
                name_errors(mapping.destination_namespace, f"{prefix}.destination.namespace")
            )
    return errors


def _validate_request_schema(data: dict[str, Any]) -> None:
    """Validate a request document against the JSON schema."""
    schema = json.loads((SCHEMA_DIR / "request.schema.json").read_text())
    try:
        validate(instance=data, schema=schema)
    except SchemaValidationError as e:
        path = ".".join(str(p) for p in e.path) or "<root>"
        raise ValidationError([f"{path}: {e.message}"], subject="request document") from e
