"""
Forklift resource builders.

Pure functions that render WorkflowObjects (and the provider credential Secret)
from validated parameters. No I/O happens here; every builder raises
ValidationError when a required field is empty or a name breaks the naming rules.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from forklift_orchestrator.exceptions import ValidationError
from forklift_orchestrator.models.request import (
    Credentials,
    EndpointRef,
    MigrationRequest,
    NetworkMapping,
    StorageMapping,
)
from forklift_orchestrator.models.workflow import (
    DEFAULT_API_VERSION,
    FORKLIFT_GROUP,
    Kind,
    Stage,
    WorkflowObject,
)
from forklift_orchestrator.util.naming import name_errors

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "forklift-orchestrator"
REQUEST_LABEL = "forklift-orchestrator/request"
DATACENTER_ANNOTATION = "forklift-orchestrator/datacenter"
CLUSTER_ANNOTATION = "forklift-orchestrator/cluster"

ObjectRef = dict[str, str]


def _api_version(version: str) -> str:
    return f"{FORKLIFT_GROUP}/{version}"


def _labels(request_name: str | None) -> dict[str, str]:
    labels = {MANAGED_BY_LABEL: MANAGED_BY}
    if request_name:
        labels[REQUEST_LABEL] = request_name
    return labels


def _ref(value: WorkflowObject | ObjectRef | None, field_name: str, errors: list[str]) -> ObjectRef:
    """Normalize an object reference, recording a problem when it is incomplete."""
    if isinstance(value, WorkflowObject):
        return value.ref
    if not value or not value.get("name"):
        errors.append(f"{field_name} reference is required")
        return {}
    ref = {"name": value["name"]}
    if value.get("namespace"):
        ref["namespace"] = value["namespace"]
    return ref


def _check_identity(name: str, namespace: str, errors: list[str]) -> None:
    errors.extend(name_errors(name, "name"))
    errors.extend(name_errors(namespace, "namespace"))


def _raise_if(errors: list[str], kind: Kind, name: str) -> None:
    if errors:
        raise ValidationError(errors, subject=f"{kind} '{name}'")


def build_provider(
    name: str,
    namespace: str,
    provider_type: str,
    url: str = "",
    secret: ObjectRef | None = None,
    datacenter: str | None = None,
    cluster: str | None = None,
    request_name: str | None = None,
    api_version: str = DEFAULT_API_VERSION,
) -> WorkflowObject:
    """
    Build a Provider.

    Args:
        name: Provider name
        namespace: Namespace of the Forklift resources
        provider_type: Provider type (vsphere, ovirt, openstack, ova, openshift)
        url: Endpoint URL; required for every type except openshift (empty means
            the local cluster)
        secret: Reference to the credentials secret; required for remote providers
        datacenter: Source datacenter, recorded as an annotation
        cluster: Source cluster, recorded as an annotation
        request_name: Request the provider belongs to, recorded as a label
        api_version: Forklift API version

    Returns:
        Provider WorkflowObject
    """
    errors: list[str] = []
    _check_identity(name, namespace, errors)
    if not provider_type:
        errors.append("provider type is required")

    remote = provider_type != "openshift" or bool(url)
    if provider_type != "openshift" and not url:
        errors.append(f"url is required for {provider_type} providers")

    spec: dict[str, Any] = {"type": provider_type}
    if url:
        spec["url"] = url
    if remote or secret:
        spec["secret"] = _ref(secret, "secret", errors)
        if spec["secret"] and "namespace" not in spec["secret"]:
            spec["secret"]["namespace"] = namespace

    _raise_if(errors, Kind.PROVIDER, name)

    annotations = {}
    if datacenter:
        annotations[DATACENTER_ANNOTATION] = datacenter
    if cluster:
        annotations[CLUSTER_ANNOTATION] = cluster

    return WorkflowObject(
        kind=Kind.PROVIDER,
        name=name,
        namespace=namespace,
        spec=spec,
        labels=_labels(request_name),
        annotations=annotations,
        api_version=_api_version(api_version),
    )


def _provider_pair(
    source_provider: WorkflowObject | ObjectRef,
    destination_provider: WorkflowObject | ObjectRef,
    errors: list[str],
) -> dict[str, ObjectRef]:
    return {
        "source": _ref(source_provider, "source provider", errors),
        "destination": _ref(destination_provider, "destination provider", errors),
    }


def build_network_map(
    name: str,
    namespace: str,
    source_provider: WorkflowObject | ObjectRef,
    destination_provider: WorkflowObject | ObjectRef,
    mappings: Sequence[NetworkMapping],
    request_name: str | None = None,
    api_version: str = DEFAULT_API_VERSION,
) -> WorkflowObject:
    """Build a NetworkMap from source networks to pod/multus networks."""
    errors: list[str] = []
    _check_identity(name, namespace, errors)
    providers = _provider_pair(source_provider, destination_provider, errors)

    if not mappings:
        errors.append("at least one network mapping is required")

    entries = []
    for i, mapping in enumerate(mappings):
        if not (mapping.source.id or mapping.source.name):
            errors.append(f"network mapping {i} has no source")
        destination: dict[str, str] = {"type": mapping.destination_type}
        if mapping.destination_type == "multus":
            if not mapping.destination_name:
                errors.append(f"network mapping {i} needs a destination name for multus")
            else:
                destination["name"] = mapping.destination_name
            destination["namespace"] = mapping.destination_namespace or namespace
        entries.append({"source": mapping.source.to_spec(), "destination": destination})

    _raise_if(errors, Kind.NETWORK_MAP, name)

    return WorkflowObject(
        kind=Kind.NETWORK_MAP,
        name=name,
        namespace=namespace,
        spec={"provider": providers, "map": entries},
        labels=_labels(request_name),
        api_version=_api_version(api_version),
    )


def build_storage_map(
    name: str,
    namespace: str,
    source_provider: WorkflowObject | ObjectRef,
    destination_provider: WorkflowObject | ObjectRef,
    mappings: Sequence[StorageMapping],
    request_name: str | None = None,
    api_version: str = DEFAULT_API_VERSION,
) -> WorkflowObject:
    """Build a StorageMap from source datastores to storage classes."""
    errors: list[str] = []
    _check_identity(name, namespace, errors)
    providers = _provider_pair(source_provider, destination_provider, errors)

    if not mappings:
        errors.append("at least one storage mapping is required")

    entries = []
    for i, mapping in enumerate(mappings):
        if not (mapping.source.id or mapping.source.name):
            errors.append(f"storage mapping {i} has no source")
        if not mapping.storage_class:
            errors.append(f"storage mapping {i} has no storage class")
        destination = {"storageClass": mapping.storage_class}
        if mapping.access_mode:
            destination["accessMode"] = mapping.access_mode
        if mapping.volume_mode:
            destination["volumeMode"] = mapping.volume_mode
        entries.append({"source": mapping.source.to_spec(), "destination": destination})

    _raise_if(errors, Kind.STORAGE_MAP, name)

    return WorkflowObject(
        kind=Kind.STORAGE_MAP,
        name=name,
        namespace=namespace,
        spec={"provider": providers, "map": entries},
        labels=_labels(request_name),
        api_version=_api_version(api_version),
    )


def build_plan(
    name: str,
    namespace: str,
    source_provider: WorkflowObject | ObjectRef,
    destination_provider: WorkflowObject | ObjectRef,
    network_map: WorkflowObject | ObjectRef,
    storage_map: WorkflowObject | ObjectRef,
    target_namespace: str,
    vms: Iterable[EndpointRef],
    warm: bool = False,
    request_name: str | None = None,
    api_version: str = DEFAULT_API_VERSION,
) -> WorkflowObject:
    """Build a Plan tying providers, maps and VMs together."""
    errors: list[str] = []
    _check_identity(name, namespace, errors)
    errors.extend(name_errors(target_namespace, "target namespace"))
    providers = _provider_pair(source_provider, destination_provider, errors)
    maps = {
        "network": _ref(network_map, "network map", errors),
        "storage": _ref(storage_map, "storage map", errors),
    }

    vm_list = list(vms)
    if not vm_list:
        errors.append("at least one VM is required")
    for i, vm in enumerate(vm_list):
        if not (vm.id or vm.name):
            errors.append(f"VM {i} has no id or name")

    _raise_if(errors, Kind.PLAN, name)

    return WorkflowObject(
        kind=Kind.PLAN,
        name=name,
        namespace=namespace,
        spec={
            "warm": warm,
            "provider": providers,
            "map": maps,
            "targetNamespace": target_namespace,
            "vms": [vm.to_spec() for vm in vm_list],
        },
        labels=_labels(request_name),
        api_version=_api_version(api_version),
    )


def build_migration(
    name: str,
    namespace: str,
    plan: WorkflowObject | ObjectRef,
    request_name: str | None = None,
    api_version: str = DEFAULT_API_VERSION,
) -> WorkflowObject:
    """Build a Migration that starts the given Plan."""
    errors: list[str] = []
    _check_identity(name, namespace, errors)
    plan_ref = _ref(plan, "plan", errors)
    _raise_if(errors, Kind.MIGRATION, name)

    return WorkflowObject(
        kind=Kind.MIGRATION,
        name=name,
        namespace=namespace,
        spec={"plan": plan_ref},
        labels=_labels(request_name),
        api_version=_api_version(api_version),
    )


_BUILDERS = {
    Kind.PROVIDER: build_provider,
    Kind.NETWORK_MAP: build_network_map,
    Kind.STORAGE_MAP: build_storage_map,
    Kind.PLAN: build_plan,
    Kind.MIGRATION: build_migration,
}


def build(kind: Kind, **params: Any) -> WorkflowObject:
    """
    Build one WorkflowObject of the given kind.

    Args:
        kind: Resource kind to render
        **params: Keyword arguments of the kind-specific builder

    Returns:
        WorkflowObject for the kind

    Raises:
        ValidationError: If required fields are empty or names are invalid

    Example:
        >>> obj = build(Kind.MIGRATION, name="demo-migration", namespace="openshift-mtv",
        ...             plan={"name": "demo-plan", "namespace": "openshift-mtv"})
        >>> obj.spec
        {'plan': {'name': 'demo-plan', 'namespace': 'openshift-mtv'}}
    """
    return _BUILDERS[kind](**params)


def build_secret(
    name: str,
    namespace: str,
    credentials: Credentials,
    provider_type: str = "vsphere",
    request_name: str | None = None,
) -> dict[str, Any]:
    """
    Build the Opaque Secret holding provider credentials.

    Returns:
        Kubernetes Secret body using stringData (user, password)
    """
    errors: list[str] = []
    _check_identity(name, namespace, errors)
    if not credentials.username:
        errors.append("username is required")
    if not credentials.password:
        errors.append("password is required")
    if errors:
        raise ValidationError(errors, subject=f"Secret '{name}'")

    labels = _labels(request_name)
    labels["createdForProviderType"] = provider_type
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "type": "Opaque",
        "stringData": {"user": credentials.username, "password": credentials.password},
    }


def build_source_provider(
    request: MigrationRequest, api_version: str = DEFAULT_API_VERSION
) -> WorkflowObject:
    source = request.source
    return build_provider(
        name=request.source_provider_name,
        namespace=request.namespace,
        provider_type=source.type,
        url=source.url,
        secret={"name": request.secret_name, "namespace": request.namespace},
        datacenter=source.datacenter,
        cluster=source.cluster,
        request_name=request.name,
        api_version=api_version,
    )


def build_destination_provider(
    request: MigrationRequest, api_version: str = DEFAULT_API_VERSION
) -> WorkflowObject:
    destination = request.destination
    secret = None
    if destination.secret_name:
        secret = {"name": destination.secret_name, "namespace": request.namespace}
    return build_provider(
        name=destination.name,
        namespace=request.namespace,
        provider_type=destination.type,
        url=destination.url,
        secret=secret,
        request_name=request.name,
        api_version=api_version,
    )


def build_all(
    request: MigrationRequest, api_version: str = DEFAULT_API_VERSION
) -> list[tuple[Stage, WorkflowObject]]:
    """
    Render the full resource chain for a request without touching a cluster.

    References between objects are derived from names, so the result matches what
    Orchestrator.run would create.

    Returns:
        (stage, object) pairs in creation order
    """
    request.validate()

    source = build_source_provider(request, api_version)
    destination = build_destination_provider(request, api_version)
    common = {"namespace": request.namespace, "request_name": request.name}

    network_map = build_network_map(
        name=request.network_map_name,
        source_provider=source,
        destination_provider=destination,
        mappings=request.network_mappings,
        api_version=api_version,
        **common,
    )
    storage_map = build_storage_map(
        name=request.storage_map_name,
        source_provider=source,
        destination_provider=destination,
        mappings=request.storage_mappings,
        api_version=api_version,
        **common,
    )
    plan = build_plan(
        name=request.plan_name,
        source_provider=source,
        destination_provider=destination,
        network_map=network_map,
        storage_map=storage_map,
        target_namespace=request.target_namespace,
        vms=request.vms,
        warm=request.warm,
        api_version=api_version,
        **common,
    )
    migration = build_migration(
        name=request.migration_name, plan=plan, api_version=api_version, **common
    )

    return [
        (Stage.SOURCE_PROVIDER, source),
        (Stage.DESTINATION_PROVIDER, destination),
        (Stage.NETWORK_MAP, network_map),
        (Stage.STORAGE_MAP, storage_map),
        (Stage.PLAN, plan),
        (Stage.MIGRATION, migration),
    ]
