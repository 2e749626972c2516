"""Models for the ``MinIO`` custom resource.

Kubernetes sub-objects that the operator only copies into the objects it
creates (health checks, affinity, resources, tolerations, lifecycle hooks,
security contexts, and the claim spec) are carried as opaque JSON
dictionaries in their wire format.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ...constants import DEFAULT_MOUNT_PATH
from ..domain.kubernetes import CustomObjectMetadata

__all__ = [
    "DeployStatus",
    "EnvVar",
    "ExposeServices",
    "HealthStatus",
    "LocalObjectReference",
    "Pool",
    "PoolDeployStatus",
    "PoolStatus",
    "PVCStatus",
    "ServerStatus",
    "ServiceAddresses",
    "Tenant",
    "TenantSpec",
    "TenantStatus",
    "VolumeClaimTemplate",
    "VolumeClaimTemplateMetadata",
]


class CamelCaseModel(BaseModel):
    """Base class for models that use camel-case wire names."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize the model to its JSON wire format."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DeployStatus(str, Enum):
    """Overall deployment state of a tenant."""

    NONE = "None"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class PoolDeployStatus(str, Enum):
    """Deployment state of a single pool.

    ``UNKNOWN`` is used for a pool with no server pods under the last-seen
    policy. It counts as neither running nor failed.
    """

    UNKNOWN = ""
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class HealthStatus(str, Enum):
    """Health of a tenant as reported by its administrative API."""

    UNKNOWN = "Unknown"
    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"


class LocalObjectReference(CamelCaseModel):
    """Reference to another object in the same namespace."""

    name: str = Field("", title="Name of the referenced object")


class EnvVar(CamelCaseModel):
    """Environment variable for the server container."""

    name: str = Field(..., title="Name of the variable")

    value: str | None = Field(None, title="Literal value")

    value_from: dict[str, Any] | None = Field(
        None,
        title="Source of the value",
        description="Kubernetes ``EnvVarSource`` in wire format",
    )


class ExposeServices(CamelCaseModel):
    """Which tenant services are reachable from outside the cluster."""

    minio: bool = Field(False, title="Expose the data service")

    console: bool = Field(False, title="Expose the console service")


class VolumeClaimTemplateMetadata(CamelCaseModel):
    """Metadata of a storage claim template."""

    name: str = Field(
        "data",
        title="Name of the template",
        description="Used in the names of claims and pod volumes",
    )


class VolumeClaimTemplate(CamelCaseModel):
    """Template for the storage claims of a pool."""

    metadata: VolumeClaimTemplateMetadata = Field(
        default_factory=VolumeClaimTemplateMetadata,
        title="Template metadata",
    )

    spec: dict[str, Any] = Field(
        {},
        title="Claim spec",
        description=(
            "Kubernetes ``PersistentVolumeClaimSpec`` in wire format. Only"
            " ``resources`` and ``storageClassName`` are used."
        ),
    )


class Pool(CamelCaseModel):
    """A named, independently sized group of storage servers."""

    name: str = Field(..., title="Name of the pool")

    servers: int = Field(..., title="Number of servers", ge=1)

    volumes_per_server: int = Field(
        ..., title="Number of volumes per server", ge=1
    )

    volume_claim_template: VolumeClaimTemplate = Field(
        default_factory=VolumeClaimTemplate,
        title="Storage claim template",
    )

    node_selector: dict[str, str] | None = Field(
        None, title="Node selector for the servers of this pool"
    )

    security_context: dict[str, Any] | None = Field(
        None, title="Pod security context"
    )

    container_security_context: dict[str, Any] | None = Field(
        None, title="Container security context"
    )


class TenantSpec(CamelCaseModel):
    """Desired state of a tenant."""

    pools: list[Pool] = Field(..., title="Pools of storage servers")

    image: str | None = Field(
        None,
        title="Server image",
        description="If not set, the default image of the operator is used",
    )

    image_pull_policy: str | None = Field(None, title="Image pull policy")

    image_pull_secret: LocalObjectReference | None = Field(
        None, title="Image pull secret"
    )

    env: list[EnvVar] = Field([], title="Additional server environment")

    mount_path: str = Field(
        DEFAULT_MOUNT_PATH, title="Mount path of server volumes"
    )

    configuration: LocalObjectReference | None = Field(
        None,
        title="Configuration secret",
        description=(
            "Secret whose ``config.env`` key holds server settings, including"
            " the root credentials"
        ),
    )

    expose_service: ExposeServices = Field(
        default_factory=ExposeServices, title="Service exposure"
    )

    enable_cert: bool = Field(False, title="Whether TLS is enabled")

    reclaim_storage: bool = Field(
        True,
        title="Delete claims with the tenant",
        description=(
            "If false, storage claims are not owned by the tenant and survive"
            " its deletion"
        ),
    )

    service_account_name: str | None = Field(
        None, title="Service account of server pods"
    )

    tolerations: list[dict[str, Any]] | None = Field(
        None, title="Tolerations of server pods"
    )

    resources: dict[str, Any] | None = Field(
        None, title="Resource requirements of the server container"
    )

    affinity: dict[str, Any] | None = Field(None, title="Pod affinity")

    liveness: dict[str, Any] | None = Field(None, title="Liveness check")

    readiness: dict[str, Any] | None = Field(None, title="Readiness check")

    startup: dict[str, Any] | None = Field(None, title="Startup check")

    lifecycle: dict[str, Any] | None = Field(
        None, title="Lifecycle hooks of the server container"
    )

    @model_validator(mode="after")
    def _validate_unique_pools(self) -> Self:
        seen = set()
        for pool in self.pools:
            if pool.name in seen:
                raise ValueError(f"Duplicate pool name {pool.name}")
            seen.add(pool.name)
        return self

    @property
    def image_pull_secret_name(self) -> str:
        """Name of the image pull secret, or the empty string."""
        return self.image_pull_secret.name if self.image_pull_secret else ""


class ServerStatus(CamelCaseModel):
    """Observed state of one server pod."""

    name: str = Field(..., title="Name of the pod")

    host_ip: str = Field("", title="Node address", alias="hostIP")

    pod_ip: str = Field("", title="Pod address", alias="podIP")

    status: str = Field("", title="Pod phase")


class PoolStatus(CamelCaseModel):
    """Observed state of one pool."""

    name: str = Field(..., title="Name of the pool")

    status: PoolDeployStatus = Field(..., title="Pool deployment state")

    replicas: int = Field(..., title="Desired number of servers")

    available_replicas: int = Field(0, title="Number of running servers")

    servers: list[ServerStatus] = Field([], title="Server pods of the pool")


class PVCStatus(CamelCaseModel):
    """Observed state of one storage claim."""

    name: str = Field(..., title="Name of the claim")

    status: str = Field("", title="Claim phase")

    volume: str = Field("", title="Bound volume")

    capacity: str = Field("", title="Capacity of the bound volume")

    storage_class: str = Field("", title="Storage class of the claim")


class ServiceAddresses(CamelCaseModel):
    """Addresses of the externally facing services."""

    minio: str = Field("", title="Address of the data service")

    console: str = Field("", title="Address of the console service")


class TenantStatus(CamelCaseModel):
    """Observed state of a tenant.

    Written only by the operator, and always through
    `~minio_operator.services.status.TenantStatusWriter`.
    """

    status: DeployStatus | None = Field(None, title="Deployment state")

    message: str = Field("", title="Human-readable failure message")

    health_status: HealthStatus | None = Field(None, title="Health")

    pool_status: list[PoolStatus] = Field([], title="State of each pool")

    pvc_status: list[PVCStatus] = Field(
        [], title="State of each storage claim"
    )

    service: ServiceAddresses = Field(
        default_factory=ServiceAddresses, title="Service addresses"
    )

    restart_count: int = Field(0, title="Number of completed restarts")


class Tenant(CamelCaseModel):
    """A ``MinIO`` custom object."""

    api_version: str = Field(..., title="API version of the object")

    kind: str = Field(..., title="Kind of the object")

    metadata: CustomObjectMetadata = Field(..., title="Object metadata")

    spec: TenantSpec = Field(..., title="Desired state")

    status: TenantStatus = Field(
        default_factory=TenantStatus, title="Observed state"
    )

    @property
    def name(self) -> str:
        """Name of the tenant."""
        return self.metadata.name

    @property
    def namespace(self) -> str:
        """Namespace of the tenant."""
        return self.metadata.namespace

    @property
    def is_deleting(self) -> bool:
        """Whether deletion of the tenant has been requested."""
        return self.metadata.deletion_timestamp is not None

    @property
    def tls(self) -> bool:
        """Whether the tenant serves TLS."""
        return self.spec.enable_cert
