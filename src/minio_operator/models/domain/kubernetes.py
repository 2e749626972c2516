"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Self

from kubernetes_asyncio.client import V1ObjectMeta
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "CustomObjectMetadata",
    "KubernetesModel",
    "ObjectKey",
    "PodPhase",
    "PropagationPolicy",
    "ServiceType",
    "WatchEventType",
]


class KubernetesModel(Protocol):
    """Protocol for Kubernetes object models.

    kubernetes-asyncio_ doesn't currently expose type information, so this
    tells mypy that all the object models we deal with will have a metadata
    attribute.
    """

    metadata: V1ObjectMeta

    def to_dict(self, *, serialize: bool = False) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class ObjectKey:
    """Identity of a namespaced Kubernetes object.

    Used as the key of the work queues, so it must be hashable.
    """

    namespace: str
    """Namespace of the object."""

    name: str
    """Name of the object."""

    @classmethod
    def from_metadata(cls, metadata: V1ObjectMeta | dict[str, Any]) -> Self:
        """Build the key from object metadata.

        Parameters
        ----------
        metadata
            Metadata of a Kubernetes model or of a raw custom object.

        Returns
        -------
        ObjectKey
            Corresponding key.
        """
        if isinstance(metadata, dict):
            return cls(namespace=metadata["namespace"], name=metadata["name"])
        return cls(namespace=metadata.namespace, name=metadata.name)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class PodPhase(str, Enum):
    """One of the valid phases reported in the status section of a Pod."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class PropagationPolicy(Enum):
    """Possible values for the ``propagationPolicy`` parameter to delete."""

    FOREGROUND = "Foreground"
    BACKGROUND = "Background"
    ORPHAN = "Orphan"


class ServiceType(str, Enum):
    """Exposure type of a Kubernetes ``Service``."""

    CLUSTER_IP = "ClusterIP"
    NODE_PORT = "NodePort"


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


class CustomObjectMetadata(BaseModel):
    """Subset of the metadata of a custom object used by the operator.

    Custom objects are returned by the Kubernetes API as raw JSON, so the
    metadata uses the camel-case field names of the wire format.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    name: str = Field(..., title="Name of the object")

    namespace: str = Field(..., title="Namespace of the object")

    uid: str | None = Field(None, title="Unique ID of the object")

    generation: int | None = Field(
        None,
        title="Generation of the object",
        description="Incremented by Kubernetes on every change to the spec",
    )

    resource_version: str | None = Field(
        None,
        title="Resource version",
        description="Opaque version token used for optimistic concurrency",
    )

    deletion_timestamp: str | None = Field(
        None,
        title="Deletion timestamp",
        description="Set when deletion of the object has been requested",
    )

    labels: dict[str, str] = Field({}, title="Labels of the object")

    @property
    def key(self) -> ObjectKey:
        """Work queue key of the object."""
        return ObjectKey(namespace=self.namespace, name=self.name)
