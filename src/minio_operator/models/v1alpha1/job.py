"""Models for the ``MinIOJob`` custom resource."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from ..domain.kubernetes import CustomObjectMetadata
from .tenant import CamelCaseModel

__all__ = [
    "TenantJob",
    "TenantJobAction",
    "TenantJobSpec",
]


class TenantJobAction(str, Enum):
    """Administrative actions that can be requested for a tenant."""

    RESTART = "Restart"


class TenantJobSpec(CamelCaseModel):
    """Requested action."""

    minio_ref: str = Field(
        ...,
        title="Name of the tenant",
        description="The tenant must be in the same namespace as the request",
    )

    action: TenantJobAction = Field(..., title="Action to perform")


class TenantJob(CamelCaseModel):
    """A ``MinIOJob`` custom object.

    Action requests are ephemeral. The operator deletes them once the action
    has succeeded and leaves them in place on failure so that the action is
    retried.
    """

    api_version: str = Field(..., title="API version of the object")

    kind: str = Field(..., title="Kind of the object")

    metadata: CustomObjectMetadata = Field(..., title="Object metadata")

    spec: TenantJobSpec = Field(..., title="Requested action")
