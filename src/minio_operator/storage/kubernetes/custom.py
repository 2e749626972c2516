"""Storage layer for the operator's custom objects."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from pydantic import BaseModel, ValidationError
from structlog.stdlib import BoundLogger

from ...constants import (
    TENANT_JOB_KIND,
    TENANT_JOB_PLURAL,
    TENANT_KIND,
    TENANT_PLURAL,
)
from ...exceptions import (
    InvalidObjectError,
    KubernetesError,
    StatusConflictError,
)
from ...models.domain.kubernetes import CustomObjectMetadata
from ...models.v1alpha1.job import TenantJob
from ...models.v1alpha1.tenant import Tenant
from ...timeout import Timeout
from .watcher import KubernetesWatcher

__all__ = [
    "CustomStorage",
    "TenantJobStorage",
    "TenantStorage",
]


class CustomStorage[M: BaseModel]:
    """Storage layer for Kubernetes custom objects.

    Custom objects are exchanged with Kubernetes as raw JSON and parsed into
    Pydantic models on read.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group for the custom objects to handle.
    version
        API version for the custom objects to handle.
    plural
        API plural under which those custom objects are managed.
    kind
        Name of the custom object kind, used for error reporting.
    model
        Pydantic model into which objects are parsed.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        api_client: ApiClient,
        group: str,
        version: str,
        plural: str,
        kind: str,
        model: type[M],
        logger: BoundLogger,
    ) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._group = group
        self._version = version
        self._plural = plural
        self._kind = kind
        self._model = model
        self._logger = logger

    async def delete(
        self, name: str, namespace: str, timeout: Timeout
    ) -> None:
        """Delete a custom object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TimeoutError
            Raised if the timeout expired.
        """
        msg = f"Deleting {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            await self._api.delete_namespaced_custom_object(
                self._group,
                self._version,
                namespace,
                self._plural,
                name,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def list_keys(self, timeout: Timeout) -> list[CustomObjectMetadata]:
        """List the metadata of all custom objects in the cluster.

        Only the metadata is parsed, so objects with an invalid spec are
        still returned and reported when they are processed.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        list of CustomObjectMetadata
            Metadata of every object found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TimeoutError
            Raised if the timeout expired.
        """
        try:
            objs = await self._api.list_cluster_custom_object(
                self._group,
                self._version,
                self._plural,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects", e, kind=self._kind
            ) from e
        return [
            CustomObjectMetadata.model_validate(o["metadata"])
            for o in objs["items"]
        ]

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> M | None:
        """Read and parse a custom object.

        Parameters
        ----------
        name
            Name of the custom object.
        namespace
            Namespace of the custom object.
        timeout
            Timeout on operation.

        Returns
        -------
        pydantic.BaseModel or None
            Parsed custom object, or `None` if it does not exist.

        Raises
        ------
        InvalidObjectError
            Raised if the object could not be parsed.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TimeoutError
            Raised if the timeout expired.
        """
        try:
            obj = await self._api.get_namespaced_custom_object(
                self._group,
                self._version,
                namespace,
                self._plural,
                name,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e
        try:
            return self._model.model_validate(obj)
        except ValidationError as e:
            key = f"{namespace}/{name}"
            raise InvalidObjectError.from_exception(self._kind, key, e) from e

    def watch(self) -> KubernetesWatcher[dict[str, Any]]:
        """Create a watcher for custom objects in all namespaces.

        Returns
        -------
        KubernetesWatcher
            Watcher that runs until stopped.
        """
        return KubernetesWatcher(
            method=self._api.list_cluster_custom_object,
            object_type=dict[str, Any],
            kind=self._kind,
            group=self._group,
            version=self._version,
            plural=self._plural,
            logger=self._logger,
        )


class TenantJobStorage(CustomStorage[TenantJob]):
    """Storage layer for ``MinIOJob`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group of the custom resource.
    version
        API version of the custom resource.
    logger
        Logger to use.
    """

    def __init__(
        self,
        api_client: ApiClient,
        group: str,
        version: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            api_client=api_client,
            group=group,
            version=version,
            plural=TENANT_JOB_PLURAL,
            kind=TENANT_JOB_KIND,
            model=TenantJob,
            logger=logger,
        )


class TenantStorage(CustomStorage[Tenant]):
    """Storage layer for ``MinIO`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group of the custom resource.
    version
        API version of the custom resource.
    logger
        Logger to use.
    """

    def __init__(
        self,
        api_client: ApiClient,
        group: str,
        version: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            api_client=api_client,
            group=group,
            version=version,
            plural=TENANT_PLURAL,
            kind=TENANT_KIND,
            model=Tenant,
            logger=logger,
        )

    async def replace_status(self, tenant: Tenant, timeout: Timeout) -> Tenant:
        """Replace the status of a tenant.

        Only the status subresource is written. The spec of the body sent to
        Kubernetes is always empty, so this can never change the spec.

        Parameters
        ----------
        tenant
            Tenant carrying the new status and the resource version it was
            read at.
        timeout
            Timeout on operation.

        Returns
        -------
        Tenant
            Tenant as stored by Kubernetes, with its new resource version.

        Raises
        ------
        InvalidObjectError
            Raised if the stored object could not be parsed.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        StatusConflictError
            Raised if the tenant was changed since it was read.
        TimeoutError
            Raised if the timeout expired.
        """
        metadata = tenant.metadata
        body = {
            "apiVersion": tenant.api_version,
            "kind": tenant.kind,
            "metadata": metadata.model_dump(by_alias=True, exclude_none=True),
            "spec": {},
            "status": tenant.status.to_wire(),
        }
        self._logger.debug(
            "Replacing MinIO status",
            name=metadata.name,
            namespace=metadata.namespace,
            resource_version=metadata.resource_version,
        )
        try:
            obj = await self._api.replace_namespaced_custom_object_status(
                self._group,
                self._version,
                metadata.namespace,
                self._plural,
                metadata.name,
                body,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            error = StatusConflictError if e.status == 409 else KubernetesError
            raise error.from_exception(
                "Error replacing status",
                e,
                kind=self._kind,
                namespace=metadata.namespace,
                name=metadata.name,
            ) from e
        try:
            return Tenant.model_validate(obj)
        except ValidationError as e:
            key = f"{metadata.namespace}/{metadata.name}"
            raise InvalidObjectError.from_exception(self._kind, key, e) from e
