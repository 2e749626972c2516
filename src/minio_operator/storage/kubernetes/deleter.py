"""Generic Kubernetes object storage including list and delete.

Provides a generic Kubernetes object management class and instantiations of
that class for Kubernetes object types that support list and delete (as well
as create and read, provided by the superclass). Storage classes for object
types that only need those operations are provided here; storage classes
that also replace objects are in
`~minio_operator.storage.kubernetes.updater`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, Generic, TypeVar

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1ControllerRevision,
    V1PersistentVolumeClaim,
)
from structlog.stdlib import BoundLogger

from ...exceptions import ControllerTimeoutError, KubernetesError
from ...models.domain.kubernetes import (
    KubernetesModel,
    PropagationPolicy,
    WatchEventType,
)
from ...timeout import Timeout
from .creator import KubernetesObjectCreator
from .watcher import KubernetesWatcher

#: Type of Kubernetes object being manipulated.
T = TypeVar("T", bound=KubernetesModel)

__all__ = [
    "ControllerRevisionStorage",
    "KubernetesObjectDeleter",
    "PersistentVolumeClaimStorage",
    "T",
]


class KubernetesObjectDeleter(KubernetesObjectCreator, Generic[T]):
    """Generic Kubernetes object storage supporting list and delete.

    This class provides a wrapper around any Kubernetes object type that
    implements create, read, list, and delete with logging, exception
    conversion, and waiting for deletion to complete.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use one of the kind-specific storage classes
    built on top of it instead.

    Parameters
    ----------
    create_method
        Method to create this type of object.
    delete_method
        Method to delete this type of object.
    list_method
        Method to list all of this type of object.
    read_method
        Method to read this type of object.
    object_type
        Type of object being acted on.
    kind
        Kubernetes kind of object being acted on.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        create_method: Callable[..., Awaitable[Any]],
        delete_method: Callable[..., Awaitable[Any]],
        list_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            create_method=create_method,
            read_method=read_method,
            object_type=object_type,
            kind=kind,
            logger=logger,
        )
        self._delete = delete_method
        self._list = list_method

    async def delete(
        self,
        name: str,
        namespace: str,
        timeout: Timeout,
        *,
        wait: bool = False,
        propagation_policy: PropagationPolicy | None = None,
    ) -> None:
        """Delete a Kubernetes object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.
        wait
            Whether to wait for the object to be deleted.
        propagation_policy
            Propagation policy for the object deletion.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired waiting for deletion.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TimeoutError
            Raised if the timeout expired.
        """
        extra_args: dict[str, str | float] = {
            "_request_timeout": timeout.left()
        }
        if propagation_policy:
            extra_args["propagation_policy"] = propagation_policy.value
        self._logger.debug(
            f"Deleting {self._kind}",
            name=name,
            namespace=namespace,
            options=extra_args,
        )
        try:
            await self._delete(name, namespace, **extra_args)
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
        if wait:
            await self.wait_for_deletion(name, namespace, timeout)

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
    ) -> list[T]:
        """List all objects of the appropriate kind in the namespace.

        Parameters
        ----------
        namespace
            Namespace to list.
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list
            List of objects found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TimeoutError
            Raised if the timeout expired.
        """
        extra_args: dict[str, str | float] = {
            "_request_timeout": timeout.left()
        }
        if label_selector:
            extra_args["label_selector"] = label_selector
        try:
            objs = await self._list(namespace, **extra_args)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs.items

    async def wait_for_deletion(
        self, name: str, namespace: str, timeout: Timeout
    ) -> None:
        """Wait for an object deletion to complete.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            How long to wait for the object to be deleted.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        logger = self._logger.bind(name=name, namespace=namespace)
        obj = await self.read(name, namespace, timeout)
        if not obj:
            return

        # Wait for the object to be deleted.
        watch_timeout = timeout.partial(timedelta(seconds=timeout.left() - 2))
        watcher = KubernetesWatcher(
            method=self._list,
            object_type=self._type,
            kind=self._kind,
            name=name,
            namespace=namespace,
            resource_version=obj.metadata.resource_version,
            timeout=timedelta(seconds=watch_timeout.left()),
            logger=logger,
        )
        try:
            async with watch_timeout.enforce():
                async for event in watcher.watch():
                    if event.action == WatchEventType.DELETED:
                        return
        except ControllerTimeoutError:
            # If the watch had to be restarted because the resource version
            # was too old and the object was deleted while the watch was
            # restarting, we could have missed the delete event. Therefore,
            # before timing out, do a final check with a short timeout to see
            # if the object is gone.
            read_timeout = timeout.partial(timedelta(seconds=2))
            if not await self.read(name, namespace, read_timeout):
                return
            raise
        finally:
            await watcher.close()

        # This should be impossible; someone called stop on the watcher.
        raise RuntimeError("Wait for object deletion unexpectedly stopped")


class ControllerRevisionStorage(KubernetesObjectDeleter):
    """Storage layer for ``ControllerRevision`` objects.

    Used to hold the revision snapshot of each tenant.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_controller_revision,
            delete_method=api.delete_namespaced_controller_revision,
            list_method=api.list_namespaced_controller_revision,
            read_method=api.read_namespaced_controller_revision,
            object_type=V1ControllerRevision,
            kind="ControllerRevision",
            logger=logger,
        )


class PersistentVolumeClaimStorage(KubernetesObjectDeleter):
    """Storage layer for ``PersistentVolumeClaim`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_persistent_volume_claim,
            delete_method=api.delete_namespaced_persistent_volume_claim,
            list_method=api.list_namespaced_persistent_volume_claim,
            read_method=api.read_namespaced_persistent_volume_claim,
            object_type=V1PersistentVolumeClaim,
            kind="PersistentVolumeClaim",
            logger=logger,
        )
