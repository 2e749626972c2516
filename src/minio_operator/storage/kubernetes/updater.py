"""Generic Kubernetes object storage including replace and watch.

Tenant child objects that the operator corrects in place (services and
server pods) additionally need to be replaced and watched across all
namespaces, so that changes to them trigger the control loops.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Generic

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Pod, V1Service
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout
from .deleter import KubernetesObjectDeleter, T
from .watcher import KubernetesWatcher

__all__ = [
    "KubernetesObjectUpdater",
    "PodStorage",
    "ServiceStorage",
]


class KubernetesObjectUpdater(KubernetesObjectDeleter, Generic[T]):
    """Generic Kubernetes object storage supporting replace and watch.

    Parameters
    ----------
    create_method
        Method to create this type of object.
    delete_method
        Method to delete this type of object.
    list_method
        Method to list all of this type of object in a namespace.
    list_all_method
        Method to list all of this type of object across namespaces.
    read_method
        Method to read this type of object.
    replace_method
        Method to replace this type of object.
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
        list_all_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        replace_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            create_method=create_method,
            delete_method=delete_method,
            list_method=list_method,
            read_method=read_method,
            object_type=object_type,
            kind=kind,
            logger=logger,
        )
        self._list_all = list_all_method
        self._replace = replace_method

    async def replace(
        self, name: str, namespace: str, body: T, timeout: Timeout
    ) -> None:
        """Replace an existing Kubernetes object.

        The body must carry the resource version of the object it was based
        on, so that a concurrent change is detected as a conflict.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        body
            New contents of the object.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TimeoutError
            Raised if the timeout expired.
        """
        msg = f"Replacing {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            await self._replace(
                name, namespace, body, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error replacing object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    def watch(self, label_selector: str) -> KubernetesWatcher[T]:
        """Create a watcher for matching objects in all namespaces.

        Parameters
        ----------
        label_selector
            Only watch objects matching this label selector.

        Returns
        -------
        KubernetesWatcher
            Watcher that runs until stopped.
        """
        return KubernetesWatcher(
            method=self._list_all,
            object_type=self._type,
            kind=self._kind,
            label_selector=label_selector,
            logger=self._logger,
        )


class PodStorage(KubernetesObjectUpdater):
    """Storage layer for ``Pod`` objects.

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
            create_method=api.create_namespaced_pod,
            delete_method=api.delete_namespaced_pod,
            list_method=api.list_namespaced_pod,
            list_all_method=api.list_pod_for_all_namespaces,
            read_method=api.read_namespaced_pod,
            replace_method=api.replace_namespaced_pod,
            object_type=V1Pod,
            kind="Pod",
            logger=logger,
        )


class ServiceStorage(KubernetesObjectUpdater):
    """Storage layer for ``Service`` objects.

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
            create_method=api.create_namespaced_service,
            delete_method=api.delete_namespaced_service,
            list_method=api.list_namespaced_service,
            list_all_method=api.list_service_for_all_namespaces,
            read_method=api.read_namespaced_service,
            replace_method=api.replace_namespaced_service,
            object_type=V1Service,
            kind="Service",
            logger=logger,
        )
