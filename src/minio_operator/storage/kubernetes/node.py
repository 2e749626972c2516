"""Storage layer for Kubernetes node objects."""

from __future__ import annotations

import ipaddress

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Node
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["NodeStorage"]


class NodeStorage:
    """Storage layer for Kubernetes node objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger

    async def get_internal_ipv4(self, timeout: Timeout) -> str:
        """Find an internal IPv4 address of any node in the cluster.

        Used to build the external address of services exposed through a
        node port.

        Parameters
        ----------
        timeout
            Timeout for call.

        Returns
        -------
        str
            First internal IPv4 address found, or the empty string if no node
            has one.
        """
        for node in await self.list(timeout):
            if not node.status or not node.status.addresses:
                continue
            for address in node.status.addresses:
                if address.type != "InternalIP":
                    continue
                try:
                    ip = ipaddress.ip_address(address.address)
                except ValueError:
                    continue
                if ip.version == 4:
                    return address.address
        self._logger.debug("No node with an internal IPv4 address")
        return ""

    async def list(self, timeout: Timeout) -> list[V1Node]:
        """Get data about Kubernetes nodes.

        Parameters
        ----------
        timeout
            Timeout for call.

        Returns
        -------
        list of kubernetes_asyncio.client.models.V1Node
            List of node metadata.
        """
        try:
            nodes = await self._api.list_node(_request_timeout=timeout.left())
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error reading node information", e, kind="Node"
            ) from e
        return nodes.items
