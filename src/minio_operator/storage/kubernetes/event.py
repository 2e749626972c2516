"""Record Kubernetes events about tenants."""

from __future__ import annotations

from enum import Enum

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    CoreV1Event,
    V1EventSource,
    V1ObjectMeta,
    V1ObjectReference,
)
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ...models.v1alpha1.tenant import Tenant
from ...timeout import Timeout

__all__ = ["EventRecorder", "EventType"]


class EventType(Enum):
    """Possible values of the ``type`` field of Kubernetes events."""

    NORMAL = "Normal"
    WARNING = "Warning"


class EventRecorder:
    """Record Kubernetes events attached to a tenant.

    Events are the user-visible trail of what the operator did to a tenant.
    They are informational, so failure to record one is logged and otherwise
    ignored.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    component
        Name of the reporting component.
    logger
        Logger to use.
    """

    def __init__(
        self, api_client: ApiClient, component: str, logger: BoundLogger
    ) -> None:
        self._api = client.CoreV1Api(api_client)
        self._component = component
        self._logger = logger

    async def record(
        self,
        tenant: Tenant,
        reason: str,
        message: str,
        timeout: Timeout,
        *,
        event_type: EventType = EventType.NORMAL,
    ) -> None:
        """Record an event about a tenant.

        Parameters
        ----------
        tenant
            Tenant the event is about.
        reason
            Short machine-readable reason, in camel case.
        message
            Human-readable description.
        timeout
            Timeout on operation.
        event_type
            Type of the event.
        """
        now = current_datetime(microseconds=True)
        event = CoreV1Event(
            metadata=V1ObjectMeta(
                generate_name=f"{tenant.name}.", namespace=tenant.namespace
            ),
            involved_object=V1ObjectReference(
                api_version=tenant.api_version,
                kind=tenant.kind,
                name=tenant.name,
                namespace=tenant.namespace,
                uid=tenant.metadata.uid,
                resource_version=tenant.metadata.resource_version,
            ),
            reason=reason,
            message=message,
            type=event_type.value,
            first_timestamp=now,
            last_timestamp=now,
            count=1,
            source=V1EventSource(component=self._component),
        )
        try:
            await self._api.create_namespaced_event(
                tenant.namespace, event, _request_timeout=timeout.left()
            )
        except (ApiException, TimeoutError) as e:
            self._logger.warning(
                "Unable to record event",
                tenant=tenant.name,
                namespace=tenant.namespace,
                reason=reason,
                error=str(e),
            )
