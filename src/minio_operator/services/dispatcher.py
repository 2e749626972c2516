"""Routing of Kubernetes events to the control loops."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..constants import KUBERNETES_REQUEST_TIMEOUT, TENANT_LABEL
from ..models.domain.kubernetes import KubernetesModel, ObjectKey
from ..models.domain.kubernetes import WatchEventType as Action
from ..storage.kubernetes.custom import TenantJobStorage, TenantStorage
from ..storage.kubernetes.updater import PodStorage, ServiceStorage
from ..storage.kubernetes.watcher import KubernetesWatcher, WatchEvent
from ..timeout import Timeout
from .workqueue import WorkQueue

__all__ = ["EventDispatcher"]


class EventDispatcher:
    """Turn Kubernetes events into work for the control loops.

    Changes to tenants, to their services and pods, and to action requests
    are watched across the cluster and mapped to the keys of the work queues
    that must react to them. Periodic resyncs catch anything a watch missed.

    Parameters
    ----------
    tenant_storage
        Storage for tenants.
    job_storage
        Storage for action requests.
    pod_storage
        Storage for pods.
    service_storage
        Storage for services.
    reconcile_queue
        Queue of the top-level reconciler.
    status_queue
        Queue of the status aggregator.
    health_queue
        Queue of the health checker.
    job_queue
        Queue of the job executor.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        tenant_storage: TenantStorage,
        job_storage: TenantJobStorage,
        pod_storage: PodStorage,
        service_storage: ServiceStorage,
        reconcile_queue: WorkQueue,
        status_queue: WorkQueue,
        health_queue: WorkQueue,
        job_queue: WorkQueue,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._tenant = tenant_storage
        self._job = job_storage
        self._pod = pod_storage
        self._service = service_storage
        self._reconcile = reconcile_queue
        self._status = status_queue
        self._health = health_queue
        self._jobs = job_queue
        self._slack = slack_client
        self._logger = logger

        # Last seen generation of each tenant, used to ignore changes that
        # only touched the status or metadata.
        self._generations: dict[ObjectKey, int | None] = {}

    def handle_job_event(self, event: WatchEvent[dict[str, Any]]) -> None:
        """Queue an action request that was created or changed.

        Parameters
        ----------
        event
            Watch event for an action request.
        """
        if event.action == Action.DELETED:
            return
        self._jobs.add(ObjectKey.from_metadata(event.object["metadata"]))

    def handle_pod_event(self, event: WatchEvent[KubernetesModel]) -> None:
        """Queue the tenant of a changed server pod for aggregation.

        Parameters
        ----------
        event
            Watch event for a pod.
        """
        if key := self._tenant_key(event.object):
            self._status.add(key)

    def handle_service_event(
        self, event: WatchEvent[KubernetesModel]
    ) -> None:
        """Queue the tenant of a changed service.

        Parameters
        ----------
        event
            Watch event for a service.
        """
        if key := self._tenant_key(event.object):
            self._reconcile.add(key)
            self._status.add(key)

    def handle_tenant_event(self, event: WatchEvent[dict[str, Any]]) -> None:
        """Queue a changed tenant.

        Modifications that did not change the generation of the tenant, such
        as status updates, are ignored.

        Parameters
        ----------
        event
            Watch event for a tenant.
        """
        metadata = event.object["metadata"]
        key = ObjectKey.from_metadata(metadata)
        generation = metadata.get("generation")
        match event.action:
            case Action.ADDED:
                self._generations[key] = generation
                self._health.add(key)
            case Action.DELETED:
                self._generations.pop(key, None)
            case Action.MODIFIED:
                if self._generations.get(key) == generation:
                    return
                self._generations[key] = generation
        self._reconcile.add(key)
        self._status.add(key)

    async def enqueue_health(self) -> None:
        """Queue every tenant for a health check."""
        timeout = Timeout("Listing tenants", KUBERNETES_REQUEST_TIMEOUT)
        for metadata in await self._tenant.list_keys(timeout):
            self._health.add(metadata.key)

    async def resync(self) -> None:
        """Queue every tenant and action request."""
        timeout = Timeout("Resync", KUBERNETES_REQUEST_TIMEOUT)
        tenants = await self._tenant.list_keys(timeout)
        for metadata in tenants:
            self._reconcile.add(metadata.key)
            self._status.add(metadata.key)
        jobs = await self._job.list_keys(timeout)
        for metadata in jobs:
            self._jobs.add(metadata.key)
        self._logger.debug(
            "Resynced all objects", tenants=len(tenants), jobs=len(jobs)
        )

    async def watch_jobs(self) -> None:
        """Watch action requests until cancelled."""
        await self._watch(
            self._job.watch, self.handle_job_event, "action requests"
        )

    async def watch_pods(self) -> None:
        """Watch server pods until cancelled."""
        await self._watch(
            lambda: self._pod.watch(TENANT_LABEL),
            self.handle_pod_event,
            "pods",
        )

    async def watch_services(self) -> None:
        """Watch tenant services until cancelled."""
        await self._watch(
            lambda: self._service.watch(TENANT_LABEL),
            self.handle_service_event,
            "services",
        )

    async def watch_tenants(self) -> None:
        """Watch tenants until cancelled."""
        await self._watch(
            self._tenant.watch, self.handle_tenant_event, "tenants"
        )

    async def _maybe_post_exception(self, exc: Exception) -> None:
        """Post an exception to Slack if Slack reporting is configured."""
        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)

    def _tenant_key(self, obj: KubernetesModel) -> ObjectKey | None:
        """Get the key of the tenant owning a child object, if any."""
        tenant = (obj.metadata.labels or {}).get(TENANT_LABEL)
        if not tenant:
            return None
        return ObjectKey(namespace=obj.metadata.namespace, name=tenant)

    async def _watch[T](
        self,
        factory: Callable[[], KubernetesWatcher[T]],
        handler: Callable[[WatchEvent[T]], None],
        description: str,
    ) -> None:
        """Feed the events of a watch to a handler until cancelled.

        The watch is restarted after any error.
        """
        while True:
            watcher = factory()
            try:
                async for event in watcher.watch():
                    handler(event)
            except Exception as e:
                self._logger.exception(f"Error watching {description}")
                await self._maybe_post_exception(e)
                await asyncio.sleep(1)
            finally:
                await watcher.close()
