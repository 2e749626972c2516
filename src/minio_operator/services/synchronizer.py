"""Synchronization of the child objects of tenants."""

from __future__ import annotations

from kubernetes_asyncio.client import V1Service
from structlog.stdlib import BoundLogger

from ..constants import TENANT_LABEL
from ..exceptions import (
    ChildSyncError,
    InvalidObjectError,
    KubernetesError,
    StatusUpdateExhaustedError,
)
from ..models.domain.reconcile import PoolChanges
from ..models.v1alpha1.tenant import DeployStatus, Pool, Tenant
from ..storage.kubernetes.deleter import PersistentVolumeClaimStorage
from ..storage.kubernetes.event import EventRecorder, EventType
from ..storage.kubernetes.updater import PodStorage, ServiceStorage
from ..timeout import Timeout
from .builder.tenant import TenantBuilder
from .differ import service_mismatch
from .status import TenantStatusWriter

__all__ = ["ResourceSynchronizer"]


class ResourceSynchronizer:
    """Create and correct the child objects of a tenant.

    The three services are always checked against their expected form.
    Storage claims are created only for a tenant that has none at all, and
    server pods are only touched for the pools reported as added or updated.
    Pods of an updated pool are replaced in place, so changes to fields of
    a pod that Kubernetes treats as immutable cannot be applied.

    Any failure aborts the rest of the pass. The tenant is then marked as
    failed, a warning event is recorded, and the error is raised so that the
    pass is retried with backoff.

    Parameters
    ----------
    builder
        Builder for tenant objects.
    service_storage
        Storage for services.
    pvc_storage
        Storage for persistent volume claims.
    pod_storage
        Storage for pods.
    events
        Recorder of Kubernetes events.
    status_writer
        Writer for tenant status.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        builder: TenantBuilder,
        service_storage: ServiceStorage,
        pvc_storage: PersistentVolumeClaimStorage,
        pod_storage: PodStorage,
        events: EventRecorder,
        status_writer: TenantStatusWriter,
        logger: BoundLogger,
    ) -> None:
        self._builder = builder
        self._service = service_storage
        self._pvc = pvc_storage
        self._pod = pod_storage
        self._events = events
        self._writer = status_writer
        self._logger = logger

    async def sync(
        self, tenant: Tenant, changes: PoolChanges, timeout: Timeout
    ) -> None:
        """Bring the child objects of a tenant in line with its spec.

        Parameters
        ----------
        tenant
            Tenant.
        changes
            Pools whose servers must be created or rebuilt.
        timeout
            Timeout on operation.

        Raises
        ------
        ChildSyncError
            Raised if creating or updating a child object failed.
        TimeoutError
            Raised if the timeout expired.
        """
        try:
            await self._sync_services(tenant, timeout)
            await self._sync_pvcs(tenant, timeout)
            for pool in changes.added:
                await self._create_pool(tenant, pool, timeout)
            for pool in changes.updated:
                await self._update_pool(tenant, pool, timeout)
        except ChildSyncError as e:
            await self._mark_failed(tenant, e.message, timeout)
            raise

    async def _create_pool(
        self, tenant: Tenant, pool: Pool, timeout: Timeout
    ) -> None:
        """Create the server pods of a new pool."""
        for pod in self._builder.build_pods(tenant, pool):
            name = pod.metadata.name
            try:
                await self._pod.create(
                    tenant.namespace, pod, timeout, exists_ok=True
                )
            except KubernetesError as e:
                msg = f"Failed to create pod {name}: {e}"
                raise self._error(msg, tenant, "Pod", name) from e
        msg = f"Created {pool.servers} servers for pool {pool.name}"
        await self._events.record(tenant, "PoolCreated", msg, timeout)

    async def _mark_failed(
        self, tenant: Tenant, message: str, timeout: Timeout
    ) -> None:
        """Record a synchronization failure on the tenant.

        Problems recording the failure are logged but not raised, so that
        the original error is the one reported.
        """
        try:
            await self._writer.modify(
                tenant,
                lambda s: s.model_copy(
                    update={"status": DeployStatus.FAILED, "message": message}
                ),
                timeout,
            )
        except (
            InvalidObjectError,
            KubernetesError,
            StatusUpdateExhaustedError,
            TimeoutError,
        ):
            self._logger.exception(
                "Unable to mark MinIO as failed",
                tenant=tenant.name,
                namespace=tenant.namespace,
            )
        await self._events.record(
            tenant,
            "SyncFailed",
            message,
            timeout,
            event_type=EventType.WARNING,
        )

    async def _sync_pvcs(self, tenant: Tenant, timeout: Timeout) -> None:
        """Create the storage claims of a tenant that has none."""
        selector = f"{TENANT_LABEL}={tenant.name}"
        try:
            existing = await self._pvc.list(
                tenant.namespace, timeout, label_selector=selector
            )
        except KubernetesError as e:
            msg = f"Failed to list storage claims: {e}"
            raise self._error(msg, tenant, "PersistentVolumeClaim") from e
        if existing:
            return
        pvcs = self._builder.build_pvcs(tenant)
        for pvc in pvcs:
            name = pvc.metadata.name
            try:
                await self._pvc.create(
                    tenant.namespace, pvc, timeout, exists_ok=True
                )
            except KubernetesError as e:
                msg = f"Failed to create storage claim {name}: {e}"
                raise self._error(
                    msg, tenant, "PersistentVolumeClaim", name
                ) from e
        self._logger.info(
            "Created storage claims",
            tenant=tenant.name,
            namespace=tenant.namespace,
            count=len(pvcs),
        )

    async def _sync_service(
        self, tenant: Tenant, expected: V1Service, timeout: Timeout
    ) -> None:
        """Create a service or correct it if it does not match."""
        name = expected.metadata.name
        logger = self._logger.bind(
            tenant=tenant.name, namespace=tenant.namespace, service=name
        )
        try:
            live = await self._service.read(name, tenant.namespace, timeout)
            if not live:
                await self._service.create(tenant.namespace, expected, timeout)
                logger.info("Created service")
                msg = f"Created service {name}"
                reason = "ServiceCreated"
                await self._events.record(tenant, reason, msg, timeout)
                return
            mismatch = service_mismatch(live, expected)
            if not mismatch:
                return
            logger.info("Correcting service", reason=mismatch)

            # The cluster IP cannot be changed once assigned.
            spec = expected.spec
            spec.cluster_ip = live.spec.cluster_ip
            spec.cluster_ips = live.spec.cluster_ips
            live.metadata.labels = expected.metadata.labels
            live.metadata.annotations = expected.metadata.annotations
            live.spec = spec
            await self._service.replace(name, tenant.namespace, live, timeout)
        except KubernetesError as e:
            msg = f"Failed to synchronize service {name}: {e}"
            raise self._error(msg, tenant, "Service", name) from e
        msg = f"Updated service {name}: {mismatch}"
        await self._events.record(tenant, "ServiceUpdated", msg, timeout)

    async def _sync_services(self, tenant: Tenant, timeout: Timeout) -> None:
        """Create or correct the data, console, and headless services."""
        expected = [
            self._builder.build_service(tenant),
            self._builder.build_console_service(tenant),
            self._builder.build_headless_service(tenant),
        ]
        for service in expected:
            await self._sync_service(tenant, service, timeout)

    async def _update_pool(
        self, tenant: Tenant, pool: Pool, timeout: Timeout
    ) -> None:
        """Rebuild the server pods of a changed pool.

        Existing pods are replaced in place. Kubernetes only allows a few
        fields of a running pod to change, such as the container image. A
        change to anything else, for example the resource requests of the
        server container, is rejected with a 422 error. That fails the pass and
        marks the tenant as failed until the pods are deleted by hand, after
        which they are recreated from the new spec.
        """
        for pod in self._builder.build_pods(tenant, pool):
            name = pod.metadata.name
            try:
                live = await self._pod.read(name, tenant.namespace, timeout)
                if live:
                    version = live.metadata.resource_version
                    pod.metadata.resource_version = version
                    await self._pod.replace(
                        name, tenant.namespace, pod, timeout
                    )
                else:
                    await self._pod.create(
                        tenant.namespace, pod, timeout, exists_ok=True
                    )
            except KubernetesError as e:
                msg = f"Failed to update pod {name}: {e}"
                raise self._error(msg, tenant, "Pod", name) from e
        msg = f"Updated {pool.servers} servers for pool {pool.name}"
        await self._events.record(tenant, "PoolUpdated", msg, timeout)

    def _error(
        self, message: str, tenant: Tenant, kind: str, name: str = ""
    ) -> ChildSyncError:
        """Build the exception for a failed child object."""
        return ChildSyncError(
            message,
            tenant=tenant.name,
            namespace=tenant.namespace,
            kind=kind,
            name=name or tenant.name,
        )
