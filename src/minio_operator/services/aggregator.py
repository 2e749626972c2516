"""Aggregation of the observed state of tenants."""

from __future__ import annotations

from datetime import timedelta

from kubernetes_asyncio.client import V1PersistentVolumeClaim, V1Pod
from structlog.stdlib import BoundLogger

from ..constants import POOL_LABEL, TENANT_LABEL
from ..models.domain.kubernetes import ObjectKey, PodPhase, ServiceType
from ..models.domain.reconcile import PoolStatusPolicy, ReconcileResult
from ..models.v1alpha1.tenant import (
    DeployStatus,
    Pool,
    PoolDeployStatus,
    PoolStatus,
    PVCStatus,
    ServerStatus,
    ServiceAddresses,
    Tenant,
    TenantStatus,
)
from ..storage.kubernetes.custom import TenantStorage
from ..storage.kubernetes.deleter import PersistentVolumeClaimStorage
from ..storage.kubernetes.node import NodeStorage
from ..storage.kubernetes.updater import PodStorage, ServiceStorage
from ..timeout import Timeout
from .builder.tenant import TenantBuilder
from .status import TenantStatusWriter

__all__ = ["StatusAggregator", "overall_status", "pool_status"]


def overall_status(pools: list[PoolStatus]) -> DeployStatus:
    """Combine the status of every pool into the status of the tenant.

    Parameters
    ----------
    pools
        Status of each pool.

    Returns
    -------
    DeployStatus
        ``Failed`` if any pool failed, otherwise ``Running`` if any pool is
        still deploying, otherwise ``Completed``.
    """
    statuses = {p.status for p in pools}
    if PoolDeployStatus.FAILED in statuses:
        return DeployStatus.FAILED
    if PoolDeployStatus.RUNNING in statuses:
        return DeployStatus.RUNNING
    return DeployStatus.COMPLETED


def pool_status(
    phases: list[str], policy: PoolStatusPolicy
) -> PoolDeployStatus:
    """Derive the status of a pool from the phases of its server pods.

    Parameters
    ----------
    phases
        Phases of the server pods, in the order they were listed.
    policy
        How to combine the phases.

    Returns
    -------
    PoolDeployStatus
        Status of the pool. Under the last-seen policy, a pool without pods
        has no status and so does not keep the tenant from completing. Under
        the all policy, it is still deploying.
    """
    match policy:
        case PoolStatusPolicy.LAST_SEEN:
            status = PoolDeployStatus.UNKNOWN
            for phase in phases:
                status = _phase_to_status(phase)
        case PoolStatusPolicy.ALL:
            status = PoolDeployStatus.RUNNING
            statuses = {_phase_to_status(p) for p in phases}
            if PoolDeployStatus.FAILED in statuses:
                status = PoolDeployStatus.FAILED
            elif statuses == {PoolDeployStatus.COMPLETED}:
                status = PoolDeployStatus.COMPLETED
    return status


def _phase_to_status(phase: str) -> PoolDeployStatus:
    """Map the phase of one pod to a pool status."""
    match phase:
        case PodPhase.RUNNING.value:
            return PoolDeployStatus.COMPLETED
        case PodPhase.PENDING.value:
            return PoolDeployStatus.RUNNING
        case _:
            return PoolDeployStatus.FAILED


class StatusAggregator:
    """Recompute the observed state of tenants from their child objects.

    The storage claim, service address, and pool sections of the status are
    rebuilt from scratch on every pass. Health, restart count, and message
    belong to other loops and are left alone.

    Parameters
    ----------
    builder
        Builder for tenant objects, used for names and addresses.
    tenant_storage
        Storage for tenants.
    pvc_storage
        Storage for persistent volume claims.
    pod_storage
        Storage for pods.
    service_storage
        Storage for services.
    node_storage
        Storage for nodes.
    status_writer
        Writer for tenant status.
    policy
        How to derive pool status from pod phases.
    requeue_interval
        How long to wait before aggregating a tenant that is not yet
        completely deployed again.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        builder: TenantBuilder,
        tenant_storage: TenantStorage,
        pvc_storage: PersistentVolumeClaimStorage,
        pod_storage: PodStorage,
        service_storage: ServiceStorage,
        node_storage: NodeStorage,
        status_writer: TenantStatusWriter,
        policy: PoolStatusPolicy,
        requeue_interval: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._builder = builder
        self._tenant = tenant_storage
        self._pvc = pvc_storage
        self._pod = pod_storage
        self._service = service_storage
        self._node = node_storage
        self._writer = status_writer
        self._policy = policy
        self._requeue_interval = requeue_interval
        self._logger = logger

    async def aggregate(
        self, key: ObjectKey, timeout: Timeout
    ) -> ReconcileResult:
        """Recompute and store the status of one tenant.

        Parameters
        ----------
        key
            Namespace and name of the tenant.
        timeout
            Timeout on operation.

        Returns
        -------
        ReconcileResult
            Requests another pass unless the tenant is completely deployed.
        """
        tenant = await self._tenant.read(key.name, key.namespace, timeout)
        if not tenant or tenant.is_deleting:
            return ReconcileResult()
        pvc_status = await self._build_pvc_status(tenant, timeout)
        service = await self._build_service_addresses(tenant, timeout)
        pools = [
            await self._build_pool_status(tenant, p, timeout)
            for p in tenant.spec.pools
        ]
        overall = overall_status(pools)

        def change(status: TenantStatus) -> TenantStatus:
            update = {
                "status": overall,
                "pvc_status": pvc_status,
                "service": service,
                "pool_status": pools,
            }
            return status.model_copy(update=update)

        await self._writer.modify(tenant, change, timeout)
        self._logger.debug(
            "Aggregated MinIO status",
            tenant=key.name,
            namespace=key.namespace,
            status=overall.value,
        )
        if overall == DeployStatus.COMPLETED:
            return ReconcileResult()
        return ReconcileResult(requeue_after=self._requeue_interval)

    async def _build_pool_status(
        self, tenant: Tenant, pool: Pool, timeout: Timeout
    ) -> PoolStatus:
        selector = f"{TENANT_LABEL}={tenant.name},{POOL_LABEL}={pool.name}"
        pods = await self._pod.list(
            tenant.namespace, timeout, label_selector=selector
        )
        servers = [self._build_server_status(p) for p in pods]
        phases = [s.status for s in servers]
        available = phases.count(PodPhase.RUNNING.value)
        return PoolStatus(
            name=pool.name,
            status=pool_status(phases, self._policy),
            replicas=pool.servers,
            available_replicas=available,
            servers=servers,
        )

    async def _build_pvc_status(
        self, tenant: Tenant, timeout: Timeout
    ) -> list[PVCStatus]:
        pvcs = await self._pvc.list(
            tenant.namespace,
            timeout,
            label_selector=f"{TENANT_LABEL}={tenant.name}",
        )
        return [self._build_claim_status(p) for p in pvcs]

    def _build_claim_status(self, pvc: V1PersistentVolumeClaim) -> PVCStatus:
        capacity = ""
        phase = ""
        if pvc.status:
            phase = pvc.status.phase or ""
            capacity = (pvc.status.capacity or {}).get("storage", "")
        spec = pvc.spec
        return PVCStatus(
            name=pvc.metadata.name,
            status=phase,
            volume=(spec.volume_name or "") if spec else "",
            capacity=capacity,
            storage_class=(spec.storage_class_name or "") if spec else "",
        )

    def _build_server_status(self, pod: V1Pod) -> ServerStatus:
        status = pod.status
        if not status:
            return ServerStatus(name=pod.metadata.name)
        return ServerStatus(
            name=pod.metadata.name,
            host_ip=status.host_ip or "",
            pod_ip=status.pod_ip or "",
            status=status.phase or "",
        )

    async def _build_service_addresses(
        self, tenant: Tenant, timeout: Timeout
    ) -> ServiceAddresses:
        """Build the addresses of the data and console services.

        Services exposed through a node port are addressed through the
        internal address of a node, which is only looked up if needed.
        Services that do not exist yet have an empty address.
        """
        node_ip: str | None = None
        addresses = {}
        names = {
            "minio": self._builder.service_name(tenant),
            "console": self._builder.console_service_name(tenant),
        }
        for field, name in names.items():
            service = await self._service.read(name, tenant.namespace, timeout)
            if not service or not service.spec.ports:
                addresses[field] = ""
                continue
            port = service.spec.ports[0]
            if service.spec.type == ServiceType.NODE_PORT.value:
                if node_ip is None:
                    node_ip = await self._node.get_internal_ipv4(timeout)
                addresses[field] = f"http://{node_ip}:{port.node_port}"
            else:
                host = self._builder.service_fqdn(name, tenant.namespace)
                addresses[field] = f"http://{host}:{port.port}"
        return ServiceAddresses(**addresses)
