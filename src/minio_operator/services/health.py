"""Health checks of tenants."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

from structlog.stdlib import BoundLogger

from ..constants import UNHEALTHY_REQUEUE_DELAY
from ..models.domain.kubernetes import ObjectKey
from ..models.domain.reconcile import ReconcileResult
from ..models.v1alpha1.tenant import (
    DeployStatus,
    HealthStatus,
    TenantStatus,
)
from ..storage.admin import MinIOAdminClient
from ..storage.kubernetes.custom import TenantStorage
from ..timeout import Timeout
from .builder.tenant import TenantBuilder
from .status import TenantStatusWriter

__all__ = ["HealthChecker"]


def _set_health(
    health: HealthStatus,
) -> Callable[[TenantStatus], TenantStatus]:
    """Build a status change that only sets the health."""

    def change(status: TenantStatus) -> TenantStatus:
        return status.model_copy(update={"health_status": health})

    return change


class HealthChecker:
    """Check the health endpoint of tenants and record the result.

    The health of a tenant is reset to ``Unknown`` at the start of every
    check, so an interrupted check never leaves a stale reading behind.

    Parameters
    ----------
    builder
        Builder for tenant objects, used for the administrative address.
    tenant_storage
        Storage for tenants.
    admin_client
        Client for the administrative API of tenants.
    status_writer
        Writer for tenant status.
    requeue_interval
        How long to wait before checking a tenant that is not yet completely
        deployed.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        builder: TenantBuilder,
        tenant_storage: TenantStorage,
        admin_client: MinIOAdminClient,
        status_writer: TenantStatusWriter,
        requeue_interval: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._builder = builder
        self._tenant = tenant_storage
        self._admin = admin_client
        self._writer = status_writer
        self._requeue_interval = requeue_interval
        self._logger = logger

    async def check(self, key: ObjectKey, timeout: Timeout) -> ReconcileResult:
        """Check the health of one tenant.

        Parameters
        ----------
        key
            Namespace and name of the tenant.
        timeout
            Timeout on operation.

        Returns
        -------
        ReconcileResult
            Requests another check soon if the tenant is not deployed yet or
            is unhealthy. Healthy tenants are checked again on the regular
            health check interval.
        """
        tenant = await self._tenant.read(key.name, key.namespace, timeout)
        if not tenant or tenant.is_deleting:
            return ReconcileResult()
        change = _set_health(HealthStatus.UNKNOWN)
        tenant = await self._writer.modify(tenant, change, timeout)
        if not tenant:
            return ReconcileResult()
        if tenant.status.status != DeployStatus.COMPLETED:
            return ReconcileResult(requeue_after=self._requeue_interval)

        url = self._builder.admin_url(tenant)
        healthy = await self._admin.is_healthy(url)
        health = HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY
        await self._writer.modify(tenant, _set_health(health), timeout)
        self._logger.debug(
            "Checked MinIO health",
            tenant=key.name,
            namespace=key.namespace,
            health=health.value,
        )
        if healthy:
            return ReconcileResult()
        return ReconcileResult(requeue_after=UNHEALTHY_REQUEUE_DELAY)
