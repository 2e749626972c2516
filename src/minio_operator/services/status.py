"""Conflict-safe writes of tenant status."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from datetime import timedelta

from structlog.stdlib import BoundLogger

from ..constants import STATUS_UPDATE_BACKOFF_MAX
from ..exceptions import StatusConflictError, StatusUpdateExhaustedError
from ..models.v1alpha1.tenant import Tenant, TenantStatus
from ..storage.kubernetes.custom import TenantStorage
from ..timeout import Timeout

__all__ = ["TenantStatusWriter"]


class TenantStatusWriter:
    """Write the status of tenants without losing concurrent updates.

    Every control loop runs against the same tenant objects, so this is the
    only path through which tenant status is changed. Each write is a change
    applied to the status as last read. If Kubernetes rejects the write
    because the tenant changed in the meantime, the tenant is read again and
    the same change is applied to the fresh status.

    Parameters
    ----------
    storage
        Storage for tenant objects.
    attempts
        Maximum number of writes to try.
    backoff
        Base delay between attempts. The delay is jittered and doubles on
        each attempt, up to a fixed maximum.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        storage: TenantStorage,
        attempts: int,
        backoff: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._storage = storage
        self._attempts = attempts
        self._backoff = backoff
        self._logger = logger

    async def modify(
        self,
        tenant: Tenant,
        change: Callable[[TenantStatus], TenantStatus],
        timeout: Timeout,
    ) -> Tenant | None:
        """Apply a change to the status of a tenant.

        Parameters
        ----------
        tenant
            Tenant as last read.
        change
            Function that takes the current status and returns the new one.
            It may be called more than once and must not modify its argument.
        timeout
            Timeout on operation.

        Returns
        -------
        Tenant or None
            Tenant as stored after the change, or `None` if the tenant was
            deleted while retrying.

        Raises
        ------
        InvalidObjectError
            Raised if the tenant could not be parsed after a conflict.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        StatusUpdateExhaustedError
            Raised if every attempt conflicted.
        TimeoutError
            Raised if the timeout expired.
        """
        current = tenant
        for attempt in range(self._attempts):
            status = change(current.status)
            if status == current.status:
                return current
            updated = current.model_copy(update={"status": status})
            try:
                return await self._storage.replace_status(updated, timeout)
            except StatusConflictError:
                self._logger.debug(
                    "Status update conflicted, retrying",
                    tenant=tenant.name,
                    namespace=tenant.namespace,
                    attempt=attempt + 1,
                )
            if attempt + 1 == self._attempts:
                break
            await asyncio.sleep(self._delay(attempt))
            reread = await self._storage.read(
                tenant.name, tenant.namespace, timeout
            )
            if not reread:
                msg = "Tenant deleted during status update"
                self._logger.info(
                    msg, tenant=tenant.name, namespace=tenant.namespace
                )
                return None
            current = reread
        raise StatusUpdateExhaustedError(
            tenant.name, tenant.namespace, self._attempts
        )

    async def write(
        self, tenant: Tenant, status: TenantStatus, timeout: Timeout
    ) -> Tenant | None:
        """Replace the whole status of a tenant.

        Parameters
        ----------
        tenant
            Tenant as last read.
        status
            New status.
        timeout
            Timeout on operation.

        Returns
        -------
        Tenant or None
            Tenant as stored after the write, or `None` if the tenant was
            deleted while retrying.
        """
        return await self.modify(tenant, lambda _: status, timeout)

    def _delay(self, attempt: int) -> float:
        """Jittered exponential delay before the next attempt."""
        delay = self._backoff.total_seconds() * (2**attempt)
        delay = min(delay, STATUS_UPDATE_BACKOFF_MAX.total_seconds())
        return delay * random.uniform(0.5, 1.0)
