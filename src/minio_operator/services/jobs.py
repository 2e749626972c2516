"""Execution of administrative action requests."""

from __future__ import annotations

from datetime import timedelta

from structlog.stdlib import BoundLogger

from ..models.domain.kubernetes import ObjectKey
from ..models.domain.reconcile import ReconcileResult
from ..models.v1alpha1.job import TenantJob, TenantJobAction
from ..models.v1alpha1.tenant import DeployStatus, Tenant, TenantStatus
from ..storage.admin import MinIOAdminClient
from ..storage.kubernetes.custom import TenantJobStorage, TenantStorage
from ..timeout import Timeout
from .builder.tenant import TenantBuilder
from .credentials import CredentialResolver
from .status import TenantStatusWriter

__all__ = ["TenantJobExecutor"]


class TenantJobExecutor:
    """Perform the actions requested through ``MinIOJob`` objects.

    A request is only acted on once its tenant is completely deployed. On
    success, the restart count of the tenant is incremented and the request
    is deleted. On failure, the request is left in place and the error is
    raised so that the action is retried with backoff. An action may
    therefore be performed more than once.

    Parameters
    ----------
    builder
        Builder for tenant objects, used for the administrative address.
    job_storage
        Storage for action requests.
    tenant_storage
        Storage for tenants.
    credentials
        Resolver for the root credentials of tenants.
    admin_client
        Client for the administrative API of tenants.
    status_writer
        Writer for tenant status.
    requeue_interval
        How long to wait before retrying a request whose tenant is not yet
        completely deployed.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        builder: TenantBuilder,
        job_storage: TenantJobStorage,
        tenant_storage: TenantStorage,
        credentials: CredentialResolver,
        admin_client: MinIOAdminClient,
        status_writer: TenantStatusWriter,
        requeue_interval: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._builder = builder
        self._job = job_storage
        self._tenant = tenant_storage
        self._credentials = credentials
        self._admin = admin_client
        self._writer = status_writer
        self._requeue_interval = requeue_interval
        self._logger = logger

    async def execute(
        self, key: ObjectKey, timeout: Timeout
    ) -> ReconcileResult:
        """Perform the action of one request.

        Parameters
        ----------
        key
            Namespace and name of the action request.
        timeout
            Timeout on operation.

        Returns
        -------
        ReconcileResult
            Requests another attempt if the tenant is not deployed yet.

        Raises
        ------
        AdminAPIError
            Raised if the administrative API call failed.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        MissingCredentialsError
            Raised if the root credentials of the tenant are not known.
        """
        job = await self._job.read(key.name, key.namespace, timeout)
        if not job:
            return ReconcileResult()
        logger = self._logger.bind(
            job=job.metadata.name,
            tenant=job.spec.minio_ref,
            namespace=key.namespace,
        )
        tenant = await self._tenant.read(
            job.spec.minio_ref, key.namespace, timeout
        )
        if not tenant or tenant.status.status != DeployStatus.COMPLETED:
            logger.info("MinIO not completely deployed, waiting")
            return ReconcileResult(requeue_after=self._requeue_interval)

        match job.spec.action:
            case TenantJobAction.RESTART:
                await self._restart(tenant, timeout)
        logger.info("Performed action", action=job.spec.action.value)
        await self._complete(tenant, job, timeout)
        return ReconcileResult()

    async def _complete(
        self, tenant: Tenant, job: TenantJob, timeout: Timeout
    ) -> None:
        """Count the restart and retire the request."""

        def change(status: TenantStatus) -> TenantStatus:
            count = status.restart_count + 1
            return status.model_copy(update={"restart_count": count})

        await self._writer.modify(tenant, change, timeout)
        metadata = job.metadata
        await self._job.delete(metadata.name, metadata.namespace, timeout)

    async def _restart(self, tenant: Tenant, timeout: Timeout) -> None:
        credentials = await self._credentials.resolve(tenant, timeout)
        await self._admin.restart(
            self._builder.admin_url(tenant),
            credentials.access_key,
            credentials.secret_key,
        )
