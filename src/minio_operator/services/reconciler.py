"""Top-level reconciliation of tenants."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ..models.domain.kubernetes import ObjectKey
from ..models.domain.reconcile import ReconcileResult
from ..models.v1alpha1.tenant import DeployStatus, TenantStatus
from ..storage.kubernetes.custom import TenantStorage
from ..timeout import Timeout
from .differ import PoolDiffer
from .revision import RevisionTracker
from .status import TenantStatusWriter
from .synchronizer import ResourceSynchronizer

__all__ = ["TenantReconciler"]


class TenantReconciler:
    """Converge the child objects of tenants on their spec.

    Each pass reads the last recorded revision as the baseline, works out
    which pools changed, synchronizes the child objects, and only then
    records the current spec as the new revision. A pass that fails part way
    through therefore sees the same changes again when it is retried.

    Parameters
    ----------
    tenant_storage
        Storage for tenants.
    revisions
        Tracker of the last applied spec.
    differ
        Classifier of changed pools.
    synchronizer
        Synchronizer of child objects.
    status_writer
        Writer for tenant status.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        tenant_storage: TenantStorage,
        revisions: RevisionTracker,
        differ: PoolDiffer,
        synchronizer: ResourceSynchronizer,
        status_writer: TenantStatusWriter,
        logger: BoundLogger,
    ) -> None:
        self._tenant = tenant_storage
        self._revisions = revisions
        self._differ = differ
        self._synchronizer = synchronizer
        self._writer = status_writer
        self._logger = logger

    async def reconcile(
        self, key: ObjectKey, timeout: Timeout
    ) -> ReconcileResult:
        """Reconcile one tenant.

        Parameters
        ----------
        key
            Namespace and name of the tenant.
        timeout
            Timeout on operation.

        Returns
        -------
        ReconcileResult
            Never requests a requeue. Status changes of the children trigger
            further passes.

        Raises
        ------
        ChildSyncError
            Raised if a child object could not be created or updated.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        tenant = await self._tenant.read(key.name, key.namespace, timeout)
        if not tenant:
            return ReconcileResult()
        logger = self._logger.bind(tenant=key.name, namespace=key.namespace)
        if tenant.is_deleting:
            logger.debug("MinIO is being deleted, skipping")
            return ReconcileResult()

        if tenant.status.status is None:
            tenant = await self._writer.modify(
                tenant,
                lambda s: s.model_copy(update={"status": DeployStatus.NONE}),
                timeout,
            )
            if not tenant:
                return ReconcileResult()

        revision = await self._revisions.read(tenant, timeout)
        baseline = self._revisions.baseline(revision)
        changes = self._differ.diff(tenant.spec, baseline)
        await self._synchronizer.sync(tenant, changes, timeout)
        await self._revisions.record(tenant, revision, timeout)

        if not changes.empty:
            logger.info(
                "Deploying MinIO pools",
                added=[p.name for p in changes.added],
                updated=[p.name for p in changes.updated],
            )
            await self._writer.modify(tenant, _deploying, timeout)
        else:
            await self._writer.modify(tenant, _clear_message, timeout)
        return ReconcileResult()


def _clear_message(status: TenantStatus) -> TenantStatus:
    return status.model_copy(update={"message": ""})


def _deploying(status: TenantStatus) -> TenantStatus:
    """Mark a tenant as deploying and clear any earlier failure."""
    return status.model_copy(
        update={"status": DeployStatus.RUNNING, "message": ""}
    )
