"""Tracking of the last applied spec of each tenant."""

from __future__ import annotations

from kubernetes_asyncio.client import V1ControllerRevision
from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ..constants import REVISION_HASH_ANNOTATION
from ..models.v1alpha1.tenant import Tenant, TenantSpec
from ..storage.kubernetes.deleter import ControllerRevisionStorage
from ..timeout import Timeout
from .builder.tenant import TenantBuilder, spec_fingerprint

__all__ = ["RevisionTracker"]


class RevisionTracker:
    """Record the last applied spec of each tenant.

    The snapshot is a ``ControllerRevision`` named after the tenant. It is
    only used as the baseline for deciding which pools changed. It is never
    updated in place: when the spec changes, the old snapshot is deleted and
    a new one is created.

    Parameters
    ----------
    storage
        Storage for ``ControllerRevision`` objects.
    builder
        Builder for tenant objects.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        storage: ControllerRevisionStorage,
        builder: TenantBuilder,
        logger: BoundLogger,
    ) -> None:
        self._storage = storage
        self._builder = builder
        self._logger = logger

    async def read(
        self, tenant: Tenant, timeout: Timeout
    ) -> V1ControllerRevision | None:
        """Read the current snapshot of a tenant.

        Parameters
        ----------
        tenant
            Tenant.
        timeout
            Timeout on operation.

        Returns
        -------
        kubernetes_asyncio.client.V1ControllerRevision or None
            Snapshot, or `None` if none has been recorded yet.
        """
        return await self._storage.read(tenant.name, tenant.namespace, timeout)

    def baseline(
        self, revision: V1ControllerRevision | None
    ) -> TenantSpec | None:
        """Extract the recorded spec from a snapshot.

        A snapshot that cannot be parsed is treated as missing, so every pool
        is considered new. Server pods that already exist are left alone in
        that case.

        Parameters
        ----------
        revision
            Snapshot, if any.

        Returns
        -------
        TenantSpec or None
            Recorded spec, or `None` if there is no usable snapshot.
        """
        if not revision or not revision.data:
            return None
        try:
            return TenantSpec.model_validate(revision.data)
        except ValidationError as e:
            self._logger.warning(
                "Ignoring invalid revision",
                name=revision.metadata.name,
                namespace=revision.metadata.namespace,
                error=str(e),
            )
            return None

    async def record(
        self,
        tenant: Tenant,
        revision: V1ControllerRevision | None,
        timeout: Timeout,
    ) -> bool:
        """Record the current spec of a tenant if it changed.

        Parameters
        ----------
        tenant
            Tenant.
        revision
            Snapshot read at the start of the reconcile pass, if any.
        timeout
            Timeout on operation.

        Returns
        -------
        bool
            `True` if a new snapshot was recorded, `False` if the existing one
            already matched.

        Raises
        ------
        ControllerTimeoutError
            Raised if the old snapshot was not deleted in time.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        fingerprint = spec_fingerprint(tenant.spec)
        number = 1
        if revision:
            if self._fingerprint(revision) == fingerprint:
                return False
            number = (revision.revision or 0) + 1
            await self._storage.delete(
                tenant.name, tenant.namespace, timeout, wait=True
            )
        body = self._builder.build_revision(tenant, number)
        await self._storage.create(tenant.namespace, body, timeout)
        self._logger.info("Recorded new revision", revision=number)
        return True

    def _fingerprint(self, revision: V1ControllerRevision) -> str | None:
        """Get the fingerprint of the spec recorded in a snapshot."""
        annotations = revision.metadata.annotations or {}
        if fingerprint := annotations.get(REVISION_HASH_ANNOTATION):
            return fingerprint
        spec = self.baseline(revision)
        return spec_fingerprint(spec) if spec else None
