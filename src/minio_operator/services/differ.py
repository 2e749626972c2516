"""Comparison of desired and recorded tenant state."""

from __future__ import annotations

from kubernetes_asyncio.client import V1Service, V1ServicePort
from structlog.stdlib import BoundLogger

from ..models.domain.reconcile import NodeSelectorTrigger, PoolChanges
from ..models.v1alpha1.tenant import Pool, TenantSpec

__all__ = ["PoolDiffer", "service_mismatch"]


def service_mismatch(live: V1Service, expected: V1Service) -> str | None:
    """Check whether a live service matches its expected form.

    Labels and annotations of the expected service must be present with the
    same values, but the live service may have more. Ports are compared by
    position. The expected selector must be satisfied by the live selector.

    Parameters
    ----------
    live
        Service as read from Kubernetes.
    expected
        Service as constructed for the tenant.

    Returns
    -------
    str or None
        Description of the first mismatch found, or `None` if the live
        service matches.
    """
    live_labels = live.metadata.labels or {}
    for key, value in (expected.metadata.labels or {}).items():
        if live_labels.get(key) != value:
            return "labels don't match"
    live_annotations = live.metadata.annotations or {}
    for key, value in (expected.metadata.annotations or {}).items():
        if live_annotations.get(key) != value:
            return "annotations don't match"

    live_ports = live.spec.ports or []
    expected_ports = expected.spec.ports or []
    if len(live_ports) != len(expected_ports):
        return "ports don't match"
    for live_port, expected_port in zip(
        live_ports, expected_ports, strict=True
    ):
        if (
            live_port.name != expected_port.name
            or live_port.port != expected_port.port
            or _target_port(live_port) != _target_port(expected_port)
        ):
            return "ports don't match"

    live_selector = live.spec.selector or {}
    for key, value in (expected.spec.selector or {}).items():
        if live_selector.get(key) != value:
            return "selectors don't match"
    if live.spec.type != expected.spec.type:
        return "service type doesn't match"
    return None


def _target_port(port: V1ServicePort) -> int | str | None:
    """Get the effective target port of a service port.

    Kubernetes defaults the target port to the port, so a target port that
    was never set compares equal to the port.
    """
    target = port.target_port
    return target if target is not None else port.port


class PoolDiffer:
    """Classify the pools of a tenant relative to its last revision.

    Pools that are no longer present in the desired spec are not reported.
    They are never decommissioned.

    Parameters
    ----------
    node_selector_trigger
        When a node selector comparison marks a pool as updated.
    logger
        Logger to use.
    """

    def __init__(
        self, node_selector_trigger: NodeSelectorTrigger, logger: BoundLogger
    ) -> None:
        self._trigger = node_selector_trigger
        self._logger = logger

    def diff(
        self, spec: TenantSpec, baseline: TenantSpec | None
    ) -> PoolChanges:
        """Determine which pools were added or need to be updated.

        Parameters
        ----------
        spec
            Desired spec of the tenant.
        baseline
            Spec recorded in the last revision, or `None` if there is no
            revision yet, in which case every pool is new.

        Returns
        -------
        PoolChanges
            Added and updated pools. Updated pools are taken from the desired
            spec.
        """
        if not baseline:
            return PoolChanges(added=list(spec.pools))
        old_pools = {p.name: p for p in baseline.pools}
        changes = PoolChanges()
        for pool in spec.pools:
            old_pool = old_pools.get(pool.name)
            if not old_pool:
                changes.added.append(pool)
            elif self._needs_update(baseline, spec, old_pool, pool):
                changes.updated.append(pool)
        if not changes.empty:
            self._logger.debug(
                "Pools changed",
                added=[p.name for p in changes.added],
                updated=[p.name for p in changes.updated],
            )
        return changes

    def _needs_update(
        self, old: TenantSpec, new: TenantSpec, old_pool: Pool, new_pool: Pool
    ) -> bool:
        """Whether the servers of a pool must be rebuilt.

        Health checks and affinity are compared by value, so setting or
        clearing one of them counts as a change.
        """
        if (
            old.image != new.image
            or old.image_pull_policy != new.image_pull_policy
            or old.image_pull_secret_name != new.image_pull_secret_name
            or old.liveness != new.liveness
            or old.readiness != new.readiness
            or old.startup != new.startup
            or old.affinity != new.affinity
            or old.resources != new.resources
        ):
            return True
        old_selector = old_pool.node_selector or {}
        same_selector = old_selector == (new_pool.node_selector or {})
        match self._trigger:
            case NodeSelectorTrigger.CHANGED:
                return not same_selector
            case NodeSelectorTrigger.UNCHANGED:
                return same_selector
