"""Tests for aggregation of the observed state of tenants."""

from __future__ import annotations

from datetime import timedelta
from itertools import count
from typing import Any

import pytest
from kubernetes_asyncio.client import (
    V1PersistentVolumeClaimStatus,
    V1Pod,
    V1Service,
)

from minio_operator.config import Config
from minio_operator.constants import TENANT_PLURAL
from minio_operator.factory import Factory
from minio_operator.models.domain.kubernetes import ObjectKey
from minio_operator.models.domain.reconcile import PoolStatusPolicy
from minio_operator.models.v1alpha1.tenant import (
    DeployStatus,
    PoolDeployStatus,
    PoolStatus,
)
from minio_operator.services.aggregator import overall_status, pool_status
from minio_operator.timeout import Timeout

from ..support.config import configure
from ..support.data import create_tenant, read_input_node_data
from ..support.kubernetes import MockMinIOKubernetesApi

KEY = ObjectKey(namespace="minio", name="tenant")


def assign_pod_addresses(mock: MockMinIOKubernetesApi) -> None:
    """Give new pods a host and pod IP address, as the kubelet would."""
    addresses = count(1)

    async def assign(pod: V1Pod) -> None:
        if not pod.status.pod_ip:
            pod.status.host_ip = "192.168.0.1"
            pod.status.pod_ip = f"10.0.0.{next(addresses)}"

    mock.register_create_hook_for_test("Pod", assign)


def assign_node_ports(mock: MockMinIOKubernetesApi) -> None:
    """Allocate node ports to node port services."""
    ports = count(30000)

    async def assign(service: V1Service) -> None:
        if service.spec.type != "NodePort":
            return
        for port in service.spec.ports:
            if not port.node_port:
                port.node_port = next(ports)

    mock.register_create_hook_for_test("Service", assign)


async def set_pod_phase(
    mock: MockMinIOKubernetesApi, name: str, phase: str
) -> None:
    patch = [{"op": "replace", "path": "/status/phase", "value": phase}]
    await mock.patch_namespaced_pod_status(name, "minio", patch)


def test_pool_status_last_seen() -> None:
    policy = PoolStatusPolicy.LAST_SEEN
    assert pool_status([], policy) == PoolDeployStatus.UNKNOWN
    assert pool_status(["Running"], policy) == PoolDeployStatus.COMPLETED
    assert pool_status(["Pending"], policy) == PoolDeployStatus.RUNNING
    assert pool_status(["Unknown"], policy) == PoolDeployStatus.FAILED

    # Only the last pod counts.
    phases = ["Failed", "Pending", "Running"]
    assert pool_status(phases, policy) == PoolDeployStatus.COMPLETED
    phases = ["Running", "Running", "Pending"]
    assert pool_status(phases, policy) == PoolDeployStatus.RUNNING


def test_pool_status_all() -> None:
    policy = PoolStatusPolicy.ALL
    assert pool_status([], policy) == PoolDeployStatus.RUNNING
    phases = ["Running", "Running"]
    assert pool_status(phases, policy) == PoolDeployStatus.COMPLETED
    phases = ["Failed", "Pending", "Running"]
    assert pool_status(phases, policy) == PoolDeployStatus.FAILED
    phases = ["Running", "Pending"]
    assert pool_status(phases, policy) == PoolDeployStatus.RUNNING
    phases = ["Running", "Succeeded"]
    assert pool_status(phases, policy) == PoolDeployStatus.FAILED


def test_overall_status() -> None:
    def pools(*statuses: PoolDeployStatus) -> list[PoolStatus]:
        return [
            PoolStatus(name=f"pool-{i}", status=s, replicas=1)
            for i, s in enumerate(statuses)
        ]

    completed = PoolDeployStatus.COMPLETED
    running = PoolDeployStatus.RUNNING
    failed = PoolDeployStatus.FAILED
    assert overall_status([]) == DeployStatus.COMPLETED
    assert overall_status(pools(completed)) == DeployStatus.COMPLETED
    assert overall_status(pools(completed, running)) == DeployStatus.RUNNING
    status = overall_status(pools(running, failed, completed))
    assert status == DeployStatus.FAILED

    # A pool with no pods under the last-seen policy holds nothing back.
    empty = pool_status([], PoolStatusPolicy.LAST_SEEN)
    assert overall_status(pools(empty)) == DeployStatus.COMPLETED
    assert overall_status(pools(empty, completed)) == DeployStatus.COMPLETED
    assert overall_status(pools(empty, running)) == DeployStatus.RUNNING
    assert overall_status(pools(empty, failed)) == DeployStatus.FAILED
    empty = pool_status([], PoolStatusPolicy.ALL)
    assert overall_status(pools(empty, completed)) == DeployStatus.RUNNING


@pytest.mark.asyncio
async def test_aggregate(
    config: Config,
    factory: Factory,
    mock_kubernetes: MockMinIOKubernetesApi,
    tenant: dict[str, Any],
    timeout: Timeout,
) -> None:
    assign_pod_addresses(mock_kubernetes)
    await create_tenant(mock_kubernetes, config, tenant)
    await factory.create_reconciler().reconcile(KEY, timeout)
    aggregator = factory.create_status_aggregator()

    await set_pod_phase(mock_kubernetes, "pool-0-1", "Pending")
    pvc = await mock_kubernetes.read_namespaced_persistent_volume_claim(
        "tenant-pool-0-0-data-0", "minio"
    )
    pvc.status = V1PersistentVolumeClaimStatus(
        phase="Bound", capacity={"storage": "1Gi"}
    )

    result = await aggregator.aggregate(KEY, timeout)
    assert result.requeue_after == config.status_requeue_interval

    stored = mock_kubernetes.get_custom_object_for_test(
        TENANT_PLURAL, "minio", "tenant"
    )
    status = stored["status"]
    assert status["status"] == "Running"
    assert status["service"] == {
        "minio": "http://tenant.minio.svc.cluster.local:80",
        "console": "http://tenant-console.minio.svc.cluster.local:9090",
    }
    assert len(status["pvcStatus"]) == 5
    claims = {c["name"]: c for c in status["pvcStatus"]}
    assert claims["tenant-pool-0-0-data-0"] == {
        "name": "tenant-pool-0-0-data-0",
        "status": "Bound",
        "volume": "",
        "capacity": "1Gi",
        "storageClass": "standard",
    }
    assert claims["tenant-pool-1-0-data-0"]["status"] == ""

    pools = {p["name"]: p for p in status["poolStatus"]}
    assert pools["pool-0"]["replicas"] == 2
    assert pools["pool-0"]["availableReplicas"] == 1
    assert pools["pool-1"]["status"] == "Completed"
    assert pools["pool-1"]["availableReplicas"] == 1
    server = pools["pool-1"]["servers"][0]
    assert server["name"] == "pool-1-0"
    assert server["hostIP"] == "192.168.0.1"
    assert server["status"] == "Running"
    assert server["podIP"].startswith("10.0.0.")

    # Once every server is running, the tenant is completely deployed.
    await set_pod_phase(mock_kubernetes, "pool-0-1", "Running")
    result = await aggregator.aggregate(KEY, timeout)
    assert not result.requeue
    stored = mock_kubernetes.get_custom_object_for_test(
        TENANT_PLURAL, "minio", "tenant"
    )
    assert stored["status"]["status"] == "Completed"
    pools = {p["name"]: p for p in stored["status"]["poolStatus"]}
    assert pools["pool-0"]["status"] == "Completed"
    assert pools["pool-0"]["availableReplicas"] == 2


@pytest.mark.asyncio
async def test_aggregate_preserves_other_fields(
    config: Config,
    factory: Factory,
    mock_kubernetes: MockMinIOKubernetesApi,
    tenant: dict[str, Any],
    timeout: Timeout,
) -> None:
    status = {
        "status": "Running",
        "healthStatus": "Healthy",
        "restartCount": 3,
        "message": "Something old",
    }
    await create_tenant(mock_kubernetes, config, tenant, status=status)
    await factory.create_status_aggregator().aggregate(KEY, timeout)

    stored = mock_kubernetes.get_custom_object_for_test(
        TENANT_PLURAL, "minio", "tenant"
    )
    assert stored["status"]["healthStatus"] == "Healthy"
    assert stored["status"]["restartCount"] == 3
    assert stored["status"]["message"] == "Something old"

    # Nothing has been created, so no pool has a status and nothing holds
    # back the tenant.
    assert stored["status"]["status"] == "Completed"
    assert stored["status"]["pvcStatus"] == []
    assert stored["status"]["service"] == {"minio": "", "console": ""}
    for pool in stored["status"]["poolStatus"]:
        assert pool["status"] == ""
        assert pool["availableReplicas"] == 0


@pytest.mark.asyncio
async def test_node_port_addresses(
    config: Config,
    factory: Factory,
    mock_kubernetes: MockMinIOKubernetesApi,
    tenant: dict[str, Any],
    timeout: Timeout,
) -> None:
    assign_node_ports(mock_kubernetes)
    tenant["spec"]["exposeService"] = {"minio": True, "console": True}
    await create_tenant(mock_kubernetes, config, tenant)
    await factory.create_reconciler().reconcile(KEY, timeout)
    await factory.create_status_aggregator().aggregate(KEY, timeout)

    service = await mock_kubernetes.read_namespaced_service("tenant", "minio")
    node_port = service.spec.ports[0].node_port
    console = await mock_kubernetes.read_namespaced_service(
        "tenant-console", "minio"
    )
    console_port = console.spec.ports[0].node_port
    assert {node_port, console_port} == {30000, 30001}
    stored = mock_kubernetes.get_custom_object_for_test(
        TENANT_PLURAL, "minio", "tenant"
    )
    assert stored["status"]["service"] == {
        "minio": f"http://192.168.1.12:{node_port}",
        "console": f"http://192.168.1.12:{console_port}",
    }


@pytest.mark.asyncio
async def test_policy_config(
    mock_kubernetes: MockMinIOKubernetesApi,
    tenant: dict[str, Any],
    timeout: Timeout,
) -> None:
    config = await configure("policy")
    assert config.pool_status_policy == PoolStatusPolicy.ALL
    assert config.cluster_domain == "example.internal"
    assert config.resync_interval == timedelta(hours=1)
    mock_kubernetes.set_nodes_for_test(
        read_input_node_data("standard", "nodes.json")
    )
    await create_tenant(mock_kubernetes, config, tenant)

    async with Factory.standalone(config) as factory:
        await factory.create_reconciler().reconcile(KEY, timeout)
        await set_pod_phase(mock_kubernetes, "pool-0-0", "Failed")
        aggregator = factory.create_status_aggregator()
        result = await aggregator.aggregate(KEY, timeout)

    assert result.requeue
    stored = mock_kubernetes.get_custom_object_for_test(
        TENANT_PLURAL, "minio", "tenant"
    )
    assert stored["status"]["status"] == "Failed"
    pools = {p["name"]: p for p in stored["status"]["poolStatus"]}
    assert pools["pool-0"]["status"] == "Failed"
    assert pools["pool-1"]["status"] == "Completed"
    assert stored["status"]["service"]["minio"] == (
        "http://tenant.minio.svc.example.internal:80"
    )
