"""Tests for the control loops running in the background."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
from fastapi import FastAPI

from minio_operator.config import Config
from minio_operator.constants import ADMIN_READ_TIMEOUT, TENANT_PLURAL
from minio_operator.factory import Factory

from .support.data import create_tenant
from .support.kubernetes import MockMinIOKubernetesApi
from .support.workqueue import wait_for

WAIT = timedelta(seconds=10)


def tenant_status(mock: MockMinIOKubernetesApi) -> str | None:
    obj = mock.get_custom_object_for_test(TENANT_PLURAL, "minio", "tenant")
    return obj.get("status", {}).get("status")


@pytest.mark.asyncio
async def test_startup(
    config: Config,
    factory: Factory,
    mock_kubernetes: MockMinIOKubernetesApi,
    tenant: dict[str, Any],
) -> None:
    await create_tenant(mock_kubernetes, config, tenant)
    manager = factory.create_background_task_manager()
    await manager.start()
    try:
        await wait_for(
            lambda: len(mock_kubernetes.get_all_objects_for_test("Pod")) == 3,
            WAIT,
        )
        await wait_for(
            lambda: tenant_status(mock_kubernetes) == "Running", WAIT
        )
    finally:
        await manager.stop()

    pvcs = mock_kubernetes.get_all_objects_for_test("PersistentVolumeClaim")
    assert len(pvcs) == 5
    services = mock_kubernetes.get_all_objects_for_test("Service")
    assert len(services) == 3

    # Stopping twice only warns.
    await manager.stop()


@pytest.mark.asyncio
async def test_watch(
    app: FastAPI,
    config: Config,
    mock_kubernetes: MockMinIOKubernetesApi,
    tenant: dict[str, Any],
) -> None:
    await create_tenant(mock_kubernetes, config, tenant)
    await wait_for(
        lambda: len(mock_kubernetes.get_all_objects_for_test("Pod")) == 3,
        WAIT,
    )
    await wait_for(
        lambda: bool(
            mock_kubernetes.get_all_objects_for_test("ControllerRevision")
        ),
        WAIT,
    )

    # A spec change made while the operator is running rebuilds the pools.
    spec = {**tenant["spec"], "image": "minio/minio:latest"}
    await mock_kubernetes.update_custom_object_spec_for_test(
        TENANT_PLURAL, "minio", "tenant", spec
    )

    def image_updated() -> bool:
        pods = mock_kubernetes.get_all_objects_for_test("Pod")
        return all(
            p.spec.containers[0].image == "minio/minio:latest" for p in pods
        )

    def pools_updated() -> bool:
        reasons = [
            e.reason for e in mock_kubernetes.get_tenant_events_for_test()
        ]
        return reasons.count("PoolUpdated") == 2

    await wait_for(image_updated, WAIT)
    await wait_for(pools_updated, WAIT)
    events = mock_kubernetes.get_tenant_events_for_test()
    reasons = [e.reason for e in events]
    assert reasons.count("PoolCreated") == 2


@pytest.mark.asyncio
async def test_queue_timeouts(config: Config, factory: Factory) -> None:
    manager = factory.create_background_task_manager()
    timeouts = {q.name: q.timeout for q in manager.queues}
    assert timeouts["reconcile"] == config.reconcile_timeout
    assert timeouts["status aggregation"] == config.reconcile_timeout

    # Admin API calls may run for up to the read timeout of the admin
    # client, so a health check or job pass must be allowed longer.
    assert timeouts["health check"] == config.admin_timeout
    assert timeouts["job execution"] == config.admin_timeout
    assert timeouts["job execution"] > ADMIN_READ_TIMEOUT
    assert timeouts["health check"] > ADMIN_READ_TIMEOUT
