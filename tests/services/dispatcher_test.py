"""Tests for routing of Kubernetes events to the control loops."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import pytest
from kubernetes_asyncio.client import V1ObjectMeta, V1Pod, V1Service

from minio_operator.config import Config
from minio_operator.constants import TENANT_LABEL, TENANT_PLURAL
from minio_operator.factory import Factory
from minio_operator.models.domain.kubernetes import ObjectKey, WatchEventType
from minio_operator.services.dispatcher import EventDispatcher
from minio_operator.services.workqueue import WorkQueue
from minio_operator.storage.kubernetes.watcher import WatchEvent

from ..support.data import create_job, create_tenant
from ..support.kubernetes import MockMinIOKubernetesApi
from ..support.workqueue import RecordingHandler, running, wait_for

KEY = ObjectKey(namespace="minio", name="tenant")
JOB_KEY = ObjectKey(namespace="minio", name="restart-tenant")


@dataclass
class Loops:
    """Recording handlers and queues of the four control loops."""

    reconcile: RecordingHandler
    status: RecordingHandler
    health: RecordingHandler
    jobs: RecordingHandler
    queues: list[WorkQueue]

    async def join(self) -> None:
        for queue in self.queues:
            await queue.join()


def build_dispatcher(factory: Factory) -> tuple[EventDispatcher, Loops]:
    handlers = [RecordingHandler() for _ in range(4)]
    queues = [
        factory.create_work_queue(f"test {i}", h)
        for i, h in enumerate(handlers)
    ]
    dispatcher = factory.create_event_dispatcher(
        reconcile_queue=queues[0],
        status_queue=queues[1],
        health_queue=queues[2],
        job_queue=queues[3],
    )
    loops = Loops(*handlers, queues=queues)
    return dispatcher, loops


def tenant_event(
    action: WatchEventType, tenant: dict[str, Any], generation: int
) -> WatchEvent[dict[str, Any]]:
    obj = {**tenant, "metadata": {**tenant["metadata"]}}
    obj["metadata"]["generation"] = generation
    return WatchEvent(action=action, object=obj)


@pytest.mark.asyncio
async def test_tenant_events(
    factory: Factory, tenant: dict[str, Any]
) -> None:
    dispatcher, loops = build_dispatcher(factory)
    async with running(loops.queues):
        event = tenant_event(WatchEventType.ADDED, tenant, 1)
        dispatcher.handle_tenant_event(event)
        await loops.join()
        assert loops.reconcile.keys == [KEY]
        assert loops.status.keys == [KEY]
        assert loops.health.keys == [KEY]

        # Status updates do not change the generation and are ignored.
        event = tenant_event(WatchEventType.MODIFIED, tenant, 1)
        dispatcher.handle_tenant_event(event)
        await loops.join()
        assert loops.reconcile.keys == [KEY]

        event = tenant_event(WatchEventType.MODIFIED, tenant, 2)
        dispatcher.handle_tenant_event(event)
        await loops.join()
        assert loops.reconcile.keys == [KEY, KEY]
        assert loops.status.keys == [KEY, KEY]

        event = tenant_event(WatchEventType.DELETED, tenant, 2)
        dispatcher.handle_tenant_event(event)
        await loops.join()
        assert loops.reconcile.keys == [KEY, KEY, KEY]
        assert loops.health.keys == [KEY]
        assert loops.jobs.keys == []


@pytest.mark.asyncio
async def test_child_events(factory: Factory) -> None:
    dispatcher, loops = build_dispatcher(factory)
    labels = {TENANT_LABEL: "tenant"}
    metadata = V1ObjectMeta(name="pool-0-0", namespace="minio", labels=labels)
    pod = V1Pod(metadata=metadata)
    stray = V1Pod(metadata=V1ObjectMeta(name="stray", namespace="minio"))
    service = V1Service(
        metadata=V1ObjectMeta(name="tenant", namespace="minio", labels=labels)
    )

    async with running(loops.queues):
        action = WatchEventType.MODIFIED
        dispatcher.handle_pod_event(WatchEvent(action=action, object=pod))
        dispatcher.handle_pod_event(WatchEvent(action=action, object=stray))
        await loops.join()
        assert loops.status.keys == [KEY]
        assert loops.reconcile.keys == []

        event = WatchEvent(action=WatchEventType.DELETED, object=service)
        dispatcher.handle_service_event(event)
        await loops.join()
        assert loops.reconcile.keys == [KEY]
        assert loops.status.keys == [KEY, KEY]
        assert loops.health.keys == []


@pytest.mark.asyncio
async def test_job_events(factory: Factory, job: dict[str, Any]) -> None:
    dispatcher, loops = build_dispatcher(factory)
    async with running(loops.queues):
        event = WatchEvent(action=WatchEventType.DELETED, object=job)
        dispatcher.handle_job_event(event)
        event = WatchEvent(action=WatchEventType.ADDED, object=job)
        dispatcher.handle_job_event(event)
        await loops.join()
    assert loops.jobs.keys == [JOB_KEY]
    assert loops.reconcile.keys == []


@pytest.mark.asyncio
async def test_resync(
    config: Config,
    factory: Factory,
    job: dict[str, Any],
    mock_kubernetes: MockMinIOKubernetesApi,
    tenant: dict[str, Any],
) -> None:
    await create_tenant(mock_kubernetes, config, tenant)
    await create_job(mock_kubernetes, config, job)
    dispatcher, loops = build_dispatcher(factory)

    async with running(loops.queues):
        await dispatcher.resync()
        await loops.join()
        assert loops.reconcile.keys == [KEY]
        assert loops.status.keys == [KEY]
        assert loops.jobs.keys == [JOB_KEY]
        assert loops.health.keys == []

        await dispatcher.enqueue_health()
        await loops.join()
        assert loops.health.keys == [KEY]


@pytest.mark.asyncio
async def test_watch_tenants(
    config: Config,
    factory: Factory,
    mock_kubernetes: MockMinIOKubernetesApi,
    tenant: dict[str, Any],
) -> None:
    await create_tenant(mock_kubernetes, config, tenant)
    dispatcher, loops = build_dispatcher(factory)

    async with running(loops.queues):
        task = asyncio.create_task(dispatcher.watch_tenants())
        try:
            await wait_for(lambda: len(loops.reconcile.keys) == 1)
            await wait_for(lambda: loops.health.keys == [KEY])

            spec = {**tenant["spec"], "image": "minio/minio:latest"}
            await mock_kubernetes.update_custom_object_spec_for_test(
                TENANT_PLURAL, "minio", "tenant", spec
            )
            await wait_for(lambda: len(loops.reconcile.keys) == 2)
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    assert loops.reconcile.keys == [KEY, KEY]
