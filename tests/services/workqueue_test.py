"""Tests for the work queues driving the control loops."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from safir.testing.slack import MockSlackWebhook

from minio_operator.exceptions import KubernetesError
from minio_operator.factory import Factory
from minio_operator.models.domain.kubernetes import ObjectKey
from minio_operator.models.domain.reconcile import ReconcileResult
from minio_operator.timeout import Timeout

from ..support.workqueue import RecordingHandler, running, wait_for

KEY = ObjectKey(namespace="minio", name="tenant")
OTHER_KEY = ObjectKey(namespace="minio", name="other")


@pytest.mark.asyncio
async def test_deduplicate(factory: Factory) -> None:
    handler = RecordingHandler()
    queue = factory.create_work_queue("test", handler)
    queue.add(KEY)
    queue.add(OTHER_KEY)
    queue.add(KEY)

    async with running([queue]):
        await queue.join()
    assert sorted(handler.keys, key=str) == [OTHER_KEY, KEY]


@pytest.mark.asyncio
async def test_single_flight(factory: Factory) -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    active = 0
    max_active = 0
    calls = 0

    async def handler(key: ObjectKey, timeout: Timeout) -> ReconcileResult:
        nonlocal active, max_active, calls
        calls += 1
        active += 1
        max_active = max(max_active, active)
        started.set()
        await release.wait()
        active -= 1
        return ReconcileResult()

    queue = factory.create_work_queue("test", handler)
    async with running([queue]):
        queue.add(KEY)
        await started.wait()

        # Adding the key while it is being processed must not start a second
        # concurrent pass, but must cause another pass afterwards.
        queue.add(KEY)
        queue.add(KEY)
        await asyncio.sleep(0.05)
        assert calls == 1
        release.set()
        await queue.join()

    assert calls == 2
    assert max_active == 1


@pytest.mark.asyncio
async def test_retry(
    factory: Factory, mock_slack: MockSlackWebhook
) -> None:
    calls = 0

    async def handler(key: ObjectKey, timeout: Timeout) -> ReconcileResult:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise KubernetesError("Something failed", kind="Pod")
        return ReconcileResult()

    queue = factory.create_work_queue("test", handler)
    async with running([queue]):
        queue.add(KEY)
        await wait_for(lambda: calls == 2)

    assert len(mock_slack.messages) == 1
    assert "Something failed" in str(mock_slack.messages[0])


@pytest.mark.asyncio
async def test_requeue_after(factory: Factory) -> None:
    requeue = ReconcileResult(requeue_after=timedelta(milliseconds=20))
    handler = RecordingHandler([requeue])
    queue = factory.create_work_queue("test", handler)

    async with running([queue]):
        queue.add(KEY)
        await wait_for(lambda: len(handler.keys) == 2)
        await asyncio.sleep(0.1)

    assert handler.keys == [KEY, KEY]


@pytest.mark.asyncio
async def test_close(factory: Factory) -> None:
    handler = RecordingHandler()
    queue = factory.create_work_queue("test", handler)

    async with running([queue]):
        queue.add_after(KEY, timedelta(milliseconds=50))
        queue.close()
        await asyncio.sleep(0.1)

    assert handler.keys == []
