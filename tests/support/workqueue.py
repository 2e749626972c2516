"""Helpers for running work queues in tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

from minio_operator.models.domain.kubernetes import ObjectKey
from minio_operator.models.domain.reconcile import ReconcileResult
from minio_operator.services.workqueue import WorkQueue
from minio_operator.timeout import Timeout

__all__ = ["RecordingHandler", "running", "wait_for"]


class RecordingHandler:
    """Work queue handler that records the keys it was called with.

    Parameters
    ----------
    results
        Results to return from successive calls. Once exhausted, every call
        returns a result without a requeue.
    """

    def __init__(self, results: list[ReconcileResult] | None = None) -> None:
        self.keys: list[ObjectKey] = []
        self._results = list(results or [])

    async def __call__(
        self, key: ObjectKey, timeout: Timeout
    ) -> ReconcileResult:
        self.keys.append(key)
        if self._results:
            return self._results.pop(0)
        return ReconcileResult()


@asynccontextmanager
async def running(queues: list[WorkQueue]) -> AsyncIterator[None]:
    """Run the workers of some work queues for the duration of a block."""
    tasks = [asyncio.create_task(q.run()) for q in queues]
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task


async def wait_for(
    condition: Callable[[], bool],
    timeout: timedelta = timedelta(seconds=5),
) -> None:
    """Wait for a condition to become true.

    Raises
    ------
    TimeoutError
        Raised if the condition did not become true in time.
    """
    async with asyncio.timeout(timeout.total_seconds()):
        while not condition():
            await asyncio.sleep(0.01)
