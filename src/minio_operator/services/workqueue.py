"""Work queues driving the control loops."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..models.domain.kubernetes import ObjectKey
from ..models.domain.reconcile import ReconcileResult
from ..timeout import Timeout

type Handler = Callable[[ObjectKey, Timeout], Awaitable[ReconcileResult]]
"""Function processing one key of a work queue."""

__all__ = ["Handler", "WorkQueue"]


class WorkQueue:
    """Queue of object keys processed by a pool of workers.

    A key is never processed by two workers at once. A key added while it
    is waiting is only queued once, and a key added while it is being
    processed is processed again once the current pass finishes.

    A pass that raises an exception is logged, reported to Slack, and retried
    after an exponential backoff. A pass that returns a requeue delay is
    retried after that delay. A successful pass resets the backoff.

    Parameters
    ----------
    name
        Name of the control loop, for logging and timeouts.
    handler
        Function called to process each key.
    workers
        Number of keys to process concurrently.
    timeout
        Timeout for one pass of the handler.
    backoff
        Delay before the first retry of a failed key.
    backoff_max
        Upper bound on the retry delay of a failed key.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.

    Attributes
    ----------
    name
        Name of the control loop.
    timeout
        Timeout for one pass of the handler.
    """

    def __init__(
        self,
        *,
        name: str,
        handler: Handler,
        workers: int,
        timeout: timedelta,
        backoff: timedelta,
        backoff_max: timedelta,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self.name = name
        self._handler = handler
        self._workers = workers
        self.timeout = timeout
        self._backoff = backoff
        self._backoff_max = backoff_max
        self._slack = slack_client
        self._logger = logger.bind(queue=name)

        self._queue: asyncio.Queue[ObjectKey] = asyncio.Queue()
        self._dirty: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._failures: dict[ObjectKey, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()

    def add(self, key: ObjectKey) -> None:
        """Queue a key for processing.

        Parameters
        ----------
        key
            Key to process.
        """
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.put_nowait(key)

    def add_after(self, key: ObjectKey, delay: timedelta) -> None:
        """Queue a key for processing after a delay.

        Parameters
        ----------
        key
            Key to process.
        delay
            How long to wait before queuing the key.
        """
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            if handle:
                self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay.total_seconds(), fire)
        self._timers.add(handle)

    def close(self) -> None:
        """Cancel all delayed additions."""
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    async def join(self) -> None:
        """Wait until every queued key has been processed.

        Keys that are waiting for a delay to expire are not counted.
        """
        await self._queue.join()

    async def run(self) -> None:
        """Process keys until cancelled."""
        self._logger.debug("Starting workers", workers=self._workers)
        try:
            async with asyncio.TaskGroup() as tg:
                for _ in range(self._workers):
                    tg.create_task(self._worker())
        finally:
            self.close()

    async def _process(self, key: ObjectKey) -> None:
        """Process one key and schedule any retry."""
        timeout = Timeout(f"{self.name} of {key}", self.timeout, str(key))
        try:
            async with timeout.enforce():
                result = await self._handler(key, timeout)
        except Exception as e:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
            backoff = self._backoff * 2 ** min(failures, 32)
            delay = min(backoff, self._backoff_max)
            self._logger.exception(
                f"Error in {self.name}",
                key=str(key),
                retry_after=delay.total_seconds(),
            )
            await self._maybe_post_exception(e)
            self.add_after(key, delay)
            return
        self._failures.pop(key, None)
        if result.requeue_after is not None:
            self.add_after(key, result.requeue_after)

    async def _maybe_post_exception(self, exc: Exception) -> None:
        """Post an exception to Slack if Slack reporting is configured."""
        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            self._dirty.discard(key)
            self._processing.add(key)
            try:
                await self._process(key)
            finally:
                self._processing.discard(key)
                if key in self._dirty:
                    self._queue.put_nowait(key)
                self._queue.task_done()
