"""MinIO operator background processing."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

from aiojobs import Scheduler
from safir.datetime import current_datetime
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .services.dispatcher import EventDispatcher
from .services.workqueue import WorkQueue

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Manage MinIO operator background tasks.

    While the operator is running, it needs to perform several continuous or
    periodic background tasks, namely:

    #. Run the workers of each control loop.
    #. Watch tenants, their services and pods, and action requests.
    #. Queue every tenant and action request on the resync interval.
    #. Queue every tenant for a health check on the health check interval.

    This class only does the task management. All of the work of these tasks
    is done by the dispatcher and by the handlers of the work queues.

    Parameters
    ----------
    dispatcher
        Router of Kubernetes events to the work queues.
    queues
        Work queues of every control loop.
    resync_interval
        How frequently to queue every object.
    health_check_interval
        How frequently to check the health of every tenant.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.

    Attributes
    ----------
    queues
        Work queues of every control loop.
    """

    def __init__(
        self,
        *,
        dispatcher: EventDispatcher,
        queues: list[WorkQueue],
        resync_interval: timedelta,
        health_check_interval: timedelta,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._dispatcher = dispatcher
        self.queues = queues
        self._resync_interval = resync_interval
        self._health_check_interval = health_check_interval
        self._slack = slack_client
        self._logger = logger

        self._scheduler: Scheduler | None = None

    async def start(self) -> None:
        """Start all background tasks.

        Intended to be called during operator startup. Every object is queued
        in the foreground first, so that startup fails if Kubernetes cannot
        be reached.
        """
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()

        async with asyncio.TaskGroup() as tg:
            self._logger.info("Queuing existing objects")
            tg.create_task(self._dispatcher.resync())
            tg.create_task(self._dispatcher.enqueue_health())

        coros = [q.run() for q in self.queues]
        coros.extend(
            [
                self._dispatcher.watch_tenants(),
                self._dispatcher.watch_services(),
                self._dispatcher.watch_pods(),
                self._dispatcher.watch_jobs(),
                self._loop(
                    self._dispatcher.resync,
                    self._resync_interval,
                    "resyncing objects",
                ),
                self._loop(
                    self._dispatcher.enqueue_health,
                    self._health_check_interval,
                    "queuing health checks",
                ),
            ]
        )
        self._logger.info("Starting background tasks")
        for coro in coros:
            await self._scheduler.spawn(coro)

    async def stop(self) -> None:
        """Stop the background tasks."""
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        await self._scheduler.close()
        self._scheduler = None
        for queue in self.queues:
            queue.close()

    async def _loop(
        self,
        call: Callable[[], Awaitable[None]],
        interval: timedelta,
        description: str,
    ) -> None:
        """Wrap a coroutine in a periodic scheduling loop.

        The provided coroutine is run after every interval. The first run
        happens after one interval, since startup already did the same work.

        Parameters
        ----------
        call
            Async function to run repeatedly.
        interval
            Scheduling interval to use.
        description
            Description of the background task for error reporting.
        """
        while True:
            await asyncio.sleep(interval.total_seconds())
            start = current_datetime(microseconds=True)
            try:
                await call()
            except Exception as e:
                elapsed = current_datetime(microseconds=True) - start
                msg = f"Uncaught exception {description}"
                self._logger.exception(msg, delay=elapsed.total_seconds())
                if self._slack:
                    await self._slack.post_uncaught_exception(e)
