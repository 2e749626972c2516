"""Component factory and process-wide context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Self

import structlog
from httpx import AsyncClient
from kubernetes_asyncio.client.api_client import ApiClient
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config
from .services.aggregator import StatusAggregator
from .services.builder.tenant import TenantBuilder
from .services.credentials import CredentialResolver
from .services.differ import PoolDiffer
from .services.dispatcher import EventDispatcher
from .services.health import HealthChecker
from .services.jobs import TenantJobExecutor
from .services.reconciler import TenantReconciler
from .services.revision import RevisionTracker
from .services.status import TenantStatusWriter
from .services.synchronizer import ResourceSynchronizer
from .services.workqueue import Handler, WorkQueue
from .storage.admin import MinIOAdminClient, build_admin_http_client
from .storage.kubernetes.creator import SecretStorage
from .storage.kubernetes.custom import TenantJobStorage, TenantStorage
from .storage.kubernetes.deleter import (
    ControllerRevisionStorage,
    PersistentVolumeClaimStorage,
)
from .storage.kubernetes.event import EventRecorder
from .storage.kubernetes.node import NodeStorage
from .storage.kubernetes.updater import PodStorage, ServiceStorage

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons and is managed by
    `~minio_operator.dependencies.context.ContextDependency`.
    """

    config: Config
    """MinIO operator configuration."""

    http_client: AsyncClient
    """HTTP client for the administrative API of tenants."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    background: BackgroundTaskManager
    """Manager of the control loops."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the operator configuration.

        Parameters
        ----------
        config
            MinIO operator configuration.

        Returns
        -------
        ProcessContext
            Shared context for an operator process.
        """
        http_client = build_admin_http_client()
        kubernetes_client = ApiClient()

        # This logger is used only by process-global singletons. The control
        # loops bind tenant and job context to it as they go.
        logger = structlog.get_logger(__name__)

        factory = Factory(
            config=config,
            kubernetes_client=kubernetes_client,
            http_client=http_client,
            logger=logger,
        )
        return cls(
            config=config,
            http_client=http_client,
            kubernetes_client=kubernetes_client,
            background=factory.create_background_task_manager(),
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.http_client.aclose()
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the control loops."""
        await self.background.start()

    async def stop(self) -> None:
        """Stop the control loops.

        Called during shutdown, or before recreating the process context using
        a different configuration.
        """
        await self.background.stop()


class Factory:
    """Build MinIO operator components.

    Parameters
    ----------
    config
        MinIO operator configuration.
    kubernetes_client
        Shared Kubernetes client.
    http_client
        HTTP client for the administrative API of tenants.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for operator components.

        Intended for the test suite. The control loops are not started.

        Parameters
        ----------
        config
            MinIO operator configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        http_client = build_admin_http_client()
        kubernetes_client = ApiClient()
        try:
            yield cls(
                config=config,
                kubernetes_client=kubernetes_client,
                http_client=http_client,
                logger=logger,
            )
        finally:
            await http_client.aclose()
            await kubernetes_client.close()

    def __init__(
        self,
        *,
        config: Config,
        kubernetes_client: ApiClient,
        http_client: AsyncClient,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._kubernetes_client = kubernetes_client
        self._http_client = http_client
        self._logger = logger

    def create_background_task_manager(self) -> BackgroundTaskManager:
        """Create the manager of the control loops.

        Returns
        -------
        BackgroundTaskManager
            Newly-created manager, not yet started.
        """
        reconcile_queue = self.create_work_queue(
            "reconcile", self.create_reconciler().reconcile
        )
        status_queue = self.create_work_queue(
            "status aggregation", self.create_status_aggregator().aggregate
        )
        health_queue = self.create_work_queue(
            "health check",
            self.create_health_checker().check,
            timeout=self._config.admin_timeout,
        )
        job_queue = self.create_work_queue(
            "job execution",
            self.create_job_executor().execute,
            timeout=self._config.admin_timeout,
        )
        dispatcher = self.create_event_dispatcher(
            reconcile_queue=reconcile_queue,
            status_queue=status_queue,
            health_queue=health_queue,
            job_queue=job_queue,
        )
        return BackgroundTaskManager(
            dispatcher=dispatcher,
            queues=[reconcile_queue, status_queue, health_queue, job_queue],
            resync_interval=self._config.resync_interval,
            health_check_interval=self._config.health_check_interval,
            slack_client=self.create_slack_client(),
            logger=self._logger,
        )

    def create_credential_resolver(self) -> CredentialResolver:
        """Create the resolver of tenant root credentials.

        Returns
        -------
        CredentialResolver
            Newly-created resolver.
        """
        secret_storage = SecretStorage(self._kubernetes_client, self._logger)
        return CredentialResolver(secret_storage, self._logger)

    def create_event_dispatcher(
        self,
        *,
        reconcile_queue: WorkQueue,
        status_queue: WorkQueue,
        health_queue: WorkQueue,
        job_queue: WorkQueue,
    ) -> EventDispatcher:
        """Create the router of Kubernetes events to the work queues.

        Parameters
        ----------
        reconcile_queue
            Queue of the top-level reconciler.
        status_queue
            Queue of the status aggregator.
        health_queue
            Queue of the health checker.
        job_queue
            Queue of the job executor.

        Returns
        -------
        EventDispatcher
            Newly-created dispatcher.
        """
        return EventDispatcher(
            tenant_storage=self.create_tenant_storage(),
            job_storage=self.create_job_storage(),
            pod_storage=PodStorage(self._kubernetes_client, self._logger),
            service_storage=ServiceStorage(
                self._kubernetes_client, self._logger
            ),
            reconcile_queue=reconcile_queue,
            status_queue=status_queue,
            health_queue=health_queue,
            job_queue=job_queue,
            slack_client=self.create_slack_client(),
            logger=self._logger,
        )

    def create_health_checker(self) -> HealthChecker:
        """Create the health checker.

        Returns
        -------
        HealthChecker
            Newly-created health checker.
        """
        return HealthChecker(
            builder=self.create_tenant_builder(),
            tenant_storage=self.create_tenant_storage(),
            admin_client=MinIOAdminClient(self._http_client, self._logger),
            status_writer=self.create_status_writer(),
            requeue_interval=self._config.status_requeue_interval,
            logger=self._logger,
        )

    def create_job_executor(self) -> TenantJobExecutor:
        """Create the executor of action requests.

        Returns
        -------
        TenantJobExecutor
            Newly-created job executor.
        """
        return TenantJobExecutor(
            builder=self.create_tenant_builder(),
            job_storage=self.create_job_storage(),
            tenant_storage=self.create_tenant_storage(),
            credentials=self.create_credential_resolver(),
            admin_client=MinIOAdminClient(self._http_client, self._logger),
            status_writer=self.create_status_writer(),
            requeue_interval=self._config.status_requeue_interval,
            logger=self._logger,
        )

    def create_job_storage(self) -> TenantJobStorage:
        """Create Kubernetes storage for action requests.

        Returns
        -------
        TenantJobStorage
            Newly-created storage.
        """
        return TenantJobStorage(
            self._kubernetes_client,
            self._config.group,
            self._config.version,
            self._logger,
        )

    def create_reconciler(self) -> TenantReconciler:
        """Create the top-level reconciler.

        Returns
        -------
        TenantReconciler
            Newly-created reconciler.
        """
        builder = self.create_tenant_builder()
        status_writer = self.create_status_writer()
        synchronizer = ResourceSynchronizer(
            builder=builder,
            service_storage=ServiceStorage(
                self._kubernetes_client, self._logger
            ),
            pvc_storage=PersistentVolumeClaimStorage(
                self._kubernetes_client, self._logger
            ),
            pod_storage=PodStorage(self._kubernetes_client, self._logger),
            events=EventRecorder(
                self._kubernetes_client, self._config.name, self._logger
            ),
            status_writer=status_writer,
            logger=self._logger,
        )
        revisions = RevisionTracker(
            storage=ControllerRevisionStorage(
                self._kubernetes_client, self._logger
            ),
            builder=builder,
            logger=self._logger,
        )
        return TenantReconciler(
            tenant_storage=self.create_tenant_storage(),
            revisions=revisions,
            differ=PoolDiffer(
                self._config.node_selector_trigger, self._logger
            ),
            synchronizer=synchronizer,
            status_writer=status_writer,
            logger=self._logger,
        )

    def create_slack_client(self) -> SlackWebhookClient | None:
        """Create a client for sending messages to Slack.

        Returns
        -------
        SlackWebhookClient or None
            Configured Slack client if a Slack webhook was configured,
            otherwise `None`.
        """
        if not self._config.slack_webhook:
            return None
        return SlackWebhookClient(
            self._config.slack_webhook.get_secret_value(),
            self._config.name,
            self._logger,
        )

    def create_status_aggregator(self) -> StatusAggregator:
        """Create the status aggregator.

        Returns
        -------
        StatusAggregator
            Newly-created status aggregator.
        """
        return StatusAggregator(
            builder=self.create_tenant_builder(),
            tenant_storage=self.create_tenant_storage(),
            pvc_storage=PersistentVolumeClaimStorage(
                self._kubernetes_client, self._logger
            ),
            pod_storage=PodStorage(self._kubernetes_client, self._logger),
            service_storage=ServiceStorage(
                self._kubernetes_client, self._logger
            ),
            node_storage=NodeStorage(self._kubernetes_client, self._logger),
            status_writer=self.create_status_writer(),
            policy=self._config.pool_status_policy,
            requeue_interval=self._config.status_requeue_interval,
            logger=self._logger,
        )

    def create_status_writer(self) -> TenantStatusWriter:
        """Create the conflict-safe writer of tenant status.

        Returns
        -------
        TenantStatusWriter
            Newly-created status writer.
        """
        return TenantStatusWriter(
            storage=self.create_tenant_storage(),
            attempts=self._config.status_update_attempts,
            backoff=self._config.status_update_backoff,
            logger=self._logger,
        )

    def create_tenant_builder(self) -> TenantBuilder:
        """Create the builder of tenant child objects.

        Returns
        -------
        TenantBuilder
            Newly-created builder.
        """
        return TenantBuilder(self._config)

    def create_tenant_storage(self) -> TenantStorage:
        """Create Kubernetes storage for tenants.

        Returns
        -------
        TenantStorage
            Newly-created storage.
        """
        return TenantStorage(
            self._kubernetes_client,
            self._config.group,
            self._config.version,
            self._logger,
        )

    def create_work_queue(
        self,
        name: str,
        handler: Handler,
        *,
        timeout: timedelta | None = None,
    ) -> WorkQueue:
        """Create the work queue of a control loop.

        Parameters
        ----------
        name
            Name of the control loop.
        handler
            Function that processes one key.
        timeout
            Timeout for one pass of the handler. Defaults to the reconcile
            timeout.

        Returns
        -------
        WorkQueue
            Newly-created work queue, not yet running.
        """
        return WorkQueue(
            name=name,
            handler=handler,
            workers=self._config.workers,
            timeout=timeout or self._config.reconcile_timeout,
            backoff=self._config.requeue_backoff,
            backoff_max=self._config.requeue_backoff_max,
            slack_client=self.create_slack_client(),
            logger=self._logger,
        )
