"""Global configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import ADMIN_READ_TIMEOUT
from .models.domain.reconcile import NodeSelectorTrigger, PoolStatusPolicy

__all__ = ["Config"]


class Config(BaseSettings):
    """MinIO operator configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "minio-operator"

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    path_prefix: Annotated[
        str,
        Field(
            title="URL prefix for operator API",
            description="The metadata route is served under this prefix",
        ),
    ] = "/minio-operator"

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, failed reconcile passes and any uncaught exceptions"
                " in the control loops will be reported to Slack via this"
                " webhook"
            ),
            validation_alias=AliasChoices(
                "MINIO_OPERATOR_SLACK_WEBHOOK", "slackWebhook"
            ),
        ),
    ] = None

    group: Annotated[
        str,
        Field(
            title="API group of the custom resources",
            examples=["minio.bob.com"],
        ),
    ] = "minio.bob.com"

    version: Annotated[
        str,
        Field(
            title="API version of the custom resources",
            examples=["v1alpha1"],
        ),
    ] = "v1alpha1"

    cluster_domain: Annotated[
        str,
        Field(
            title="Kubernetes cluster domain",
            description="Used to build the in-cluster addresses of tenants",
        ),
    ] = "cluster.local"

    default_image: Annotated[
        str,
        Field(
            title="Default server image",
            description="Used for tenants that do not specify an image",
        ),
    ] = "minio/minio:RELEASE.2024-10-02T17-50-41Z"

    reconcile_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Timeout for one reconcile pass",
            description=(
                "A reconcile or status aggregation pass that takes longer"
                " than this is aborted and retried with backoff"
            ),
        ),
    ] = timedelta(minutes=5)

    admin_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Timeout for one health check or action pass",
            description=(
                "Used instead of the reconcile timeout by the health check"
                " and job execution loops, which wait on the administrative"
                " API of tenants. Must be longer than the 15 minute read"
                " timeout of administrative calls."
            ),
        ),
    ] = timedelta(minutes=20)

    resync_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Full resync interval",
            description=(
                "How frequently to list all tenants and action requests and"
                " queue them for every control loop, in case a watch event"
                " was missed"
            ),
        ),
    ] = timedelta(minutes=10)

    health_check_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Health check interval",
            description="How frequently to check the health of each tenant",
        ),
    ] = timedelta(minutes=1)

    status_requeue_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Status requeue interval",
            description=(
                "How long to wait before recomputing the status of a tenant"
                " that is not yet completely deployed, and before retrying an"
                " action request whose tenant is not deployed"
            ),
        ),
    ] = timedelta(seconds=5)

    status_update_attempts: Annotated[
        int,
        Field(
            title="Status update attempts",
            description=(
                "How many times to try writing a tenant status that keeps"
                " conflicting with other writers before giving up"
            ),
            ge=1,
        ),
    ] = 10

    status_update_backoff: Annotated[
        HumanTimedelta,
        Field(
            title="Status update backoff",
            description=(
                "Base delay between conflicting status writes. The actual"
                " delay is jittered and grows with each attempt."
            ),
        ),
    ] = timedelta(milliseconds=50)

    requeue_backoff: Annotated[
        HumanTimedelta,
        Field(
            title="Failure backoff",
            description="Initial delay before retrying a failed pass",
        ),
    ] = timedelta(seconds=1)

    requeue_backoff_max: Annotated[
        HumanTimedelta,
        Field(
            title="Maximum failure backoff",
            description="Upper bound of the exponential failure backoff",
        ),
    ] = timedelta(minutes=5)

    workers: Annotated[
        int,
        Field(
            title="Workers per control loop",
            description=(
                "Number of keys each control loop processes concurrently."
                " A single key is never processed by two workers at once."
            ),
            ge=1,
        ),
    ] = 4

    node_selector_trigger: Annotated[
        NodeSelectorTrigger,
        Field(
            title="Node selector update trigger",
            description=(
                "``changed`` rebuilds the servers of a pool when its node"
                " selector changes. ``unchanged`` keeps the historical"
                " behavior of rebuilding them when it did not change."
            ),
        ),
    ] = NodeSelectorTrigger.CHANGED

    pool_status_policy: Annotated[
        PoolStatusPolicy,
        Field(
            title="Pool status policy",
            description=(
                "``last-seen`` derives the pool status from the last server"
                " pod listed. ``all`` fails the pool if any pod failed and"
                " keeps it running while any pod is not running."
            ),
        ),
    ] = PoolStatusPolicy.LAST_SEEN

    @field_validator("admin_timeout")
    @classmethod
    def _validate_admin_timeout(cls, v: timedelta) -> timedelta:
        if v <= ADMIN_READ_TIMEOUT:
            minutes = int(ADMIN_READ_TIMEOUT.total_seconds() // 60)
            msg = f"must be longer than {minutes} minutes"
            raise ValueError(msg)
        return v

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the operator configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})
