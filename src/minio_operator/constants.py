"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "ADMIN_HEALTH_PATH",
    "ADMIN_READ_TIMEOUT",
    "ADMIN_REGION",
    "ADMIN_RESTART_PATH",
    "ADMIN_SERVICE",
    "CERTS_PATH",
    "CONFIGURATION_ENV",
    "CONFIGURATION_PATH",
    "CONFIG_ENV_FILE",
    "CONFIG_ENV_KEY",
    "CONFIG_MOUNT_PATH",
    "CONFIG_VOLUME_NAME",
    "CONSOLE_PORT",
    "CONSOLE_PORT_NAME",
    "CONSOLE_SUFFIX",
    "CONSOLE_TLS_PORT",
    "DEFAULT_ENV",
    "DEFAULT_MOUNT_PATH",
    "HEADLESS_SUFFIX",
    "HTTP_PORT_NAME",
    "HTTPS_PORT_NAME",
    "KUBERNETES_REQUEST_TIMEOUT",
    "MINIO_PORT",
    "MINIO_SERVICE_PORT",
    "MINIO_TLS_SERVICE_PORT",
    "POOL_LABEL",
    "REVISION_HASH_ANNOTATION",
    "SERVER_CONTAINER_NAME",
    "STATUS_UPDATE_BACKOFF_MAX",
    "TENANT_KIND",
    "TENANT_LABEL",
    "TENANT_JOB_KIND",
    "TENANT_JOB_PLURAL",
    "TENANT_PLURAL",
    "UNHEALTHY_REQUEUE_DELAY",
]

ADMIN_HEALTH_PATH = "/minio/health/cluster"
"""Path of the anonymous cluster health check on a tenant."""

ADMIN_READ_TIMEOUT = timedelta(minutes=15)
"""How long to wait for the response to an administrative call."""

ADMIN_REGION = "us-east-1"
"""Region used when signing administrative requests."""

ADMIN_RESTART_PATH = "/minio/admin/v3/service"
"""Path of the administrative service control endpoint."""

ADMIN_SERVICE = "s3"
"""Service name used when signing administrative requests."""

CERTS_PATH = "/tmp/certs"
"""Directory in the server container holding TLS certificates."""

CONFIGURATION_ENV = "MINIO_OPERATOR_CONFIG_PATH"
"""Environment variable that overrides the configuration path."""

CONFIGURATION_PATH = Path("/etc/minio-operator/config.yaml")
"""Default path to operator configuration."""

CONFIG_ENV_KEY = "config.env"
"""Key in the tenant configuration secret holding server settings."""

CONFIG_MOUNT_PATH = "/tmp/minio/"
"""Directory in which the tenant configuration secret is mounted."""

CONFIG_ENV_FILE = CONFIG_MOUNT_PATH + CONFIG_ENV_KEY
"""Path of the mounted server settings inside the server container."""

CONFIG_VOLUME_NAME = "configuration"
"""Name of the pod volume holding the tenant configuration secret."""

CONSOLE_PORT = 9090
"""Port on which the console listens."""

CONSOLE_PORT_NAME = "http-console"
"""Name of the port on the console service."""

CONSOLE_SUFFIX = "-console"
"""Suffix added to the tenant name to form the console service name."""

CONSOLE_TLS_PORT = 9443
"""Port on which the console listens inside the container with TLS."""

DEFAULT_ENV = {"MINIO_STORAGE_CLASS_STANDARD": "EC:0"}
"""Environment variables set in every server container.

Parity is disabled by default since every pool may consist of a single
drive.
"""

DEFAULT_MOUNT_PATH = "/data"
"""Mount path for tenant volumes if none is given."""

HEADLESS_SUFFIX = "-hl"
"""Suffix added to the tenant name to form the headless service name."""

HTTP_PORT_NAME = "http-minio"
"""Name of the data service port when TLS is disabled."""

HTTPS_PORT_NAME = "https-minio"
"""Name of the data service port when TLS is enabled."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""Timeout for a single Kubernetes API call outside a reconcile pass."""

MINIO_PORT = 9000
"""Port on which the object storage server listens."""

MINIO_SERVICE_PORT = 80
"""Port of the data service when TLS is disabled."""

MINIO_TLS_SERVICE_PORT = 443
"""Port of the data service when TLS is enabled."""

POOL_LABEL = "v1alpha1.bob.com/pool"
"""Label holding the pool name on per-pool child objects."""

REVISION_HASH_ANNOTATION = "minio.bob.com/spec-hash"
"""Annotation on a revision snapshot holding the fingerprint of its spec."""

SERVER_CONTAINER_NAME = "minio"
"""Name of the server container in tenant pods."""

STATUS_UPDATE_BACKOFF_MAX = timedelta(seconds=2)
"""Upper bound of the delay between conflicting status writes."""

TENANT_KIND = "MinIO"
"""Kubernetes kind of tenant objects."""

TENANT_LABEL = "v1alpha1.bob.com/minio"
"""Label holding the tenant name on every child object."""

TENANT_JOB_KIND = "MinIOJob"
"""Kubernetes kind of tenant action requests."""

TENANT_JOB_PLURAL = "miniojobs"
"""API plural of tenant action requests."""

TENANT_PLURAL = "minios"
"""API plural of tenant objects."""

UNHEALTHY_REQUEUE_DELAY = timedelta(seconds=1)
"""How long to wait before checking an unhealthy tenant again."""
