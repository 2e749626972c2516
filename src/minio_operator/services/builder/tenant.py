"""Construction of Kubernetes objects for tenants."""

from __future__ import annotations

import hashlib
import json

from kubernetes_asyncio.client import (
    V1Container,
    V1ContainerPort,
    V1ControllerRevision,
    V1EnvVar,
    V1KeyToPath,
    V1LocalObjectReference,
    V1ObjectMeta,
    V1OwnerReference,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PersistentVolumeClaimVolumeSource,
    V1Pod,
    V1PodSpec,
    V1SecretVolumeSource,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1Volume,
    V1VolumeMount,
)

from ...config import Config
from ...constants import (
    CERTS_PATH,
    CONFIG_ENV_FILE,
    CONFIG_ENV_KEY,
    CONFIG_MOUNT_PATH,
    CONFIG_VOLUME_NAME,
    CONSOLE_PORT,
    CONSOLE_PORT_NAME,
    CONSOLE_SUFFIX,
    CONSOLE_TLS_PORT,
    DEFAULT_ENV,
    HEADLESS_SUFFIX,
    HTTP_PORT_NAME,
    HTTPS_PORT_NAME,
    MINIO_PORT,
    MINIO_SERVICE_PORT,
    MINIO_TLS_SERVICE_PORT,
    POOL_LABEL,
    REVISION_HASH_ANNOTATION,
    SERVER_CONTAINER_NAME,
    TENANT_LABEL,
)
from ...models.domain.kubernetes import ServiceType
from ...models.v1alpha1.tenant import Pool, Tenant, TenantSpec

__all__ = ["TenantBuilder", "spec_fingerprint"]


def spec_fingerprint(spec: TenantSpec) -> str:
    """Compute a structural fingerprint of a tenant spec.

    Two specs have the same fingerprint if and only if their wire forms are
    equal, regardless of key order.

    Parameters
    ----------
    spec
        Tenant spec.

    Returns
    -------
    str
        Hex-encoded SHA-256 hash of the canonical JSON form of the spec.
    """
    data = json.dumps(spec.to_wire(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(data.encode()).hexdigest()


class TenantBuilder:
    """Construct Kubernetes objects for tenants.

    All names, labels, and ports of the objects that make up a tenant are
    decided here, so that every other component finds them the same way.

    Parameters
    ----------
    config
        Operator configuration.
    """

    def __init__(self, config: Config) -> None:
        self._config = config

    def admin_url(self, tenant: Tenant) -> str:
        """Base URL of the administrative API of a tenant.

        Parameters
        ----------
        tenant
            Tenant.

        Returns
        -------
        str
            URL of the data service of the tenant, without a trailing slash.
        """
        scheme = "https" if tenant.tls else "http"
        port = MINIO_TLS_SERVICE_PORT if tenant.tls else MINIO_SERVICE_PORT
        host = self.service_fqdn(self.service_name(tenant), tenant.namespace)
        return f"{scheme}://{host}:{port}"

    def build_console_service(self, tenant: Tenant) -> V1Service:
        """Construct the service for the console of a tenant."""
        port = V1ServicePort(
            name=CONSOLE_PORT_NAME,
            port=CONSOLE_PORT,
            target_port=self._console_port(tenant),
        )
        expose = tenant.spec.expose_service.console
        service_type = ServiceType.CLUSTER_IP
        if expose:
            service_type = ServiceType.NODE_PORT
        return V1Service(
            metadata=self._build_metadata(
                self.console_service_name(tenant), tenant
            ),
            spec=V1ServiceSpec(
                ports=[port],
                selector=self.build_labels(tenant),
                type=service_type.value,
            ),
        )

    def build_headless_service(self, tenant: Tenant) -> V1Service:
        """Construct the headless service used for peer discovery.

        Server pods must find each other before they are ready, so the
        service publishes addresses of pods that are not yet ready.
        """
        port = V1ServicePort(name=self._port_name(tenant), port=MINIO_PORT)
        return V1Service(
            metadata=self._build_metadata(
                self.headless_service_name(tenant), tenant
            ),
            spec=V1ServiceSpec(
                cluster_ip="None",
                ports=[port],
                publish_not_ready_addresses=True,
                selector=self.build_labels(tenant),
                type=ServiceType.CLUSTER_IP.value,
            ),
        )

    def build_labels(
        self, tenant: Tenant, pool: Pool | None = None
    ) -> dict[str, str]:
        """Construct the labels identifying the children of a tenant.

        Parameters
        ----------
        tenant
            Tenant.
        pool
            If given, also identify the pool.

        Returns
        -------
        dict of str
            Labels to apply.
        """
        labels = {TENANT_LABEL: tenant.name}
        if pool:
            labels[POOL_LABEL] = pool.name
        return labels

    def build_pods(self, tenant: Tenant, pool: Pool) -> list[V1Pod]:
        """Construct the server pods of a pool.

        Parameters
        ----------
        tenant
            Tenant.
        pool
            Pool whose servers to construct.

        Returns
        -------
        list of kubernetes_asyncio.client.V1Pod
            One pod per server, in server order.
        """
        return [
            self._build_pod(tenant, pool, server)
            for server in range(pool.servers)
        ]

    def build_pvcs(self, tenant: Tenant) -> list[V1PersistentVolumeClaim]:
        """Construct the storage claims of every pool of a tenant.

        Parameters
        ----------
        tenant
            Tenant.

        Returns
        -------
        list of kubernetes_asyncio.client.V1PersistentVolumeClaim
            Servers times volumes per server claims for each pool.
        """
        pvcs = []
        for pool in tenant.spec.pools:
            for server in range(pool.servers):
                for volume in range(pool.volumes_per_server):
                    name = self.pvc_name(tenant, pool, server, volume)
                    metadata = self._build_metadata(name, tenant, pool)
                    if not tenant.spec.reclaim_storage:
                        metadata.owner_references = None
                    pvc = V1PersistentVolumeClaim(
                        metadata=metadata, spec=self._build_pvc_spec(pool)
                    )
                    pvcs.append(pvc)
        return pvcs

    def build_revision(
        self, tenant: Tenant, revision: int
    ) -> V1ControllerRevision:
        """Construct the revision snapshot of the spec of a tenant.

        Parameters
        ----------
        tenant
            Tenant.
        revision
            Revision number.

        Returns
        -------
        kubernetes_asyncio.client.V1ControllerRevision
            Snapshot holding the spec of the tenant.
        """
        metadata = self._build_metadata(tenant.name, tenant)
        fingerprint = spec_fingerprint(tenant.spec)
        metadata.annotations = {REVISION_HASH_ANNOTATION: fingerprint}
        return V1ControllerRevision(
            metadata=metadata, data=tenant.spec.to_wire(), revision=revision
        )

    def build_service(self, tenant: Tenant) -> V1Service:
        """Construct the data service of a tenant."""
        if tenant.tls:
            port = V1ServicePort(
                name=HTTPS_PORT_NAME,
                port=MINIO_TLS_SERVICE_PORT,
                target_port=MINIO_PORT,
            )
        else:
            port = V1ServicePort(
                name=HTTP_PORT_NAME,
                port=MINIO_SERVICE_PORT,
                target_port=MINIO_PORT,
            )
        expose = tenant.spec.expose_service.minio
        service_type = ServiceType.CLUSTER_IP
        if expose:
            service_type = ServiceType.NODE_PORT
        return V1Service(
            metadata=self._build_metadata(self.service_name(tenant), tenant),
            spec=V1ServiceSpec(
                ports=[port],
                selector=self.build_labels(tenant),
                type=service_type.value,
            ),
        )

    def console_service_name(self, tenant: Tenant) -> str:
        """Name of the console service of a tenant."""
        return tenant.name + CONSOLE_SUFFIX

    def headless_service_name(self, tenant: Tenant) -> str:
        """Name of the headless service of a tenant."""
        return tenant.name + HEADLESS_SUFFIX

    def pvc_name(
        self, tenant: Tenant, pool: Pool, server: int, volume: int
    ) -> str:
        """Name of one storage claim of a pool."""
        template = pool.volume_claim_template.metadata.name
        return f"{tenant.name}-{pool.name}-{server}-{template}-{volume}"

    def service_fqdn(self, name: str, namespace: str) -> str:
        """Fully-qualified in-cluster DNS name of a service."""
        return f"{name}.{namespace}.svc.{self._config.cluster_domain}"

    def service_name(self, tenant: Tenant) -> str:
        """Name of the data service of a tenant."""
        return tenant.name

    def _build_metadata(
        self, name: str, tenant: Tenant, pool: Pool | None = None
    ) -> V1ObjectMeta:
        """Construct the metadata for a child of a tenant.

        The child is labeled with the tenant and, if given, the pool and is
        owned by the tenant so that it is deleted along with it.
        """
        owner = V1OwnerReference(
            api_version=tenant.api_version,
            block_owner_deletion=True,
            controller=True,
            kind=tenant.kind,
            name=tenant.name,
            uid=tenant.metadata.uid,
        )
        return V1ObjectMeta(
            name=name,
            namespace=tenant.namespace,
            labels=self.build_labels(tenant, pool),
            owner_references=[owner],
        )

    def _build_pod(self, tenant: Tenant, pool: Pool, server: int) -> V1Pod:
        """Construct one server pod of a pool."""
        name = f"{pool.name}-{server}"
        template = pool.volume_claim_template.metadata.name
        volumes = []
        for volume in range(pool.volumes_per_server):
            claim = self.pvc_name(tenant, pool, server, volume)
            source = V1PersistentVolumeClaimVolumeSource(claim_name=claim)
            volumes.append(
                V1Volume(
                    name=f"{template}{volume}", persistent_volume_claim=source
                )
            )
        mounts = self._build_volume_mounts(tenant, pool)
        if tenant.spec.configuration and tenant.spec.configuration.name:
            source = V1SecretVolumeSource(
                secret_name=tenant.spec.configuration.name,
                items=[V1KeyToPath(key=CONFIG_ENV_KEY, path=CONFIG_ENV_KEY)],
            )
            volumes.append(V1Volume(name=CONFIG_VOLUME_NAME, secret=source))
            mounts.append(
                V1VolumeMount(
                    name=CONFIG_VOLUME_NAME, mount_path=CONFIG_MOUNT_PATH
                )
            )

        pull_secrets = None
        if tenant.spec.image_pull_secret_name:
            secret = tenant.spec.image_pull_secret_name
            pull_secrets = [V1LocalObjectReference(name=secret)]
        return V1Pod(
            metadata=self._build_metadata(name, tenant, pool),
            spec=V1PodSpec(
                affinity=tenant.spec.affinity,
                containers=[self._build_container(tenant, pool, mounts)],
                hostname=name,
                image_pull_secrets=pull_secrets,
                node_selector=pool.node_selector,
                security_context=pool.security_context,
                service_account_name=tenant.spec.service_account_name,
                subdomain=self.headless_service_name(tenant),
                tolerations=tenant.spec.tolerations,
                volumes=volumes,
            ),
        )

    def _build_container(
        self, tenant: Tenant, pool: Pool, mounts: list[V1VolumeMount]
    ) -> V1Container:
        """Construct the server container of a pod."""
        console_port = self._console_port(tenant)
        args = [
            "server",
            "--certs-dir",
            CERTS_PATH,
            "--console-address",
            f":{console_port}",
            *(self._build_endpoint(tenant, p) for p in tenant.spec.pools),
        ]
        return V1Container(
            name=SERVER_CONTAINER_NAME,
            args=args,
            env=self._build_env(tenant),
            image=tenant.spec.image or self._config.default_image,
            image_pull_policy=tenant.spec.image_pull_policy,
            lifecycle=tenant.spec.lifecycle,
            liveness_probe=tenant.spec.liveness,
            ports=[
                V1ContainerPort(container_port=MINIO_PORT),
                V1ContainerPort(container_port=console_port),
            ],
            readiness_probe=tenant.spec.readiness,
            resources=tenant.spec.resources,
            security_context=pool.container_security_context,
            startup_probe=tenant.spec.startup,
            volume_mounts=mounts,
        )

    def _build_endpoint(self, tenant: Tenant, pool: Pool) -> str:
        """Construct the ellipsis endpoint covering every drive of a pool.

        Every server of every pool must be given the same list of endpoints,
        so each pool contributes one argument of the form
        ``http://pool-{0...3}.tenant-hl.ns.svc.domain:9000/data-{0...1}``.
        """
        scheme = "https" if tenant.tls else "http"
        if pool.servers == 1:
            host = f"{pool.name}-0"
        else:
            host = f"{pool.name}-{{0...{pool.servers - 1}}}"
        subdomain = self.service_fqdn(
            self.headless_service_name(tenant), tenant.namespace
        )
        path = self._mount_path(tenant)
        if pool.volumes_per_server > 1:
            path += f"-{{0...{pool.volumes_per_server - 1}}}"
        return f"{scheme}://{host}.{subdomain}:{MINIO_PORT}{path}"

    def _build_env(self, tenant: Tenant) -> list[V1EnvVar]:
        """Construct the environment of the server container."""
        env = [V1EnvVar(name=k, value=v) for k, v in DEFAULT_ENV.items()]
        for variable in tenant.spec.env:
            env.append(
                V1EnvVar(
                    name=variable.name,
                    value=variable.value,
                    value_from=variable.value_from,
                )
            )
        if tenant.spec.configuration and tenant.spec.configuration.name:
            variable = V1EnvVar(
                name="MINIO_CONFIG_ENV_FILE", value=CONFIG_ENV_FILE
            )
            env.append(variable)
        return env

    def _build_pvc_spec(self, pool: Pool) -> V1PersistentVolumeClaimSpec:
        """Construct the spec of a storage claim from the pool template."""
        template = pool.volume_claim_template.spec
        return V1PersistentVolumeClaimSpec(
            access_modes=template.get("accessModes", ["ReadWriteOnce"]),
            resources=template.get("resources"),
            storage_class_name=template.get("storageClassName"),
        )

    def _build_volume_mounts(
        self, tenant: Tenant, pool: Pool
    ) -> list[V1VolumeMount]:
        """Construct the mounts of the storage volumes of a server.

        A single volume is mounted at the mount path itself. Multiple volumes
        are mounted at the mount path suffixed with ``-0``, ``-1``, and so
        on.
        """
        template = pool.volume_claim_template.metadata.name
        path = self._mount_path(tenant)
        if pool.volumes_per_server == 1:
            return [V1VolumeMount(name=f"{template}0", mount_path=path)]
        return [
            V1VolumeMount(name=f"{template}{i}", mount_path=f"{path}-{i}")
            for i in range(pool.volumes_per_server)
        ]

    def _console_port(self, tenant: Tenant) -> int:
        return CONSOLE_TLS_PORT if tenant.tls else CONSOLE_PORT

    def _mount_path(self, tenant: Tenant) -> str:
        return tenant.spec.mount_path.rstrip("/") or "/"

    def _port_name(self, tenant: Tenant) -> str:
        return HTTPS_PORT_NAME if tenant.tls else HTTP_PORT_NAME
