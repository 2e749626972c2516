"""Tests for the custom resource models."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from minio_operator.models.v1alpha1.job import TenantJob, TenantJobAction
from minio_operator.models.v1alpha1.tenant import (
    HealthStatus,
    Tenant,
    TenantSpec,
    TenantStatus,
)
from minio_operator.services.builder.tenant import spec_fingerprint


def test_tenant(tenant: dict[str, Any]) -> None:
    model = Tenant.model_validate(tenant)
    assert model.name == "tenant"
    assert model.namespace == "minio"
    assert not model.is_deleting
    assert not model.tls
    assert model.status == TenantStatus()
    pool = model.spec.pools[0]
    assert pool.volumes_per_server == 2
    assert pool.volume_claim_template.metadata.name == "data"
    assert not model.spec.expose_service.minio
    assert model.spec.reclaim_storage

    wire = model.spec.to_wire()
    assert wire["pools"][0]["volumesPerServer"] == 2
    assert wire["imagePullPolicy"] == "IfNotPresent"
    assert "imagePullSecret" not in wire


def test_defaults() -> None:
    spec = TenantSpec.model_validate(
        {"pools": [{"name": "pool", "servers": 1, "volumesPerServer": 1}]}
    )
    assert spec.mount_path == "/data"
    assert spec.image is None
    assert spec.image_pull_secret_name == ""
    assert spec.pools[0].volume_claim_template.metadata.name == "data"


def test_invalid_pools() -> None:
    pool = {"name": "pool", "servers": 1, "volumesPerServer": 1}
    with pytest.raises(ValidationError, match="Duplicate pool name pool"):
        TenantSpec.model_validate({"pools": [pool, pool]})
    with pytest.raises(ValidationError):
        TenantSpec.model_validate({"pools": [{**pool, "servers": 0}]})
    with pytest.raises(ValidationError):
        TenantSpec.model_validate({"pools": [{"name": "pool"}]})


def test_status() -> None:
    status = TenantStatus.model_validate(
        {
            "status": "Completed",
            "healthStatus": "Healthy",
            "restartCount": 4,
            "poolStatus": [
                {
                    "name": "pool-0",
                    "status": "Completed",
                    "replicas": 1,
                    "availableReplicas": 1,
                    "servers": [
                        {
                            "name": "pool-0-0",
                            "hostIP": "192.168.0.1",
                            "podIP": "10.0.0.1",
                            "status": "Running",
                        }
                    ],
                }
            ],
        }
    )
    assert status.health_status == HealthStatus.HEALTHY
    assert status.restart_count == 4
    assert status.pool_status[0].servers[0].host_ip == "192.168.0.1"
    wire = status.to_wire()
    assert wire["poolStatus"][0]["servers"][0]["podIP"] == "10.0.0.1"
    assert wire["service"] == {"minio": "", "console": ""}


def test_job(job: dict[str, Any]) -> None:
    model = TenantJob.model_validate(job)
    assert model.spec.minio_ref == "tenant"
    assert model.spec.action == TenantJobAction.RESTART

    job["spec"]["action"] = "Reboot"
    with pytest.raises(ValidationError):
        TenantJob.model_validate(job)


def test_fingerprint(tenant: dict[str, Any]) -> None:
    spec = TenantSpec.model_validate(tenant["spec"])
    reordered = TenantSpec.model_validate(
        dict(reversed(list(tenant["spec"].items())))
    )
    assert spec_fingerprint(spec) == spec_fingerprint(reordered)

    changed = spec.model_copy(update={"image": "minio/minio:latest"})
    assert spec_fingerprint(spec) != spec_fingerprint(changed)
