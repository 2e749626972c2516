"""Tests for comparing tenants with their last recorded revision."""

from __future__ import annotations

import copy
from typing import Any

import pytest
import structlog
from kubernetes_asyncio.client import V1ServicePort

from minio_operator.config import Config
from minio_operator.models.domain.reconcile import NodeSelectorTrigger
from minio_operator.models.v1alpha1.tenant import Tenant, TenantSpec
from minio_operator.services.builder.tenant import TenantBuilder
from minio_operator.services.differ import PoolDiffer, service_mismatch


def build_differ(
    trigger: NodeSelectorTrigger = NodeSelectorTrigger.CHANGED,
) -> PoolDiffer:
    return PoolDiffer(trigger, structlog.get_logger(__name__))


def test_no_baseline(tenant: dict[str, Any]) -> None:
    spec = TenantSpec.model_validate(tenant["spec"])
    changes = build_differ().diff(spec, None)
    assert [p.name for p in changes.added] == ["pool-0", "pool-1"]
    assert changes.updated == []


def test_unchanged(tenant: dict[str, Any]) -> None:
    spec = TenantSpec.model_validate(tenant["spec"])
    baseline = TenantSpec.model_validate(copy.deepcopy(tenant["spec"]))
    changes = build_differ().diff(spec, baseline)
    assert changes.empty


def test_added_pool(tenant: dict[str, Any]) -> None:
    baseline = TenantSpec.model_validate(copy.deepcopy(tenant["spec"]))
    tenant["spec"]["pools"].append(
        {"name": "pool-2", "servers": 4, "volumesPerServer": 1}
    )
    spec = TenantSpec.model_validate(tenant["spec"])
    changes = build_differ().diff(spec, baseline)
    assert [p.name for p in changes.added] == ["pool-2"]
    assert changes.updated == []


def test_removed_pool(tenant: dict[str, Any]) -> None:
    baseline = TenantSpec.model_validate(copy.deepcopy(tenant["spec"]))
    del tenant["spec"]["pools"][1]
    spec = TenantSpec.model_validate(tenant["spec"])
    changes = build_differ().diff(spec, baseline)
    assert changes.empty


def test_image_change(tenant: dict[str, Any]) -> None:
    baseline = TenantSpec.model_validate(copy.deepcopy(tenant["spec"]))
    tenant["spec"]["image"] = "minio/minio:latest"
    spec = TenantSpec.model_validate(tenant["spec"])
    changes = build_differ().diff(spec, baseline)
    assert changes.added == []
    assert [p.name for p in changes.updated] == ["pool-0", "pool-1"]


def test_readiness_added(tenant: dict[str, Any]) -> None:
    baseline = TenantSpec.model_validate(copy.deepcopy(tenant["spec"]))
    tenant["spec"]["readiness"] = {
        "httpGet": {"path": "/minio/health/ready", "port": 9000}
    }
    spec = TenantSpec.model_validate(tenant["spec"])
    changes = build_differ().diff(spec, baseline)
    assert [p.name for p in changes.updated] == ["pool-0", "pool-1"]

    # Clearing it again is also a change.
    changes = build_differ().diff(baseline, spec)
    assert [p.name for p in changes.updated] == ["pool-0", "pool-1"]


def test_node_selector(tenant: dict[str, Any]) -> None:
    baseline = TenantSpec.model_validate(copy.deepcopy(tenant["spec"]))
    tenant["spec"]["pools"][1]["nodeSelector"] = {"disk": "ssd"}
    spec = TenantSpec.model_validate(tenant["spec"])

    changes = build_differ().diff(spec, baseline)
    assert [p.name for p in changes.updated] == ["pool-1"]
    assert changes.updated[0].node_selector == {"disk": "ssd"}

    # The historical mode rebuilds the pools whose selector did not change.
    differ = build_differ(NodeSelectorTrigger.UNCHANGED)
    changes = differ.diff(spec, baseline)
    assert [p.name for p in changes.updated] == ["pool-0"]


def test_node_selector_unchanged_mode(tenant: dict[str, Any]) -> None:
    spec = TenantSpec.model_validate(tenant["spec"])
    baseline = TenantSpec.model_validate(copy.deepcopy(tenant["spec"]))
    differ = build_differ(NodeSelectorTrigger.UNCHANGED)
    changes = differ.diff(spec, baseline)
    assert changes.added == []
    assert [p.name for p in changes.updated] == ["pool-0", "pool-1"]


@pytest.mark.asyncio
async def test_service_mismatch(
    config: Config, tenant: dict[str, Any]
) -> None:
    builder = TenantBuilder(config)
    obj = Tenant.model_validate(tenant)

    live = builder.build_service(obj)
    live.metadata.labels["app.kubernetes.io/managed-by"] = "someone"
    live.spec.selector["extra"] = "label"
    assert service_mismatch(live, builder.build_service(obj)) is None

    live = builder.build_service(obj)
    live.spec.ports = [V1ServicePort(name="http-minio", port=8080)]
    expected = builder.build_service(obj)
    assert service_mismatch(live, expected) == "ports don't match"

    live = builder.build_service(obj)
    live.spec.ports[0].target_port = None
    assert service_mismatch(live, expected) == "ports don't match"

    live = builder.build_service(obj)
    live.metadata.labels = {}
    assert service_mismatch(live, expected) == "labels don't match"

    live = builder.build_service(obj)
    live.spec.selector = {}
    assert service_mismatch(live, expected) == "selectors don't match"

    live = builder.build_service(obj)
    live.spec.type = "NodePort"
    assert service_mismatch(live, expected) == "service type doesn't match"

    # The headless service is compared against its own expected form.
    live = builder.build_headless_service(obj)
    expected = builder.build_headless_service(obj)
    assert service_mismatch(live, expected) is None
    assert service_mismatch(live, builder.build_service(obj))
