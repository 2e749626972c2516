"""Tests for operator configuration."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError
from safir.logging import LogLevel, Profile

from minio_operator.config import Config
from minio_operator.models.domain.reconcile import (
    NodeSelectorTrigger,
    PoolStatusPolicy,
)


def config_path(directory: str) -> Path:
    data_path = Path(__file__).parent.parent / "data"
    return data_path / directory / "input" / "config.yaml"


def test_standard() -> None:
    config = Config.from_file(config_path("standard"))
    assert config.log_level == LogLevel.DEBUG
    assert config.profile == Profile.development
    assert config.group == "minio.bob.com"
    assert config.version == "v1alpha1"
    assert config.cluster_domain == "cluster.local"
    assert config.status_update_backoff == timedelta(milliseconds=1)
    assert config.requeue_backoff_max == timedelta(seconds=1)
    assert config.workers == 2
    assert config.node_selector_trigger == NodeSelectorTrigger.CHANGED
    assert config.pool_status_policy == PoolStatusPolicy.LAST_SEEN
    assert config.admin_timeout == timedelta(minutes=20)


def test_policy() -> None:
    config = Config.from_file(config_path("policy"))
    assert config.cluster_domain == "example.internal"
    assert config.node_selector_trigger == NodeSelectorTrigger.UNCHANGED
    assert config.pool_status_policy == PoolStatusPolicy.ALL
    assert config.status_update_attempts == 3
    assert config.resync_interval == timedelta(hours=1)
    assert config.health_check_interval == timedelta(seconds=30)


def test_invalid() -> None:
    with pytest.raises(ValidationError):
        Config.model_validate({"poolStatusPolicy": "first-seen"})
    with pytest.raises(ValidationError):
        Config.model_validate({"unknownSetting": True})
    with pytest.raises(ValidationError):
        Config.model_validate({"workers": 0})
    with pytest.raises(ValidationError):
        Config.model_validate({"adminTimeout": "15m"})
    config = Config.model_validate({"adminTimeout": "30m"})
    assert config.admin_timeout == timedelta(minutes=30)
