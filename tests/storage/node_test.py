"""Tests for the storage layer of Kubernetes nodes."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
import structlog
from kubernetes_asyncio.client import ApiClient

from minio_operator.config import Config
from minio_operator.storage.kubernetes.node import NodeStorage
from minio_operator.timeout import Timeout

from ..support.data import read_input_node_data
from ..support.kubernetes import MockMinIOKubernetesApi


@pytest.mark.asyncio
async def test_internal_ipv4(
    config: Config,
    mock_kubernetes: MockMinIOKubernetesApi,
    timeout: Timeout,
) -> None:
    logger = structlog.get_logger(config.name)
    storage = NodeStorage(Mock(spec=ApiClient), logger)
    assert await storage.get_internal_ipv4(timeout) == ""

    nodes = read_input_node_data("standard", "nodes.json")
    mock_kubernetes.set_nodes_for_test(nodes)
    assert await storage.get_internal_ipv4(timeout) == "192.168.1.12"

    # A node with only an IPv6 address is skipped.
    mock_kubernetes.set_nodes_for_test(nodes[:1])
    assert await storage.get_internal_ipv4(timeout) == ""
