"""Test fixtures for MinIO operator tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from datetime import timedelta
from typing import Any

import pytest
import pytest_asyncio
import respx
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from minio_operator.config import Config
from minio_operator.factory import Factory
from minio_operator.main import create_app
from minio_operator.timeout import Timeout

from .support.config import configure
from .support.constants import TEST_BASE_URL
from .support.data import read_input_json, read_input_node_data
from .support.kubernetes import MockMinIOKubernetesApi, patch_kubernetes


@pytest_asyncio.fixture
async def config() -> Config:
    """Construct default configuration for tests."""
    return await configure("standard")


@pytest_asyncio.fixture
async def app(
    config: Config,
    mock_kubernetes: MockMinIOKubernetesApi,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url=TEST_BASE_URL
    ) as client:
        yield client


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_kubernetes: MockMinIOKubernetesApi,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    nodes = read_input_node_data("standard", "nodes.json")
    mock_kubernetes.set_nodes_for_test(nodes)
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture
def job() -> dict[str, Any]:
    """Raw action request restarting the test tenant."""
    return read_input_json("standard", "job.json")


@pytest.fixture
def mock_kubernetes() -> Iterator[MockMinIOKubernetesApi]:
    yield from patch_kubernetes()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    webhook = "https://slack.example.com/webhook"
    config.slack_webhook = SecretStr(webhook)
    yield mock_slack_webhook(webhook, respx_mock)
    config.slack_webhook = None


@pytest.fixture
def tenant() -> dict[str, Any]:
    """Raw test tenant with two pools."""
    return read_input_json("standard", "tenant.json")


@pytest.fixture
def timeout() -> Timeout:
    """Timeout for a single operation in a test."""
    return Timeout("Test operation", timedelta(seconds=10))
