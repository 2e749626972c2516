"""Build test configurations for the MinIO operator."""

from __future__ import annotations

from pathlib import Path

from minio_operator.config import Config
from minio_operator.dependencies.config import config_dependency
from minio_operator.dependencies.context import context_dependency

__all__ = ["configure"]


async def configure(directory: str) -> Config:
    """Configure or reconfigure with a test configuration.

    If the global process context was already initialized, stop the control
    loops and restart them with the new configuration.

    Parameters
    ----------
    directory
        Configuration directory to use.

    Returns
    -------
    Config
        New configuration.
    """
    config_path = Path(__file__).parent.parent / "data" / directory / "input"
    config_dependency.set_path(config_path / "config.yaml")
    config = config_dependency.config

    # If the process context was initialized, meaning that we already have
    # running control loops with the old configuration, stop and restart
    # them with the new configuration.
    if context_dependency.is_initialized:
        await context_dependency.aclose()
        await context_dependency.initialize(config)

    return config
