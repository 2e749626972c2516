"""Constants for the MinIO operator tests."""

from __future__ import annotations

__all__ = ["TEST_BASE_URL", "TEST_NAMESPACE", "TEST_TENANT"]

TEST_BASE_URL = "https://minio-operator.example.com"
"""Base URL used for the test application."""

TEST_NAMESPACE = "minio"
"""Namespace of the test tenant."""

TEST_TENANT = "tenant"
"""Name of the test tenant."""
