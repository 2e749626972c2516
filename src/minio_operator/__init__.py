"""Kubernetes operator that deploys and supervises MinIO tenants."""
