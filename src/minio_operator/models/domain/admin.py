"""Data types for the administrative API of tenants."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["RootCredentials"]


@dataclass(frozen=True, slots=True)
class RootCredentials:
    """Root keys of a tenant, used to sign administrative requests."""

    access_key: str
    """Root access key."""

    secret_key: str
    """Root secret key."""

    def __repr__(self) -> str:
        return f"RootCredentials(access_key={self.access_key!r})"
