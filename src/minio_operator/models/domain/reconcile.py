"""Data types shared by the control loops."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from ..v1alpha1.tenant import Pool

__all__ = [
    "NodeSelectorTrigger",
    "PoolChanges",
    "PoolStatusPolicy",
    "ReconcileResult",
]


class NodeSelectorTrigger(str, Enum):
    """When a node selector comparison marks a pool as needing an update."""

    CHANGED = "changed"
    """Update pools whose node selector differs from the last revision."""

    UNCHANGED = "unchanged"
    """Update pools whose node selector equals the last revision.

    This is the historical behavior of the operator and almost certainly
    inverted, but is kept available for compatibility.
    """


class PoolStatusPolicy(str, Enum):
    """How the status of a pool is derived from the phases of its pods."""

    LAST_SEEN = "last-seen"
    """The phase of the last pod listed decides the pool status."""

    ALL = "all"
    """Any failed pod fails the pool, any pending pod keeps it running."""


@dataclass
class PoolChanges:
    """Result of comparing the desired pools to the last revision."""

    added: list[Pool] = field(default_factory=list)
    """Pools not present in the last revision."""

    updated: list[Pool] = field(default_factory=list)
    """Pools whose server pods must be rebuilt."""

    @property
    def empty(self) -> bool:
        """Whether there is nothing to do."""
        return not self.added and not self.updated


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Outcome of one pass of a control loop for one key."""

    requeue_after: timedelta | None = None
    """If set, process the key again after this delay."""

    @property
    def requeue(self) -> bool:
        """Whether the key should be processed again."""
        return self.requeue_after is not None
