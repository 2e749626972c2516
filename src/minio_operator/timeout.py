"""Timeout class for Kubernetes operations."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from safir.datetime import current_datetime

from .exceptions import ControllerTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Track a cumulative timeout on a series of operations.

    A reconcile pass is made up of many Kubernetes API calls that each
    support an individual timeout, all of which must complete within the
    timeout for the pass. This class encapsulates that type of timeout and
    provides methods to retrieve timeouts for individual operations.

    Parameters
    ----------
    operation
        Human-readable description of the operation, for error reporting.
    timeout
        Total timeout for the operation.
    tenant
        Tenant on whose behalf the operation is being performed, if any.
    """

    def __init__(
        self, operation: str, timeout: timedelta, tenant: str | None = None
    ) -> None:
        self._operation = operation
        self._timeout = timeout
        self._tenant = tenant
        self._start = current_datetime(microseconds=True)

    def elapsed(self) -> float:
        """Elapsed time since the timeout started.

        Returns
        -------
        float
            Seconds elapsed since the object was created.
        """
        now = current_datetime(microseconds=True)
        return (now - self._start).total_seconds()

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Enforce the timeout on a block of code.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expires inside the block.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except TimeoutError as e:
            failed_at = current_datetime(microseconds=True)
            raise ControllerTimeoutError(
                self._operation,
                self._tenant,
                started_at=self._start,
                failed_at=failed_at,
            ) from e

    def left(self) -> float:
        """Return the amount of time remaining in seconds.

        Returns
        -------
        float
            Seconds remaining in the timeout.

        Raises
        ------
        TimeoutError
            Raised if the timeout has expired.
        """
        now = current_datetime(microseconds=True)
        left = (self._timeout - (now - self._start)).total_seconds()
        if left <= 0.0:
            msg = f"{self._operation} timed out after {self.elapsed()}s"
            raise TimeoutError(msg)
        return left

    def partial(self, timeout: timedelta) -> Timeout:
        """Create a timeout that is the lesser of this one and a duration.

        Parameters
        ----------
        timeout
            Upper bound on the new timeout.

        Returns
        -------
        Timeout
            New timeout that expires no later than this one.
        """
        left = timedelta(seconds=self.left())
        return Timeout(self._operation, min(left, timeout), self._tenant)
