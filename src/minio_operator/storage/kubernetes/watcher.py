"""Watch a Kubernetes namespace or cluster for events."""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Generic, Self, TypeVar

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import WatchEventType

#: Type of Kubernetes object being watched (`dict` for custom objects).
T = TypeVar("T")

__all__ = [
    "KubernetesWatcher",
    "T",
    "WatchEvent",
]


@dataclass
class WatchEvent(Generic[T]):
    """Parsed event from a Kubernetes watch.

    This model is intended only for use within the Kubernetes storage layer
    and by the event dispatcher that turns events into work queue keys.
    """

    action: WatchEventType
    """Action the event represents."""

    object: T
    """Affected Kubernetes object."""

    @classmethod
    def from_event(cls, event: dict[str, Any], object_type: type[T]) -> Self:
        """Create a `WatchEvent` from a watch event.

        Parameters
        ----------
        event
            Event as returned by the Kubernetes watch API.
        object_type
            Expected type of the object.

        Raises
        ------
        TypeError
            Raised if the type of the object in the watch event was incorrect.
        """
        action = WatchEventType(event["type"])
        if object_type.__name__ == "dict":
            return cls(action=action, object=event["raw_object"])
        obj = event["object"]
        if not isinstance(obj, object_type):
            real_type = type(obj).__name__
            expected_type = object_type.__name__
            msg = f"Watch object was of type {real_type}, not {expected_type}"
            raise TypeError(msg)
        return cls(action=action, object=obj)

    @property
    def resource_version(self) -> str | None:
        """Resource version of the object in the event, if known."""
        if isinstance(self.object, dict):
            return self.object.get("metadata", {}).get("resourceVersion")
        metadata = getattr(self.object, "metadata", None)
        return metadata.resource_version if metadata else None


class KubernetesWatcher(Generic[T]):
    """Watch Kubernetes for events.

    This wrapper around the watch API of the Kubernetes client implements
    retries and resource version handling. Watches without a timeout run
    until stopped: when the server closes the stream, the watch is restarted
    from the last resource version seen, so no events are lost across
    restarts unless that version has expired.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use the ``watch`` methods of the kind-specific
    storage classes instead.

    Parameters
    ----------
    method
        API list method that supports the watch API.
    object_type
        Type of object being watched. This cannot be autodiscovered from the
        method because of the problems with docstring parsing and therefore
        must be provided by the caller and must match the type of object
        returned by the method. For custom objects, this should be a `dict`
        type.
    kind
        Kubernetes kind of object being watched, for error reporting.
    name
        Name of object to watch.
    namespace
        Namespace to watch. If not given, the method must be a cluster-wide
        list method.
    group
        Group of custom object.
    version
        Version of custom object.
    plural
        Plural of custom object.
    label_selector
        Only watch objects matching this label selector.
    resource_version
        Resource version at which to start the watch.
    timeout
        Timeout for the watch.
    logger
        Logger to use.

    Raises
    ------
    ValueError
        Raised if ``timeout`` is specified but is less than zero.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        name: str | None = None,
        namespace: str | None = None,
        group: str | None = None,
        version: str | None = None,
        plural: str | None = None,
        label_selector: str | None = None,
        resource_version: str | None = None,
        timeout: timedelta | None = None,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._namespace = namespace
        self._name = name
        self._logger = logger
        self._timeout = timeout
        self._stopped = False

        # Build the arguments to the method being watched.
        if timeout:
            timeout_seconds = int(math.ceil(timeout.total_seconds()))
            if timeout_seconds <= 0:
                raise ValueError("Watch timeout specified but <= 0")
        field_selector = f"metadata.name={name}" if name else None
        args = {
            "field_selector": field_selector,
            "label_selector": label_selector,
            "group": group,
            "version": version,
            "plural": plural,
            "namespace": namespace,
            "resource_version": resource_version,
            "timeout_seconds": timeout_seconds if timeout else None,
            "_request_timeout": timeout_seconds if timeout else None,
        }
        self._args = {k: v for k, v in args.items() if v is not None}

        # Passing in an explicit type should not be necessary, but the
        # kubernetes_asyncio module determines the type of a method by parsing
        # its docstring and expects native Sphinx markup, which breaks when
        # the API is replaced by a mock.
        self._watch = Watch(return_type=object_type)

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self._watch.stop()
        await self._watch.close()

    def stop(self) -> None:
        """Stop a watch in progress."""
        self._watch.stop()
        self._stopped = True

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Watch Kubernetes for events.

        If we started watching with a specific resource version, that resource
        version may be too old to still be known to Kubernetes, in which case
        the API call returns a 410 error and we should retry without a
        resource version. This is handled automatically. Unfortunately, this
        has a race condition where we may miss events that come in after the
        error is returned but before we retry the API call. Callers that care
        should do a full resync periodically.

        Yields
        ------
        WatchEvent
            Parsed event from the Kubernetes API.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server during the
            watch.
        TimeoutError
            Raised if the timeout was reached.
        """
        args = self._args.copy()
        start = current_datetime(microseconds=True)
        while True:
            try:
                async with self._watch.stream(self._method, **args) as stream:
                    async for event in stream:
                        if event["type"] == WatchEventType.ERROR.value:
                            self._raise_for_error(event)
                        watch_event = WatchEvent.from_event(event, self._type)
                        if watch_event.resource_version:
                            version = watch_event.resource_version
                            args["resource_version"] = version
                        if watch_event.action == WatchEventType.BOOKMARK:
                            continue
                        yield watch_event

                # Client timeouts will raise TimeoutError, but server timeouts
                # will just end the iterator. Calling the stop method will
                # also end the iterator; distinguish by looking at
                # self._stopped.
                #
                # The server may time us out before our configured timeout
                # (the Kubernetes control plane implements some global maximum
                # timeouts), so we have to check for that case and retry with
                # a reduced timeout if it happens.
                if self._stopped:
                    break
                if self._timeout:
                    elapsed = current_datetime(microseconds=True) - start
                    if elapsed + timedelta(seconds=1) < self._timeout:
                        new_timeout = self._timeout - elapsed
                        new_timeout_seconds = int(new_timeout.total_seconds())
                        args["timeout_seconds"] = new_timeout_seconds
                        args["_request_timeout"] = new_timeout_seconds
                        continue
                    elapsed_seconds = elapsed.total_seconds()
                    msg = f"Event watch timed out after {elapsed_seconds}s"
                    raise TimeoutError(msg)
                self._logger.debug(
                    f"{self._kind} watch closed by server, restarting",
                    resource_version=args.get("resource_version"),
                )
            except ApiException as e:
                if e.status == 410 and "resource_version" in args:
                    version = args["resource_version"]
                    msg = f"Resource version {version} expired, retrying watch"
                    self._logger.info(msg)
                    del args["resource_version"]
                    continue

                # Kubernetes may return a 410 error even though no
                # resourceVersion was set in the call if there are long
                # delays between reportable events. Retry those as well, but
                # wait one second so that we don't spam the Kubernetes
                # control plane with requests if every request returns 410.
                if e.status == 410:
                    msg = "Watch expired (no resource version), retrying"
                    self._logger.info(msg)
                    await asyncio.sleep(1)
                    continue

                raise KubernetesError.from_exception(
                    "Error watching objects",
                    e,
                    kind=self._kind,
                    namespace=self._namespace,
                    name=self._name,
                ) from e

    def _raise_for_error(self, event: dict[str, Any]) -> None:
        """Convert an ``ERROR`` watch event into an exception.

        Parameters
        ----------
        event
            Raw watch event of type ``ERROR``.

        Raises
        ------
        kubernetes_asyncio.client.ApiException
            Always raised, with the status code from the event.
        """
        status = event.get("raw_object") or {}
        code = status.get("code", 500)
        reason = status.get("message", "Unknown watch error")
        raise ApiException(status=code, reason=reason)
