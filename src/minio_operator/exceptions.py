"""Exceptions for the MinIO operator."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
    SlackWebException,
)

__all__ = [
    "AdminAPIError",
    "ChildSyncError",
    "ControllerTimeoutError",
    "InvalidObjectError",
    "KubernetesError",
    "MissingCredentialsError",
    "StatusConflictError",
    "StatusUpdateExhaustedError",
]


class AdminAPIError(SlackWebException):
    """A call to the administrative API of a tenant failed."""


class ChildSyncError(SlackException):
    """Creating or updating a child object of a tenant failed.

    Parameters
    ----------
    message
        Summary of error.
    tenant
        Name of the tenant that owns the child object.
    namespace
        Namespace of the tenant.
    kind
        Kind of the child object.
    name
        Name of the child object.
    """

    def __init__(
        self,
        message: str,
        *,
        tenant: str,
        namespace: str,
        kind: str,
        name: str,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.tenant = tenant
        self.namespace = namespace
        self.kind = kind
        self.name = name

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        tenant = f"{self.namespace}/{self.tenant}"
        message.fields.append(SlackTextField(heading="Tenant", text=tenant))
        obj = f"{self.kind} {self.namespace}/{self.name}"
        message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        return message


class ControllerTimeoutError(SlackException):
    """Wraps `TimeoutError` with additional context and Slack support.

    Parameters
    ----------
    operation
        Operation that timed out.
    tenant
        Tenant associated with operation, if any.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self,
        operation: str,
        tenant: str | None = None,
        *,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        self.started_at = started_at
        self.tenant = tenant
        elapsed = failed_at - started_at
        msg = f"{operation} timed out after {elapsed.total_seconds()}s"
        super().__init__(msg, failed_at=failed_at)

    @override
    def to_slack(self) -> SlackMessage:
        """Format the exception as a Slack message.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting with
            `~safir.slack.webhook.SlackWebhookClient`.
        """
        started_at = format_datetime_for_logging(self.started_at)
        failed_at = format_datetime_for_logging(self.failed_at)
        fields: list[SlackBaseField] = [
            SlackTextField(heading="Started at", text=started_at),
            SlackTextField(heading="Failed at", text=failed_at),
        ]
        if self.tenant:
            fields.append(SlackTextField(heading="Tenant", text=self.tenant))
        return SlackMessage(message=str(self), fields=fields)


class InvalidObjectError(SlackException):
    """A custom object stored in Kubernetes could not be parsed.

    Parameters
    ----------
    message
        Summary error message.
    error
        Detailed error message, possibly multi-line.
    """

    @classmethod
    def from_exception(
        cls, kind: str, name: str, exc: ValidationError
    ) -> Self:
        """Create an exception from a Pydantic parse failure.

        Parameters
        ----------
        kind
            Kind of the object that failed to parse.
        name
            Namespace and name of the object that failed to parse.
        exc
            Pydantic exception.

        Returns
        -------
        InvalidObjectError
            Constructed exception.
        """
        error = f"{type(exc).__name__}: {exc!s}"
        return cls(f"Unable to parse {kind} {name}", error)

    def __init__(self, message: str, error: str) -> None:
        super().__init__(message)
        self.error = error

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        block = SlackCodeBlock(heading="Error", code=self.error)
        message.blocks.append(block)
        return message


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    kind
        Kind of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.name:
            kind = f"{self.kind} " if self.kind else ""
            if self.namespace:
                obj = f"{kind}{self.namespace}/{self.name}"
            else:
                obj = f"{kind}{self.name}"
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        elif self.kind:
            if self.namespace:
                obj = f"{self.kind} in namespace {self.namespace}"
            else:
                obj = self.kind
            block = SlackTextBlock(heading="Object", text=obj)
            message.blocks.append(block)
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    def _summary(self) -> str:
        """Summarize the exception.

        Produces a single-line summary, used for the main part of the Slack
        message and part of the stringification.
        """
        result = self.message
        if self.name or self.kind or self.status:
            result += " ("
            if self.name:
                kind = f"{self.kind} " if self.kind else ""
                if self.namespace:
                    result += f"{kind}{self.namespace}/{self.name}"
                else:
                    result += f"{kind}{self.name}"
                if self.status:
                    result += ", "
            elif self.kind:
                result += self.kind
                if self.status:
                    result += ", "
            if self.status:
                result += f"status {self.status}"
            result += ")"
        return result


class MissingCredentialsError(SlackException):
    """The root credentials of a tenant could not be determined.

    Parameters
    ----------
    tenant
        Name of the tenant.
    namespace
        Namespace of the tenant.
    missing
        Credential keys that were not found.
    """

    def __init__(
        self, tenant: str, namespace: str, missing: list[str]
    ) -> None:
        keys = ", ".join(missing)
        msg = f"MinIO {namespace}/{tenant} credentials missing: {keys}"
        super().__init__(msg)
        self.tenant = tenant
        self.namespace = namespace
        self.missing = missing


class StatusConflictError(KubernetesError):
    """A status update was rejected because the object version was stale."""


class StatusUpdateExhaustedError(SlackException):
    """A status update kept conflicting until all attempts were used.

    Parameters
    ----------
    tenant
        Name of the tenant.
    namespace
        Namespace of the tenant.
    attempts
        Number of attempts made.
    """

    def __init__(self, tenant: str, namespace: str, attempts: int) -> None:
        msg = (
            f"Status update of MinIO {namespace}/{tenant} still conflicting"
            f" after {attempts} attempts"
        )
        super().__init__(msg)
        self.tenant = tenant
        self.namespace = namespace
        self.attempts = attempts

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        tenant = f"{self.namespace}/{self.tenant}"
        message.fields.append(SlackTextField(heading="Tenant", text=tenant))
        attempts = SlackTextField(heading="Attempts", text=str(self.attempts))
        message.fields.append(attempts)
        return message