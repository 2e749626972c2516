"""Client for the administrative API of a tenant."""

from __future__ import annotations

import hashlib
import ssl

from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from httpx import AsyncClient, HTTPError, Limits, Timeout
from structlog.stdlib import BoundLogger

from ..constants import (
    ADMIN_HEALTH_PATH,
    ADMIN_READ_TIMEOUT,
    ADMIN_REGION,
    ADMIN_RESTART_PATH,
    ADMIN_SERVICE,
)
from ..exceptions import AdminAPIError

__all__ = ["MinIOAdminClient", "build_admin_http_client"]


def build_admin_http_client() -> AsyncClient:
    """Create the HTTP client used to talk to tenants.

    Tenants serve self-signed certificates inside the cluster, so
    certificates are not verified. Responses to administrative calls may take
    a long time to start (a restart waits for every server), hence the long
    read timeout.

    Returns
    -------
    httpx.AsyncClient
        Client that must be closed by the caller.
    """
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return AsyncClient(
        verify=context,
        timeout=Timeout(15.0, read=ADMIN_READ_TIMEOUT.total_seconds()),
        limits=Limits(keepalive_expiry=15.0),
        headers={"Accept-Encoding": "identity"},
    )


class MinIOAdminClient:
    """Call the administrative API of tenants.

    Parameters
    ----------
    http_client
        Client built by `build_admin_http_client`.
    logger
        Logger to use.
    """

    def __init__(self, http_client: AsyncClient, logger: BoundLogger) -> None:
        self._client = http_client
        self._logger = logger

    async def is_healthy(self, url: str) -> bool:
        """Check the health of a tenant.

        The health check is anonymous. Any failure to get a successful
        response, including connection failures, means the tenant is
        unhealthy.

        Parameters
        ----------
        url
            Base URL of the tenant.

        Returns
        -------
        bool
            Whether the tenant reported itself healthy.
        """
        try:
            r = await self._client.get(url + ADMIN_HEALTH_PATH)
        except HTTPError as e:
            error = f"{type(e).__name__}: {e}"
            self._logger.info("Health check failed", url=url, error=error)
            return False
        if r.status_code != 200:
            self._logger.info(
                "Tenant reported unhealthy", url=url, status=r.status_code
            )
            return False
        return True

    async def restart(
        self, url: str, access_key: str, secret_key: str
    ) -> None:
        """Restart every server of a tenant.

        Parameters
        ----------
        url
            Base URL of the tenant.
        access_key
            Root access key of the tenant.
        secret_key
            Root secret key of the tenant.

        Raises
        ------
        AdminAPIError
            Raised if the tenant could not be reached or rejected the call.
        """
        restart_url = f"{url}{ADMIN_RESTART_PATH}?action=restart"
        headers = self._sign("POST", restart_url, b"", access_key, secret_key)
        self._logger.debug("Requesting restart", url=url)
        try:
            r = await self._client.post(restart_url, headers=headers)
            r.raise_for_status()
        except HTTPError as e:
            raise AdminAPIError.from_exception(e) from e
        if r.status_code != 200:
            msg = f"Status {r.status_code} from POST {restart_url}"
            raise AdminAPIError(
                msg,
                method="POST",
                url=restart_url,
                status=r.status_code,
                body=r.text,
            )

    def _sign(
        self,
        method: str,
        url: str,
        body: bytes,
        access_key: str,
        secret_key: str,
    ) -> dict[str, str]:
        """Build AWS Signature Version 4 headers for a request.

        Parameters
        ----------
        method
            HTTP method.
        url
            Full URL including the query string.
        body
            Request body.
        access_key
            Access key to sign with.
        secret_key
            Secret key to sign with.

        Returns
        -------
        dict of str
            Headers to add to the request.
        """
        payload_hash = hashlib.sha256(body).hexdigest()
        request = AWSRequest(
            method=method,
            url=url,
            data=body,
            headers={"X-Amz-Content-Sha256": payload_hash},
        )
        credentials = Credentials(access_key, secret_key)
        SigV4Auth(credentials, ADMIN_SERVICE, ADMIN_REGION).add_auth(request)
        return dict(request.headers.items())
