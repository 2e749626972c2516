"""Resolution of the root credentials of tenants."""

from __future__ import annotations

import base64
import binascii

from structlog.stdlib import BoundLogger

from ..constants import CONFIG_ENV_KEY
from ..exceptions import MissingCredentialsError
from ..models.domain.admin import RootCredentials
from ..models.v1alpha1.tenant import Tenant
from ..storage.kubernetes.creator import SecretStorage
from ..timeout import Timeout

ACCESS_KEY = "accesskey"
"""Key under which the root access key is found after parsing."""

SECRET_KEY = "secretkey"
"""Key under which the root secret key is found after parsing."""

_ALIASES = {
    "MINIO_ROOT_USER": ACCESS_KEY,
    "MINIO_ACCESS_KEY": ACCESS_KEY,
    "MINIO_ROOT_PASSWORD": SECRET_KEY,
    "MINIO_SECRET_KEY": SECRET_KEY,
}

__all__ = [
    "ACCESS_KEY",
    "SECRET_KEY",
    "CredentialResolver",
    "parse_configuration",
]


def parse_configuration(data: str, logger: BoundLogger) -> dict[str, str]:
    """Parse server settings in environment file format.

    Each line is ``KEY=VALUE``, optionally preceded by ``export``. Blank
    lines and lines starting with ``#`` are skipped, and a pair of matching
    single or double quotes around the value is removed. Malformed lines are
    logged and skipped.

    Settings holding the root credentials are also stored under
    ``accesskey`` and ``secretkey``.

    Parameters
    ----------
    data
        Contents of the settings file.
    logger
        Logger for malformed lines.

    Returns
    -------
    dict of str
        Parsed settings.
    """
    config: dict[str, str] = {}
    for raw_line in data.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export") and line[6:7].isspace():
            line = line.removeprefix("export").strip()
        key, sep, value = line.partition("=")
        if not sep:
            logger.error(
                "Error parsing tenant configuration",
                error=f"Malformed line {line}, expected KEY=value",
            )
            continue
        if len(value) >= 2 and value[0] in "\"'" and value[-1] == value[0]:
            value = value[1:-1]
        config[key] = value
        if key in _ALIASES:
            config[_ALIASES[key]] = value
    return config


class CredentialResolver:
    """Determine the root credentials of a tenant.

    Literal environment variables of the tenant are merged with the settings
    in its configuration secret, which take precedence.

    Parameters
    ----------
    secret_storage
        Storage for secrets.
    logger
        Logger to use.
    """

    def __init__(
        self, secret_storage: SecretStorage, logger: BoundLogger
    ) -> None:
        self._secret = secret_storage
        self._logger = logger

    async def resolve(
        self, tenant: Tenant, timeout: Timeout
    ) -> RootCredentials:
        """Resolve the root credentials of a tenant.

        Parameters
        ----------
        tenant
            Tenant.
        timeout
            Timeout on operation.

        Returns
        -------
        RootCredentials
            Root keys of the tenant.

        Raises
        ------
        KubernetesError
            Raised if the configuration secret could not be read.
        MissingCredentialsError
            Raised if either root key could not be found.
        TimeoutError
            Raised if the timeout expired.
        """
        config: dict[str, str] = {}
        for env in tenant.spec.env:
            if env.value is None:
                continue
            config[env.name] = env.value
            if env.name in _ALIASES:
                config[_ALIASES[env.name]] = env.value
        config.update(await self._read_configuration(tenant, timeout))

        missing = [k for k in (ACCESS_KEY, SECRET_KEY) if not config.get(k)]
        if missing:
            raise MissingCredentialsError(
                tenant.name, tenant.namespace, missing
            )
        return RootCredentials(
            access_key=config[ACCESS_KEY], secret_key=config[SECRET_KEY]
        )

    async def _read_configuration(
        self, tenant: Tenant, timeout: Timeout
    ) -> dict[str, str]:
        """Read and parse the configuration secret of a tenant, if any."""
        if not tenant.spec.configuration:
            return {}
        name = tenant.spec.configuration.name
        secret = await self._secret.read(name, tenant.namespace, timeout)
        if not secret:
            self._logger.warning(
                "Configuration secret not found",
                tenant=tenant.name,
                namespace=tenant.namespace,
                secret=name,
            )
            return {}
        encoded = (secret.data or {}).get(CONFIG_ENV_KEY)
        if not encoded:
            return {}
        logger = self._logger.bind(tenant=tenant.name, secret=name)
        try:
            data = base64.b64decode(encoded).decode()
        except (binascii.Error, UnicodeDecodeError) as e:
            logger.error("Cannot decode configuration secret", error=str(e))
            return {}
        return parse_configuration(data, logger)
