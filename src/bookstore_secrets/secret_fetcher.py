"""Reads secrets from Google Secret Manager over its REST API."""

from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import Callable, Final

import requests

from .config import AppConfig
from .exceptions import SecretRetrievalError, SecretsError
from .models import (
    DB_DATABASE,
    DB_PASSWORD,
    DB_PORT,
    DB_SERVER,
    DB_USERNAME,
    DEFAULT_DATABASE_PORT,
    DatabaseSecrets,
)
from .retry import execute_with_retry
from .token_provider import TokenProvider
from .utils import http_error_from_response
from .validators import validate_secret_name

MAX_RETRIES: Final[int] = 3
INITIAL_RETRY_DELAY_SECONDS: Final[float] = 0.1
SECRET_ACCESS_TIMEOUT_SECONDS: Final[float] = 30.0

LOCAL_DEV_SECRETS: Final[dict[str, str]] = {
    DB_SERVER: "localhost",
    DB_DATABASE: "BookStoreDB",
    DB_USERNAME: "sa",
    DB_PASSWORD: "YourLocalPassword123!",
    DB_PORT: str(DEFAULT_DATABASE_PORT),
}


def local_dev_secret(secret_name: str) -> str:
    """Return the fixed local-dev value for a secret; unknown names get a placeholder."""

    return LOCAL_DEV_SECRETS.get(secret_name.upper(), f"LOCAL_PLACEHOLDER_{secret_name}")


def local_dev_database_secrets() -> DatabaseSecrets:
    """Return the fixed local-dev database settings."""

    return DatabaseSecrets(
        server=LOCAL_DEV_SECRETS[DB_SERVER],
        database=LOCAL_DEV_SECRETS[DB_DATABASE],
        username=LOCAL_DEV_SECRETS[DB_USERNAME],
        password=LOCAL_DEV_SECRETS[DB_PASSWORD],
        port=DEFAULT_DATABASE_PORT,
    )


class SecretFetcher:
    """Fetches environment-prefixed secrets with retries."""

    def __init__(
        self,
        config: AppConfig,
        token_provider: TokenProvider,
        *,
        session: requests.Session | None = None,
        sleeper: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._tokens = token_provider
        self._session = session or requests.Session()
        self._sleep = sleeper
        self._log = logger or logging.getLogger(__name__)

    @property
    def environment(self) -> str:
        return self._config.environment.value

    def qualified_name(self, secret_name: str) -> str:
        return f"{self.environment}_{secret_name}"

    def fetch_secret(self, secret_name: str) -> str:
        """Return the latest version of ``{ENV}_{secret_name}``."""

        if self._tokens.is_local_dev:
            self._log.debug("Returning local development secret", extra={"secret_name": secret_name})
            return local_dev_secret(secret_name)

        name = validate_secret_name(secret_name)
        access_token = self._tokens.ensure_valid()
        full_name = self.qualified_name(name)
        self._log.debug("Retrieving secret", extra={"secret_name": full_name})

        return execute_with_retry(
            lambda: self._access_latest_version(full_name, access_token),
            max_retries=MAX_RETRIES,
            initial_delay=INITIAL_RETRY_DELAY_SECONDS,
            operation_name=f"fetch_secret({full_name})",
            sleeper=self._sleep,
            logger=self._log,
        )

    def fetch_database_secrets(self) -> DatabaseSecrets:
        """Resolve the database bundle; only the port is allowed to fall back."""

        if self._tokens.is_local_dev:
            return local_dev_database_secrets()

        self._log.info("Fetching database secrets from GCP Secret Manager")
        return DatabaseSecrets(
            server=self.fetch_secret(DB_SERVER),
            database=self.fetch_secret(DB_DATABASE),
            username=self.fetch_secret(DB_USERNAME),
            password=self.fetch_secret(DB_PASSWORD),
            port=self._fetch_port(),
        )

    def _fetch_port(self) -> int:
        try:
            raw_port = self.fetch_secret(DB_PORT)
        except SecretsError as exc:
            self._log.warning(
                "Could not fetch %s, using default port %d: %s",
                DB_PORT,
                DEFAULT_DATABASE_PORT,
                exc,
            )
            return DEFAULT_DATABASE_PORT

        try:
            return int(raw_port.strip())
        except ValueError:
            self._log.warning(
                "%s is not an integer, using default port %d", DB_PORT, DEFAULT_DATABASE_PORT
            )
            return DEFAULT_DATABASE_PORT

    def _access_latest_version(self, full_name: str, access_token: str | None) -> str:
        url = (
            f"{self._config.secret_manager_base_url}/projects/{self._config.project_id}"
            f"/secrets/{full_name}/versions/latest:access"
        )
        try:
            response = self._session.get(
                url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=SECRET_ACCESS_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            self._tokens.mark_unhealthy()
            raise SecretRetrievalError(
                full_name, self.environment, f"Failed to retrieve secret '{full_name}': {exc}"
            ) from exc

        if not response.ok:
            self._tokens.mark_unhealthy()
            raise SecretRetrievalError(
                full_name,
                self.environment,
                f"Failed to retrieve secret '{full_name}'. "
                f"Status: {response.status_code}, Details: {response.text}",
            ) from http_error_from_response(response)

        try:
            body = response.json()
        except ValueError as exc:
            raise SecretRetrievalError(
                full_name, self.environment, "Secret Manager returned a non-JSON response"
            ) from exc

        payload = body.get("payload") if isinstance(body, dict) else None
        encoded = payload.get("data") if isinstance(payload, dict) else None
        if not encoded:
            raise SecretRetrievalError(full_name, self.environment, "Secret payload is empty")

        try:
            value = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, ValueError) as exc:
            raise SecretRetrievalError(
                full_name, self.environment, "Secret payload is not valid base64 UTF-8"
            ) from exc

        # Never log or expose the secret contents
        self._log.debug("Successfully retrieved secret", extra={"secret_name": full_name})
        return value
