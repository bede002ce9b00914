"""Access-token acquisition and refresh for Google Cloud APIs."""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Final

import requests

from .assertion import build_signed_jwt
from .config import AppConfig, Environment
from .exceptions import ConfigurationError, TokenExchangeError
from .metadata import fetch_metadata_token
from .utils import http_error_from_response
from .validators import validate_service_account_info

TOKEN_LIFETIME: Final[timedelta] = timedelta(minutes=55)
REFRESH_SKEW: Final[timedelta] = timedelta(minutes=5)
TOKEN_EXCHANGE_TIMEOUT_SECONDS: Final[float] = 30.0

DEFAULT_TOKEN_URI: Final[str] = "https://oauth2.googleapis.com/token"
CLOUD_PLATFORM_SCOPE: Final[str] = "https://www.googleapis.com/auth/cloud-platform"
JWT_BEARER_GRANT_TYPE: Final[str] = "urn:ietf:params:oauth:grant-type:jwt-bearer"

SERVICE_ACCOUNT_JSON_KEY: Final[str] = "GCP_SERVICE_ACCOUNT_KEY_JSON"
CREDENTIALS_FILE_KEY: Final[str] = "GOOGLE_APPLICATION_CREDENTIALS"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenState(Enum):
    """Lifecycle of a ``TokenProvider``."""

    UNINITIALIZED = "uninitialized"
    LOCAL_DEV = "local_dev"
    ACQUIRING = "acquiring"
    VALID = "valid"
    REFRESHING = "refreshing"


@dataclass(frozen=True, slots=True)
class AccessToken:
    """Bearer token with its absolute expiry."""

    value: str = field(repr=False)
    expires_at: datetime

    def needs_refresh(self, now: datetime) -> bool:
        return now >= self.expires_at - REFRESH_SKEW

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class TokenProvider:
    """Obtains, caches and proactively refreshes a Google Cloud access token.

    Acquisition tries, in order, the metadata server (workload identity), the
    service-account JSON from configuration, and the service-account key file.
    If the first acquisition fails the provider switches to local-dev mode for
    the rest of its life instead of failing startup.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        session: requests.Session | None = None,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._clock = clock or utcnow
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._token: AccessToken | None = None
        self._healthy = True
        self._state = TokenState.UNINITIALIZED

        if config.use_local_dev_secrets:
            self._state = TokenState.LOCAL_DEV
            self._log.info("Local dev secrets requested; GCP authentication disabled")
            return

        self._state = TokenState.ACQUIRING
        try:
            self._refresh()
        except Exception as exc:
            if not config.allow_local_dev_fallback:
                raise ConfigurationError(
                    "ALLOW_LOCAL_DEV_FALLBACK",
                    f"Unable to obtain a GCP access token and local dev fallback is disabled: {exc}",
                ) from exc
            log_fallback = self._log.error if config.environment is Environment.PROD else self._log.warning
            log_fallback(
                "Failed to initialize GCP access token: %s. Falling back to local dev mode",
                exc,
                extra={"environment": config.environment.value},
            )
            self._state = TokenState.LOCAL_DEV
            self._token = None
            self._healthy = True
        else:
            self._log.info("Successfully obtained GCP access token")

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def is_local_dev(self) -> bool:
        return self._state is TokenState.LOCAL_DEV

    def is_healthy(self) -> bool:
        """Health check for monitoring."""

        if self.is_local_dev:
            return True
        token = self._token
        return self._healthy and token is not None and not token.is_expired(self._clock())

    def mark_unhealthy(self) -> None:
        """Record that a request made with the current token failed."""

        self._healthy = False

    def ensure_valid(self) -> str | None:
        """Return a token valid for at least the refresh skew, refreshing if needed.

        Returns None in local-dev mode, where no token exists.
        """

        if self.is_local_dev:
            return None

        token = self._token
        if token is None or token.needs_refresh(self._clock()):
            with self._lock:
                token = self._token
                if token is None or token.needs_refresh(self._clock()):
                    self._log.info("Access token expiring soon, refreshing")
                    self._state = TokenState.REFRESHING
                    token = self._refresh()
        return token.value

    def refresh(self) -> AccessToken | None:
        """Acquire a new token unconditionally and store it.

        A local-dev provider never touches the network; it returns None and
        stays in local-dev mode.
        """

        if self.is_local_dev:
            return None
        with self._lock:
            self._state = TokenState.REFRESHING
            return self._refresh()

    def _refresh(self) -> AccessToken:
        self._log.debug("Refreshing GCP access token")
        try:
            value = self._acquire_token()
        except Exception:
            self._healthy = False
            self._state = TokenState.VALID if self._token is not None else TokenState.ACQUIRING
            raise

        token = AccessToken(value=value, expires_at=self._clock() + TOKEN_LIFETIME)
        self._token = token
        self._healthy = True
        self._state = TokenState.VALID
        self._log.debug(
            "Access token refreshed",
            extra={"expires_at": token.expires_at.isoformat()},
        )
        return token

    def _acquire_token(self) -> str:
        token = fetch_metadata_token(self._session, host=self._config.metadata_host)
        if token:
            self._log.info("Using workload identity (metadata server) for authentication")
            return token

        if self._config.service_account_json:
            self._log.info("Using service account JSON from environment variable")
            token = self._token_from_service_account_json(
                self._config.service_account_json, config_key=SERVICE_ACCOUNT_JSON_KEY
            )
            if token:
                return token

        key_file = self._config.credentials_file
        if key_file and os.path.isfile(key_file):
            self._log.warning("Using file-based credentials (not recommended for production)")
            token = self._token_from_key_file(key_file)
            if token:
                return token

        raise ConfigurationError(
            "GCP_CREDENTIALS",
            "Unable to obtain GCP access token. Secure options:\n"
            "1. Run on GCP infrastructure with Workload Identity\n"
            f"2. Set {SERVICE_ACCOUNT_JSON_KEY} (or {CREDENTIALS_FILE_KEY}) with a service account key\n"
            "3. Set USE_LOCAL_DEV_SECRETS=true for local development",
        )

    def _token_from_key_file(self, path: str) -> str | None:
        try:
            contents = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(
                CREDENTIALS_FILE_KEY, f"Unable to read service account key file: {exc}"
            ) from exc
        return self._token_from_service_account_json(contents, config_key=CREDENTIALS_FILE_KEY)

    def _token_from_service_account_json(self, raw: str, *, config_key: str) -> str | None:
        try:
            info = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                config_key, f"Failed to parse service account JSON: {exc}"
            ) from exc

        info = validate_service_account_info(info, config_key=config_key)
        token_uri = info.get("token_uri") or DEFAULT_TOKEN_URI
        assertion = build_signed_jwt(
            info["client_email"],
            info["private_key"],
            scope=CLOUD_PLATFORM_SCOPE,
            audience=token_uri,
            issued_at=self._clock(),
        )
        return self._exchange_assertion(assertion, token_uri)

    def _exchange_assertion(self, assertion: str, token_uri: str) -> str | None:
        try:
            response = self._session.post(
                token_uri,
                data={"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": assertion},
                timeout=TOKEN_EXCHANGE_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise TokenExchangeError(f"Token exchange with {token_uri} failed: {exc}") from exc

        if not response.ok:
            raise TokenExchangeError(
                f"Token exchange with {token_uri} failed with status {response.status_code}"
            ) from http_error_from_response(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenExchangeError("Token endpoint returned a non-JSON response") from exc
        if not isinstance(payload, dict):
            raise TokenExchangeError("Token endpoint returned an unexpected payload")
        return payload.get("access_token") or None
