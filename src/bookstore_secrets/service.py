"""Top-level secret service: mode selection and the resolve-once bundle cache."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from types import TracebackType
from typing import Callable

import requests

from .config import AppConfig, load_config
from .logging_config import configure_logging
from .models import DatabaseSecrets
from .secret_fetcher import SecretFetcher, local_dev_database_secrets
from .token_provider import Clock, TokenProvider


class OperatingMode(Enum):
    """Whether secrets come from fixed local values or Secret Manager."""

    LOCAL_DEV = "local_dev"
    NETWORKED = "networked"


class SecretService:
    """Entry point for database credentials.

    Owns a token provider and a secret fetcher. The database bundle is
    resolved once per instance and then served from memory.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        session: requests.Session | None = None,
        token_provider: TokenProvider | None = None,
        fetcher: SecretFetcher | None = None,
        clock: Clock | None = None,
        sleeper: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._log = logger or logging.getLogger(__name__)
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._config = config or load_config(session=self._session)

        self._log.info(
            "Initializing secret service",
            extra={
                "environment": self._config.environment.value,
                "project_id": self._config.project_id,
                "local_dev_requested": self._config.use_local_dev_secrets,
            },
        )

        self._tokens = token_provider or TokenProvider(
            self._config, session=self._session, clock=clock, logger=logger
        )
        self._fetcher = fetcher or SecretFetcher(
            self._config,
            self._tokens,
            session=self._session,
            sleeper=sleeper,
            logger=logger,
        )
        self._mode = OperatingMode.LOCAL_DEV if self._tokens.is_local_dev else OperatingMode.NETWORKED
        self._cache_lock = threading.Lock()
        self._cached_secrets: DatabaseSecrets | None = None

        self._log.info("Secret service ready", extra={"mode": self._mode.value})

    @property
    def mode(self) -> OperatingMode:
        return self._mode

    @property
    def config(self) -> AppConfig:
        return self._config

    def is_healthy(self) -> bool:
        """Health check for monitoring."""

        return self._tokens.is_healthy()

    def get_secret(self, secret_name: str) -> str:
        """Fetch a single secret for the configured environment."""

        return self._fetcher.fetch_secret(secret_name)

    def get_database_secrets(self) -> DatabaseSecrets:
        """Return the database bundle, fetching it only if nothing is cached yet."""

        cached = self._cached_secrets
        if cached is not None:
            self._log.debug("Returning cached database secrets")
            return cached

        if self._mode is OperatingMode.LOCAL_DEV:
            self._log.debug("Returning local development secrets")
            secrets = local_dev_database_secrets()
        else:
            secrets = self._fetcher.fetch_database_secrets()

        with self._cache_lock:
            # Concurrent first callers may all fetch; the first stored bundle wins
            if self._cached_secrets is None:
                self._cached_secrets = secrets
                if self._mode is OperatingMode.NETWORKED:
                    self._log.info("Successfully retrieved and cached database secrets")
            return self._cached_secrets

    async def get_database_secrets_async(self) -> DatabaseSecrets:
        """Async wrapper that keeps blocking I/O off the event loop."""

        return await asyncio.to_thread(self.get_database_secrets)

    def close(self) -> None:
        """Release the HTTP session if this service created it."""

        if self._owns_session:
            self._session.close()
        self._log.info("Secret service closed")

    def __enter__(self) -> SecretService:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()


def create_secret_service() -> SecretService:
    """Composition root: load configuration, configure logging, build a service."""

    config = load_config()
    configure_logging(config.log_level)
    return SecretService(config)
