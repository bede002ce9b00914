"""Application configuration utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Final, Mapping

import requests
from dotenv import dotenv_values, load_dotenv

from .exceptions import ConfigurationError
from .metadata import DEFAULT_METADATA_HOST, fetch_metadata_project_id


VALID_LOG_LEVELS: Final[set[str]] = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_PROJECT_ID: Final[str] = "prj-unicr-dev-01"
LOCAL_DEV_PROJECT_ID: Final[str] = "local-dev-project"
DEFAULT_SECRET_MANAGER_BASE_URL: Final[str] = "https://secretmanager.googleapis.com/v1"


class Environment(str, Enum):
    """Deployment environment; doubles as the secret name prefix."""

    DEV = "DEV"
    UAT = "UAT"
    PROD = "PROD"


DEFAULT_ENVIRONMENT: Final[Environment] = Environment.DEV


@dataclass(frozen=True)
class AppConfig:
    """Configuration values required by the secret service."""

    environment: Environment
    use_local_dev_secrets: bool
    project_id: str
    service_account_json: str | None = field(default=None, repr=False)
    credentials_file: str | None = None
    metadata_host: str = DEFAULT_METADATA_HOST
    secret_manager_base_url: str = DEFAULT_SECRET_MANAGER_BASE_URL
    allow_local_dev_fallback: bool = True
    log_level: str = "INFO"


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() == "true"


def _static_settings() -> Mapping[str, str | None]:
    """Read the optional dotenv-format settings file named by APP_SETTINGS_FILE."""

    path = os.getenv("APP_SETTINGS_FILE")
    if not path or not os.path.isfile(path):
        return {}
    return dotenv_values(path)


def current_environment(static_settings: Mapping[str, str | None] | None = None) -> Environment:
    """Resolve the environment: APP_ENVIRONMENT > static ENVIRONMENT > DEV.

    Evaluated on every call; nothing is cached here.
    """

    settings = _static_settings() if static_settings is None else static_settings
    raw = os.getenv("APP_ENVIRONMENT") or settings.get("ENVIRONMENT") or DEFAULT_ENVIRONMENT.value
    try:
        return Environment(raw.strip().upper())
    except ValueError as exc:
        raise ConfigurationError(
            "APP_ENVIRONMENT",
            f"APP_ENVIRONMENT must be one of {[env.value for env in Environment]}, got {raw!r}",
        ) from exc


def is_local_dev_mode() -> bool:
    """Return True when USE_LOCAL_DEV_SECRETS is set to "true"."""

    return _parse_bool(os.getenv("USE_LOCAL_DEV_SECRETS"), default=False)


def resolve_project_id(
    *,
    local_dev: bool,
    static_settings: Mapping[str, str | None],
    session: requests.Session,
    metadata_host: str = DEFAULT_METADATA_HOST,
) -> str:
    """Pick the project id: env var > static setting > metadata server > default."""

    if local_dev:
        return LOCAL_DEV_PROJECT_ID

    project_id = os.getenv("GCP_PROJECT_ID")
    if project_id:
        return project_id

    project_id = static_settings.get("GCP_PROJECT_ID")
    if project_id and project_id != DEFAULT_PROJECT_ID:
        return project_id

    project_id = fetch_metadata_project_id(session, host=metadata_host)
    if project_id:
        return project_id

    return DEFAULT_PROJECT_ID


def load_config(*, session: requests.Session | None = None) -> AppConfig:
    """Load and validate configuration from environment variables."""

    load_dotenv()

    static_settings = _static_settings()
    environment = current_environment(static_settings)
    local_dev = is_local_dev_mode()
    metadata_host = os.getenv("GCE_METADATA_HOST") or DEFAULT_METADATA_HOST
    log_level = (os.getenv("LOG_LEVEL") or "INFO").upper()

    if log_level not in VALID_LOG_LEVELS:
        raise ConfigurationError(
            "LOG_LEVEL", f"LOG_LEVEL must be one of {sorted(VALID_LOG_LEVELS)}"
        )

    if session is None:
        with requests.Session() as probe_session:
            project_id = resolve_project_id(
                local_dev=local_dev,
                static_settings=static_settings,
                session=probe_session,
                metadata_host=metadata_host,
            )
    else:
        project_id = resolve_project_id(
            local_dev=local_dev,
            static_settings=static_settings,
            session=session,
            metadata_host=metadata_host,
        )

    return AppConfig(
        environment=environment,
        use_local_dev_secrets=local_dev,
        project_id=project_id,
        service_account_json=os.getenv("GCP_SERVICE_ACCOUNT_KEY_JSON") or None,
        credentials_file=os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or None,
        metadata_host=metadata_host,
        secret_manager_base_url=(
            os.getenv("SECRET_MANAGER_BASE_URL") or DEFAULT_SECRET_MANAGER_BASE_URL
        ).rstrip("/"),
        allow_local_dev_fallback=_parse_bool(
            os.getenv("ALLOW_LOCAL_DEV_FALLBACK"), default=True
        ),
        log_level=log_level,
    )
