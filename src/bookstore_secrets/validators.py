"""Input validation utilities."""

from __future__ import annotations

import re
from typing import Any

from .exceptions import ConfigurationError, SecretNameValidationError


# Secret Manager secret ids: letters, digits, underscores and hyphens.
SECRET_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,255}$")

REQUIRED_SERVICE_ACCOUNT_FIELDS = ("client_email", "private_key")


def validate_secret_name(secret_name: str) -> str:
    """Ensure the secret name is safe to embed in a Secret Manager resource path."""

    if not secret_name or not secret_name.strip():
        raise SecretNameValidationError("Secret name cannot be empty")

    normalized = secret_name.strip()
    if not SECRET_NAME_PATTERN.match(normalized):
        raise SecretNameValidationError(
            f"Secret name {normalized!r} may only contain letters, digits, '_' and '-'"
        )
    return normalized


def validate_service_account_info(info: Any, *, config_key: str) -> dict[str, Any]:
    """Ensure a parsed service-account descriptor carries what the JWT grant needs."""

    if not isinstance(info, dict):
        raise ConfigurationError(config_key, "Expected JSON object for service-account key")

    missing = [name for name in REQUIRED_SERVICE_ACCOUNT_FIELDS if not info.get(name)]
    if missing:
        raise ConfigurationError(
            config_key,
            f"Invalid service account JSON: missing {' and '.join(missing)}",
        )
    return info
