"""Custom exception hierarchy for the secret acquisition engine."""

from __future__ import annotations


class SecretsError(Exception):
    """Base exception for credential and secret acquisition."""


class ConfigurationError(SecretsError):
    """Raised when no usable credential source or configuration value exists."""

    def __init__(self, config_key: str, message: str) -> None:
        super().__init__(message)
        self.config_key = config_key


class KeyFormatError(SecretsError):
    """Raised when private key bytes are not valid DER/PKCS#8/PKCS#1."""


class TokenExchangeError(SecretsError):
    """Raised when the OAuth2 token endpoint rejects or cannot be reached."""


class SecretNameValidationError(SecretsError, ValueError):
    """Raised when a secret name cannot be used in a Secret Manager path."""


class SecretRetrievalError(SecretsError):
    """Raised when a secret cannot be read from Secret Manager."""

    def __init__(self, secret_name: str, environment: str, details: str) -> None:
        super().__init__(details)
        self.secret_name = secret_name
        self.environment = environment
        self.details = details
