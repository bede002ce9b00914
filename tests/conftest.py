"""Shared fixtures: RSA keys, a controllable clock and a fake GCP backend."""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from bookstore_secrets.config import AppConfig, Environment

_CONFIG_ENV_VARS = (
    "APP_ENVIRONMENT",
    "USE_LOCAL_DEV_SECRETS",
    "GCP_PROJECT_ID",
    "GCP_SERVICE_ACCOUNT_KEY_JSON",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "APP_SETTINGS_FILE",
    "GCE_METADATA_HOST",
    "SECRET_MANAGER_BASE_URL",
    "ALLOW_LOCAL_DEV_FALLBACK",
    "LOG_LEVEL",
)

TEST_TOKEN_URI = "https://oauth2.example.test/token"
TEST_CLIENT_EMAIL = "bookstore@test-project.iam.gserviceaccount.com"


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def pkcs8_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def service_account_info(pkcs8_pem: str) -> dict[str, str]:
    return {
        "type": "service_account",
        "project_id": "test-project",
        "client_email": TEST_CLIENT_EMAIL,
        "private_key": pkcs8_pem,
        "token_uri": TEST_TOKEN_URI,
    }


@pytest.fixture
def service_account_json(service_account_info: dict[str, str]) -> str:
    return json.dumps(service_account_info)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_response(
    status_code: int = 200,
    json_data: Any = None,
    *,
    text: str | None = None,
    method: str = "GET",
    url: str = "https://example.test",
) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    if json_data is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = json_data
    if text is None:
        text = json.dumps(json_data) if json_data is not None else ""
    response.text = text
    response.request.method = method
    response.request.url = url
    return response


@pytest.fixture
def response_factory() -> Callable[..., MagicMock]:
    return make_response


@pytest.fixture
def config_factory() -> Callable[..., AppConfig]:
    def _make(**overrides: Any) -> AppConfig:
        values: dict[str, Any] = {
            "environment": Environment.DEV,
            "use_local_dev_secrets": False,
            "project_id": "test-project",
        }
        values.update(overrides)
        return AppConfig(**values)

    return _make


class FakeGcp:
    """Routes a mocked ``requests.Session`` to canned metadata and Secret Manager replies."""

    def __init__(self) -> None:
        self.metadata_token: str | None = "meta-token"
        self.secrets: dict[str, str] = {}
        self.failures: dict[str, list[Any]] = {}
        self.secret_calls: list[str] = []
        self.token_exchange_response = make_response(
            200, {"access_token": "sa-token", "expires_in": 3599}, method="POST"
        )
        self.session = MagicMock()
        self.session.get.side_effect = self._get
        self.session.post.side_effect = self._post

    def fail(self, full_name: str, *failures: Any) -> None:
        """Queue HTTP status codes or exceptions for the next reads of a secret."""

        self.failures.setdefault(full_name, []).extend(failures)

    def _get(self, url: str, headers: dict[str, str] | None = None, timeout: float | None = None) -> MagicMock:
        if "/computeMetadata/" in url:
            if self.metadata_token is None:
                raise requests.ConnectionError("metadata.google.internal unreachable")
            return make_response(200, {"access_token": self.metadata_token, "expires_in": 3599})

        full_name = url.split("/secrets/", 1)[1].split("/", 1)[0]
        self.secret_calls.append(full_name)

        queued = self.failures.get(full_name)
        if queued:
            failure = queued.pop(0)
            if isinstance(failure, BaseException):
                raise failure
            return make_response(failure, text="backend error", url=url)

        if full_name not in self.secrets:
            return make_response(404, text="Secret not found", url=url)

        encoded = base64.b64encode(self.secrets[full_name].encode("utf-8")).decode("ascii")
        return make_response(
            200,
            {"name": f"projects/test-project/secrets/{full_name}/versions/1", "payload": {"data": encoded}},
            url=url,
        )

    def _post(self, url: str, data: dict[str, str] | None = None, timeout: float | None = None) -> MagicMock:
        return self.token_exchange_response


@pytest.fixture
def fake_gcp() -> FakeGcp:
    return FakeGcp()


class RecordingSleeper:
    """Collects requested backoff delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()
