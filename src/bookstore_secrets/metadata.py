"""Probes against the Google Compute metadata server (workload identity)."""

from __future__ import annotations

import logging
from typing import Final

import requests

METADATA_FLAVOR_HEADER: Final[dict[str, str]] = {"Metadata-Flavor": "Google"}
METADATA_TIMEOUT_SECONDS: Final[float] = 2.0
DEFAULT_METADATA_HOST: Final[str] = "metadata.google.internal"

_TOKEN_PATH: Final[str] = "/computeMetadata/v1/instance/service-accounts/default/token"
_PROJECT_ID_PATH: Final[str] = "/computeMetadata/v1/project/project-id"

logger = logging.getLogger(__name__)


def _metadata_get(
    session: requests.Session, host: str, path: str
) -> requests.Response | None:
    url = f"http://{host}{path}"
    try:
        response = session.get(
            url,
            headers=METADATA_FLAVOR_HEADER,
            timeout=METADATA_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        # Expected whenever the process is not running on GCP infrastructure
        logger.debug("Metadata server unavailable", extra={"url": url, "error": str(exc)})
        return None
    if response.status_code != 200:
        logger.debug(
            "Metadata server returned an error",
            extra={"url": url, "status_code": response.status_code},
        )
        return None
    return response


def fetch_metadata_token(
    session: requests.Session, *, host: str = DEFAULT_METADATA_HOST
) -> str | None:
    """Return the default service account's access token, or None off-platform."""

    response = _metadata_get(session, host, _TOKEN_PATH)
    if response is None:
        return None
    try:
        token = response.json().get("access_token")
    except (ValueError, AttributeError):
        logger.debug("Metadata token response was not a JSON object")
        return None
    return token or None


def fetch_metadata_project_id(
    session: requests.Session, *, host: str = DEFAULT_METADATA_HOST
) -> str | None:
    """Return the hosting project's id, or None off-platform."""

    response = _metadata_get(session, host, _PROJECT_ID_PATH)
    if response is None:
        return None
    return response.text.strip() or None
