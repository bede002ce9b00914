"""Shared utility helpers."""

from __future__ import annotations

import base64

import requests
from google.api_core import exceptions as google_exceptions


def base64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url, as required inside a JWT."""

    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def http_error_from_response(response: requests.Response) -> google_exceptions.GoogleAPICallError:
    """Map a failed HTTP response onto the matching google.api_core exception."""

    request = getattr(response, "request", None)
    method = getattr(request, "method", None) or "HTTP"
    url = getattr(request, "url", None) or getattr(response, "url", "")
    message = f"{method} {url}: {response.text or 'unknown error'}"
    return google_exceptions.from_http_status(response.status_code, message, response=response)


def mask_secret(value: str, *, visible: int = 2) -> str:
    """Return a display-safe rendering of a secret value."""

    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}{'*' * (len(value) - visible * 2)}{value[-visible:]}"
