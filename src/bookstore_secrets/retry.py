"""Retry with exponential backoff for transient remote failures."""

from __future__ import annotations

import errno
import logging
import socket
import ssl
import time
from collections import deque
from enum import Enum
from typing import Callable, Final, Iterator, TypeVar

import requests
from google.api_core import exceptions as google_exceptions
from urllib3.exceptions import NameResolutionError
from urllib3.exceptions import SSLError as Urllib3SSLError

T = TypeVar("T")

# Request timeout, throttling/resource exhaustion, backend error, bad gateway,
# service busy, gateway timeout.
TRANSIENT_HTTP_STATUS_CODES: Final[frozenset[int]] = frozenset({408, 429, 500, 502, 503, 504})

TRANSIENT_SOCKET_ERRNOS: Final[frozenset[int]] = frozenset(
    {errno.ECONNRESET, errno.ECONNABORTED, errno.ETIMEDOUT, errno.ECONNREFUSED, errno.EPIPE}
)

_TRANSIENT_TYPES: Final[tuple[type[BaseException], ...]] = (
    requests.Timeout,
    requests.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
    TimeoutError,
    ConnectionError,
)

_TLS_FAILURE_TYPES: Final[tuple[type[BaseException], ...]] = (
    requests.exceptions.SSLError,
    Urllib3SSLError,
    ssl.SSLError,
)

LOGGER = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Retry verdict for a failure."""

    TRANSIENT = "transient"
    FATAL = "fatal"


def iter_error_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and every error it wraps, each once, breadth first."""

    pending: deque[BaseException] = deque([exc])
    seen: set[int] = set()
    while pending:
        current = pending.popleft()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        linked: list[object] = [current.__cause__]
        if not current.__suppress_context__:
            linked.append(current.__context__)
        # urllib3/requests keep the underlying error in ``reason`` or ``args``
        linked.append(getattr(current, "reason", None))
        linked.extend(current.args)
        pending.extend(item for item in linked if isinstance(item, BaseException))


def _is_name_resolution_failure(exc: BaseException) -> bool:
    return isinstance(exc, (socket.gaierror, NameResolutionError))


def _is_tls_failure(exc: BaseException) -> bool:
    return isinstance(exc, _TLS_FAILURE_TYPES)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, google_exceptions.GoogleAPICallError):
        return exc.code in TRANSIENT_HTTP_STATUS_CODES
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    return isinstance(exc, OSError) and exc.errno in TRANSIENT_SOCKET_ERRNOS


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify a failure by walking its cause chain.

    A name that fails to resolve, or a certificate that fails to verify, will
    keep failing, so DNS and TLS errors anywhere in the chain make the whole
    failure fatal. Otherwise one transient link is enough for the wrapper to
    be retried.
    """

    chain = list(iter_error_chain(exc))
    if any(_is_name_resolution_failure(link) or _is_tls_failure(link) for link in chain):
        return ErrorKind.FATAL
    if any(_is_transient(link) for link in chain):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def execute_with_retry(
    operation: Callable[[], T],
    *,
    max_retries: int = 3,
    initial_delay: float = 0.1,
    operation_name: str = "operation",
    sleeper: Callable[[float], None] = time.sleep,
    classifier: Callable[[BaseException], ErrorKind] = classify_error,
    logger: logging.Logger | None = None,
) -> T:
    """Run ``operation``, retrying transient failures with exponential backoff.

    Delays are ``initial_delay * 2 ** (attempt - 1)`` with no jitter. Fatal
    failures, and the transient failure of the final attempt, are re-raised
    unchanged.
    """

    if max_retries < 0:
        raise ValueError("max_retries must be zero or greater")

    log = logger or LOGGER
    max_attempts = max_retries + 1

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except Exception as exc:
            kind = classifier(exc)
            if kind is ErrorKind.TRANSIENT and attempt < max_attempts:
                delay = initial_delay * 2 ** (attempt - 1)
                log.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.3fs",
                    operation_name,
                    attempt,
                    max_attempts,
                    exc,
                    delay,
                    extra={"operation": operation_name, "attempt": attempt, "delay_seconds": delay},
                )
                sleeper(delay)
                continue

            log.error(
                "%s failed permanently: %s",
                operation_name,
                exc,
                exc_info=exc,
                extra={"operation": operation_name, "attempt": attempt, "error_kind": kind.value},
            )
            raise
