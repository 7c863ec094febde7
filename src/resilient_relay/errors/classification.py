"""
Error classification for provider failures.

Every provider adapter translates its native failure into one of these
kinds at the point where the failure is observed. Retry and fallback
decisions are made on the kind alone.
"""

from __future__ import annotations

import asyncio
import re
from enum import Enum

import httpx


class ErrorKind(str, Enum):
    """Shared failure taxonomy."""

    RATE_LIMITED = "rate_limited"
    """Throttled by the upstream; retry after a delay."""

    OVERLOADED = "overloaded"
    """Upstream overloaded / temporarily unavailable."""

    SERVER_ERROR = "server_error"
    """Transient 5xx failure or gateway error."""

    TIMEOUT = "timeout"
    """Request timed out."""

    NETWORK = "network"
    """Connection could not be established or was dropped."""

    INVALID_REQUEST = "invalid_request"
    """Malformed or unsupported input."""

    AUTHENTICATION = "authentication"
    """Missing or rejected credentials."""

    PERMISSION_DENIED = "permission_denied"
    """Authenticated but not allowed."""

    NOT_FOUND = "not_found"
    """Requested resource does not exist."""

    REQUEST_TOO_LARGE = "request_too_large"
    """Payload exceeds what the provider accepts."""

    CONTENT_UNAVAILABLE = "content_unavailable"
    """Target is private, removed or restricted."""

    BLOCKED = "blocked"
    """Upstream anti-automation heuristics rejected this request shape."""

    QUARANTINED = "quarantined"
    """Circuit breaker denied the attempt."""

    CANCELLED = "cancelled"
    """Caller deadline elapsed or caller cancelled."""

    OTHER = "other"
    """Anything not covered above."""


_TRANSIENT_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.OVERLOADED,
        ErrorKind.SERVER_ERROR,
        ErrorKind.TIMEOUT,
        ErrorKind.NETWORK,
    }
)

# Input-class kinds: no other provider or retry will change the outcome
_INPUT_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.INVALID_REQUEST,
        ErrorKind.NOT_FOUND,
        ErrorKind.REQUEST_TOO_LARGE,
        ErrorKind.CONTENT_UNAVAILABLE,
    }
)

_STATUS_MAPPING: dict[int, ErrorKind] = {
    400: ErrorKind.INVALID_REQUEST,
    401: ErrorKind.AUTHENTICATION,
    403: ErrorKind.PERMISSION_DENIED,
    404: ErrorKind.NOT_FOUND,
    408: ErrorKind.TIMEOUT,
    410: ErrorKind.CONTENT_UNAVAILABLE,
    413: ErrorKind.REQUEST_TOO_LARGE,
    415: ErrorKind.INVALID_REQUEST,
    422: ErrorKind.INVALID_REQUEST,
    429: ErrorKind.RATE_LIMITED,
    500: ErrorKind.SERVER_ERROR,
    502: ErrorKind.SERVER_ERROR,
    503: ErrorKind.OVERLOADED,
    504: ErrorKind.TIMEOUT,
    529: ErrorKind.OVERLOADED,
}


def is_transient(kind: ErrorKind) -> bool:
    """Check if a failure of this kind may succeed when retried unchanged.

    Args:
        kind: The error kind

    Returns:
        True if the same call should be retried after a delay
    """
    return kind in _TRANSIENT_KINDS


def is_input_class(kind: ErrorKind) -> bool:
    """Check if a failure is caused by the request itself."""
    return kind in _INPUT_KINDS


def classify_http_status(status_code: int) -> ErrorKind:
    """Classify an HTTP status code.

    Args:
        status_code: HTTP status code

    Returns:
        ErrorKind for the status
    """
    if status_code in _STATUS_MAPPING:
        return _STATUS_MAPPING[status_code]

    if 400 <= status_code < 500:
        return ErrorKind.INVALID_REQUEST
    if 500 <= status_code < 600:
        return ErrorKind.SERVER_ERROR

    return ErrorKind.OTHER


def classify_exception(error: BaseException) -> ErrorKind:
    """Classify a low-level exception raised by a transport.

    Args:
        error: The exception

    Returns:
        ErrorKind for the exception
    """
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        return classify_http_status(error.response.status_code)
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ErrorKind.NETWORK

    return ErrorKind.OTHER


# yt-dlp reports failures only as free text on stderr
_CLI_PATTERNS: list[tuple[re.Pattern[str], ErrorKind]] = [
    (re.compile(r"sign in to confirm|not a bot\b", re.IGNORECASE), ErrorKind.BLOCKED),
    (
        re.compile(
            r"private video|video unavailable|is unavailable|has been removed|"
            r"members-only|account associated with this video has been terminated",
            re.IGNORECASE,
        ),
        ErrorKind.CONTENT_UNAVAILABLE,
    ),
    (re.compile(r"does not pass filter \(duration", re.IGNORECASE), ErrorKind.REQUEST_TOO_LARGE),
    (re.compile(r"HTTP Error 429|too many requests", re.IGNORECASE), ErrorKind.RATE_LIMITED),
    (re.compile(r"HTTP Error 5\d\d", re.IGNORECASE), ErrorKind.SERVER_ERROR),
    (re.compile(r"timed out|timeout", re.IGNORECASE), ErrorKind.TIMEOUT),
    (
        re.compile(r"unable to download webpage|connection (refused|reset)|name resolution", re.IGNORECASE),
        ErrorKind.NETWORK,
    ),
    (re.compile(r"unsupported url|is not a valid url", re.IGNORECASE), ErrorKind.INVALID_REQUEST),
]


def classify_cli_failure(stderr: str) -> ErrorKind:
    """Classify a failed yt-dlp invocation from its stderr text.

    Args:
        stderr: Captured standard error output

    Returns:
        ErrorKind for the failure
    """
    for pattern, kind in _CLI_PATTERNS:
        if pattern.search(stderr):
            return kind
    return ErrorKind.OTHER
