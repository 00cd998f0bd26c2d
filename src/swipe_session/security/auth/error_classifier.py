"""Classification of sign-in and request failures.

Maps any exception or HTTP status to a ClassifiedError: a fine-grained kind,
a coarse category that drives retry/sign-out decisions, and the message shown
to the user. Every function here is pure and total: unknown inputs fall back
to ErrorKind.UNKNOWN with a generic message.
"""

from __future__ import annotations

__all__ = [
    "ClassifiedError",
    "ErrorCategory",
    "ErrorKind",
    "classify_exception",
    "classify_status",
    "get_user_friendly_message",
]

import asyncio
import socket
from dataclasses import dataclass
from enum import Enum

import httpx

from swipe_session.exceptions import (
    BackendHTTPError,
    IdentityCancelledError,
    MalformedResponseError,
)


class ErrorCategory(Enum):
    CANCELLED = "cancelled"
    TRANSIENT_NETWORK = "transient_network"
    TERMINAL_AUTH = "terminal_auth"
    SERVER = "server"
    CLIENT = "client"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN = "unknown"


class ErrorKind(Enum):
    TIMEOUT = "timeout"
    NO_CONNECTIVITY = "no_connectivity"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_RESET = "connection_reset"
    NETWORK = "network"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    CANCELLED = "cancelled"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN = "unknown"


_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.TIMEOUT: "The request took too long to respond. Please check if the server is running and try again.",
    ErrorKind.NO_CONNECTIVITY: (
        "Unable to connect to the server. Please check your internet connection and verify the server address."
    ),
    ErrorKind.CONNECTION_REFUSED: "Unable to reach the server. Please check if the server is running and try again.",
    ErrorKind.CONNECTION_RESET: "The connection to the server was interrupted. Please try again.",
    ErrorKind.NETWORK: "Unable to connect to the server. Please check your internet connection.",
    ErrorKind.UNAUTHORIZED: "Your session has expired. Please log in again.",
    ErrorKind.FORBIDDEN: "You do not have permission to perform this action.",
    ErrorKind.NOT_FOUND: "The requested resource was not found.",
    ErrorKind.SERVER_ERROR: "A server error occurred. Please try again later.",
    ErrorKind.CLIENT_ERROR: "Something went wrong. Please try again.",
    ErrorKind.CANCELLED: "Sign-in was cancelled.",
    ErrorKind.MALFORMED_RESPONSE: "The server sent an unexpected response. Please try again later.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again.",
}

_CATEGORIES: dict[ErrorKind, ErrorCategory] = {
    ErrorKind.TIMEOUT: ErrorCategory.TRANSIENT_NETWORK,
    ErrorKind.NO_CONNECTIVITY: ErrorCategory.TRANSIENT_NETWORK,
    ErrorKind.CONNECTION_REFUSED: ErrorCategory.TRANSIENT_NETWORK,
    ErrorKind.CONNECTION_RESET: ErrorCategory.TRANSIENT_NETWORK,
    ErrorKind.NETWORK: ErrorCategory.TRANSIENT_NETWORK,
    ErrorKind.UNAUTHORIZED: ErrorCategory.TERMINAL_AUTH,
    ErrorKind.FORBIDDEN: ErrorCategory.TERMINAL_AUTH,
    ErrorKind.NOT_FOUND: ErrorCategory.CLIENT,
    ErrorKind.SERVER_ERROR: ErrorCategory.SERVER,
    ErrorKind.CLIENT_ERROR: ErrorCategory.CLIENT,
    ErrorKind.CANCELLED: ErrorCategory.CANCELLED,
    ErrorKind.MALFORMED_RESPONSE: ErrorCategory.MALFORMED_RESPONSE,
    ErrorKind.UNKNOWN: ErrorCategory.UNKNOWN,
}

# Substrings of resolver errors across platforms (glibc, macOS, Windows)
_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated",
    "name resolution",
)


@dataclass(frozen=True)
class ClassifiedError:
    """Result of classifying a failure.

    Attributes:
        kind: Fine-grained failure kind.
        category: Coarse category used for retry and sign-out decisions.
        message: User-facing message.
        status_code: HTTP status, when the failure was an HTTP response.
    """

    kind: ErrorKind
    category: ErrorCategory
    message: str
    status_code: int | None = None

    @property
    def is_retryable(self) -> bool:
        return self.category is ErrorCategory.TRANSIENT_NETWORK

    @property
    def is_terminal(self) -> bool:
        return self.category is ErrorCategory.TERMINAL_AUTH


def _make(kind: ErrorKind, message: str | None = None, status_code: int | None = None) -> ClassifiedError:
    return ClassifiedError(
        kind=kind,
        category=_CATEGORIES[kind],
        message=message or _MESSAGES[kind],
        status_code=status_code,
    )


def classify_status(status_code: int, server_message: str | None = None) -> ClassifiedError:
    """Classify an HTTP error status.

    Args:
        status_code: HTTP status from the backend.
        server_message: Message from the error body. Only shown for 4xx
            statuses that have no dedicated message.

    Returns:
        ClassifiedError for the status.
    """
    if status_code == 401:
        return _make(ErrorKind.UNAUTHORIZED, status_code=status_code)
    if status_code == 403:
        return _make(ErrorKind.FORBIDDEN, status_code=status_code)
    if status_code == 404:
        return _make(ErrorKind.NOT_FOUND, status_code=status_code)
    if 500 <= status_code <= 599:
        return _make(ErrorKind.SERVER_ERROR, status_code=status_code)
    if 400 <= status_code <= 499:
        return _make(ErrorKind.CLIENT_ERROR, message=server_message or None, status_code=status_code)
    return _make(ErrorKind.UNKNOWN, status_code=status_code)


def _classify_connection_text(text: str) -> ErrorKind | None:
    lowered = text.lower()
    if any(marker in lowered for marker in _DNS_MARKERS):
        return ErrorKind.NO_CONNECTIVITY
    if "refused" in lowered:
        return ErrorKind.CONNECTION_REFUSED
    if "reset" in lowered or "broken pipe" in lowered:
        return ErrorKind.CONNECTION_RESET
    return None


def classify_exception(exc: BaseException) -> ClassifiedError:
    """Classify any exception raised during sign-in or an API call.

    Args:
        exc: The exception to classify.

    Returns:
        ClassifiedError; never raises.
    """
    if isinstance(exc, (IdentityCancelledError, asyncio.CancelledError)):
        return _make(ErrorKind.CANCELLED)

    if isinstance(exc, BackendHTTPError):
        return classify_status(exc.status_code, exc.message)

    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code)

    if isinstance(exc, MalformedResponseError):
        return _make(ErrorKind.MALFORMED_RESPONSE)

    if isinstance(exc, (httpx.TimeoutException, socket.timeout, TimeoutError)):
        return _make(ErrorKind.TIMEOUT)

    if isinstance(exc, socket.gaierror):
        return _make(ErrorKind.NO_CONNECTIVITY)

    if isinstance(exc, ConnectionRefusedError):
        return _make(ErrorKind.CONNECTION_REFUSED)

    if isinstance(exc, (ConnectionResetError, BrokenPipeError)):
        return _make(ErrorKind.CONNECTION_RESET)

    if isinstance(exc, (httpx.TransportError, OSError)):
        # httpx wraps socket errors; their text is the only reliable signal
        texts = [str(exc)]
        if exc.__cause__ is not None:
            texts.append(str(exc.__cause__))
        for text in texts:
            kind = _classify_connection_text(text)
            if kind is not None:
                return _make(kind)
        return _make(ErrorKind.NETWORK)

    return _make(ErrorKind.UNKNOWN)


def get_user_friendly_message(exc: BaseException) -> str:
    """User-facing message for an exception (see classify_exception)."""
    return classify_exception(exc).message
