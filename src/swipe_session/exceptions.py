"""Custom exceptions for swipe-session.

This module contains all custom exceptions used throughout the package.
Exceptions are organized by the layer that raises them:

Identity Provider (sign-in):
    - IdentityProviderError: Provider failed to produce an identity assertion
    - IdentityCancelledError: User aborted the sign-in (not an error outcome)
    - NoCredentialError: Silent restore found no account to restore

Backend (login / refresh):
    - BackendHTTPError: Backend answered with a non-2xx status
    - MalformedResponseError: Backend answered 2xx without the expected fields

Local State:
    - TokenStorageError: Keychain or encrypted file storage failed
    - ConfigurationError: Config file missing or invalid

Network failures are not wrapped: httpx.TransportError and OSError propagate
as-is and are classified by security.auth.error_classifier.

Usage:
    from swipe_session.exceptions import BackendHTTPError, IdentityCancelledError
"""

from __future__ import annotations

__all__ = [
    "AuthenticationError",
    "BackendHTTPError",
    "ConfigurationError",
    "IdentityCancelledError",
    "IdentityProviderError",
    "MalformedResponseError",
    "NoCredentialError",
    "SessionError",
    "TokenStorageError",
]


class SessionError(Exception):
    """Base exception for all swipe-session errors."""


# =============================================================================
# Authentication
# =============================================================================


class AuthenticationError(SessionError):
    """Authentication failed - the user's identity could not be established.

    Base for identity provider and backend exchange failures.
    """


class IdentityProviderError(AuthenticationError):
    """Identity provider could not produce an identity assertion."""


class IdentityCancelledError(IdentityProviderError):
    """User cancelled the sign-in at the identity provider.

    Surfaced to callers as AuthCancelled, never as an error message.
    """


class NoCredentialError(IdentityProviderError):
    """No previously authorized account is available for silent restore.

    Signals the caller to fall back to the interactive account picker.
    """


class BackendHTTPError(AuthenticationError):
    """Backend returned a non-success HTTP status.

    Attributes:
        status_code: HTTP status code returned by the backend.
        message: Server-provided message, if the error body carried one.
    """

    def __init__(self, status_code: int, message: str | None = None) -> None:
        self.status_code = status_code
        self.message = message
        detail = f": {message}" if message else ""
        super().__init__(f"Backend returned HTTP {status_code}{detail}")


class MalformedResponseError(AuthenticationError):
    """Backend reported success but the payload is missing expected fields.

    Raised when:
    - The body is not valid JSON or does not match the response shape
    - success is false on a 2xx response
    - access_token is absent from a login or refresh payload
    """


# =============================================================================
# Local State
# =============================================================================


class TokenStorageError(SessionError):
    """Durable token storage failed (keychain access, decryption, file I/O)."""


class ConfigurationError(SessionError):
    """Configuration is invalid or incomplete.

    Raised when:
    - Config file does not exist
    - Config file contains invalid JSON
    - Config file fails Pydantic validation
    - A component needed by the caller was not configured
    """
