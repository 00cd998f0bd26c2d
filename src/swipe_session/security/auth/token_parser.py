"""Shared session token parsing.

Used by the session manager (login) and the refresh coordinator (refresh) so
both derive the stored session from a backend payload the same way.
"""

from __future__ import annotations

__all__ = [
    "normalize_token_scheme",
    "session_from_response",
]

from typing import TYPE_CHECKING

from swipe_session.constants import DEFAULT_TOKEN_SCHEME
from swipe_session.security.auth.token_storage import StoredSession

if TYPE_CHECKING:
    from swipe_session.security.auth.backend import LoginResponse


def normalize_token_scheme(scheme: str | None) -> str:
    """Canonicalize the Authorization scheme returned by the backend.

    "bearer" in any casing becomes "Bearer", a missing or empty scheme
    defaults to "Bearer", and anything else is passed through verbatim.

    Args:
        scheme: Scheme string from the login/refresh payload or storage.

    Returns:
        Scheme to put in front of the access token.
    """
    if not scheme:
        return DEFAULT_TOKEN_SCHEME
    if scheme.lower() == DEFAULT_TOKEN_SCHEME.lower():
        return DEFAULT_TOKEN_SCHEME
    return scheme


def session_from_response(response: "LoginResponse") -> StoredSession | None:
    """Extract the session record from a login or refresh payload.

    Args:
        response: Parsed backend response.

    Returns:
        StoredSession with a normalized scheme, or None when the payload
        carries no access token (treated as a malformed response by callers).
    """
    data = response.data
    if data is None or not data.access_token:
        return None

    return StoredSession(
        access_token=data.access_token,
        token_scheme=normalize_token_scheme(data.token_type),
        expires_in=data.expires_in,
    )
