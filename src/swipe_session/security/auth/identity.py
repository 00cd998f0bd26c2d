"""Identity provider interface and identity assertion types.

An identity provider (Google sign-in) turns a user's account into an identity
assertion: a signed ID token the backend exchanges for a session token. The
session manager only depends on the IdentityProvider protocol; the concrete
Google device-flow provider lives in device_flow.py.

Providers signal the non-success outcomes with exceptions:
- NoCredentialError: silent restore found no authorized account
- IdentityCancelledError: the user aborted the interactive sign-in
- IdentityProviderError: anything else that went wrong at the provider

Assertions are decoded WITHOUT signature verification. The claims are only
used for display and diagnostics; the backend verifies the token.
"""

from __future__ import annotations

__all__ = [
    "IdentityAssertion",
    "IdentityProvider",
    "IdentityUser",
    "assertion_from_id_token",
    "describe_assertion_expiry",
]

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import jwt

from swipe_session.exceptions import IdentityProviderError


@dataclass(frozen=True)
class IdentityUser:
    """User profile carried by an identity assertion.

    Attributes:
        subject_id: Provider-stable account ID ("sub" claim).
        email: Account email, if the scope granted it.
        display_name: Full name, if available.
        avatar_url: Profile picture URL, if available.
    """

    subject_id: str
    email: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True)
class IdentityAssertion:
    """Raw ID token plus the user it identifies. Never persisted."""

    raw: str
    user: IdentityUser

    def __repr__(self) -> str:
        return f"IdentityAssertion(raw=<{len(self.raw)} chars>, user={self.user!r})"


@runtime_checkable
class IdentityProvider(Protocol):
    """Protocol for pluggable identity providers.

    The session manager uses this protocol without knowing the concrete
    provider. Implementations are async because they talk to the network
    and may wait on the user.
    """

    async def get_assertion(self, *, silent: bool) -> IdentityAssertion:
        """Obtain an identity assertion.

        Args:
            silent: True to only restore a previously authorized account
                without user interaction; False to run the interactive flow.

        Returns:
            IdentityAssertion for the signed-in account.

        Raises:
            NoCredentialError: silent=True and no account can be restored.
            IdentityCancelledError: The user aborted the interactive flow.
            IdentityProviderError: Any other provider failure.
        """
        ...

    async def clear_credential_state(self) -> None:
        """Forget the authorized account so the next silent restore fails."""
        ...


def _decode_claims(raw: str) -> dict[str, Any]:
    return jwt.decode(
        raw,
        options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
    )


def assertion_from_id_token(raw: str) -> IdentityAssertion:
    """Build an IdentityAssertion from an OIDC ID token.

    Args:
        raw: Encoded ID token.

    Returns:
        IdentityAssertion with the user taken from the sub, email, name and
        picture claims.

    Raises:
        IdentityProviderError: If the token cannot be decoded or has no subject.
    """
    try:
        claims = _decode_claims(raw)
    except jwt.PyJWTError as e:
        raise IdentityProviderError(f"Identity provider returned an unreadable ID token: {e}") from e

    subject = claims.get("sub")
    if not subject:
        raise IdentityProviderError("ID token has no subject claim")

    return IdentityAssertion(
        raw=raw,
        user=IdentityUser(
            subject_id=str(subject),
            email=claims.get("email"),
            display_name=claims.get("name"),
            avatar_url=claims.get("picture"),
        ),
    )


def describe_assertion_expiry(raw: str) -> dict[str, Any]:
    """Summarize iat/exp of an ID token for diagnostic logging.

    Returns:
        Dict with issued_at, expires_at (ISO 8601) and expired, or an empty
        dict when the token cannot be decoded. Never raises.
    """
    try:
        claims = _decode_claims(raw)
    except jwt.PyJWTError:
        return {}

    info: dict[str, Any] = {}
    iat = claims.get("iat")
    exp = claims.get("exp")
    if isinstance(iat, (int, float)):
        issued_at = _format_timestamp(iat)
        if issued_at is not None:
            info["issued_at"] = issued_at
    if isinstance(exp, (int, float)):
        expires_at = _format_timestamp(exp)
        if expires_at is not None:
            info["expires_at"] = expires_at
        info["expired"] = datetime.now(timezone.utc).timestamp() >= exp
    return info


def _format_timestamp(value: int | float) -> str | None:
    # Out-of-range claims (e.g. exp=10**20) cannot become a datetime
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None
