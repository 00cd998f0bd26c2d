"""Sign-in orchestration: identity provider -> backend login -> token store.

The SessionManager drives the user-visible authentication lifecycle:
- Obtains an identity assertion (silent restore first, interactive fallback)
- Exchanges it with the backend, retrying connection failures with backoff
- Persists the resulting session token
- Signs out (best-effort provider revoke, unconditional local clear)

Operations are coroutines that return explicit result values instead of
raising. Cancellation by the user is its own result (AuthCancelled), never an
error message. Cancellation of the calling task (asyncio.CancelledError)
resets the state and propagates.

States:
    SIGNED_OUT -> AUTHENTICATING -> SIGNED_IN | SIGNED_OUT
"""

from __future__ import annotations

__all__ = [
    "AuthCancelled",
    "AuthError",
    "AuthResult",
    "AuthSuccess",
    "BackendValidationResult",
    "SessionManager",
    "SessionState",
    "ValidationError",
    "ValidationSuccess",
]

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Union

from swipe_session.config import RetryConfig
from swipe_session.exceptions import IdentityCancelledError, MalformedResponseError, NoCredentialError
from swipe_session.security.auth.backend import AuthBackend, BackendUser, LoginResponse
from swipe_session.security.auth.error_classifier import ClassifiedError, classify_exception
from swipe_session.security.auth.identity import (
    IdentityAssertion,
    IdentityProvider,
    IdentityUser,
    describe_assertion_expiry,
)
from swipe_session.security.auth.token_parser import session_from_response
from swipe_session.security.auth.token_store import TokenStore
from swipe_session.telemetry.system.system_logger import get_system_logger

# Shown when validate_with_backend is called before any sign-in
NO_ASSERTION_MESSAGE = "Please sign in first."


class SessionState(Enum):
    SIGNED_OUT = "signed_out"
    AUTHENTICATING = "authenticating"
    SIGNED_IN = "signed_in"


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class AuthSuccess:
    user: IdentityUser


@dataclass(frozen=True)
class AuthCancelled:
    pass


@dataclass(frozen=True)
class AuthError:
    """Sign-in failed. message is ready to show to the user."""

    message: str
    error: ClassifiedError | None = None


AuthResult = Union[AuthSuccess, AuthCancelled, AuthError]


@dataclass(frozen=True)
class ValidationSuccess:
    """Backend accepted the assertion; the session token is stored.

    Attributes:
        user: Profile returned by the backend, if it sent one.
    """

    user: BackendUser | None


@dataclass(frozen=True)
class ValidationError:
    message: str
    error: ClassifiedError | None = None


BackendValidationResult = Union[ValidationSuccess, ValidationError]


# =============================================================================
# Session Manager
# =============================================================================


class SessionManager:
    """Coordinates identity provider, backend login and token store.

    Only one sign-in or sign-out runs at a time (asyncio.Lock).

    Args:
        identity_provider: Source of identity assertions.
        backend: Client for the login endpoint.
        token_store: Shared session token store.
        retry: Backend login retry policy.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        backend: AuthBackend,
        token_store: TokenStore,
        retry: RetryConfig | None = None,
    ) -> None:
        self._provider = identity_provider
        self._backend = backend
        self._token_store = token_store
        self._retry = retry or RetryConfig()
        self._lock = asyncio.Lock()
        # Raw token of the previous sign-in, only compared for logging
        self._last_assertion: str | None = None
        # Assertion awaiting exchange; consumed by a successful backend login
        self._pending_assertion: str | None = None
        self._state = self._settled_state()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_signed_in(self) -> bool:
        return self._token_store.is_authenticated()

    def _settled_state(self) -> SessionState:
        if self._token_store.is_authenticated():
            return SessionState.SIGNED_IN
        return SessionState.SIGNED_OUT

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def sign_in_interactive(self) -> AuthResult:
        """Obtain an identity assertion from the provider.

        Tries silent restore first and falls back to the interactive flow
        when no authorized account exists. On success the state stays
        AUTHENTICATING until validate_with_backend() completes.

        Returns:
            AuthSuccess, AuthCancelled, or AuthError with a user-facing message.
        """
        async with self._lock:
            return await self._sign_in_interactive()

    async def validate_with_backend(self) -> BackendValidationResult:
        """Exchange the pending identity assertion for a backend session.

        The assertion is consumed by a successful exchange; calling again
        without a new sign_in_interactive() returns a ValidationError.

        Connection failures are retried with exponential backoff
        (RetryConfig: 3 attempts, 1s then 2s by default). HTTP errors fail
        immediately; a 401/403 also clears any stored session.

        Returns:
            ValidationSuccess with the backend user, or ValidationError.
        """
        async with self._lock:
            return await self._validate_with_backend()

    async def sign_in(self) -> AuthResult:
        """Full sign-in: identity assertion, then backend validation.

        Returns:
            AuthSuccess once the session token is stored, AuthCancelled,
            or AuthError for either step.
        """
        async with self._lock:
            result = await self._sign_in_interactive()
            if not isinstance(result, AuthSuccess):
                return result

            validation = await self._validate_with_backend()
            if isinstance(validation, ValidationError):
                return AuthError(message=validation.message, error=validation.error)
            return result

    async def sign_out(self) -> None:
        """Sign out locally and at the identity provider.

        Provider failures are logged; the local session is cleared regardless.
        """
        async with self._lock:
            logger = get_system_logger()
            try:
                await self._provider.clear_credential_state()
            except Exception as e:
                logger.warning(
                    {
                        "event": "identity_sign_out_failed",
                        "message": "Could not clear identity provider state, signing out locally",
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
            finally:
                self._token_store.clear_token()
                self._last_assertion = None
                self._pending_assertion = None
                self._state = SessionState.SIGNED_OUT

            logger.info({"event": "signed_out", "message": "Signed out"})

    # -------------------------------------------------------------------------
    # Implementation (callers hold self._lock)
    # -------------------------------------------------------------------------

    async def _sign_in_interactive(self) -> AuthResult:
        logger = get_system_logger()
        self._state = SessionState.AUTHENTICATING

        try:
            assertion = await self._acquire_assertion()
        except asyncio.CancelledError:
            self._state = self._settled_state()
            raise
        except IdentityCancelledError:
            self._state = self._settled_state()
            logger.info({"event": "sign_in_cancelled", "message": "Sign-in cancelled by user"})
            return AuthCancelled()
        except Exception as e:
            self._state = self._settled_state()
            classified = classify_exception(e)
            logger.warning(
                {
                    "event": "sign_in_failed",
                    "message": "Identity provider sign-in failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "error_kind": classified.kind.value,
                }
            )
            return AuthError(message=classified.message, error=classified)

        is_new_assertion = assertion.raw != self._last_assertion
        self._last_assertion = assertion.raw
        self._pending_assertion = assertion.raw
        logger.info(
            {
                "event": "identity_assertion_obtained",
                "message": "Signed in with identity provider",
                "assertion_length": len(assertion.raw),
                "is_new_assertion": is_new_assertion,
                "has_email": assertion.user.email is not None,
                **describe_assertion_expiry(assertion.raw),
            }
        )
        return AuthSuccess(user=assertion.user)

    async def _acquire_assertion(self) -> IdentityAssertion:
        try:
            return await self._provider.get_assertion(silent=True)
        except NoCredentialError:
            get_system_logger().debug(
                {
                    "event": "silent_restore_unavailable",
                    "message": "No authorized account, starting interactive sign-in",
                }
            )
        return await self._provider.get_assertion(silent=False)

    async def _validate_with_backend(self) -> BackendValidationResult:
        if self._pending_assertion is None:
            return ValidationError(message=NO_ASSERTION_MESSAGE)

        self._state = SessionState.AUTHENTICATING
        try:
            return await self._login_with_retry(self._pending_assertion)
        except asyncio.CancelledError:
            self._state = self._settled_state()
            raise

    async def _login_with_retry(self, assertion: str) -> BackendValidationResult:
        logger = get_system_logger()
        max_attempts = self._retry.max_attempts
        delay = self._retry.initial_delay

        response: LoginResponse | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                response = await asyncio.to_thread(self._backend.login, assertion)
                break
            except Exception as e:
                classified = classify_exception(e)

                if classified.is_retryable and attempt < max_attempts:
                    logger.warning(
                        {
                            "event": "backend_login_retry",
                            "message": f"Backend login failed, retrying in {delay:.1f}s",
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "error_kind": classified.kind.value,
                            "error_type": type(e).__name__,
                        }
                    )
                    await asyncio.sleep(delay)
                    delay *= self._retry.backoff_multiplier
                    continue

                if classified.is_terminal:
                    self._token_store.clear_token()
                self._state = self._settled_state()
                logger.error(
                    {
                        "event": "backend_login_failed",
                        "message": "Backend rejected sign-in",
                        "attempt": attempt,
                        "error_kind": classified.kind.value,
                        "status_code": classified.status_code,
                        "error_type": type(e).__name__,
                    }
                )
                return ValidationError(message=classified.message, error=classified)

        session = session_from_response(response) if response is not None else None
        if response is None or session is None:
            classified = classify_exception(MalformedResponseError("Login response had no access token"))
            self._state = self._settled_state()
            return ValidationError(message=classified.message, error=classified)

        self._token_store.save_token(session.access_token, session.token_scheme, session.expires_in)
        self._pending_assertion = None
        self._state = SessionState.SIGNED_IN
        user = response.data.user if response.data is not None else None
        logger.info(
            {
                "event": "backend_login_succeeded",
                "message": "Signed in to backend",
                "token_length": len(session.access_token),
                "expires_in": session.expires_in,
            }
        )
        return ValidationSuccess(user=user)
