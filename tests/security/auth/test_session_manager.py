"""Tests for SessionManager sign-in orchestration.

Tests cover:
- Silent restore with interactive fallback
- Cancellation mapping (user cancel vs task cancellation)
- Backend validation with retry/backoff on connection failures only
- Token persistence and clearing on 401/403
- Sign-out clearing even when the provider fails
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from swipe_session.config import RetryConfig
from swipe_session.exceptions import (
    BackendHTTPError,
    IdentityCancelledError,
    IdentityProviderError,
    MalformedResponseError,
)
from swipe_session.security.auth.backend import AuthBackend, BackendUser, LoginData, LoginResponse
from swipe_session.security.auth.error_classifier import ErrorKind
from swipe_session.security.auth.identity import IdentityAssertion
from swipe_session.security.auth.session_manager import (
    NO_ASSERTION_MESSAGE,
    AuthCancelled,
    AuthError,
    AuthSuccess,
    SessionManager,
    SessionState,
    ValidationError,
    ValidationSuccess,
)
from swipe_session.security.auth.token_store import TokenStore

SLEEP_TARGET = "swipe_session.security.auth.session_manager.asyncio.sleep"


def login_response(token: str = "abc", token_type: str = "bearer") -> LoginResponse:
    return LoginResponse(
        success=True,
        data=LoginData(
            access_token=token,
            token_type=token_type,
            expires_in=3600,
            user=BackendUser(id=1, email="player@example.com", name="Test Player"),
        ),
    )


@pytest.fixture
def assertion(make_assertion: Callable[..., IdentityAssertion]) -> IdentityAssertion:
    return make_assertion()


@pytest.fixture
def backend() -> MagicMock:
    mock = MagicMock(spec=AuthBackend)
    mock.login.return_value = login_response()
    return mock


@pytest.fixture
def make_manager(backend: MagicMock, token_store: TokenStore) -> Callable[..., SessionManager]:
    def _make(provider: object, retry: RetryConfig | None = None) -> SessionManager:
        return SessionManager(provider, backend, token_store, retry=retry)  # type: ignore[arg-type]

    return _make


# ============================================================================
# Tests: Interactive Sign-in
# ============================================================================


class TestSignInInteractive:
    """Tests for sign_in_interactive."""

    async def test_silent_restore_success_skips_interactive(
        self, fake_provider_factory, make_manager, assertion: IdentityAssertion
    ) -> None:
        """Given an authorized account, silent restore is used and no picker is shown."""
        # Arrange
        provider = fake_provider_factory(silent=assertion)
        manager = make_manager(provider)

        # Act
        result = await manager.sign_in_interactive()

        # Assert
        assert result == AuthSuccess(user=assertion.user)
        assert provider.calls == [True]

    async def test_no_credential_falls_back_to_interactive(
        self, fake_provider_factory, make_manager, assertion: IdentityAssertion
    ) -> None:
        """Given no authorized account, the interactive flow runs."""
        # Arrange
        provider = fake_provider_factory(interactive=assertion)
        manager = make_manager(provider)

        # Act
        result = await manager.sign_in_interactive()

        # Assert
        assert isinstance(result, AuthSuccess)
        assert result.user.email == "player@example.com"
        assert provider.calls == [True, False]
        assert manager.state is SessionState.AUTHENTICATING

    async def test_user_cancel_returns_cancelled_not_error(self, fake_provider_factory, make_manager) -> None:
        """Given the user dismisses the picker, the result is AuthCancelled."""
        # Arrange
        provider = fake_provider_factory(interactive=IdentityCancelledError("dismissed"))
        manager = make_manager(provider)

        # Act
        result = await manager.sign_in_interactive()

        # Assert
        assert result == AuthCancelled()
        assert manager.state is SessionState.SIGNED_OUT

    async def test_provider_failure_returns_error_message(self, fake_provider_factory, make_manager) -> None:
        """Given a provider failure, the result is AuthError with a user-facing message."""
        # Arrange
        provider = fake_provider_factory(interactive=IdentityProviderError("broken"))
        manager = make_manager(provider)

        # Act
        result = await manager.sign_in_interactive()

        # Assert
        assert isinstance(result, AuthError)
        assert result.message == "Something went wrong. Please try again."

    async def test_network_failure_in_silent_restore_is_not_hidden(
        self, fake_provider_factory, make_manager
    ) -> None:
        """Given silent restore cannot reach the provider, the error is reported."""
        # Arrange
        provider = fake_provider_factory(silent=httpx.ConnectError("Name or service not known"))
        manager = make_manager(provider)

        # Act
        result = await manager.sign_in_interactive()

        # Assert
        assert isinstance(result, AuthError)
        assert result.error is not None
        assert result.error.kind is ErrorKind.NO_CONNECTIVITY
        assert provider.calls == [True]

    async def test_out_of_range_expiry_claim_still_signs_in(
        self, fake_provider_factory, make_manager, make_assertion: Callable[..., IdentityAssertion]
    ) -> None:
        """Given an ID token whose exp cannot be converted to a date, sign-in still succeeds."""
        # Arrange
        manager = make_manager(fake_provider_factory(silent=make_assertion(exp=10**20)))

        # Act
        result = await manager.sign_in_interactive()

        # Assert
        assert isinstance(result, AuthSuccess)
        assert manager.state is SessionState.AUTHENTICATING

    async def test_task_cancellation_resets_state_and_propagates(self, make_manager) -> None:
        """Given the calling task is cancelled mid sign-in, CancelledError propagates."""
        # Arrange
        provider = MagicMock()
        provider.get_assertion = AsyncMock(side_effect=asyncio.CancelledError())
        manager = make_manager(provider)

        # Act & Assert
        with pytest.raises(asyncio.CancelledError):
            await manager.sign_in_interactive()
        assert manager.state is SessionState.SIGNED_OUT


# ============================================================================
# Tests: Backend Validation
# ============================================================================


class TestValidateWithBackend:
    """Tests for validate_with_backend."""

    async def test_without_assertion_returns_error(self, fake_provider_factory, make_manager, backend) -> None:
        """Given no prior sign-in, validation fails without calling the backend."""
        manager = make_manager(fake_provider_factory())

        result = await manager.validate_with_backend()

        assert isinstance(result, ValidationError)
        backend.login.assert_not_called()

    async def test_success_stores_normalized_token(
        self, fake_provider_factory, make_manager, backend, token_store: TokenStore, assertion: IdentityAssertion
    ) -> None:
        """Given the backend accepts the assertion, the token is stored and state is SIGNED_IN."""
        # Arrange
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()

        # Act
        result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationSuccess)
        assert result.user is not None and result.user.email == "player@example.com"
        backend.login.assert_called_once_with(assertion.raw)
        assert token_store.get_authorization_header() == "Bearer abc"
        assert manager.state is SessionState.SIGNED_IN

    async def test_assertion_is_consumed_by_successful_exchange(
        self, fake_provider_factory, make_manager, backend, token_store: TokenStore, assertion: IdentityAssertion
    ) -> None:
        """Given a completed sign-in, validating again does not resend the ID token."""
        # Arrange
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in()

        # Act
        result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationError)
        assert result.message == NO_ASSERTION_MESSAGE
        backend.login.assert_called_once_with(assertion.raw)
        assert token_store.get_authorization_header() == "Bearer abc"

    async def test_failed_exchange_keeps_assertion_for_retry(
        self, fake_provider_factory, make_manager, backend, assertion: IdentityAssertion
    ) -> None:
        """Given a rejected first exchange, a later validation sends the same assertion again."""
        # Arrange
        backend.login.side_effect = [BackendHTTPError(500), login_response()]
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()
        await manager.validate_with_backend()

        # Act
        result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationSuccess)
        assert backend.login.call_count == 2

    async def test_connection_failures_retry_with_backoff(
        self, fake_provider_factory, make_manager, backend, token_store: TokenStore, assertion: IdentityAssertion
    ) -> None:
        """Given two connection failures, the third attempt succeeds after 1s and 2s waits."""
        # Arrange
        backend.login.side_effect = [
            httpx.ConnectError("Connection refused"),
            httpx.ReadTimeout("timed out"),
            login_response(),
        ]
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()

        # Act
        with patch(SLEEP_TARGET, new_callable=AsyncMock) as mock_sleep:
            result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationSuccess)
        assert backend.login.call_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0]
        assert token_store.is_authenticated() is True

    async def test_gives_up_after_max_attempts(
        self, fake_provider_factory, make_manager, backend, token_store: TokenStore, assertion: IdentityAssertion
    ) -> None:
        """Given persistent connection failures, fails after 3 attempts with a connectivity message."""
        # Arrange
        backend.login.side_effect = httpx.ConnectError("Connection refused")
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()

        # Act
        with patch(SLEEP_TARGET, new_callable=AsyncMock) as mock_sleep:
            result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationError)
        assert backend.login.call_count == 3
        assert mock_sleep.await_count == 2
        assert result.error is not None and result.error.kind is ErrorKind.CONNECTION_REFUSED
        assert manager.state is SessionState.SIGNED_OUT

    async def test_custom_retry_policy(
        self, fake_provider_factory, make_manager, backend, assertion: IdentityAssertion
    ) -> None:
        """Given max_attempts=2 and initial_delay=0.5, one retry after 0.5s."""
        # Arrange
        backend.login.side_effect = httpx.ConnectError("Connection reset by peer")
        retry = RetryConfig(max_attempts=2, initial_delay=0.5, backoff_multiplier=3.0)
        manager = make_manager(fake_provider_factory(silent=assertion), retry=retry)
        await manager.sign_in_interactive()

        # Act
        with patch(SLEEP_TARGET, new_callable=AsyncMock) as mock_sleep:
            await manager.validate_with_backend()

        # Assert
        assert backend.login.call_count == 2
        assert [c.args[0] for c in mock_sleep.await_args_list] == [0.5]

    @pytest.mark.parametrize("status_code", [400, 404, 500])
    async def test_http_errors_are_not_retried(
        self, fake_provider_factory, make_manager, backend, assertion: IdentityAssertion, status_code: int
    ) -> None:
        """Given an HTTP error status, the backend is called once."""
        # Arrange
        backend.login.side_effect = BackendHTTPError(status_code)
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()

        # Act
        with patch(SLEEP_TARGET, new_callable=AsyncMock) as mock_sleep:
            result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationError)
        assert backend.login.call_count == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_rejection_clears_store(
        self, fake_provider_factory, make_manager, backend, token_store: TokenStore, assertion: IdentityAssertion,
        status_code: int,
    ) -> None:
        """Given the backend rejects the assertion, any stored session is cleared."""
        # Arrange
        token_store.save_token("previous")
        backend.login.side_effect = BackendHTTPError(status_code)
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()

        # Act
        result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationError)
        assert token_store.get_access_token() is None
        assert manager.state is SessionState.SIGNED_OUT

    async def test_server_message_surfaces_for_client_errors(
        self, fake_provider_factory, make_manager, backend, assertion: IdentityAssertion
    ) -> None:
        """Given a 400 with a server message, that message is returned."""
        # Arrange
        backend.login.side_effect = BackendHTTPError(400, "Invalid Google token")
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()

        # Act
        result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationError)
        assert result.message == "Invalid Google token"

    async def test_malformed_login_response(
        self, fake_provider_factory, make_manager, backend, token_store: TokenStore, assertion: IdentityAssertion
    ) -> None:
        """Given a success response without a token, validation fails and nothing is stored."""
        # Arrange
        backend.login.side_effect = MalformedResponseError("no token")
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()

        # Act
        result = await manager.validate_with_backend()

        # Assert
        assert isinstance(result, ValidationError)
        assert result.error is not None and result.error.kind is ErrorKind.MALFORMED_RESPONSE
        assert token_store.is_authenticated() is False

    async def test_cancellation_during_backoff_propagates(
        self, fake_provider_factory, make_manager, backend, assertion: IdentityAssertion
    ) -> None:
        """Given the task is cancelled while waiting to retry, CancelledError propagates."""
        # Arrange
        backend.login.side_effect = httpx.ConnectError("Connection refused")
        manager = make_manager(fake_provider_factory(silent=assertion))
        await manager.sign_in_interactive()

        # Act & Assert
        with patch(SLEEP_TARGET, new=AsyncMock(side_effect=asyncio.CancelledError())):
            with pytest.raises(asyncio.CancelledError):
                await manager.validate_with_backend()
        assert manager.state is SessionState.SIGNED_OUT


# ============================================================================
# Tests: Combined Sign-in and Sign-out
# ============================================================================


class TestSignInAndOut:
    """Tests for sign_in and sign_out."""

    async def test_sign_in_runs_both_steps(
        self, fake_provider_factory, make_manager, token_store: TokenStore, assertion: IdentityAssertion
    ) -> None:
        """Given provider and backend succeed, sign_in stores the session."""
        manager = make_manager(fake_provider_factory(interactive=assertion))

        result = await manager.sign_in()

        assert result == AuthSuccess(user=assertion.user)
        assert token_store.get_access_token() == "abc"
        assert manager.is_signed_in is True

    async def test_sign_in_cancelled_skips_backend(self, fake_provider_factory, make_manager, backend) -> None:
        """Given the user cancels, the backend is never called."""
        manager = make_manager(fake_provider_factory(interactive=IdentityCancelledError("dismissed")))

        result = await manager.sign_in()

        assert isinstance(result, AuthCancelled)
        backend.login.assert_not_called()

    async def test_sign_in_backend_failure_is_auth_error(
        self, fake_provider_factory, make_manager, backend, assertion: IdentityAssertion
    ) -> None:
        """Given the backend fails, sign_in returns AuthError with the validation message."""
        backend.login.side_effect = BackendHTTPError(503)
        manager = make_manager(fake_provider_factory(silent=assertion))

        result = await manager.sign_in()

        assert isinstance(result, AuthError)
        assert result.message == "A server error occurred. Please try again later."

    async def test_sign_out_clears_store_and_provider(
        self, fake_provider_factory, make_manager, token_store: TokenStore
    ) -> None:
        """Given a signed-in session, sign_out clears both sides."""
        # Arrange
        token_store.save_token("abc")
        provider = fake_provider_factory()
        manager = make_manager(provider)

        # Act
        await manager.sign_out()

        # Assert
        assert provider.clear_calls == 1
        assert token_store.is_authenticated() is False
        assert manager.state is SessionState.SIGNED_OUT

    async def test_sign_out_clears_store_when_provider_fails(
        self, fake_provider_factory, make_manager, token_store: TokenStore
    ) -> None:
        """Given the provider revoke fails, the local session is still cleared."""
        # Arrange
        token_store.save_token("abc")
        provider = fake_provider_factory()
        provider.clear_error = httpx.ConnectError("offline")
        manager = make_manager(provider)

        # Act
        await manager.sign_out()

        # Assert
        assert token_store.is_authenticated() is False

    async def test_existing_session_starts_signed_in(self, fake_provider_factory, make_manager, token_store) -> None:
        """Given a session persisted by an earlier run, the manager starts SIGNED_IN."""
        token_store.save_token("abc")

        manager = make_manager(fake_provider_factory())

        assert manager.state is SessionState.SIGNED_IN
