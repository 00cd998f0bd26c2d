"""Shared fixtures for swipe-session tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import jwt
import pytest

from swipe_session.config import BackendConfig, RetryConfig, SessionConfig
from swipe_session.exceptions import NoCredentialError
from swipe_session.security.auth.identity import IdentityAssertion, assertion_from_id_token
from swipe_session.security.auth.token_storage import MemoryStorage, StoredSession
from swipe_session.security.auth.token_store import TokenStore
from swipe_session.telemetry.system.system_logger import reset_system_logger

BASE_URL = "https://api.test.swipetoplay.app"


class FakeIdentityProvider:
    """Scriptable IdentityProvider.

    silent / interactive hold either an IdentityAssertion to return or an
    exception to raise for the respective mode.
    """

    def __init__(
        self,
        silent: IdentityAssertion | BaseException | None = None,
        interactive: IdentityAssertion | BaseException | None = None,
    ) -> None:
        self.silent = silent if silent is not None else NoCredentialError("no account")
        self.interactive = interactive
        self.calls: list[bool] = []
        self.clear_calls = 0
        self.clear_error: BaseException | None = None

    async def get_assertion(self, *, silent: bool) -> IdentityAssertion:
        self.calls.append(silent)
        outcome = self.silent if silent else self.interactive
        if isinstance(outcome, BaseException):
            raise outcome
        assert outcome is not None
        return outcome

    async def clear_credential_state(self) -> None:
        self.clear_calls += 1
        if self.clear_error is not None:
            raise self.clear_error


@pytest.fixture(autouse=True)
def _fresh_system_logger() -> Iterator[None]:
    """Drop logger handlers between tests so nothing writes to stale files."""
    reset_system_logger()
    yield
    reset_system_logger()


@pytest.fixture
def backend_config() -> BackendConfig:
    return BackendConfig(base_url=BASE_URL, timeout=5)


@pytest.fixture
def session_config(backend_config: BackendConfig) -> SessionConfig:
    return SessionConfig(backend=backend_config, login_retry=RetryConfig())


@pytest.fixture
def session_storage() -> MemoryStorage[StoredSession]:
    return MemoryStorage(StoredSession)


@pytest.fixture
def token_store(session_storage: MemoryStorage[StoredSession]) -> TokenStore:
    return TokenStore(session_storage)


@pytest.fixture
def make_id_token() -> Callable[..., str]:
    """Factory for unsigned-verification-friendly HS256 ID tokens."""

    def _make(subject: str = "google-123", **claims: Any) -> str:
        payload = {
            "sub": subject,
            "email": "player@example.com",
            "name": "Test Player",
            "picture": "https://example.com/avatar.png",
            "iat": 1_700_000_000,
            "exp": 1_700_003_600,
        }
        payload.update(claims)
        return jwt.encode(payload, "test-secret-key-with-enough-length!", algorithm="HS256")

    return _make


@pytest.fixture
def make_assertion(make_id_token: Callable[..., str]) -> Callable[..., IdentityAssertion]:
    def _make(subject: str = "google-123", **claims: Any) -> IdentityAssertion:
        return assertion_from_id_token(make_id_token(subject, **claims))

    return _make


@pytest.fixture
def fake_provider_factory() -> Callable[..., FakeIdentityProvider]:
    return FakeIdentityProvider
