"""Wiring of the session components into an authenticated HTTP client.

SessionContext is the single owner of the session stack. It builds one of each
component and injects them into each other:

    httpx.Client (authenticated, base_url)
        -> AuthInterceptor     attaches "Authorization" from the TokenStore
        -> RefreshCoordinator  refreshes once on 401 and retries
        -> network transport

    AuthBackend (plain httpx.Client, same network transport)
        login / refresh, never authenticated by the interceptor

Usage:
    config = SessionConfig.load_from_files(get_config_path())
    with SessionContext(config, identity_provider=provider) as session:
        await session.session_manager.sign_in()
        games = session.http.get("/api/v1/games").json()
"""

from __future__ import annotations

__all__ = [
    "SessionContext",
]

from types import TracebackType
from typing import Any

import httpx
from pydantic import ValidationError

from swipe_session.config import SessionConfig
from swipe_session.exceptions import BackendHTTPError, ConfigurationError, MalformedResponseError
from swipe_session.security.auth.backend import AuthBackend, BackendUser
from swipe_session.security.auth.identity import IdentityProvider
from swipe_session.security.auth.interceptor import AuthInterceptor
from swipe_session.security.auth.session_manager import SessionManager
from swipe_session.security.auth.token_refresh import RefreshCoordinator
from swipe_session.security.auth.token_storage import StoredSession, create_token_storage
from swipe_session.security.auth.token_store import TokenStore
from swipe_session.telemetry.system.system_logger import (
    configure_system_logger_file,
    get_system_logger,
    set_console_level,
)


class SessionContext:
    """Owns the token store, backend client, transports and session manager.

    Args:
        config: Root configuration.
        token_store: Store to share. Defaults to one backed by the keychain
            (or the encrypted file fallback).
        identity_provider: Provider used for sign-in. Without one, only
            requests with an already stored session are possible.
        transport: Network transport (httpx.MockTransport in tests).
            Defaults to httpx.HTTPTransport.
    """

    def __init__(
        self,
        config: SessionConfig,
        token_store: TokenStore | None = None,
        identity_provider: IdentityProvider | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._config = config
        backend_config = config.backend

        set_console_level(config.logging.console_level)
        if config.logging.log_to_file:
            configure_system_logger_file(config.logging.system_log_path)

        self.token_store = token_store or TokenStore(create_token_storage(StoredSession))

        network = transport or httpx.HTTPTransport()
        self.backend = AuthBackend(backend_config, transport=network)

        self._coordinator = RefreshCoordinator(
            self.token_store,
            self.backend,
            network,
            excluded_paths=(backend_config.login_path, backend_config.refresh_path),
            wait_timeout=config.refresh.wait_timeout,
        )
        interceptor = AuthInterceptor(
            self.token_store,
            self._coordinator,
            unauthenticated_paths=(backend_config.login_path, backend_config.health_path),
        )
        self.http = httpx.Client(
            base_url=backend_config.base_url,
            timeout=httpx.Timeout(backend_config.timeout),
            transport=interceptor,
        )

        self._session_manager: SessionManager | None = None
        if identity_provider is not None:
            self._session_manager = SessionManager(
                identity_provider,
                self.backend,
                self.token_store,
                retry=config.login_retry,
            )

        get_system_logger().debug(
            {
                "event": "session_context_created",
                "base_url": backend_config.base_url,
                "has_identity_provider": identity_provider is not None,
                "authenticated": self.token_store.is_authenticated(),
            }
        )

    @property
    def session_manager(self) -> SessionManager:
        """The session manager.

        Raises:
            ConfigurationError: No identity provider was given.
        """
        if self._session_manager is None:
            raise ConfigurationError("SessionContext was created without an identity provider")
        return self._session_manager

    @property
    def refresh_coordinator(self) -> RefreshCoordinator:
        return self._coordinator

    def current_user(self) -> BackendUser:
        """Fetch the signed-in user from the backend.

        Goes through the authenticated client, so an expired token is
        refreshed transparently.

        Raises:
            BackendHTTPError: Non-2xx status (after any refresh attempt).
            MalformedResponseError: Body without user data.
            httpx.TransportError: Backend could not be reached.
        """
        response = self.http.get(self._config.backend.current_user_path)
        if not response.is_success:
            raise BackendHTTPError(response.status_code)

        try:
            body: Any = response.json()
        except ValueError as e:
            raise MalformedResponseError("Current user response was not valid JSON") from e

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise MalformedResponseError("Current user response had no data")
        try:
            return BackendUser.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"Unexpected current user payload: {e}") from e

    def check_health(self) -> bool:
        """True if the backend health endpoint answers with a 2xx status."""
        try:
            response = self.http.get(self._config.backend.health_path)
        except httpx.TransportError as e:
            get_system_logger().warning(
                {
                    "event": "backend_unreachable",
                    "message": "Backend health check failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return False
        return response.is_success

    def close(self) -> None:
        self.http.close()
        self.backend.close()

    def __enter__(self) -> "SessionContext":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
