"""Backend session endpoints: login and refresh.

Both calls go through a plain httpx.Client that is NOT part of the
authenticated transport chain, so a refresh can never trigger another refresh.

Wire format (both endpoints):
    {"success": true,
     "data": {"access_token": "...", "token_type": "bearer", "expires_in": 3600,
              "user": {"id": 1, "email": "...", "name": "...", "avatar": "..."}},
     "message": null}
"""

from __future__ import annotations

__all__ = [
    "AuthBackend",
    "BackendUser",
    "LoginData",
    "LoginRequest",
    "LoginResponse",
]

from types import TracebackType
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from swipe_session.exceptions import BackendHTTPError, MalformedResponseError

if TYPE_CHECKING:
    from swipe_session.config import BackendConfig


# =============================================================================
# Wire Models
# =============================================================================


class LoginRequest(BaseModel):
    """Login body. The backend calls the identity assertion "id_token"."""

    model_config = ConfigDict(populate_by_name=True)

    identity_assertion: str = Field(alias="id_token")


class BackendUser(BaseModel):
    """User profile returned alongside the session token."""

    id: int | str
    email: str | None = None
    name: str | None = None
    avatar: str | None = None


class LoginData(BaseModel):
    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    user: BackendUser | None = None


class LoginResponse(BaseModel):
    """Envelope shared by login and refresh responses."""

    success: bool = False
    data: LoginData | None = None
    message: str | None = None


# =============================================================================
# Client
# =============================================================================


def _error_message(response: httpx.Response) -> str | None:
    """Pull a human-readable message out of an error body, if there is one."""
    try:
        body: Any = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for field in ("message", "detail", "error"):
        value = body.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def _parse_response(response: httpx.Response) -> LoginResponse:
    try:
        return LoginResponse.model_validate_json(response.content)
    except ValidationError as e:
        raise MalformedResponseError(f"Unexpected response from {response.request.url.path}: {e}") from e


class AuthBackend:
    """Synchronous client for the login and refresh endpoints.

    Transport failures (httpx.TransportError) propagate unchanged so callers
    can classify them; HTTP and payload problems raise the exceptions below.

    Args:
        config: Backend connection settings.
        http_client: Client to use. When omitted, one is created with the
            configured base URL and timeout and closed by close().
        transport: Transport for the client created when http_client is None.
    """

    def __init__(
        self,
        config: "BackendConfig",
        http_client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout),
            transport=transport,
        )

    def login(self, identity_assertion: str) -> LoginResponse:
        """Exchange an identity assertion for a backend session.

        Args:
            identity_assertion: Raw ID token from the identity provider.

        Returns:
            Parsed response with success=True and an access token.

        Raises:
            BackendHTTPError: Non-2xx status (message from the error body).
            MalformedResponseError: Unparseable body, success=false, or no token.
            httpx.TransportError: Timeout or connectivity failure.
        """
        body = LoginRequest(identity_assertion=identity_assertion).model_dump(by_alias=True)
        response = self._client.post(self._config.login_path, json=body)

        if not response.is_success:
            raise BackendHTTPError(response.status_code, _error_message(response))

        parsed = _parse_response(response)
        if not parsed.success:
            raise MalformedResponseError(parsed.message or "Login was not successful")
        if parsed.data is None or not parsed.data.access_token:
            raise MalformedResponseError("Login response did not include an access token")
        return parsed

    def refresh(self, authorization: str) -> LoginResponse:
        """Ask the backend for a new session token.

        Args:
            authorization: Current Authorization header value ("Bearer <token>").

        Returns:
            Parsed response. Callers check success and a missing token themselves.

        Raises:
            BackendHTTPError: Non-2xx status.
            MalformedResponseError: Unparseable body.
            httpx.TransportError: Timeout or connectivity failure.
        """
        response = self._client.post(
            self._config.refresh_path,
            headers={"Authorization": authorization},
        )

        if not response.is_success:
            raise BackendHTTPError(response.status_code, _error_message(response))

        return _parse_response(response)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "AuthBackend":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
