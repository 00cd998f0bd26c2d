"""Google sign-in via the OAuth Device Authorization Grant (RFC 8628).

GoogleDeviceFlowIdentityProvider is the concrete IdentityProvider of the
session library. The user sees a short code, opens Google's verification page
on any device, approves the app, and the library receives an OIDC ID token
(the identity assertion exchanged with the backend).

Flow:
1. Request device code from Google
2. Display: "Go to https://www.google.com/device and enter code: XXXX-XXXX"
3. Poll token endpoint until user completes authentication
4. Store the Google refresh token in keychain/encrypted file

Silent restore: on later runs the stored refresh token is exchanged for a fresh
ID token without any user interaction. Signing out revokes it at Google.
"""

from __future__ import annotations

__all__ = [
    "DeviceCodeResponse",
    "DeviceFlow",
    "DeviceFlowExpiredError",
    "GoogleCredential",
    "GoogleDeviceFlowIdentityProvider",
    "PollOnceResult",
]

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

import httpx
from pydantic import BaseModel

from swipe_session.constants import (
    DEVICE_FLOW_POLL_INTERVAL_SECONDS,
    DEVICE_FLOW_TIMEOUT_SECONDS,
    GOOGLE_CREDENTIAL_KEY,
    GOOGLE_DEVICE_CODE_URL,
    GOOGLE_REVOKE_URL,
    GOOGLE_TOKEN_URL,
    OAUTH_CLIENT_TIMEOUT_SECONDS,
)
from swipe_session.exceptions import (
    IdentityCancelledError,
    IdentityProviderError,
    NoCredentialError,
    TokenStorageError,
)
from swipe_session.security.auth.identity import IdentityAssertion, assertion_from_id_token
from swipe_session.security.auth.token_storage import TokenStorage, create_token_storage
from swipe_session.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from swipe_session.config import GoogleConfig

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

# Extra seconds added to the polling interval on "slow_down" (RFC 8628 3.5)
SLOW_DOWN_INCREMENT_SECONDS = 5

DisplayCallback = Callable[[str, str, str | None], None]


class DeviceFlowExpiredError(IdentityProviderError):
    """Device code expired before the user approved the sign-in."""


class GoogleCredential(BaseModel):
    """Google refresh credential used for silent account restore.

    Attributes:
        refresh_token: Long-lived Google OAuth refresh token.
        subject_id: Google account ID the token belongs to.
    """

    refresh_token: str
    subject_id: str


@dataclass
class DeviceCodeResponse:
    """Response from the device authorization request.

    Attributes:
        device_code: Code used to poll for tokens (don't show to user).
        user_code: Code user enters in browser (e.g., "HDFC-LQRT").
        verification_uri: URL user opens to authenticate.
        verification_uri_complete: URL with code embedded (optional).
        expires_in: Seconds until codes expire.
        interval: Polling interval in seconds.
    """

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str | None
    expires_in: int
    interval: int

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "DeviceCodeResponse":
        """Parse from Google's response (which names the URL verification_url)."""
        return cls(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_uri=data.get("verification_url") or data["verification_uri"],
            verification_uri_complete=data.get("verification_uri_complete"),
            expires_in=data["expires_in"],
            interval=data.get("interval", DEVICE_FLOW_POLL_INTERVAL_SECONDS),
        )


@dataclass(frozen=True)
class PollOnceResult:
    """Result of a single poll attempt.

    Attributes:
        status: "pending", "slow_down", "complete", "expired", "denied", or "error".
        token_data: Token endpoint JSON if status is "complete".
        error_message: Details if status is "expired", "denied", or "error".
    """

    status: str
    token_data: dict[str, Any] | None = None
    error_message: str | None = None


def _oauth_error(response: httpx.Response) -> tuple[str, str]:
    """Return (error, error_description) from an OAuth error body."""
    try:
        data = response.json()
    except ValueError:
        return "", f"HTTP {response.status_code}"
    if not isinstance(data, dict):
        return "", f"HTTP {response.status_code}"
    error = str(data.get("error", ""))
    return error, str(data.get("error_description") or error or f"HTTP {response.status_code}")


class DeviceFlow:
    """Synchronous calls against Google's OAuth endpoints.

    Each method is one HTTP round trip; the polling loop and the waiting
    live in GoogleDeviceFlowIdentityProvider.

    Args:
        config: Google OAuth client configuration.
        http_client: Client to use instead of a private one. It is not
            closed by close().
    """

    def __init__(
        self,
        config: "GoogleConfig",
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client if http_client is not None else httpx.Client(timeout=OAUTH_CLIENT_TIMEOUT_SECONDS)

    def __enter__(self) -> "DeviceFlow":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def request_device_code(self) -> DeviceCodeResponse:
        """Request a device code from Google.

        Raises:
            IdentityProviderError: Google rejected the request.
            httpx.TransportError: Google could not be reached.
        """
        response = self._client.post(
            GOOGLE_DEVICE_CODE_URL,
            data={
                "client_id": self._config.client_id,
                "scope": " ".join(self._config.scopes),
            },
        )

        if not response.is_success:
            _, description = _oauth_error(response)
            raise IdentityProviderError(f"Failed to request device code: {description}")

        try:
            return DeviceCodeResponse.from_response(response.json())
        except (ValueError, KeyError) as e:
            raise IdentityProviderError(f"Unexpected device code response: {e}") from e

    def poll_once(self, device_code: DeviceCodeResponse) -> PollOnceResult:
        """Poll the token endpoint once (non-blocking).

        Returns:
            PollOnceResult with status and token data (if complete).
        """
        try:
            response = self._client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "grant_type": DEVICE_CODE_GRANT,
                    "device_code": device_code.device_code,
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret,
                },
            )
        except httpx.HTTPError as e:
            return PollOnceResult(status="error", error_message=f"HTTP error polling for token: {e}")

        if response.status_code == 200:
            try:
                return PollOnceResult(status="complete", token_data=response.json())
            except ValueError:
                return PollOnceResult(status="error", error_message="Token response was not valid JSON")

        error, description = _oauth_error(response)

        if error == "authorization_pending":
            return PollOnceResult(status="pending")

        if error == "slow_down":
            return PollOnceResult(status="slow_down")

        if error == "expired_token":
            return PollOnceResult(status="expired", error_message="Device code expired. Please sign in again.")

        if error == "access_denied":
            return PollOnceResult(status="denied", error_message="Authorization was denied.")

        return PollOnceResult(status="error", error_message=f"Token request failed: {description}")

    def refresh_id_token(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a Google refresh token for a fresh ID token.

        Returns:
            Token endpoint JSON (contains id_token when "openid" was granted).

        Raises:
            NoCredentialError: The refresh token was revoked or expired.
            IdentityProviderError: Any other token endpoint failure.
            httpx.TransportError: Google could not be reached.
        """
        response = self._client.post(
            GOOGLE_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
            },
        )

        if response.status_code == 200:
            try:
                return response.json()
            except ValueError as e:
                raise IdentityProviderError("Token response was not valid JSON") from e

        error, description = _oauth_error(response)
        if error == "invalid_grant":
            raise NoCredentialError("Stored Google authorization is no longer valid")
        raise IdentityProviderError(f"Token refresh failed: {description}")

    def revoke(self, token: str) -> None:
        """Revoke a Google token.

        Raises:
            IdentityProviderError: Google rejected the revocation.
            httpx.TransportError: Google could not be reached.
        """
        response = self._client.post(GOOGLE_REVOKE_URL, data={"token": token})
        if not response.is_success:
            _, description = _oauth_error(response)
            raise IdentityProviderError(f"Token revocation failed: {description}")


class GoogleDeviceFlowIdentityProvider:
    """IdentityProvider backed by Google's device authorization grant.

    Args:
        config: Google OAuth client configuration.
        display_callback: Called with (user_code, verification_uri,
            verification_uri_complete) to show sign-in instructions.
        credential_storage: Where the Google refresh token is kept. Defaults
            to keychain, falling back to an encrypted file.
        http_client: Optional httpx client (for testing).
        timeout: Maximum seconds to wait for the user to approve.
    """

    def __init__(
        self,
        config: "GoogleConfig",
        display_callback: DisplayCallback,
        credential_storage: TokenStorage[GoogleCredential] | None = None,
        http_client: httpx.Client | None = None,
        timeout: int = DEVICE_FLOW_TIMEOUT_SECONDS,
    ) -> None:
        self._flow = DeviceFlow(config, http_client=http_client)
        self._display_callback = display_callback
        self._storage = credential_storage or create_token_storage(GoogleCredential, GOOGLE_CREDENTIAL_KEY)
        self._timeout = timeout

    async def get_assertion(self, *, silent: bool) -> IdentityAssertion:
        if silent:
            return await self._restore()
        return await self._run_device_flow()

    async def _restore(self) -> IdentityAssertion:
        logger = get_system_logger()

        try:
            credential = self._storage.load()
        except TokenStorageError as e:
            logger.warning(
                {
                    "event": "google_credential_unreadable",
                    "message": "Stored Google credential could not be read",
                    "error": str(e),
                }
            )
            raise NoCredentialError("Stored Google credential could not be read") from e

        if credential is None:
            raise NoCredentialError("No authorized Google account")

        try:
            token_data = await asyncio.to_thread(self._flow.refresh_id_token, credential.refresh_token)
        except NoCredentialError:
            self._delete_credential()
            raise

        return self._assertion_from_token_data(token_data)

    async def _run_device_flow(self) -> IdentityAssertion:
        device_code = await asyncio.to_thread(self._flow.request_device_code)
        self._display_callback(
            device_code.user_code,
            device_code.verification_uri,
            device_code.verification_uri_complete,
        )

        interval = device_code.interval
        deadline = time.monotonic() + min(self._timeout, device_code.expires_in)

        while time.monotonic() < deadline:
            await asyncio.sleep(interval)
            result = await asyncio.to_thread(self._flow.poll_once, device_code)

            if result.status == "pending":
                continue
            if result.status == "slow_down":
                interval += SLOW_DOWN_INCREMENT_SECONDS
                continue
            if result.status == "denied":
                raise IdentityCancelledError(result.error_message or "Authorization was denied.")
            if result.status == "expired":
                raise DeviceFlowExpiredError(result.error_message or "Device code expired.")
            if result.status == "complete" and result.token_data is not None:
                assertion = self._assertion_from_token_data(result.token_data)
                self._remember(result.token_data, assertion)
                return assertion
            raise IdentityProviderError(result.error_message or "Device flow failed")

        raise DeviceFlowExpiredError(f"Sign-in timed out after {self._timeout} seconds. Please sign in again.")

    def _assertion_from_token_data(self, token_data: dict[str, Any]) -> IdentityAssertion:
        id_token = token_data.get("id_token")
        if not id_token:
            raise IdentityProviderError("Google did not return an ID token (is the 'openid' scope granted?)")
        return assertion_from_id_token(id_token)

    def _remember(self, token_data: dict[str, Any], assertion: IdentityAssertion) -> None:
        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            return
        try:
            self._storage.save(
                GoogleCredential(refresh_token=refresh_token, subject_id=assertion.user.subject_id)
            )
        except TokenStorageError as e:
            # Sign-in still succeeds; only silent restore is lost
            get_system_logger().warning(
                {
                    "event": "google_credential_save_failed",
                    "message": "Could not store Google credential, next sign-in will be interactive",
                    "error": str(e),
                }
            )

    def _delete_credential(self) -> None:
        try:
            self._storage.delete()
        except TokenStorageError as e:
            get_system_logger().warning(
                {
                    "event": "google_credential_delete_failed",
                    "message": "Could not delete stored Google credential",
                    "error": str(e),
                }
            )

    async def clear_credential_state(self) -> None:
        """Revoke the stored Google refresh token and forget it.

        The local credential is deleted even if revocation fails.

        Raises:
            IdentityProviderError: Google rejected the revocation.
            httpx.TransportError: Google could not be reached.
        """
        try:
            credential = self._storage.load()
        except TokenStorageError:
            credential = None

        try:
            if credential is not None:
                await asyncio.to_thread(self._flow.revoke, credential.refresh_token)
        finally:
            self._delete_credential()

    def close(self) -> None:
        self._flow.close()
