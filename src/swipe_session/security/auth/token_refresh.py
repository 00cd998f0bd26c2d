"""Single-flight session refresh on 401 responses.

RefreshCoordinator is the innermost httpx transport wrapper. When the backend
answers 401 for an authenticated request, exactly one request (the leader)
calls the refresh endpoint; concurrent requests that hit 401 meanwhile wait
for that refresh to finish and then retry with whatever token it produced.

Flow:
1. Response is not 401, targets login/refresh, or no token is stored -> return it
2. Another refresh is in flight -> wait for it, then retry (or return the 401
   if that refresh failed)
3. Token changed since the request was sent -> retry with the current token
4. Otherwise refresh:
   - new token      -> save, retry once with it
   - 401/403        -> terminal, clear the store
   - no token       -> malformed, clear the store
   - other failures -> transient, keep the token

Retries go straight to the inner transport, so a second 401 is returned as-is.
Refresh failures never raise out of the transport.
"""

from __future__ import annotations

__all__ = [
    "RefreshCoordinator",
    "RefreshOutcome",
    "RefreshState",
]

import threading
from collections.abc import Iterable
from enum import Enum

import httpx

from swipe_session.constants import LOGIN_PATH, REFRESH_PATH, REFRESH_WAIT_TIMEOUT_SECONDS
from swipe_session.exceptions import BackendHTTPError, MalformedResponseError
from swipe_session.security.auth.backend import AuthBackend
from swipe_session.security.auth.interceptor import path_matches, with_authorization
from swipe_session.security.auth.token_parser import session_from_response
from swipe_session.security.auth.token_store import TokenStore
from swipe_session.telemetry.system.system_logger import get_system_logger

# Statuses from the refresh endpoint that mean the session is gone for good
TERMINAL_REFRESH_STATUSES = frozenset({401, 403})


class RefreshState(Enum):
    """Refresh lifecycle.

    IDLE and REFRESHING are the coordinator's state. RETRYING is per request:
    the request is being re-issued after a refresh (its own or a joined one).
    """

    IDLE = "idle"
    REFRESHING = "refreshing"
    RETRYING = "retrying"


class RefreshOutcome(Enum):
    REFRESHED = "refreshed"
    TERMINAL = "terminal"
    TRANSIENT = "transient"
    MALFORMED = "malformed"


class RefreshCoordinator(httpx.BaseTransport):
    """Transport that refreshes the session once per burst of 401s.

    Args:
        token_store: Shared session store (read for headers, written on refresh).
        backend: Client for the refresh endpoint (outside this transport chain).
        transport: Network transport requests are sent through.
        excluded_paths: Endpoints whose 401 is returned untouched.
        wait_timeout: Max seconds to wait for another request's refresh.
    """

    def __init__(
        self,
        token_store: TokenStore,
        backend: AuthBackend,
        transport: httpx.BaseTransport,
        excluded_paths: Iterable[str] = (LOGIN_PATH, REFRESH_PATH),
        wait_timeout: float = REFRESH_WAIT_TIMEOUT_SECONDS,
    ) -> None:
        self._token_store = token_store
        self._backend = backend
        self._transport = transport
        self._excluded_paths = tuple(excluded_paths)
        self._wait_timeout = wait_timeout

        self._condition = threading.Condition()
        self._state = RefreshState.IDLE
        self._generation = 0
        self._last_outcome: RefreshOutcome | None = None

    @property
    def state(self) -> RefreshState:
        with self._condition:
            return self._state

    @property
    def last_outcome(self) -> RefreshOutcome | None:
        with self._condition:
            return self._last_outcome

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        # Buffer the body so the request can be re-sent after a refresh
        request.read()
        response = self._transport.handle_request(request)

        if response.status_code != 401:
            return response
        if path_matches(request, self._excluded_paths):
            return response
        if self._token_store.get_access_token() is None:
            return response

        sent_authorization = request.headers.get("Authorization")
        logger = get_system_logger()

        retry_reason: str | None = None
        with self._condition:
            if self._state is RefreshState.REFRESHING:
                seen_generation = self._generation
                finished = self._condition.wait_for(
                    lambda: self._generation != seen_generation,
                    timeout=self._wait_timeout,
                )
                if finished and self._last_outcome is not RefreshOutcome.REFRESHED:
                    return response
                if not finished:
                    logger.warning(
                        {
                            "event": "refresh_wait_timeout",
                            "message": "Gave up waiting for in-flight token refresh",
                            "path": request.url.path,
                            "wait_timeout": self._wait_timeout,
                        }
                    )
                retry_reason = "joined_refresh"
            else:
                current_authorization = self._token_store.get_authorization_header()
                if current_authorization is None:
                    return response
                if current_authorization != sent_authorization:
                    retry_reason = "token_already_refreshed"
                else:
                    self._state = RefreshState.REFRESHING

        # Network calls happen outside the lock
        if retry_reason is not None:
            return self._retry(request, response, reason=retry_reason)

        outcome = RefreshOutcome.TRANSIENT
        try:
            outcome = self._refresh(current_authorization)
        finally:
            with self._condition:
                self._state = RefreshState.IDLE
                self._generation += 1
                self._last_outcome = outcome
                self._condition.notify_all()

        if outcome is not RefreshOutcome.REFRESHED:
            return response
        return self._retry(request, response, reason="refreshed")

    def _refresh(self, authorization: str) -> RefreshOutcome:
        """Call the refresh endpoint and update the store. Never raises."""
        logger = get_system_logger()

        try:
            refreshed = self._backend.refresh(authorization)
        except BackendHTTPError as e:
            if e.status_code in TERMINAL_REFRESH_STATUSES:
                self._token_store.clear_token()
                logger.warning(
                    {
                        "event": "token_refresh_rejected",
                        "message": "Session expired, signed out",
                        "status_code": e.status_code,
                    }
                )
                return RefreshOutcome.TERMINAL
            logger.warning(
                {
                    "event": "token_refresh_failed",
                    "message": "Token refresh failed, keeping current session",
                    "status_code": e.status_code,
                }
            )
            return RefreshOutcome.TRANSIENT
        except MalformedResponseError as e:
            self._token_store.clear_token()
            logger.warning(
                {
                    "event": "token_refresh_malformed",
                    "message": "Refresh response was not understood, signed out",
                    "error": str(e),
                }
            )
            return RefreshOutcome.MALFORMED
        except (httpx.TransportError, OSError) as e:
            logger.warning(
                {
                    "event": "token_refresh_unreachable",
                    "message": "Could not reach backend to refresh token, keeping current session",
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return RefreshOutcome.TRANSIENT
        except Exception as e:
            logger.error(
                {
                    "event": "token_refresh_error",
                    "message": "Unexpected error during token refresh",
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return RefreshOutcome.TRANSIENT

        if not refreshed.success:
            self._token_store.clear_token()
            logger.warning(
                {
                    "event": "token_refresh_rejected",
                    "message": "Backend declined token refresh, signed out",
                    "server_message": refreshed.message,
                }
            )
            return RefreshOutcome.MALFORMED

        session = session_from_response(refreshed)
        if session is None:
            self._token_store.clear_token()
            logger.warning(
                {
                    "event": "token_refresh_malformed",
                    "message": "Refresh response had no access token, signed out",
                }
            )
            return RefreshOutcome.MALFORMED

        self._token_store.save_token(session.access_token, session.token_scheme, session.expires_in)
        logger.info(
            {
                "event": "token_refreshed",
                "message": "Session token refreshed",
                "token_length": len(session.access_token),
                "expires_in": session.expires_in,
            }
        )
        return RefreshOutcome.REFRESHED

    def _retry(self, request: httpx.Request, response: httpx.Response, reason: str) -> httpx.Response:
        """Re-send a request with the current header, bypassing refresh."""
        authorization = self._token_store.get_authorization_header()
        if authorization is None:
            return response

        get_system_logger().debug(
            {
                "event": "request_retry",
                "state": RefreshState.RETRYING.value,
                "reason": reason,
                "path": request.url.path,
            }
        )
        response.close()
        return self._transport.handle_request(with_authorization(request, authorization))

    def close(self) -> None:
        self._transport.close()
