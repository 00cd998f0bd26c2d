"""Authorization header attachment for outgoing requests.

AuthInterceptor is an httpx transport placed in front of the refresh
coordinator. It reads the header from the TokenStore on every request, so a
token saved by a refresh is picked up by the very next request.
"""

from __future__ import annotations

__all__ = [
    "AuthInterceptor",
    "path_matches",
    "with_authorization",
]

from collections.abc import Iterable

import httpx

from swipe_session.constants import HEALTH_PATH, LOGIN_PATH
from swipe_session.security.auth.token_store import TokenStore


def path_matches(request: httpx.Request, paths: Iterable[str]) -> bool:
    """True if the request path ends with one of the given endpoint paths."""
    request_path = request.url.path.rstrip("/")
    return any(request_path.endswith(path.rstrip("/")) for path in paths)


def with_authorization(request: httpx.Request, authorization: str) -> httpx.Request:
    """Copy a request with its Authorization header replaced.

    The body is read first so the copy can be sent even when the original
    was already consumed by an earlier attempt.
    """
    content = request.read()
    headers = request.headers.copy()
    headers["Authorization"] = authorization
    return httpx.Request(
        request.method,
        request.url,
        headers=headers,
        content=content,
        extensions=request.extensions,
    )


class AuthInterceptor(httpx.BaseTransport):
    """Transport that authenticates requests from the TokenStore.

    Args:
        token_store: Source of the current Authorization header.
        transport: Next transport in the chain (normally the RefreshCoordinator).
        unauthenticated_paths: Endpoint paths forwarded without a header.
    """

    def __init__(
        self,
        token_store: TokenStore,
        transport: httpx.BaseTransport,
        unauthenticated_paths: Iterable[str] = (LOGIN_PATH, HEALTH_PATH),
    ) -> None:
        self._token_store = token_store
        self._transport = transport
        self._unauthenticated_paths = tuple(unauthenticated_paths)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if path_matches(request, self._unauthenticated_paths):
            return self._transport.handle_request(request)

        authorization = self._token_store.get_authorization_header()
        if authorization is None:
            return self._transport.handle_request(request)

        return self._transport.handle_request(with_authorization(request, authorization))

    def close(self) -> None:
        self._transport.close()
