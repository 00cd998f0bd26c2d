"""Thread-safe, cache-first store of the current backend session.

One TokenStore is shared by the interceptor, the refresh coordinator and the
session manager. Reads are served from an in-memory record; durable storage is
only consulted on a cache miss. Token and scheme live in one immutable record
so readers never see a token paired with a stale scheme.

Storage failures never propagate out of the store:
- failed read: logged, cache stays invalid so the next read retries storage
- failed write: logged, cache still updated so the running process keeps working
- failed delete: logged, cache holds "no session" until the next save
"""

from __future__ import annotations

__all__ = [
    "TokenStore",
]

import threading

from swipe_session.constants import DEFAULT_TOKEN_SCHEME
from swipe_session.exceptions import TokenStorageError
from swipe_session.security.auth.token_parser import normalize_token_scheme
from swipe_session.security.auth.token_storage import StoredSession, TokenStorage
from swipe_session.telemetry.system.system_logger import get_system_logger


class TokenStore:
    """Cache-first session token store.

    Args:
        storage: Durable backend (keychain, encrypted file or memory).
    """

    def __init__(self, storage: TokenStorage[StoredSession]) -> None:
        self._storage = storage
        self._lock = threading.Lock()
        self._cached: StoredSession | None = None
        self._cache_valid = False

    def save_token(
        self,
        access_token: str,
        token_scheme: str = DEFAULT_TOKEN_SCHEME,
        expires_in: int | None = None,
    ) -> None:
        """Persist a new session and make it visible to all readers.

        Args:
            access_token: Opaque credential from the backend.
            token_scheme: Scheme as returned by the backend.
            expires_in: Lifetime in seconds, if reported.
        """
        record = StoredSession(
            access_token=access_token,
            token_scheme=token_scheme,
            expires_in=expires_in,
        )
        with self._lock:
            try:
                self._storage.save(record)
            except TokenStorageError as e:
                get_system_logger().error(
                    {
                        "event": "token_save_failed",
                        "message": "Could not persist session token, keeping it in memory only",
                        "error": str(e),
                    }
                )
            self._cached = record
            self._cache_valid = True

    def get_session(self) -> StoredSession | None:
        """Return the current session record, loading it on a cache miss."""
        with self._lock:
            if self._cache_valid:
                return self._cached

            try:
                record = self._storage.load()
            except TokenStorageError as e:
                get_system_logger().warning(
                    {
                        "event": "token_load_failed",
                        "message": "Could not read stored session token",
                        "error": str(e),
                    }
                )
                return None

            self._cached = record
            self._cache_valid = True
            return record

    def get_access_token(self) -> str | None:
        session = self.get_session()
        return session.access_token if session is not None else None

    def get_token_scheme(self) -> str:
        session = self.get_session()
        return session.token_scheme if session is not None else DEFAULT_TOKEN_SCHEME

    def is_authenticated(self) -> bool:
        return self.get_access_token() is not None

    def get_authorization_header(self) -> str | None:
        """Build the Authorization header value for the current session.

        Returns:
            "<Scheme> <token>" with the scheme normalized, or None if signed out.
        """
        session = self.get_session()
        if session is None:
            return None
        return f"{normalize_token_scheme(session.token_scheme)} {session.access_token}"

    def clear_token(self) -> None:
        """Delete the persisted session and drop the cached one."""
        with self._lock:
            try:
                self._storage.delete()
            except TokenStorageError as e:
                get_system_logger().error(
                    {
                        "event": "token_delete_failed",
                        "message": "Could not delete stored session token",
                        "error": str(e),
                    }
                )
                # Stale record still on disk; pin "no session" in memory
                self._cached = None
                self._cache_valid = True
                return

            self._cached = None
            self._cache_valid = False
