"""Authentication infrastructure for the game-discovery client.

This module provides:
- Session token storage (OS keychain or encrypted file fallback)
- Cache-first TokenStore shared by every component
- httpx transports for header attachment and single-flight 401 refresh
- Sign-in orchestration with a pluggable identity provider
- Google OAuth Device Flow identity provider
- Classification of failures into user-facing messages
"""

from swipe_session.security.auth.backend import (
    AuthBackend,
    BackendUser,
    LoginResponse,
)
from swipe_session.security.auth.device_flow import (
    DeviceFlow,
    GoogleCredential,
    GoogleDeviceFlowIdentityProvider,
)
from swipe_session.security.auth.error_classifier import (
    ClassifiedError,
    ErrorCategory,
    ErrorKind,
    classify_exception,
    classify_status,
    get_user_friendly_message,
)
from swipe_session.security.auth.identity import (
    IdentityAssertion,
    IdentityProvider,
    IdentityUser,
)
from swipe_session.security.auth.interceptor import AuthInterceptor
from swipe_session.security.auth.session_manager import (
    AuthCancelled,
    AuthError,
    AuthSuccess,
    SessionManager,
    SessionState,
    ValidationError,
    ValidationSuccess,
)
from swipe_session.security.auth.token_parser import normalize_token_scheme
from swipe_session.security.auth.token_refresh import (
    RefreshCoordinator,
    RefreshOutcome,
    RefreshState,
)
from swipe_session.security.auth.token_storage import (
    EncryptedFileStorage,
    KeychainStorage,
    MemoryStorage,
    StoredSession,
    TokenStorage,
    create_token_storage,
    get_token_storage_info,
)
from swipe_session.security.auth.token_store import TokenStore

__all__ = [
    # Token storage
    "StoredSession",
    "TokenStorage",
    "KeychainStorage",
    "EncryptedFileStorage",
    "MemoryStorage",
    "create_token_storage",
    "get_token_storage_info",
    "TokenStore",
    "normalize_token_scheme",
    # Backend
    "AuthBackend",
    "BackendUser",
    "LoginResponse",
    # Transports
    "AuthInterceptor",
    "RefreshCoordinator",
    "RefreshOutcome",
    "RefreshState",
    # Identity
    "IdentityAssertion",
    "IdentityProvider",
    "IdentityUser",
    "DeviceFlow",
    "GoogleCredential",
    "GoogleDeviceFlowIdentityProvider",
    # Sign-in
    "SessionManager",
    "SessionState",
    "AuthSuccess",
    "AuthCancelled",
    "AuthError",
    "ValidationSuccess",
    "ValidationError",
    # Errors
    "ClassifiedError",
    "ErrorCategory",
    "ErrorKind",
    "classify_exception",
    "classify_status",
    "get_user_friendly_message",
]
