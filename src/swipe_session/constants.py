"""Application-wide constants for swipe-session.

Constants that define library behavior.
For user-configurable settings per deployment, see config.py.
"""

import os

__all__ = [
    # Application identity
    "APP_NAME",
    # Protected directories
    "PROTECTED_CONFIG_DIR",
    # Backend API paths
    "LOGIN_PATH",
    "REFRESH_PATH",
    "CURRENT_USER_PATH",
    "HEALTH_PATH",
    # HTTP configuration
    "DEFAULT_HTTP_TIMEOUT_SECONDS",
    "MIN_HTTP_TIMEOUT_SECONDS",
    "MAX_HTTP_TIMEOUT_SECONDS",
    # Session tokens
    "DEFAULT_TOKEN_SCHEME",
    "SESSION_TOKEN_KEY",
    "GOOGLE_CREDENTIAL_KEY",
    # Login retry
    "LOGIN_RETRY_MAX_ATTEMPTS",
    "LOGIN_RETRY_INITIAL_DELAY",
    "LOGIN_RETRY_BACKOFF_MULTIPLIER",
    # Token refresh
    "REFRESH_WAIT_TIMEOUT_SECONDS",
    # Google OAuth device flow
    "GOOGLE_DEVICE_CODE_URL",
    "GOOGLE_TOKEN_URL",
    "GOOGLE_REVOKE_URL",
    "GOOGLE_DEFAULT_SCOPES",
    "OAUTH_CLIENT_TIMEOUT_SECONDS",
    "DEVICE_FLOW_POLL_INTERVAL_SECONDS",
    "DEVICE_FLOW_TIMEOUT_SECONDS",
]

from platformdirs import user_config_dir

# ============================================================================
# Application Identity
# ============================================================================

APP_NAME: str = "swipe-session"

# ============================================================================
# Protected Directories
# ============================================================================

# Directory holding the encrypted token files when no keychain is available.
# Uses platformdirs for cross-platform support:
# - macOS: ~/Library/Application Support/swipe-session/
# - Linux: ~/.config/swipe-session/
# - Windows: %APPDATA%\swipe-session\
PROTECTED_CONFIG_DIR: str = os.path.realpath(user_config_dir(APP_NAME))

# ============================================================================
# Backend API Paths
# ============================================================================

LOGIN_PATH: str = "/api/v1/auth/login"
REFRESH_PATH: str = "/api/v1/auth/refresh"
CURRENT_USER_PATH: str = "/api/v1/auth/me"
HEALTH_PATH: str = "/api/v1/auth/health"

# ============================================================================
# HTTP Configuration
# ============================================================================

# Connect/read/write timeout for backend calls (seconds)
DEFAULT_HTTP_TIMEOUT_SECONDS: int = 30

# Timeout validation range (seconds)
MIN_HTTP_TIMEOUT_SECONDS: int = 1
MAX_HTTP_TIMEOUT_SECONDS: int = 300  # 5 minutes

# ============================================================================
# Session Tokens
# ============================================================================

# Canonical scheme expected by the backend (capital B)
DEFAULT_TOKEN_SCHEME: str = "Bearer"

# Keychain usernames / encrypted file stems for the two persisted records
SESSION_TOKEN_KEY: str = "session_token"
GOOGLE_CREDENTIAL_KEY: str = "google_credentials"

# ============================================================================
# Login Retry
# ============================================================================

# 3 attempts: immediate -> wait 1s -> retry -> wait 2s -> retry -> fail
LOGIN_RETRY_MAX_ATTEMPTS: int = 3
LOGIN_RETRY_INITIAL_DELAY: float = 1.0
LOGIN_RETRY_BACKOFF_MULTIPLIER: float = 2.0

# ============================================================================
# Token Refresh
# ============================================================================

# Upper bound for a request waiting on another request's in-flight refresh.
# Slightly above the HTTP timeout so the refresh call itself times out first.
REFRESH_WAIT_TIMEOUT_SECONDS: float = DEFAULT_HTTP_TIMEOUT_SECONDS + 5.0

# ============================================================================
# Google OAuth Device Flow (RFC 8628)
# ============================================================================

GOOGLE_DEVICE_CODE_URL: str = "https://oauth2.googleapis.com/device/code"
GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL: str = "https://oauth2.googleapis.com/revoke"

GOOGLE_DEFAULT_SCOPES: tuple[str, ...] = ("openid", "email", "profile")

# Timeout for OAuth HTTP requests (device code, token polling, refresh, revoke)
OAUTH_CLIENT_TIMEOUT_SECONDS: int = 30

# Default polling interval for device flow (seconds)
DEVICE_FLOW_POLL_INTERVAL_SECONDS: int = 5

# Maximum time to wait for user to complete device flow authentication (seconds)
DEVICE_FLOW_TIMEOUT_SECONDS: int = 300
