"""Configuration for swipe-session.

Defines configuration models for the backend API, login retry, token refresh,
the Google identity provider and logging. Config is stored as JSON at the
OS-appropriate location (via platformdirs).

Example usage:
    # Load from config file
    config = SessionConfig.load_from_files(get_config_path())

    # Save new configuration
    config.save_to_file(get_config_path())
"""

from __future__ import annotations

__all__ = [
    "DEFAULT_LOG_DIR",
    "BackendConfig",
    "GoogleConfig",
    "LoggingConfig",
    "RefreshConfig",
    "RetryConfig",
    "SessionConfig",
    "get_config_path",
]

import os
import sys
from pathlib import Path
from typing import Literal

from platformdirs import user_config_dir
from pydantic import BaseModel, Field, field_validator

from swipe_session.constants import (
    APP_NAME,
    CURRENT_USER_PATH,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    GOOGLE_DEFAULT_SCOPES,
    HEALTH_PATH,
    LOGIN_PATH,
    LOGIN_RETRY_BACKOFF_MULTIPLIER,
    LOGIN_RETRY_INITIAL_DELAY,
    LOGIN_RETRY_MAX_ATTEMPTS,
    MAX_HTTP_TIMEOUT_SECONDS,
    MIN_HTTP_TIMEOUT_SECONDS,
    REFRESH_PATH,
    REFRESH_WAIT_TIMEOUT_SECONDS,
)
from swipe_session.utils.file_helpers import (
    read_json_model,
    write_private_file,
)

CONFIG_FILE_NAME = "config.json"


def _get_platform_log_dir() -> str:
    """Get platform-appropriate base log directory following OS conventions.

    Platform conventions:
        - macOS: ~/Library/Logs
        - Linux: ~/.local/state (XDG Base Directory Specification)
        - Windows: ~/AppData/Local
    """
    if sys.platform == "darwin":
        return "~/Library/Logs"
    elif sys.platform == "win32":
        return "~/AppData/Local"
    else:
        return os.environ.get("XDG_STATE_HOME", "~/.local/state")


# Default base log directory (platform-specific, follows OS conventions)
DEFAULT_LOG_DIR = _get_platform_log_dir()


def get_config_path() -> Path:
    """Default config file location (e.g. ~/.config/swipe-session/config.json on Linux)."""
    return Path(user_config_dir(APP_NAME)) / CONFIG_FILE_NAME


class BackendConfig(BaseModel):
    """Game-discovery REST API connection settings.

    Attributes:
        base_url: API root, e.g. "https://api.swipetoplay.app".
        login_path: Identity assertion exchange endpoint (never authenticated).
        refresh_path: Token refresh endpoint (never triggers a refresh).
        current_user_path: Authenticated "who am I" endpoint.
        health_path: Liveness endpoint (never authenticated).
        timeout: Connect/read/write timeout in seconds.
    """

    base_url: str = Field(min_length=1)
    login_path: str = LOGIN_PATH
    refresh_path: str = REFRESH_PATH
    current_user_path: str = CURRENT_USER_PATH
    health_path: str = HEALTH_PATH
    timeout: int = Field(
        default=DEFAULT_HTTP_TIMEOUT_SECONDS,
        ge=MIN_HTTP_TIMEOUT_SECONDS,
        le=MAX_HTTP_TIMEOUT_SECONDS,
    )

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("login_path", "refresh_path", "current_user_path", "health_path")
    @classmethod
    def _require_leading_slash(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("API paths must start with '/'")
        return v


class RetryConfig(BaseModel):
    """Backend login retry with exponential backoff.

    Only connection-level failures are retried; HTTP error statuses fail fast.

    Attributes:
        max_attempts: Total attempts including the first one.
        initial_delay: Seconds to wait before the first retry.
        backoff_multiplier: Delay multiplier applied after each retry.
    """

    max_attempts: int = Field(default=LOGIN_RETRY_MAX_ATTEMPTS, ge=1, le=10)
    initial_delay: float = Field(default=LOGIN_RETRY_INITIAL_DELAY, ge=0.0)
    backoff_multiplier: float = Field(default=LOGIN_RETRY_BACKOFF_MULTIPLIER, ge=1.0)


class RefreshConfig(BaseModel):
    """401-triggered token refresh settings.

    Attributes:
        wait_timeout: Max seconds a request waits for another request's
            in-flight refresh before retrying with whatever token is current.
    """

    wait_timeout: float = Field(default=REFRESH_WAIT_TIMEOUT_SECONDS, gt=0.0)


class GoogleConfig(BaseModel):
    """Google OAuth client used by the device-flow identity provider.

    Attributes:
        client_id: OAuth client ID ("TVs and Limited Input devices" type).
        client_secret: OAuth client secret (Google requires it for device flow).
        scopes: Scopes to request; "openid" is required to receive an ID token.
    """

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    scopes: list[str] = Field(default_factory=lambda: list(GOOGLE_DEFAULT_SCOPES))

    @field_validator("scopes")
    @classmethod
    def _require_openid(cls, v: list[str]) -> list[str]:
        if "openid" not in v:
            raise ValueError("scopes must include 'openid' to obtain an ID token")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration settings.

    Attributes:
        log_dir: Base directory for logs. The system log is written to
            <log_dir>/swipe-session/system.jsonl when log_to_file is enabled.
        log_to_file: Whether to attach the WARNING+ JSONL file handler.
        console_level: Threshold of the stderr handler.
    """

    log_dir: str = Field(default=DEFAULT_LOG_DIR, min_length=1)
    log_to_file: bool = False
    console_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @property
    def system_log_path(self) -> Path:
        """Expanded path of the system JSONL log."""
        return Path(self.log_dir).expanduser() / APP_NAME / "system.jsonl"


class SessionConfig(BaseModel):
    """Root configuration for swipe-session.

    Attributes:
        backend: REST API connection settings.
        login_retry: Backend login retry policy.
        refresh: Token refresh settings.
        google: Google OAuth client (optional; only needed for device flow).
        logging: Logging settings.
    """

    backend: BackendConfig
    login_retry: RetryConfig = Field(default_factory=RetryConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    google: GoogleConfig | None = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file.

        The directory gets 0o700 and the file 0o600 since it may hold the
        Google client secret.

        Args:
            config_path: Path where the config JSON file should be saved.
        """
        payload = self.model_dump_json(indent=2) + "\n"
        write_private_file(config_path, payload.encode("utf-8"))

    @classmethod
    def load_from_files(cls, config_path: Path) -> "SessionConfig":
        """Load configuration from JSON file.

        Args:
            config_path: Path to the config JSON file.

        Returns:
            SessionConfig instance with loaded configuration.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config file is invalid or missing required fields.
        """
        return read_json_model(
            config_path,
            cls,
            file_type="configuration",
            recovery_hint="Fix the listed fields or delete the file to start over.",
        )
