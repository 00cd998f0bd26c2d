"""System operational logging.

Provides the system logger for session lifecycle events (sign-in, token
storage, refresh outcomes, backend validation retries).
"""

from swipe_session.telemetry.system.system_logger import (
    ConsoleFormatter,
    configure_system_logger_file,
    get_system_logger,
    set_console_level,
)

__all__ = [
    "ConsoleFormatter",
    "configure_system_logger_file",
    "get_system_logger",
    "set_console_level",
]
