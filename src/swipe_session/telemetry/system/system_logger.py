"""System logger for session lifecycle events.

One process-wide logger ("swipe-session.system") carries every operational
event of the library: sign-in attempts, token persistence, refresh outcomes,
login retries.

Handlers:
- Console (stderr): INFO and above by default, see set_console_level()
- File (system.jsonl): WARNING and above, attached by configure_system_logger_file()
  once LoggingConfig is known

Messages are dicts with at least an "event" key:

    logger.warning({"event": "token_refresh_failed", "status_code": 503})
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "configure_system_logger_file",
    "get_system_logger",
    "reset_system_logger",
    "set_console_level",
]

import logging
import sys
from pathlib import Path

from swipe_session.constants import APP_NAME
from swipe_session.utils.file_helpers import ensure_private_dir
from swipe_session.utils.logging.iso_formatter import ISO8601Formatter

SYSTEM_LOGGER_NAME = f"{APP_NAME}.system"


class ConsoleFormatter(logging.Formatter):
    """One line per record: "LEVEL: message", using the dict's message or event."""

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            text = record.msg.get("message") or record.msg.get("event", "")
        else:
            text = record.getMessage()
        return f"{record.levelname}: {text}"


_system_logger: logging.Logger | None = None
_console_handler: logging.Handler | None = None
_file_handler: logging.Handler | None = None


def get_system_logger() -> logging.Logger:
    """Return the system logger, creating it with a stderr handler on first use."""
    global _system_logger, _console_handler

    if _system_logger is not None:
        return _system_logger

    logger = logging.getLogger(SYSTEM_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # A previous reset may have left handlers on the stdlib logger object
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    _console_handler = logging.StreamHandler(sys.stderr)
    _console_handler.setLevel(logging.INFO)
    _console_handler.setFormatter(ConsoleFormatter())
    logger.addHandler(_console_handler)

    _system_logger = logger
    return logger


def set_console_level(level: int | str) -> None:
    """Change the stderr threshold (e.g. "DEBUG" to see request-level events)."""
    get_system_logger()
    if _console_handler is not None:
        _console_handler.setLevel(level)


def configure_system_logger_file(log_path: Path) -> bool:
    """Attach the JSONL file handler (WARNING and above).

    Only the first call has an effect. If the log directory cannot be
    created, a warning goes to stderr and the logger keeps working without
    the file.

    Args:
        log_path: System log file (see LoggingConfig.system_log_path).

    Returns:
        True if the file handler is attached.
    """
    global _file_handler

    logger = get_system_logger()
    if _file_handler is not None:
        return True

    try:
        ensure_private_dir(log_path.parent)
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        logger.warning(
            {
                "event": "system_log_unavailable",
                "message": f"Could not open system log at {log_path}, logging to stderr only",
                "error": str(e),
            }
        )
        return False

    handler.setLevel(logging.WARNING)
    handler.setFormatter(ISO8601Formatter())
    logger.addHandler(handler)
    _file_handler = handler
    return True


def reset_system_logger() -> None:
    """Close all handlers and forget the logger (used between tests)."""
    global _system_logger, _console_handler, _file_handler

    if _system_logger is not None:
        for handler in list(_system_logger.handlers):
            handler.close()
            _system_logger.removeHandler(handler)
    _system_logger = None
    _console_handler = None
    _file_handler = None
