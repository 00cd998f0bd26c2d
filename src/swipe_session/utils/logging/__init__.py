"""Logging utilities for swipe-session."""

from swipe_session.utils.logging.iso_formatter import REDACTED, ISO8601Formatter

__all__ = ["ISO8601Formatter", "REDACTED"]
