"""JSON-lines formatter for the system log file.

Each record becomes one JSON object:

    {"time": "2025-12-04T10:48:37.123Z", "level": "WARNING",
     "event": "token_refresh_failed", "status_code": 503}

Dict messages are merged into the object. Values under credential-looking
keys are replaced with "[REDACTED]" as a last line of defense; callers
should log lengths and flags, never the credentials themselves.
"""

from __future__ import annotations

__all__ = ["ISO8601Formatter", "REDACTED"]

import json
import logging
from datetime import datetime, timezone
from typing import Any

REDACTED = "[REDACTED]"

_SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "authorization",
        "client_secret",
        "id_token",
        "identity_assertion",
        "refresh_token",
    }
)


def _redact(data: dict[str, Any]) -> dict[str, Any]:
    return {key: REDACTED if key.lower() in _SENSITIVE_KEYS else value for key, value in data.items()}


class ISO8601Formatter(logging.Formatter):
    """Formats records as JSONL with a UTC ISO 8601 timestamp (millisecond precision)."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        if isinstance(record.msg, dict):
            payload = _redact(record.msg)
        else:
            payload = {"message": record.getMessage()}

        entry: dict[str, Any] = {"time": timestamp, "level": record.levelname, **payload}
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)
