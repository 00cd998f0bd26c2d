"""File helpers for config and credential files.

Everything swipe-session writes to disk may contain secrets (the Google client
secret in the config, the encrypted session token), so writes go through
write_private_file: owner-only permissions and an atomic replace, so a crash
never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

__all__ = [
    "ensure_private_dir",
    "read_json_model",
    "write_private_file",
]

_PRIVATE_DIR_MODE = 0o700
_PRIVATE_FILE_MODE = 0o600


def ensure_private_dir(directory: Path) -> None:
    """Create directory (and parents) and restrict it to the owner.

    Permissions are left alone on Windows.
    """
    directory.mkdir(parents=True, exist_ok=True)
    if sys.platform != "win32":
        directory.chmod(_PRIVATE_DIR_MODE)


def write_private_file(path: Path, data: bytes) -> None:
    """Atomically write data to path with 0o600 permissions.

    The bytes go to a temporary file in the same directory first, which is
    then renamed over path.

    Args:
        path: Destination file. Its directory is created if missing.
        data: Full file contents.

    Raises:
        OSError: If the directory cannot be created or the write fails.
    """
    ensure_private_dir(path.parent)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if sys.platform != "win32":
            os.chmod(tmp_name, _PRIVATE_FILE_MODE)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _describe_validation_error(e: ValidationError) -> str:
    lines = []
    for error in e.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        lines.append(f"  - {location}: {error['msg']}")
    return "\n".join(lines)


def read_json_model(
    path: Path,
    model_class: type[T],
    *,
    file_type: str = "file",
    recovery_hint: str | None = None,
) -> T:
    """Read a UTF-8 JSON file and validate it into model_class.

    Args:
        path: JSON file to read.
        model_class: Pydantic model to validate against.
        file_type: Name used in error messages (e.g. "configuration").
        recovery_hint: Appended to validation error messages.

    Returns:
        Validated model instance.

    Raises:
        FileNotFoundError: path does not exist.
        ValueError: The file is unreadable, not JSON, or fails validation.
            Validation errors list every offending field as "a.b: reason".
    """
    if not path.exists():
        raise FileNotFoundError(f"{file_type.capitalize()} file not found at {path}.")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {file_type} file {path}: {e}") from e
    except OSError as e:
        raise ValueError(f"Could not read {file_type} file {path}: {e}") from e

    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        message = f"Invalid {file_type} file {path}:\n{_describe_validation_error(e)}"
        if recovery_hint:
            message += f"\n{recovery_hint}"
        raise ValueError(message) from e
