"""Secure durable storage for session records.

Provides three storage backends, each holding one pydantic record under a key:
1. KeychainStorage (primary): Uses OS keychain via keyring library
   - macOS: Keychain
   - Windows: Credential Locker
   - Linux: Secret Service (GNOME Keyring, KDE Wallet)

2. EncryptedFileStorage (fallback): Fernet-encrypted file storage
   - Used when keyring is unavailable
   - Per-record key derived from the machine fingerprint

3. MemoryStorage: process-local, for tests and ephemeral sessions

Records are never written in plaintext. The same backends persist both the
backend session token (StoredSession) and the Google refresh credential.
"""

from __future__ import annotations

__all__ = [
    "EncryptedFileStorage",
    "KeychainStorage",
    "MemoryStorage",
    "StoredSession",
    "TokenStorage",
    "create_token_storage",
    "derive_file_key",
    "get_token_storage_info",
    "machine_fingerprint",
]

import base64
import functools
import hashlib
import platform
import socket
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Generic, TypeVar

from pydantic import BaseModel

from swipe_session.constants import APP_NAME, DEFAULT_TOKEN_SCHEME, PROTECTED_CONFIG_DIR, SESSION_TOKEN_KEY
from swipe_session.exceptions import TokenStorageError
from swipe_session.utils.file_helpers import write_private_file

if TYPE_CHECKING:
    from cryptography.fernet import Fernet

    from swipe_session.security.keyring_utils import KeyringStatus

# Service name for keyring storage
KEYRING_SERVICE = APP_NAME

ModelT = TypeVar("ModelT", bound=BaseModel)


class StoredSession(BaseModel):
    """Backend-issued session token as persisted on disk or in the keychain.

    Attributes:
        access_token: Opaque credential sent in the Authorization header.
        token_scheme: Authorization scheme as returned by the backend.
            Normalized at read time, stored verbatim.
        expires_in: Lifetime in seconds reported by the backend, if any.
            Informational only; expiry is detected by the backend's 401.
    """

    access_token: str
    token_scheme: str = DEFAULT_TOKEN_SCHEME
    expires_in: int | None = None


class TokenStorage(ABC, Generic[ModelT]):
    """Abstract base class for record storage backends.

    Args:
        model: Pydantic model class the stored record is validated against.
        key: Record name (keychain username or encrypted file stem).
    """

    def __init__(self, model: type[ModelT], key: str = SESSION_TOKEN_KEY) -> None:
        self._model = model
        self._key = key

    @property
    def key(self) -> str:
        """Record name this storage reads and writes."""
        return self._key

    @abstractmethod
    def save(self, record: ModelT) -> None:
        """Save record to storage, replacing any previous one.

        Args:
            record: Record to save.

        Raises:
            TokenStorageError: If save fails.
        """

    @abstractmethod
    def load(self) -> ModelT | None:
        """Load record from storage.

        Returns:
            The record if found, None if nothing is stored.

        Raises:
            TokenStorageError: If load fails (corruption, decryption error).
        """

    @abstractmethod
    def delete(self) -> None:
        """Delete the stored record. Deleting a missing record is not an error.

        Raises:
            TokenStorageError: If delete fails.
        """

    @abstractmethod
    def exists(self) -> bool:
        """Check if a record is stored."""

    def _parse(self, data: str) -> ModelT:
        try:
            return self._model.model_validate_json(data)
        except Exception as e:
            raise TokenStorageError(f"Failed to parse stored {self._key} (may be corrupted): {e}") from e


class KeychainStorage(TokenStorage[ModelT]):
    """Record storage using OS keychain via keyring library.

    Uses the system's secure credential storage:
    - macOS: Keychain
    - Windows: Credential Locker
    - Linux: Secret Service API (GNOME Keyring, KDE Wallet, etc.)
    """

    def __init__(self, model: type[ModelT], key: str = SESSION_TOKEN_KEY) -> None:
        super().__init__(model, key)
        self._service = KEYRING_SERVICE

    def save(self, record: ModelT) -> None:
        """Save record to keychain."""
        import keyring

        try:
            keyring.set_password(self._service, self._key, record.model_dump_json())
        except Exception as e:
            raise TokenStorageError(f"Failed to save {self._key} to keychain: {e}") from e

    def load(self) -> ModelT | None:
        """Load record from keychain."""
        import keyring

        try:
            data = keyring.get_password(self._service, self._key)
        except Exception as e:
            raise TokenStorageError(f"Failed to access keychain: {e}") from e

        if data is None:
            return None
        return self._parse(data)

    def delete(self) -> None:
        """Delete record from keychain."""
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            keyring.delete_password(self._service, self._key)
        except PasswordDeleteError:
            pass
        except Exception as e:
            raise TokenStorageError(f"Failed to delete {self._key} from keychain: {e}") from e

    def exists(self) -> bool:
        """Check if record exists in keychain."""
        import keyring

        try:
            return keyring.get_password(self._service, self._key) is not None
        except Exception:
            return False


# =============================================================================
# Machine-bound key derivation
# =============================================================================

_PBKDF2_ITERATIONS = 200_000
_KEY_SALT = f"{APP_NAME}-storage-v1".encode()


def _darwin_machine_id() -> str | None:
    try:
        result = subprocess.run(
            ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    for line in result.stdout.splitlines():
        if "IOPlatformUUID" in line and "=" in line:
            return line.split("=", 1)[1].strip().strip('"')
    return None


def _linux_machine_id() -> str | None:
    for candidate in (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id")):
        try:
            value = candidate.read_text().strip()
        except OSError:
            continue
        if value:
            return value
    return None


def _windows_machine_id() -> str | None:
    try:
        import winreg

        with winreg.OpenKey(
            winreg.HKEY_LOCAL_MACHINE,
            r"SOFTWARE\Microsoft\Cryptography",
            0,
            winreg.KEY_READ | winreg.KEY_WOW64_64KEY,
        ) as reg_key:
            value, _ = winreg.QueryValueEx(reg_key, "MachineGuid")
    except (OSError, ImportError):
        return None
    return str(value)


_MACHINE_ID_READERS = {
    "Darwin": _darwin_machine_id,
    "Linux": _linux_machine_id,
    "Windows": _windows_machine_id,
}


@functools.lru_cache(maxsize=1)
def machine_fingerprint() -> str:
    """Stable identifier of this machine: platform machine ID plus hostname.

    Falls back to the hostname alone when the platform ID cannot be read.
    """
    reader = _MACHINE_ID_READERS.get(platform.system())
    machine_id = reader() if reader is not None else None
    return f"{machine_id or 'no-machine-id'}:{socket.gethostname()}"


def derive_file_key(fingerprint: str, record_key: str) -> bytes:
    """Derive the Fernet key for one record via PBKDF2-HMAC-SHA256.

    Each record key gets its own encryption key, so the session token file
    cannot be decrypted with the key of the Google credential file.

    Args:
        fingerprint: Output of machine_fingerprint().
        record_key: Storage key of the record.

    Returns:
        URL-safe base64 encoded 32-byte key, as Fernet expects.
    """
    material = f"{fingerprint}:{record_key}".encode()
    raw_key = hashlib.pbkdf2_hmac("sha256", material, _KEY_SALT, _PBKDF2_ITERATIONS, dklen=32)
    return base64.urlsafe_b64encode(raw_key)


class EncryptedFileStorage(TokenStorage[ModelT]):
    """Fallback record storage in a Fernet-encrypted file.

    Used when no OS keychain is available. The encryption key never touches
    disk: it is derived from the machine fingerprint and the record key, so
    the file only decrypts on the machine that wrote it. This protects
    against copied files, not against other processes of the same user.

    Args:
        model: Pydantic model class of the stored record.
        key: Record name; the file is "<key>.enc".
        storage_dir: Directory for the file. Defaults to the protected
            config directory.
    """

    def __init__(
        self,
        model: type[ModelT],
        key: str = SESSION_TOKEN_KEY,
        storage_dir: Path | None = None,
    ) -> None:
        super().__init__(model, key)
        base_dir = storage_dir if storage_dir is not None else Path(PROTECTED_CONFIG_DIR)
        self._storage_path = base_dir / f"{key}.enc"
        self._fernet: Fernet | None = None

    @property
    def storage_path(self) -> Path:
        """Location of the encrypted file."""
        return self._storage_path

    def _get_fernet(self) -> "Fernet":
        if self._fernet is None:
            from cryptography.fernet import Fernet

            self._fernet = Fernet(derive_file_key(machine_fingerprint(), self._key))
        return self._fernet

    def save(self, record: ModelT) -> None:
        """Save record to encrypted file."""
        try:
            encrypted = self._get_fernet().encrypt(record.model_dump_json().encode())
            write_private_file(self._storage_path, encrypted)
        except Exception as e:
            raise TokenStorageError(f"Failed to save encrypted {self._key}: {e}") from e

    def load(self) -> ModelT | None:
        """Load record from encrypted file."""
        if not self._storage_path.exists():
            return None

        try:
            encrypted = self._storage_path.read_bytes()
            decrypted = self._get_fernet().decrypt(encrypted)
        except Exception as e:
            raise TokenStorageError(
                f"Failed to decrypt {self._storage_path.name} (may be corrupted or key changed): {e}"
            ) from e

        return self._parse(decrypted.decode())

    def delete(self) -> None:
        """Delete encrypted file."""
        try:
            if self._storage_path.exists():
                self._storage_path.unlink()
        except Exception as e:
            raise TokenStorageError(f"Failed to delete encrypted {self._key}: {e}") from e

    def exists(self) -> bool:
        """Check if encrypted file exists."""
        return self._storage_path.exists()


class MemoryStorage(TokenStorage[ModelT]):
    """Process-local storage. Records are lost when the process exits."""

    def __init__(self, model: type[ModelT], key: str = SESSION_TOKEN_KEY) -> None:
        super().__init__(model, key)
        self._data: str | None = None

    def save(self, record: ModelT) -> None:
        self._data = record.model_dump_json()

    def load(self) -> ModelT | None:
        if self._data is None:
            return None
        return self._parse(self._data)

    def delete(self) -> None:
        self._data = None

    def exists(self) -> bool:
        return self._data is not None


def _probe_keyring() -> KeyringStatus:
    from swipe_session.security.keyring_utils import probe_keyring

    return probe_keyring(service_suffix="token-probe")


def create_token_storage(model: type[ModelT], key: str = SESSION_TOKEN_KEY) -> TokenStorage[ModelT]:
    """Create the appropriate storage backend for one record.

    Prefers keychain storage when available, falls back to encrypted file.

    Args:
        model: Pydantic model class of the record.
        key: Record name.

    Returns:
        TokenStorage instance (KeychainStorage or EncryptedFileStorage).
    """
    if _probe_keyring().available:
        return KeychainStorage(model, key)
    return EncryptedFileStorage(model, key)


def get_token_storage_info(key: str = SESSION_TOKEN_KEY) -> dict[str, str]:
    """Describe the storage backend that create_token_storage would pick.

    Returns:
        Dict with a 'backend' key plus backend-specific details, for status
        display and bug reports.
    """
    status = _probe_keyring()
    if status.available:
        return {
            "backend": "keychain",
            "keyring_backend": status.backend_name,
            "service": KEYRING_SERVICE,
        }
    return {
        "backend": "encrypted_file",
        "location": str(Path(PROTECTED_CONFIG_DIR) / f"{key}.enc"),
        "keychain_unavailable_reason": status.reason or "unknown",
    }
