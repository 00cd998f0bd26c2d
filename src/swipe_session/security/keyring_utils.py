"""OS keychain probing for the storage factory.

keyring always returns *some* backend, even on a headless Linux box without a
Secret Service. The only reliable test is to store a random secret, read it
back and remove it again.
"""

from __future__ import annotations

__all__ = [
    "KeyringStatus",
    "is_keyring_available",
    "probe_keyring",
]

import secrets
from dataclasses import dataclass

from swipe_session.constants import APP_NAME
from swipe_session.telemetry.system.system_logger import get_system_logger

_PROBE_USER = "availability-check"


@dataclass(frozen=True)
class KeyringStatus:
    """Result of a keychain probe.

    Attributes:
        available: True if secrets round-trip through the backend.
        backend_name: Class name of the active keyring backend.
        reason: Why the keychain is unusable (None when available).
    """

    available: bool
    backend_name: str
    reason: str | None = None


def probe_keyring(service_suffix: str = "probe") -> KeyringStatus:
    """Run a write/read/delete cycle against the active keyring backend.

    Args:
        service_suffix: Probe service is "{APP_NAME}-{suffix}"; distinct
            suffixes keep concurrent probes apart.

    Returns:
        KeyringStatus. Never raises; DBus and permission failures surface
        as arbitrary exception types and all count as unavailable.
    """
    import keyring
    from keyring.backends.fail import Keyring as FailKeyring

    logger = get_system_logger()
    backend = keyring.get_keyring()
    backend_name = type(backend).__name__

    if isinstance(backend, FailKeyring):
        status = KeyringStatus(available=False, backend_name=backend_name, reason="no usable backend")
    else:
        service = f"{APP_NAME}-{service_suffix}"
        expected = secrets.token_hex(8)
        try:
            keyring.set_password(service, _PROBE_USER, expected)
            stored = keyring.get_password(service, _PROBE_USER)
            keyring.delete_password(service, _PROBE_USER)
        except Exception as e:
            status = KeyringStatus(available=False, backend_name=backend_name, reason=f"{type(e).__name__}: {e}")
        else:
            if stored == expected:
                status = KeyringStatus(available=True, backend_name=backend_name)
            else:
                status = KeyringStatus(available=False, backend_name=backend_name, reason="probe value mismatch")

    if not status.available:
        logger.debug(
            {
                "event": "keyring_unavailable",
                "message": "OS keychain unusable, secrets go to the encrypted file",
                "keyring_backend": status.backend_name,
                "reason": status.reason,
            }
        )
    return status


def is_keyring_available(service_suffix: str = "probe") -> bool:
    """True if the OS keychain can store and return secrets."""
    return probe_keyring(service_suffix).available
