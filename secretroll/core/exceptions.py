"""secretroll.core.exceptions

Errors are part of the interface.

Every error can carry the phase and the secret it happened in. The orchestrator
that invoked us needs both to diagnose a failed activation.
"""

from __future__ import annotations


class SecretrollError(Exception):
    """Base exception for secretroll."""

    def __init__(self, message: str = "", *, phase: str | None = None, secret: str | None = None):
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.secret = secret

    def context(self) -> str:
        parts = []
        if self.phase:
            parts.append(f"phase={self.phase}")
        if self.secret:
            parts.append(f"secret={self.secret}")
        return " ".join(parts)


class ConfigError(SecretrollError):
    """Configuration is missing, invalid, or inconsistent. Detected before any phase runs."""


class MountError(SecretrollError):
    """The staging filesystem could not be created or mounted."""


class DecryptionError(SecretrollError):
    """The decryptor failed: bad identity, corrupt ciphertext, missing source."""


class FilesystemError(SecretrollError):
    """Install or publish hit the filesystem: permissions, cross-device rename, disk full."""


class OwnershipResolutionError(SecretrollError):
    """An owner or group name does not resolve to an account."""


class PhaseError(SecretrollError):
    """A scheduled phase failed. The cause is chained."""


class HookError(SecretrollError):
    """A users-ready / groups-ready hook command failed."""
