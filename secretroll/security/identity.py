"""secretroll.security.identity

Decryption identities.

By default the machine decrypts with its own SSH host keys. age understands
rsa and ed25519 keys only, so every other host key type is skipped.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

logger = logging.getLogger(__name__)

HOST_KEY_GLOB = "ssh_host_*_key"


def _load_private_key(data: bytes):
    if b"BEGIN OPENSSH PRIVATE KEY" in data:
        return serialization.load_ssh_private_key(data, password=None)
    return serialization.load_pem_private_key(data, password=None)


def identity_key_type(path: Path) -> str | None:
    """Return "ed25519" or "rsa" when `path` holds a usable age identity, else None."""

    try:
        key = _load_private_key(path.read_bytes())
    except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.debug("identity_unreadable", extra={"path": str(path), "error": type(e).__name__})
        return None

    if isinstance(key, Ed25519PrivateKey):
        return "ed25519"
    if isinstance(key, RSAPrivateKey):
        return "rsa"
    return None


def discover_host_identities(ssh_dir: Path) -> list[Path]:
    """SSH host keys in `ssh_dir` usable as age identities, sorted by path."""

    ssh_dir = Path(ssh_dir)
    if not ssh_dir.is_dir():
        return []

    found: list[Path] = []
    for p in sorted(ssh_dir.glob(HOST_KEY_GLOB)):
        kind = identity_key_type(p)
        if kind is None:
            logger.debug("host_key_skipped", extra={"path": str(p)})
            continue
        found.append(p)

    logger.debug("host_keys_discovered", extra={"count": len(found), "ssh_dir": str(ssh_dir)})
    return found
