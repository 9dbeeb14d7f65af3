"""secretroll.core

Core primitives: config, errors, types.

If a module needs to exist, it should probably depend only on this package.
"""

from .config import Config
from .exceptions import (
    ConfigError,
    DecryptionError,
    FilesystemError,
    HookError,
    MountError,
    OwnershipResolutionError,
    PhaseError,
    SecretrollError,
)
from .types import Generation, RunReport, SecretSpec

__all__ = [
    "Config",
    "ConfigError",
    "DecryptionError",
    "FilesystemError",
    "Generation",
    "HookError",
    "MountError",
    "OwnershipResolutionError",
    "PhaseError",
    "RunReport",
    "SecretSpec",
    "SecretrollError",
]
