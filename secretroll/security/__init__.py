"""secretroll.security

The edges that touch key material and accounts:
- decryptor: the age contract
- identity: which keys we decrypt with
- accounts: who ends up owning the plaintext
"""

from secretroll.security.accounts import (
    AccountLifecycle,
    CommandLifecycle,
    SystemAccountResolver,
    UserGroupResolver,
    resolve_ownership,
)
from secretroll.security.decryptor import AgeDecryptor, Decryptor
from secretroll.security.identity import discover_host_identities, identity_key_type

__all__ = [
    "AccountLifecycle",
    "AgeDecryptor",
    "CommandLifecycle",
    "Decryptor",
    "SystemAccountResolver",
    "UserGroupResolver",
    "discover_host_identities",
    "identity_key_type",
    "resolve_ownership",
]
