"""secretroll.security.accounts

Who owns a secret.

We do not manage the user/group database. We ask it questions (`resolve_*`) and
we tell the outside world when it may be built (`users_ready`, `groups_ready`).
"""

from __future__ import annotations

import grp
import logging
import pwd
import subprocess
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from secretroll.core.exceptions import HookError, OwnershipResolutionError
from secretroll.core.types import ROOT_NAMES

logger = logging.getLogger(__name__)


def _numeric(name: str) -> int | None:
    return int(name) if name.isdigit() else None


@runtime_checkable
class UserGroupResolver(Protocol):
    def resolve_user(self, owner: str) -> int: ...

    def resolve_group(self, group: str) -> int: ...

    def primary_group(self, owner: str) -> int | None: ...


@runtime_checkable
class AccountLifecycle(Protocol):
    def users_ready(self) -> None: ...

    def groups_ready(self) -> None: ...


class SystemAccountResolver:
    """Resolve against the live passwd/group databases.

    `root` and `0` map to 0 without a lookup; rootSecrets runs before the databases exist.
    """

    def resolve_user(self, owner: str) -> int:
        if owner in ROOT_NAMES:
            return 0
        uid = _numeric(owner)
        if uid is not None:
            return uid
        try:
            return pwd.getpwnam(owner).pw_uid
        except KeyError as e:
            raise OwnershipResolutionError(f"unknown user: {owner}") from e

    def resolve_group(self, group: str) -> int:
        if group in ROOT_NAMES:
            return 0
        gid = _numeric(group)
        if gid is not None:
            return gid
        try:
            return grp.getgrnam(group).gr_gid
        except KeyError as e:
            raise OwnershipResolutionError(f"unknown group: {group}") from e

    def primary_group(self, owner: str) -> int | None:
        if owner in ROOT_NAMES:
            return 0
        uid = _numeric(owner)
        try:
            entry = pwd.getpwuid(uid) if uid is not None else pwd.getpwnam(owner)
        except KeyError:
            return None
        return entry.pw_gid


def resolve_ownership(resolver: UserGroupResolver, owner: str, group: str | None) -> tuple[int, int]:
    """(uid, gid) for a secret. An unset group is the owner's primary group, else 0."""

    uid = resolver.resolve_user(owner)
    if group is not None:
        return uid, resolver.resolve_group(group)
    gid = resolver.primary_group(owner)
    return uid, 0 if gid is None else gid


class CommandLifecycle:
    """Run a command for each lifecycle signal. A missing command is a no-op."""

    def __init__(self, users_ready: Sequence[str] | None = None, groups_ready: Sequence[str] | None = None):
        self._users = list(users_ready) if users_ready else None
        self._groups = list(groups_ready) if groups_ready else None

    def _run(self, signal: str, cmd: list[str] | None) -> None:
        if cmd is None:
            logger.debug("lifecycle_signal_noop", extra={"signal": signal})
            return
        logger.info("lifecycle_signal", extra={"signal": signal, "cmd": cmd[0]})
        try:
            proc = subprocess.run(cmd, capture_output=True, check=False)
        except OSError as e:
            raise HookError(f"{signal} hook could not be started: {e}") from e
        if proc.returncode != 0:
            stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
            raise HookError(f"{signal} hook failed (exit {proc.returncode}): {stderr}")

    def users_ready(self) -> None:
        self._run("users_ready", self._users)

    def groups_ready(self) -> None:
        self._run("groups_ready", self._groups)
