from __future__ import annotations

import grp
import os
import pwd
import sys
from pathlib import Path

import pytest

from secretroll.activation.installer import SecretInstaller
from secretroll.core.exceptions import HookError, OwnershipResolutionError
from secretroll.security.accounts import (
    AccountLifecycle,
    CommandLifecycle,
    SystemAccountResolver,
    UserGroupResolver,
    resolve_ownership,
)
from tests._doubles import StaticResolver


def test_numeric_ids_pass_through() -> None:
    r = SystemAccountResolver()
    assert r.resolve_user("4242") == 4242
    assert r.resolve_group("0") == 0


def test_names_resolve_against_system_databases() -> None:
    r = SystemAccountResolver()
    try:
        me = pwd.getpwuid(os.getuid())
        group_name = grp.getgrgid(me.pw_gid).gr_name
    except KeyError:
        pytest.skip("invoking user has no passwd/group entry")
    assert r.resolve_user(me.pw_name) == me.pw_uid
    assert r.resolve_group(group_name) == me.pw_gid
    assert r.primary_group(me.pw_name) == me.pw_gid
    assert r.primary_group(str(me.pw_uid)) == me.pw_gid


def test_unknown_names_raise() -> None:
    r = SystemAccountResolver()
    with pytest.raises(OwnershipResolutionError):
        r.resolve_user("secretroll-no-such-user")
    with pytest.raises(OwnershipResolutionError):
        r.resolve_group("secretroll-no-such-group")
    assert r.primary_group("secretroll-no-such-user") is None


def test_system_resolver_satisfies_protocol() -> None:
    assert isinstance(SystemAccountResolver(), UserGroupResolver)


def test_resolve_ownership_group_defaults() -> None:
    r = StaticResolver()
    assert resolve_ownership(r, "svc", "svcgrp") == (os.getuid(), os.getgid())

    r.primary.pop("svc")
    assert resolve_ownership(r, "svc", None) == (os.getuid(), 0)


def test_command_lifecycle_runs_hooks(temp_dir: Path) -> None:
    marker = temp_dir / "users-built"
    lc = CommandLifecycle(users_ready=[sys.executable, "-c", f"open({str(marker)!r}, 'w').close()"])
    assert isinstance(lc, AccountLifecycle)

    lc.users_ready()
    lc.groups_ready()  # unset: no-op
    assert marker.exists()


def test_command_lifecycle_failure_is_hook_error() -> None:
    lc = CommandLifecycle(groups_ready=[sys.executable, "-c", "import sys; sys.exit(3)"])
    with pytest.raises(HookError):
        lc.groups_ready()


def test_command_lifecycle_missing_binary_is_hook_error(temp_dir: Path) -> None:
    lc = CommandLifecycle(users_ready=[str(temp_dir / "nope")])
    with pytest.raises(HookError):
        lc.users_ready()


@pytest.fixture()
def no_account_databases(monkeypatch: pytest.MonkeyPatch) -> None:
    def _missing(name):
        raise KeyError(name)

    monkeypatch.setattr(pwd, "getpwnam", _missing)
    monkeypatch.setattr(pwd, "getpwuid", _missing)
    monkeypatch.setattr(grp, "getgrnam", _missing)


def test_root_names_resolve_without_account_databases(no_account_databases: None) -> None:
    r = SystemAccountResolver()
    assert r.resolve_user("root") == 0
    assert r.resolve_group("root") == 0
    assert r.primary_group("root") == 0
    assert resolve_ownership(r, "root", "root") == (0, 0)
    assert resolve_ownership(r, "root", None) == (0, 0)
    with pytest.raises(OwnershipResolutionError):
        r.resolve_user("svc")


def test_root_secret_installs_without_account_databases(
    no_account_databases: None, monkeypatch: pytest.MonkeyPatch, generations, decryptor, make_spec, layout
) -> None:
    chowned: list[tuple[int, int]] = []
    monkeypatch.setattr("secretroll.activation.installer.os.chown", lambda p, uid, gid: chowned.append((uid, gid)))
    installer = SecretInstaller(decryptor, SystemAccountResolver(), layout["current_link"])
    generations.ensure_mount()
    gen = generations.begin_generation()

    dest = installer.install(make_spec("root-pw", b"$6$hash", owner="root", group="root"), gen, [layout["identity"]])

    assert dest.read_bytes() == b"$6$hash"
    assert chowned == [(0, 0)]
