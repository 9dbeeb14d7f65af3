from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path

import pytest
import yaml

from secretroll.cli import main


@pytest.fixture()
def deployment(temp_dir: Path, fake_age: Path) -> dict[str, Path]:
    """A full config on disk: two secrets, fake age binary, directory staging."""

    uid, gid = str(os.getuid()), str(os.getgid())
    ciphertexts = temp_dir / "secrets"
    ciphertexts.mkdir()
    (ciphertexts / "root-pw.age").write_bytes(b"$6$rounds=5000$hash")
    (ciphertexts / "api.age").write_bytes(b"api-token-123")

    identity = temp_dir / "keys" / "host_ed25519"
    identity.parent.mkdir()
    identity.write_text("identity\n", encoding="utf-8")

    marker = temp_dir / "users-built"
    cfg = {
        "age_bin": str(fake_age),
        "secrets_mount_point": str(temp_dir / "agenix.d"),
        "current_link": str(temp_dir / "run" / "agenix"),
        "staging_fs": "directory",
        "keys_group": gid,
        "identity_paths": [str(identity)],
        "hooks": {"users_ready": [sys.executable, "-c", f"open({str(marker)!r}, 'a').write('x')"]},
        "secrets": {
            "root-pw": {"file": str(ciphertexts / "root-pw.age"), "owner": "root", "group": "root"},
            "api-key": {
                "file": str(ciphertexts / "api.age"),
                "owner": uid,
                "group": gid,
                "mode": "0440",
                "path": str(temp_dir / "etc" / "app" / "api-key"),
            },
        },
    }
    path = temp_dir / "config.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return {
        "config": path,
        "mount_point": temp_dir / "agenix.d",
        "current": temp_dir / "run" / "agenix",
        "api_dest": temp_dir / "etc" / "app" / "api-key",
        "marker": marker,
    }


@pytest.fixture()
def as_root_accounts(monkeypatch: pytest.MonkeyPatch) -> None:
    """Let `root` resolve to the invoking user so an unprivileged run can chown."""

    from secretroll.security.accounts import SystemAccountResolver

    real = SystemAccountResolver.resolve_user
    real_group = SystemAccountResolver.resolve_group
    monkeypatch.setattr(
        SystemAccountResolver, "resolve_user", lambda self, o: os.getuid() if o == "root" else real(self, o)
    )
    monkeypatch.setattr(
        SystemAccountResolver, "resolve_group", lambda self, g: os.getgid() if g == "root" else real_group(self, g)
    )


def test_apply_twice_rolls_generations(
    deployment: dict[str, Path], as_root_accounts: None, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = str(deployment["config"])

    assert main(["--config", cfg, "apply", "--json"]) == 0
    first = json.loads(capsys.readouterr().out)
    assert first["ok"] is True
    assert first["generation"] == 1
    assert [i["secret"] for i in first["installed"]] == ["root-pw", "api-key"]

    assert main(["--config", cfg, "apply", "--json"]) == 0
    second = json.loads(capsys.readouterr().out)
    assert second["generation"] == 2
    assert second["retired"] == [1]

    current = deployment["current"]
    assert os.readlink(current) == str(deployment["mount_point"] / "2")
    assert not (deployment["mount_point"] / "1").exists()
    assert (current / "root-pw").read_bytes() == b"$6$rounds=5000$hash"

    api = deployment["api_dest"]
    assert api.is_symlink()
    assert api.read_bytes() == b"api-token-123"
    assert stat.S_IMODE(os.stat(api).st_mode) == 0o440
    assert stat.S_IMODE(os.stat(current / "root-pw").st_mode) == 0o400

    assert deployment["marker"].read_text() == "xx"  # users hook ran once per apply


def test_apply_reports_failing_phase_and_secret(
    deployment: dict[str, Path], as_root_accounts: None, temp_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = str(deployment["config"])
    assert main(["--config", cfg, "apply"]) == 0
    capsys.readouterr()

    (temp_dir / "secrets" / "api.age").unlink()
    rc = main(["--config", cfg, "apply"])
    err = capsys.readouterr().err

    assert rc == 1
    assert "phase nonRootSecrets" in err
    assert "secret api-key" in err
    # previous generation untouched and still published
    assert os.readlink(deployment["current"]) == str(deployment["mount_point"] / "1")
    assert deployment["api_dest"].read_bytes() == b"api-token-123"


def test_unmatched_identity_fails_in_root_phase(
    deployment: dict[str, Path], as_root_accounts: None, temp_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    bad = temp_dir / "keys" / "bad_key"
    bad.write_text("nope\n", encoding="utf-8")

    rc = main(["--config", str(deployment["config"]), "apply", "--identity", str(bad), "--json"])
    captured = capsys.readouterr()
    assert rc == 1
    report = json.loads(captured.out)
    assert report["ok"] is False
    assert report["phase"] == "rootSecrets"
    assert report["secret"] == "root-pw"
    assert report["installed"] == []
    assert not deployment["current"].exists()


def test_status_after_apply(
    deployment: dict[str, Path], as_root_accounts: None, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = str(deployment["config"])
    assert main(["--config", cfg, "apply"]) == 0
    out = capsys.readouterr().out
    assert "generation 1 published (2 secrets)" in out

    assert main(["--config", cfg, "status", "--json"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["generation"] == 1
    assert status["generations_on_disk"] == [1]
