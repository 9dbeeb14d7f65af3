"""secretroll.activation.mount

Staging filesystem backends.

Plaintext lives on ramfs: never swapped, gone on reboot. The directory backend
exists for containers and unprivileged runs where mounting is not possible.
"""

from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from secretroll.core.exceptions import MountError

MOUNT_OPTIONS = ("nodev", "nosuid", "noexec", "mode=0751")

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


def _unescape(field: str) -> str:
    # /proc/mounts escapes space, tab, newline and backslash as \ooo
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


@runtime_checkable
class StagingMount(Protocol):
    def is_mounted(self, path: Path) -> bool: ...

    def mount(self, path: Path) -> None: ...


class RamfsMounter:
    fstype = "ramfs"

    def __init__(self, *, proc_mounts: Path = Path("/proc/mounts"), mount_bin: str = "mount"):
        self.proc_mounts = Path(proc_mounts)
        self.mount_bin = mount_bin

    def is_mounted(self, path: Path) -> bool:
        try:
            lines = self.proc_mounts.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise MountError(f"cannot read {self.proc_mounts}: {e}") from e

        target = os.path.abspath(path)
        for line in lines:
            fields = line.split()
            if len(fields) >= 3 and _unescape(fields[1]) == target and fields[2] == self.fstype:
                return True
        return False

    def mount(self, path: Path) -> None:
        cmd = [self.mount_bin, "-t", self.fstype, "none", str(path), "-o", ",".join(MOUNT_OPTIONS)]
        try:
            proc = subprocess.run(cmd, capture_output=True, check=False)
        except OSError as e:
            raise MountError(f"cannot run {self.mount_bin}: {e}") from e
        if proc.returncode != 0:
            stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
            raise MountError(f"mounting {self.fstype} on {path} failed (exit {proc.returncode}): {stderr}")


class DirectoryMounter:
    """Plain directory staging. Nothing to mount."""

    def is_mounted(self, path: Path) -> bool:
        return True

    def mount(self, path: Path) -> None:
        return None


def make_mounter(kind: str) -> StagingMount:
    if kind == "ramfs":
        return RamfsMounter()
    if kind == "directory":
        return DirectoryMounter()
    raise ValueError(f"unknown staging filesystem: {kind}")
