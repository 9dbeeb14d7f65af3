"""secretroll.security.decryptor

The age contract, and nothing more.

    decrypt(identities, ciphertext) -> plaintext | DecryptionError

We never see key material. We hand paths to an age-compatible binary and read
its exit status.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from secretroll.core.exceptions import DecryptionError


@runtime_checkable
class Decryptor(Protocol):
    def decrypt_to(self, identities: Sequence[Path], input_file: Path, output: Path) -> None: ...

    def decrypt(self, identities: Sequence[Path], input_file: Path) -> bytes: ...


class AgeDecryptor:
    """Runs `age`/`rage` with one `-i` per identity."""

    def __init__(self, age_bin: str = "rage", *, locale: str | None = "C.UTF-8", timeout_s: float | None = 120.0):
        self.age_bin = age_bin
        self.locale = locale
        self.timeout_s = timeout_s

    def command(self, identities: Sequence[Path], input_file: Path, output: Path | None = None) -> list[str]:
        cmd = [self.age_bin, "--decrypt"]
        for ident in identities:
            cmd += ["-i", str(ident)]
        if output is not None:
            cmd += ["-o", str(output)]
        cmd.append(str(input_file))
        return cmd

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.locale:
            env["LANG"] = self.locale
        return env

    def _run(self, cmd: list[str], identities: Sequence[Path], input_file: Path) -> bytes:
        if not identities:
            raise DecryptionError("no identities given to the decryptor")
        if not Path(input_file).is_file():
            raise DecryptionError(f"ciphertext not found: {input_file}")

        try:
            proc = subprocess.run(
                cmd,
                env=self._env(),
                capture_output=True,
                timeout=self.timeout_s,
                check=False,
            )
        except FileNotFoundError as e:
            raise DecryptionError(f"decryptor binary not found: {self.age_bin}") from e
        except OSError as e:
            raise DecryptionError(f"decryptor could not be started: {self.age_bin}: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise DecryptionError(f"decryptor timed out after {self.timeout_s}s: {input_file}") from e

        if proc.returncode != 0:
            stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
            raise DecryptionError(f"failed to decrypt {input_file} (exit {proc.returncode}): {stderr}")
        return proc.stdout or b""

    def decrypt_to(self, identities: Sequence[Path], input_file: Path, output: Path) -> None:
        self._run(self.command(identities, input_file, output), identities, input_file)

    def decrypt(self, identities: Sequence[Path], input_file: Path) -> bytes:
        return self._run(self.command(identities, input_file), identities, input_file)
