"""secretroll.core.types

Lightweight dataclasses for the activation hot path.

Pydantic models own the config boundary; dataclasses keep the pipeline lean.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from secretroll.core.exceptions import ConfigError

ROOT_NAMES = frozenset({"root", "0"})
MODE_RE = re.compile(r"^0?[0-7]{3}$|^[0-7]{4}$")


@dataclass(frozen=True, slots=True)
class SecretSpec:
    name: str
    source_file: Path
    destination_path: Path
    mode: str = "0400"
    owner: str = "0"
    group: str | None = None  # None: owner's primary group, else "0"
    symlink: bool = True

    def __post_init__(self) -> None:
        if not MODE_RE.match(self.mode):
            raise ConfigError(f"invalid mode {self.mode!r}, expected octal like 0400", secret=self.name)

    @property
    def mode_bits(self) -> int:
        return int(self.mode, 8)

    @property
    def effective_group(self) -> str | None:
        """Group as far as it is known without a user database."""

        if self.group is not None:
            return self.group
        if self.owner in ROOT_NAMES:
            return "0"
        return None

    @property
    def is_root_owned(self) -> bool:
        return self.owner in ROOT_NAMES and self.effective_group in ROOT_NAMES


@dataclass(frozen=True, slots=True)
class Generation:
    id: int
    path: Path
    previous_id: int = 0


@dataclass(slots=True)
class RunReport:
    generation_id: int | None = None
    previous_id: int = 0
    phases: list[str] = field(default_factory=list)
    installed: list[tuple[str, str]] = field(default_factory=list)  # (phase, secret)
    retired: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "generation": self.generation_id,
            "previous_generation": self.previous_id,
            "phases": list(self.phases),
            "installed": [{"phase": p, "secret": s} for p, s in self.installed],
            "retired": list(self.retired),
        }
