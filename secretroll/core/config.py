"""secretroll.core.config

Two config surfaces only:
1) a YAML file (`/etc/secretroll/config.yaml` or `--config`)
2) environment variables (`SECRETROLL_*`, nested with `__`)

Everything the pipeline consumes is validated here, once, before any phase runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from secretroll.core.exceptions import ConfigError
from secretroll.core.types import MODE_RE, SecretSpec

DEFAULT_CONFIG_PATH = Path("/etc/secretroll/config.yaml")

def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _check_mount_path(v: str) -> str:
    if not v.strip():
        raise ValueError("must be non-empty")
    if not v.startswith("/"):
        raise ValueError(f"must be an absolute path: {v!r}")
    if len(v) > 1 and v.endswith("/"):
        raise ValueError(f"must not end with a path separator: {v!r}")
    return v


def _summarize(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


class SecretConfig(BaseModel):
    """One secret as written in the config file."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    file: Path
    name: str | None = None  # defaults to the mapping key
    path: Path | None = None  # defaults to <current_link>/<name>
    mode: str = "0400"
    owner: str = "0"
    group: str | None = None
    symlink: bool = True

    @field_validator("mode")
    @classmethod
    def mode_must_be_octal(cls, v: str) -> str:
        v = v.strip()
        if not MODE_RE.match(v):
            raise ValueError(f"mode must be an octal permission string like 0400, got {v!r}")
        return v

    @field_validator("owner", "group")
    @classmethod
    def names_must_not_be_blank(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("must not be blank")
        return v


class HooksConfig(BaseModel):
    """Commands run when the user/group databases may be built."""

    users_ready: list[str] | None = None
    groups_ready: list[str] | None = None


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    age_bin: str = "rage"
    locale: str = "C.UTF-8"

    secrets_mount_point: str = "/run/agenix.d"
    current_link: str = "/run/agenix"
    staging_fs: Literal["ramfs", "directory"] = "ramfs"
    keys_group: str = "keys"

    identity_paths: list[Path] = Field(default_factory=list)
    discover_host_keys: bool = True
    ssh_dir: Path = Path("/etc/ssh")

    hooks: HooksConfig = Field(default_factory=HooksConfig)
    secrets: dict[str, SecretConfig] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "SECRETROLL_", "env_nested_delimiter": "__"}

    @field_validator("secrets_mount_point", "current_link")
    @classmethod
    def mount_paths_are_well_formed(cls, v: str) -> str:
        return _check_mount_path(v)

    @model_validator(mode="after")
    def secret_names_are_unique(self) -> Config:
        seen: dict[str, str] = {}
        for key, sc in self.secrets.items():
            name = sc.name or key
            if "/" in name or name in {".", ".."}:
                raise ValueError(f"secret name must be a plain file name: {name!r}")
            if name in seen:
                raise ValueError(f"secret name {name!r} used by both {seen[name]!r} and {key!r}")
            seen[name] = key
        return self

    # --- loading ---

    @classmethod
    def load(cls, **values: Any) -> Config:
        """Construct from keyword values + env, reporting failures as ConfigError."""

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"invalid configuration: {_summarize(e)}") from e

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file is not valid YAML: {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")

        return cls.load(**raw)

    def with_overrides(self, overrides: dict[str, Any]) -> Config:
        """Return a re-validated copy with CLI overrides applied."""

        if not overrides:
            return self
        merged = _deep_merge(self.model_dump(), overrides)
        return type(self).load(**merged)

    # --- derived views ---

    def secret_specs(self) -> list[SecretSpec]:
        specs: list[SecretSpec] = []
        link = Path(self.current_link)
        for key, sc in sorted(self.secrets.items()):
            name = sc.name or key
            specs.append(
                SecretSpec(
                    name=name,
                    source_file=sc.file,
                    destination_path=sc.path or (link / name),
                    mode=sc.mode,
                    owner=sc.owner,
                    group=sc.group,
                    symlink=sc.symlink,
                )
            )
        return specs

    def resolved_identities(self) -> list[Path]:
        """Configured identities, or host keys from `ssh_dir` when none are configured."""

        if self.identity_paths:
            return list(self.identity_paths)
        if not self.discover_host_keys:
            return []

        from secretroll.security.identity import discover_host_identities

        return discover_host_identities(self.ssh_dir)

    def require_identities(self) -> list[Path]:
        identities = self.resolved_identities()
        if self.secrets and not identities:
            raise ConfigError("identity_paths must be set (no usable ssh host keys were found either)")
        return identities
