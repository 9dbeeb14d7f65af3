"""secretroll.cli

Command line interface entry point.

Design constraints:
- argparse-based.
- Lazy imports: parsing `--help` should not touch the filesystem or pydantic.
- Exit codes: 0 success, 1 a phase failed, 2 configuration error.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

EPILOG = "Decrypt once, publish atomically, forget the previous generation."


@dataclass(frozen=True)
class CliContext:
    config_path: Path | None


def _default_config_path() -> Path:
    from secretroll.core.config import DEFAULT_CONFIG_PATH

    env = os.getenv("SECRETROLL_CONFIG")
    return Path(env) if env else DEFAULT_CONFIG_PATH


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secretroll",
        description="Materialize age-encrypted secrets at activation time.",
        epilog=EPILOG,
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: $SECRETROLL_CONFIG or /etc/secretroll/config.yaml).",
    )

    sub = parser.add_subparsers(dest="command")

    p_apply = sub.add_parser("apply", help="Decrypt all secrets into a new generation and publish it")
    p_apply.add_argument("--mount-point", default=None, help="Override the staging mount point.")
    p_apply.add_argument(
        "--identity",
        action="append",
        type=Path,
        default=None,
        help="Identity file to decrypt with. Repeatable; replaces configured identities.",
    )
    p_apply.add_argument("--json", action="store_true", help="Print the run report as JSON.")

    p_status = sub.add_parser("status", help="Print the current generation and configured secrets")
    p_status.add_argument("--json", action="store_true", help="Machine-readable output.")

    return parser


def _print_version() -> None:
    from secretroll import __version__

    print(f"secretroll v{__version__}")


def _load_config(ctx: CliContext):
    from secretroll.core.config import Config
    from secretroll.core.exceptions import ConfigError

    path = ctx.config_path or _default_config_path()
    if path.exists():
        return Config.from_yaml(path)
    if ctx.config_path is not None:
        raise ConfigError(f"Config file not found: {path}")
    return Config.load()


def _cmd_apply(ctx: CliContext, args: argparse.Namespace) -> int:
    from secretroll.activation.pipeline import build_pipeline
    from secretroll.core.exceptions import ConfigError, PhaseError
    from secretroll.core.logging import configure_logging

    try:
        config = _load_config(ctx)
        overrides: dict[str, Any] = {}
        if args.mount_point is not None:
            overrides["secrets_mount_point"] = args.mount_point
        if args.identity:
            overrides["identity_paths"] = [str(p) for p in args.identity]
        config = config.with_overrides(overrides)
        configure_logging(config.logging)
        identities = config.require_identities()
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    pipeline = build_pipeline(config)
    try:
        report = pipeline.run(config.secret_specs(), identities)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except PhaseError as e:
        where = f"phase {e.phase}" + (f", secret {e.secret}" if e.secret else "")
        print(f"error: activation failed in {where}: {e.__cause__ or e}", file=sys.stderr)
        if args.json:
            out = {"ok": False, "phase": e.phase, "secret": e.secret, **pipeline.report.to_dict()}
            print(json.dumps(out, indent=2, sort_keys=True))
        return 1

    if args.json:
        print(json.dumps({"ok": True, **report.to_dict()}, indent=2, sort_keys=True))
        return 0

    if report.generation_id is None:
        print("no secrets configured")
        return 0
    print(f"generation {report.generation_id} published ({len(report.installed)} secrets)")
    if report.retired:
        print(f"retired generations: {', '.join(str(i) for i in report.retired)}")
    return 0


def _cmd_status(ctx: CliContext, args: argparse.Namespace) -> int:
    from secretroll.activation.generation import GenerationManager
    from secretroll.core.exceptions import ConfigError

    try:
        config = _load_config(ctx)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    gens = GenerationManager(config.secrets_mount_point, config.current_link)
    specs = config.secret_specs()
    status = {
        "mount_point": config.secrets_mount_point,
        "current_link": config.current_link,
        "generation": gens.current_generation(),
        "generations_on_disk": gens.existing_ids(),
        "secrets": [
            {
                "name": s.name,
                "path": str(s.destination_path),
                "owner": s.owner,
                "group": s.group,
                "mode": s.mode,
                "root_owned": s.is_root_owned,
            }
            for s in specs
        ],
    }

    if args.json:
        print(json.dumps(status, indent=2, sort_keys=True))
        return 0

    print("secretroll status")
    print(f"- mount point: {status['mount_point']}")
    print(f"- current: {status['current_link']} (generation {status['generation']})")
    print(f"- generations on disk: {status['generations_on_disk']}")
    print(f"- secrets: {len(specs)}")
    for s in status["secrets"]:
        tag = "root" if s["root_owned"] else "user"
        print(f"  {s['name']:<24} {s['mode']} {s['owner']}:{s['group'] or '-'} [{tag}] -> {s['path']}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    ctx = CliContext(config_path=args.config)

    dispatch: dict[str, Callable[[CliContext, argparse.Namespace], int]] = {
        "apply": _cmd_apply,
        "status": _cmd_status,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    return int(fn(ctx, args))


if __name__ == "__main__":
    raise SystemExit(main())
