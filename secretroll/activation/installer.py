"""secretroll.activation.installer

One secret, six steps:

1) pick the true destination (inside the generation, or the path itself)
2) make parent directories
3) decrypt into `<dest>.tmp` under umask u=r,g=,o=
4) chmod, then chown (tighten first, hand over second)
5) rename over the destination
6) point `path` at `<current_link>/<name>` if it is not that already

The temp file shares a directory with the destination, so step 5 is a same-filesystem rename.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Iterator, Sequence
from pathlib import Path

from secretroll.core.exceptions import FilesystemError, SecretrollError
from secretroll.core.types import Generation, SecretSpec
from secretroll.security.accounts import UserGroupResolver, resolve_ownership
from secretroll.security.decryptor import Decryptor

logger = logging.getLogger(__name__)

DECRYPT_UMASK = 0o277  # u=r,g=,o=


@contextlib.contextmanager
def restricted_umask(mask: int = DECRYPT_UMASK) -> Iterator[None]:
    old = os.umask(mask)
    try:
        yield
    finally:
        os.umask(old)


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink()


class SecretInstaller:
    def __init__(self, decryptor: Decryptor, resolver: UserGroupResolver, current_link: str | Path):
        self.decryptor = decryptor
        self.resolver = resolver
        self.current_link = Path(current_link)

    def canonical_path(self, spec: SecretSpec) -> Path:
        return self.current_link / spec.name

    def true_destination(self, spec: SecretSpec, generation: Generation) -> Path:
        if spec.symlink:
            return generation.path / spec.name
        return Path(spec.destination_path)

    def install(self, spec: SecretSpec, generation: Generation, identities: Sequence[Path]) -> Path:
        true_dest = self.true_destination(spec, generation)
        tmp = true_dest.with_name(true_dest.name + ".tmp")
        dest = Path(spec.destination_path)
        needs_link = spec.symlink and dest != self.canonical_path(spec)

        try:
            true_dest.parent.mkdir(parents=True, exist_ok=True)
            # The canonical path lives under the current link; creating its parent would shadow the link.
            if not spec.symlink or needs_link:
                dest.parent.mkdir(parents=True, exist_ok=True)
            _discard(tmp)
        except OSError as e:
            raise FilesystemError(f"cannot prepare {true_dest}: {e}", secret=spec.name) from e

        logger.info(
            "secret_decrypting",
            extra={"secret": spec.name, "source": str(spec.source_file), "dest": str(true_dest)},
        )

        try:
            uid, gid = resolve_ownership(self.resolver, spec.owner, spec.group)
            with restricted_umask():
                self.decryptor.decrypt_to(identities, Path(spec.source_file), tmp)
            os.chmod(tmp, spec.mode_bits)
            os.chown(tmp, uid, gid)
            os.replace(tmp, true_dest)
        except SecretrollError as e:
            _discard(tmp)
            e.secret = e.secret or spec.name
            raise
        except OSError as e:
            _discard(tmp)
            raise FilesystemError(f"cannot install {true_dest}: {e}", secret=spec.name) from e

        if needs_link:
            self._link(spec)
        return true_dest

    def _link(self, spec: SecretSpec) -> None:
        dest = Path(spec.destination_path)
        target = self.canonical_path(spec)

        with contextlib.suppress(OSError):
            if dest.is_symlink() and os.readlink(dest) == str(target):
                return
        if dest.is_dir() and not dest.is_symlink():
            raise FilesystemError(f"{dest} is a directory, cannot symlink secret there", secret=spec.name)

        tmp = dest.with_name(f".{dest.name}.link.tmp")
        try:
            _discard(tmp)
            os.symlink(target, tmp)
            os.replace(tmp, dest)
        except OSError as e:
            _discard(tmp)
            raise FilesystemError(f"cannot symlink {dest} -> {target}: {e}", secret=spec.name) from e

        logger.debug("secret_linked", extra={"secret": spec.name, "path": str(dest), "target": str(target)})
