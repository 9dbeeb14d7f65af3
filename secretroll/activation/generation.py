"""secretroll.activation.generation

Generations: numbered snapshot directories on the staging mount.

    <mount_point>/<id>/           one per activation run
    <current_link> -> <mount_point>/<id>

Rules:
- ids only go up. A directory left by a failed run still consumes its id.
- publish is a single rename of a symlink. Observers see old or new, never half.
- a generation is removed only once the current link points past it.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
from pathlib import Path

from secretroll.activation.mount import DirectoryMounter, StagingMount
from secretroll.core.exceptions import FilesystemError, MountError
from secretroll.core.types import Generation

logger = logging.getLogger(__name__)

STAGING_MODE = 0o751


class GenerationManager:
    def __init__(self, mount_point: str | Path, current_link: str | Path, mounter: StagingMount | None = None):
        self.mount_point = Path(mount_point)
        self.current_link = Path(current_link)
        self.mounter = mounter or DirectoryMounter()

    def generation_path(self, gen_id: int) -> Path:
        return self.mount_point / str(gen_id)

    # --- mount ---

    def ensure_mount(self) -> None:
        """Create the staging root and make sure it is mounted. Idempotent."""

        try:
            self.mount_point.mkdir(parents=True, exist_ok=True)
            os.chmod(self.mount_point, STAGING_MODE)
            if self.mounter.is_mounted(self.mount_point):
                return
            self.mounter.mount(self.mount_point)
            os.chmod(self.mount_point, STAGING_MODE)
        except OSError as e:
            raise MountError(f"cannot prepare staging mount {self.mount_point}: {e}") from e

        logger.info("staging_mounted", extra={"mount_point": str(self.mount_point)})

    # --- ids ---

    def current_generation(self) -> int:
        """Id the current link points at. Missing or unreadable link counts as 0."""

        try:
            target = os.readlink(self.current_link)
        except OSError:
            return 0
        name = Path(target).name
        return int(name) if name.isdigit() else 0

    def existing_ids(self) -> list[int]:
        try:
            entries = list(self.mount_point.iterdir())
        except OSError:
            return []
        return sorted(int(p.name) for p in entries if p.name.isdigit() and p.is_dir() and not p.is_symlink())

    def begin_generation(self) -> Generation:
        previous = self.current_generation()
        next_id = max([previous, *self.existing_ids()]) + 1
        path = self.generation_path(next_id)

        try:
            path.mkdir(mode=STAGING_MODE)
            os.chmod(path, STAGING_MODE)  # mkdir mode is filtered by umask
        except OSError as e:
            raise FilesystemError(f"cannot create generation {next_id} at {path}: {e}") from e

        logger.info("generation_started", extra={"generation": next_id, "previous": previous})
        return Generation(id=next_id, path=path, previous_id=previous)

    # --- publish / retire ---

    def publish(self, generation: Generation) -> None:
        """Atomically repoint the current link at `generation`."""

        link = self.current_link
        if link.is_dir() and not link.is_symlink():
            raise FilesystemError(f"{link} is a directory, refusing to replace it with a symlink")

        tmp = link.with_name(f".{link.name}.{generation.id}.tmp")
        try:
            link.parent.mkdir(parents=True, exist_ok=True)
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            os.symlink(generation.path, tmp)
            os.replace(tmp, link)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise FilesystemError(f"cannot publish generation {generation.id} at {link}: {e}") from e

        logger.info("generation_published", extra={"generation": generation.id, "link": str(link)})

    def retire_old(self, previous_id: int) -> bool:
        """Remove a superseded generation. Best effort: failures are logged, not raised."""

        if previous_id <= 0:
            return False
        if previous_id == self.current_generation():
            logger.warning("generation_retire_refused", extra={"generation": previous_id, "reason": "published"})
            return False

        path = self.generation_path(previous_id)
        if not path.exists():
            return False
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("generation_retire_failed", extra={"generation": previous_id, "error": str(e)})
            return False

        logger.info("generation_retired", extra={"generation": previous_id})
        return True

    def sweep_stale(self, keep_id: int) -> list[int]:
        """Remove generations older than `keep_id` that failed runs left behind."""

        removed: list[int] = []
        for gen_id in self.existing_ids():
            if gen_id >= keep_id:
                continue
            if self.retire_old(gen_id):
                removed.append(gen_id)
        return removed

    # --- access ---

    def chown_staging(self, generation: Generation, gid: int) -> None:
        """Hand the staging root and `generation` to the access group (owner unchanged)."""

        for p in (self.mount_point, generation.path):
            try:
                os.chown(p, -1, gid)
            except OSError as e:
                raise FilesystemError(f"cannot chown {p} to gid {gid}: {e}") from e

        logger.info("staging_chowned", extra={"generation": generation.id, "gid": gid})
