"""secretroll.activation.pipeline

The activation graph.

    mountSecrets
      └─ rootSecrets ──┬─ usersReady ──┐
                       └─ groupsReady ─┴─ chownKeys ─ nonRootSecrets ─ publishSecrets

Root-owned secrets go first so the account database can be built from them
(password hashes). Everything else waits for accounts to exist. The new
generation only becomes `current` after every secret is in place.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from secretroll.activation.generation import GenerationManager
from secretroll.activation.installer import SecretInstaller
from secretroll.activation.mount import StagingMount, make_mounter
from secretroll.activation.scheduler import PhaseScheduler
from secretroll.core.config import Config
from secretroll.core.exceptions import ConfigError, FilesystemError
from secretroll.core.types import Generation, RunReport, SecretSpec
from secretroll.security.accounts import AccountLifecycle, CommandLifecycle, SystemAccountResolver, UserGroupResolver
from secretroll.security.decryptor import AgeDecryptor, Decryptor

logger = logging.getLogger(__name__)

MOUNT_SECRETS = "mountSecrets"
ROOT_SECRETS = "rootSecrets"
USERS_READY = "usersReady"
GROUPS_READY = "groupsReady"
CHOWN_KEYS = "chownKeys"
NON_ROOT_SECRETS = "nonRootSecrets"
PUBLISH_SECRETS = "publishSecrets"


def partition_specs(specs: Iterable[SecretSpec]) -> tuple[list[SecretSpec], list[SecretSpec]]:
    """Split into (root-owned, everything else), each sorted by name."""

    root: list[SecretSpec] = []
    other: list[SecretSpec] = []
    for spec in sorted(specs, key=lambda s: s.name):
        (root if spec.is_root_owned else other).append(spec)
    return root, other


def _check_unique(specs: Sequence[SecretSpec]) -> None:
    seen: set[str] = set()
    for spec in specs:
        if spec.name in seen:
            raise ConfigError(f"duplicate secret name: {spec.name}")
        seen.add(spec.name)


class ActivationPipeline:
    def __init__(
        self,
        *,
        generations: GenerationManager,
        installer: SecretInstaller,
        resolver: UserGroupResolver,
        lifecycle: AccountLifecycle,
        keys_group: str = "keys",
    ):
        self.generations = generations
        self.installer = installer
        self.resolver = resolver
        self.lifecycle = lifecycle
        self.keys_group = keys_group
        self.report = RunReport()
        self._generation: Generation | None = None

    @property
    def generation(self) -> Generation:
        if self._generation is None:
            raise FilesystemError("no generation has been started in this run")
        return self._generation

    def _install_all(self, phase: str, specs: Sequence[SecretSpec], identities: Sequence[Path]) -> None:
        logger.info("secrets_installing", extra={"phase": phase, "count": len(specs)})
        for spec in specs:
            self.installer.install(spec, self.generation, identities)
            self.report.installed.append((phase, spec.name))

    def build(self, specs: Sequence[SecretSpec], identities: Sequence[Path]) -> PhaseScheduler:
        root, other = partition_specs(specs)
        scheduler = PhaseScheduler()

        def mount_secrets() -> None:
            self.generations.ensure_mount()
            self._generation = self.generations.begin_generation()
            self.report.generation_id = self._generation.id
            self.report.previous_id = self._generation.previous_id

        def chown_keys() -> None:
            gid = self.resolver.resolve_group(self.keys_group)
            self.generations.chown_staging(self.generation, gid)

        def publish_secrets() -> None:
            gen = self.generation
            self.generations.publish(gen)
            if self.generations.retire_old(gen.previous_id):
                self.report.retired.append(gen.previous_id)
            self.report.retired.extend(self.generations.sweep_stale(gen.id))

        scheduler.add(MOUNT_SECRETS, mount_secrets)
        scheduler.add(ROOT_SECRETS, lambda: self._install_all(ROOT_SECRETS, root, identities), after=[MOUNT_SECRETS])
        scheduler.add(USERS_READY, self.lifecycle.users_ready, after=[ROOT_SECRETS])
        scheduler.add(GROUPS_READY, self.lifecycle.groups_ready, after=[ROOT_SECRETS])
        scheduler.add(CHOWN_KEYS, chown_keys, after=[USERS_READY, GROUPS_READY, MOUNT_SECRETS])
        scheduler.add(
            NON_ROOT_SECRETS,
            lambda: self._install_all(NON_ROOT_SECRETS, other, identities),
            after=[USERS_READY, GROUPS_READY, MOUNT_SECRETS, CHOWN_KEYS],
        )
        scheduler.add(PUBLISH_SECRETS, publish_secrets, after=[NON_ROOT_SECRETS])
        return scheduler

    def run(self, specs: Sequence[SecretSpec], identities: Sequence[Path]) -> RunReport:
        """Run one activation. Raises PhaseError; `self.report` holds what got done."""

        self.report = RunReport()
        self._generation = None

        if not specs:
            logger.info("no_secrets_configured")
            return self.report
        if not identities:
            raise ConfigError("at least one identity is required to decrypt secrets")
        _check_unique(specs)

        scheduler = self.build(specs, identities)
        scheduler.run(on_complete=self.report.phases.append)

        logger.info(
            "activation_completed",
            extra={"generation": self.report.generation_id, "secrets": len(self.report.installed)},
        )
        return self.report


def build_pipeline(
    config: Config,
    *,
    resolver: UserGroupResolver | None = None,
    lifecycle: AccountLifecycle | None = None,
    decryptor: Decryptor | None = None,
    mounter: StagingMount | None = None,
) -> ActivationPipeline:
    """Wire the production collaborators from a validated Config."""

    resolver = resolver or SystemAccountResolver()
    generations = GenerationManager(
        config.secrets_mount_point,
        config.current_link,
        mounter or make_mounter(config.staging_fs),
    )
    installer = SecretInstaller(
        decryptor or AgeDecryptor(config.age_bin, locale=config.locale),
        resolver,
        config.current_link,
    )
    return ActivationPipeline(
        generations=generations,
        installer=installer,
        resolver=resolver,
        lifecycle=lifecycle or CommandLifecycle(config.hooks.users_ready, config.hooks.groups_ready),
        keys_group=config.keys_group,
    )
