from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

# pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from secretroll.activation.generation import GenerationManager  # noqa: E402
from secretroll.activation.installer import SecretInstaller  # noqa: E402
from secretroll.activation.mount import DirectoryMounter  # noqa: E402
from secretroll.activation.pipeline import ActivationPipeline  # noqa: E402
from secretroll.core.types import SecretSpec  # noqa: E402
from tests._doubles import (  # noqa: E402
    FAKE_AGE_SCRIPT,
    FakeDecryptor,
    RecordingLifecycle,
    StaticResolver,
    write_cipher,
)


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture()
def layout(temp_dir: Path) -> dict[str, Path]:
    """Staging root, current link, ciphertext dir, and a good identity file."""

    keys = temp_dir / "keys"
    keys.mkdir()
    identity = keys / "host_ed25519"
    identity.write_text("fake identity\n", encoding="utf-8")
    return {
        "mount_point": temp_dir / "agenix.d",
        "current_link": temp_dir / "run" / "agenix",
        "ciphertexts": temp_dir / "ciphertexts",
        "identity": identity,
    }


@pytest.fixture()
def journal() -> list[tuple]:
    return []


@pytest.fixture()
def resolver() -> StaticResolver:
    return StaticResolver()


@pytest.fixture()
def decryptor(journal: list[tuple], layout: dict[str, Path]) -> FakeDecryptor:
    return FakeDecryptor(journal, current_link=layout["current_link"])


@pytest.fixture()
def generations(layout: dict[str, Path]) -> GenerationManager:
    return GenerationManager(layout["mount_point"], layout["current_link"], DirectoryMounter())


@pytest.fixture()
def installer(decryptor: FakeDecryptor, resolver: StaticResolver, layout: dict[str, Path]) -> SecretInstaller:
    return SecretInstaller(decryptor, resolver, layout["current_link"])


@pytest.fixture()
def pipeline(
    generations: GenerationManager,
    installer: SecretInstaller,
    resolver: StaticResolver,
    journal: list[tuple],
) -> ActivationPipeline:
    return ActivationPipeline(
        generations=generations,
        installer=installer,
        resolver=resolver,
        lifecycle=RecordingLifecycle(journal),
        keys_group="keys",
    )


@pytest.fixture()
def make_spec(layout: dict[str, Path]):
    """Build a SecretSpec with a ciphertext on disk."""

    def _make(name: str, plaintext: bytes | None = None, **kw) -> SecretSpec:
        src = write_cipher(layout["ciphertexts"] / f"{name}.age", plaintext if plaintext is not None else name.encode())
        kw.setdefault("destination_path", layout["current_link"] / name)
        return SecretSpec(name=name, source_file=src, **kw)

    return _make


@pytest.fixture()
def fake_age(temp_dir: Path) -> Path:
    script = temp_dir / "bin" / "fake-age"
    script.parent.mkdir(parents=True, exist_ok=True)
    script.write_text(FAKE_AGE_SCRIPT, encoding="utf-8")
    script.chmod(0o755)
    return script


@pytest.fixture(autouse=True)
def _restore_secretroll_logger():
    """configure_logging() mutates the package logger; keep tests isolated."""

    logger = logging.getLogger("secretroll")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]
