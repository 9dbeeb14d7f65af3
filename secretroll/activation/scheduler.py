"""secretroll.activation.scheduler

Named phases with declared predecessors.

Phases run in topological order; ties keep declaration order so a given graph
always runs the same way. The first failing phase stops the run. Nothing is
rolled back: what earlier phases wrote stays on disk.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from secretroll.core.exceptions import ConfigError, PhaseError, SecretrollError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Phase:
    name: str
    run: Callable[[], None]
    after: tuple[str, ...] = ()


class PhaseScheduler:
    def __init__(self) -> None:
        self._phases: dict[str, Phase] = {}

    def add(self, name: str, run: Callable[[], None], *, after: Sequence[str] = ()) -> None:
        if name in self._phases:
            raise ConfigError(f"phase already declared: {name}")
        self._phases[name] = Phase(name=name, run=run, after=tuple(after))

    @property
    def names(self) -> list[str]:
        return list(self._phases)

    def order(self) -> list[str]:
        """Topological order (Kahn), stable with respect to declaration order."""

        for phase in self._phases.values():
            for dep in phase.after:
                if dep not in self._phases:
                    raise ConfigError(f"phase {phase.name!r} depends on unknown phase {dep!r}")

        pending = {name: set(p.after) for name, p in self._phases.items()}
        ordered: list[str] = []
        while pending:
            ready = [name for name, deps in pending.items() if not deps]
            if not ready:
                raise ConfigError(f"phase dependency cycle among: {', '.join(sorted(pending))}")
            name = ready[0]  # dicts keep declaration order
            ordered.append(name)
            del pending[name]
            for deps in pending.values():
                deps.discard(name)
        return ordered

    def run(self, *, on_complete: Callable[[str], None] | None = None) -> list[str]:
        """Run every phase. Returns the names in the order they completed."""

        completed: list[str] = []
        for name in self.order():
            start = time.perf_counter()
            logger.info("phase_started", extra={"phase": name})
            try:
                self._phases[name].run()
            except SecretrollError as e:
                logger.error("phase_failed", extra={"phase": name, "secret": e.secret, "error": str(e)})
                raise PhaseError(f"phase {name} failed: {e}", phase=name, secret=e.secret) from e
            except OSError as e:
                logger.error("phase_failed", extra={"phase": name, "error": str(e)})
                raise PhaseError(f"phase {name} failed: {e}", phase=name) from e

            completed.append(name)
            if on_complete is not None:
                on_complete(name)
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.info("phase_completed", extra={"phase": name, "duration_ms": duration_ms})
        return completed
