"""
Scoped resource guards.

Every resource acquired for a run registers a release guard. Guards are
released independently: one failing release is logged and never stops
the others.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

Release = Callable[[], Union[Awaitable[Any], Any]]


class ReleasePhase(IntEnum):
    """Release order; guards of the same phase keep registration order."""

    TOOLS = 0
    MEMORY = 1
    CONNECTIONS = 2
    OBSERVABILITY = 3
    INSTRUMENTATION = 4


@dataclass
class ReleaseFailure:
    """A guard whose release raised.

    Attributes:
        name: Guard name
        error: Raised exception
        propagate: Whether the failure must reach the caller when the run
            otherwise succeeded
    """

    name: str
    error: Exception
    propagate: bool = False


@dataclass
class _Guard:
    name: str
    release: Release
    phase: ReleasePhase
    propagate: bool
    released: bool = False


class ResourceScope:
    """Collects release guards for one run."""

    def __init__(self):
        self._guards: list[_Guard] = []

    def push(
        self,
        name: str,
        release: Release,
        phase: ReleasePhase = ReleasePhase.TOOLS,
        propagate: bool = False,
    ) -> None:
        self._guards.append(_Guard(name, release, phase, propagate))

    def __len__(self) -> int:
        return len(self._guards)

    async def release_all(self) -> list[ReleaseFailure]:
        """Release every guard once, returning the failures."""
        failures: list[ReleaseFailure] = []
        for guard in sorted(self._guards, key=lambda g: g.phase):
            if guard.released:
                continue
            guard.released = True
            try:
                result = guard.release()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Unable to release {guard.name}: {e}")
                failures.append(ReleaseFailure(guard.name, e, guard.propagate))
        return failures
