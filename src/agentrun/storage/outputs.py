"""
Output file storage.

Copies files the agent produced in the run's working directory into
durable storage and reports where each one landed.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiofiles

from ..domain.entities import RunContext
from ..domain.exceptions import ConfigurationError, OutputFileError
from ..domain.ports import IOutputStorage

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class LocalOutputStorage(IOutputStorage):
    """Stores output files under ``<base_dir>/<run_id>/``."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    async def put(self, run_context: RunContext, name: str, source: Path) -> str:
        target = self.base_dir / run_context.run_id / name
        target.parent.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(source, "rb") as src, aiofiles.open(target, "wb") as dst:
            while True:
                chunk = await src.read(_CHUNK_SIZE)
                if not chunk:
                    break
                await dst.write(chunk)

        logger.debug(f"Stored output file {name} at {target}")
        return target.resolve().as_uri()


def resolve_output_path(working_dir: Path, relative: str) -> Path:
    """Resolve a declared output path, refusing paths outside the working dir."""
    base = working_dir.resolve()
    candidate = (base / relative).resolve()
    if candidate != base and base not in candidate.parents:
        raise OutputFileError(f"Output file {relative!r} is outside the working directory")
    return candidate


async def gather_output_files(
    storage: IOutputStorage,
    run_context: RunContext,
    declared: tuple[str, ...] | list[str],
) -> dict[str, str]:
    """Copy declared output files to storage and map name to location.

    Returns an empty map when nothing is declared.
    """
    if not declared:
        return {}
    if run_context.working_dir is None:
        raise ConfigurationError("Output files are declared but the run has no working directory")

    locations: dict[str, str] = {}
    for relative in declared:
        path = resolve_output_path(run_context.working_dir, relative)
        if not path.is_file():
            raise OutputFileError(f"Declared output file {relative!r} was not produced")
        locations[relative] = await storage.put(run_context, relative, path)

    logger.info(f"Gathered {len(locations)} output files for run {run_context.run_id}")
    return locations
