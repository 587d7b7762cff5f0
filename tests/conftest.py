"""Shared fixtures for the agent runner tests."""

import pytest

from src.agentrun.domain.entities import RunContext
from src.agentrun.observability.timing import TimingRegistry


@pytest.fixture
def run_context(tmp_path):
    """Run context with an ephemeral working directory."""
    working_dir = tmp_path / "work"
    working_dir.mkdir()
    return RunContext(run_id="run-1", working_dir=working_dir)


@pytest.fixture
def timings():
    """Isolated timing registry."""
    return TimingRegistry()
