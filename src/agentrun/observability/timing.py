"""
Process-wide chat model timing registry.

Durations are recorded per run id. The orchestrator registers a run before
the first model call and must clear it during teardown, otherwise timings
leak into unrelated runs.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from ..domain.ports import IChatModelListener

logger = logging.getLogger(__name__)


class TimingRegistry:
    """Thread-safe map of run id to recorded request durations."""

    def __init__(self):
        self._lock = threading.Lock()
        self._durations: dict[str, list[float]] = {}

    def register(self, run_id: str) -> None:
        with self._lock:
            self._durations.setdefault(run_id, [])

    def record(self, run_id: str, duration_ms: float) -> None:
        with self._lock:
            if run_id in self._durations:
                self._durations[run_id].append(duration_ms)

    def durations(self, run_id: str) -> list[float]:
        with self._lock:
            return list(self._durations.get(run_id, []))

    def total(self, run_id: str) -> Optional[float]:
        values = self.durations(run_id)
        return sum(values) if values else None

    def clear(self, run_id: str) -> None:
        with self._lock:
            self._durations.pop(run_id, None)

    def active_runs(self) -> list[str]:
        with self._lock:
            return list(self._durations)


TIMINGS = TimingRegistry()


class TimingChatModelListener(IChatModelListener):
    """Records request durations of one run into the shared registry."""

    def __init__(self, run_id: str, registry: TimingRegistry = TIMINGS):
        self.run_id = run_id
        self.registry = registry
        registry.register(run_id)

    def on_request(self, model_name: str) -> None:
        logger.debug(f"Model {model_name} request started (run {self.run_id})")

    def on_response(self, model_name: str, duration_ms: float) -> None:
        self.registry.record(self.run_id, duration_ms)
        logger.debug(f"Model {model_name} answered in {duration_ms:.1f}ms (run {self.run_id})")

    def clear(self) -> None:
        self.registry.clear(self.run_id)
