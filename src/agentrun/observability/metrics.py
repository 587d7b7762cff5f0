"""
Token usage counters.

The host engine usually supplies its own recorder; the in-memory one is
used when it does not.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict

from ..domain.entities import TokenUsage
from ..domain.ports import IMetricsRecorder

logger = logging.getLogger(__name__)

INPUT_TOKEN_COUNT = "input.token.count"
OUTPUT_TOKEN_COUNT = "output.token.count"
TOTAL_TOKEN_COUNT = "total.token.count"


class InMemoryMetrics(IMetricsRecorder):
    """Counters kept in process memory, keyed by name and tags."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, tuple[tuple[str, str], ...]], float] = defaultdict(float)
        self.calls: list[tuple[str, float, dict[str, str]]] = []

    def counter(self, name: str, value: float, **tags: str) -> None:
        key = (name, tuple(sorted(tags.items())))
        with self._lock:
            self._counters[key] += value
            self.calls.append((name, value, dict(tags)))

    def value(self, name: str, **tags: str) -> float:
        with self._lock:
            if tags:
                return self._counters.get((name, tuple(sorted(tags.items()))), 0.0)
            return sum(v for (n, _), v in self._counters.items() if n == name)


def send_token_metrics(
    recorder: IMetricsRecorder, usage: TokenUsage, **tags: str
) -> None:
    """Increment the three token counters once each."""
    recorder.counter(INPUT_TOKEN_COUNT, usage.input_tokens, unit="token", **tags)
    recorder.counter(OUTPUT_TOKEN_COUNT, usage.output_tokens, unit="token", **tags)
    recorder.counter(TOTAL_TOKEN_COUNT, usage.total_tokens, unit="token", **tags)
