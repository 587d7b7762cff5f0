"""Tracing, token metrics and model timing."""

from .metrics import (
    INPUT_TOKEN_COUNT,
    OUTPUT_TOKEN_COUNT,
    TOTAL_TOKEN_COUNT,
    InMemoryMetrics,
    send_token_metrics,
)
from .timing import TIMINGS, TimingChatModelListener, TimingRegistry
from .tracing import (
    AgentObservability,
    LangfuseObservability,
    LangfuseObservabilityProvider,
    NoopAgentObservability,
    NoopObservabilityProvider,
    ObservabilityProvider,
)

__all__ = [
    "INPUT_TOKEN_COUNT",
    "OUTPUT_TOKEN_COUNT",
    "TOTAL_TOKEN_COUNT",
    "InMemoryMetrics",
    "send_token_metrics",
    "TIMINGS",
    "TimingChatModelListener",
    "TimingRegistry",
    "AgentObservability",
    "LangfuseObservability",
    "LangfuseObservabilityProvider",
    "NoopAgentObservability",
    "NoopObservabilityProvider",
    "ObservabilityProvider",
]
