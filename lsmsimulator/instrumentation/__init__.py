"""Metrics collection and history."""

from lsmsimulator.instrumentation.history import MetricsHistory
from lsmsimulator.instrumentation.metrics import Counters, MetricsAggregator, MetricsSnapshot

__all__ = [
    "Counters",
    "MetricsAggregator",
    "MetricsHistory",
    "MetricsSnapshot",
]
