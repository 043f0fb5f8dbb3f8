"""Prometheus metric definitions for batch upload processing."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

batch_runs_total = Counter(
    "batch_runs_total",
    "Batch processing runs by final batch status.",
    labelnames=["status"],
)

batch_items_total = Counter(
    "batch_items_total",
    "Batch items processed by final item status.",
    labelnames=["status"],
)

batch_processing_seconds = Histogram(
    "batch_processing_seconds",
    "Duration of a full batch processing run in seconds.",
)

batch_rollbacks_total = Counter(
    "batch_rollbacks_total",
    "Batch rollbacks by outcome.",
    labelnames=["outcome"],
)

__all__ = [
    "batch_items_total",
    "batch_processing_seconds",
    "batch_rollbacks_total",
    "batch_runs_total",
]
