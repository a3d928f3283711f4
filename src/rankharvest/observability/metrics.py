"""
Defines the Prometheus metrics emitted by the harvesting engine.
"""

from __future__ import annotations

from typing import Any, Dict

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing
        try:
            return metric_cls(name, documentation, *args, **kwargs)
        except ValueError:
            return _PROM_REGISTRY._names_to_collectors[name]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)
Histogram = _duplicate_safe_factory(_OrigHistogram)

METRICS: Dict[str, Any] = {
    "harvests": Counter(
        "rankharvest_harvests_total",
        "Target harvests by outcome",
        ["status"],
    ),
    "retries": Counter(
        "rankharvest_retries_total",
        "Retry attempts of whole target walks",
        ["kind"],
    ),
    "cache_lookups": Counter(
        "rankharvest_cache_lookups_total",
        "Cache lookups by result",
        ["result"],
    ),
    "estimator_skips": Counter(
        "rankharvest_estimator_skips_total",
        "Full page walks avoided because the first page was unchanged",
    ),
    "harvest_duration": Histogram(
        "rankharvest_harvest_duration_seconds",
        "Time spent harvesting one target",
        buckets=(1, 5, 15, 30, 60, 120, 300),
    ),
    "sweep_duration": Histogram(
        "rankharvest_sweep_duration_seconds",
        "Time spent on one full sweep",
        buckets=(60, 300, 900, 1800, 3600, 7200),
    ),
}


def increment(name: str, value: float = 1.0, **labels: Any) -> None:
    """Increment a counter metric, ignoring unknown names."""
    metric = METRICS.get(name)
    if metric is None:
        return
    if labels:
        metric.labels(**labels).inc(value)
    else:
        metric.inc(value)


def observe(name: str, value: float) -> None:
    """Observe a histogram metric, ignoring unknown names."""
    metric = METRICS.get(name)
    if metric is not None:
        metric.observe(value)


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP."""
    start_http_server(port)
