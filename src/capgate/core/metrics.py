"""Prometheus metrics for capgate."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Gateway invocations
capgate_invocations_total = Counter(
    "capgate_invocations_total",
    "Total gateway invocations by terminal outcome",
    ["protocol", "capability", "stream", "outcome"],
)
capgate_invocation_duration_seconds = Histogram(
    "capgate_invocation_duration_seconds",
    "Gateway invocation duration in seconds (resolve to terminal event)",
    ["protocol", "stream"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)
capgate_errors_total = Counter(
    "capgate_errors_total",
    "Total gateway errors by kind",
    ["kind"],
)

# Read-through config cache
capgate_cache_lookups_total = Counter(
    "capgate_cache_lookups_total",
    "Config cache lookups by result",
    ["result"],
)
