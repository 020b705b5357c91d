# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Prometheus metrics for the coordination primitives.

Metrics are registered once, at import, with the default Prometheus registry.
Expose them with prometheus_client.start_http_server or any ASGI/WSGI exporter.
"""

from prometheus_client import Counter, Gauge

from .constants import (
    BULKHEAD_ACTIVE_CALLS,
    BULKHEAD_REJECTIONS_TOTAL,
    CACHE_DELETES_TOTAL,
    CACHE_HITS_TOTAL,
    CACHE_MISSES_TOTAL,
    CACHE_SETS_TOTAL,
    CIRCUIT_BREAKER_FAILURES_TOTAL,
    CIRCUIT_BREAKER_OPENED_TOTAL,
    CIRCUIT_BREAKER_REJECTIONS_TOTAL,
    RATE_LIMIT_DECISIONS_TOTAL,
    STORE_ERRORS_TOTAL,
)

RATE_LIMIT_DECISIONS = Counter(
    RATE_LIMIT_DECISIONS_TOTAL,
    "Rate limit decisions by outcome",
    ["outcome"],
)

CIRCUIT_REJECTIONS = Counter(
    CIRCUIT_BREAKER_REJECTIONS_TOTAL,
    "Calls rejected by an open circuit",
    ["breaker", "state"],
)

CIRCUIT_FAILURES = Counter(
    CIRCUIT_BREAKER_FAILURES_TOTAL,
    "Task failures counted against a circuit breaker",
    ["breaker"],
)

CIRCUIT_OPENED = Counter(
    CIRCUIT_BREAKER_OPENED_TOTAL,
    "Circuit transitions to OPEN",
    ["breaker"],
)

BULKHEAD_REJECTIONS = Counter(
    BULKHEAD_REJECTIONS_TOTAL,
    "Calls rejected by a saturated bulkhead",
    ["pool"],
)

BULKHEAD_ACTIVE = Gauge(
    BULKHEAD_ACTIVE_CALLS,
    "Calls currently running inside a bulkhead pool in this process",
    ["pool"],
)

CACHE_HITS = Counter(CACHE_HITS_TOTAL, "Cache hits")
CACHE_MISSES = Counter(CACHE_MISSES_TOTAL, "Cache misses")
CACHE_SETS = Counter(CACHE_SETS_TOTAL, "Cache writes")
CACHE_DELETES = Counter(CACHE_DELETES_TOTAL, "Cache keys deleted")

STORE_ERRORS = Counter(
    STORE_ERRORS_TOTAL,
    "Shared store errors seen by a primitive",
    ["primitive", "policy"],
)
