# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability for the chat resilience layer.

Prometheus counters and gauges for every primitive, plus the metric name
constants they are registered under.
"""

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
    METRIC_PREFIX,
    RATE_LIMIT_DECISIONS_TOTAL,
    STORE_ERRORS_TOTAL,
)
from .metrics import (
    BULKHEAD_ACTIVE,
    BULKHEAD_REJECTIONS,
    CACHE_DELETES,
    CACHE_HITS,
    CACHE_MISSES,
    CACHE_SETS,
    CIRCUIT_FAILURES,
    CIRCUIT_OPENED,
    CIRCUIT_REJECTIONS,
    RATE_LIMIT_DECISIONS,
    STORE_ERRORS,
)

__all__ = [
    "BULKHEAD_ACTIVE",
    "BULKHEAD_ACTIVE_CALLS",
    "BULKHEAD_REJECTIONS",
    "BULKHEAD_REJECTIONS_TOTAL",
    "CACHE_DELETES",
    "CACHE_DELETES_TOTAL",
    "CACHE_HITS",
    "CACHE_HITS_TOTAL",
    "CACHE_MISSES",
    "CACHE_MISSES_TOTAL",
    "CACHE_SETS",
    "CACHE_SETS_TOTAL",
    "CIRCUIT_BREAKER_FAILURES_TOTAL",
    "CIRCUIT_BREAKER_OPENED_TOTAL",
    "CIRCUIT_BREAKER_REJECTIONS_TOTAL",
    "CIRCUIT_FAILURES",
    "CIRCUIT_OPENED",
    "CIRCUIT_REJECTIONS",
    "METRIC_PREFIX",
    "RATE_LIMIT_DECISIONS",
    "RATE_LIMIT_DECISIONS_TOTAL",
    "STORE_ERRORS",
    "STORE_ERRORS_TOTAL",
]
