# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the `chat_resilience_` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Gauges use present-tense descriptive names

Label Best Practices:
    To prevent label cardinality explosion, use only:
    - `breaker` - Circuit breaker name (categorical: room-create, message-send)
    - `pool` - Bulkhead pool name (categorical: chat-write, chat-read)
    - `outcome` - Decision outcome (enum: allowed, denied, error)

    NEVER use:
    - rate limit keys - one per user or IP (unbounded!)
    - cache keys - one per entity (unbounded!)
"""


# =============================================================================
# Global Prefix
# =============================================================================

METRIC_PREFIX = "chat_resilience"
"""Prefix for all Prometheus metrics in this library."""


# =============================================================================
# Rate Limiter
# =============================================================================

RATE_LIMIT_DECISIONS_TOTAL = f"{METRIC_PREFIX}_rate_limit_decisions_total"
"""Rate limit decisions by outcome (allowed, denied, error)."""


# =============================================================================
# Circuit Breaker
# =============================================================================

CIRCUIT_BREAKER_REJECTIONS_TOTAL = f"{METRIC_PREFIX}_circuit_breaker_rejections_total"
"""Calls rejected without running because the circuit was open."""

CIRCUIT_BREAKER_FAILURES_TOTAL = f"{METRIC_PREFIX}_circuit_breaker_failures_total"
"""Task failures counted against a breaker."""

CIRCUIT_BREAKER_OPENED_TOTAL = f"{METRIC_PREFIX}_circuit_breaker_opened_total"
"""Transitions to OPEN written by this process."""


# =============================================================================
# Bulkhead
# =============================================================================

BULKHEAD_REJECTIONS_TOTAL = f"{METRIC_PREFIX}_bulkhead_rejections_total"
"""Calls rejected because the pool was saturated."""

BULKHEAD_ACTIVE_CALLS = f"{METRIC_PREFIX}_bulkhead_active_calls"
"""Calls this process currently runs inside a pool."""


# =============================================================================
# Cache
# =============================================================================

CACHE_HITS_TOTAL = f"{METRIC_PREFIX}_cache_hits_total"
"""Total cache hits."""

CACHE_MISSES_TOTAL = f"{METRIC_PREFIX}_cache_misses_total"
"""Total cache misses."""

CACHE_SETS_TOTAL = f"{METRIC_PREFIX}_cache_sets_total"
"""Total cache writes."""

CACHE_DELETES_TOTAL = f"{METRIC_PREFIX}_cache_deletes_total"
"""Total keys deleted, single and by pattern."""


# =============================================================================
# Shared Store
# =============================================================================

STORE_ERRORS_TOTAL = f"{METRIC_PREFIX}_store_errors_total"
"""Store errors observed by a primitive, by primitive and policy outcome."""
