"""
Benchmark: Cache Hit Path and Stampede

Measures get_or_set latency on a warm key, and how many times the factory
runs when a cold key is requested by many tasks at once.

Usage:
    uv run pytest benchmarks/test_bench_cache.py -v --no-cov -s
"""

import asyncio
import time

import pytest

from chat_resilience import Cache, CacheConfig


class TestCacheBenchmarks:
    @pytest.mark.asyncio
    async def test_warm_hit_latency(self, memory_store):
        cache = Cache(memory_store)
        await cache.set("room:bench", {"id": "bench", "name": "Benchmark"})

        async def factory():
            raise AssertionError("factory must not run on a warm key")

        iterations = 1_000
        start = time.perf_counter()
        for _ in range(iterations):
            await cache.get_or_set("room:bench", factory)
        elapsed = time.perf_counter() - start

        avg_us = (elapsed / iterations) * 1_000_000
        print("\n--- Cache Warm Hit ---")
        print(f"Iterations: {iterations}")
        print(f"Average latency: {avg_us:.1f}us per hit")

        assert cache.get_stats().hits == iterations

    @pytest.mark.asyncio
    async def test_cold_key_stampede(self, memory_store):
        cache = Cache(memory_store, CacheConfig(lock_wait_seconds=0.05))
        calls = 0

        async def slow_factory():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return ["room-1", "room-2"]

        concurrency = 100
        start = time.perf_counter()
        await asyncio.gather(
            *[cache.get_or_set("rooms-list:page:1", slow_factory) for _ in range(concurrency)]
        )
        elapsed = time.perf_counter() - start

        print("\n--- Cache Cold Key Stampede ---")
        print(f"Concurrent callers: {concurrency}")
        print(f"Factory calls: {calls}")
        print(f"Total time: {elapsed:.4f}s")

        assert calls == 1
