import asyncio

import pytest

from chat_resilience.backends.memory import MemoryStore
from chat_resilience.exceptions import StoreOperationError


class FakeClock:
    def __init__(self, now_ms: float = 1_000_000.0):
        self.now_ms = now_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


class TestMemoryStore:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock, monkeypatch):
        store = MemoryStore()
        monkeypatch.setattr(store, "_now_ms", clock)
        return store

    @pytest.mark.asyncio
    async def test_get_set(self, store):
        assert await store.get("missing") is None
        assert await store.set("k", "v") is True
        assert await store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_set_nx(self, store):
        assert await store.set("lock", "a", nx=True) is True
        assert await store.set("lock", "b", nx=True) is False
        assert await store.get("lock") == "a"

    @pytest.mark.asyncio
    async def test_px_expiry(self, store, clock):
        await store.set("k", "v", px=100)
        clock.advance(99)
        assert await store.get("k") == "v"
        clock.advance(1)
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_ex_expiry(self, store, clock):
        await store.set("k", "v", ex=2)
        clock.advance(1999)
        assert await store.exists("k") == 1
        clock.advance(1)
        assert await store.exists("k") == 0

    @pytest.mark.asyncio
    async def test_nx_succeeds_after_expiry(self, store, clock):
        await store.set("lock", "a", px=50, nx=True)
        clock.advance(50)
        assert await store.set("lock", "b", px=50, nx=True) is True

    @pytest.mark.asyncio
    async def test_delete_and_exists_count(self, store):
        await store.set("a", "1")
        await store.set("b", "2")
        assert await store.exists("a", "b", "c") == 2
        assert await store.delete("a", "c") == 1
        assert await store.exists("a", "b") == 1

    @pytest.mark.asyncio
    async def test_incr_decr(self, store):
        assert await store.incr("n") == 1
        assert await store.incr("n") == 2
        assert await store.decr("n") == 1
        assert await store.decr("other") == -1

    @pytest.mark.asyncio
    async def test_incr_keeps_expiry(self, store, clock):
        await store.incr("n")
        await store.pexpire("n", 100)
        await store.incr("n")
        assert await store.pttl("n") == 100
        clock.advance(100)
        assert await store.get("n") is None

    @pytest.mark.asyncio
    async def test_incr_non_integer(self, store):
        await store.set("k", "abc")
        with pytest.raises(StoreOperationError):
            await store.incr("k")

    @pytest.mark.asyncio
    async def test_pttl(self, store, clock):
        assert await store.pttl("missing") == -2
        await store.set("forever", "1")
        assert await store.pttl("forever") == -1
        await store.set("k", "1", px=500)
        clock.advance(200)
        assert await store.pttl("k") == 300

    @pytest.mark.asyncio
    async def test_pexpire_missing_key(self, store):
        assert await store.pexpire("missing", 100) is False

    @pytest.mark.asyncio
    async def test_hash_roundtrip(self, store):
        await store.hmset("h", {"tokens": 4.5, "last": 10})
        assert await store.hmget("h", "tokens", "last", "nope") == ["4.5", "10", None]
        assert await store.hmget("missing", "a") == [None]

    @pytest.mark.asyncio
    async def test_wrong_type(self, store):
        await store.hmset("h", {"a": 1})
        with pytest.raises(StoreOperationError, match="WRONGTYPE"):
            await store.get("h")

    @pytest.mark.asyncio
    async def test_scan_iterates_every_match(self, store):
        for i in range(25):
            await store.set(f"room:{i}", "x")
        await store.set("user:1", "x")

        seen = []
        cursor = 0
        while True:
            cursor, keys = await store.scan(cursor, match="room:*", count=7)
            seen.extend(keys)
            if cursor == 0:
                break

        assert sorted(seen) == sorted(f"room:{i}" for i in range(25))

    @pytest.mark.asyncio
    async def test_scan_skips_expired(self, store, clock):
        await store.set("a", "1", px=10)
        await store.set("b", "1")
        clock.advance(10)
        assert await store.scan(0, match="*") == (0, ["b"])

    @pytest.mark.asyncio
    async def test_consume_token(self, store, clock):
        now = int(clock())
        results = [
            await store.consume_token("bucket", 3, 0.001, now, 10_000) for _ in range(4)
        ]
        assert [allowed for allowed, _ in results] == [True, True, True, False]
        assert [tokens for _, tokens in results] == [2.0, 1.0, 0.0, 0.0]

        # 1000ms at 0.001 tokens/ms refills exactly one token
        allowed, tokens = await store.consume_token("bucket", 3, 0.001, now + 1000, 10_000)
        assert allowed is True
        assert tokens == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_consume_token_ignores_clock_going_backwards(self, store):
        await store.consume_token("bucket", 2, 0.001, 5000, 10_000)
        allowed, tokens = await store.consume_token("bucket", 2, 0.001, 1000, 10_000)
        assert allowed is True
        assert tokens == 0.0
        assert await store.hmget("bucket", "last") == ["5000"]

    @pytest.mark.asyncio
    async def test_consume_token_sets_ttl(self, store):
        await store.consume_token("bucket", 2, 0.001, 0, 4000)
        assert await store.pttl("bucket") == 4000

    @pytest.mark.asyncio
    async def test_record_failure_trips_once(self, store):
        args = ("cb:x:failures", "cb:x:state", "cb:x:tripped")
        assert await store.record_failure(*args, 2, 1000) == (1, False)
        assert await store.record_failure(*args, 2, 1000) == (2, True)
        assert await store.record_failure(*args, 2, 1000) == (3, False)
        assert await store.get("cb:x:state") == "OPEN"
        assert await store.pttl("cb:x:state") == 1000
        assert await store.pttl("cb:x:tripped") == 2000

    @pytest.mark.asyncio
    async def test_compare_and_delete(self, store):
        await store.set("lock", "mine")
        assert await store.compare_and_delete("lock", "theirs") is False
        assert await store.get("lock") == "mine"
        assert await store.compare_and_delete("lock", "mine") is True
        assert await store.get("lock") is None
        assert await store.compare_and_delete("lock", "mine") is False

    @pytest.mark.asyncio
    async def test_concurrent_incr_is_exact(self, store):
        await asyncio.gather(*[store.incr("n") for _ in range(100)])
        assert await store.get("n") == "100"

    @pytest.mark.asyncio
    async def test_health_check_and_clear(self, store):
        await store.set("a", "1")
        result = await store.health_check()
        assert result.healthy is True
        assert result.store_type == "memory"
        assert result.metadata == {"keys": 1}

        await store.clear()
        assert await store.exists("a") == 0

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        async with MemoryStore() as store:
            await store.set("a", "1")
            assert await store.get("a") == "1"
