import asyncio
from unittest.mock import AsyncMock

import pytest

from chat_resilience.backends.memory import MemoryStore
from chat_resilience.bulkhead import Bulkhead
from chat_resilience.config import BulkheadConfig, BulkheadHealth, StoreFailurePolicy
from chat_resilience.exceptions import BulkheadSaturatedError, StoreConnectionError
from chat_resilience.pools import BulkheadName


class TestBulkhead:
    @pytest.fixture
    def bulkhead(self, store):
        return Bulkhead(store)

    @pytest.fixture
    def config(self):
        return BulkheadConfig(name=BulkheadName.ROOM_CREATE, max_concurrency=3)

    @pytest.mark.asyncio
    async def test_runs_task_and_releases(self, bulkhead, store, config):
        async def task():
            assert await store.get("bulkhead:room-create") == "1"
            return "created"

        assert await bulkhead.execute(config, task) == "created"
        assert await store.get("bulkhead:room-create") == "0"

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_limit(self, bulkhead, config):
        in_flight = 0
        peak = 0

        async def task():
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return "ok"

        results = await asyncio.gather(
            *[bulkhead.execute(config, task) for _ in range(10)],
            return_exceptions=True,
        )

        succeeded = [r for r in results if r == "ok"]
        rejected = [r for r in results if isinstance(r, BulkheadSaturatedError)]
        assert len(succeeded) == 3
        assert len(rejected) == 7
        assert peak <= 3

        status = await bulkhead.get_status(config)
        assert status.current_concurrency == 0

    @pytest.mark.asyncio
    async def test_saturated_error_details(self, bulkhead, config):
        release = asyncio.Event()

        async def hold():
            await release.wait()

        holders = [asyncio.create_task(bulkhead.execute(config, hold)) for _ in range(3)]
        await asyncio.sleep(0)

        with pytest.raises(BulkheadSaturatedError) as exc_info:
            await bulkhead.execute(config, AsyncMock())
        assert exc_info.value.name == "room-create"
        assert exc_info.value.max_concurrency == 3

        release.set()
        await asyncio.gather(*holders)

    @pytest.mark.asyncio
    async def test_releases_on_task_error(self, bulkhead, store, config):
        async def boom():
            raise RuntimeError("downstream failed")

        with pytest.raises(RuntimeError):
            await bulkhead.execute(config, boom)
        assert await store.get("bulkhead:room-create") == "0"

    @pytest.mark.asyncio
    async def test_releases_on_cancellation(self, bulkhead, store, config):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(60)

        call = asyncio.create_task(bulkhead.execute(config, hang))
        await started.wait()
        call.cancel()
        with pytest.raises(asyncio.CancelledError):
            await call
        # Give the shielded release a chance to finish
        await asyncio.sleep(0)

        assert await store.get("bulkhead:room-create") == "0"

    @pytest.mark.asyncio
    async def test_status(self, bulkhead, config):
        release = asyncio.Event()

        async def hold():
            await release.wait()

        idle = await bulkhead.get_status(config)
        assert idle.current_concurrency == 0
        assert idle.utilization == 0.0
        assert idle.status is BulkheadHealth.HEALTHY

        holders = [asyncio.create_task(bulkhead.execute(config, hold)) for _ in range(2)]
        await asyncio.sleep(0)
        busy = await bulkhead.get_status(config)
        assert busy.current_concurrency == 2
        assert busy.utilization == 66.67
        assert busy.status is BulkheadHealth.HEALTHY

        holders.append(asyncio.create_task(bulkhead.execute(config, hold)))
        await asyncio.sleep(0)
        full = await bulkhead.get_status(config)
        assert full.utilization == 100.0
        assert full.status is BulkheadHealth.SATURATED

        release.set()
        await asyncio.gather(*holders)

    @pytest.mark.asyncio
    async def test_pools_are_independent(self, bulkhead):
        narrow = BulkheadConfig(name="message-create", max_concurrency=1)
        other = BulkheadConfig(name="message-read", max_concurrency=1)
        release = asyncio.Event()

        async def hold():
            await release.wait()

        holder = asyncio.create_task(bulkhead.execute(narrow, hold))
        await asyncio.sleep(0)

        assert await bulkhead.execute(other, AsyncMock(return_value="read")) == "read"
        with pytest.raises(BulkheadSaturatedError):
            await bulkhead.execute(narrow, AsyncMock())

        release.set()
        await holder

    @pytest.mark.asyncio
    async def test_abandoned_slots_expire(self, store, clock):
        bulkhead = Bulkhead(store)
        config = BulkheadConfig(name="user-create", max_concurrency=1, ttl_ms=5_000)

        # A crashed holder: slot taken, never released
        await store.incr("bulkhead:user-create")
        await store.pexpire("bulkhead:user-create", config.ttl_ms)
        with pytest.raises(BulkheadSaturatedError):
            await bulkhead.execute(config, AsyncMock())

        clock.advance_ms(5_000)
        assert await bulkhead.execute(config, AsyncMock(return_value="ok")) == "ok"

    @pytest.mark.asyncio
    async def test_status_clamps_negative_counter(self, bulkhead, store, config):
        await store.set("bulkhead:room-create", "-2")
        status = await bulkhead.get_status(config)
        assert status.current_concurrency == 0


class TestBulkheadStoreFailure:
    @pytest.fixture
    def broken_store(self):
        store = AsyncMock(spec=MemoryStore)
        store.incr.side_effect = StoreConnectionError("down")
        return store

    @pytest.fixture
    def config(self):
        return BulkheadConfig(name="room-read", max_concurrency=1)

    @pytest.mark.asyncio
    async def test_fail_open_runs_unbounded(self, broken_store, config):
        bulkhead = Bulkhead(broken_store)
        assert await bulkhead.execute(config, AsyncMock(return_value="ok")) == "ok"
        broken_store.decr.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fail_closed_raises(self, broken_store, config):
        bulkhead = Bulkhead(broken_store, StoreFailurePolicy.FAIL_CLOSED)
        task = AsyncMock()
        with pytest.raises(StoreConnectionError):
            await bulkhead.execute(config, task)
        task.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_release_error_is_not_raised(self, config):
        store = MemoryStore()
        store.decr = AsyncMock(side_effect=StoreConnectionError("down"))
        bulkhead = Bulkhead(store)
        assert await bulkhead.execute(config, AsyncMock(return_value="ok")) == "ok"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy", list(StoreFailurePolicy))
    async def test_expiry_error_still_releases_slot(self, config, policy):
        store = MemoryStore()
        store.pexpire = AsyncMock(side_effect=StoreConnectionError("down"))
        bulkhead = Bulkhead(store, policy)

        assert await bulkhead.execute(config, AsyncMock(return_value="ok")) == "ok"
        assert await store.get("bulkhead:room-read") == "0"

        with pytest.raises(RuntimeError):
            await bulkhead.execute(config, AsyncMock(side_effect=RuntimeError("boom")))
        assert await store.get("bulkhead:room-read") == "0"

        # The pool is not left saturated
        assert await bulkhead.execute(config, AsyncMock(return_value="again")) == "again"
        assert store.pexpire.await_count == 3
