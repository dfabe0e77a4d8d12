"""Delivery engine state machine tests."""

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest

from shortener.delivery import DeliveryEngine
from shortener.enums import DeliveryState
from shortener.store import URLStore


@pytest.mark.asyncio
async def test_unacknowledged_delivery_retries_five_times_then_exhausts(store: URLStore, engine: DeliveryEngine) -> None:
    code = await store.shorten("https://example.com")
    push = AsyncMock()

    delivery = engine.start(code, push)
    assert delivery.state is DeliveryState.PENDING
    assert engine.state(code) is DeliveryState.PENDING

    assert await delivery.wait() is DeliveryState.EXHAUSTED
    assert push.await_count == 5
    assert delivery.retry_count == 5
    assert all(call.args == (code,) for call in push.await_args_list)
    assert engine.state(code) is DeliveryState.UNSENT
    assert len(engine) == 0


@pytest.mark.asyncio
async def test_retries_are_spaced_by_interval(store: URLStore) -> None:
    engine = DeliveryEngine(store, retry_interval=0.05, max_retries=3)
    code = await store.shorten("https://example.com")
    loop = asyncio.get_running_loop()
    started = loop.time()
    times = []

    async def push(short_code: str) -> None:
        times.append(loop.time())

    await engine.start(code, push).wait()

    assert len(times) == 3
    gaps = [b - a for a, b in zip([started] + times, times)]
    assert all(gap >= 0.045 for gap in gaps)


@pytest.mark.asyncio
async def test_acknowledgment_halts_retries(store: URLStore, engine: DeliveryEngine) -> None:
    code = await store.shorten("https://example.com")
    calls = 0

    async def push(short_code: str) -> None:
        nonlocal calls
        calls += 1
        if calls == 2:
            assert await store.acknowledge(short_code) is True

    delivery = engine.start(code, push)
    assert await delivery.wait() is DeliveryState.ACKNOWLEDGED
    assert calls == 2
    assert len(engine) == 0


@pytest.mark.asyncio
async def test_acknowledgment_before_first_retry(store: URLStore, engine: DeliveryEngine) -> None:
    code = await store.shorten("https://example.com")
    push = AsyncMock()

    delivery = engine.start(code, push)
    await store.acknowledge(code)

    assert await delivery.wait() is DeliveryState.ACKNOWLEDGED
    push.assert_not_awaited()


@pytest.mark.asyncio
async def test_acknowledged_flag_seen_on_tick_stops_delivery(store: URLStore) -> None:
    engine = DeliveryEngine(store, retry_interval=0.01, max_retries=5)
    code = await store.shorten("https://example.com")
    push = AsyncMock()
    # Flag set without notification; the next tick must notice it.
    store.get(code).acknowledged = True

    assert await engine.start(code, push).wait() is DeliveryState.ACKNOWLEDGED
    push.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_twice_does_not_duplicate_timer(store: URLStore, engine: DeliveryEngine) -> None:
    code = await store.shorten("https://example.com")
    push = AsyncMock()

    first = engine.start(code, push)
    second = engine.start(code, AsyncMock())

    assert first is second
    assert len(engine) == 1
    await first.wait()
    assert push.await_count == 5


@pytest.mark.asyncio
async def test_cancel_is_idempotent(store: URLStore, engine: DeliveryEngine) -> None:
    code = await store.shorten("https://example.com")
    delivery = engine.start(code, AsyncMock())

    engine.cancel(code)
    engine.cancel(code)
    engine.cancel("neverStarted")

    assert await delivery.wait() is DeliveryState.ACKNOWLEDGED


@pytest.mark.asyncio
async def test_cancel_after_exhaustion_keeps_exhausted(store: URLStore, engine: DeliveryEngine) -> None:
    code = await store.shorten("https://example.com")
    delivery = engine.start(code, AsyncMock())
    await delivery.wait()

    engine.cancel(code)
    assert delivery.state is DeliveryState.EXHAUSTED


@pytest.mark.asyncio
async def test_removed_mapping_stops_delivery(store: URLStore, engine: DeliveryEngine, clock) -> None:
    code = await store.shorten("https://example.com")
    push = AsyncMock()
    delivery = engine.start(code, push)

    clock.advance(datetime.timedelta(days=31))
    assert await store.sweep_expired() == 1

    assert await delivery.wait() is DeliveryState.EXHAUSTED
    push.assert_not_awaited()


@pytest.mark.asyncio
async def test_failing_push_counts_as_attempt(store: URLStore, engine: DeliveryEngine, caplog) -> None:
    code = await store.shorten("https://example.com")
    push = AsyncMock(side_effect=RuntimeError("socket gone"))

    assert await engine.start(code, push).wait() is DeliveryState.EXHAUSTED
    assert push.await_count == 5
    assert "Max retries reached" in caplog.text


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_deliveries(store: URLStore) -> None:
    engine = DeliveryEngine(store, retry_interval=10, max_retries=5)
    code = await store.shorten("https://example.com")
    delivery = engine.start(code, AsyncMock())

    await engine.shutdown()

    assert len(engine) == 0
    assert delivery.task.done()
