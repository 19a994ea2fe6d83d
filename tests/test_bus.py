import asyncio
import threading

import pytest
from core.bus import BusClosed, EventBus
from core.state import AxisEvent


def ev(n):
    return AxisEvent(axes=(n / 100.0,) + (0.0,) * 5, buttons=n)


@pytest.mark.asyncio
async def test_events_delivered_in_order():
    bus = EventBus(8)
    sub = bus.subscribe()
    for i in range(5):
        bus.publish(ev(i))
    got = [(await sub.recv()).buttons for _ in range(5)]
    assert got == [0, 1, 2, 3, 4]
    assert sub.try_recv() is None
    assert sub.lagged == 0


@pytest.mark.asyncio
async def test_subscriber_sees_only_later_events():
    bus = EventBus(8)
    bus.publish(ev(1))
    sub = bus.subscribe()
    assert sub.try_recv() is None
    bus.publish(ev(2))
    assert sub.try_recv().buttons == 2


@pytest.mark.asyncio
async def test_lagging_subscriber_gets_only_newest():
    bus = EventBus(4)
    sub = bus.subscribe()
    for i in range(10):
        bus.publish(ev(i))
    assert sub.try_recv().buttons == 9
    assert sub.try_recv() is None
    assert sub.lagged == 9


@pytest.mark.asyncio
async def test_slow_subscriber_does_not_affect_others():
    bus = EventBus(4)
    slow = bus.subscribe()
    fast = bus.subscribe()
    for i in range(10):
        bus.publish(ev(i))
        assert (await fast.recv()).buttons == i
    assert fast.lagged == 0
    assert (await slow.recv()).buttons == 9


@pytest.mark.asyncio
async def test_publish_from_other_thread_wakes_receiver():
    bus = EventBus(4)
    sub = bus.subscribe()
    t = threading.Timer(0.05, bus.publish, args=(ev(42),))
    t.start()
    try:
        got = await asyncio.wait_for(sub.recv(), timeout=2.0)
    finally:
        t.join()
    assert got.buttons == 42


@pytest.mark.asyncio
async def test_close_ends_pending_recv():
    bus = EventBus(4)
    sub = bus.subscribe()
    task = asyncio.ensure_future(sub.recv())
    await asyncio.sleep(0)
    bus.close()
    with pytest.raises(BusClosed):
        await asyncio.wait_for(task, timeout=1.0)
    with pytest.raises(BusClosed):
        bus.subscribe()


@pytest.mark.asyncio
async def test_unsubscribe_detaches():
    bus = EventBus(4)
    sub = bus.subscribe()
    assert bus.subscriber_count == 1
    sub.close()
    assert bus.subscriber_count == 0
    with pytest.raises(BusClosed):
        sub.try_recv()


def test_publish_without_subscribers_never_blocks():
    bus = EventBus(2)
    for i in range(1000):
        bus.publish(ev(i % 100))
    assert len(bus._ring) == 2


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        EventBus(0)
