import asyncio
import json

import pytest
from websockets.asyncio.client import connect

from core.bus import EventBus
from core.state import AxisEvent
from server.broadcast import BroadcastServer, ServerBindError, encode_event


@pytest.fixture
def server():
    bus = EventBus(16)
    srv = BroadcastServer(bus, host="127.0.0.1", port=0, send_interval=0.005)
    srv.start()
    yield srv, bus
    srv.stop()


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_encode_event():
    msg = json.loads(encode_event(AxisEvent(axes=(0.5, -0.25, 0.0, 0.0, 1.0, -1.0), buttons=3)))
    assert msg == {"axes": [0.5, -0.25, 0.0, 0.0, 1.0, -1.0], "buttons": 3}


@pytest.mark.asyncio
async def test_client_receives_published_event(server):
    srv, bus = server
    async with connect(srv.url) as ws:
        await wait_until(lambda: srv.subscriber_count == 1)
        bus.publish(AxisEvent(axes=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6), buttons=1))
        msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
    assert msg["axes"] == pytest.approx([0.1, 0.2, 0.3, 0.4, 0.5, 0.6])
    assert msg["buttons"] == 1


@pytest.mark.asyncio
async def test_nothing_sent_without_new_events(server):
    srv, bus = server
    async with connect(srv.url) as ws:
        await wait_until(lambda: srv.subscriber_count == 1)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(ws.recv(), timeout=0.1)


@pytest.mark.asyncio
async def test_burst_is_coalesced_to_latest(server):
    srv, bus = server
    async with connect(srv.url) as ws:
        await wait_until(lambda: srv.subscriber_count == 1)
        for i in range(50):
            bus.publish(AxisEvent(buttons=i))
        received = []
        while not received or received[-1] != 49:
            msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
            received.append(msg["buttons"])
    assert received == sorted(received)
    assert len(received) <= 50


@pytest.mark.asyncio
async def test_client_messages_are_ignored(server):
    srv, bus = server
    async with connect(srv.url) as ws:
        await wait_until(lambda: srv.subscriber_count == 1)
        await ws.send("hello")
        await ws.send(b"\x00\x01")
        bus.publish(AxisEvent(buttons=7))
        msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
        assert msg["buttons"] == 7
        assert srv.subscriber_count == 1


@pytest.mark.asyncio
async def test_counter_returns_to_zero_after_many_sessions(server):
    srv, bus = server

    async def session(hold):
        async with connect(srv.url):
            await asyncio.sleep(hold)

    await asyncio.gather(*(session(0.01 * (i % 4)) for i in range(12)))
    await wait_until(lambda: srv.subscriber_count == 0)
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_fan_out_to_every_client(server):
    srv, bus = server
    async with connect(srv.url) as a, connect(srv.url) as b:
        await wait_until(lambda: srv.subscriber_count == 2)
        bus.publish(AxisEvent(buttons=5))
        ma = json.loads(await asyncio.wait_for(a.recv(), timeout=2.0))
        mb = json.loads(await asyncio.wait_for(b.recv(), timeout=2.0))
    assert ma == mb == {"axes": [0.0] * 6, "buttons": 5}


@pytest.mark.asyncio
async def test_pending_event_sent_on_shutdown():
    bus = EventBus(16)
    srv = BroadcastServer(bus, host="127.0.0.1", port=0, send_interval=10.0)
    srv.start()
    try:
        async with connect(srv.url) as ws:
            await wait_until(lambda: srv.subscriber_count == 1)
            # first pacing tick fires at connect, the next one is far away
            await asyncio.sleep(0.05)
            bus.publish(AxisEvent.zero())
            await asyncio.to_thread(srv.stop)
            msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=2.0))
        assert msg == {"axes": [0.0] * 6, "buttons": 0}
        assert srv.subscriber_count == 0
    finally:
        srv.stop()


def test_bind_failure_raises(server):
    srv, _ = server
    other = BroadcastServer(EventBus(4), host="127.0.0.1", port=srv.port)
    with pytest.raises(ServerBindError):
        other.start()
    other.stop()
