"""Loopback WebSocket fan-out of AxisEvents

`BroadcastServer` runs its own asyncio loop in a background thread. Each
connection subscribes to the event bus and is sent the newest event at most
once per pacing interval; client messages are read only to notice closes.
"""
import asyncio
import logging
import threading
from typing import Optional

import orjson
import websockets
from websockets.asyncio.server import ServerConnection, serve

from core.bus import BusClosed
from core.state import AxisEvent, SubscriberCounter

LOG = logging.getLogger("spacebridge.ws")


class ServerBindError(RuntimeError):
    pass


def encode_event(event: AxisEvent) -> str:
    return orjson.dumps(event.to_message()).decode()


class BroadcastServer:
    def __init__(self, bus, host: str = "127.0.0.1", port: int = 18944,
                 send_interval: float = 0.016, counter: Optional[SubscriberCounter] = None):
        self._bus = bus
        self.host = host
        self._port = port
        self.send_interval = send_interval
        self.counter = counter or SubscriberCounter()
        self._loop = None
        self._server = None
        self._stopping = None
        self._t = None
        self._ready = threading.Event()
        self._error = None

    @classmethod
    def from_config(cls, cfg, bus, counter=None):
        return cls(bus, host=cfg.host, port=cfg.port,
                   send_interval=cfg.send_interval_ms / 1000.0, counter=counter)

    @property
    def subscriber_count(self) -> int:
        return self.counter.value

    @property
    def port(self) -> int:
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    def start(self, timeout: float = 5.0):
        """Start serving; blocks until the listener is bound.

        Raises ServerBindError if the port cannot be bound.
        """
        self._ready.clear()
        self._error = None
        self._t = threading.Thread(target=self._thread_main, name="BroadcastServer", daemon=True)
        self._t.start()
        if not self._ready.wait(timeout):
            raise ServerBindError(f"timed out binding {self.host}:{self._port}")
        if self._error is not None:
            raise ServerBindError(f"cannot bind {self.host}:{self._port}: {self._error}") from self._error
        LOG.info("WebSocket server listening on %s", self.url)

    def stop(self):
        self._bus.close()
        if self._loop is not None and self._stopping is not None:
            try:
                self._loop.call_soon_threadsafe(self._stopping.set)
            except RuntimeError:
                LOG.debug("server loop already closed")
        if self._t:
            self._t.join(timeout=2.0)

    def _thread_main(self):
        try:
            asyncio.run(self._serve())
        except Exception as e:
            self._error = e
            LOG.exception("WebSocket server crashed")
        finally:
            self._ready.set()

    async def _serve(self):
        self._loop = asyncio.get_running_loop()
        self._stopping = asyncio.Event()
        try:
            self._server = await serve(self._session, self.host, self._port,
                                       logger=logging.getLogger("spacebridge.ws.protocol"))
        except OSError as e:
            self._error = e
            self._ready.set()
            return
        self._ready.set()
        try:
            await self._stopping.wait()
        finally:
            # sessions end on their own once the bus is closed
            self._server.close(close_connections=False)
            await self._server.wait_closed()

    async def _session(self, ws: ServerConnection):
        remote = ws.remote_address
        try:
            sub = self._bus.subscribe()
        except BusClosed:
            return
        bus_task = read_task = tick_task = None
        count = self.counter.increment()
        try:
            LOG.info("Client connected: %s (%d connected)", remote, count)
            bus_task = asyncio.ensure_future(sub.recv())
            read_task = asyncio.ensure_future(ws.recv())
            tick_task = asyncio.ensure_future(asyncio.sleep(0))
            next_tick = self._loop.time()
            latest = None
            while True:
                done, _ = await asyncio.wait({bus_task, read_task, tick_task},
                                             return_when=asyncio.FIRST_COMPLETED)
                if bus_task in done:
                    try:
                        latest = bus_task.result()
                    except BusClosed:
                        # flush the last event (the rest pose on shutdown)
                        if latest is not None:
                            await ws.send(encode_event(latest))
                        break
                    bus_task = asyncio.ensure_future(sub.recv())
                if read_task in done:
                    if read_task.exception() is not None:
                        break
                    # client messages are ignored
                    read_task = asyncio.ensure_future(ws.recv())
                if tick_task in done:
                    if latest is not None:
                        event, latest = latest, None
                        await ws.send(encode_event(event))
                    now = self._loop.time()
                    next_tick = max(next_tick + self.send_interval, now)
                    tick_task = asyncio.ensure_future(asyncio.sleep(next_tick - now))
        except websockets.exceptions.ConnectionClosed:
            pass
        except Exception:
            LOG.exception("session error for %s", remote)
        finally:
            for task in (bus_task, read_task, tick_task):
                if task is not None:
                    task.cancel()
            sub.close()
            count = self.counter.decrement()
            LOG.info("Client disconnected: %s (%d connected)", remote, count)
