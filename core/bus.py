"""Lossy single-producer, multi-consumer event bus

The producer (device pump thread) publishes from a plain thread; consumers
are asyncio tasks on the server loop. Publishing never waits on consumers:
the bus keeps only the last ``capacity`` events and a consumer that falls
behind that window jumps straight to the newest one.
"""
import asyncio
import logging
import threading
from collections import deque
from typing import Optional

from core.state import AxisEvent

LOG = logging.getLogger("spacebridge.bus")


class BusClosed(Exception):
    pass


class Subscription:
    def __init__(self, bus, loop, start_seq):
        self._bus = bus
        self._loop = loop
        self._wakeup = asyncio.Event()
        self._next_seq = start_seq
        self.lagged = 0  # events skipped because the ring moved past us
        self.closed = False

    def _notify(self):
        # called from the producer thread
        self._loop.call_soon_threadsafe(self._wakeup.set)

    def try_recv(self) -> Optional[AxisEvent]:
        """Next event in order, or None if nothing new has been published."""
        with self._bus._lock:
            ring = self._bus._ring
            if ring and self._next_seq <= ring[-1][0]:
                oldest = ring[0][0]
                if self._next_seq < oldest:
                    newest = ring[-1][0]
                    self.lagged += newest - self._next_seq
                    LOG.debug("subscriber lagged, skipping %d events", newest - self._next_seq)
                    self._next_seq = newest
                seq, event = ring[self._next_seq - oldest]
                self._next_seq = seq + 1
                return event
            if self._bus.closed or self.closed:
                raise BusClosed()
        return None

    async def recv(self) -> AxisEvent:
        while True:
            # clear before checking so a publish in between still wakes us
            self._wakeup.clear()
            event = self.try_recv()
            if event is not None:
                return event
            await self._wakeup.wait()

    def close(self):
        self.closed = True
        self._bus._unsubscribe(self)
        self._wakeup.set()


class EventBus:
    def __init__(self, capacity: int = 64):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._ring = deque(maxlen=capacity)  # (seq, event)
        self._seq = 0
        self._subs = set()
        self.closed = False

    def subscribe(self) -> Subscription:
        """Subscribe from within a running event loop.

        The subscription sees only events published after this call.
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            if self.closed:
                raise BusClosed()
            sub = Subscription(self, loop, self._seq)
            self._subs.add(sub)
        return sub

    def _unsubscribe(self, sub):
        with self._lock:
            self._subs.discard(sub)

    def publish(self, event: AxisEvent):
        with self._lock:
            if self.closed:
                return
            self._ring.append((self._seq, event))
            self._seq += 1
            subs = list(self._subs)
        for sub in subs:
            try:
                sub._notify()
            except RuntimeError:
                # subscriber's loop is gone
                LOG.debug("dropping subscriber with closed loop")
                self._unsubscribe(sub)

    def close(self):
        with self._lock:
            self.closed = True
            subs = list(self._subs)
        for sub in subs:
            try:
                sub._notify()
            except RuntimeError:
                LOG.debug("subscriber loop already closed")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)
