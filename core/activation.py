"""Focus/connection-gated capture of the SpaceMouse

`ActivationController` is ticked from a single thread. Every Nth tick it
checks whether any client is connected and whether an allow-listed
application is frontmost, and acquires or releases the device capture to
match. While active, the capture is refreshed on every tick because the
driver lets it lapse silently.
"""
import logging
from typing import Callable

from core.capture import CAPTURE_MODE_TAKEOVER
from core.state import ActivationState, AxisEvent

LOG = logging.getLogger("spacebridge.focus")


class ActivationController:
    def __init__(self, device, adapter, conditioner, bus,
                 subscriber_count: Callable[[], int],
                 foreground,
                 check_interval: int = 8,
                 client_name: str = "SpaceMouse Proxy",
                 button_mask: int = 0xFFFFFFFF):
        self._device = device
        self._adapter = adapter
        self._conditioner = conditioner
        self._bus = bus
        self._subscriber_count = subscriber_count
        self._foreground = foreground
        self.check_interval = check_interval
        self.client_name = client_name
        self.button_mask = button_mask
        self._state = ActivationState.INACTIVE
        self._handle = 0
        self._ticks = 0

    @property
    def state(self) -> ActivationState:
        return self._state

    @property
    def handle(self) -> int:
        return self._handle

    @property
    def active(self) -> bool:
        return self._state is ActivationState.ACTIVE

    def should_be_active(self) -> bool:
        if self._subscriber_count() <= 0:
            return False
        return self._foreground.is_target_focused()

    def tick(self):
        tick = self._ticks
        self._ticks += 1
        if tick % self.check_interval == 0:
            self.evaluate()
        if self.active:
            self._refresh()

    def evaluate(self):
        should = self.should_be_active()
        if should and not self.active:
            self.activate()
        elif not should and self.active:
            self.deactivate()

    def activate(self) -> bool:
        try:
            err = self._device.register_handlers(self._adapter.on_message,
                                                 self._adapter.on_device_added,
                                                 self._adapter.on_device_removed)
        except Exception:
            LOG.exception("registering device handlers failed")
            return False
        if err != 0:
            LOG.warning("registering device handlers failed: status %s", err)
            return False

        try:
            handle = self._device.acquire_capture(self.client_name, CAPTURE_MODE_TAKEOVER,
                                                  self.button_mask)
        except Exception:
            LOG.exception("acquiring device capture failed")
            handle = 0
        if not handle:
            LOG.warning("could not acquire device capture, staying inactive")
            self._unregister()
            return False

        self._handle = handle
        self._state = ActivationState.ACTIVE
        self._refresh()
        LOG.info("activated, capturing SpaceMouse (client_id=%s)", handle)
        return True

    def deactivate(self):
        self._state = ActivationState.INACTIVE
        handle, self._handle = self._handle, 0
        if handle:
            try:
                self._device.release_capture(handle)
            except Exception:
                LOG.exception("releasing device capture failed")
            self._unregister()

        self._adapter.flush()
        self._conditioner.reset()
        self._bus.publish(AxisEvent.zero())
        LOG.info("deactivated, yielding SpaceMouse to other apps")

    def shutdown(self):
        """Release any held capture. Safe to call more than once."""
        if self.active:
            self.deactivate()
            LOG.info("capture released on shutdown")

    def run(self, stop_event, period: float = 0.016, wait=None):
        """Tick until `stop_event` is set, then release the capture.

        `wait(seconds)` blocks between ticks and returns True once stopping;
        it defaults to `stop_event.wait`.
        """
        wait = wait or stop_event.wait
        try:
            while not stop_event.is_set():
                try:
                    self.tick()
                except Exception:
                    LOG.exception("error in activation tick")
                if wait(period):
                    break
        finally:
            self.shutdown()

    def _refresh(self):
        try:
            self._device.refresh_capture(self._handle)
        except Exception:
            LOG.exception("refreshing device capture failed")

    def _unregister(self):
        try:
            self._device.unregister_handlers()
        except Exception:
            LOG.exception("unregistering device handlers failed")
