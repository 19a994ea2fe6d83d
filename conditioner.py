"""Signal conditioning: raw SpaceMouse axes -> smoothed, normalized AxisEvent"""
import logging
import threading
from typing import Sequence

from core.state import AXIS_COUNT, AxisEvent

LOG = logging.getLogger("spacebridge.conditioner")


class SignalConditioner:
    """Deadzone, scale/clamp and exponential smoothing for the six axes.

    The smoothed state persists between calls and is guarded by a lock: the
    device pump thread conditions samples while the ticker thread may reset
    the state on deactivation.
    """

    def __init__(self, deadzone: int = 3, scale: float = 350.0, clamp: float = 1.0,
                 smoothing: float = 0.4, snap_epsilon: float = 0.003):
        self.deadzone = deadzone
        self.scale = float(scale)
        self.clamp = float(clamp)
        self.smoothing = float(smoothing)
        self.snap_epsilon = float(snap_epsilon)
        self._lock = threading.Lock()
        self._smooth = [0.0] * AXIS_COUNT

    @classmethod
    def from_config(cls, cfg):
        return cls(deadzone=cfg.deadzone, scale=cfg.scale, clamp=cfg.clamp,
                   smoothing=cfg.smoothing, snap_epsilon=cfg.snap_epsilon)

    def target(self, raw: Sequence[int]):
        """Deadzoned, scaled and clamped target values (no smoothing)."""
        out = []
        for v in raw:
            if abs(v) <= self.deadzone:
                v = 0
            val = v / self.scale
            out.append(max(-self.clamp, min(self.clamp, val)))
        return out

    def condition(self, raw: Sequence[int], buttons: int) -> AxisEvent:
        target = self.target(raw)
        alpha = self.smoothing
        with self._lock:
            for i in range(AXIS_COUNT):
                s = self._smooth[i] * (1.0 - alpha) + target[i] * alpha
                # snap so the output settles instead of decaying forever
                if abs(s) < self.snap_epsilon:
                    s = 0.0
                self._smooth[i] = s
            axes = tuple(self._smooth)
        return AxisEvent(axes=axes, buttons=buttons)

    def reset(self):
        with self._lock:
            self._smooth = [0.0] * AXIS_COUNT
        LOG.debug("smoothed state reset")

    @property
    def state(self):
        with self._lock:
            return tuple(self._smooth)
