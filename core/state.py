"""State models and lightweight DTOs"""
import enum
import threading
from dataclasses import dataclass, field
from typing import Tuple

AXIS_COUNT = 6
ZERO_AXES = (0,) * AXIS_COUNT


class DeviceCommand(enum.IntEnum):
    """Command tags carried by a device-state record."""
    RAW_DATA = 1
    BUTTONS = 2
    AXIS = 3


class ActivationState(enum.Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


@dataclass(frozen=True)
class AxisSample:
    command: DeviceCommand
    axes: Tuple[int, ...] = ZERO_AXES  # raw signed 16-bit readings
    buttons: int = 0


@dataclass(frozen=True)
class AxisEvent:
    axes: Tuple[float, ...] = field(default=(0.0,) * AXIS_COUNT)  # each -1..1
    buttons: int = 0

    @classmethod
    def zero(cls):
        return cls()

    def to_message(self) -> dict:
        return {"axes": list(self.axes), "buttons": self.buttons}


class SubscriberCounter:
    """Connection count shared between session tasks and the ticker."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            self._value -= 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value
