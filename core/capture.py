"""Base capture-device abstraction"""
import abc

CAPTURE_MODE_TAKEOVER = 1  # exclusive: other apps get no events


class CaptureDevice(abc.ABC):
    """Exclusive-capture controls offered by a device SDK.

    Status and handle values follow the SDK convention: a status of 0 means
    success, a handle of 0 means no capture.
    """

    @abc.abstractmethod
    def register_handlers(self, message_cb, added_cb, removed_cb) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def unregister_handlers(self):
        raise NotImplementedError

    @abc.abstractmethod
    def acquire_capture(self, client_name: str, mode: int, button_mask: int) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def release_capture(self, handle: int):
        raise NotImplementedError

    @abc.abstractmethod
    def refresh_capture(self, handle: int):
        raise NotImplementedError
