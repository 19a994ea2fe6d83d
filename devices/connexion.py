"""3Dconnexion SpaceMouse access via direct ctypes calls to 3DconnexionClient

Provides `ConnexionDevice` (capture controls) and `DeviceCallbackAdapter`,
which receives the framework's message callback and turns device-state records
into conditioned AxisEvents on the bus.
"""
import ctypes
import logging
import threading
from queue import Empty, Full, Queue
from typing import Optional

from core.capture import CaptureDevice
from core.state import ZERO_AXES, AxisSample, DeviceCommand

LOG = logging.getLogger("spacebridge.device")

FRAMEWORK_PATH = "/Library/Frameworks/3DconnexionClient.framework/3DconnexionClient"


def _fourcc(code: bytes) -> int:
    return int.from_bytes(code, "big")


kConnexionClientManual = 0x2B2B2B2B

kConnexionCtlActivateClient = _fourcc(b"3dac")

kConnexionMaskAll = 0x3FFF

kConnexionMsgDeviceState = _fourcc(b"3dSR")
kConnexionMsgPrefsChanged = _fourcc(b"3dPC")


class ConnexionDeviceState(ctypes.Structure):
    """Device state record matching ConnexionClient.h (2-byte packed)"""
    _pack_ = 2
    _fields_ = [
        ("version", ctypes.c_uint16),
        ("client", ctypes.c_uint16),
        ("command", ctypes.c_uint16),
        ("param", ctypes.c_int16),
        ("value", ctypes.c_int32),
        ("time", ctypes.c_uint64),
        ("report", ctypes.c_uint8 * 8),
        ("buttons8", ctypes.c_uint16),
        ("axis", ctypes.c_int16 * 6),
        ("address", ctypes.c_uint16),
        ("buttons", ctypes.c_uint32),
    ]


MessageHandlerProc = ctypes.CFUNCTYPE(None, ctypes.c_uint32, ctypes.c_uint32, ctypes.c_void_p)
AddedHandlerProc = ctypes.CFUNCTYPE(None, ctypes.c_uint32)
RemovedHandlerProc = ctypes.CFUNCTYPE(None, ctypes.c_uint32)

# Load 3DconnexionClient framework
try:
    connexion_lib = ctypes.CDLL(FRAMEWORK_PATH)
    CONNEXION_AVAILABLE = True
    LOG.info("3DconnexionClient framework loaded")
except OSError as e:
    connexion_lib = None
    CONNEXION_AVAILABLE = False
    LOG.error("Failed to load 3DconnexionClient: %s (is the 3Dconnexion driver installed?)", e)

if CONNEXION_AVAILABLE:
    connexion_lib.SetConnexionHandlers.argtypes = [MessageHandlerProc, AddedHandlerProc,
                                                   RemovedHandlerProc, ctypes.c_bool]
    connexion_lib.SetConnexionHandlers.restype = ctypes.c_int16
    connexion_lib.CleanupConnexionHandlers.argtypes = []
    connexion_lib.CleanupConnexionHandlers.restype = None
    connexion_lib.RegisterConnexionClient.argtypes = [ctypes.c_uint32, ctypes.c_char_p,
                                                      ctypes.c_uint16, ctypes.c_uint32]
    connexion_lib.RegisterConnexionClient.restype = ctypes.c_uint16
    connexion_lib.SetConnexionClientButtonMask.argtypes = [ctypes.c_uint16, ctypes.c_uint32]
    connexion_lib.SetConnexionClientButtonMask.restype = None
    connexion_lib.UnregisterConnexionClient.argtypes = [ctypes.c_uint16]
    connexion_lib.UnregisterConnexionClient.restype = None
    connexion_lib.ConnexionClientControl.argtypes = [ctypes.c_uint16, ctypes.c_uint32,
                                                     ctypes.c_int32, ctypes.POINTER(ctypes.c_int32)]
    connexion_lib.ConnexionClientControl.restype = ctypes.c_int16


def pascal_name(name: str) -> bytes:
    """Client names are passed as Pascal strings (length byte + bytes)."""
    raw = name.encode("utf-8")[:255]
    return bytes([len(raw)]) + raw


def decode_device_state(state: ConnexionDeviceState) -> Optional[AxisSample]:
    try:
        command = DeviceCommand(state.command)
    except ValueError:
        return None
    return AxisSample(command=command, axes=tuple(state.axis), buttons=int(state.buttons))


class ConnexionDevice(CaptureDevice):
    def __init__(self, lib=None):
        self._lib = lib if lib is not None else connexion_lib
        # ctypes callbacks must outlive the registration
        self._callbacks = None

    @property
    def available(self) -> bool:
        return self._lib is not None

    def register_handlers(self, message_cb, added_cb, removed_cb) -> int:
        if not self.available:
            LOG.warning("3DconnexionClient not available, cannot register handlers")
            return -1
        self._callbacks = (MessageHandlerProc(message_cb),
                           AddedHandlerProc(added_cb),
                           RemovedHandlerProc(removed_cb))
        err = self._lib.SetConnexionHandlers(*self._callbacks, False)
        if err != 0:
            self._callbacks = None
        return err

    def unregister_handlers(self):
        if self.available:
            self._lib.CleanupConnexionHandlers()
        self._callbacks = None

    def acquire_capture(self, client_name: str, mode: int, button_mask: int) -> int:
        if not self.available:
            return 0
        cid = self._lib.RegisterConnexionClient(kConnexionClientManual, pascal_name(client_name),
                                                mode, kConnexionMaskAll)
        if cid:
            self._lib.SetConnexionClientButtonMask(cid, button_mask)
        return cid

    def release_capture(self, handle: int):
        if self.available and handle:
            self._lib.UnregisterConnexionClient(handle)

    def refresh_capture(self, handle: int):
        if not (self.available and handle):
            return
        result = ctypes.c_int32(0)
        self._lib.ConnexionClientControl(handle, kConnexionCtlActivateClient, 0, ctypes.byref(result))


class DeviceCallbackAdapter:
    """Bridges framework callbacks to the conditioner and the bus.

    The message callback only decodes and enqueues; a pump thread does the
    conditioning and publishing. The queue keeps only the newest samples.
    """

    def __init__(self, conditioner, bus, maxsize: int = 4):
        self._conditioner = conditioner
        self._bus = bus
        self._q = Queue(maxsize=maxsize)
        self._t = None
        self._stop = threading.Event()
        self._busy = threading.Lock()
        self._generation = 0  # bumped by flush() to invalidate in-flight samples

    def start(self):
        self._stop.clear()
        self._t = threading.Thread(target=self._loop, name="DevicePump", daemon=True)
        self._t.start()

    def stop(self):
        self._stop.set()
        if self._t:
            self._t.join(timeout=1.0)

    # framework callbacks

    def on_message(self, product_id, message_type, argument):
        if message_type != kConnexionMsgDeviceState or not argument:
            return
        state = ctypes.cast(argument, ctypes.POINTER(ConnexionDeviceState)).contents
        sample = decode_device_state(state)
        if sample is not None:
            self.submit(sample)

    def on_device_added(self, product_id):
        LOG.info("Device added: product_id=0x%04x", product_id)

    def on_device_removed(self, product_id):
        LOG.info("Device removed: product_id=0x%04x", product_id)

    # producer path

    def submit(self, sample: AxisSample):
        # keep only the latest samples
        try:
            self._q.put_nowait(sample)
        except Full:
            try:
                self._q.get_nowait()
            except Empty:
                pass
            try:
                self._q.put_nowait(sample)
            except Full:
                LOG.debug("sample queue full, dropping sample")

    def handle(self, sample: AxisSample):
        if sample.command in (DeviceCommand.AXIS, DeviceCommand.RAW_DATA):
            raw = sample.axes
        elif sample.command is DeviceCommand.BUTTONS:
            raw = ZERO_AXES
        else:
            raise ValueError(f"unhandled device command {sample.command!r}")
        event = self._conditioner.condition(raw, sample.buttons)
        self._bus.publish(event)
        return event

    def flush(self):
        """Drop queued samples and wait out one being conditioned."""
        with self._busy:
            self._generation += 1
            while True:
                try:
                    self._q.get_nowait()
                except Empty:
                    break

    def _loop(self):
        while not self._stop.is_set():
            generation = self._generation
            try:
                sample = self._q.get(timeout=0.1)
            except Empty:
                continue
            try:
                with self._busy:
                    if generation != self._generation:
                        continue
                    self.handle(sample)
            except Exception:
                LOG.exception("error conditioning device sample")
