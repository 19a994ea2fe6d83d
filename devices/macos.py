"""macOS process and foreground-application helpers via PyObjC

Requires PyObjC (pyobjc-framework-Cocoa) for AppKit and CoreFoundation
access. Without it, no application is ever considered focused and the
run loop is not pumped.
"""
import logging
import time
from typing import Callable, Iterable, Optional

LOG = logging.getLogger("spacebridge.macos")

try:
    from AppKit import NSApplication, NSApplicationActivationPolicyAccessory, NSWorkspace
    from CoreFoundation import CFRunLoopRunInMode, kCFRunLoopDefaultMode
    HAS_APPKIT = True
except ImportError:
    HAS_APPKIT = False
    LOG.warning("PyObjC not installed; foreground detection disabled")


def frontmost_bundle_id() -> Optional[str]:
    """Bundle identifier of the frontmost application, if any."""
    if not HAS_APPKIT:
        return None
    app = NSWorkspace.sharedWorkspace().frontmostApplication()
    if app is None:
        return None
    bundle_id = app.bundleIdentifier()
    return str(bundle_id) if bundle_id is not None else None


def matches_allow_list(bundle_id: Optional[str], prefixes: Iterable[str]) -> bool:
    if not bundle_id:
        return False
    return any(bundle_id.startswith(p) for p in prefixes)


class ForegroundWatcher:
    def __init__(self, allow_list, query: Callable[[], Optional[str]] = frontmost_bundle_id):
        self.allow_list = list(allow_list)
        self._query = query
        self._last = None

    def is_target_focused(self) -> bool:
        try:
            bundle_id = self._query()
        except Exception:
            LOG.exception("frontmost application lookup failed")
            return False
        if bundle_id != self._last:
            LOG.debug("frontmost application: %s", bundle_id)
            self._last = bundle_id
        return matches_allow_list(bundle_id, self.allow_list)


def set_accessory_policy() -> bool:
    """Run as an accessory app: no dock icon, no menu bar."""
    if not HAS_APPKIT:
        LOG.info("PyObjC not available, skipping accessory activation policy")
        return False
    app = NSApplication.sharedApplication()
    app.setActivationPolicy_(NSApplicationActivationPolicyAccessory)
    app.finishLaunching()
    LOG.info("NSApplication initialized (accessory policy, no dock icon)")
    return True


def run_loop_waiter(stop_event) -> Callable[[float], bool]:
    """Return a wait(seconds) callable for the ticker thread.

    3DconnexionClient delivers callbacks through the run loop of the thread
    that registered the handlers, so on macOS the ticker waits by running
    the run loop. Returns True once ``stop_event`` is set.
    """
    if not HAS_APPKIT:
        return stop_event.wait

    def wait(seconds):
        deadline = time.monotonic() + seconds
        if not stop_event.is_set():
            CFRunLoopRunInMode(kCFRunLoopDefaultMode, seconds, False)
        # returns early when the loop has no sources
        remaining = deadline - time.monotonic()
        if remaining > 0:
            return stop_event.wait(remaining)
        return stop_event.is_set()

    return wait
