"""Entry point for spacebridge

Starts the WebSocket broadcast server and the device pump, then runs the
activation ticker on the main thread until SIGINT/SIGTERM.
"""
import argparse
import logging
import signal
import sys
import threading

from conditioner import SignalConditioner
from core.activation import ActivationController
from core.bus import EventBus
from core.config import ConfigError, load_config
from devices.connexion import ConnexionDevice, DeviceCallbackAdapter
from devices.macos import ForegroundWatcher, run_loop_waiter, set_accessory_policy
from server.broadcast import BroadcastServer, ServerBindError

__version__ = "0.3.0"

LOG = logging.getLogger("spacebridge")


def build_parser():
    parser = argparse.ArgumentParser(description="spacebridge: SpaceMouse → WebSocket")
    parser.add_argument("--config", help="YAML config file (defaults are used if omitted)")
    parser.add_argument("--port", type=int, help="override the WebSocket port")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level (default: INFO)")
    parser.add_argument("--log-format", default="%(levelname)s:%(name)s:%(message)s",
                        help="Logging format string (default: %(levelname)s:%(name)s:%(message)s)")
    parser.add_argument("--debug-modules", nargs="*", default=[],
                        help="Modules to set to DEBUG level (e.g., 'focus', 'ws', 'device', 'bus')")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=args.log_format)

    # Set DEBUG level for specific modules if requested
    module_map = {
        "focus": "spacebridge.focus",
        "ws": "spacebridge.ws",
        "device": "spacebridge.device",
        "bus": "spacebridge.bus",
        "conditioner": "spacebridge.conditioner",
        "macos": "spacebridge.macos",
    }
    for module in args.debug_modules:
        logger_name = module_map.get(module, f"spacebridge.{module}")
        logging.getLogger(logger_name).setLevel(logging.DEBUG)

    try:
        cfg = load_config(args.config)
        if args.port is not None:
            cfg.port = args.port
            cfg.validate()
    except ConfigError as e:
        LOG.critical("invalid configuration: %s", e)
        return 2

    LOG.info("spacebridge v%s", __version__)

    bus = EventBus(cfg.bus_capacity)
    conditioner = SignalConditioner.from_config(cfg)
    server = BroadcastServer.from_config(cfg, bus)
    try:
        server.start()
    except ServerBindError as e:
        LOG.critical("%s", e)
        return 1

    adapter = DeviceCallbackAdapter(conditioner, bus)
    controller = ActivationController(
        ConnexionDevice(), adapter, conditioner, bus,
        subscriber_count=lambda: server.subscriber_count,
        foreground=ForegroundWatcher(cfg.allow_list),
        check_interval=cfg.focus_check_interval,
        client_name=cfg.client_name,
        button_mask=cfg.button_mask,
    )

    stop_event = threading.Event()

    def request_stop(signum, frame):
        LOG.info("shutdown requested (signal %d)", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    set_accessory_policy()
    LOG.info("Waiting for a client on %s", server.url)

    try:
        adapter.start()
        controller.run(stop_event, period=cfg.tick_ms / 1000.0, wait=run_loop_waiter(stop_event))
    finally:
        adapter.stop()
        server.stop()
    LOG.info("spacebridge stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
