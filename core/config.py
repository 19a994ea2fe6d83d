"""Bridge configuration: defaults plus an optional YAML override file"""
import ipaddress
import logging
from dataclasses import dataclass, field, fields
from typing import List, Optional

import yaml

LOG = logging.getLogger("spacebridge.config")

DEFAULT_ALLOW_LIST = [
    "com.figma.Desktop",
    "com.google.Chrome",
    "com.apple.Safari",
    "org.mozilla.firefox",
    "company.thebrowser.Browser",
    "com.microsoft.edgemac",
    "com.brave.Browser",
    "com.operasoftware.Opera",
    "com.vivaldi.Vivaldi",
    "org.chromium.Chromium",
]


class ConfigError(ValueError):
    pass


@dataclass
class BridgeConfig:
    host: str = "127.0.0.1"
    port: int = 18944
    tick_ms: int = 16
    focus_check_interval: int = 8  # evaluate activation every Nth tick
    send_interval_ms: int = 16
    bus_capacity: int = 64
    deadzone: int = 3
    scale: float = 350.0
    clamp: float = 1.0
    smoothing: float = 0.4
    snap_epsilon: float = 0.003
    client_name: str = "SpaceMouse Proxy"
    button_mask: int = 0xFFFFFFFF
    allow_list: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOW_LIST))

    def validate(self):
        try:
            loopback = ipaddress.ip_address(self.host).is_loopback
        except ValueError:
            loopback = self.host == "localhost"
        if not loopback:
            raise ConfigError(f"host must be a loopback address, got {self.host!r}")
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port out of range: {self.port}")
        for name in ("tick_ms", "focus_check_interval", "send_interval_ms", "bus_capacity"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.deadzone < 0:
            raise ConfigError("deadzone must not be negative")
        if self.scale <= 0 or self.clamp <= 0 or self.snap_epsilon < 0:
            raise ConfigError("scale and clamp must be positive, snap_epsilon non-negative")
        if not 0.0 < self.smoothing <= 1.0:
            raise ConfigError(f"smoothing must be in (0, 1], got {self.smoothing}")
        if (not isinstance(self.allow_list, list) or not self.allow_list
                or not all(isinstance(p, str) and p for p in self.allow_list)):
            raise ConfigError("allow_list must be a non-empty list of bundle id prefixes")
        return self


def load_config(path: Optional[str] = None) -> BridgeConfig:
    """Load a config file, falling back to defaults for missing keys.

    Unknown keys are rejected rather than ignored so a typo in the file does
    not silently leave a default in place.
    """
    if not path:
        return BridgeConfig().validate()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping")

    known = {f.name for f in fields(BridgeConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
    try:
        cfg = BridgeConfig(**data).validate()
    except TypeError as e:
        raise ConfigError(f"bad value in {path}: {e}") from e
    LOG.debug("loaded config from %s: %s", path, cfg)
    return cfg
