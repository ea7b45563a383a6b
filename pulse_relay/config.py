"""Configuration file loading and defaults."""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class AppConfig:
    log_level: str = "INFO"
    tick_interval: float = 1.0
    session_capacity: int = 100
    state_file: str = "~/.config/pulse-relay/state.json"


@dataclass
class UplinkConfig:
    url: str = "ws://127.0.0.1:8765"
    token: str = ""
    token_file: str = ""
    open_timeout: float = 10.0
    send_timeout: float = 5.0
    close_timeout: float = 2.0
    reconnect_initial: float = 5.0
    reconnect_max: float = 60.0


@dataclass
class BLEConfig:
    connect_timeout: float = 15.0
    scan_settle: float = 0.2


@dataclass
class DeviceConfig:
    address: str = ""


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    uplink: UplinkConfig = field(default_factory=UplinkConfig)
    ble: BLEConfig = field(default_factory=BLEConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)


def load_config() -> Config:
    """Load config from file, with defaults for missing values."""
    paths = [
        Path("./config.toml"),
        Path.home() / ".config" / "pulse-relay" / "config.toml",
    ]

    for path in paths:
        if path.exists():
            try:
                with open(path, "rb") as f:
                    data = tomllib.load(f)
                return _parse_config(data)
            except tomllib.TOMLDecodeError as e:
                logger.warning("Failed to parse config '%s': %s. Using defaults.", path, e)
                return Config()

    return Config()


def _parse_config(data: dict) -> Config:
    """Parse TOML dict into Config dataclass.

    Uses dataclass defaults for missing values.
    """
    return Config(
        app=AppConfig(**data.get("app", {})),
        uplink=UplinkConfig(**data.get("uplink", {})),
        ble=BLEConfig(**data.get("ble", {})),
        device=DeviceConfig(**data.get("device", {})),
    )


def load_token(uplink: UplinkConfig) -> str:
    """Return the auth token, read from token_file when not set inline."""
    if uplink.token:
        return uplink.token
    if not uplink.token_file:
        return ""
    path = Path(uplink.token_file).expanduser()
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning("Failed to read token file '%s': %s", path, e)
        return ""
