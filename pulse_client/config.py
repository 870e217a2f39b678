"""Configuration file loading and defaults."""

import logging
import tomllib
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8765
    broadcast_timeout: float = 0.5
    log_level: str = "INFO"


@dataclass
class BLEConfig:
    adapter: str = ""  # e.g. "hci0"; empty uses the system default
    power_poll_interval: float = 5.0


@dataclass
class DeviceConfig:
    """Which discovered device the CLI connects to on its own."""

    address: str = ""
    name_filter: str = ""


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    ble: BLEConfig = field(default_factory=BLEConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)


def default_paths() -> list[Path]:
    """Config locations in priority order."""
    return [
        Path("./config.toml"),
        Path.home() / ".config" / "pulse-client" / "config.toml",
    ]


def load_config(paths: Sequence[Path] | None = None) -> Config:
    """Load config from the first file that exists, with defaults for missing values."""
    for path in paths if paths is not None else default_paths():
        if not path.exists():
            continue
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.warning("Failed to parse config '%s': %s. Using defaults.", path, e)
            return Config()
        logger.debug("Loaded config from %s", path)
        return _parse_config(data)

    return Config()


def _parse_config(data: dict) -> Config:
    """Parse TOML dict into Config dataclass.

    Uses dataclass defaults for missing values. Unknown keys inside a section
    raise TypeError; unknown sections are ignored.
    """
    return Config(
        server=ServerConfig(**data.get("server", {})),
        ble=BLEConfig(**data.get("ble", {})),
        device=DeviceConfig(**data.get("device", {})),
    )
