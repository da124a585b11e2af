"""
Configuration management for Rubedo.

This module loads the DJ's settings (Icecast destination, music folder, shared
database, logging) from a TOML file. The resulting `DjConfig` is passed
explicitly into every component; nothing reads configuration globally.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Used when `music_folder` is unset or does not exist.
DEFAULT_MUSIC_FOLDER = Path("./music")

DEFAULT_CONFIG_PATH = Path("config.toml")


class ConfigError(Exception):
    """The configuration file is unreadable or has invalid values."""


@dataclass(frozen=True)
class IcecastConfig:
    """Where and how to connect as a source."""

    server: str = "localhost"
    port: int = 8000
    mount: str = "/rubedo"
    username: str = "source"
    password: str = "hackme"


@dataclass(frozen=True)
class DjConfig:
    """
    Settings for the broadcast engine.

    Notes:
    - `interrupt_empty_queue` only has an effect while playing random picks:
      a new request then cuts the filler track short.
    - `dj_log_file` is relative to `log_folder`; empty means log to stderr only.
    """

    radio_name: str = "Rubedo"
    music_folder: Path = DEFAULT_MUSIC_FOLDER
    database: Path = Path("db/rubedo.db")
    log_folder: Path = Path("log")
    dj_log_file: str | None = None
    interrupt_empty_queue: bool = False
    idle_interval: float = 500.0
    chunk_size: int = 16384
    icecast: IcecastConfig = field(default_factory=IcecastConfig)

    @property
    def library_root(self) -> Path:
        """The music folder, or ./music if the configured one does not exist."""
        if self.music_folder.is_dir():
            return self.music_folder
        return DEFAULT_MUSIC_FOLDER

    @property
    def log_path(self) -> Path | None:
        if not self.dj_log_file:
            return None
        return self.log_folder / self.dj_log_file


def _expect(data: dict[str, Any], key: str, kind: type | tuple[type, ...], default: Any) -> Any:
    value = data.get(key, default)
    if value is None:
        return default
    # bool is an int subclass; never accept it where a number is wanted
    if isinstance(value, bool) and kind in (int, float, (int, float)):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")
    if not isinstance(value, kind):
        raise ConfigError(f"'{key}' has the wrong type: {value!r}")
    return value


def _parse_icecast(data: dict[str, Any]) -> IcecastConfig:
    defaults = IcecastConfig()
    return IcecastConfig(
        server=_expect(data, "server", str, defaults.server),
        port=_expect(data, "port", int, defaults.port),
        mount=_expect(data, "mount", str, defaults.mount),
        username=_expect(data, "username", str, defaults.username),
        password=_expect(data, "password", str, defaults.password),
    )


def parse_config(data: dict[str, Any]) -> DjConfig:
    """Build a `DjConfig` from already-parsed TOML data."""
    defaults = DjConfig()

    icecast = data.get("icecast", {})
    if not isinstance(icecast, dict):
        raise ConfigError("[icecast] must be a table")

    chunk_size = _expect(data, "chunk_size", int, defaults.chunk_size)
    if chunk_size <= 0:
        raise ConfigError(f"'chunk_size' must be positive, got {chunk_size}")

    idle_interval = float(_expect(data, "idle_interval", (int, float), defaults.idle_interval))
    if idle_interval < 0:
        raise ConfigError(f"'idle_interval' must not be negative, got {idle_interval}")

    log_file = _expect(data, "dj_log_file", str, "")

    return DjConfig(
        radio_name=_expect(data, "radio_name", str, defaults.radio_name),
        music_folder=Path(_expect(data, "music_folder", str, str(defaults.music_folder))),
        database=Path(_expect(data, "database", str, str(defaults.database))),
        log_folder=Path(_expect(data, "log_folder", str, str(defaults.log_folder))),
        dj_log_file=log_file or None,
        interrupt_empty_queue=_expect(
            data, "interrupt_empty_queue", bool, defaults.interrupt_empty_queue
        ),
        idle_interval=idle_interval,
        chunk_size=chunk_size,
        icecast=_parse_icecast(icecast),
    )


def load_config(config_path: Path | None = None) -> DjConfig:
    """
    Load the DJ configuration from a TOML file.

    Args:
        config_path: Path to the config file. If None, uses ./config.toml.

    Returns:
        Loaded DjConfig instance. A missing file yields the defaults.

    Raises:
        ConfigError: The file exists but cannot be parsed or has bad values.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.warning("Config file %s not found, using defaults", config_path)
        return DjConfig()

    logger.debug("Loading config from %s", config_path)

    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e

    return parse_config(data)
