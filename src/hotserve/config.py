"""Configuration loading utilities for the live-reload server."""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple

import yaml # type: ignore


logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the configuration file or a command-line override is invalid."""


class WatchStrategy(str, Enum):
    """Available change-detection backends."""

    EVENTS = "events"
    POLL = "poll"


@dataclass
class ServerConfig:
    """Where to listen and which directory to serve."""

    root_path: Path = field(default_factory=lambda: Path(".").resolve())
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class WatchConfig:
    """Options describing how the served tree is watched for changes."""

    strategy: WatchStrategy = WatchStrategy.EVENTS
    poll_interval: float = 0.5
    debounce: float = 0.1
    exclude_dirs: List[str] = field(default_factory=lambda: ["node_modules"])
    ignore_suffixes: List[str] = field(default_factory=lambda: ["~", ".tmp"])


@dataclass
class ClientConfig:
    """Push-channel behaviour for connected browsers."""

    endpoint: str = "/__livereload"
    keepalive_interval: float = 25.0
    liveness_interval: float = 1.0
    reconnect_delay: float = 2.0
    buffer_size: int = 8


@dataclass
class AppConfig:
    """Top-level configuration structure."""

    server: ServerConfig = field(default_factory=ServerConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    clients: ClientConfig = field(default_factory=ClientConfig)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load and validate the YAML configuration file.

    Without a path the built-in defaults are returned, serving the current
    working directory.
    """

    if path is None:
        return AppConfig()

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:  # pragma: no cover - logging helper
        raise ConfigError(f"Failed to parse YAML configuration: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    config = AppConfig(
        server=_parse_server_config(data.get("server"), config_path=path),
        watch=_parse_watch_config(data.get("watch")),
        clients=_parse_client_config(data.get("clients")),
    )
    logger.debug("Loaded configuration from %s: %s", path, config)
    return config


def apply_overrides(
    config: AppConfig,
    *,
    address: Optional[str] = None,
    root: Optional[str] = None,
    poll: bool = False,
) -> AppConfig:
    """Return a copy of ``config`` with command-line overrides applied."""

    server = config.server
    if address is not None:
        host, port = parse_address(address)
        server = dataclasses.replace(server, host=host, port=port)
    if root is not None:
        server = dataclasses.replace(server, root_path=Path(root).resolve())

    watch = config.watch
    if poll:
        watch = dataclasses.replace(watch, strategy=WatchStrategy.POLL)

    return dataclasses.replace(config, server=server, watch=watch)


def validate_root(config: AppConfig) -> Path:
    """Ensure the served root exists and is a directory."""

    root = config.server.root_path
    if not root.exists():
        raise ConfigError(f"Directory to serve does not exist: {root}")
    if not root.is_dir():
        raise ConfigError(f"Path to serve is not a directory: {root}")
    return root


def parse_address(value: str) -> Tuple[str, int]:
    """Split ``host:port`` into its parts. ``:8080`` listens on every interface."""

    host, sep, port_raw = value.rpartition(":")
    if not sep:
        raise ConfigError(f"Listen address must look like host:port, got {value!r}")
    host = host.strip("[]")
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise ConfigError(f"Listen port must be numeric, got {port_raw!r}") from exc
    if not 0 <= port <= 65535:
        raise ConfigError(f"Listen port out of range: {port}")
    return host, port


def _parse_server_config(raw: Any, *, config_path: Path) -> ServerConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("'server' section must be a mapping")

    defaults = ServerConfig()

    root_raw = raw.get("root", ".")
    if not isinstance(root_raw, str):
        raise ConfigError("server.root must be a string")
    root_path = Path(root_raw)
    if not root_path.is_absolute():
        root_path = (config_path.parent / root_path).resolve()

    host = raw.get("host", defaults.host)
    if not isinstance(host, str):
        raise ConfigError("server.host must be a string")

    port = raw.get("port", defaults.port)
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigError("server.port must be an integer")
    if not 0 <= port <= 65535:
        raise ConfigError("server.port must be between 0 and 65535")

    return ServerConfig(root_path=root_path, host=host, port=port)


def _parse_watch_config(raw: Any) -> WatchConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("'watch' section must be a mapping")

    defaults = WatchConfig()

    strategy_raw = raw.get("strategy", defaults.strategy.value)
    try:
        strategy = WatchStrategy(strategy_raw)
    except ValueError as exc:
        allowed = ", ".join(option.value for option in WatchStrategy)
        raise ConfigError(f"watch.strategy must be one of: {allowed}") from exc

    exclude_dirs = raw.get("exclude_dirs")
    ignore_suffixes = raw.get("ignore_suffixes")

    return WatchConfig(
        strategy=strategy,
        poll_interval=_positive_float(raw.get("poll_interval", defaults.poll_interval), "watch.poll_interval"),
        debounce=_non_negative_float(raw.get("debounce", defaults.debounce), "watch.debounce"),
        exclude_dirs=(
            defaults.exclude_dirs if exclude_dirs is None else _ensure_str_list(exclude_dirs, "watch.exclude_dirs")
        ),
        ignore_suffixes=(
            defaults.ignore_suffixes
            if ignore_suffixes is None
            else _ensure_str_list(ignore_suffixes, "watch.ignore_suffixes")
        ),
    )


def _parse_client_config(raw: Any) -> ClientConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("'clients' section must be a mapping")

    defaults = ClientConfig()

    endpoint = raw.get("endpoint", defaults.endpoint)
    if not isinstance(endpoint, str) or not endpoint.startswith("/"):
        raise ConfigError("clients.endpoint must be a path starting with '/'")

    buffer_size = raw.get("buffer_size", defaults.buffer_size)
    if isinstance(buffer_size, bool) or not isinstance(buffer_size, int) or buffer_size < 1:
        raise ConfigError("clients.buffer_size must be a positive integer")

    return ClientConfig(
        endpoint=endpoint,
        keepalive_interval=_positive_float(
            raw.get("keepalive_interval", defaults.keepalive_interval), "clients.keepalive_interval"
        ),
        liveness_interval=_positive_float(
            raw.get("liveness_interval", defaults.liveness_interval), "clients.liveness_interval"
        ),
        reconnect_delay=_non_negative_float(
            raw.get("reconnect_delay", defaults.reconnect_delay), "clients.reconnect_delay"
        ),
        buffer_size=buffer_size,
    )


def _positive_float(value: Any, field_name: str) -> float:
    number = _to_float(value, field_name)
    if number <= 0:
        raise ConfigError(f"{field_name} must be positive")
    return number


def _non_negative_float(value: Any, field_name: str) -> float:
    number = _to_float(value, field_name)
    if number < 0:
        raise ConfigError(f"{field_name} must not be negative")
    return number


def _to_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be numeric")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be numeric") from exc


def _ensure_str_list(value: Any, field_name: str) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{field_name} must be a list of strings")
    items: List[str] = []
    for elem in value:
        if not isinstance(elem, str):
            raise ConfigError(f"{field_name} must contain only strings")
        items.append(elem)
    return items
