"""Client settings and the server profiles file."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

from asyncrcon.errors import ConfigurationError

CONFIG_DIR = Path.home() / ".config" / "asyncrcon"
CONFIG_FILE = CONFIG_DIR / "config.toml"
HISTORY_FILE = CONFIG_DIR / "history"

DEFAULT_PORT = 25575
# Milliseconds
DEFAULT_TIMEOUT = 5000
_MAX_PORT = 65535


@dataclass(frozen=True)
class RconConfig:
    """Validated settings for one RCON client.

    ``host`` is stored trimmed. ``port`` and ``timeout`` (milliseconds) fall
    back to their defaults when given as None or 0.
    """

    host: str
    password: str
    port: int | None = DEFAULT_PORT
    timeout: int | None = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        host = (self.host or "").strip()
        if not host:
            msg = '"host" argument cannot be empty'
            raise ConfigurationError(msg)
        if not self.password or not self.password.strip():
            msg = '"password" argument cannot be empty'
            raise ConfigurationError(msg)

        port = self.port or DEFAULT_PORT
        if not 0 < port <= _MAX_PORT:
            msg = f'"port" must be between 1 and {_MAX_PORT}, got {port}'
            raise ConfigurationError(msg)
        timeout = self.timeout or DEFAULT_TIMEOUT
        if timeout < 0:
            msg = f'"timeout" cannot be negative, got {timeout}'
            raise ConfigurationError(msg)

        object.__setattr__(self, "host", host)
        object.__setattr__(self, "port", port)
        object.__setattr__(self, "timeout", timeout)

    @property
    def timeout_seconds(self) -> float:
        """The timeout as seconds, the unit asyncio works in."""
        return self.timeout / 1000


@dataclass(frozen=True)
class ServerConfig:
    """A named server profile from the config file."""

    name: str
    host: str
    port: int = DEFAULT_PORT
    password: str | None = None
    timeout: int = DEFAULT_TIMEOUT


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    default_server: str | None
    servers: dict[str, ServerConfig]


def load_config(path: Path = CONFIG_FILE) -> AppConfig:
    """Load and parse the configuration file.

    Returns an empty configuration if no config file exists.
    """
    if not path.exists():
        return AppConfig(default_server=None, servers={})

    with path.open("rb") as f:
        raw = tomllib.load(f)

    defaults = raw.get("defaults", {})

    servers: dict[str, ServerConfig] = {}
    for key, val in raw.get("servers", {}).items():
        servers[key] = ServerConfig(
            name=val.get("name", key),
            host=val["host"],
            port=val.get("port", DEFAULT_PORT),
            password=val.get("password"),
            timeout=val.get("timeout", DEFAULT_TIMEOUT),
        )

    return AppConfig(default_server=defaults.get("server"), servers=servers)


def ensure_config_dir() -> None:
    """Create the config directory if it does not exist."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
