"""TOML config loader: built-in defaults + defaults.toml + optional override file."""

import copy
import tomllib
from dataclasses import dataclass
from pathlib import Path

import tomli_w

DEFAULTS_PATH = Path(__file__).parent.parent.parent.parent / "config" / "defaults.toml"

BUILTIN_DEFAULTS: dict = {
    "installer": {
        "base_url": "http://localhost:5000/api-installer",
        "request_timeout_s": 30.0,
    },
    "stream": {
        "idle_timeout_s": 300.0,
        "reconnect_delay_s": 3.0,
        "max_reconnects": 10,
        "disconnect_delay_s": 2.0,
    },
    "marketplace": {
        "api_url": "",
        "api_key": "",
        "client_id": "",
    },
    "relay": {
        "host": "0.0.0.0",
        "port": 5000,
        "connection_timeout_s": 600.0,
        "ping_interval_s": 15.0,
    },
}


def load_defaults() -> dict:
    """Load the global defaults.toml merged over the built-in defaults."""
    config = copy.deepcopy(BUILTIN_DEFAULTS)
    if DEFAULTS_PATH.exists():
        with open(DEFAULTS_PATH, "rb") as f:
            _deep_merge(config, tomllib.load(f))
    return config


def save_defaults(config: dict) -> None:
    """Write the global defaults.toml."""
    DEFAULTS_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(DEFAULTS_PATH, "wb") as f:
        tomli_w.dump(config, f)


def load_config(override_toml: Path | None = None) -> dict:
    """Load defaults, with an optional override TOML merged on top."""
    config = load_defaults()
    if override_toml is not None and override_toml.exists():
        with open(override_toml, "rb") as f:
            _deep_merge(config, tomllib.load(f))
    return config


def set_config_value(config: dict, dotted_key: str, raw_value: str) -> dict:
    """Set SECTION.KEY in config, coercing the value to the existing type.

    Raises KeyError for an unknown key, ValueError for an uncoercible value.
    """
    section, _, key = dotted_key.partition(".")
    if not key or section not in config or key not in config[section]:
        raise KeyError(f"Unknown config key: {dotted_key}")
    current = config[section][key]
    if isinstance(current, bool):
        value = raw_value.lower() in ("true", "1", "yes")
    elif isinstance(current, int):
        value = int(raw_value)
    elif isinstance(current, float):
        value = float(raw_value)
    else:
        value = raw_value
    config[section][key] = value
    return config


@dataclass(frozen=True)
class StreamConfig:
    """Settings for one Stream Session."""
    base_url: str = BUILTIN_DEFAULTS["installer"]["base_url"]
    idle_timeout_s: float = 300.0
    reconnect_delay_s: float = 3.0
    max_reconnects: int = 10
    disconnect_delay_s: float = 2.0

    @classmethod
    def from_dict(cls, config: dict) -> "StreamConfig":
        installer = config.get("installer", {})
        stream = config.get("stream", {})
        return cls(
            base_url=installer.get("base_url", cls.base_url),
            idle_timeout_s=float(stream.get("idle_timeout_s", cls.idle_timeout_s)),
            reconnect_delay_s=float(stream.get("reconnect_delay_s", cls.reconnect_delay_s)),
            max_reconnects=int(stream.get("max_reconnects", cls.max_reconnects)),
            disconnect_delay_s=float(stream.get("disconnect_delay_s", cls.disconnect_delay_s)),
        )


@dataclass(frozen=True)
class InstallerConfig:
    """Where and how to reach the local installer API."""
    base_url: str = BUILTIN_DEFAULTS["installer"]["base_url"]
    request_timeout_s: float = 30.0

    @classmethod
    def from_dict(cls, config: dict) -> "InstallerConfig":
        installer = config.get("installer", {})
        return cls(
            base_url=installer.get("base_url", cls.base_url),
            request_timeout_s=float(installer.get("request_timeout_s", cls.request_timeout_s)),
        )


@dataclass(frozen=True)
class MarketplaceConfig:
    """Catalog API credentials for outcome reporting. Empty api_url disables it."""
    api_url: str = ""
    api_key: str = ""
    client_id: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    @classmethod
    def from_dict(cls, config: dict) -> "MarketplaceConfig":
        market = config.get("marketplace", {})
        return cls(
            api_url=market.get("api_url", ""),
            api_key=market.get("api_key", ""),
            client_id=market.get("client_id", ""),
        )


@dataclass(frozen=True)
class RelayConfig:
    """Log relay server settings."""
    host: str = "0.0.0.0"
    port: int = 5000
    connection_timeout_s: float = 600.0
    ping_interval_s: float = 15.0

    @classmethod
    def from_dict(cls, config: dict) -> "RelayConfig":
        relay = config.get("relay", {})
        return cls(
            host=relay.get("host", cls.host),
            port=int(relay.get("port", cls.port)),
            connection_timeout_s=float(relay.get("connection_timeout_s", cls.connection_timeout_s)),
            ping_interval_s=float(relay.get("ping_interval_s", cls.ping_interval_s)),
        )


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place, recursing into dicts."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
