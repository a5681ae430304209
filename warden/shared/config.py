"""Configuration loader for Warden."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from warden.models import EventKind

DEFAULTS: dict[str, Any] = {
    "trust_forwarded": False,
    "redis_url": None,
    "heartbeat_channel": "warden/heartbeat",
    "log_file": None,
    "log_level": "INFO",
    "shutdown_timeout_seconds": 5,
    "subscriptions": [],
}


class ConfigError(ValueError):
    """Raised when a configuration file is well-formed JSON but not a valid Warden config."""


@dataclass(frozen=True)
class SubscriptionConfig:
    event: EventKind
    hosts: tuple[str, ...] = ()
    exec: str | None = None
    publish: str | None = None
    timeout: float | None = None


@dataclass(frozen=True)
class WardenConfig:
    heartbeat_ttl: float
    address: str
    port: int
    trust_forwarded: bool = False
    redis_url: str | None = None
    heartbeat_channel: str = "warden/heartbeat"
    log_file: str | None = None
    log_level: str = "INFO"
    shutdown_timeout: float = 5
    subscriptions: list[SubscriptionConfig] = field(default_factory=list)


def load_config(config_path: str) -> dict[str, Any]:
    """Load the raw configuration object from a JSON file.

    Defaults are applied later, by ``parse_warden_config``.

    Args:
        config_path: Path to the JSON configuration file.

    Returns:
        The file's top-level JSON object.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigError: If the file is not a JSON object.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        try:
            config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Failed to parse {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"{config_path} must contain a JSON object")

    return config


def _require(raw: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    if raw.get(key) is None:
        raise ConfigError(f"Missing required setting '{key}'")
    value = raw[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ConfigError(f"Setting '{key}' has invalid value {value!r}")
    return value


def _parse_subscription(index: int, raw: Any) -> SubscriptionConfig:
    where = f"subscriptions[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be an object")

    try:
        event = EventKind(raw.get("event"))
    except ValueError:
        names = ", ".join(e.value for e in EventKind)
        raise ConfigError(f"{where}: unknown event {raw.get('event')!r} (expected one of {names})") from None

    hosts = raw.get("hosts") or []
    if not isinstance(hosts, list) or not all(isinstance(h, str) for h in hosts):
        raise ConfigError(f"{where}: 'hosts' must be a list of host names")

    command = raw.get("exec")
    channel = raw.get("publish")
    if (command is None) == (channel is None):
        raise ConfigError(f"{where}: exactly one of 'exec' or 'publish' is required")
    if command is not None and (not isinstance(command, str) or not command.strip()):
        raise ConfigError(f"{where}: 'exec' must be a non-empty command")
    if channel is not None and (not isinstance(channel, str) or not channel):
        raise ConfigError(f"{where}: 'publish' must be a channel name")

    timeout = raw.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ConfigError(f"{where}: 'timeout' must be a positive number of seconds")

    return SubscriptionConfig(
        event=event,
        hosts=tuple(hosts),
        exec=command,
        publish=channel,
        timeout=timeout,
    )


def parse_warden_config(raw: dict[str, Any]) -> WardenConfig:
    """Validate a raw configuration dictionary and build a ``WardenConfig``.

    Raises:
        ConfigError: On any missing or invalid setting.
    """
    merged = {**DEFAULTS, **raw}

    ttl = _require(merged, "heartbeat_ttl_seconds", (int, float))
    if ttl <= 0:
        raise ConfigError("Setting 'heartbeat_ttl_seconds' must be positive")
    address = _require(merged, "address", str)
    port = _require(merged, "port", int)
    if not 0 <= port <= 65535:
        raise ConfigError(f"Setting 'port' out of range: {port}")

    shutdown_timeout = merged["shutdown_timeout_seconds"]
    if isinstance(shutdown_timeout, bool) or not isinstance(shutdown_timeout, (int, float)) or shutdown_timeout < 0:
        raise ConfigError("Setting 'shutdown_timeout_seconds' must be a non-negative number")

    raw_subs = merged["subscriptions"]
    if not isinstance(raw_subs, list):
        raise ConfigError("Setting 'subscriptions' must be a list")
    subscriptions = [_parse_subscription(i, s) for i, s in enumerate(raw_subs)]

    redis_url = merged["redis_url"]
    if redis_url is None and any(s.publish for s in subscriptions):
        raise ConfigError("'publish' subscriptions require 'redis_url'")

    return WardenConfig(
        heartbeat_ttl=float(ttl),
        address=address,
        port=port,
        trust_forwarded=bool(merged["trust_forwarded"]),
        redis_url=redis_url,
        heartbeat_channel=merged["heartbeat_channel"],
        log_file=merged["log_file"],
        log_level=str(merged["log_level"]).upper(),
        shutdown_timeout=float(shutdown_timeout),
        subscriptions=subscriptions,
    )


def load_warden_config(config_path: str) -> WardenConfig:
    """Load and validate a Warden configuration file."""
    return parse_warden_config(load_config(config_path))
