"""Shared utilities for Warden components."""

from warden.shared.bus import RedisBus
from warden.shared.logger import get_logger
from warden.shared.config import ConfigError, WardenConfig, load_config, load_warden_config

__all__ = ["RedisBus", "get_logger", "ConfigError", "WardenConfig", "load_config", "load_warden_config"]
