"""Warden: heartbeat-driven host liveness monitor."""

__version__ = "0.1.0"
