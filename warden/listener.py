"""Bus listener: turns heartbeat messages on the message bus into registry heartbeats.

Expected payload: ``{"host": "<name>", "address": "<addr>"}``. Without a
``host`` field the envelope sender is used as the host name.
"""

from warden.registry import Warden
from warden.shared.logger import get_logger

logger = get_logger("listener")

DEFAULT_CHANNEL = "warden/heartbeat"
DEFAULT_ADDRESS = "bus"


class BusListener:
    """Feeds heartbeats published on a bus channel into a ``Warden``."""

    def __init__(self, warden: Warden, bus, channel: str = DEFAULT_CHANNEL):
        self._warden = warden
        self._bus = bus
        self._channel = channel

    @property
    def channel(self) -> str:
        return self._channel

    async def start(self):
        await self._bus.subscribe(self._channel, self._on_heartbeat)
        logger.info(f"Listening for heartbeats on {self._channel}")

    async def stop(self):
        await self._bus.unsubscribe(self._channel)

    async def _on_heartbeat(self, channel: str, message: dict):
        payload = message.get("payload")
        if not isinstance(payload, dict):
            payload = {}
        name = payload.get("host") or message.get("from")
        if not isinstance(name, str) or not name:
            logger.warning(f"Dropping heartbeat without host name on {channel}")
            return
        address = payload.get("address") or DEFAULT_ADDRESS
        await self._warden.heartbeat(name, str(address))
