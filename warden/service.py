"""Warden service: wires the registry, HTTP API and message bus together."""

import asyncio
import signal
import sys
import time
from typing import Callable

from aiohttp import web

from warden.actions import build_handler
from warden.api import create_app
from warden.listener import BusListener
from warden.registry import Warden
from warden.shared.bus import RedisBus
from warden.shared.config import WardenConfig
from warden.shared.logger import get_logger

logger = get_logger("service")


class WardenService:
    """Runs one ``Warden`` behind the HTTP API until a shutdown signal arrives."""

    def __init__(self, config: WardenConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.warden = Warden(config.heartbeat_ttl, clock=clock)
        self.bus = RedisBus(redis_url=config.redis_url) if config.redis_url else None
        self.listener = None
        if self.bus is not None:
            self.listener = BusListener(self.warden, self.bus, channel=config.heartbeat_channel)
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def url(self) -> str:
        return f"http://{self.config.address}:{self.config.port}"

    async def setup(self):
        """Register subscriptions, then start the sweeper, bus listener and HTTP API."""
        for sub in self.config.subscriptions:
            await self.warden.register(sub.event, sub.hosts, build_handler(sub, self.bus))

        if self.bus is not None:
            await self.bus.connect()
        await self.warden.start()
        if self.listener is not None:
            await self.listener.start()

        self._runner = web.AppRunner(create_app(self.warden, self.config.trust_forwarded))
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.config.address, self.config.port)
        await self._site.start()
        logger.info(f"Starting API handler on {self.url}")

    async def start(self):
        """Start everything, block until shutdown is requested, then stop."""
        self._install_signal_handlers()
        try:
            await self.setup()
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def request_shutdown(self):
        self._shutdown_event.set()

    async def stop(self):
        """Stop serving, then let running handlers finish within the shutdown timeout."""
        logger.info("Shutting down...")
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        if self.listener is not None:
            try:
                await self.listener.stop()
            except Exception as e:
                logger.error(f"Error stopping bus listener: {e}")
        await self.warden.stop(timeout=self.config.shutdown_timeout)
        if self.bus is not None:
            await self.bus.disconnect()
        logger.info("Stopped")

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._shutdown_event.set)
            except NotImplementedError:
                pass  # Windows fallback below
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, lambda s, f: self._shutdown_event.set())
