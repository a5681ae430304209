"""Heartbeat registry.

``Warden`` owns the host table, the subscription list and the expiry sweeper.
Every table access happens under a single ``asyncio.Lock``; transitions found
while holding it are handed to the dispatcher, which only spawns tasks, so no
handler ever runs inside the critical section.

Expiry is scheduled on a monotonic clock, so wall clock steps neither expire
hosts early nor stall the sweeper. The wall clock only stamps
``Host.last_heartbeat`` for display.

Expiry times live in a min-heap of ``(expires_at, name)``. A refresh pushes a
new entry and leaves the old one behind; entries that no longer match the
host's current expiry are dropped when they reach the top.
"""

import asyncio
import heapq
import time
from typing import Callable, Iterable

from warden.dispatcher import Dispatcher
from warden.models import EventKind, Handler, Host, Subscription
from warden.shared.logger import get_logger

logger = get_logger("registry")

# Rebuild the expiry heap once it holds this many entries beyond 2x the table.
_HEAP_SLACK = 64


class Warden:
    """Tracks online hosts by heartbeat and notifies subscribers of transitions."""

    def __init__(
        self,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        dispatcher: Dispatcher | None = None,
    ):
        if ttl <= 0:
            raise ValueError(f"Heartbeat TTL must be positive, got {ttl}")
        self._ttl = ttl
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = asyncio.Lock()
        self._hosts: dict[str, Host] = {}
        # Monotonic time of each host's latest heartbeat.
        self._seen: dict[str, float] = {}
        self._expiry: list[tuple[float, str]] = []
        self._dispatcher = dispatcher or Dispatcher()
        self._sweeper: asyncio.Task | None = None

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def __len__(self) -> int:
        return len(self._hosts)

    async def start(self):
        """Start the background expiry sweeper."""
        if self.running:
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="warden-sweeper")
        logger.info(f"Sweeper started with {self._ttl}s heartbeat TTL")

    async def stop(self, timeout: float | None = 5.0):
        """Stop the sweeper and wait up to ``timeout`` seconds for running handlers.

        Handlers still running after ``timeout`` are cancelled. A plain
        callable blocked inside its worker thread cannot be interrupted: its
        task is abandoned and the thread pool is released without waiting, so
        the blocked call no longer delays shutdown but keeps running until it
        returns on its own.
        """
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        abandoned = await self._dispatcher.drain(timeout)
        self._dispatcher.close()
        if abandoned:
            logger.warning(f"Abandoned {abandoned} running handler(s) on shutdown")
        logger.info("Sweeper stopped")

    async def heartbeat(self, name: str, address: str):
        """Record a heartbeat. A previously unknown host triggers an online transition."""
        async with self._lock:
            now = self._clock()
            known = self._hosts.get(name)
            host = Host(name=name, address=address, last_heartbeat=self._wall_clock())
            self._hosts[name] = host
            self._seen[name] = now
            heapq.heappush(self._expiry, (now + self._ttl, name))
            self._compact()

            if known is not None:
                return

            logger.info(
                f"Host {name} online",
                extra={"warden_data": {"host": name, "address": address}},
            )
            others = [h for h in self._hosts.values() if h.name != name]
            self._dispatcher.dispatch(True, host, others)

    async def hosts(self) -> list[Host]:
        """Return a snapshot of the online hosts in arrival order."""
        async with self._lock:
            return list(self._hosts.values())

    async def register(
        self,
        event: EventKind | str,
        hosts: Iterable[str] | None,
        handler: Handler,
    ) -> Subscription:
        """Subscribe ``handler`` to ``event`` for ``hosts`` (empty or None = any host)."""
        subscription = Subscription(
            event=EventKind(event),
            handler=handler,
            hosts=frozenset(hosts or ()),
        )
        async with self._lock:
            self._dispatcher.add(subscription)
        logger.info(
            f"Registered {subscription.event.value} handler",
            extra={"warden_data": {"event": subscription.event.value, "hosts": sorted(subscription.hosts)}},
        )
        return subscription

    async def sweep(self) -> float:
        """Run one sweep cycle: expire overdue hosts and return the next wake-up time."""
        async with self._lock:
            now = self._clock()
            self._expire(now)
            if self._expiry:
                return self._expiry[0][0]
            # Empty table: re-check after one TTL.
            return now + self._ttl

    def _expire(self, now: float):
        while self._expiry:
            expires_at, name = self._expiry[0]
            seen = self._seen.get(name)
            if seen is None or seen + self._ttl != expires_at:
                heapq.heappop(self._expiry)
                continue
            if expires_at > now:
                break

            heapq.heappop(self._expiry)
            del self._seen[name]
            host = self._hosts.pop(name)
            logger.info(
                f"Host {name} offline",
                extra={"warden_data": {"host": name, "last_heartbeat": host.last_heartbeat_iso}},
            )
            self._dispatcher.dispatch(False, host, list(self._hosts.values()))

    def _compact(self):
        if len(self._expiry) <= 2 * len(self._hosts) + _HEAP_SLACK:
            return
        self._expiry = [(seen + self._ttl, name) for name, seen in self._seen.items()]
        heapq.heapify(self._expiry)

    async def _sweep_loop(self):
        while True:
            try:
                wake_at = await self.sweep()
            except Exception:
                logger.exception("Sweep cycle failed")
                wake_at = self._clock() + self._ttl
            await asyncio.sleep(max(0.0, wake_at - self._clock()))
