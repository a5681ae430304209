"""Event dispatcher.

Decides which subscriptions fire for a host transition and runs each matched
handler as its own detached task. Handler failures are logged and never reach
the caller.
"""

import asyncio
import functools
import inspect
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from warden.models import EventKind, Host, Subscription
from warden.shared.logger import get_logger

logger = get_logger("dispatcher")


def match(
    subscription: Subscription,
    went_online: bool,
    host: Host,
    online: Sequence[Host],
) -> EventKind | None:
    """Return the event kind to deliver for this transition, or None.

    ``online`` holds the other hosts online at the moment of the transition;
    it never includes ``host`` itself.
    """
    wanted = subscription.hosts
    names = {h.name for h in online}
    event = subscription.event

    if went_online:
        if event is EventKind.ONLINE:
            if not wanted or host.name in wanted:
                return EventKind.ONLINE
        elif event is EventKind.ONLINE_ALL:
            # Any arrival while the whole group is up fires, members or not.
            if not wanted or wanted <= names | {host.name}:
                return EventKind.ONLINE_ALL
        return None

    if event is EventKind.OFFLINE:
        if not wanted or host.name in wanted:
            return EventKind.OFFLINE
    elif event is EventKind.OFFLINE_ALL:
        if not wanted:
            # Last host of the whole fleet; delivered with the plain offline tag.
            if not names:
                return EventKind.OFFLINE
        elif host.name in wanted and wanted.isdisjoint(names):
            return EventKind.OFFLINE_ALL
    return None


def _is_async(handler) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


class Dispatcher:
    """Holds subscriptions and spawns handler tasks for matching transitions."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()
        self._executor: ThreadPoolExecutor | None = None

    def add(self, subscription: Subscription):
        self._subscriptions.append(subscription)

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    @property
    def pending(self) -> int:
        """Number of handler invocations still running."""
        return len(self._tasks)

    def dispatch(self, went_online: bool, host: Host, online: Sequence[Host]) -> list[asyncio.Task]:
        """Start a task for every matching subscription, in registration order.

        Must be called from a running event loop. Returns the spawned tasks;
        callers are not expected to await them.
        """
        online = tuple(online)
        spawned = []
        for subscription in self._subscriptions:
            kind = match(subscription, went_online, host, online)
            if kind is None:
                continue
            task = asyncio.create_task(
                self._invoke(subscription, kind, host, online),
                name=f"warden-handler-{kind.value}-{host.name}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            spawned.append(task)
        return spawned

    async def _invoke(self, subscription: Subscription, kind: EventKind, host: Host, online: tuple[Host, ...]):
        handler = subscription.handler
        try:
            if _is_async(handler):
                await handler(kind, host, list(online))
            else:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(thread_name_prefix="warden-handler")
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(
                    self._executor, functools.partial(handler, kind, host, list(online))
                )
                if inspect.isawaitable(result):
                    await result
        except Exception:
            logger.exception(
                f"Handler for {kind.value} on {host.name} failed",
                extra={"warden_data": {"event": kind.value, "host": host.name}},
            )

    async def drain(self, timeout: float | None = None) -> int:
        """Wait for in-flight handlers, cancelling any still running after ``timeout``.

        Returns the number of abandoned (cancelled) invocations.
        """
        if not self._tasks:
            return 0
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        self._tasks.difference_update(done)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self._tasks.difference_update(pending)
        return len(pending)

    def close(self):
        """Release the handler thread pool without waiting for its threads.

        Queued calls are dropped. A call already running in a thread keeps
        running until it returns; it no longer holds up interpreter shutdown
        through the loop's default executor.
        """
        if self._executor is None:
            return
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = None
