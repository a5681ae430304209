"""Tests for transition matching and handler dispatch."""

import asyncio
import threading

import pytest

from warden.dispatcher import Dispatcher, match
from warden.models import EventKind, Host, Subscription


def _host(name: str) -> Host:
    return Host(name=name, address="10.0.0.1", last_heartbeat=0.0)


def _sub(event: EventKind, *hosts: str) -> Subscription:
    return Subscription(event=event, handler=lambda *args: None, hosts=frozenset(hosts))


class TestMatchOnline:
    def test_any_host(self):
        assert match(_sub(EventKind.ONLINE), True, _host("a"), []) is EventKind.ONLINE

    def test_filtered_host(self):
        sub = _sub(EventKind.ONLINE, "a", "b")
        assert match(sub, True, _host("a"), []) is EventKind.ONLINE
        assert match(sub, True, _host("c"), []) is None

    def test_never_on_offline(self):
        assert match(_sub(EventKind.ONLINE), False, _host("a"), []) is None


class TestMatchOnlineAll:
    def test_empty_filter_fires_on_every_arrival(self):
        sub = _sub(EventKind.ONLINE_ALL)
        assert match(sub, True, _host("a"), [_host("b")]) is EventKind.ONLINE_ALL

    def test_fires_when_group_completes(self):
        sub = _sub(EventKind.ONLINE_ALL, "a", "b")
        assert match(sub, True, _host("b"), [_host("a")]) is EventKind.ONLINE_ALL

    def test_not_while_group_incomplete(self):
        sub = _sub(EventKind.ONLINE_ALL, "a", "b")
        assert match(sub, True, _host("a"), [_host("c")]) is None

    def test_unrelated_arrival_while_group_up(self):
        sub = _sub(EventKind.ONLINE_ALL, "a", "b")
        assert match(sub, True, _host("c"), [_host("a"), _host("b")]) is EventKind.ONLINE_ALL

    def test_unrelated_arrival_while_group_down(self):
        sub = _sub(EventKind.ONLINE_ALL, "a", "b")
        assert match(sub, True, _host("c"), [_host("a")]) is None

    def test_never_on_offline(self):
        assert match(_sub(EventKind.ONLINE_ALL, "a"), False, _host("a"), []) is None


class TestMatchOffline:
    def test_any_host(self):
        assert match(_sub(EventKind.OFFLINE), False, _host("a"), [_host("b")]) is EventKind.OFFLINE

    def test_filtered_host(self):
        sub = _sub(EventKind.OFFLINE, "a")
        assert match(sub, False, _host("a"), []) is EventKind.OFFLINE
        assert match(sub, False, _host("b"), []) is None

    def test_never_on_online(self):
        assert match(_sub(EventKind.OFFLINE), True, _host("a"), []) is None


class TestMatchOfflineAll:
    def test_empty_filter_needs_empty_fleet(self):
        sub = _sub(EventKind.OFFLINE_ALL)
        assert match(sub, False, _host("a"), [_host("b")]) is None

    def test_empty_filter_last_host_uses_offline_tag(self):
        sub = _sub(EventKind.OFFLINE_ALL)
        assert match(sub, False, _host("a"), []) is EventKind.OFFLINE

    def test_fires_when_group_gone(self):
        sub = _sub(EventKind.OFFLINE_ALL, "a", "b")
        assert match(sub, False, _host("b"), [_host("c")]) is EventKind.OFFLINE_ALL

    def test_not_while_member_remains(self):
        sub = _sub(EventKind.OFFLINE_ALL, "a", "b")
        assert match(sub, False, _host("a"), [_host("b")]) is None

    def test_not_for_non_member(self):
        sub = _sub(EventKind.OFFLINE_ALL, "a", "b")
        assert match(sub, False, _host("c"), []) is None

    def test_never_on_online(self):
        assert match(_sub(EventKind.OFFLINE_ALL), True, _host("a"), []) is None


@pytest.mark.asyncio
async def test_dispatch_runs_matching_handlers_in_order():
    calls = []

    async def first(event, host, online):
        calls.append(("first", event, host.name, [h.name for h in online]))

    async def second(event, host, online):
        calls.append(("second", event, host.name, [h.name for h in online]))

    dispatcher = Dispatcher()
    dispatcher.add(Subscription(EventKind.ONLINE, first))
    dispatcher.add(Subscription(EventKind.OFFLINE, lambda *a: calls.append("never")))
    dispatcher.add(Subscription(EventKind.ONLINE, second))

    tasks = dispatcher.dispatch(True, _host("a"), [_host("b")])
    assert len(tasks) == 2
    await dispatcher.drain()

    assert calls == [
        ("first", EventKind.ONLINE, "a", ["b"]),
        ("second", EventKind.ONLINE, "a", ["b"]),
    ]


@pytest.mark.asyncio
async def test_sync_handler_runs_off_loop_thread():
    seen = []

    def handler(event, host, online):
        seen.append(threading.get_ident())

    dispatcher = Dispatcher()
    dispatcher.add(Subscription(EventKind.ONLINE, handler))
    dispatcher.dispatch(True, _host("a"), [])
    await dispatcher.drain()

    assert len(seen) == 1
    assert seen[0] != threading.get_ident()


@pytest.mark.asyncio
async def test_failing_handler_is_isolated():
    calls = []

    async def broken(event, host, online):
        raise RuntimeError("command exploded")

    async def healthy(event, host, online):
        calls.append(host.name)

    dispatcher = Dispatcher()
    dispatcher.add(Subscription(EventKind.OFFLINE, broken))
    dispatcher.add(Subscription(EventKind.OFFLINE, healthy))
    tasks = dispatcher.dispatch(False, _host("a"), [])
    await dispatcher.drain()

    assert calls == ["a"]
    assert all(t.exception() is None for t in tasks)
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_handlers_get_independent_online_lists():
    lists = []

    async def mutating(event, host, online):
        lists.append(online)
        online.clear()

    async def reader(event, host, online):
        lists.append(list(online))

    dispatcher = Dispatcher()
    dispatcher.add(Subscription(EventKind.ONLINE, mutating))
    dispatcher.add(Subscription(EventKind.ONLINE, reader))
    dispatcher.dispatch(True, _host("a"), [_host("b")])
    await dispatcher.drain()

    assert [h.name for h in lists[1]] == ["b"]


@pytest.mark.asyncio
async def test_drain_abandons_slow_handlers():
    async def slow(event, host, online):
        await asyncio.sleep(10)

    dispatcher = Dispatcher()
    dispatcher.add(Subscription(EventKind.ONLINE, slow))
    dispatcher.dispatch(True, _host("a"), [])

    abandoned = await dispatcher.drain(timeout=0.05)
    assert abandoned == 1
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_drain_without_tasks():
    assert await Dispatcher().drain(timeout=0) == 0
