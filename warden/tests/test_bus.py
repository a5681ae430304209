"""Tests for Redis pub/sub message bus."""

import asyncio
import pytest
import pytest_asyncio

try:
    import redis
    r = redis.Redis()
    r.ping()
    REDIS_AVAILABLE = True
except Exception:
    REDIS_AVAILABLE = False

pytestmark = pytest.mark.skipif(not REDIS_AVAILABLE, reason="Redis not available")

from warden.shared.bus import RedisBus


@pytest_asyncio.fixture
async def bus_pair():
    """Two bus instances to test pub/sub."""
    pub = RedisBus(redis_url="redis://localhost:6379")
    sub = RedisBus(redis_url="redis://localhost:6379")
    await pub.connect()
    await sub.connect()
    yield pub, sub
    await pub.disconnect()
    await sub.disconnect()


@pytest.mark.asyncio
async def test_publish_adds_envelope(bus_pair):
    pub, sub = bus_pair
    received = []

    async def handler(channel, message):
        received.append(message)

    await sub.subscribe("test/envelope", handler)
    await asyncio.sleep(0.1)

    await pub.publish("test/envelope", {"host": "web1"}, sender="web1")
    await asyncio.sleep(0.3)

    msg = received[0]
    assert msg["from"] == "web1"
    assert msg["channel"] == "test/envelope"
    assert "timestamp" in msg
    assert msg["payload"]["host"] == "web1"

    await sub.unsubscribe("test/envelope")


@pytest.mark.asyncio
async def test_undecodable_message_is_skipped(bus_pair):
    pub, sub = bus_pair
    received = []

    await sub.subscribe("test/garbage", lambda ch, msg: received.append(msg))
    await asyncio.sleep(0.1)

    await pub._publisher.publish("test/garbage", "not json")
    await pub.publish("test/garbage", {"ok": True})
    await asyncio.sleep(0.3)

    assert [m["payload"] for m in received] == [{"ok": True}]
    await sub.unsubscribe("test/garbage")


@pytest.mark.asyncio
async def test_disconnect_cleans_up():
    bus = RedisBus(redis_url="redis://localhost:6379")
    await bus.connect()
    await bus.subscribe("test/cleanup", lambda ch, msg: None)
    await bus.disconnect()
    assert bus._subscriber is None
