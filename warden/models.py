"""Value types shared by the registry, dispatcher and transports."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence, Union


class EventKind(str, Enum):
    """Host state transitions a subscription can react to."""

    ONLINE = "online"
    ONLINE_ALL = "online-all"
    OFFLINE = "offline"
    OFFLINE_ALL = "offline-all"


@dataclass(frozen=True)
class Host:
    """Snapshot of one online host. Instances are never mutated in place."""

    name: str
    address: str
    last_heartbeat: float

    @property
    def last_heartbeat_iso(self) -> str:
        """Last heartbeat as an RFC 3339 UTC timestamp."""
        ts = datetime.fromtimestamp(self.last_heartbeat, timezone.utc)
        return ts.strftime("%Y-%m-%dT%H:%M:%SZ")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "last_heartbeat": self.last_heartbeat,
            "last_heartbeat_iso": self.last_heartbeat_iso,
        }


Handler = Callable[
    [EventKind, Host, Sequence[Host]],
    Union[Awaitable[None], None],
]


@dataclass(frozen=True)
class Subscription:
    """Registered interest in a class of transitions.

    An empty ``hosts`` set means "any host" (or "the whole fleet" for the
    group events).
    """

    event: EventKind
    handler: Handler = field(compare=False)
    hosts: frozenset[str] = frozenset()
