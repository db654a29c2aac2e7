"""Service events and the upstream server updates derived from them."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import IntEnum

from nlkbalancer.models import Service


class EventType(IntEnum):
    """Kind of change that happened to a service."""

    CREATED = 0
    UPDATED = 1
    DELETED = 2


_TYPE_NAMES = {
    EventType.CREATED: "Created",
    EventType.UPDATED: "Updated",
    EventType.DELETED: "Deleted",
}


@dataclass
class Event:
    """A change to a service, carrying the service in its current state."""

    type: EventType = EventType.CREATED
    service: Service | None = None


@dataclass(frozen=True)
class UpstreamServer:
    """A single upstream server, independent of any client."""

    host: str


@dataclass
class ServerUpdateEvent:
    """An update to one upstream on one border server."""

    type: EventType | int
    upstream_name: str
    client_type: str
    upstream_servers: list[UpstreamServer] = field(default_factory=list)
    nginx_host: str = ""

    def with_host(self, nginx_host: str) -> ServerUpdateEvent:
        """Return a copy of this event aimed at the given NGINX host."""
        return dataclasses.replace(self, nginx_host=nginx_host)

    def type_name(self) -> str:
        """Readable name of the event type, or "Unknown"."""
        try:
            return _TYPE_NAMES[EventType(self.type)]
        except (ValueError, KeyError):
            return "Unknown"