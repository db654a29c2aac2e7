"""Border clients that apply upstream server updates to NGINX Plus."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

from nlkbalancer.core import ServerUpdateEvent, UpstreamServer

logger = logging.getLogger(__name__)

CLIENT_TYPE_NGINX_STREAM = "stream"
"""Selects the border client that uses the stream upstream API."""

CLIENT_TYPE_NGINX_HTTP = "http"
"""Selects the border client that uses the HTTP upstream API."""


@runtime_checkable
class NginxClient(Protocol):
    """The part of an NGINX Plus API client that the border clients use.

    Servers are passed as dictionaries in the API's shape, e.g.
    ``{"server": "10.0.0.1:8080"}``.
    """

    def delete_stream_server(self, upstream: str, server: str) -> Any: ...

    def update_stream_servers(self, upstream: str, servers: list[dict[str, Any]]) -> Any: ...

    def delete_http_server(self, upstream: str, server: str) -> Any: ...

    def update_http_servers(self, upstream: str, servers: list[dict[str, Any]]) -> Any: ...


class BorderClientError(Exception):
    """Raised when a border server could not be updated."""


class UnknownBorderClientType(BorderClientError, ValueError):
    """Raised for a client type that no border client handles.

    ``fallback`` holds a client that does nothing, for callers that choose
    to carry on regardless.
    """

    def __init__(self, client_type: str) -> None:
        super().__init__(f"unknown border client type: {client_type}")
        self.client_type = client_type
        self.fallback = NullBorderClient()


class BorderClient(ABC):
    """Applies server update events to a border server."""

    @abstractmethod
    def update(self, event: ServerUpdateEvent) -> None:
        """Replace the upstream's servers with those in the event."""

    @abstractmethod
    def delete(self, event: ServerUpdateEvent) -> None:
        """Remove the event's first server from its upstream."""


def _as_api_servers(servers: list[UpstreamServer] | None) -> list[dict[str, Any]]:
    return [{"server": server.host} for server in servers or ()]


def _checked_client(client: object) -> NginxClient:
    if not isinstance(client, NginxClient):
        raise TypeError(f"expected a NginxClientInterface, got a {client!r}")
    return client


class NginxHTTPBorderClient(BorderClient):
    """Border client for HTTP upstreams."""

    def __init__(self, nginx_client: object) -> None:
        self.nginx_client = _checked_client(nginx_client)

    def update(self, event: ServerUpdateEvent) -> None:
        servers = _as_api_servers(event.upstream_servers)
        try:
            self.nginx_client.update_http_servers(event.upstream_name, servers)
        except Exception as err:
            raise BorderClientError(
                f"error occurred updating the nginx+ upstream server: {err}"
            ) from err

    def delete(self, event: ServerUpdateEvent) -> None:
        host = event.upstream_servers[0].host
        try:
            self.nginx_client.delete_http_server(event.upstream_name, host)
        except Exception as err:
            raise BorderClientError(
                f"error occurred deleting the nginx+ upstream server: {err}"
            ) from err


class NginxStreamBorderClient(BorderClient):
    """Border client for stream upstreams."""

    def __init__(self, nginx_client: object) -> None:
        self.nginx_client = _checked_client(nginx_client)

    def update(self, event: ServerUpdateEvent) -> None:
        servers = _as_api_servers(event.upstream_servers)
        try:
            self.nginx_client.update_stream_servers(event.upstream_name, servers)
        except Exception as err:
            raise BorderClientError(
                f"error occurred updating the nginx+ upstream server: {err}"
            ) from err

    def delete(self, event: ServerUpdateEvent) -> None:
        host = event.upstream_servers[0].host
        try:
            self.nginx_client.delete_stream_server(event.upstream_name, host)
        except Exception as err:
            raise BorderClientError(
                f"error occurred deleting the nginx+ upstream server: {err}"
            ) from err


class NullBorderClient(BorderClient):
    """Border client that only logs a warning."""

    def update(self, event: ServerUpdateEvent | None) -> None:
        logger.warning("NullBorderClient.Update called")

    def delete(self, event: ServerUpdateEvent | None) -> None:
        logger.warning("NullBorderClient.Delete called")


_CLIENTS: dict[str, type[BorderClient]] = {
    CLIENT_TYPE_NGINX_STREAM: NginxStreamBorderClient,
    CLIENT_TYPE_NGINX_HTTP: NginxHTTPBorderClient,
}


def new_border_client(client_type: str, nginx_client: object) -> BorderClient:
    """Create the border client registered for the given client type.

    Raises UnknownBorderClientType for an unknown type and TypeError when
    the NGINX client lacks the required methods.
    """
    logger.debug("NewBorderClient client=%s", client_type)
    try:
        factory = _CLIENTS[client_type]
    except KeyError:
        raise UnknownBorderClientType(client_type) from None
    return factory(nginx_client)