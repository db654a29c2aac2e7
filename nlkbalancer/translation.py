"""Translation of service events into upstream server updates."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from typing import Protocol

from nlkbalancer.core import Event, EventType, ServerUpdateEvent, UpstreamServer
from nlkbalancer.models import EndpointSlice, Node, Service, ServiceType

logger = logging.getLogger(__name__)

_CONTEXTS = ("http", "stream")


class UnsupportedServiceTypeError(ValueError):
    """Raised for a service type the translator cannot handle."""

    def __init__(self, service_type: object) -> None:
        value = getattr(service_type, "value", service_type)
        super().__init__(f"unsupported service type: {value}")
        self.service_type = service_type


class PortNameError(ValueError):
    """Raised when a port name does not follow the [http|stream]-{upstream} format."""


class EndpointSliceLister(Protocol):
    """Lists the endpoint slices that belong to a service."""

    def list(self, namespace: str, service_name: str) -> Iterable[EndpointSlice]: ...


class NodeLister(Protocol):
    """Lists the nodes of the cluster."""

    def list(self) -> Iterable[Node | None]: ...


def get_context_and_upstream_name(port_name: str) -> tuple[str, str]:
    """Split a port name into its NGINX context and upstream name.

    Raises PortNameError unless the name is "http-<name>" or "stream-<name>".
    """
    context, sep, upstream_name = port_name.partition("-")
    if not sep:
        raise PortNameError(
            f"ignoring port {port_name} because it is not in the format "
            "[http|stream]-{upstreamName}"
        )
    if context not in _CONTEXTS:
        raise PortNameError(
            f'port name {port_name} does not include "http" or "stream" context'
        )
    return context, upstream_name


def build_upstream_servers(addresses: Iterable[str], port: int) -> list[UpstreamServer]:
    """One upstream server per address, each at the given port."""
    return [UpstreamServer(f"{address}:{port}") for address in addresses]


class Translator:
    """Turns service events into updates the border clients can apply.

    Created and updated events carry the full list of servers; the NGINX
    Plus client reconciles its upstream against that list. Deleted events
    become updates with no servers, so reconciliation removes them all.
    """

    def __init__(self, endpoint_slice_lister: EndpointSliceLister, node_lister: NodeLister) -> None:
        self.endpoint_slice_lister = endpoint_slice_lister
        self.node_lister = node_lister

    def translate(self, event: Event) -> list[ServerUpdateEvent]:
        """Build the server update events for a service event."""
        logger.debug("Translate::Translate")
        service = event.service
        if service is None:
            raise ValueError("event carries no service")

        if service.type == ServiceType.NODE_PORT:
            return self._node_port_events(event, service)
        if service.type == ServiceType.CLUSTER_IP:
            return self._cluster_ip_events(event, service)
        if service.type == ServiceType.LOAD_BALANCER:
            return self._load_balancer_events(event, service)
        raise UnsupportedServiceTypeError(service.type)

    def _load_balancer_events(self, event: Event, service: Service) -> list[ServerUpdateEvent]:
        logger.debug("Translator::buildLoadBalancerEvents ports=%s", service.ports)
        addresses = [ingress.ip for ingress in service.load_balancer_ingress]

        events: list[ServerUpdateEvent] = []
        for port in service.ports:
            try:
                context, upstream_name = get_context_and_upstream_name(port.name)
            except PortNameError as err:
                logger.info("Translator::buildLoadBalancerEvents: ignoring port %s: %s", port.name, err)
                continue

            update = self._per_port_event(
                event.type, upstream_name, context,
                lambda: build_upstream_servers(addresses, port.port),
            )
            if update is not None:
                events.append(update)
        return events

    def _cluster_ip_events(self, event: Event, service: Service) -> list[ServerUpdateEvent]:
        namespace = service.namespace
        service_name = service.name
        logger.debug(
            "Translate::buildClusterIPEvents namespace=%s serviceName=%s", namespace, service_name
        )

        if event.type == EventType.DELETED:
            events = []
            for port in service.ports:
                try:
                    context, upstream_name = get_context_and_upstream_name(port.name)
                except PortNameError as err:
                    logger.info("%s", err)
                    continue
                events.append(ServerUpdateEvent(EventType.UPDATED, upstream_name, context, []))
            return events

        try:
            slices = list(self.endpoint_slice_lister.list(namespace, service_name))
        except Exception:
            logger.exception("error occurred retrieving the list of endpoint slices")
            raise

        upstreams: dict[tuple[str, str], list[UpstreamServer]] = {}
        for endpoint_slice in slices:
            for port in endpoint_slice.ports:
                if port.name is None or port.port is None:
                    continue
                try:
                    key = get_context_and_upstream_name(port.name)
                except PortNameError as err:
                    logger.info("%s", err)
                    continue

                servers = upstreams.setdefault(key, [])
                for endpoint in endpoint_slice.endpoints:
                    servers.extend(build_upstream_servers(endpoint.addresses, port.port))

        return [
            ServerUpdateEvent(EventType.UPDATED, name, context, servers)
            for (context, name), servers in upstreams.items()
        ]

    def _node_port_events(self, event: Event, service: Service) -> list[ServerUpdateEvent]:
        logger.debug("Translate::buildNodeIPEvents ports=%s", service.ports)

        events: list[ServerUpdateEvent] = []
        for port in service.ports:
            try:
                context, upstream_name = get_context_and_upstream_name(port.name)
            except PortNameError as err:
                logger.info("%s", err)
                continue

            addresses = self.retrieve_node_ips()
            update = self._per_port_event(
                event.type, upstream_name, context,
                lambda: build_upstream_servers(addresses, port.node_port),
            )
            if update is not None:
                events.append(update)
        return events

    @staticmethod
    def _per_port_event(event_type, upstream_name, context, servers) -> ServerUpdateEvent | None:
        if event_type in (EventType.CREATED, EventType.UPDATED):
            return ServerUpdateEvent(EventType(event_type), upstream_name, context, servers())
        if event_type == EventType.DELETED:
            return ServerUpdateEvent(EventType.UPDATED, upstream_name, context, [])
        logger.warning("Translator: unknown event type %s", event_type)
        return None

    def retrieve_node_ips(self) -> list[str]:
        """Internal IPs of all nodes in the cluster, master nodes excluded.

        A master node may not be a worker node and so may not route traffic.
        """
        started = time.monotonic_ns()
        logger.debug("Translator::retrieveNodeIps")

        try:
            nodes = list(self.node_lister.list())
        except Exception:
            logger.exception("error occurred retrieving the list of nodes")
            raise

        node_ips: list[str] = []
        for node in nodes:
            if node is None:
                logger.error("list contains nil node")
                continue
            if not node.is_master():
                node_ips.extend(node.internal_ips())

        logger.debug(
            "Translator::retrieveNodeIps duration=%d", time.monotonic_ns() - started
        )
        return node_ips