import random

import pytest

from nlkbalancer.core import Event, EventType, UpstreamServer
from nlkbalancer.models import (
    Endpoint,
    EndpointPort,
    EndpointSlice,
    LoadBalancerIngress,
    Node,
    NodeAddress,
    ObjectMeta,
    Service,
    ServicePort,
    ServiceType,
)
from nlkbalancer.translation import (
    PortNameError,
    Translator,
    UnsupportedServiceTypeError,
    build_upstream_servers,
    get_context_and_upstream_name,
)

MANY = 7
SERVICE_TYPES = [ServiceType.NODE_PORT, ServiceType.CLUSTER_IP, ServiceType.LOAD_BALANCER]


class FakeEndpointSliceLister:
    def __init__(self, slices=None, error=None):
        self.slices = slices or []
        self.error = error
        self.calls = []

    def list(self, namespace, service_name):
        self.calls.append((namespace, service_name))
        if self.error is not None:
            raise self.error
        return self.slices


class FakeNodeLister:
    def __init__(self, nodes=None, error=None):
        self.nodes = nodes or []
        self.error = error

    def list(self):
        if self.error is not None:
            raise self.error
        return self.nodes


def generate_updatable_ports(port_count, updatable_count, seed=1):
    prefixes = ["http-" if i % 2 == 0 else "stream-" for i in range(updatable_count)]
    prefixes += ["olm-"] * (port_count - updatable_count)
    random.Random(seed).shuffle(prefixes)
    return [ServicePort(name=f"{prefix}upstream{i}") for i, prefix in enumerate(prefixes)]


def generate_nodes(count):
    return [
        Node(
            metadata=ObjectMeta(name=f"node{i}"),
            addresses=[NodeAddress(type="InternalIP", address=f"10.0.0.{i}")],
        )
        for i in range(count)
    ]


def generate_endpoint_slices(endpoint_count, port_count, updatable_count):
    ports = [
        EndpointPort(name=p.name, port=8080)
        for p in generate_updatable_ports(port_count, updatable_count, seed=2)
    ]
    endpoints = [Endpoint(addresses=[f"10.0.0.{i}"]) for i in range(endpoint_count)]
    return [
        EndpointSlice(
            metadata=ObjectMeta(
                name="endpointSlice",
                labels={"kubernetes.io/service-name": "default-service"},
            ),
            endpoints=endpoints,
            ports=ports,
        )
    ]


def build_event(event_type, service_type, ports, ingress_count):
    service = Service(
        metadata=ObjectMeta(name="default-service"),
        type=service_type,
        ports=ports,
        load_balancer_ingress=[LoadBalancerIngress(ip=f"ipAddress{i}") for i in range(ingress_count)],
    )
    return Event(type=event_type, service=service)


def scenario(service_type, count, port_count, updatable_count):
    """Return (translator, ingress count) with `count` backends of the right kind."""
    slices, nodes, ingresses = [], [], 0
    if service_type == ServiceType.NODE_PORT:
        nodes = generate_nodes(count)
    elif service_type == ServiceType.CLUSTER_IP:
        slices = generate_endpoint_slices(count, port_count, updatable_count)
    else:
        ingresses = count
    return Translator(FakeEndpointSliceLister(slices), FakeNodeLister(nodes)), ingresses


@pytest.mark.parametrize("service_type", SERVICE_TYPES)
def test_created_no_ports_and_no_backends(service_type):
    translator = Translator(FakeEndpointSliceLister([]), FakeNodeLister([]))
    event = build_event(EventType.CREATED, service_type, [], 0)
    assert translator.translate(event) == []


@pytest.mark.parametrize("service_type", SERVICE_TYPES)
def test_created_no_interesting_ports_and_no_backends(service_type):
    translator = Translator(FakeEndpointSliceLister([]), FakeNodeLister([]))
    event = build_event(EventType.CREATED, service_type, generate_updatable_ports(1, 0), 0)
    assert translator.translate(event) == []


@pytest.mark.parametrize("event_type", [EventType.CREATED, EventType.UPDATED])
@pytest.mark.parametrize("service_type", SERVICE_TYPES)
@pytest.mark.parametrize(
    "port_count,updatable_count,backends",
    [
        (0, 0, 1),
        (1, 0, 1),
        (1, 1, 1),
        (4, 4, 1),
        (6, 2, 1),
        (6, 2, MANY),
    ],
)
def test_created_and_updated_counts(event_type, service_type, port_count, updatable_count, backends):
    translator, ingresses = scenario(service_type, backends, port_count, updatable_count)
    ports = generate_updatable_ports(port_count, updatable_count)
    event = build_event(event_type, service_type, ports, ingresses)

    events = translator.translate(event)

    assert len(events) == updatable_count
    assert all(len(e.upstream_servers) == backends for e in events)


@pytest.mark.parametrize("service_type", SERVICE_TYPES)
@pytest.mark.parametrize(
    "port_count,updatable_count,backends",
    [
        (0, 0, 0),
        (1, 0, 0),
        (1, 1, 0),
        (4, 4, 0),
        (6, 2, 0),
        (0, 0, 1),
        (1, 0, 1),
        (1, 1, 1),
        (4, 4, 1),
        (6, 2, 1),
        (0, 0, MANY),
        (1, 0, MANY),
        (1, 1, MANY),
        (4, 4, MANY),
        (6, 2, MANY),
    ],
)
def test_deleted_counts(service_type, port_count, updatable_count, backends):
    translator, ingresses = scenario(service_type, backends, port_count, updatable_count)
    ports = generate_updatable_ports(port_count, updatable_count)
    event = build_event(EventType.DELETED, service_type, ports, ingresses)

    events = translator.translate(event)

    assert len(events) == updatable_count
    assert all(e.upstream_servers == [] for e in events)
    assert all(e.type == EventType.UPDATED for e in events)


def test_node_port_event_values():
    nodes = [
        Node(addresses=[NodeAddress("InternalIP", "10.0.0.1")]),
        Node(addresses=[NodeAddress("InternalIP", "10.0.0.2")]),
    ]
    translator = Translator(FakeEndpointSliceLister(), FakeNodeLister(nodes))
    ports = [ServicePort(name="http-tea", port=80, node_port=30080)]
    events = translator.translate(build_event(EventType.CREATED, ServiceType.NODE_PORT, ports, 0))

    assert len(events) == 1
    event = events[0]
    assert event.type == EventType.CREATED
    assert event.upstream_name == "tea"
    assert event.client_type == "http"
    assert event.upstream_servers == [
        UpstreamServer("10.0.0.1:30080"),
        UpstreamServer("10.0.0.2:30080"),
    ]


def test_load_balancer_event_values():
    translator = Translator(FakeEndpointSliceLister(), FakeNodeLister())
    ports = [ServicePort(name="stream-coffee", port=8443, node_port=31000)]
    events = translator.translate(build_event(EventType.UPDATED, ServiceType.LOAD_BALANCER, ports, 2))

    assert [(e.type, e.client_type, e.upstream_name) for e in events] == [
        (EventType.UPDATED, "stream", "coffee")
    ]
    assert [s.host for s in events[0].upstream_servers] == ["ipAddress0:8443", "ipAddress1:8443"]


def test_cluster_ip_aggregates_slices_and_skips_incomplete_ports():
    slices = [
        EndpointSlice(
            endpoints=[Endpoint(addresses=["10.1.0.1", "10.1.0.2"])],
            ports=[
                EndpointPort(name="http-tea", port=8080),
                EndpointPort(name=None, port=9090),
                EndpointPort(name="stream-x", port=None),
                EndpointPort(name="metrics", port=9100),
            ],
        ),
        EndpointSlice(
            endpoints=[Endpoint(addresses=["10.1.0.3"])],
            ports=[EndpointPort(name="http-tea", port=8080)],
        ),
    ]
    lister = FakeEndpointSliceLister(slices)
    translator = Translator(lister, FakeNodeLister())
    service = Service(
        metadata=ObjectMeta(name="tea-svc", namespace="shop"),
        type=ServiceType.CLUSTER_IP,
        ports=[ServicePort(name="http-tea", port=80)],
    )

    events = translator.translate(Event(EventType.CREATED, service))

    assert lister.calls == [("shop", "tea-svc")]
    assert len(events) == 1
    assert events[0].type == EventType.UPDATED
    assert events[0].upstream_name == "tea"
    assert [s.host for s in events[0].upstream_servers] == [
        "10.1.0.1:8080",
        "10.1.0.2:8080",
        "10.1.0.3:8080",
    ]


def test_cluster_ip_deleted_does_not_consult_lister():
    lister = FakeEndpointSliceLister(error=RuntimeError("boom"))
    translator = Translator(lister, FakeNodeLister())
    event = build_event(EventType.DELETED, ServiceType.CLUSTER_IP, [ServicePort(name="http-tea")], 0)

    events = translator.translate(event)

    assert lister.calls == []
    assert [(e.upstream_name, e.upstream_servers) for e in events] == [("tea", [])]


def test_cluster_ip_lister_error_propagates():
    translator = Translator(FakeEndpointSliceLister(error=RuntimeError("boom")), FakeNodeLister())
    event = build_event(EventType.UPDATED, ServiceType.CLUSTER_IP, [ServicePort(name="http-tea")], 0)
    with pytest.raises(RuntimeError, match="boom"):
        translator.translate(event)


def test_node_lister_error_propagates():
    translator = Translator(FakeEndpointSliceLister(), FakeNodeLister(error=RuntimeError("nodes")))
    event = build_event(EventType.CREATED, ServiceType.NODE_PORT, [ServicePort(name="http-tea")], 0)
    with pytest.raises(RuntimeError, match="nodes"):
        translator.translate(event)


def test_node_lister_not_consulted_without_interesting_ports():
    translator = Translator(FakeEndpointSliceLister(), FakeNodeLister(error=RuntimeError("nodes")))
    event = build_event(EventType.CREATED, ServiceType.NODE_PORT, [ServicePort(name="olm-x")], 0)
    assert translator.translate(event) == []


def test_unsupported_service_type():
    translator = Translator(FakeEndpointSliceLister(), FakeNodeLister())
    event = build_event(EventType.CREATED, ServiceType.EXTERNAL_NAME, [], 0)
    with pytest.raises(UnsupportedServiceTypeError, match="unsupported service type: ExternalName"):
        translator.translate(event)


def test_retrieve_node_ips_excludes_master_nil_and_external():
    nodes = [
        Node(addresses=[NodeAddress("InternalIP", "10.0.0.1"), NodeAddress("ExternalIP", "1.1.1.1")]),
        None,
        Node(
            metadata=ObjectMeta(labels={"node-role.kubernetes.io/master": ""}),
            addresses=[NodeAddress("InternalIP", "10.0.0.9")],
        ),
        Node(addresses=[NodeAddress("InternalIP", "10.0.0.2")]),
    ]
    translator = Translator(FakeEndpointSliceLister(), FakeNodeLister(nodes))
    assert translator.retrieve_node_ips() == ["10.0.0.1", "10.0.0.2"]


@pytest.mark.parametrize(
    "port_name,expected",
    [
        ("http-tea", ("http", "tea")),
        ("stream-coffee", ("stream", "coffee")),
        ("http-my-app", ("http", "my-app")),
        ("http-", ("http", "")),
    ],
)
def test_get_context_and_upstream_name(port_name, expected):
    assert get_context_and_upstream_name(port_name) == expected


def test_get_context_and_upstream_name_without_dash():
    with pytest.raises(PortNameError, match="not in the format"):
        get_context_and_upstream_name("http")


def test_get_context_and_upstream_name_bad_context():
    with pytest.raises(PortNameError, match='does not include "http" or "stream" context'):
        get_context_and_upstream_name("olm-upstream")


def test_build_upstream_servers():
    assert build_upstream_servers(["10.0.0.1", "10.0.0.2"], 8080) == [
        UpstreamServer("10.0.0.1:8080"),
        UpstreamServer("10.0.0.2:8080"),
    ]
    assert build_upstream_servers([], 80) == []