"""Plain data models for the cluster objects the balancer watches."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

SERVICE_NAME_LABEL = "kubernetes.io/service-name"
MASTER_NODE_LABEL = "node-role.kubernetes.io/master"
NODE_INTERNAL_IP = "InternalIP"


class ServiceType(str, Enum):
    """How a service is exposed inside or outside the cluster."""

    CLUSTER_IP = "ClusterIP"
    NODE_PORT = "NodePort"
    LOAD_BALANCER = "LoadBalancer"
    EXTERNAL_NAME = "ExternalName"


@dataclass
class ObjectMeta:
    """Identity and labelling shared by all cluster objects."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class ServicePort:
    """A port exposed by a service."""

    name: str = ""
    port: int = 0
    node_port: int = 0


@dataclass
class LoadBalancerIngress:
    """An ingress point assigned to a load-balancer service."""

    ip: str = ""


@dataclass
class Service:
    """A cluster service with its spec and load-balancer status."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    type: ServiceType = ServiceType.CLUSTER_IP
    ports: list[ServicePort] = field(default_factory=list)
    load_balancer_ingress: list[LoadBalancerIngress] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations


@dataclass
class EndpointPort:
    """Endpoint slice entry naming a listening number; either field may be absent."""

    name: str | None = None
    port: int | None = None


@dataclass
class Endpoint:
    """A single backend endpoint and its addresses."""

    addresses: list[str] = field(default_factory=list)


@dataclass
class EndpointSlice:
    """A group of endpoints belonging to one service."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    endpoints: list[Endpoint] = field(default_factory=list)
    ports: list[EndpointPort] = field(default_factory=list)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def service_name(self) -> str:
        """Name of the owning service, taken from the service-name label."""
        return self.metadata.labels.get(SERVICE_NAME_LABEL, "")


@dataclass
class NodeAddress:
    """An address reported for a node, such as its internal IP."""

    type: str = NODE_INTERNAL_IP
    address: str = ""


@dataclass
class Node:
    """A cluster node with its reported addresses."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    addresses: list[NodeAddress] = field(default_factory=list)

    def is_master(self) -> bool:
        """True when the node carries the master role label."""
        return MASTER_NODE_LABEL in self.metadata.labels

    def internal_ips(self) -> list[str]:
        """The node's internal IP addresses, in reported order."""
        return [a.address for a in self.addresses if a.type == NODE_INTERNAL_IP]