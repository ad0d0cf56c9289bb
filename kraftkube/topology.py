"""
Cluster topology for a KRaft-mode Kafka deployment on Kubernetes.

A ClusterTopology is the single immutable value every node (and every rendered
manifest) is derived from, so cluster-wide literals such as the cluster id and
the controller quorum are never repeated by hand.
"""

import base64
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from kraftkube.errors import InvalidTopology

DEFAULT_NAMESPACE = "kafka"
DEFAULT_CLUSTER_DOMAIN = "cluster.local"
DEFAULT_LOG_DIR = "/var/lib/kafka/data"
DEFAULT_CLIENT_PORT = 9092
DEFAULT_INTERNAL_PORT = 19092
DEFAULT_CONTROLLER_PORT = 29093

# Highest replication factor applied to internal topics
MAX_REPLICATION_FACTOR = 3


class Mode(str, Enum):
    """Deployment shape."""

    SINGLE = "single"
    CLUSTER = "cluster"


class Role(str, Enum):
    """KRaft process role of a node."""

    CONTROLLER = "controller"
    BROKER = "broker"
    COMBINED = "combined"

    @property
    def process_roles(self) -> str:
        """Value of Kafka's process.roles property for this role."""
        if self is Role.COMBINED:
            return "broker,controller"
        return self.value

    @property
    def serves_clients(self) -> bool:
        return self is not Role.CONTROLLER


@dataclass(frozen=True)
class Ports:
    """Ports of the three Kafka listeners."""

    client: int = DEFAULT_CLIENT_PORT
    internal: int = DEFAULT_INTERNAL_PORT
    controller: int = DEFAULT_CONTROLLER_PORT

    def validate(self) -> None:
        ports = {"client": self.client, "internal": self.internal, "controller": self.controller}
        for name, port in ports.items():
            if not isinstance(port, int) or not 1 <= port <= 65535:
                raise InvalidTopology(
                    f"Invalid {name} port {port!r}: must be an integer between 1 and 65535",
                    field=f"ports.{name}",
                )
        if len(set(ports.values())) != len(ports):
            raise InvalidTopology(
                f"Listener ports must be distinct, got {ports}",
                field="ports",
            )


@dataclass(frozen=True)
class ClusterTopology:
    """
    Externally supplied description of one logical Kafka cluster.

    Identical for every node of a deployment. In single mode the controller and
    broker counts are ignored and one combined node is run.
    """

    mode: Mode
    cluster_id: str
    external_advertise_address: str
    controller_count: int = 1
    broker_count: int = 1
    replicas: int = 1
    namespace: str = DEFAULT_NAMESPACE
    cluster_domain: str = DEFAULT_CLUSTER_DOMAIN
    log_dir: str = DEFAULT_LOG_DIR
    node_id_base: int = 0
    reconcile_lock: bool = True
    ports: Ports = field(default_factory=Ports)

    def validate(self) -> None:
        """
        Check that the topology is internally consistent.

        Raises:
            InvalidTopology: Naming the first field that failed validation
        """
        if not isinstance(self.mode, Mode):
            raise InvalidTopology(f"Unknown mode {self.mode!r}", field="mode")
        if not self.cluster_id or not self.cluster_id.strip():
            raise InvalidTopology("cluster_id must not be empty", field="cluster_id")
        if not self.external_advertise_address or not self.external_advertise_address.strip():
            raise InvalidTopology(
                "external_advertise_address must not be empty",
                field="external_advertise_address",
            )
        if not self.namespace:
            raise InvalidTopology("namespace must not be empty", field="namespace")
        if not isinstance(self.node_id_base, int) or self.node_id_base < 0:
            raise InvalidTopology(
                f"node_id_base must be a non-negative integer, got {self.node_id_base!r}",
                field="node_id_base",
            )
        if self.mode is Mode.SINGLE:
            if self.replicas != 1:
                raise InvalidTopology(
                    f"Single-node mode requires exactly 1 replica, got {self.replicas}",
                    field="replicas",
                )
        else:
            if not isinstance(self.controller_count, int) or self.controller_count < 1:
                raise InvalidTopology(
                    f"controller_count must be >= 1 in cluster mode, got {self.controller_count!r}",
                    field="controller_count",
                )
            if not isinstance(self.broker_count, int) or self.broker_count < 1:
                raise InvalidTopology(
                    f"broker_count must be >= 1 in cluster mode, got {self.broker_count!r}",
                    field="broker_count",
                )
        self.ports.validate()

    def roles(self) -> List[Role]:
        """Return the role groups this topology deploys, controllers first."""
        if self.mode is Mode.SINGLE:
            return [Role.COMBINED]
        return [Role.CONTROLLER, Role.BROKER]

    def voter_role(self) -> Role:
        """Role of the nodes that make up the controller quorum."""
        return Role.COMBINED if self.mode is Mode.SINGLE else Role.CONTROLLER

    def voter_count(self) -> int:
        return 1 if self.mode is Mode.SINGLE else self.controller_count

    def group_size(self, role: Role) -> int:
        """Number of replicas in the StatefulSet for a role."""
        if role is Role.COMBINED:
            return 1
        if role is Role.CONTROLLER:
            return self.controller_count
        return self.broker_count

    def broker_total(self) -> int:
        """Number of nodes that host partitions."""
        return 1 if self.mode is Mode.SINGLE else self.broker_count

    def role_offset(self, role: Role) -> int:
        """
        Offset added to an ordinal to get its node id.

        Controllers occupy the band starting at node_id_base, brokers the band
        immediately after it.
        """
        if role is Role.BROKER:
            return self.node_id_base + self.controller_count
        return self.node_id_base

    def node_id(self, role: Role, ordinal: int) -> int:
        return ordinal + self.role_offset(role)

    def statefulset_name(self, role: Role) -> str:
        if role is Role.COMBINED:
            return "kafka"
        return f"kafka-{role.value}"

    def headless_service_name(self, role: Role) -> str:
        return f"{self.statefulset_name(role)}-headless"

    def stable_dns_name(self, role: Role, ordinal: int) -> str:
        """
        Return the restart-stable DNS name of a replica.

        Args:
            role: Role group the replica belongs to
            ordinal: StatefulSet ordinal of the replica

        Returns:
            <statefulset>-<ordinal>.<headless-service>.<namespace>.svc.<cluster-domain>
        """
        return (
            f"{self.statefulset_name(role)}-{ordinal}."
            f"{self.headless_service_name(role)}.{self.namespace}.svc.{self.cluster_domain}"
        )

    def replication_factor(self) -> int:
        return min(MAX_REPLICATION_FACTOR, self.broker_total())


def generate_cluster_id() -> str:
    """
    Generate a random cluster id in the format of kafka-storage.sh random-uuid.

    The id is the URL-safe base64 encoding of a random UUID without padding
    (22 characters). Ids starting with "-" are regenerated since they would
    be read as command-line options.
    """
    while True:
        cluster_id = base64.urlsafe_b64encode(uuid.uuid4().bytes).decode("ascii").rstrip("=")
        if not cluster_id.startswith("-"):
            return cluster_id
