"""
Node identity and configuration materialization.

Derives everything a Kafka process needs to join the right role and cluster
from its StatefulSet ordinal and the cluster topology. All functions in this
module are pure: they perform no I/O and return identical results for
identical inputs.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from kraftkube.errors import InvalidTopology
from kraftkube.topology import ClusterTopology, Mode, Role

CONTROLLER_LISTENER = "CONTROLLER"
INTERNAL_LISTENER = "INTERNAL"
EXTERNAL_LISTENER = "EXTERNAL"

BIND_HOST = "0.0.0.0"

# Kafka properties the apache/kafka image does not read from a KAFKA_ prefix
_ENV_OVERRIDES = {"cluster.id": "CLUSTER_ID"}


@dataclass(frozen=True)
class Listener:
    name: str
    port: int

    def __str__(self) -> str:
        return f"{self.name}://{BIND_HOST}:{self.port}"


@dataclass(frozen=True)
class AdvertisedListener:
    name: str
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.name}://{self.host}:{self.port}"


@dataclass(frozen=True)
class QuorumVoter:
    node_id: int
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.node_id}@{self.host}:{self.port}"


@dataclass(frozen=True)
class NodeIdentity:
    """Identity of one running Kafka node."""

    role: Role
    ordinal: int
    node_id: int
    host: str
    listeners: Tuple[Listener, ...]
    advertised_listeners: Tuple[AdvertisedListener, ...]
    quorum_voters: Tuple[QuorumVoter, ...]


@dataclass(frozen=True)
class ConfigDocument:
    """
    Finalized startup configuration of a Kafka node.

    Attributes:
        properties: Kafka property names mapped to their values, in output order
        lock_clear_required: Whether a stale lock must be reconciled before start
        identity: The identity the properties were derived from
    """

    properties: Dict[str, str]
    lock_clear_required: bool
    identity: NodeIdentity = field(compare=False)

    def __getitem__(self, key: str) -> str:
        return self.properties[key]

    def to_properties(self) -> str:
        """Render as a Java properties file."""
        lines = [f"{key}={value}" for key, value in self.properties.items()]
        return "\n".join(lines) + "\n"

    def to_env(self) -> Dict[str, str]:
        """
        Render as environment variables understood by the apache/kafka image.

        node.id becomes KAFKA_NODE_ID, and so on; cluster.id becomes CLUSTER_ID.
        """
        env: Dict[str, str] = {}
        for key, value in self.properties.items():
            name = _ENV_OVERRIDES.get(key) or "KAFKA_" + key.upper().replace(".", "_")
            env[name] = value
        return env

    def to_env_file(self) -> str:
        return "".join(f"{key}={value}\n" for key, value in self.to_env().items())


def resolve_role(topology: ClusterTopology, role: Optional[Role] = None) -> Role:
    """
    Return the role a node of this topology runs as.

    Single mode always runs combined nodes. Cluster mode has no default: the
    caller must name the StatefulSet group it is materializing for.
    """
    if topology.mode is Mode.SINGLE:
        if role not in (None, Role.COMBINED):
            raise InvalidTopology(
                f"Role {role.value!r} is not valid in single-node mode", field="role"
            )
        return Role.COMBINED
    if role is None:
        raise InvalidTopology("A role (controller or broker) is required in cluster mode", field="role")
    if role is Role.COMBINED:
        raise InvalidTopology("Role 'combined' is only valid in single-node mode", field="role")
    return role


def quorum_voters(topology: ClusterTopology) -> Tuple[QuorumVoter, ...]:
    """
    Build the controller quorum of a topology.

    Depends on the topology alone, never on the calling node, so every node of
    a cluster embeds the same voter list.
    """
    role = topology.voter_role()
    return tuple(
        QuorumVoter(
            node_id=topology.node_id(role, ordinal),
            host=topology.stable_dns_name(role, ordinal),
            port=topology.ports.controller,
        )
        for ordinal in range(topology.voter_count())
    )


def compute_identity(
    ordinal: int, topology: ClusterTopology, role: Optional[Role] = None
) -> NodeIdentity:
    """
    Compute the identity of the node at an ordinal.

    Args:
        ordinal: StatefulSet ordinal of the node
        topology: Cluster topology
        role: Role group being materialized (required in cluster mode)

    Returns:
        NodeIdentity for the node

    Raises:
        InvalidTopology: If the topology, role or ordinal is invalid
    """
    topology.validate()
    if isinstance(ordinal, bool) or not isinstance(ordinal, int) or ordinal < 0:
        raise InvalidTopology(
            f"Ordinal must be a non-negative integer, got {ordinal!r}", field="ordinal"
        )
    role = resolve_role(topology, role)
    group_size = topology.group_size(role)
    if ordinal >= group_size:
        raise InvalidTopology(
            f"Ordinal {ordinal} is out of range for {role.value} group of {group_size}",
            field="ordinal",
        )

    ports = topology.ports
    host = topology.stable_dns_name(role, ordinal)

    listeners = [Listener(CONTROLLER_LISTENER, ports.controller)]
    if role.serves_clients:
        listeners.append(Listener(INTERNAL_LISTENER, ports.internal))
        listeners.append(Listener(EXTERNAL_LISTENER, ports.client))
        advertised = (
            AdvertisedListener(INTERNAL_LISTENER, host, ports.internal),
            AdvertisedListener(EXTERNAL_LISTENER, topology.external_advertise_address, ports.client),
        )
    else:
        advertised = (AdvertisedListener(CONTROLLER_LISTENER, host, ports.controller),)

    return NodeIdentity(
        role=role,
        ordinal=ordinal,
        node_id=topology.node_id(role, ordinal),
        host=host,
        listeners=tuple(listeners),
        advertised_listeners=advertised,
        quorum_voters=quorum_voters(topology),
    )


def materialize(
    ordinal: int, topology: ClusterTopology, role: Optional[Role] = None
) -> ConfigDocument:
    """
    Produce the complete configuration document for a node.

    Args:
        ordinal: StatefulSet ordinal of the node
        topology: Cluster topology shared by every node
        role: Role group being materialized (required in cluster mode)

    Returns:
        ConfigDocument with Kafka properties in a fixed order

    Raises:
        InvalidTopology: If the topology, role or ordinal is invalid
    """
    identity = compute_identity(ordinal, topology, role)
    role = identity.role

    properties: Dict[str, str] = {
        "process.roles": role.process_roles,
        "node.id": str(identity.node_id),
        "controller.quorum.voters": ",".join(str(v) for v in identity.quorum_voters),
        "controller.listener.names": CONTROLLER_LISTENER,
        "listeners": ",".join(str(listener) for listener in identity.listeners),
        "advertised.listeners": ",".join(str(a) for a in identity.advertised_listeners),
        "listener.security.protocol.map": ",".join(
            f"{listener.name}:PLAINTEXT" for listener in identity.listeners
        ),
    }
    if role.serves_clients:
        properties["inter.broker.listener.name"] = INTERNAL_LISTENER
    properties["log.dirs"] = topology.log_dir
    properties["cluster.id"] = topology.cluster_id

    if role.serves_clients:
        replication_factor = topology.replication_factor()
        min_isr = str(max(1, replication_factor - 1))
        properties["offsets.topic.replication.factor"] = str(replication_factor)
        properties["transaction.state.log.replication.factor"] = str(replication_factor)
        properties["transaction.state.log.min.isr"] = min_isr
        properties["default.replication.factor"] = str(replication_factor)
        properties["min.insync.replicas"] = min_isr

    return ConfigDocument(
        properties=properties,
        lock_clear_required=topology.reconcile_lock,
        identity=identity,
    )
