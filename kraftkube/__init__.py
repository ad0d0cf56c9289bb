"""
kraftkube - Node configuration and Kubernetes manifests for KRaft-mode Apache Kafka.
"""

from kraftkube.errors import KraftKubeError, InvalidTopology, StorageUnavailable
from kraftkube.topology import ClusterTopology, Mode, Ports, Role, generate_cluster_id
from kraftkube.materializer import ConfigDocument, NodeIdentity, compute_identity, materialize, quorum_voters
from kraftkube.storage import (
    ReconcileResult,
    check_storage,
    read_cluster_id,
    reconcile_storage,
    verify_cluster_id,
)
from kraftkube.lifecycle import NodeLifecycle, NodeState
from kraftkube.config import Config, config
from kraftkube.manifests import KafkaManifests

__all__ = [
    "KraftKubeError",
    "InvalidTopology",
    "StorageUnavailable",
    "ClusterTopology",
    "Mode",
    "Ports",
    "Role",
    "generate_cluster_id",
    "ConfigDocument",
    "NodeIdentity",
    "compute_identity",
    "materialize",
    "quorum_voters",
    "ReconcileResult",
    "check_storage",
    "reconcile_storage",
    "read_cluster_id",
    "verify_cluster_id",
    "NodeLifecycle",
    "NodeState",
    "Config",
    "config",
    "KafkaManifests",
]

__version__ = "0.1.0"
