"""Pytest configuration and shared fixtures."""
import os
import sys
import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from kraftkube.output import OutputManager, set_output
from kraftkube.topology import ClusterTopology, Mode

CLUSTER_ID = "ABC123"
EXTERNAL_ADDRESS = "kafka.example.com"

_ENV_KEYS = [
    "KAFKA_MODE",
    "KAFKA_CONTROLLER_COUNT",
    "KAFKA_BROKER_COUNT",
    "KAFKA_REPLICAS",
    "KAFKA_EXTERNAL_ADDRESS",
    "CLUSTER_ID",
    "KAFKA_NAMESPACE",
    "POD_NAMESPACE",
    "KAFKA_CLUSTER_DOMAIN",
    "KAFKA_LOG_DIR",
    "KAFKA_NODE_ROLE",
    "KAFKA_NODE_ID_BASE",
    "KAFKA_RECONCILE_LOCK",
    "KAFKA_CONFIG_FILE",
    "KAFKA_ENV_FILE",
    "KAFKA_CONTROLLER_QUORUM_VOTERS",
    "KAFKA_IMAGE",
    "KRAFTKUBE_INIT_IMAGE",
    "MANIFESTS_DIR",
    "POD_NAME",
    "HOSTNAME",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate tests from kraftkube settings in the calling environment."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    set_output(OutputManager())
    yield
    set_output(OutputManager())


@pytest.fixture
def single_topology():
    return ClusterTopology(
        mode=Mode.SINGLE,
        cluster_id=CLUSTER_ID,
        external_advertise_address=EXTERNAL_ADDRESS,
    )


@pytest.fixture
def cluster_topology():
    return ClusterTopology(
        mode=Mode.CLUSTER,
        cluster_id=CLUSTER_ID,
        external_advertise_address=EXTERNAL_ADDRESS,
        controller_count=3,
        broker_count=3,
    )
