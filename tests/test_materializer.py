"""Tests for node identity and configuration materialization."""

import dataclasses

import pytest

from kraftkube.errors import InvalidTopology
from kraftkube.materializer import compute_identity, materialize, quorum_voters
from kraftkube.topology import Role


class TestSingleNode:
    """Test materialization of a single combined node."""

    def test_identity(self, single_topology):
        document = materialize(0, single_topology)

        assert document["node.id"] == "0"
        assert document.identity.role == Role.COMBINED
        assert document["process.roles"] == "broker,controller"

    def test_listeners(self, single_topology):
        document = materialize(0, single_topology)
        names = [listener.name for listener in document.identity.listeners]

        assert names == ["CONTROLLER", "INTERNAL", "EXTERNAL"]
        assert document["listeners"] == (
            "CONTROLLER://0.0.0.0:29093,INTERNAL://0.0.0.0:19092,EXTERNAL://0.0.0.0:9092"
        )

    def test_advertised_listeners(self, single_topology):
        document = materialize(0, single_topology)
        assert document["advertised.listeners"] == (
            "INTERNAL://kafka-0.kafka-headless.kafka.svc.cluster.local:19092,"
            "EXTERNAL://kafka.example.com:9092"
        )

    def test_quorum_is_the_node_itself(self, single_topology):
        document = materialize(0, single_topology)
        assert document["controller.quorum.voters"] == (
            "0@kafka-0.kafka-headless.kafka.svc.cluster.local:29093"
        )

    def test_explicit_combined_role(self, single_topology):
        assert materialize(0, single_topology, Role.COMBINED) == materialize(0, single_topology)

    def test_broker_role_rejected(self, single_topology):
        with pytest.raises(InvalidTopology) as exc_info:
            materialize(0, single_topology, Role.BROKER)
        assert exc_info.value.field == "role"

    def test_second_replica_rejected(self, single_topology):
        with pytest.raises(InvalidTopology, match="out of range"):
            materialize(1, single_topology)

    def test_replication_defaults(self, single_topology):
        document = materialize(0, single_topology)
        assert document["offsets.topic.replication.factor"] == "1"
        assert document["transaction.state.log.min.isr"] == "1"


class TestCluster:
    """Test materialization of controllers and brokers."""

    def test_controller_identity(self, cluster_topology):
        document = materialize(1, cluster_topology, Role.CONTROLLER)

        assert document.identity.node_id == 1
        assert document.identity.role == Role.CONTROLLER
        assert document["process.roles"] == "controller"

    def test_broker_identity(self, cluster_topology):
        document = materialize(1, cluster_topology, Role.BROKER)

        assert document.identity.node_id == 4
        assert document.identity.role == Role.BROKER
        assert document["node.id"] == "4"

    def test_controller_has_only_controller_listener(self, cluster_topology):
        document = materialize(0, cluster_topology, Role.CONTROLLER)

        assert [listener.name for listener in document.identity.listeners] == ["CONTROLLER"]
        assert document["advertised.listeners"] == (
            "CONTROLLER://kafka-controller-0.kafka-controller-headless.kafka.svc.cluster.local:29093"
        )
        assert "inter.broker.listener.name" not in document.properties
        assert "offsets.topic.replication.factor" not in document.properties

    def test_broker_advertises_stable_dns_name(self, cluster_topology):
        document = materialize(2, cluster_topology, Role.BROKER)
        advertised = {a.name: a for a in document.identity.advertised_listeners}

        assert advertised["INTERNAL"].host == "kafka-broker-2.kafka-broker-headless.kafka.svc.cluster.local"
        assert advertised["INTERNAL"].port == 19092
        assert advertised["EXTERNAL"].host == "kafka.example.com"
        assert advertised["EXTERNAL"].port == 9092
        assert document["inter.broker.listener.name"] == "INTERNAL"

    def test_quorum_agreement(self, cluster_topology):
        """Every node of the cluster embeds the same quorum, in the same order."""
        controller = materialize(1, cluster_topology, Role.CONTROLLER)
        broker = materialize(1, cluster_topology, Role.BROKER)

        assert controller.identity.quorum_voters == broker.identity.quorum_voters
        assert len(controller.identity.quorum_voters) == 3
        assert controller["controller.quorum.voters"] == broker["controller.quorum.voters"]

        voters = set()
        for role in (Role.CONTROLLER, Role.BROKER):
            for ordinal in range(3):
                voters.add(materialize(ordinal, cluster_topology, role)["controller.quorum.voters"])
        assert len(voters) == 1

    def test_quorum_voters_content(self, cluster_topology):
        voters = quorum_voters(cluster_topology)

        assert [v.node_id for v in voters] == [0, 1, 2]
        assert str(voters[2]) == (
            "2@kafka-controller-2.kafka-controller-headless.kafka.svc.cluster.local:29093"
        )

    def test_node_ids_unique_across_roles(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, controller_count=3, broker_count=5)
        node_ids = [
            compute_identity(o, topology, Role.CONTROLLER).node_id for o in range(3)
        ] + [compute_identity(o, topology, Role.BROKER).node_id for o in range(5)]

        assert len(node_ids) == len(set(node_ids))
        assert sorted(node_ids) == list(range(8))

    def test_node_id_base(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, node_id_base=1)

        assert materialize(0, topology, Role.CONTROLLER)["node.id"] == "1"
        assert materialize(0, topology, Role.BROKER)["node.id"] == "4"
        assert materialize(0, topology, Role.BROKER)["controller.quorum.voters"].startswith("1@")

    def test_role_required(self, cluster_topology):
        with pytest.raises(InvalidTopology, match="role"):
            materialize(0, cluster_topology)

    def test_combined_role_rejected(self, cluster_topology):
        with pytest.raises(InvalidTopology, match="single-node"):
            materialize(0, cluster_topology, Role.COMBINED)

    def test_ordinal_beyond_group(self, cluster_topology):
        with pytest.raises(InvalidTopology) as exc_info:
            materialize(3, cluster_topology, Role.BROKER)
        assert exc_info.value.field == "ordinal"

    def test_zero_controllers(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, controller_count=0)
        with pytest.raises(InvalidTopology):
            materialize(0, topology, Role.BROKER)

    @pytest.mark.parametrize("ordinal", [-1, 1.5, "0", True])
    def test_invalid_ordinal(self, cluster_topology, ordinal):
        with pytest.raises(InvalidTopology) as exc_info:
            materialize(ordinal, cluster_topology, Role.BROKER)
        assert exc_info.value.field == "ordinal"


class TestConfigDocument:
    """Test rendering of the configuration document."""

    def test_deterministic(self, cluster_topology):
        first = materialize(2, cluster_topology, Role.BROKER)
        second = materialize(2, cluster_topology, Role.BROKER)

        assert first == second
        assert first.to_properties() == second.to_properties()

    def test_property_order(self, cluster_topology):
        document = materialize(0, cluster_topology, Role.BROKER)
        keys = list(document.properties)

        assert keys[:4] == [
            "process.roles",
            "node.id",
            "controller.quorum.voters",
            "controller.listener.names",
        ]
        assert keys.index("log.dirs") < keys.index("cluster.id")

    def test_required_properties(self, cluster_topology):
        document = materialize(0, cluster_topology, Role.BROKER)
        for key in (
            "node.id",
            "process.roles",
            "listeners",
            "advertised.listeners",
            "controller.quorum.voters",
            "log.dirs",
            "cluster.id",
        ):
            assert key in document.properties
        assert document["log.dirs"] == "/var/lib/kafka/data"
        assert document["cluster.id"] == "ABC123"

    def test_to_properties(self, single_topology):
        text = materialize(0, single_topology).to_properties()
        lines = text.splitlines()

        assert text.endswith("\n")
        assert lines[0] == "process.roles=broker,controller"
        assert "node.id=0" in lines
        assert "cluster.id=ABC123" in lines

    def test_to_env(self, cluster_topology):
        env = materialize(1, cluster_topology, Role.BROKER).to_env()

        assert env["KAFKA_NODE_ID"] == "4"
        assert env["KAFKA_PROCESS_ROLES"] == "broker"
        assert env["KAFKA_CONTROLLER_QUORUM_VOTERS"].count("@") == 3
        assert env["KAFKA_LOG_DIRS"] == "/var/lib/kafka/data"
        assert env["CLUSTER_ID"] == "ABC123"
        assert "KAFKA_CLUSTER_ID" not in env

    def test_lock_clear_required(self, cluster_topology):
        assert materialize(0, cluster_topology, Role.BROKER).lock_clear_required is True
        topology = dataclasses.replace(cluster_topology, reconcile_lock=False)
        assert materialize(0, topology, Role.BROKER).lock_clear_required is False
