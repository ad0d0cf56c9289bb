"""Tests for ClusterTopology validation and naming."""

import dataclasses
import re

import pytest

from kraftkube.errors import InvalidTopology
from kraftkube.topology import ClusterTopology, Mode, Ports, Role, generate_cluster_id


class TestValidation:
    """Test topology validation."""

    def test_valid_single(self, single_topology):
        single_topology.validate()

    def test_valid_cluster(self, cluster_topology):
        cluster_topology.validate()

    def test_zero_controllers_in_cluster_mode(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, controller_count=0)
        with pytest.raises(InvalidTopology) as exc_info:
            topology.validate()
        assert exc_info.value.field == "controller_count"

    def test_zero_brokers_in_cluster_mode(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, broker_count=0)
        with pytest.raises(InvalidTopology, match="broker_count"):
            topology.validate()

    def test_single_mode_ignores_counts(self, single_topology):
        """Counts are not used in single mode, so zero is accepted."""
        dataclasses.replace(single_topology, controller_count=0, broker_count=0).validate()

    def test_single_mode_rejects_multiple_replicas(self, single_topology):
        topology = dataclasses.replace(single_topology, replicas=2)
        with pytest.raises(InvalidTopology) as exc_info:
            topology.validate()
        assert exc_info.value.field == "replicas"

    def test_empty_cluster_id(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, cluster_id="  ")
        with pytest.raises(InvalidTopology) as exc_info:
            topology.validate()
        assert exc_info.value.field == "cluster_id"

    def test_empty_external_address(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, external_advertise_address="")
        with pytest.raises(InvalidTopology, match="external_advertise_address"):
            topology.validate()

    def test_negative_node_id_base(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, node_id_base=-1)
        with pytest.raises(InvalidTopology, match="node_id_base"):
            topology.validate()

    def test_duplicate_ports(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, ports=Ports(client=9092, internal=9092))
        with pytest.raises(InvalidTopology, match="distinct"):
            topology.validate()

    def test_port_out_of_range(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, ports=Ports(controller=70000))
        with pytest.raises(InvalidTopology) as exc_info:
            topology.validate()
        assert exc_info.value.field == "ports.controller"


class TestNaming:
    """Test node ids and stable network names."""

    def test_roles(self, single_topology, cluster_topology):
        assert single_topology.roles() == [Role.COMBINED]
        assert cluster_topology.roles() == [Role.CONTROLLER, Role.BROKER]

    def test_node_id_bands(self, cluster_topology):
        assert [cluster_topology.node_id(Role.CONTROLLER, o) for o in range(3)] == [0, 1, 2]
        assert [cluster_topology.node_id(Role.BROKER, o) for o in range(3)] == [3, 4, 5]

    def test_node_id_base_shifts_both_bands(self, cluster_topology):
        topology = dataclasses.replace(cluster_topology, node_id_base=1)
        assert [topology.node_id(Role.CONTROLLER, o) for o in range(3)] == [1, 2, 3]
        assert [topology.node_id(Role.BROKER, o) for o in range(3)] == [4, 5, 6]

    def test_statefulset_names(self, cluster_topology):
        assert cluster_topology.statefulset_name(Role.COMBINED) == "kafka"
        assert cluster_topology.statefulset_name(Role.CONTROLLER) == "kafka-controller"
        assert cluster_topology.headless_service_name(Role.BROKER) == "kafka-broker-headless"

    def test_stable_dns_name(self, cluster_topology):
        assert (
            cluster_topology.stable_dns_name(Role.BROKER, 2)
            == "kafka-broker-2.kafka-broker-headless.kafka.svc.cluster.local"
        )

    def test_replication_factor_is_capped(self, cluster_topology, single_topology):
        assert single_topology.replication_factor() == 1
        assert dataclasses.replace(cluster_topology, broker_count=5).replication_factor() == 3
        assert dataclasses.replace(cluster_topology, broker_count=2).replication_factor() == 2

    def test_process_roles(self):
        assert Role.COMBINED.process_roles == "broker,controller"
        assert Role.BROKER.process_roles == "broker"
        assert Role.CONTROLLER.process_roles == "controller"


class TestGenerateClusterId:
    """Test cluster id generation."""

    def test_format(self):
        cluster_id = generate_cluster_id()
        assert len(cluster_id) == 22
        assert re.fullmatch(r"[A-Za-z0-9_-]{22}", cluster_id)
        assert not cluster_id.startswith("-")

    def test_unique(self):
        assert len({generate_cluster_id() for _ in range(50)}) == 50
