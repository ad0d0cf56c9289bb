"""Tests for the node pre-start lifecycle."""

import dataclasses
from unittest.mock import patch

import pytest

from kraftkube.errors import InvalidTopology, StorageUnavailable
from kraftkube.lifecycle import NodeLifecycle, NodeState, write_atomic
from kraftkube.storage import LOCK_FILE_NAME, META_PROPERTIES_FILE
from kraftkube.topology import Role


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def broker_topology(cluster_topology, data_dir):
    return dataclasses.replace(cluster_topology, log_dir=str(data_dir))


class TestNodeLifecycle:
    """Test state transitions of NodeLifecycle."""

    def test_initial_state(self, broker_topology):
        lifecycle = NodeLifecycle(0, broker_topology, Role.BROKER)
        assert lifecycle.state is NodeState.UNINITIALIZED
        assert lifecycle.document is None

    def test_full_sequence(self, broker_topology, data_dir, tmp_path):
        (data_dir / LOCK_FILE_NAME).write_text("")
        properties = tmp_path / "config" / "server.properties"
        env_file = tmp_path / "config" / "kafka.env"

        lifecycle = NodeLifecycle(1, broker_topology, Role.BROKER)
        document = lifecycle.run(properties, env_file)

        assert lifecycle.state is NodeState.READY
        assert lifecycle.reconcile_result.cleared is True
        assert not (data_dir / LOCK_FILE_NAME).exists()
        assert properties.read_text() == document.to_properties()
        assert "KAFKA_NODE_ID=4\n" in env_file.read_text()

    def test_step_by_step_states(self, broker_topology):
        lifecycle = NodeLifecycle(0, broker_topology, Role.BROKER)

        lifecycle.compute_identity()
        assert lifecycle.state is NodeState.IDENTITY_COMPUTED
        lifecycle.reconcile_storage()
        assert lifecycle.state is NodeState.STORAGE_RECONCILED
        lifecycle.finalize()
        assert lifecycle.state is NodeState.READY

    def test_steps_cannot_be_skipped(self, broker_topology):
        lifecycle = NodeLifecycle(0, broker_topology, Role.BROKER)

        with pytest.raises(RuntimeError, match="expected identity-computed"):
            lifecycle.reconcile_storage()
        with pytest.raises(RuntimeError, match="expected storage-reconciled"):
            lifecycle.finalize()

    def test_steps_cannot_be_repeated(self, broker_topology):
        lifecycle = NodeLifecycle(0, broker_topology, Role.BROKER)
        lifecycle.run()

        with pytest.raises(RuntimeError):
            lifecycle.compute_identity()

    def test_invalid_topology_fails_node(self, broker_topology):
        topology = dataclasses.replace(broker_topology, controller_count=0)
        lifecycle = NodeLifecycle(0, topology, Role.BROKER)

        with pytest.raises(InvalidTopology):
            lifecycle.run()
        assert lifecycle.state is NodeState.FAILED
        assert lifecycle.document is None

    def test_storage_unavailable_fails_node(self, broker_topology, tmp_path):
        topology = dataclasses.replace(broker_topology, log_dir=str(tmp_path / "missing"))
        properties = tmp_path / "server.properties"
        lifecycle = NodeLifecycle(0, topology, Role.BROKER)

        with pytest.raises(StorageUnavailable):
            lifecycle.run(properties)
        assert lifecycle.state is NodeState.FAILED
        assert not properties.exists()

    def test_cluster_id_mismatch_fails_node(self, broker_topology, data_dir, tmp_path):
        (data_dir / META_PROPERTIES_FILE).write_text("cluster.id=OTHER\n")
        (data_dir / LOCK_FILE_NAME).write_text("")
        lifecycle = NodeLifecycle(0, broker_topology, Role.BROKER)

        with pytest.raises(InvalidTopology, match="OTHER"):
            lifecycle.run(tmp_path / "server.properties")
        assert lifecycle.state is NodeState.FAILED
        assert (data_dir / LOCK_FILE_NAME).exists()

    def test_lock_left_alone_when_reconciliation_disabled(self, broker_topology, data_dir):
        (data_dir / LOCK_FILE_NAME).write_text("")
        topology = dataclasses.replace(broker_topology, reconcile_lock=False)
        lifecycle = NodeLifecycle(0, topology, Role.BROKER)

        lifecycle.run()

        assert lifecycle.state is NodeState.READY
        assert lifecycle.reconcile_result.cleared is False
        assert (data_dir / LOCK_FILE_NAME).exists()

    def test_missing_volume_fails_node_when_reconciliation_disabled(self, broker_topology, tmp_path):
        topology = dataclasses.replace(
            broker_topology, log_dir=str(tmp_path / "missing"), reconcile_lock=False
        )
        properties = tmp_path / "server.properties"
        lifecycle = NodeLifecycle(0, topology, Role.BROKER)

        with pytest.raises(StorageUnavailable, match="does not exist"):
            lifecycle.run(properties)
        assert lifecycle.state is NodeState.FAILED
        assert not properties.exists()

    def test_write_failure_fails_node(self, broker_topology, tmp_path):
        lifecycle = NodeLifecycle(0, broker_topology, Role.BROKER)
        with patch("kraftkube.lifecycle.write_atomic", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                lifecycle.run(tmp_path / "server.properties")
        assert lifecycle.state is NodeState.FAILED


class TestWriteAtomic:
    """Test atomic file writes."""

    def test_creates_parent_directories(self, tmp_path):
        path = write_atomic(tmp_path / "a" / "b" / "file.txt", "content")
        assert path.read_text() == "content"

    def test_replaces_existing_file(self, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("old")
        write_atomic(path, "new")
        assert path.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["file.txt"]

    def test_written_files_are_world_readable(self, tmp_path):
        path = write_atomic(tmp_path / "server.properties", "node.id=0\n")
        assert path.stat().st_mode & 0o777 == 0o644

    def test_explicit_mode(self, tmp_path):
        path = write_atomic(tmp_path / "kafka.env", "KAFKA_NODE_ID=0\n", mode=0o640)
        assert path.stat().st_mode & 0o777 == 0o640
