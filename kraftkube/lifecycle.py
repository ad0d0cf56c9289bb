"""
Pre-start lifecycle of a single Kafka node.

The sequence is strictly forward and single-pass: identity is computed, storage
is reconciled, and only then is the configuration handed to the Kafka process.
There is no retry loop here; a failed node relies on the orchestrator to restart
the whole sequence.
"""

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from kraftkube.errors import KraftKubeError
from kraftkube.materializer import ConfigDocument, materialize
from kraftkube.storage import (
    DEFAULT_TIMEOUT,
    ReconcileResult,
    check_storage,
    reconcile_storage,
    verify_cluster_id,
)
from kraftkube.topology import ClusterTopology, Role

logger = logging.getLogger(__name__)


class NodeState(Enum):
    UNINITIALIZED = "uninitialized"
    IDENTITY_COMPUTED = "identity-computed"
    STORAGE_RECONCILED = "storage-reconciled"
    READY = "ready"
    FAILED = "failed"


DEFAULT_FILE_MODE = 0o644


def write_atomic(path: Union[str, Path], content: str, mode: int = DEFAULT_FILE_MODE) -> Path:
    """Write a file so readers see either the old content or all of the new."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w") as f:
            # mkstemp creates 0600; the Kafka container may run as another user
            os.fchmod(f.fileno(), mode)
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path


class NodeLifecycle:
    """
    Drives one node from Uninitialized to Ready.

    Each step may only be called from the state that precedes it. Any error moves
    the node to FAILED and is re-raised unchanged.
    """

    def __init__(
        self,
        ordinal: int,
        topology: ClusterTopology,
        role: Optional[Role] = None,
        storage_timeout: Optional[float] = DEFAULT_TIMEOUT,
    ):
        self.ordinal = ordinal
        self.topology = topology
        self.role = role
        self.storage_timeout = storage_timeout
        self.state = NodeState.UNINITIALIZED
        self.document: Optional[ConfigDocument] = None
        self.reconcile_result: Optional[ReconcileResult] = None

    def _require(self, expected: NodeState, step: str) -> None:
        if self.state is not expected:
            raise RuntimeError(
                f"Cannot {step} in state {self.state.value}; expected {expected.value}"
            )

    def _fail(self, error: Exception) -> None:
        logger.error(f"Node {self.ordinal} failed in state {self.state.value}: {error}")
        self.state = NodeState.FAILED

    def compute_identity(self) -> ConfigDocument:
        self._require(NodeState.UNINITIALIZED, "compute identity")
        try:
            self.document = materialize(self.ordinal, self.topology, self.role)
        except KraftKubeError as e:
            self._fail(e)
            raise
        identity = self.document.identity
        logger.info(
            f"Computed identity: role={identity.role.value} node.id={identity.node_id} host={identity.host}"
        )
        self.state = NodeState.IDENTITY_COMPUTED
        return self.document

    def reconcile_storage(self) -> ReconcileResult:
        """
        Verify the volume's cluster id and clear a stale lock if required.

        Returns:
            ReconcileResult; cleared is False when lock reconciliation is disabled
        """
        self._require(NodeState.IDENTITY_COMPUTED, "reconcile storage")
        log_dir = Path(self.topology.log_dir)
        try:
            verify_cluster_id(log_dir, self.topology.cluster_id)
            if self.document.lock_clear_required:
                self.reconcile_result = reconcile_storage(log_dir, timeout=self.storage_timeout)
            else:
                check_storage(log_dir, timeout=self.storage_timeout)
                logger.info("Lock reconciliation disabled; leaving log directory untouched")
                self.reconcile_result = ReconcileResult(cleared=False, lock_path=log_dir)
        except KraftKubeError as e:
            self._fail(e)
            raise
        self.state = NodeState.STORAGE_RECONCILED
        return self.reconcile_result

    def finalize(
        self,
        properties_path: Optional[Union[str, Path]] = None,
        env_path: Optional[Union[str, Path]] = None,
    ) -> ConfigDocument:
        """
        Hand the configuration off and mark the node Ready.

        Args:
            properties_path: Where to write the Java properties file, if anywhere
            env_path: Where to write the KAFKA_* environment file, if anywhere

        Returns:
            The finalized ConfigDocument
        """
        self._require(NodeState.STORAGE_RECONCILED, "finalize configuration")
        try:
            if properties_path is not None:
                write_atomic(properties_path, self.document.to_properties())
                logger.info(f"Wrote configuration to {properties_path}")
            if env_path is not None:
                write_atomic(env_path, self.document.to_env_file())
                logger.info(f"Wrote environment to {env_path}")
        except OSError as e:
            self._fail(e)
            raise
        self.state = NodeState.READY
        return self.document

    def run(
        self,
        properties_path: Optional[Union[str, Path]] = None,
        env_path: Optional[Union[str, Path]] = None,
    ) -> ConfigDocument:
        """Run the whole pre-start sequence."""
        self.compute_identity()
        self.reconcile_storage()
        return self.finalize(properties_path, env_path)
