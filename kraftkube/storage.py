"""
Pre-start reconciliation of a Kafka node's log directory.

Runs only before the Kafka process is started for the current pod, so any
lock file found is stale: it was left behind by a process that did not shut
down cleanly.
"""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

from kraftkube.errors import InvalidTopology, StorageUnavailable

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".lock"
META_PROPERTIES_FILE = "meta.properties"
DEFAULT_TIMEOUT = 5.0

T = TypeVar("T")


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of reconcile_storage."""

    cleared: bool
    lock_path: Path


def _check_directory(log_dir: Path) -> None:
    if not log_dir.exists():
        raise StorageUnavailable(f"Log directory {log_dir} does not exist", path=log_dir)
    if not log_dir.is_dir():
        raise StorageUnavailable(f"Log directory {log_dir} is not a directory", path=log_dir)
    if not os.access(log_dir, os.R_OK | os.W_OK | os.X_OK):
        raise StorageUnavailable(f"Log directory {log_dir} is not readable and writable", path=log_dir)


def _clear_lock(log_dir: Path) -> ReconcileResult:
    _check_directory(log_dir)
    lock_path = log_dir / LOCK_FILE_NAME
    try:
        lock_path.unlink()
    except FileNotFoundError:
        return ReconcileResult(cleared=False, lock_path=lock_path)
    except OSError as e:
        raise StorageUnavailable(f"Cannot remove stale lock {lock_path}: {e}", path=lock_path) from e
    return ReconcileResult(cleared=True, lock_path=lock_path)


def _call_with_timeout(func: Callable[[Path], T], log_dir: Path, timeout: Optional[float]) -> T:
    outcome: dict = {}

    def call() -> None:
        try:
            outcome["result"] = func(log_dir)
        except Exception as e:
            outcome["error"] = e

    # A hung filesystem call cannot be interrupted. The worker is a daemon
    # thread so that it never keeps the process from exiting.
    worker = threading.Thread(target=call, name="kraftkube-storage", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise StorageUnavailable(
            f"Timed out after {timeout}s waiting for log directory {log_dir}", path=log_dir
        )

    error = outcome.get("error")
    if isinstance(error, OSError):
        raise StorageUnavailable(f"Log directory {log_dir} is unavailable: {error}", path=log_dir) from error
    if error is not None:
        raise error
    return outcome.get("result")


def check_storage(log_dir: Union[str, Path], timeout: Optional[float] = DEFAULT_TIMEOUT) -> None:
    """
    Check that a node's log directory is mounted and usable, without changing it.

    Raises:
        StorageUnavailable: If the directory is missing or inaccessible, or the
            filesystem does not answer within timeout
    """
    _call_with_timeout(_check_directory, Path(log_dir), timeout)


def reconcile_storage(
    log_dir: Union[str, Path], timeout: Optional[float] = DEFAULT_TIMEOUT
) -> ReconcileResult:
    """
    Remove a stale lock file from a node's log directory.

    Safe to call repeatedly: once the lock is gone, further calls report
    cleared=False.

    Args:
        log_dir: Mount point of the node's persistent volume
        timeout: Seconds to wait for the filesystem; None waits indefinitely

    Returns:
        ReconcileResult with cleared=True if a lock file was removed

    Raises:
        StorageUnavailable: If the directory is missing or inaccessible, the lock
            cannot be removed, or the filesystem does not answer within timeout
    """
    log_dir = Path(log_dir)
    logger.debug(f"Reconciling storage at {log_dir}")

    result = _call_with_timeout(_clear_lock, log_dir, timeout)
    if result.cleared:
        logger.warning(f"Removed stale lock file {result.lock_path}")
    else:
        logger.debug(f"No stale lock file in {log_dir}")
    return result


def read_cluster_id(log_dir: Union[str, Path]) -> Optional[str]:
    """
    Return the cluster id a log directory was formatted with.

    Args:
        log_dir: Node log directory

    Returns:
        The cluster.id recorded in meta.properties, or None if the directory
        has not been formatted yet

    Raises:
        StorageUnavailable: If meta.properties exists but cannot be read
    """
    meta_path = Path(log_dir) / META_PROPERTIES_FILE
    try:
        content = meta_path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageUnavailable(f"Cannot read {meta_path}: {e}", path=meta_path) from e

    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith(("#", "!")):
            continue
        key, sep, value = line.partition("=")
        if sep and key.strip() == "cluster.id":
            return value.strip()
    return None


def verify_cluster_id(log_dir: Union[str, Path], expected: str) -> None:
    """
    Check that a formatted log directory belongs to the expected cluster.

    Raises:
        InvalidTopology: If the directory was formatted with another cluster id
    """
    recorded = read_cluster_id(log_dir)
    if recorded is not None and recorded != expected:
        raise InvalidTopology(
            f"Log directory {log_dir} belongs to cluster {recorded!r}, "
            f"but this node is configured for cluster {expected!r}",
            field="cluster_id",
        )
