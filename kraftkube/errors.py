"""
Error types raised while preparing a Kafka node for startup.

Both errors are fatal to the current start attempt: the CLI reports them as a
single diagnostic line and exits non-zero so the orchestrator's restart policy
can retry the whole sequence.
"""

from typing import Optional, Union
from pathlib import Path


class KraftKubeError(Exception):
    """Base class for all kraftkube errors."""


class InvalidTopology(KraftKubeError):
    """
    Raised when the cluster topology or node ordinal is malformed or inconsistent.

    Attributes:
        field: Name of the topology field that failed validation
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StorageUnavailable(KraftKubeError):
    """
    Raised when a node's log directory cannot be inspected or modified.

    Attributes:
        path: The log directory (or file within it) that was unavailable
    """

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None
