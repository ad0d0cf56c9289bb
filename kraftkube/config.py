"""
Centralized configuration management for kraftkube.

Reads the cluster topology and per-node settings from environment variables,
which is how the rendered StatefulSets pass them to the init container.
"""

import os
import re
from pathlib import Path
from typing import Optional

from kraftkube.errors import InvalidTopology
from kraftkube.topology import (
    DEFAULT_CLUSTER_DOMAIN,
    DEFAULT_LOG_DIR,
    DEFAULT_NAMESPACE,
    ClusterTopology,
    Mode,
    Role,
)

DEFAULT_KAFKA_IMAGE = "apache/kafka:4.0.1-rc0"
DEFAULT_INIT_IMAGE = "kraftkube:latest"
DEFAULT_CONFIG_FILE = "/etc/kafka/kraft/server.properties"

_ORDINAL_PATTERN = re.compile(r"-(\d+)$")


class Config:
    """
    Centralized configuration management.

    Provides access to environment variables with sensible defaults and
    validation.
    """

    @staticmethod
    def get(key: str, default: Optional[str] = None) -> str:
        """
        Get an environment variable with an optional default.

        Args:
            key: Environment variable name
            default: Default value if not set

        Returns:
            Environment variable value, default, or an empty string
        """
        return os.getenv(key, default) or ""

    @staticmethod
    def get_bool(key: str, default: bool = False) -> bool:
        value = os.getenv(key, "").lower()
        if value in ("true", "1", "yes", "on"):
            return True
        elif value in ("false", "0", "no", "off"):
            return False
        return default

    @staticmethod
    def get_int(key: str, default: int, field: Optional[str] = None) -> int:
        """
        Get an integer environment variable.

        Raises:
            InvalidTopology: If the variable is set but is not an integer
        """
        value = os.getenv(key)
        if value is None or value.strip() == "":
            return default
        try:
            return int(value)
        except ValueError:
            raise InvalidTopology(
                f"Environment variable {key} must be an integer, got {value!r}",
                field=field or key,
            ) from None

    @staticmethod
    def mode() -> Mode:
        value = Config.get("KAFKA_MODE", Mode.SINGLE.value).lower()
        try:
            return Mode(value)
        except ValueError:
            raise InvalidTopology(
                f"KAFKA_MODE must be 'single' or 'cluster', got {value!r}", field="mode"
            ) from None

    @staticmethod
    def role() -> Optional[Role]:
        """Role group from KAFKA_NODE_ROLE, or None if unset."""
        value = Config.get("KAFKA_NODE_ROLE").lower()
        if not value:
            return None
        try:
            return Role(value)
        except ValueError:
            raise InvalidTopology(
                f"KAFKA_NODE_ROLE must be controller, broker or combined, got {value!r}",
                field="role",
            ) from None

    @staticmethod
    def cluster_id() -> str:
        return Config.get("CLUSTER_ID")

    @staticmethod
    def external_address() -> str:
        return Config.get("KAFKA_EXTERNAL_ADDRESS")

    @staticmethod
    def namespace() -> str:
        return Config.get("KAFKA_NAMESPACE") or Config.get("POD_NAMESPACE", DEFAULT_NAMESPACE)

    @staticmethod
    def log_dir() -> str:
        return Config.get("KAFKA_LOG_DIR", DEFAULT_LOG_DIR)

    @staticmethod
    def config_file() -> Path:
        return Path(Config.get("KAFKA_CONFIG_FILE", DEFAULT_CONFIG_FILE))

    @staticmethod
    def env_file() -> Optional[Path]:
        value = Config.get("KAFKA_ENV_FILE")
        return Path(value) if value else None

    @staticmethod
    def kafka_image() -> str:
        return Config.get("KAFKA_IMAGE", DEFAULT_KAFKA_IMAGE)

    @staticmethod
    def init_image() -> str:
        return Config.get("KRAFTKUBE_INIT_IMAGE", DEFAULT_INIT_IMAGE)

    @staticmethod
    def manifests_dir() -> Path:
        """
        Get the base directory for rendered manifests.

        Checks MANIFESTS_DIR environment variable first, then defaults
        to a 'manifests' directory relative to the current working directory.
        """
        env_dir = os.getenv("MANIFESTS_DIR")
        if env_dir:
            return Path(env_dir).resolve()
        return Path.cwd() / "manifests"

    @staticmethod
    def pod_name() -> str:
        return Config.get("POD_NAME") or Config.get("HOSTNAME")

    @staticmethod
    def ordinal(pod_name: Optional[str] = None) -> int:
        """
        Parse a StatefulSet ordinal from a pod name such as kafka-broker-2.

        Args:
            pod_name: Pod name; defaults to POD_NAME, then HOSTNAME

        Returns:
            The trailing ordinal

        Raises:
            InvalidTopology: If no pod name is available or it has no ordinal suffix
        """
        name = pod_name if pod_name is not None else Config.pod_name()
        if not name:
            raise InvalidTopology(
                "Cannot determine ordinal: POD_NAME and HOSTNAME are not set", field="ordinal"
            )
        match = _ORDINAL_PATTERN.search(name.strip())
        if not match:
            raise InvalidTopology(
                f"Cannot determine ordinal from pod name {name!r}", field="ordinal"
            )
        return int(match.group(1))

    @staticmethod
    def topology() -> ClusterTopology:
        """
        Build the cluster topology from the environment.

        The result is not validated; validation happens when it is materialized.
        """
        return ClusterTopology(
            mode=Config.mode(),
            cluster_id=Config.cluster_id(),
            external_advertise_address=Config.external_address(),
            controller_count=Config.get_int("KAFKA_CONTROLLER_COUNT", 3, field="controller_count"),
            broker_count=Config.get_int("KAFKA_BROKER_COUNT", 3, field="broker_count"),
            replicas=Config.get_int("KAFKA_REPLICAS", 1, field="replicas"),
            namespace=Config.namespace(),
            cluster_domain=Config.get("KAFKA_CLUSTER_DOMAIN", DEFAULT_CLUSTER_DOMAIN),
            log_dir=Config.log_dir(),
            node_id_base=Config.get_int("KAFKA_NODE_ID_BASE", 0, field="node_id_base"),
            reconcile_lock=Config.get_bool("KAFKA_RECONCILE_LOCK", True),
        )


# Global config instance for convenience
config = Config()
