"""
Kubernetes manifests for a KRaft-mode Kafka deployment.

Everything cluster-wide (cluster id, controller quorum, ports, names) is
derived from one ClusterTopology, so single-node and multi-node deployments
are rendered from the same code instead of hand-maintained YAML.
"""

from pathlib import Path
from typing import Any, Optional, Union

import yaml

from kraftkube.config import DEFAULT_INIT_IMAGE, DEFAULT_KAFKA_IMAGE
from kraftkube.materializer import quorum_voters
from kraftkube.output import get_output
from kraftkube.topology import ClusterTopology, Mode, Role

CONFIG_DIR = "/etc/kafka/kraft"
CONFIG_FILE = f"{CONFIG_DIR}/server.properties"
KAFKA_BIN = "/opt/kafka/bin"
KAFKA_UID = 1000

DEFAULT_STORAGE = {
    Role.COMBINED: "10Gi",
    Role.CONTROLLER: "5Gi",
    Role.BROKER: "20Gi",
}

CLIENT_SERVICE_NAME = "kafka-client"
CLUSTER_CONFIGMAP_NAME = "kafka-cluster-config"
INGRESS_NAME = "kafka-ingress"
TCP_SERVICES_CONFIGMAP = "tcp-services"


class KafkaManifests:
    """
    Builds the manifests for one Kafka deployment.

    Use manifests() to get the manifest dictionaries, or render() to write them
    to the manifests directory, one file per resource.
    """

    def __init__(
        self,
        topology: ClusterTopology,
        kafka_image: str = DEFAULT_KAFKA_IMAGE,
        init_image: str = DEFAULT_INIT_IMAGE,
        storage: Optional[dict[Role, str]] = None,
        storage_class_name: Optional[str] = None,
        ingress_class_name: str = "nginx",
        ingress_namespace: str = "ingress-nginx",
    ):
        topology.validate()
        self.topology = topology
        self.kafka_image = kafka_image
        self.init_image = init_image
        self.storage = {**DEFAULT_STORAGE, **(storage or {})}
        self.storage_class_name = storage_class_name
        self.ingress_class_name = ingress_class_name
        self.ingress_namespace = ingress_namespace
        self._manifests: list[dict] = []

    @property
    def name(self) -> str:
        """Name of the manifest collection, used as its output subdirectory."""
        return f"kafka-{self.topology.mode.value}"

    @property
    def namespace(self) -> str:
        return self.topology.namespace

    def _labels(self, role: Role) -> dict[str, str]:
        return {
            "app": self.topology.statefulset_name(role),
            "app.kubernetes.io/name": "kafka",
            "app.kubernetes.io/component": role.value,
            "app.kubernetes.io/managed-by": "kraftkube",
        }

    def _role_ports(self, role: Role) -> list[dict[str, Any]]:
        ports = self.topology.ports
        role_ports = [{"name": "controller", "port": ports.controller}]
        if role.serves_clients:
            role_ports = [
                {"name": "external", "port": ports.client},
                {"name": "internal", "port": ports.internal},
            ] + role_ports
        return role_ports

    def _probe_port(self, role: Role) -> int:
        if role.serves_clients:
            return self.topology.ports.client
        return self.topology.ports.controller

    def cluster_config(self) -> dict[str, str]:
        """Environment shared by every node, published as a ConfigMap."""
        topology = self.topology
        return {
            "CLUSTER_ID": topology.cluster_id,
            "KAFKA_MODE": topology.mode.value,
            "KAFKA_CONTROLLER_COUNT": str(topology.controller_count),
            "KAFKA_BROKER_COUNT": str(topology.broker_count),
            "KAFKA_EXTERNAL_ADDRESS": topology.external_advertise_address,
            "KAFKA_NAMESPACE": topology.namespace,
            "KAFKA_CLUSTER_DOMAIN": topology.cluster_domain,
            "KAFKA_LOG_DIR": topology.log_dir,
            "KAFKA_NODE_ID_BASE": str(topology.node_id_base),
            "KAFKA_RECONCILE_LOCK": str(topology.reconcile_lock).lower(),
            "KAFKA_CONTROLLER_QUORUM_VOTERS": ",".join(str(v) for v in quorum_voters(topology)),
            "KAFKA_CONFIG_FILE": CONFIG_FILE,
        }

    def add_namespace(self) -> None:
        self._manifests.append(
            {
                "apiVersion": "v1",
                "kind": "Namespace",
                "metadata": {"name": self.namespace},
            }
        )

    def add_cluster_configmap(self) -> None:
        self._manifests.append(
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {"name": CLUSTER_CONFIGMAP_NAME, "namespace": self.namespace},
                "data": self.cluster_config(),
            }
        )

    def add_headless_service(self, role: Role) -> None:
        """
        Add the headless Service that gives each replica of a role its stable DNS name.

        Not-ready addresses are published so controllers can find each other
        before any of them passes its readiness probe.
        """
        labels = self._labels(role)
        self._manifests.append(
            {
                "apiVersion": "v1",
                "kind": "Service",
                "metadata": {
                    "name": self.topology.headless_service_name(role),
                    "namespace": self.namespace,
                    "labels": labels,
                },
                "spec": {
                    "clusterIP": "None",
                    "publishNotReadyAddresses": True,
                    "selector": {"app": labels["app"]},
                    "ports": [
                        {"name": p["name"], "port": p["port"], "targetPort": p["port"]}
                        for p in self._role_ports(role)
                    ],
                },
            }
        )

    def add_client_service(self) -> None:
        """Add the ClusterIP Service clients bootstrap through."""
        role = Role.COMBINED if self.topology.mode is Mode.SINGLE else Role.BROKER
        port = self.topology.ports.client
        self._manifests.append(
            {
                "apiVersion": "v1",
                "kind": "Service",
                "metadata": {
                    "name": CLIENT_SERVICE_NAME,
                    "namespace": self.namespace,
                    "labels": self._labels(role),
                },
                "spec": {
                    "type": "ClusterIP",
                    "selector": {"app": self.topology.statefulset_name(role)},
                    "ports": [{"name": "external", "port": port, "targetPort": port}],
                },
            }
        )

    def _init_container(self, role: Role) -> dict[str, Any]:
        return {
            "name": "init-config",
            "image": self.init_image,
            "command": ["kraftkube", "init", "--role", role.value],
            "env": [
                {"name": "POD_NAME", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
                {"name": "KAFKA_NODE_ROLE", "value": role.value},
            ],
            "envFrom": [{"configMapRef": {"name": CLUSTER_CONFIGMAP_NAME}}],
            "volumeMounts": [
                {"name": "data", "mountPath": self.topology.log_dir},
                {"name": "config", "mountPath": CONFIG_DIR},
            ],
        }

    def _kafka_container(self, role: Role) -> dict[str, Any]:
        start = (
            f'{KAFKA_BIN}/kafka-storage.sh format --ignore-formatted --cluster-id "$CLUSTER_ID" '
            f"--config {CONFIG_FILE} && exec {KAFKA_BIN}/kafka-server-start.sh {CONFIG_FILE}"
        )
        probe_port = self._probe_port(role)
        return {
            "name": "kafka",
            "image": self.kafka_image,
            "command": ["sh", "-c", start],
            "envFrom": [{"configMapRef": {"name": CLUSTER_CONFIGMAP_NAME}}],
            "ports": [
                {"name": p["name"], "containerPort": p["port"]} for p in self._role_ports(role)
            ],
            "livenessProbe": {
                "tcpSocket": {"port": probe_port},
                "initialDelaySeconds": 60,
                "periodSeconds": 10,
                "failureThreshold": 6,
            },
            "readinessProbe": {
                "tcpSocket": {"port": probe_port},
                "initialDelaySeconds": 20,
                "periodSeconds": 5,
            },
            "volumeMounts": [
                {"name": "data", "mountPath": self.topology.log_dir},
                {"name": "config", "mountPath": CONFIG_DIR},
            ],
        }

    def add_statefulset(self, role: Role) -> None:
        """Add the StatefulSet running one role group."""
        labels = self._labels(role)
        claim_spec: dict[str, Any] = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": self.storage[role]}},
        }
        if self.storage_class_name:
            claim_spec["storageClassName"] = self.storage_class_name

        self._manifests.append(
            {
                "apiVersion": "apps/v1",
                "kind": "StatefulSet",
                "metadata": {
                    "name": self.topology.statefulset_name(role),
                    "namespace": self.namespace,
                    "labels": labels,
                },
                "spec": {
                    "serviceName": self.topology.headless_service_name(role),
                    "replicas": self.topology.group_size(role),
                    "podManagementPolicy": "Parallel",
                    "selector": {"matchLabels": {"app": labels["app"]}},
                    "template": {
                        "metadata": {"labels": labels},
                        "spec": {
                            "securityContext": {"fsGroup": KAFKA_UID},
                            "initContainers": [self._init_container(role)],
                            "containers": [self._kafka_container(role)],
                            "volumes": [{"name": "config", "emptyDir": {}}],
                        },
                    },
                    "volumeClaimTemplates": [{"metadata": {"name": "data"}, "spec": claim_spec}],
                },
            }
        )

    def add_ingress(self) -> None:
        """
        Add the Ingress for the external address and the ingress-nginx TCP mapping.

        Kafka speaks TCP, not HTTP: the tcp-services ConfigMap is what actually
        forwards the client port through the ingress controller.
        """
        port = self.topology.ports.client
        self._manifests.append(
            {
                "apiVersion": "networking.k8s.io/v1",
                "kind": "Ingress",
                "metadata": {"name": INGRESS_NAME, "namespace": self.namespace},
                "spec": {
                    "ingressClassName": self.ingress_class_name,
                    "rules": [
                        {
                            "host": self.topology.external_advertise_address,
                            "http": {
                                "paths": [
                                    {
                                        "path": "/",
                                        "pathType": "Prefix",
                                        "backend": {
                                            "service": {
                                                "name": CLIENT_SERVICE_NAME,
                                                "port": {"number": port},
                                            }
                                        },
                                    }
                                ]
                            },
                        }
                    ],
                },
            }
        )
        self._manifests.append(
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {"name": TCP_SERVICES_CONFIGMAP, "namespace": self.ingress_namespace},
                "data": {str(port): f"{self.namespace}/{CLIENT_SERVICE_NAME}:{port}"},
            }
        )

    def manifests(self) -> list[dict]:
        """Return every manifest of the deployment, Namespace first."""
        self._manifests = []
        self.add_namespace()
        self.add_cluster_configmap()
        for role in self.topology.roles():
            self.add_headless_service(role)
        self.add_client_service()
        for role in self.topology.roles():
            self.add_statefulset(role)
        self.add_ingress()
        return self._manifests

    def render(self, manifests_dir: Union[str, Path]) -> list[tuple[dict, Path]]:
        """
        Write each manifest to <manifests_dir>/<name>/<resource>-<kind>.yaml.

        Returns:
            (manifest, written file) pairs, in manifest order
        """
        output = get_output()
        output_dir = Path(manifests_dir) / self.name
        output_dir.mkdir(parents=True, exist_ok=True)

        manifests = self.manifests()
        output.verbose(f"Rendering {len(manifests)} manifests for {self.name}")

        written: list[tuple[dict, Path]] = []
        for manifest in manifests:
            manifest_name = manifest["metadata"]["name"]
            manifest_kind = manifest["kind"].lower()
            output_file = output_dir / f"{manifest_name}-{manifest_kind}.yaml"
            if output_file.exists():
                output.verbose(f"Overwriting existing manifest {manifest_name} ({manifest_kind})")
            else:
                output.verbose(f"Writing manifest {manifest_name} ({manifest_kind}) to {output_file}")
            with open(output_file, "w") as f:
                yaml.safe_dump(manifest, f, sort_keys=False)
            written.append((manifest, output_file))
        return written
