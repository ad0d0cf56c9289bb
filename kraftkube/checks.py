"""
Static checks over rendered Kafka manifests.

Catches misconfigurations before anything reaches the cluster: missing
listener ports or probes, storage without a size, and cluster-wide values
(cluster id, quorum voters) that differ between resources.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Union

import yaml

from kraftkube.topology import DEFAULT_CLIENT_PORT, DEFAULT_CONTROLLER_PORT, DEFAULT_INTERNAL_PORT

logger = logging.getLogger(__name__)

REQUIRED_PORTS = (DEFAULT_CLIENT_PORT, DEFAULT_INTERNAL_PORT, DEFAULT_CONTROLLER_PORT)


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    detail: str


def load_manifests(manifests_dir: Union[str, Path]) -> List[dict]:
    """
    Load every manifest document below a directory.

    Raises:
        FileNotFoundError: If the directory does not exist
        ValueError: If a file is not valid YAML
    """
    manifests_dir = Path(manifests_dir)
    if not manifests_dir.is_dir():
        raise FileNotFoundError(f"Manifests directory not found: {manifests_dir}")

    manifests: List[dict] = []
    yaml_files = sorted(list(manifests_dir.rglob("*.yaml")) + list(manifests_dir.rglob("*.yml")))
    for yaml_file in yaml_files:
        try:
            with open(yaml_file, "r") as f:
                documents = list(yaml.safe_load_all(f))
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {yaml_file}: {e}") from e
        manifests.extend(doc for doc in documents if isinstance(doc, dict))
    logger.debug(f"Loaded {len(manifests)} manifests from {manifests_dir}")
    return manifests


def _of_kind(manifests: List[dict], kind: str) -> List[dict]:
    return [m for m in manifests if m.get("kind") == kind]


def _name(manifest: dict) -> str:
    return manifest.get("metadata", {}).get("name", "<unnamed>")


def _pod_spec(statefulset: dict) -> dict:
    return statefulset.get("spec", {}).get("template", {}).get("spec", {}) or {}


def _containers(statefulset: dict) -> Iterator[dict]:
    yield from _pod_spec(statefulset).get("containers", []) or []


def _all_containers(statefulset: dict) -> Iterator[dict]:
    pod_spec = _pod_spec(statefulset)
    yield from pod_spec.get("initContainers", []) or []
    yield from pod_spec.get("containers", []) or []


def _env_values(manifests: List[dict], key: str) -> List[str]:
    """Every literal value of an environment key across ConfigMaps and containers."""
    values: List[str] = []
    for configmap in _of_kind(manifests, "ConfigMap"):
        data = configmap.get("data") or {}
        if key in data:
            values.append(str(data[key]))
    for statefulset in _of_kind(manifests, "StatefulSet"):
        for container in _all_containers(statefulset):
            for env in container.get("env", []) or []:
                if env.get("name") == key and "value" in env:
                    values.append(str(env["value"]))
    return values


def _ports(manifest: dict) -> List[Any]:
    kind = manifest.get("kind")
    if kind == "Service":
        return [p.get("port") for p in manifest.get("spec", {}).get("ports", []) or []]
    if kind == "StatefulSet":
        return [
            p.get("containerPort")
            for container in _containers(manifest)
            for p in container.get("ports", []) or []
        ]
    return []


def check_statefulsets(manifests: List[dict]) -> CheckResult:
    statefulsets = _of_kind(manifests, "StatefulSet")
    if not statefulsets:
        return CheckResult("StatefulSets", False, "No StatefulSet found")
    names = ", ".join(_name(s) for s in statefulsets)
    return CheckResult("StatefulSets", True, names)


def check_ports(manifests: List[dict]) -> CheckResult:
    exposed = {port for m in manifests for port in _ports(m)}
    missing = [str(port) for port in REQUIRED_PORTS if port not in exposed]
    if missing:
        return CheckResult("Listener ports", False, f"Missing ports: {', '.join(missing)}")
    return CheckResult("Listener ports", True, ", ".join(str(p) for p in REQUIRED_PORTS))


def check_probes(manifests: List[dict]) -> CheckResult:
    missing = []
    for statefulset in _of_kind(manifests, "StatefulSet"):
        for container in _containers(statefulset):
            for probe in ("livenessProbe", "readinessProbe"):
                if not container.get(probe):
                    missing.append(f"{_name(statefulset)}/{container.get('name')} {probe}")
    if missing:
        return CheckResult("Health probes", False, "Missing: " + "; ".join(missing))
    return CheckResult("Health probes", True, "Liveness and readiness probes configured")


def check_storage(manifests: List[dict]) -> CheckResult:
    sizes = []
    for statefulset in _of_kind(manifests, "StatefulSet"):
        templates = statefulset.get("spec", {}).get("volumeClaimTemplates", []) or []
        requested = [
            t.get("spec", {}).get("resources", {}).get("requests", {}).get("storage")
            for t in templates
        ]
        requested = [size for size in requested if size]
        if not requested:
            return CheckResult(
                "Persistent storage", False, f"{_name(statefulset)} has no volume claim with a size"
            )
        sizes.append(f"{_name(statefulset)}={requested[0]}")
    return CheckResult("Persistent storage", True, ", ".join(sizes))


def check_cluster_id(manifests: List[dict]) -> CheckResult:
    values = _env_values(manifests, "CLUSTER_ID")
    distinct = set(values)
    if not values or "" in distinct:
        return CheckResult("Cluster id", False, "CLUSTER_ID is not configured")
    if len(distinct) > 1:
        return CheckResult(
            "Cluster id", False, f"Conflicting cluster ids: {', '.join(sorted(distinct))}"
        )
    return CheckResult("Cluster id", True, values[0])


def check_quorum_voters(manifests: List[dict]) -> CheckResult:
    """
    Check that the controller quorum is configured once and matches the voter StatefulSet.

    The voter count must equal the replicas of the controller StatefulSet, or of
    the combined StatefulSet in a single-node deployment.
    """
    name = "Quorum voters"
    values = set(_env_values(manifests, "KAFKA_CONTROLLER_QUORUM_VOTERS"))
    if not values:
        return CheckResult(name, False, "KAFKA_CONTROLLER_QUORUM_VOTERS is not configured")
    if len(values) > 1:
        return CheckResult(name, False, "Resources disagree on the controller quorum")

    voters = [v for v in values.pop().split(",") if v]
    voter_ids = [v.split("@", 1)[0] for v in voters]
    if len(set(voter_ids)) != len(voter_ids):
        return CheckResult(name, False, "Duplicate voter node ids")

    voter_sets = [
        s
        for s in _of_kind(manifests, "StatefulSet")
        if s.get("metadata", {}).get("labels", {}).get("app.kubernetes.io/component")
        in ("controller", "combined")
    ]
    replicas = sum(s.get("spec", {}).get("replicas", 1) for s in voter_sets)
    if replicas != len(voters):
        return CheckResult(
            name, False, f"{len(voters)} voters configured but {replicas} controller replicas"
        )
    return CheckResult(name, True, f"{len(voters)} voters")


def check_ingress(manifests: List[dict]) -> CheckResult:
    ingresses = _of_kind(manifests, "Ingress")
    hosts = [
        rule.get("host")
        for ingress in ingresses
        for rule in ingress.get("spec", {}).get("rules", []) or []
        if rule.get("host")
    ]
    if not hosts:
        return CheckResult("Ingress", False, "No Ingress host configured")
    tcp_services = [c for c in _of_kind(manifests, "ConfigMap") if _name(c) == "tcp-services"]
    if not tcp_services:
        return CheckResult("Ingress", False, "tcp-services ConfigMap missing")
    return CheckResult("Ingress", True, ", ".join(hosts))


CHECKS = (
    check_statefulsets,
    check_ports,
    check_probes,
    check_storage,
    check_cluster_id,
    check_quorum_voters,
    check_ingress,
)


def run_checks(manifests: List[dict]) -> List[CheckResult]:
    """Run every deployment check and return their results in order."""
    results = [check(manifests) for check in CHECKS]
    for result in results:
        log = logger.debug if result.passed else logger.warning
        log(f"{result.name}: {'PASS' if result.passed else 'FAIL'} ({result.detail})")
    return results
