#!/usr/bin/env python3
"""
Command-line interface for kraftkube.

Runs the pre-start step inside a Kafka pod (init) and renders, applies and
checks the manifests of a KRaft-mode Kafka deployment.
"""

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from rich.logging import RichHandler

from kraftkube.checks import load_manifests, run_checks
from kraftkube.config import Config
from kraftkube.errors import InvalidTopology, KraftKubeError
from kraftkube.executor import get_executor
from kraftkube.lifecycle import NodeLifecycle
from kraftkube.manifests import KafkaManifests
from kraftkube.materializer import ConfigDocument, materialize, resolve_role
from kraftkube.output import OutputManager, Verbosity, get_output, set_output
from kraftkube.storage import DEFAULT_TIMEOUT
from kraftkube.topology import ClusterTopology, Mode, Role, generate_cluster_id

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Verbosity.QUIET: logging.ERROR,
    Verbosity.NORMAL: logging.WARNING,
    Verbosity.VERBOSE: logging.DEBUG,
}


def topology_from_args(args: argparse.Namespace) -> ClusterTopology:
    """
    Build the topology from the environment, overridden by command-line flags.

    Raises:
        InvalidTopology: If an environment value cannot be parsed
    """
    topology = Config.topology()
    overrides = {
        "mode": Mode(args.mode) if getattr(args, "mode", None) else None,
        "controller_count": getattr(args, "controllers", None),
        "broker_count": getattr(args, "brokers", None),
        "external_advertise_address": getattr(args, "external_address", None),
        "cluster_id": getattr(args, "cluster_id", None),
        "namespace": getattr(args, "namespace", None),
        "log_dir": getattr(args, "log_dir", None),
        "node_id_base": getattr(args, "node_id_base", None),
    }
    return dataclasses.replace(
        topology, **{key: value for key, value in overrides.items() if value is not None}
    )


def _role_from_args(args: argparse.Namespace) -> Optional[Role]:
    if getattr(args, "role", None):
        return Role(args.role)
    return Config.role()


def _ordinal_from_args(args: argparse.Namespace) -> int:
    if getattr(args, "ordinal", None) is not None:
        return args.ordinal
    return Config.ordinal(getattr(args, "pod_name", None))


def _verify_expected_voters(document: ConfigDocument) -> None:
    """
    Compare the computed quorum against KAFKA_CONTROLLER_QUORUM_VOTERS, if published.

    Raises:
        InvalidTopology: If the two differ, meaning this node would join a
            different quorum than the one the deployment was rendered with
    """
    expected = Config.get("KAFKA_CONTROLLER_QUORUM_VOTERS")
    actual = document["controller.quorum.voters"]
    if expected and expected != actual:
        raise InvalidTopology(
            f"Computed quorum voters {actual!r} differ from published {expected!r}",
            field="quorum_voters",
        )


def init_node(
    ordinal: int,
    topology: ClusterTopology,
    role: Optional[Role] = None,
    properties_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
    storage_timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> ConfigDocument:
    """
    Run the pre-start sequence for one node.

    Returns:
        The finalized ConfigDocument

    Raises:
        InvalidTopology: If the topology, role or ordinal is invalid
        StorageUnavailable: If the log directory cannot be reconciled
    """
    output = get_output()
    lifecycle = NodeLifecycle(ordinal, topology, role, storage_timeout=storage_timeout)

    document = lifecycle.compute_identity()
    _verify_expected_voters(document)
    identity = document.identity
    output.info(f"Node {identity.node_id} ({identity.role.value}) at {identity.host}")

    result = lifecycle.reconcile_storage()
    if result.cleared:
        output.warning(f"Removed stale lock {result.lock_path}")
    else:
        output.verbose(f"No stale lock in {topology.log_dir}")

    lifecycle.finalize(properties_path, env_path)
    if properties_path is not None:
        output.success(f"Configuration written to {properties_path}")
    return document


def render_manifests(
    topology: ClusterTopology,
    output_dir: Path,
    kafka_image: Optional[str] = None,
    init_image: Optional[str] = None,
    storage_class_name: Optional[str] = None,
) -> List[Tuple[dict, Path]]:
    """
    Render the deployment's manifests.

    Returns:
        (manifest, file) pairs in apply order
    """
    output = get_output()
    builder = KafkaManifests(
        topology,
        kafka_image=kafka_image or Config.kafka_image(),
        init_image=init_image or Config.init_image(),
        storage_class_name=storage_class_name,
    )
    rendered = builder.render(output_dir)
    output.success(f"Rendered {len(rendered)} manifests to {output_dir / builder.name}")
    return rendered


def apply_manifests(files: List[Path]) -> None:
    """
    Apply rendered manifests with kubectl, in order.

    Raises:
        FileNotFoundError: If kubectl is not found
        RuntimeError: If kubectl apply fails
    """
    executor = get_executor()
    output = get_output()
    if not executor.kubectl_available():
        raise FileNotFoundError("kubectl not found. Please install kubectl and ensure it's in your PATH.")

    output.section("Applying Manifests")
    with output.progress("Applying manifests", total=len(files)) as progress:
        for yaml_file in files:
            try:
                output.verbose(f"Applying {yaml_file.name}")
                executor.kubectl("apply", "-f", str(yaml_file), check=True, capture_output=True)
            except Exception as e:
                output.error(
                    f"Failed to apply {yaml_file}",
                    suggestion="Check kubectl configuration and cluster connectivity",
                )
                raise RuntimeError(f"kubectl apply failed for {yaml_file}: {e}") from e
            if progress:
                progress.update(progress.tasks[0].id, advance=1)
    output.success(f"Successfully applied {len(files)} manifest file(s)")


def delete_manifests(files: List[Path]) -> None:
    """
    Delete the resources of rendered manifests, in reverse apply order.

    Raises:
        FileNotFoundError: If kubectl is not found
        RuntimeError: If kubectl delete fails
    """
    executor = get_executor()
    output = get_output()
    if not executor.kubectl_available():
        raise FileNotFoundError("kubectl not found. Please install kubectl and ensure it's in your PATH.")

    for yaml_file in reversed(files):
        try:
            output.verbose(f"Deleting {yaml_file.name}")
            executor.kubectl(
                "delete", "-f", str(yaml_file), "--ignore-not-found=true", check=True, capture_output=True
            )
        except Exception as e:
            raise RuntimeError(f"kubectl delete failed for {yaml_file}: {e}") from e
    output.success(f"Deleted resources from {len(files)} manifest file(s)")


def _output_dir(args: argparse.Namespace) -> Path:
    if getattr(args, "output_dir", None):
        return Path(args.output_dir).resolve()
    return Config.manifests_dir()


def _render_from_args(args: argparse.Namespace) -> List[Tuple[dict, Path]]:
    return render_manifests(
        topology_from_args(args),
        _output_dir(args),
        kafka_image=args.kafka_image,
        init_image=args.init_image,
        storage_class_name=args.storage_class,
    )


def cmd_init(args: argparse.Namespace) -> None:
    """Handle the init subcommand."""
    output = get_output()
    try:
        config_file = Path(args.config_file) if args.config_file else Config.config_file()
        env_file = Path(args.env_file) if args.env_file else Config.env_file()
        init_node(
            _ordinal_from_args(args),
            topology_from_args(args),
            role=_role_from_args(args),
            properties_path=config_file,
            env_path=env_file,
            storage_timeout=args.storage_timeout,
        )
    except KraftKubeError as e:
        output.error(str(e))
        sys.exit(1)
    except OSError as e:
        output.error(f"Cannot write configuration: {e}")
        sys.exit(1)


def cmd_show(args: argparse.Namespace) -> None:
    """Handle the show subcommand."""
    output = get_output()
    try:
        document = materialize(args.ordinal, topology_from_args(args), _role_from_args(args))
    except KraftKubeError as e:
        output.error(str(e))
        sys.exit(1)

    if args.format == "table":
        output.config_document(document)
    elif args.format == "env":
        output.result(document.to_env_file().rstrip("\n"))
    else:
        output.result(document.to_properties().rstrip("\n"))


def cmd_cluster_id(args: argparse.Namespace) -> None:
    """Handle the cluster-id subcommand."""
    get_output().result(generate_cluster_id())


def cmd_render(args: argparse.Namespace) -> None:
    """Handle the render subcommand."""
    output = get_output()
    try:
        _render_from_args(args)
    except KraftKubeError as e:
        output.error(str(e))
        sys.exit(1)


def cmd_apply(args: argparse.Namespace) -> None:
    """Handle the apply subcommand."""
    output = get_output()
    try:
        rendered = _render_from_args(args)
        apply_manifests([path for _, path in rendered])
    except KraftKubeError as e:
        output.error(str(e))
        sys.exit(1)
    except FileNotFoundError as e:
        output.error(f"Error: {e}")
        sys.exit(1)
    except RuntimeError as e:
        output.error(f"Error: {e}")
        sys.exit(1)


def cmd_delete(args: argparse.Namespace) -> None:
    """
    Handle the delete subcommand.

    The Namespace is kept unless --all is given. Resources outside the Kafka
    namespace (the shared tcp-services ConfigMap) are never deleted.
    """
    output = get_output()
    try:
        topology = topology_from_args(args)
        rendered = _render_from_args(args)
        files = []
        for manifest, path in rendered:
            if manifest["kind"] == "Namespace":
                if args.all:
                    files.append(path)
            elif manifest["metadata"].get("namespace") == topology.namespace:
                files.append(path)
            else:
                output.warning(f"Leaving shared {manifest['kind']} {manifest['metadata']['name']} in place")
        delete_manifests(files)
    except KraftKubeError as e:
        output.error(str(e))
        sys.exit(1)
    except FileNotFoundError as e:
        output.error(f"Error: {e}")
        sys.exit(1)
    except RuntimeError as e:
        output.error(f"Error: {e}")
        sys.exit(1)


def cmd_status(args: argparse.Namespace) -> None:
    """Handle the status subcommand."""
    output = get_output()
    namespace = args.namespace or Config.namespace()
    try:
        get_executor().kubectl("get", "all", namespace=namespace, check=True)
    except FileNotFoundError:
        sys.exit(1)
    except Exception as e:
        output.error(f"Error: {e}")
        sys.exit(1)


def _pod_from_args(
    args: argparse.Namespace, default_role: Optional[Role] = None
) -> Tuple[ClusterTopology, Role, str]:
    """
    Resolve the pod a per-node command targets, such as kafka-broker-0.

    Raises:
        InvalidTopology: If the role is not valid for the mode or the ordinal is out of range
    """
    topology = topology_from_args(args)
    role = _role_from_args(args)
    if role is None and topology.mode is Mode.CLUSTER:
        role = default_role
    role = resolve_role(topology, role)
    if not 0 <= args.ordinal < topology.group_size(role):
        raise InvalidTopology(
            f"Ordinal {args.ordinal} is out of range for {role.value} group of {topology.group_size(role)}",
            field="ordinal",
        )
    return topology, role, f"{topology.statefulset_name(role)}-{args.ordinal}"


def cmd_logs(args: argparse.Namespace) -> None:
    """Handle the logs subcommand."""
    output = get_output()
    try:
        topology, _, pod = _pod_from_args(args)
    except KraftKubeError as e:
        output.error(str(e))
        sys.exit(1)

    kubectl_args = ["logs", pod, f"--tail={args.tail}"]
    if args.follow:
        kubectl_args.append("--follow")
    try:
        get_executor().kubectl(*kubectl_args, namespace=topology.namespace, check=True)
    except FileNotFoundError:
        sys.exit(1)
    except Exception as e:
        output.error(f"Error: {e}")
        sys.exit(1)


def cmd_port_forward(args: argparse.Namespace) -> None:
    """Handle the port-forward subcommand."""
    output = get_output()
    try:
        topology, role, pod = _pod_from_args(args, default_role=Role.BROKER)
        if not role.serves_clients:
            raise InvalidTopology(
                f"Role {role.value!r} does not serve clients on port {topology.ports.client}", field="role"
            )
    except KraftKubeError as e:
        output.error(str(e))
        sys.exit(1)

    local_port = args.local_port or topology.ports.client
    output.info(f"Port forwarding {pod} to localhost:{local_port}")
    try:
        get_executor().kubectl(
            "port-forward",
            pod,
            f"{local_port}:{topology.ports.client}",
            namespace=topology.namespace,
            check=True,
        )
    except KeyboardInterrupt:
        output.info("Port forwarding stopped")
    except FileNotFoundError:
        sys.exit(1)
    except Exception as e:
        output.error(f"Error: {e}")
        sys.exit(1)


def cmd_check(args: argparse.Namespace) -> None:
    """Handle the check subcommand."""
    output = get_output()
    manifests_dir = Path(args.dir).resolve() if args.dir else Config.manifests_dir()
    try:
        manifests = load_manifests(manifests_dir)
    except (FileNotFoundError, ValueError) as e:
        output.error(f"Error: {e}")
        sys.exit(1)

    results = run_checks(manifests)
    output.check_results(results)
    failed = [r for r in results if not r.passed]
    if failed:
        output.error(f"{len(failed)} of {len(results)} checks failed")
        sys.exit(1)
    output.success(f"All {len(results)} checks passed")


def _add_verbosity_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only show errors and final results",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show detailed output including file paths and command execution",
    )


def _add_topology_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mode",
        choices=[m.value for m in Mode],
        help="Deployment mode (defaults to KAFKA_MODE or single)",
    )
    parser.add_argument("--controllers", type=int, help="Number of controllers (KAFKA_CONTROLLER_COUNT)")
    parser.add_argument("--brokers", type=int, help="Number of brokers (KAFKA_BROKER_COUNT)")
    parser.add_argument(
        "--external-address",
        help="Host advertised to external clients (KAFKA_EXTERNAL_ADDRESS)",
    )
    parser.add_argument("--cluster-id", help="Cluster id shared by all nodes (CLUSTER_ID)")
    parser.add_argument("--namespace", help="Kubernetes namespace (KAFKA_NAMESPACE, defaults to kafka)")
    parser.add_argument("--log-dir", help="Kafka log directory (KAFKA_LOG_DIR)")
    parser.add_argument(
        "--node-id-base",
        type=int,
        help="Lowest node id (KAFKA_NODE_ID_BASE, defaults to 0)",
    )


def _add_render_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output-dir",
        help="Output directory for manifests (defaults to ./manifests or MANIFESTS_DIR env var)",
    )
    parser.add_argument("--kafka-image", help="Kafka image (KAFKA_IMAGE)")
    parser.add_argument("--init-image", help="Image running kraftkube init (KRAFTKUBE_INIT_IMAGE)")
    parser.add_argument("--storage-class", help="StorageClass for the data volumes")


def _add_node_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--role",
        choices=[r.value for r in Role],
        help="Role group of the node (KAFKA_NODE_ROLE); required in cluster mode",
    )


def configure_logging(verbosity: Verbosity) -> None:
    """Send log records to stderr through rich, at a level matching the verbosity."""
    handler = RichHandler(console=get_output().error_console, show_path=False)
    logging.basicConfig(level=_LOG_LEVELS[verbosity], format="%(message)s", handlers=[handler], force=True)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for kraftkube CLI."""
    parser = argparse.ArgumentParser(
        description="kraftkube - Configure and deploy KRaft-mode Kafka on Kubernetes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  kraftkube cluster-id
  kraftkube render --mode single --external-address kafka.example.com --cluster-id <id>
  kraftkube apply --mode cluster --controllers 3 --brokers 3 --external-address kafka.example.com --cluster-id <id>
  kraftkube check --dir manifests
  kraftkube logs --mode cluster --role controller --ordinal 1 --tail 100
  kraftkube port-forward --mode cluster
  kraftkube show --mode cluster --role broker --ordinal 1 --external-address kafka.example.com --cluster-id <id>
  kraftkube init   # inside the pod's init container, configured from the environment
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands", required=True)

    init_parser = subparsers.add_parser(
        "init",
        help="Compute this node's configuration and reconcile its storage before Kafka starts",
    )
    _add_topology_arguments(init_parser)
    _add_node_arguments(init_parser)
    init_parser.add_argument("--ordinal", type=int, help="StatefulSet ordinal (defaults to the pod name suffix)")
    init_parser.add_argument("--pod-name", help="Pod name to take the ordinal from (POD_NAME or HOSTNAME)")
    init_parser.add_argument("--config-file", help="Properties file to write (KAFKA_CONFIG_FILE)")
    init_parser.add_argument("--env-file", help="Environment file to write (KAFKA_ENV_FILE)")
    init_parser.add_argument(
        "--storage-timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Seconds to wait for the log directory (default {DEFAULT_TIMEOUT})",
    )
    _add_verbosity_arguments(init_parser)
    init_parser.set_defaults(func=cmd_init)

    show_parser = subparsers.add_parser(
        "show",
        help="Print the configuration a node would be started with",
    )
    _add_topology_arguments(show_parser)
    _add_node_arguments(show_parser)
    show_parser.add_argument("--ordinal", type=int, default=0, help="StatefulSet ordinal (default 0)")
    show_parser.add_argument(
        "--format",
        choices=["properties", "env", "table"],
        default="properties",
        help="Output format (default properties)",
    )
    _add_verbosity_arguments(show_parser)
    show_parser.set_defaults(func=cmd_show)

    cluster_id_parser = subparsers.add_parser("cluster-id", help="Generate a new random cluster id")
    _add_verbosity_arguments(cluster_id_parser)
    cluster_id_parser.set_defaults(func=cmd_cluster_id)

    for name, func, help_text in (
        ("render", cmd_render, "Render the deployment's manifests"),
        ("apply", cmd_apply, "Render manifests and apply them to the Kubernetes cluster"),
        ("delete", cmd_delete, "Delete the deployment's resources from the Kubernetes cluster"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        _add_topology_arguments(sub)
        _add_render_arguments(sub)
        if name == "delete":
            sub.add_argument("--all", action="store_true", help="Also delete the namespace")
        _add_verbosity_arguments(sub)
        sub.set_defaults(func=func)

    status_parser = subparsers.add_parser("status", help="Show the Kafka resources in the cluster")
    status_parser.add_argument("--namespace", help="Kubernetes namespace (defaults to kafka)")
    _add_verbosity_arguments(status_parser)
    status_parser.set_defaults(func=cmd_status)

    logs_parser = subparsers.add_parser("logs", help="Show the logs of one Kafka pod")
    _add_topology_arguments(logs_parser)
    _add_node_arguments(logs_parser)
    logs_parser.add_argument("--ordinal", type=int, default=0, help="StatefulSet ordinal (default 0)")
    logs_parser.add_argument("--tail", type=int, default=50, help="Number of lines to show (default 50)")
    logs_parser.add_argument("--follow", action="store_true", help="Stream new log lines")
    _add_verbosity_arguments(logs_parser)
    logs_parser.set_defaults(func=cmd_logs)

    port_forward_parser = subparsers.add_parser(
        "port-forward",
        help="Forward the client port of a broker pod to localhost",
    )
    _add_topology_arguments(port_forward_parser)
    _add_node_arguments(port_forward_parser)
    port_forward_parser.add_argument("--ordinal", type=int, default=0, help="StatefulSet ordinal (default 0)")
    port_forward_parser.add_argument(
        "--local-port",
        type=int,
        help="Local port to listen on (defaults to the client port, 9092)",
    )
    _add_verbosity_arguments(port_forward_parser)
    port_forward_parser.set_defaults(func=cmd_port_forward)

    check_parser = subparsers.add_parser("check", help="Run static checks over rendered manifests")
    check_parser.add_argument(
        "--dir",
        help="Directory of manifests to check (defaults to ./manifests or MANIFESTS_DIR env var)",
    )
    _add_verbosity_arguments(check_parser)
    check_parser.set_defaults(func=cmd_check)

    args = parser.parse_args(argv)

    if getattr(args, "quiet", False):
        verbosity = Verbosity.QUIET
    elif getattr(args, "verbose", False):
        verbosity = Verbosity.VERBOSE
    else:
        verbosity = Verbosity.NORMAL

    set_output(OutputManager(verbosity=verbosity))
    configure_logging(verbosity)

    args.func(args)


if __name__ == "__main__":
    main()
