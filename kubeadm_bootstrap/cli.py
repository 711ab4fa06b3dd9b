"""Argument parsing, configuration loading, and bootstrap dispatch.

    kubeadm manual bootstrap init-master [--api-dns-name NAME] [--listen-ip IP]
    kubeadm manual bootstrap join-node --ca-cert-file FILE --api-server-urls URLS
"""

from __future__ import annotations

import argparse
import dataclasses
import ipaddress
import logging
import sys

from .config import AppConfig, load_config
from .discovery import Role
from .exceptions import ConfigError
from .logging_config import configure_logging
from .params import (
    DEFAULT_MASTER_API_SERVER_URLS,
    METHOD_GOSSIP,
    METHOD_OUT_OF_BAND,
    DiscoveryOptions,
    build_params,
)
from .sequencer import STEP_KUBECONFIG, ProvisioningSequencer, SequenceResult, Severity, StepStatus

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1

INIT_MASTER = "init-master"
JOIN_NODE = "join-node"


def _ip_address(value: str) -> str:
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid IP address: {value!r}") from None


def _discovery_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--discovery",
        choices=(METHOD_OUT_OF_BAND, METHOD_GOSSIP),
        default=METHOD_OUT_OF_BAND,
        help="Discovery method (gossip is reserved and not implemented yet)",
    )
    parent.add_argument("--token", default="", help="Shared secret for gossip discovery")
    parent.add_argument("--peers", default="", help="Comma separated gossip peer addresses")
    parent.add_argument(
        "--listen-ip",
        type=_ip_address,
        default=None,
        help="(optional) IP address to listen on, in case autodetection fails",
    )
    return parent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubeadm",
        description="Bootstrap a Kubernetes control plane or join a node to it",
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to a YAML configuration file (defaults are used when omitted)",
    )
    parser.add_argument("--log-level", default=None, help="Override logging.level")
    parser.add_argument("--log-format", choices=("json", "text"), default=None, help="Override logging.format")

    commands = parser.add_subparsers(dest="group", required=True)
    manual = commands.add_parser("manual", help="Advanced, less-automated functionality, for power users")
    manual_commands = manual.add_subparsers(dest="action", required=True)
    bootstrap = manual_commands.add_parser(
        "bootstrap",
        help="Manually bootstrap a cluster 'out-of-band'",
        description=(
            "Manually bootstrap a cluster 'out-of-band', by generating and distributing a CA "
            "certificate to all your servers and specifying a (list of) API server URLs."
        ),
    )
    roles = bootstrap.add_subparsers(dest="command", required=True)
    parent = _discovery_parent()

    master = roles.add_parser(
        INIT_MASTER,
        parents=[parent],
        help="Manually bootstrap a master 'out-of-band'",
        description="Create TLS certificates and set up static pods for the Kubernetes master components.",
    )
    master.add_argument(
        "--api-dns-name",
        default=None,
        help="(optional) DNS name for the API server, encoded into the subjectAltName of the generated certificate",
    )
    master.add_argument(
        "--api-server-urls",
        default=DEFAULT_MASTER_API_SERVER_URLS,
        help="API server URL(s) for the master's own kubelet (default: %(default)s)",
    )

    node = roles.add_parser(
        JOIN_NODE,
        parents=[parent],
        help="Manually bootstrap a node 'out-of-band', joining it into a cluster with extant control plane",
    )
    node.add_argument(
        "--ca-cert-file",
        default="",
        help="Path to the DER (ASN.1) encoded CA certificate. The same CA cert must be distributed to all servers.",
    )
    node.add_argument(
        "--api-server-urls",
        default="",
        help="Comma separated list of API server URLs, typically just https://<address-of-master>:443/",
    )
    return parser


def _load_config(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config)
    overrides = {}
    if args.log_level:
        overrides["level"] = args.log_level
    if args.log_format:
        overrides["format"] = args.log_format
    if overrides:
        config = dataclasses.replace(config, logging=dataclasses.replace(config.logging, **overrides))
    return config


def _options(args: argparse.Namespace) -> DiscoveryOptions:
    return DiscoveryOptions(
        method=args.discovery,
        api_server_urls=args.api_server_urls,
        ca_cert_file=getattr(args, "ca_cert_file", ""),
        api_server_dns_name=getattr(args, "api_dns_name", None),
        listen_ip=args.listen_ip,
        token=args.token,
        peers=args.peers,
    )


def _report(result: SequenceResult, config: AppConfig) -> int:
    """Print the operator-facing outcome and return the process exit code."""
    if result.severity is Severity.REJECTED:
        print(result.error)
        return EXIT_OK

    if result.severity is Severity.FATAL:
        print(f"Bootstrap failed: {result.error}", file=sys.stderr)
        return EXIT_FATAL

    kubeconfig = result.step(STEP_KUBECONFIG)
    if result.role is Role.MASTER and result.pki is not None:
        ca_path = result.pki.ca_der_path
        join_hint = (
            f"CA cert is written to {ca_path}. Please scp this to all your nodes before running:\n"
            f"    kubeadm manual bootstrap join-node --ca-cert-file <path-to-ca-cert> "
            f"--api-server-urls https://<ip-of-master>:{config.master.secure_port}/\n"
        )
        if result.severity is Severity.DEGRADED:
            print(f"{result.warning}\nFix the problem above and re-run; {result.partial}.")
            print(join_hint, end="")
            return EXIT_OK
        if kubeconfig is not None and kubeconfig.status is StepStatus.SKIPPED:
            print(f"Static pods written; existing kubelet kubeconfig at {result.kubeconfig_path} left unchanged.")
        else:
            print("Static pods written and kubelet's kubeconfig written.")
        print("Kubelet should be able to start soon (try systemctl restart kubelet or equivalent if it doesn't).")
        print(join_hint, end="")
        return EXIT_OK

    if result.severity is Severity.DEGRADED:
        print(f"{result.warning}\nFix the problem above and re-run; {result.partial}.")
        return EXIT_OK
    if kubeconfig is not None and kubeconfig.status is StepStatus.SKIPPED:
        print(f"Existing kubelet kubeconfig at {result.kubeconfig_path} left unchanged.")
    else:
        print(f"Kubelet kubeconfig written to {result.kubeconfig_path}.")
    print("The kubelet should attempt TLS bootstrap now.\nRun 'kubectl get nodes' on the master to see it join.")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load_config(args)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FATAL

    configure_logging(config.logging)

    role = Role.MASTER if args.command == INIT_MASTER else Role.NODE
    try:
        params = build_params(role, _options(args))
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FATAL

    logger.debug("Running %s with %s discovery", args.command, args.discovery, extra={"role": role.value})
    try:
        result = ProvisioningSequencer(config).run(params)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_FATAL

    return _report(result, config)
