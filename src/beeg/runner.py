#!/usr/bin/env python3
"""Main entry point for beeg."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .checks import (
    CHECKS,
    Check,
    ClientMountCheck,
    ExecCheck,
    StorageTargetCheck,
    parse_target_filter,
)
from .config import EXIT_POLICIES, Config, ConfigInvalid, Node, load_config
from .executor import Executor
from .registry import NodeRegistry
from .render import render_json, render_table, render_warnings
from .results import exit_code
from .transport import transport_from_config

logger = logging.getLogger("beeg")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="beeg", description="BeeGFS cluster operations assistant"
    )
    parser.add_argument("-c", "--config", type=Path, help="Path to config file (JSON or YAML)")
    parser.add_argument(
        "-o",
        "--output",
        choices=("table", "json"),
        default="table",
        help="Output format (default: table)",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv)"
    )
    parser.add_argument(
        "--exit-policy",
        choices=EXIT_POLICIES,
        help="'strict' exits 1 when any node fails (default from config: always-zero)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    node = commands.add_parser("node", help="Node-oriented actions")
    node_commands = node.add_subparsers(dest="node_command", required=True)
    node_commands.add_parser("list", help="List known nodes")
    exec_parser = node_commands.add_parser("exec", help="Run a read-only command on nodes")
    _add_selector(exec_parser)
    _add_run_options(exec_parser)
    exec_parser.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to run, after --")

    check = commands.add_parser("check", help="Cluster checks")
    check_commands = check.add_subparsers(dest="check", required=True)

    descriptions = {
        "nvidia-driver": "Check NVIDIA driver presence and version on nodes",
        "cuda": "Check CUDA toolkit version on nodes",
        "nvidia-fs": "Check the GPUDirect Storage (nvidia-fs) kernel module",
        "ofed": "Check OFED / RDMA stack version",
    }
    for name in CHECKS:
        sub = check_commands.add_parser(name, help=descriptions.get(name))
        _add_selector(sub)
        _add_run_options(sub)

    storage = check_commands.add_parser(
        "storage-target", help="Storage target health check from a single node"
    )
    storage.add_argument(
        "-s",
        "--selector",
        "--node",
        required=True,
        help="Node to run the check on; must resolve to exactly one node",
    )
    storage.add_argument(
        "--targets", default="all", help="Target ids: comma-separated or 'all'"
    )
    _add_run_options(storage)

    mount = check_commands.add_parser("client-mount", help="Client mount checks with live TUI")
    mount.add_argument("--mount", required=True, help="Target mountpoint (e.g. /mnt/beegfs)")
    _add_selector(mount)
    _add_run_options(mount)
    mount.add_argument(
        "--interval", type=positive_float, default=2.0, help="Seconds between polls (default: 2)"
    )
    mount.add_argument(
        "--once", action="store_true", help="Probe once and print results instead of the TUI"
    )
    return parser


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def positive_float(value: str) -> float:
    number = float(value)
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return number


def _add_selector(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-s", "--selector", default="all", help="Node selector: name/host/label list, or 'all'"
    )


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--timeout", type=positive_float, help="Seconds allowed per node")
    parser.add_argument("--concurrency", type=positive_int, help="Maximum nodes probed at once")
    parser.add_argument(
        "--deadline", type=positive_float, help="Overall seconds before unfinished nodes time out"
    )


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    # Load configuration
    try:
        config = load_config(args.config)
    except ConfigInvalid as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.exit_policy:
        config.exit_policy = args.exit_policy

    registry = NodeRegistry.from_config(config)
    if not len(registry):
        logger.warning("No nodes configured; set up a config file or BEEG_NODES")

    if args.command == "node":
        if args.node_command == "list":
            return _list_nodes(registry, args.output)
        cmd = args.cmd[1:] if args.cmd[:1] == ["--"] else args.cmd
        if not cmd:
            parser.error("node exec requires a command after --")
        return _run_check(config, ExecCheck(" ".join(cmd)), registry.resolve(args.selector), args)

    if args.check == "storage-target":
        try:
            targets = parse_target_filter(args.targets)
        except ValueError as e:
            parser.error(str(e))
        nodes = registry.resolve(args.selector)
        if len(nodes) != 1:
            print(
                f"Error: selector must resolve to exactly one node (got {len(nodes)})",
                file=sys.stderr,
            )
            return 2
        return _run_check(config, StorageTargetCheck(targets), nodes, args)

    if args.check == "client-mount":
        check = ClientMountCheck(args.mount)
        nodes = registry.resolve(args.selector)
        if args.once or args.output == "json":
            return _run_check(config, check, nodes, args)
        return _run_dashboard(config, check, nodes, args)

    return _run_check(config, CHECKS[args.check], registry.resolve(args.selector), args)


def _list_nodes(registry: NodeRegistry, output: str) -> int:
    if output == "json":
        nodes = [
            {"name": n.name, "host": n.host, "labels": list(n.labels)} for n in registry
        ]
        print(json.dumps(nodes, indent=2))
        return 0

    table = Table(title="Known nodes")
    table.add_column("Node", style="bold")
    table.add_column("Host")
    table.add_column("Labels")
    for node in registry:
        table.add_row(node.name, node.host, ", ".join(node.labels))
    Console().print(table)
    return 0


def _warn_empty(selector: str) -> None:
    Console(stderr=True).print(
        f"[yellow]WARNING:[/yellow] selector {selector!r} matched no nodes", highlight=False
    )


def _run_check(config: Config, check: Check, nodes: list[Node], args) -> int:
    """Run a check once across nodes and render the full result set."""
    if not nodes:
        _warn_empty(args.selector)

    executor = Executor(
        transport_from_config(config),
        concurrency=args.concurrency or config.concurrency,
        timeout=args.timeout or config.timeout,
    )
    result_set = asyncio.run(executor.run(check, nodes, deadline=args.deadline))

    if args.output == "json":
        print(render_json(result_set))
    else:
        render_table(result_set, check, Console())
    render_warnings(result_set, check, Console(stderr=True))

    return exit_code(result_set, config.exit_policy)


def _run_dashboard(config: Config, check: Check, nodes: list[Node], args) -> int:
    """Run the live dashboard until the user quits."""
    from .dashboard import LiveDashboard

    if not nodes:
        _warn_empty(args.selector)
        return 0

    app = LiveDashboard(
        transport_from_config(config),
        check,
        nodes,
        interval=args.interval,
        timeout=args.timeout or config.timeout,
        concurrency=args.concurrency or config.concurrency,
    )
    app.run()

    if app.result_set is None:
        return 0
    return exit_code(app.result_set, config.exit_policy)


if __name__ == "__main__":
    sys.exit(main())
