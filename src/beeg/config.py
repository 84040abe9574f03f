"""Configuration loader for beeg."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

TRANSPORTS = ("ssh", "local")
EXIT_POLICIES = ("always-zero", "strict")


class ConfigInvalid(ValueError):
    """Raised when the node inventory cannot be loaded."""


@dataclass(frozen=True)
class Node:
    """A single cluster node."""

    name: str
    host: str
    labels: tuple[str, ...] = ()


@dataclass
class Config:
    """Main configuration for beeg."""

    nodes: list[Node] = field(default_factory=list)
    transport: str = "ssh"
    ssh_user: str | None = None
    ssh_key: Path | None = None
    connect_timeout: float = 5.0
    timeout: float = 10.0
    concurrency: int | None = None
    exit_policy: str = "always-zero"
    source_path: Path | None = None  # None when built from BEEG_NODES


def default_config_path(environ: Mapping[str, str] | None = None) -> Path:
    """Return the config path from $BEEG_CONFIG or the XDG config dir."""
    environ = os.environ if environ is None else environ
    if environ.get("BEEG_CONFIG"):
        return Path(environ["BEEG_CONFIG"]).expanduser()
    config_home = environ.get("XDG_CONFIG_HOME") or "~/.config"
    return Path(config_home).expanduser() / "beeg" / "config.json"


def load_config(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load and validate configuration.

    An explicit path must exist. Without one, the default path is tried and,
    when it is missing too, nodes are taken from the BEEG_NODES host list.
    """
    environ = os.environ if environ is None else environ

    if config_path is not None:
        path = Path(config_path).expanduser().resolve()
        if not path.exists():
            raise ConfigInvalid(f"Config file not found: {path}")
    else:
        path = default_config_path(environ)
        if not path.exists():
            return config_from_hosts(environ.get("BEEG_NODES", ""))

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigInvalid(f"Cannot read config file {path}: {e}") from e

    config = parse_config(_decode(text, path))
    config.source_path = path
    return config


def config_from_hosts(hosts: str) -> Config:
    """Build a label-less inventory from a comma-separated host list."""
    nodes = [Node(name=h.strip(), host=h.strip()) for h in hosts.split(",") if h.strip()]
    return Config(nodes=_dedupe(nodes))


def _dedupe(nodes: list[Node]) -> list[Node]:
    seen: set[str] = set()
    unique = []
    for node in nodes:
        if node.name not in seen:
            seen.add(node.name)
            unique.append(node)
    return unique


def _decode(text: str, path: Path) -> Any:
    """Parse JSON or YAML depending on the file suffix."""
    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigInvalid(f"Malformed config file {path}: {e}") from e


def parse_config(raw: Any) -> Config:
    """Parse a decoded config document into a Config object."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigInvalid("Config must be a mapping at the top level")

    transport = raw.get("transport", "ssh")
    if transport not in TRANSPORTS:
        raise ConfigInvalid(
            f"Unknown transport {transport!r}, expected one of: {', '.join(TRANSPORTS)}"
        )

    exit_policy = raw.get("exit_policy", "always-zero")
    if exit_policy not in EXIT_POLICIES:
        raise ConfigInvalid(
            f"Unknown exit_policy {exit_policy!r}, expected one of: {', '.join(EXIT_POLICIES)}"
        )

    ssh_user = raw.get("ssh_user")
    if ssh_user is not None and not isinstance(ssh_user, str):
        raise ConfigInvalid("'ssh_user' must be a string")

    ssh_key = raw.get("ssh_key")
    if ssh_key is not None and not isinstance(ssh_key, str):
        raise ConfigInvalid("'ssh_key' must be a path string")
    ssh_key = Path(ssh_key).expanduser() if ssh_key else None

    nodes_raw = raw.get("nodes", [])
    if not isinstance(nodes_raw, list):
        raise ConfigInvalid("'nodes' must be a list")

    nodes = []
    names: set[str] = set()
    for node_raw in nodes_raw:
        node = _parse_node(node_raw)
        if node.name in names:
            raise ConfigInvalid(f"Duplicate node name: {node.name!r}")
        names.add(node.name)
        nodes.append(node)

    return Config(
        nodes=nodes,
        transport=transport,
        ssh_user=ssh_user,
        ssh_key=ssh_key,
        connect_timeout=_positive_number(raw, "connect_timeout", 5.0),
        timeout=_positive_number(raw, "timeout", 10.0),
        concurrency=_concurrency(raw.get("concurrency")),
        exit_policy=exit_policy,
    )


def _parse_node(node_raw: Any) -> Node:
    """Parse a single node entry."""
    if not isinstance(node_raw, dict):
        raise ConfigInvalid(f"Node entry must be a mapping, got {node_raw!r}")

    name = node_raw.get("name")
    if not name or not isinstance(name, str):
        raise ConfigInvalid("Node must have a 'name' field")

    host = node_raw.get("host")
    if not host or not isinstance(host, str):
        raise ConfigInvalid(f"Node '{name}' must have a 'host' field")

    labels = node_raw.get("labels", [])
    if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
        raise ConfigInvalid(f"Node '{name}' labels must be a list of strings")

    return Node(name=name, host=host, labels=tuple(labels))


def _positive_number(raw: dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigInvalid(f"'{key}' must be a positive number")
    return float(value)


def _concurrency(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigInvalid("'concurrency' must be a positive integer")
    return value
