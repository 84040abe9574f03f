"""Node registry and selector resolution."""

from __future__ import annotations

from typing import Iterable, Sequence

from .config import Config, Node


def split_selector(selector: str) -> list[str]:
    """Split a selector into its non-empty, stripped terms."""
    return [term.strip() for term in selector.split(",") if term.strip()]


def matches(node: Node, term: str) -> bool:
    return term == node.name or term == node.host or term in node.labels


def resolve_selector(selector: str, nodes: Iterable[Node]) -> list[Node]:
    """Resolve a selector against nodes, keeping their original order.

    ``all`` selects every node. Otherwise a node is selected when any
    comma-separated term equals its name, its host, or one of its labels.
    Never raises; an unmatched selector yields an empty list.
    """
    nodes = list(nodes)
    if selector.strip().lower() == "all":
        return nodes
    terms = split_selector(selector)
    return [node for node in nodes if any(matches(node, term) for term in terms)]


class NodeRegistry:
    """Read-only set of configured nodes."""

    def __init__(self, nodes: Sequence[Node]) -> None:
        self._nodes = tuple(nodes)

    @classmethod
    def from_config(cls, config: Config) -> NodeRegistry:
        return cls(config.nodes)

    @property
    def nodes(self) -> tuple[Node, ...]:
        return self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return iter(self._nodes)

    def resolve(self, selector: str) -> list[Node]:
        return resolve_selector(selector, self._nodes)
