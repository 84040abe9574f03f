"""Tests for node selection."""

import pytest

from beeg.config import Config, Node
from beeg.registry import NodeRegistry, resolve_selector


def names(nodes):
    return [n.name for n in nodes]


class TestResolveSelector:
    def test_all_returns_every_node_in_order(self, nodes):
        assert resolve_selector("all", nodes) == nodes
        assert resolve_selector("ALL", nodes) == nodes

    def test_label(self, nodes):
        assert names(resolve_selector("gpu", nodes)) == ["node-b"]

    def test_names_keep_registry_order(self, nodes):
        assert names(resolve_selector("node-c,node-a", nodes)) == ["node-a", "node-c"]

    def test_no_match_is_empty(self, nodes):
        assert resolve_selector("none-such", nodes) == []

    def test_host_match(self, nodes):
        assert names(resolve_selector("10.0.0.3", nodes)) == ["node-c"]

    def test_union_without_duplicates(self, nodes):
        assert names(resolve_selector("gpu,node-b,10.0.0.2", nodes)) == ["node-b"]

    def test_exact_equality_only(self, nodes):
        assert resolve_selector("node", nodes) == []
        assert resolve_selector("GPU", nodes) == []

    def test_whitespace_and_empty_terms(self, nodes):
        assert names(resolve_selector(" node-a , ,", nodes)) == ["node-a"]

    @pytest.mark.parametrize("selector", ["", ",", " ", "*", "node-a,,", "\x00", "a" * 1000])
    def test_total(self, nodes, selector):
        result = resolve_selector(selector, nodes)
        assert isinstance(result, list)

    def test_empty_node_set(self):
        assert resolve_selector("all", []) == []
        assert resolve_selector("gpu", []) == []


class TestNodeRegistry:
    def test_from_config(self, nodes):
        registry = NodeRegistry.from_config(Config(nodes=nodes))
        assert len(registry) == 3
        assert list(registry) == nodes
        assert names(registry.resolve("gpu")) == ["node-b"]

    def test_nodes_are_immutable(self):
        registry = NodeRegistry([Node("a", "h")])
        with pytest.raises(AttributeError):
            registry.nodes[0].name = "b"
