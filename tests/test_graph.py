"""Tests for graph helpers and workflow validation."""

from agentflow.engine.graph import find_cycle, find_start_node, reachable_from, validate_workflow_graph

from conftest import make_edge, make_node


class TestGraphHelpers:
    """Test cases for start-node discovery and reachability."""

    def test_find_start_node(self):
        nodes = [make_node("b", "x"), make_node("a", "x")]
        assert find_start_node(nodes, [make_edge("a", "b")]).id == "a"

    def test_first_of_several_start_nodes_wins(self):
        nodes = [make_node("a", "x"), make_node("b", "x"), make_node("c", "x")]
        assert find_start_node(nodes, [make_edge("a", "c")]).id == "a"

    def test_no_start_node(self):
        nodes = [make_node("a", "x"), make_node("b", "x")]
        assert find_start_node(nodes, [make_edge("a", "b"), make_edge("b", "a")]) is None

    def test_reachable_from(self):
        nodes = [make_node(n, "x") for n in "abcd"]
        edges = [make_edge("a", "b"), make_edge("b", "c")]
        assert reachable_from("a", nodes, edges) == {"a", "b", "c"}

    def test_find_cycle(self):
        nodes = [make_node(n, "x") for n in "abc"]
        assert find_cycle(nodes, [make_edge("a", "b"), make_edge("b", "c")]) is None
        assert find_cycle(nodes, [make_edge("a", "b"), make_edge("b", "c"), make_edge("c", "b")]) in {"b", "c"}


class TestValidateWorkflowGraph:
    """Test cases for validate_workflow_graph."""

    def test_valid_graph(self):
        result = validate_workflow_graph([make_node("a", "x"), make_node("b", "x")], [make_edge("a", "b")])
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_empty_graph_is_valid(self):
        assert validate_workflow_graph([], []).is_valid

    def test_duplicate_node_ids(self):
        result = validate_workflow_graph([make_node("a", "x"), make_node("a", "y")], [])
        assert not result.is_valid
        assert "Duplicate node id: 'a'" in result.errors

    def test_missing_source_is_an_error(self):
        result = validate_workflow_graph([make_node("a", "x")], [make_edge("ghost", "a")])
        assert not result.is_valid
        assert any("non-existent source" in error for error in result.errors)

    def test_missing_target_is_a_warning(self):
        result = validate_workflow_graph([make_node("a", "x")], [make_edge("a", "ghost")])
        assert result.is_valid
        assert any("non-existent target" in warning for warning in result.warnings)

    def test_cycle_is_an_error(self):
        nodes = [make_node(n, "x") for n in "abc"]
        edges = [make_edge("a", "b"), make_edge("b", "c"), make_edge("c", "b")]
        result = validate_workflow_graph(nodes, edges)
        assert not result.is_valid
        assert any("cycle" in error for error in result.errors)

    def test_multiple_starts_and_unreachable_nodes_warn(self):
        nodes = [make_node(n, "x") for n in "abc"]
        result = validate_workflow_graph(nodes, [make_edge("a", "b")])
        assert result.is_valid
        assert any("Multiple start nodes" in warning for warning in result.warnings)
        assert "Unreachable nodes detected: c" in result.warnings
