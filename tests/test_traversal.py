"""Tests for graph traversal."""

from typing import List

import pytest

from agentflow.engine.context import WorkflowContext
from agentflow.engine.registry import NodeHandlerRegistry
from agentflow.engine.traversal import GraphTraversal
from agentflow.models.core import NodeExecutionResult

from conftest import make_edge, make_node


class RecordingHandlers:
    """Handlers that record the order nodes ran in."""

    def __init__(self):
        self.calls: List[str] = []

    async def step(self, node, context):
        self.calls.append(node.id)
        return NodeExecutionResult.ok({"step": node.id, "value": node.data.get("value")})

    async def branch(self, node, context):
        self.calls.append(node.id)
        return NodeExecutionResult.ok({"condition": node.data["outcome"]})

    async def fail(self, node, context):
        self.calls.append(node.id)
        return NodeExecutionResult.fail(f"{node.id} broke")


@pytest.fixture
def recorder():
    return RecordingHandlers()


@pytest.fixture
def traversal(recorder):
    registry = NodeHandlerRegistry()
    registry.register("step", recorder.step)
    registry.register("branch", recorder.branch)
    registry.register("fail", recorder.fail)
    return GraphTraversal(registry)


async def run(traversal, nodes, edges, variables=None):
    context = WorkflowContext("exec-1", variables or {})
    result = await traversal.execute_from_node(nodes[0], nodes, edges, context)
    return result, context


class TestGraphTraversal:
    """Test cases for GraphTraversal."""

    @pytest.mark.asyncio
    async def test_linear_chain(self, traversal, recorder):
        nodes = [make_node(n, "step") for n in ("a", "b", "c")]
        result, context = await run(traversal, nodes, [make_edge("a", "b"), make_edge("b", "c")])

        assert result.success
        assert recorder.calls == ["a", "b", "c"]
        assert result.data == {"step": "c", "value": None}
        assert list(context.previous_results) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_single_node_output(self, traversal):
        result, _ = await run(traversal, [make_node("a", "step", value=7)], [])
        assert result.data == {"step": "a", "value": 7}

    @pytest.mark.asyncio
    async def test_siblings_run_in_edge_order(self, traversal, recorder):
        nodes = [make_node(n, "step") for n in ("a", "b", "c")]
        await run(traversal, nodes, [make_edge("a", "c"), make_edge("a", "b")])
        assert recorder.calls == ["a", "c", "b"]

    @pytest.mark.asyncio
    async def test_diamond_join_runs_once(self, traversal, recorder):
        nodes = [make_node(n, "step") for n in ("a", "b", "c", "d")]
        edges = [make_edge("a", "b"), make_edge("a", "c"), make_edge("b", "d"), make_edge("c", "d")]
        result, _ = await run(traversal, nodes, edges)

        assert recorder.calls == ["a", "b", "c", "d"]
        assert result.data["step"] == "d"

    @pytest.mark.asyncio
    async def test_branch_filtering(self, traversal, recorder):
        nodes = [
            make_node("cond", "branch", outcome=True),
            make_node("yes", "step"),
            make_node("no", "step"),
        ]
        edges = [make_edge("cond", "yes", "true"), make_edge("cond", "no", "false")]
        result, _ = await run(traversal, nodes, edges)

        assert recorder.calls == ["cond", "yes"]
        assert result.data["step"] == "yes"

    @pytest.mark.asyncio
    async def test_pruning_cascades_downstream(self, traversal, recorder):
        nodes = [
            make_node("cond", "branch", outcome=False),
            make_node("yes", "step"),
            make_node("after-yes", "step"),
            make_node("no", "step"),
        ]
        edges = [
            make_edge("cond", "yes", "true"),
            make_edge("yes", "after-yes"),
            make_edge("cond", "no", "false"),
        ]
        await run(traversal, nodes, edges)
        assert recorder.calls == ["cond", "no"]

    @pytest.mark.asyncio
    async def test_join_after_branch_runs_with_one_live_parent(self, traversal, recorder):
        nodes = [
            make_node("cond", "branch", outcome=True),
            make_node("yes", "step"),
            make_node("no", "step"),
            make_node("join", "step"),
        ]
        edges = [
            make_edge("cond", "yes", "true"),
            make_edge("cond", "no", "false"),
            make_edge("yes", "join"),
            make_edge("no", "join"),
        ]
        result, _ = await run(traversal, nodes, edges)

        assert recorder.calls == ["cond", "yes", "join"]
        assert result.data["step"] == "join"

    @pytest.mark.asyncio
    async def test_branch_filtering_can_be_disabled(self, recorder):
        registry = NodeHandlerRegistry()
        registry.register("branch", recorder.branch)
        registry.register("step", recorder.step)
        traversal = GraphTraversal(registry, branch_filtering=False)
        nodes = [make_node("cond", "branch", outcome=True), make_node("yes", "step"), make_node("no", "step")]
        edges = [make_edge("cond", "yes", "true"), make_edge("cond", "no", "false")]

        await run(traversal, nodes, edges)
        assert recorder.calls == ["cond", "yes", "no"]

    @pytest.mark.asyncio
    async def test_failure_stops_traversal(self, traversal, recorder):
        nodes = [make_node("a", "step"), make_node("b", "fail"), make_node("c", "step")]
        result, _ = await run(traversal, nodes, [make_edge("a", "b"), make_edge("b", "c")])

        assert not result.success
        assert result.error == "b broke"
        assert recorder.calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_missing_target_is_skipped(self, traversal, recorder):
        nodes = [make_node("a", "step"), make_node("b", "step")]
        result, _ = await run(traversal, nodes, [make_edge("a", "ghost"), make_edge("a", "b")])

        assert result.success
        assert recorder.calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cycle_fails_before_running(self, traversal, recorder):
        nodes = [make_node(n, "step") for n in ("a", "b", "c")]
        edges = [make_edge("a", "b"), make_edge("b", "c"), make_edge("c", "b")]
        result, _ = await run(traversal, nodes, edges)

        assert not result.success
        assert "cycle" in result.error
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_unknown_type_fails(self, traversal):
        result, _ = await run(traversal, [make_node("a", "mystery")], [])
        assert result.error == "Unknown node type: mystery"


class TestShouldFollow:
    """Test cases for edge selection."""

    def test_edges_without_branch_handle_are_followed(self, traversal):
        result = NodeExecutionResult.ok({"condition": False})
        assert traversal.should_follow(make_edge("a", "b"), result)
        assert traversal.should_follow(make_edge("a", "b", "output"), result)

    def test_non_boolean_condition_follows_every_edge(self, traversal):
        result = NodeExecutionResult.ok({"condition": "yes"})
        assert traversal.should_follow(make_edge("a", "b", "false"), result)
