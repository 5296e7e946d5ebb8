"""Depth-first traversal of a workflow graph over one shared context."""

from typing import Dict, List, Optional, Sequence

from ..core.logging import get_logger
from ..models.core import NodeExecutionResult, WorkflowEdge, WorkflowNode
from .context import WorkflowContext
from .graph import find_cycle, outgoing_edges, reachable_from
from .registry import NodeHandlerRegistry

logger = get_logger(__name__)

BRANCH_HANDLES = ("true", "false")


class _TraversalState:
    """Bookkeeping for one traversal; discarded when it returns."""

    def __init__(self, start: WorkflowNode, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]):
        self.nodes_by_id: Dict[str, WorkflowNode] = {node.id: node for node in nodes}
        self.adjacency: Dict[str, List[WorkflowEdge]] = outgoing_edges(edges)
        self.reachable = reachable_from(start.id, nodes, edges)

        # Incoming edges still to be resolved, counted only between reachable
        # nodes so that parents which can never run do not block a join.
        self.pending: Dict[str, int] = {node_id: 0 for node_id in self.reachable}
        self.live_arrivals: Dict[str, int] = {node_id: 0 for node_id in self.reachable}
        for edge in edges:
            if edge.source in self.reachable and edge.target in self.reachable:
                self.pending[edge.target] += 1

        self.executed: List[str] = []
        self.pruned: List[str] = []
        self.final_result: Optional[NodeExecutionResult] = None


class GraphTraversal:
    """Walks a workflow graph from a start node, invoking handlers in order.

    Siblings run one after another in edge order. A node with several parents
    runs once, after every parent that can reach it has either completed or
    been pruned. The first failed handler result stops the walk.

    With ``branch_filtering`` on, edges leaving a node whose result data has
    a boolean ``condition`` are followed only when their ``sourceHandle``
    matches it; edges without a ``true``/``false`` handle are always followed.
    """

    def __init__(self, registry: NodeHandlerRegistry, branch_filtering: bool = True):
        self.registry = registry
        self.branch_filtering = branch_filtering

    async def execute_from_node(self, node: WorkflowNode, all_nodes: Sequence[WorkflowNode],
                                edges: Sequence[WorkflowEdge], context: WorkflowContext) -> NodeExecutionResult:
        """Run ``node`` and everything downstream of it.

        Returns a successful result carrying the final output (the data of the
        last node the walk ended on) or the first failed result.
        """
        state = _TraversalState(node, all_nodes, edges)

        cycle_node = find_cycle(all_nodes, edges, within=state.reachable)
        if cycle_node:
            return NodeExecutionResult.fail(f"Workflow graph contains a cycle involving node '{cycle_node}'")

        result = await self._visit(node, state, context)
        if not result.success:
            return result

        logger.debug(
            f"Traversal for execution {context.execution_id} ran {len(state.executed)} nodes, "
            f"pruned {len(state.pruned)}"
        )
        final = state.final_result or result
        return NodeExecutionResult.ok(final.data)

    async def _visit(self, node: WorkflowNode, state: _TraversalState,
                     context: WorkflowContext) -> NodeExecutionResult:
        logger.debug(f"Executing node '{node.id}' ({node.type})")
        result = await self.registry.dispatch(node, context)
        state.executed.append(node.id)

        if not result.success:
            logger.info(f"Node '{node.id}' failed: {result.error}")
            return result

        context.record_result(node.id, result.data)

        followed_any = False
        for edge in state.adjacency.get(node.id, []):
            if edge.target not in state.nodes_by_id:
                logger.warning(f"Skipping edge '{edge.id}': target node '{edge.target}' does not exist")
                continue

            followed = self.should_follow(edge, result)
            followed_any = followed_any or followed

            failure = await self._arrive(edge.target, followed, state, context)
            if failure is not None:
                return failure

        if not followed_any:
            state.final_result = result
        return result

    async def _arrive(self, node_id: str, live: bool, state: _TraversalState,
                      context: WorkflowContext) -> Optional[NodeExecutionResult]:
        """Resolve one incoming edge of ``node_id``; run or prune it once all are in."""
        state.pending[node_id] -= 1
        if live:
            state.live_arrivals[node_id] += 1
        if state.pending[node_id] > 0:
            return None

        if state.live_arrivals[node_id] == 0:
            logger.debug(f"Pruning node '{node_id}': no incoming branch was taken")
            state.pruned.append(node_id)
            for edge in state.adjacency.get(node_id, []):
                if edge.target in state.nodes_by_id:
                    failure = await self._arrive(edge.target, False, state, context)
                    if failure is not None:
                        return failure
            return None

        result = await self._visit(state.nodes_by_id[node_id], state, context)
        return None if result.success else result

    def should_follow(self, edge: WorkflowEdge, result: NodeExecutionResult) -> bool:
        """Whether ``edge`` fires given its source node's result."""
        if not self.branch_filtering or edge.source_handle not in BRANCH_HANDLES:
            return True
        data = result.data
        if not isinstance(data, dict) or not isinstance(data.get("condition"), bool):
            return True
        return edge.source_handle == ("true" if data["condition"] else "false")
