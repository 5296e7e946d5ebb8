"""Structural helpers over a workflow's nodes and edges."""

from typing import Dict, List, Optional, Sequence, Set

from ..core.logging import get_logger
from ..models.core import ValidationResult, WorkflowEdge, WorkflowNode

logger = get_logger(__name__)


def outgoing_edges(edges: Sequence[WorkflowEdge]) -> Dict[str, List[WorkflowEdge]]:
    """Group edges by source id, keeping enumeration order."""
    adjacency: Dict[str, List[WorkflowEdge]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, []).append(edge)
    return adjacency


def find_start_nodes(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> List[WorkflowNode]:
    """Return every node that no edge targets, in node order."""
    targets = {edge.target for edge in edges}
    return [node for node in nodes if node.id not in targets]


def find_start_node(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> Optional[WorkflowNode]:
    """Pick the node traversal begins at.

    When more than one node has no incoming edge, the first one wins and the
    others are ignored for this run.
    """
    candidates = find_start_nodes(nodes, edges)
    if not candidates:
        return None
    if len(candidates) > 1:
        ignored = ", ".join(node.id for node in candidates[1:])
        logger.warning(f"Multiple start nodes found; using '{candidates[0].id}' and ignoring: {ignored}")
    return candidates[0]


def reachable_from(start_id: str, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> Set[str]:
    """Ids of nodes reachable from ``start_id``, including itself."""
    node_ids = {node.id for node in nodes}
    adjacency = outgoing_edges(edges)
    reachable = {start_id}
    queue = [start_id]

    while queue:
        current = queue.pop(0)
        for edge in adjacency.get(current, []):
            if edge.target in node_ids and edge.target not in reachable:
                reachable.add(edge.target)
                queue.append(edge.target)

    return reachable


def find_cycle(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge],
               within: Optional[Set[str]] = None) -> Optional[str]:
    """Return the id of a node that sits on a cycle, or None for a DAG.

    ``within`` restricts the search to a subset of node ids.
    """
    node_ids = {node.id for node in nodes}
    if within is not None:
        node_ids &= within
    adjacency = outgoing_edges(edges)

    visited: Set[str] = set()
    on_stack: Set[str] = set()

    def visit(node_id: str) -> Optional[str]:
        visited.add(node_id)
        on_stack.add(node_id)
        for edge in adjacency.get(node_id, []):
            if edge.target not in node_ids:
                continue
            if edge.target in on_stack:
                return edge.target
            if edge.target not in visited:
                found = visit(edge.target)
                if found:
                    return found
        on_stack.discard(node_id)
        return None

    for node in nodes:
        if node.id in node_ids and node.id not in visited:
            found = visit(node.id)
            if found:
                return found
    return None


def validate_workflow_graph(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> ValidationResult:
    """Check a workflow graph before it is saved or run.

    Errors make the graph unrunnable; warnings describe shapes the engine
    accepts but handles in a limited way.
    """
    errors: List[str] = []
    warnings: List[str] = []

    _validate_node_ids(nodes, errors)
    _validate_invalid_references(nodes, edges, errors, warnings)

    if nodes:
        starts = find_start_nodes(nodes, edges)
        if not starts:
            errors.append("No start node found in workflow")
        else:
            if len(starts) > 1:
                warnings.append(
                    f"Multiple start nodes found ({', '.join(n.id for n in starts)}); "
                    f"only '{starts[0].id}' will run"
                )
            _validate_unreachable_nodes(starts[0].id, nodes, edges, warnings)

        cycle_node = find_cycle(nodes, edges)
        if cycle_node:
            errors.append(f"Workflow graph contains a cycle involving node '{cycle_node}'")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def _validate_node_ids(nodes: Sequence[WorkflowNode], errors: List[str]):
    seen: Set[str] = set()
    for node in nodes:
        if node.id in seen:
            errors.append(f"Duplicate node id: '{node.id}'")
        seen.add(node.id)


def _validate_invalid_references(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge],
                                 errors: List[str], warnings: List[str]):
    node_ids = {node.id for node in nodes}
    for edge in edges:
        if edge.source not in node_ids:
            errors.append(f"Edge '{edge.id}' references non-existent source node: '{edge.source}'")
        if edge.target not in node_ids:
            # Traversal skips these, so they are not fatal.
            warnings.append(f"Edge '{edge.id}' references non-existent target node: '{edge.target}'")
        if edge.source == edge.target:
            errors.append(f"Edge '{edge.id}' connects node '{edge.source}' to itself")


def _validate_unreachable_nodes(start_id: str, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge],
                                warnings: List[str]):
    unreachable = {node.id for node in nodes} - reachable_from(start_id, nodes, edges)
    if unreachable:
        warnings.append(f"Unreachable nodes detected: {', '.join(sorted(unreachable))}")
