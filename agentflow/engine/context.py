"""Execution-scoped state threaded through a workflow run."""

from typing import Any, Dict, Iterator, Optional, Tuple


class WorkflowContext:
    """Variables and accumulated node results for one execution.

    A context belongs to exactly one in-flight execution. Handlers read it and
    the traversal appends to ``previous_results``; nothing may keep a
    reference once the execution has finished.
    """

    def __init__(self, execution_id: str, variables: Optional[Dict[str, Any]] = None):
        self.execution_id = execution_id
        self.variables: Dict[str, Any] = variables if variables is not None else {}
        self.previous_results: Dict[str, Any] = {}

    def record_result(self, node_id: str, data: Any) -> None:
        """Store a node's result; a later write for the same node wins."""
        # Re-insert so iteration order tracks recency.
        self.previous_results.pop(node_id, None)
        self.previous_results[node_id] = data

    def iter_recent_results(self) -> Iterator[Tuple[str, Any]]:
        """Yield ``(node_id, data)`` pairs, most recently recorded first."""
        for node_id in reversed(list(self.previous_results)):
            yield node_id, self.previous_results[node_id]

    def __repr__(self) -> str:
        return (
            f"WorkflowContext(execution_id={self.execution_id!r}, "
            f"variables={sorted(self.variables)}, results={list(self.previous_results)})"
        )
