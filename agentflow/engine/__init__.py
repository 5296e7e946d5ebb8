"""Graph execution engine."""

from .context import WorkflowContext
from .interpolation import interpolate
from .registry import NodeHandlerRegistry
from .traversal import GraphTraversal
from .lifecycle import ExecutionLifecycleManager
from .workflow_engine import WorkflowEngine, build_workflow_engine

__all__ = [
    "WorkflowContext",
    "interpolate",
    "NodeHandlerRegistry",
    "GraphTraversal",
    "ExecutionLifecycleManager",
    "WorkflowEngine",
    "build_workflow_engine",
]
