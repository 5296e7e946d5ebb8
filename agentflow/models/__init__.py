"""Data models for the workflow engine."""

from .core import (
    ExecutionStatusEnum,
    ValidationResult,
    Position,
    WorkflowNode,
    WorkflowEdge,
    WorkflowCreate,
    WorkflowUpdate,
    Workflow,
    WorkflowExecution,
    ExecutionUpdate,
    NodeExecutionResult,
    WorkflowTemplate,
    ChatMessage,
)

__all__ = [
    "ExecutionStatusEnum",
    "ValidationResult",
    "Position",
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowCreate",
    "WorkflowUpdate",
    "Workflow",
    "WorkflowExecution",
    "ExecutionUpdate",
    "NodeExecutionResult",
    "WorkflowTemplate",
    "ChatMessage",
]
