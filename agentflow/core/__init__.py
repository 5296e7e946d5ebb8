"""Core components shared across the engine, storage and API layers."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    NodeExecutionError,
    ExecutionEngineError,
    WorkflowNotFoundError,
    StorageError,
    TransientError,
    ConfigurationError,
    ServiceError,
    SandboxError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "NodeExecutionError",
    "ExecutionEngineError",
    "WorkflowNotFoundError",
    "StorageError",
    "TransientError",
    "ConfigurationError",
    "ServiceError",
    "SandboxError",
    "setup_logging",
    "get_logger",
]
