"""Exception hierarchy for the AgentFlow engine.

Each error carries a severity, a category and a ``recoverable`` flag as class
attributes, plus free-form ``context`` (ids of the workflow, node or table it
concerns) given as keyword arguments:

    raise StorageError("Failed to save workflow", operation="create_workflow", table="workflows")
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    SECURITY = "security"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    severity = ErrorSeverity.MEDIUM
    category = ErrorCategory.EXECUTION
    recoverable = False

    def __init__(self, message: str, error_code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None,
                 recoverable: Optional[bool] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or type(self).__name__
        self.details: Dict[str, Any] = dict(details or {})
        if recoverable is not None:
            self.recoverable = recoverable
        self.context: Dict[str, Any] = {key: value for key, value in context.items() if value is not None}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Flat representation used for structured log lines."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class GraphValidationError(WorkflowEngineError):
    """A workflow graph or node configuration was rejected."""

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, validation_errors: Optional[List[str]] = None, **context: Any):
        self.validation_errors = list(validation_errors or [])
        details = {"validation_errors": self.validation_errors} if self.validation_errors else None
        super().__init__(message, details=details, **context)


class NodeExecutionError(WorkflowEngineError):
    """A node handler raised instead of returning a result."""

    severity = ErrorSeverity.HIGH


class ExecutionEngineError(WorkflowEngineError):
    """A workflow execution ended in the failed state."""

    severity = ErrorSeverity.HIGH


class WorkflowNotFoundError(WorkflowEngineError):
    """A workflow, execution or template id does not resolve."""

    severity = ErrorSeverity.LOW
    category = ErrorCategory.VALIDATION


class StorageError(WorkflowEngineError):
    """A storage backend operation failed."""

    severity = ErrorSeverity.HIGH
    category = ErrorCategory.STORAGE
    recoverable = True


class TransientError(WorkflowEngineError):
    """A temporary failure worth retrying."""

    recoverable = True


class ConfigurationError(WorkflowEngineError):
    severity = ErrorSeverity.HIGH
    category = ErrorCategory.CONFIGURATION


class ServiceError(WorkflowEngineError):
    """An external collaborator (AI provider, scraper, vector store) failed."""

    category = ErrorCategory.NETWORK


class SandboxError(WorkflowEngineError):
    """User code could not be run inside the sandbox."""

    category = ErrorCategory.SECURITY


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """The JSON body the API returns for an engine error."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "timestamp": error.timestamp.isoformat(),
        },
        "context": error.context,
    }
