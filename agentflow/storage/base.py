"""Storage interface shared by the database and in-memory backends."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models.core import (
    ExecutionUpdate,
    Workflow,
    WorkflowCreate,
    WorkflowExecution,
    WorkflowUpdate,
)


class WorkflowStorage(ABC):
    """Persistence for workflows and their execution records.

    Implementations must be safe to call from concurrent executions. Failures
    of the backend itself are raised as ``StorageError``; a missing id is
    reported with ``None`` (or ``False`` for deletes).
    """

    backend_name = "abstract"

    @abstractmethod
    async def create_workflow(self, workflow: WorkflowCreate) -> Workflow: ...

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]: ...

    @abstractmethod
    async def update_workflow(self, workflow_id: str, update: WorkflowUpdate) -> Optional[Workflow]: ...

    @abstractmethod
    async def delete_workflow(self, workflow_id: str) -> bool: ...

    @abstractmethod
    async def list_workflows(self, user_id: Optional[str] = None) -> List[Workflow]: ...

    @abstractmethod
    async def create_execution(self, workflow_id: str, input: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        """Create a record in the ``running`` state."""

    @abstractmethod
    async def update_execution(self, execution_id: str, update: ExecutionUpdate) -> Optional[WorkflowExecution]:
        """Apply the fields set on ``update``; returns None for unknown ids."""

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]: ...

    @abstractmethod
    async def list_executions(self, workflow_id: str) -> List[WorkflowExecution]:
        """Executions of one workflow, newest first."""

    @abstractmethod
    async def check_connection(self) -> bool: ...

    async def close(self) -> None:
        """Release backend resources."""
