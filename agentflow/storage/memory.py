"""Volatile storage used when no database is configured."""

import asyncio
from typing import Any, Dict, List, Optional
import uuid

from ..core.logging import get_logger
from ..models.core import (
    ExecutionStatusEnum,
    ExecutionUpdate,
    Workflow,
    WorkflowCreate,
    WorkflowExecution,
    WorkflowUpdate,
    utc_now,
)
from .base import WorkflowStorage

logger = get_logger(__name__)


class MemoryStorage(WorkflowStorage):
    """Keeps workflows and executions in process memory.

    Records are stored as model copies so callers never share mutable state
    with the store.
    """

    backend_name = "memory"

    def __init__(self):
        self._workflows: Dict[str, Workflow] = {}
        self._executions: Dict[str, WorkflowExecution] = {}
        self._lock = asyncio.Lock()

    async def create_workflow(self, workflow: WorkflowCreate) -> Workflow:
        now = utc_now()
        stored = Workflow(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            **workflow.model_dump(),
        )
        async with self._lock:
            self._workflows[stored.id] = stored
        logger.info(f"Created workflow {stored.id} ('{stored.name}')")
        return stored.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def update_workflow(self, workflow_id: str, update: WorkflowUpdate) -> Optional[Workflow]:
        async with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                return None
            data = workflow.model_dump()
            data.update(update.model_dump(exclude_unset=True, exclude_none=True))
            data["updated_at"] = utc_now()
            updated = Workflow.model_validate(data)
            self._workflows[workflow_id] = updated
        return updated.model_copy(deep=True)

    async def delete_workflow(self, workflow_id: str) -> bool:
        async with self._lock:
            return self._workflows.pop(workflow_id, None) is not None

    async def list_workflows(self, user_id: Optional[str] = None) -> List[Workflow]:
        workflows = [
            workflow for workflow in self._workflows.values()
            if user_id is None or workflow.user_id == user_id
        ]
        workflows.sort(key=lambda workflow: workflow.updated_at, reverse=True)
        return [workflow.model_copy(deep=True) for workflow in workflows]

    async def create_execution(self, workflow_id: str, input: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        execution = WorkflowExecution(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            status=ExecutionStatusEnum.RUNNING,
            input=dict(input or {}),
            started_at=utc_now(),
        )
        async with self._lock:
            self._executions[execution.id] = execution
        return execution.model_copy(deep=True)

    async def update_execution(self, execution_id: str, update: ExecutionUpdate) -> Optional[WorkflowExecution]:
        async with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                return None
            changes = update.model_dump(exclude_unset=True)
            updated = execution.model_copy(update=changes, deep=True)
            self._executions[execution_id] = updated
        return updated.model_copy(deep=True)

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(self, workflow_id: str) -> List[WorkflowExecution]:
        executions = [e for e in self._executions.values() if e.workflow_id == workflow_id]
        executions.sort(key=lambda execution: execution.started_at, reverse=True)
        return [execution.model_copy(deep=True) for execution in executions]

    async def check_connection(self) -> bool:
        return True
