"""Execution-record lifecycle: running, then exactly one terminal state."""

import asyncio
from typing import Any, Dict, Optional, Sequence

from ..core.exceptions import StorageError
from ..core.logging import get_logger, logging_context
from ..models.core import (
    ExecutionStatusEnum,
    ExecutionUpdate,
    NodeExecutionResult,
    WorkflowEdge,
    WorkflowExecution,
    WorkflowNode,
    utc_now,
)
from ..storage.base import WorkflowStorage
from .context import WorkflowContext
from .graph import find_start_node
from .traversal import GraphTraversal

logger = get_logger(__name__)

NO_START_NODE_ERROR = "No start node found in workflow"


class ExecutionLifecycleManager:
    """Creates an execution record, runs the graph and finalizes the record.

    Workflow failures (handler errors, a missing start node, the deadline)
    end up in the returned record with status ``failed``. Only storage
    failures escape, as :class:`StorageError`.
    """

    def __init__(self, storage: WorkflowStorage, traversal: GraphTraversal,
                 execution_timeout: Optional[float] = None):
        self.storage = storage
        self.traversal = traversal
        self.execution_timeout = execution_timeout

    async def execute_workflow(self, workflow_id: str, nodes: Sequence[WorkflowNode],
                               edges: Sequence[WorkflowEdge],
                               input: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        variables = dict(input or {})
        execution = await self.storage.create_execution(workflow_id, variables)

        with logging_context(execution_id=execution.id, workflow_id=workflow_id):
            logger.info(f"Started execution {execution.id} for workflow {workflow_id}")
            context = WorkflowContext(execution.id, variables)

            try:
                result = await self._run_with_deadline(nodes, edges, context)
            except asyncio.CancelledError:
                await self._finalize(execution.id, NodeExecutionResult.fail("Workflow execution was cancelled"))
                raise
            except Exception as e:
                logger.exception(f"Unexpected error in execution {execution.id}")
                result = NodeExecutionResult.fail(str(e) or e.__class__.__name__)

            finished = await self._finalize(execution.id, result)
            if finished.status == ExecutionStatusEnum.COMPLETED:
                logger.info(f"Execution {execution.id} completed in {finished.duration_ms}ms")
            else:
                logger.info(f"Execution {execution.id} failed: {finished.error}")
            return finished

    async def _run_with_deadline(self, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge],
                                 context: WorkflowContext) -> NodeExecutionResult:
        if not self.execution_timeout:
            return await self._run(nodes, edges, context)
        try:
            return await asyncio.wait_for(self._run(nodes, edges, context), timeout=self.execution_timeout)
        except asyncio.TimeoutError:
            return NodeExecutionResult.fail(
                f"Workflow execution timed out after {self._format_seconds(self.execution_timeout)} seconds"
            )

    async def _run(self, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge],
                   context: WorkflowContext) -> NodeExecutionResult:
        start = find_start_node(nodes, edges)
        if start is None:
            return NodeExecutionResult.fail(NO_START_NODE_ERROR)
        return await self.traversal.execute_from_node(start, nodes, edges, context)

    async def _finalize(self, execution_id: str, result: NodeExecutionResult) -> WorkflowExecution:
        if result.success:
            update = ExecutionUpdate(
                status=ExecutionStatusEnum.COMPLETED,
                output=result.data,
                completed_at=utc_now(),
            )
        else:
            update = ExecutionUpdate(
                status=ExecutionStatusEnum.FAILED,
                error=result.error or "Workflow execution failed",
                completed_at=utc_now(),
            )

        finished = await self.storage.update_execution(execution_id, update)
        if finished is None:
            raise StorageError(
                f"Execution record {execution_id} disappeared before it could be finalized",
                operation="update_execution",
                table="workflow_executions",
            )
        return finished

    @staticmethod
    def _format_seconds(seconds: float) -> str:
        return str(int(seconds)) if float(seconds).is_integer() else str(seconds)
