"""Entry point tying registry, traversal, lifecycle and storage together."""

from typing import Any, Dict, List, Optional, Sequence

from ..config import AppConfig
from ..core.exceptions import ExecutionEngineError, WorkflowNotFoundError
from ..core.logging import get_logger
from ..models.core import (
    ExecutionStatusEnum,
    ValidationResult,
    WorkflowEdge,
    WorkflowExecution,
    WorkflowNode,
)
from ..services.delivery import DeliveryService, LoggingDeliveryService
from ..services.llm import LLMService, build_llm_service
from ..services.sandbox import CodeSandbox
from ..services.tools import LocalToolServices, ToolServices
from ..storage.base import WorkflowStorage
from .graph import validate_workflow_graph
from .handlers import BuiltinHandlers, register_builtin_handlers
from .lifecycle import ExecutionLifecycleManager
from .registry import NodeHandlerRegistry
from .traversal import GraphTraversal

logger = get_logger(__name__)


class WorkflowEngine:
    """Executes workflows and answers questions about past executions.

    One instance is built per process (or per test) and passed to whatever
    needs it; the engine keeps no per-execution state of its own, so
    concurrent calls are independent.
    """

    def __init__(self, storage: WorkflowStorage, registry: NodeHandlerRegistry,
                 config: Optional[AppConfig] = None):
        self.config = config or AppConfig()
        self.storage = storage
        self.registry = registry
        self.traversal = GraphTraversal(registry, branch_filtering=self.config.branch_filtering)
        self.lifecycle = ExecutionLifecycleManager(
            storage, self.traversal, execution_timeout=self.config.execution_timeout
        )

    async def execute_workflow(self, workflow_id: str, nodes: Sequence[WorkflowNode],
                               edges: Sequence[WorkflowEdge],
                               input: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        """Run a graph and return its finished execution record.

        Raises:
            StorageError: If the execution record cannot be written.
        """
        return await self.lifecycle.execute_workflow(workflow_id, nodes, edges, input)

    async def execute_workflow_or_raise(self, workflow_id: str, nodes: Sequence[WorkflowNode],
                                        edges: Sequence[WorkflowEdge],
                                        input: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        """Like :meth:`execute_workflow` but raises when the run fails."""
        execution = await self.execute_workflow(workflow_id, nodes, edges, input)
        if execution.status == ExecutionStatusEnum.FAILED:
            raise ExecutionEngineError(
                execution.error or "Workflow execution failed",
                execution_id=execution.id,
                workflow_id=workflow_id,
            )
        return execution

    async def run_workflow(self, workflow_id: str, input: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        """Load a stored workflow and execute it."""
        workflow = await self.storage.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(
                f"Workflow {workflow_id} not found", resource="workflow", resource_id=workflow_id
            )
        return await self.execute_workflow(workflow.id, workflow.nodes, workflow.edges, input)

    async def list_executions(self, workflow_id: str) -> List[WorkflowExecution]:
        return await self.storage.list_executions(workflow_id)

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        execution = await self.storage.get_execution(execution_id)
        if execution is None:
            raise WorkflowNotFoundError(
                f"Execution {execution_id} not found", resource="execution", resource_id=execution_id
            )
        return execution

    def validate_workflow(self, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> ValidationResult:
        result = validate_workflow_graph(nodes, edges)
        for node in nodes:
            node_type = self.registry.resolve_type(node)
            if node_type not in self.registry:
                result.warnings.append(f"Node '{node.id}' has unknown type '{node_type}'")
        return result

    def list_node_types(self) -> Dict[str, str]:
        return self.registry.list_types()


def build_workflow_engine(storage: WorkflowStorage, config: Optional[AppConfig] = None,
                          llm: Optional[LLMService] = None, tools: Optional[ToolServices] = None,
                          sandbox: Optional[CodeSandbox] = None,
                          delivery: Optional[DeliveryService] = None) -> WorkflowEngine:
    """Build an engine with every built-in handler registered.

    Collaborators that are not supplied get their default implementation.
    """
    config = config or AppConfig()
    sandbox = sandbox or CodeSandbox()
    llm = llm or build_llm_service(
        config.openai_api_key, config.openai_base_url,
        anthropic_api_key=config.anthropic_api_key, anthropic_base_url=config.anthropic_base_url,
    )
    tools = tools or LocalToolServices(sandbox=sandbox)
    delivery = delivery or LoggingDeliveryService()

    handlers = BuiltinHandlers(
        llm=llm,
        tools=tools,
        sandbox=sandbox,
        delivery=delivery,
        node_timeout=config.node_timeout,
        email_failure_is_fatal=config.email_failure_is_fatal,
    )
    registry = register_builtin_handlers(NodeHandlerRegistry(), handlers)
    return WorkflowEngine(storage, registry, config)
