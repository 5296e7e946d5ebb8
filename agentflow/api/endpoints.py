"""FastAPI REST endpoints for workflows, executions and templates."""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import (
    GraphValidationError,
    WorkflowEngineError,
    WorkflowNotFoundError,
    create_error_response,
)
from ..core.logging import get_logger
from ..core.middleware import status_code_for_error
from ..engine.workflow_engine import WorkflowEngine
from ..models.core import (
    ValidationResult,
    Workflow,
    WorkflowCreate,
    WorkflowEdge,
    WorkflowExecution,
    WorkflowNode,
    WorkflowTemplate,
    WorkflowUpdate,
)
from ..storage.base import WorkflowStorage
from ..templates import get_template, list_templates, template_to_workflow

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow"])


def get_engine(request: Request) -> WorkflowEngine:
    """Dependency to get the application's workflow engine."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow engine not initialized"
        )
    return engine


def get_storage(engine: WorkflowEngine = Depends(get_engine)) -> WorkflowStorage:
    """Dependency to get the storage the engine writes to."""
    return engine.storage


# Request/Response models
class GraphPayload(BaseModel):
    """Nodes and edges to validate without saving."""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)


class InstantiateTemplateRequest(BaseModel):
    """Optional overrides when creating a workflow from a template."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, description="Name for the new workflow")
    user_id: Optional[str] = Field(None, alias="userId", description="Owning user")


class NodeTypeInfo(BaseModel):
    """A registered node type."""
    type: str
    description: str


class MessageResponse(BaseModel):
    message: str


def _raise_http_error(error: WorkflowEngineError):
    raise HTTPException(status_code=status_code_for_error(error), detail=create_error_response(error))


def _ensure_valid(engine: WorkflowEngine, nodes: List[WorkflowNode], edges: List[WorkflowEdge]):
    result = engine.validate_workflow(nodes, edges)
    if not result.is_valid:
        raise GraphValidationError(
            f"Workflow validation failed: {'; '.join(result.errors)}",
            validation_errors=result.errors,
        )
    for warning in result.warnings:
        logger.info(f"Workflow validation warning: {warning}")


# Workflows

@router.get("/workflows", response_model=List[Workflow], summary="List workflows")
async def list_workflows(
    user_id: Optional[str] = Query(None, alias="userId"),
    storage: WorkflowStorage = Depends(get_storage)
) -> List[Workflow]:
    try:
        return await storage.list_workflows(user_id)
    except WorkflowEngineError as e:
        _raise_http_error(e)


@router.post(
    "/workflows",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow",
    description="Validate and store a new workflow graph"
)
async def create_workflow(
    workflow: WorkflowCreate,
    engine: WorkflowEngine = Depends(get_engine)
) -> Workflow:
    try:
        logger.info(f"Creating workflow: {workflow.name}")
        _ensure_valid(engine, workflow.nodes, workflow.edges)
        created = await engine.storage.create_workflow(workflow)
        return created
    except WorkflowEngineError as e:
        logger.warning(f"Workflow creation failed: {e}")
        _raise_http_error(e)


@router.post("/workflows/validate", response_model=ValidationResult, summary="Validate a workflow graph")
async def validate_workflow(
    graph: GraphPayload,
    engine: WorkflowEngine = Depends(get_engine)
) -> ValidationResult:
    return engine.validate_workflow(graph.nodes, graph.edges)


@router.get("/workflows/{workflow_id}", response_model=Workflow, summary="Get a workflow")
async def get_workflow(
    workflow_id: str,
    storage: WorkflowStorage = Depends(get_storage)
) -> Workflow:
    try:
        workflow = await storage.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(
                f"Workflow {workflow_id} not found", resource="workflow", resource_id=workflow_id
            )
        return workflow
    except WorkflowEngineError as e:
        _raise_http_error(e)


@router.put("/workflows/{workflow_id}", response_model=Workflow, summary="Update a workflow")
async def update_workflow(
    workflow_id: str,
    update: WorkflowUpdate,
    engine: WorkflowEngine = Depends(get_engine)
) -> Workflow:
    try:
        existing = await engine.storage.get_workflow(workflow_id)
        if existing is None:
            raise WorkflowNotFoundError(
                f"Workflow {workflow_id} not found", resource="workflow", resource_id=workflow_id
            )
        if update.nodes is not None or update.edges is not None:
            _ensure_valid(
                engine,
                update.nodes if update.nodes is not None else existing.nodes,
                update.edges if update.edges is not None else existing.edges,
            )
        updated = await engine.storage.update_workflow(workflow_id, update)
        if updated is None:
            raise WorkflowNotFoundError(
                f"Workflow {workflow_id} not found", resource="workflow", resource_id=workflow_id
            )
        return updated
    except WorkflowEngineError as e:
        _raise_http_error(e)


@router.delete("/workflows/{workflow_id}", response_model=MessageResponse, summary="Delete a workflow")
async def delete_workflow(
    workflow_id: str,
    storage: WorkflowStorage = Depends(get_storage)
) -> MessageResponse:
    try:
        if not await storage.delete_workflow(workflow_id):
            raise WorkflowNotFoundError(
                f"Workflow {workflow_id} not found", resource="workflow", resource_id=workflow_id
            )
        return MessageResponse(message=f"Workflow {workflow_id} deleted")
    except WorkflowEngineError as e:
        _raise_http_error(e)


# Executions

@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=WorkflowExecution,
    summary="Execute a workflow",
    description="Run the stored workflow with the request body as input and return the finished execution"
)
async def execute_workflow(
    workflow_id: str,
    input: Optional[Dict[str, Any]] = Body(None),
    engine: WorkflowEngine = Depends(get_engine)
) -> WorkflowExecution:
    try:
        logger.info(f"Executing workflow {workflow_id}")
        return await engine.run_workflow(workflow_id, input or {})
    except WorkflowEngineError as e:
        _raise_http_error(e)


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=List[WorkflowExecution],
    summary="List executions of a workflow"
)
async def list_workflow_executions(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_engine)
) -> List[WorkflowExecution]:
    try:
        return await engine.list_executions(workflow_id)
    except WorkflowEngineError as e:
        _raise_http_error(e)


@router.get("/executions/{execution_id}", response_model=WorkflowExecution, summary="Get an execution")
async def get_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_engine)
) -> WorkflowExecution:
    try:
        return await engine.get_execution(execution_id)
    except WorkflowEngineError as e:
        _raise_http_error(e)


# Templates and node types

@router.get("/templates", response_model=List[WorkflowTemplate], summary="List workflow templates")
async def get_templates() -> List[WorkflowTemplate]:
    return list_templates()


@router.get("/templates/{template_id}", response_model=WorkflowTemplate, summary="Get a workflow template")
async def get_workflow_template(template_id: str) -> WorkflowTemplate:
    template = get_template(template_id)
    if template is None:
        _raise_http_error(WorkflowNotFoundError(
            f"Template {template_id} not found", resource="template", resource_id=template_id
        ))
    return template


@router.post(
    "/templates/{template_id}/instantiate",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow from a template"
)
async def instantiate_template(
    template_id: str,
    request: Optional[InstantiateTemplateRequest] = Body(None),
    storage: WorkflowStorage = Depends(get_storage)
) -> Workflow:
    try:
        template = get_template(template_id)
        if template is None:
            raise WorkflowNotFoundError(
                f"Template {template_id} not found", resource="template", resource_id=template_id
            )
        request = request or InstantiateTemplateRequest()
        workflow = template_to_workflow(template, name=request.name, user_id=request.user_id)
        created = await storage.create_workflow(workflow)
        logger.info(f"Created workflow {created.id} from template '{template_id}'")
        return created
    except WorkflowEngineError as e:
        _raise_http_error(e)


@router.get("/node-types", response_model=List[NodeTypeInfo], summary="List registered node types")
async def get_node_types(engine: WorkflowEngine = Depends(get_engine)) -> List[NodeTypeInfo]:
    return [
        NodeTypeInfo(type=node_type, description=description)
        for node_type, description in engine.list_node_types().items()
    ]
