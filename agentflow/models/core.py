"""Core Pydantic models for workflows, executions and node results."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatusEnum.RUNNING


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class Position(BaseModel):
    """Canvas position of a node; ignored by the engine."""
    x: float = 0
    y: float = 0


class WorkflowNode(BaseModel):
    """A typed unit of work in a workflow graph."""
    id: str = Field(..., description="Unique identifier for the node within its workflow")
    type: str = Field(..., description="Node type used to select a handler")
    position: Position = Field(default_factory=Position, description="Canvas position")
    data: Dict[str, Any] = Field(default_factory=dict, description="Handler-specific configuration")

    @field_validator('id', 'type')
    @classmethod
    def validate_not_empty(cls, value):
        """Ensure id and type are present."""
        if not value or not value.strip():
            raise ValueError("Node id and type cannot be empty")
        return value.strip()


class WorkflowEdge(BaseModel):
    """A directed connection from one node's output to another node's input."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique identifier for the edge")
    source: str = Field(..., description="Source node id")
    target: str = Field(..., description="Target node id")
    source_handle: Optional[str] = Field(None, alias="sourceHandle", description="Output handle on the source node")
    target_handle: Optional[str] = Field(None, alias="targetHandle", description="Input handle on the target node")


class WorkflowBase(BaseModel):
    """Fields shared by workflow create requests and stored workflows."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    nodes: List[WorkflowNode] = Field(default_factory=list, description="Nodes in the workflow")
    edges: List[WorkflowEdge] = Field(default_factory=list, description="Edges between nodes")
    settings: Dict[str, Any] = Field(default_factory=dict, description="Workflow level settings")
    is_active: bool = Field(False, alias="isActive", description="Whether the workflow accepts triggers")

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        """Ensure workflow name is not empty."""
        if not name or not name.strip():
            raise ValueError("Workflow name is required")
        return name.strip()


class WorkflowCreate(WorkflowBase):
    """Payload for creating a workflow."""
    user_id: Optional[str] = Field(None, alias="userId", description="Owning user")


class WorkflowUpdate(BaseModel):
    """Partial update for a workflow; nodes and edges are replaced wholesale."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    nodes: Optional[List[WorkflowNode]] = None
    edges: Optional[List[WorkflowEdge]] = None
    settings: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = Field(None, alias="isActive")


class Workflow(WorkflowBase):
    """A stored workflow."""
    id: str = Field(..., description="Workflow id")
    user_id: Optional[str] = Field(None, alias="userId", description="Owning user")
    created_at: datetime = Field(..., alias="createdAt", description="Creation timestamp")
    updated_at: datetime = Field(..., alias="updatedAt", description="Last update timestamp")


class WorkflowExecution(BaseModel):
    """One persisted run of a workflow."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Execution id")
    workflow_id: str = Field(..., alias="workflowId", description="Workflow being executed")
    status: ExecutionStatusEnum = Field(..., description="Current execution status")
    input: Dict[str, Any] = Field(default_factory=dict, description="Initial input variables")
    output: Optional[Any] = Field(None, description="Final result data when completed")
    error: Optional[str] = Field(None, description="Error message when failed")
    started_at: datetime = Field(..., alias="startedAt", description="Timestamp when execution started")
    completed_at: Optional[datetime] = Field(None, alias="completedAt", description="Timestamp when execution finished")

    @property
    def duration_ms(self) -> Optional[float]:
        """Wall-clock duration of a finished execution in milliseconds."""
        if self.completed_at is None:
            return None
        return round((self.completed_at - self.started_at).total_seconds() * 1000, 2)


class ExecutionUpdate(BaseModel):
    """Partial update applied to an execution record."""
    status: Optional[ExecutionStatusEnum] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None


class NodeExecutionResult(BaseModel):
    """Outcome of running one node handler."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> 'NodeExecutionResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> 'NodeExecutionResult':
        return cls(success=False, error=error)


class WorkflowTemplate(BaseModel):
    """A pre-built graph users can start from."""
    id: str
    name: str
    description: str
    category: str
    nodes: List[WorkflowNode]
    edges: List[WorkflowEdge]


class ChatMessage(BaseModel):
    """A single chat message sent to a chat-completion collaborator."""
    role: str = Field(..., description="system, user or assistant")
    content: str = Field("", description="Message text")

    @field_validator('role')
    @classmethod
    def validate_role(cls, role):
        if role not in ("system", "user", "assistant"):
            raise ValueError(f"Unsupported message role: {role}")
        return role
