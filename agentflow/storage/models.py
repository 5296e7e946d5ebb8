"""SQLAlchemy database models for workflows and executions."""

from sqlalchemy import Boolean, Column, DateTime, Index, JSON, String, Text
from ..models.core import utc_now
from .database import Base


class WorkflowModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    user_id = Column(String, index=True)
    nodes = Column(JSON, nullable=False, default=list)
    edges = Column(JSON, nullable=False, default=list)
    settings = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class WorkflowExecutionModel(Base):
    """Database model for workflow execution records.

    No foreign key to ``workflows``: executions outlive deleted workflows.
    """
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, nullable=False)
    status = Column(String, nullable=False)  # running, completed, failed, cancelled
    input = Column(JSON)
    output = Column(JSON)
    error = Column(Text)
    started_at = Column(DateTime, default=utc_now)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_workflow_executions_workflow_started", "workflow_id", "started_at"),
    )
