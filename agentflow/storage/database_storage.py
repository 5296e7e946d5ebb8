"""Relational storage backed by SQLAlchemy."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, TypeVar
import uuid

from sqlalchemy import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.error_recovery import RetryConfig, with_async_retry
from ..core.exceptions import StorageError
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
from .database import create_session_factory, create_tables, ping
from .models import WorkflowExecutionModel, WorkflowModel

logger = get_logger(__name__)

T = TypeVar("T")

WRITE_RETRY = RetryConfig(max_attempts=3, base_delay=0.1, max_delay=1.0, retryable_exceptions=[StorageError])


def _to_workflow(model: WorkflowModel) -> Workflow:
    return Workflow(
        id=model.id,
        name=model.name,
        description=model.description,
        user_id=model.user_id,
        nodes=model.nodes or [],
        edges=model.edges or [],
        settings=model.settings or {},
        is_active=bool(model.is_active),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _to_execution(model: WorkflowExecutionModel) -> WorkflowExecution:
    return WorkflowExecution(
        id=model.id,
        workflow_id=model.workflow_id,
        status=ExecutionStatusEnum(model.status),
        input=model.input or {},
        output=model.output,
        error=model.error,
        started_at=model.started_at,
        completed_at=model.completed_at,
    )


class DatabaseStorage(WorkflowStorage):
    """Workflow storage on top of a SQLAlchemy engine.

    SQLAlchemy sessions are synchronous, so every operation runs in a worker
    thread with its own session. Writes are retried when the database reports
    an operational (connection-level) failure.
    """

    backend_name = "database"

    def __init__(self, engine: Engine, create_schema: bool = True):
        self.engine = engine
        self._session_factory = create_session_factory(engine)
        if create_schema:
            create_tables(engine)

    async def _run(self, operation: str, table: str, work: Callable[[Session], T]) -> T:
        def run_in_session() -> T:
            session = self._session_factory()
            try:
                result = work(session)
                session.commit()
                return result
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error during {operation}: {e}")
                raise StorageError(
                    f"Failed to {operation.replace('_', ' ')}: {e}",
                    recoverable=isinstance(e, OperationalError),
                    operation=operation,
                    table=table,
                ) from e
            finally:
                session.close()

        return await asyncio.to_thread(run_in_session)

    @with_async_retry(WRITE_RETRY)
    async def create_workflow(self, workflow: WorkflowCreate) -> Workflow:
        workflow_id = str(uuid.uuid4())
        now = utc_now()

        def work(session: Session) -> Workflow:
            data = workflow.model_dump(mode="json")
            model = WorkflowModel(
                id=workflow_id,
                name=data["name"],
                description=data.get("description"),
                user_id=data.get("user_id"),
                nodes=data["nodes"],
                edges=data["edges"],
                settings=data["settings"],
                is_active=data["is_active"],
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            session.flush()
            return _to_workflow(model)

        created = await self._run("create_workflow", "workflows", work)
        logger.info(f"Created workflow {created.id} ('{created.name}')")
        return created

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        def work(session: Session) -> Optional[Workflow]:
            model = session.get(WorkflowModel, workflow_id)
            return _to_workflow(model) if model else None

        return await self._run("get_workflow", "workflows", work)

    @with_async_retry(WRITE_RETRY)
    async def update_workflow(self, workflow_id: str, update: WorkflowUpdate) -> Optional[Workflow]:
        changes = update.model_dump(mode="json", exclude_unset=True, exclude_none=True)

        def work(session: Session) -> Optional[Workflow]:
            model = session.get(WorkflowModel, workflow_id)
            if model is None:
                return None
            for field, value in changes.items():
                setattr(model, field, value)
            model.updated_at = utc_now()
            session.flush()
            return _to_workflow(model)

        return await self._run("update_workflow", "workflows", work)

    @with_async_retry(WRITE_RETRY)
    async def delete_workflow(self, workflow_id: str) -> bool:
        def work(session: Session) -> bool:
            model = session.get(WorkflowModel, workflow_id)
            if model is None:
                return False
            session.delete(model)
            return True

        return await self._run("delete_workflow", "workflows", work)

    async def list_workflows(self, user_id: Optional[str] = None) -> List[Workflow]:
        def work(session: Session) -> List[Workflow]:
            query = session.query(WorkflowModel)
            if user_id is not None:
                query = query.filter(WorkflowModel.user_id == user_id)
            return [_to_workflow(model) for model in query.order_by(WorkflowModel.updated_at.desc()).all()]

        return await self._run("list_workflows", "workflows", work)

    @with_async_retry(WRITE_RETRY)
    async def create_execution(self, workflow_id: str, input: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        execution_id = str(uuid.uuid4())

        def work(session: Session) -> WorkflowExecution:
            model = WorkflowExecutionModel(
                id=execution_id,
                workflow_id=workflow_id,
                status=ExecutionStatusEnum.RUNNING.value,
                input=dict(input or {}),
                started_at=utc_now(),
            )
            session.add(model)
            session.flush()
            return _to_execution(model)

        return await self._run("create_execution", "workflow_executions", work)

    @with_async_retry(WRITE_RETRY)
    async def update_execution(self, execution_id: str, update: ExecutionUpdate) -> Optional[WorkflowExecution]:
        changes = update.model_dump(exclude_unset=True)

        def work(session: Session) -> Optional[WorkflowExecution]:
            model = session.get(WorkflowExecutionModel, execution_id)
            if model is None:
                return None
            for field, value in changes.items():
                if field == "status" and value is not None:
                    value = ExecutionStatusEnum(value).value
                setattr(model, field, value)
            session.flush()
            return _to_execution(model)

        return await self._run("update_execution", "workflow_executions", work)

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        def work(session: Session) -> Optional[WorkflowExecution]:
            model = session.get(WorkflowExecutionModel, execution_id)
            return _to_execution(model) if model else None

        return await self._run("get_execution", "workflow_executions", work)

    async def list_executions(self, workflow_id: str) -> List[WorkflowExecution]:
        def work(session: Session) -> List[WorkflowExecution]:
            models = (
                session.query(WorkflowExecutionModel)
                .filter(WorkflowExecutionModel.workflow_id == workflow_id)
                .order_by(WorkflowExecutionModel.started_at.desc())
                .all()
            )
            return [_to_execution(model) for model in models]

        return await self._run("list_executions", "workflow_executions", work)

    async def check_connection(self) -> bool:
        try:
            return await asyncio.to_thread(ping, self.engine)
        except SQLAlchemyError as e:
            logger.warning(f"Database connection check failed: {e}")
            return False

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)
