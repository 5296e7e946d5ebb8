"""Storage backends for workflows and executions."""

from .base import WorkflowStorage
from .database_storage import DatabaseStorage
from .memory import MemoryStorage
from .provider import initialize_storage

__all__ = ["WorkflowStorage", "DatabaseStorage", "MemoryStorage", "initialize_storage"]
