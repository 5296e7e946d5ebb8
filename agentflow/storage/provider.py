"""Selection of the storage backend at startup."""

from sqlalchemy.exc import SQLAlchemyError

from ..config import AppConfig
from ..core.logging import get_logger
from .base import WorkflowStorage
from .database import create_database_engine, ping
from .database_storage import DatabaseStorage
from .memory import MemoryStorage

logger = get_logger(__name__)


def initialize_storage(config: AppConfig) -> WorkflowStorage:
    """Use the configured database when it is reachable, else memory.

    Falling back is logged loudly: memory storage loses every workflow and
    execution when the process exits.
    """
    if not config.database_url:
        logger.info("No database URL configured; using in-memory storage")
        return MemoryStorage()

    engine = create_database_engine(
        config.database_url,
        echo=config.database_echo,
        connect_args=config.get_database_connect_args(),
    )
    try:
        ping(engine)
        storage = DatabaseStorage(engine)
    except SQLAlchemyError as e:
        engine.dispose()
        logger.warning(f"Database unavailable ({e}); falling back to in-memory storage")
        return MemoryStorage()

    logger.info(f"Using {config.database_type.value} database storage")
    return storage
