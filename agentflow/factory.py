"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.endpoints import router
from .api.health import health_router
from .config import AppConfig, get_config, validate_config
from .core.error_recovery import HealthChecker
from .core.logging import get_logger, setup_logging
from .core.middleware import ErrorHandlingMiddleware, PerformanceMonitoringMiddleware
from .engine.workflow_engine import WorkflowEngine, build_workflow_engine
from .services.delivery import DeliveryService
from .services.llm import LLMService
from .services.tools import ToolServices
from .storage.base import WorkflowStorage
from .storage.provider import initialize_storage

logger = get_logger(__name__)


def setup_health_checks(engine: WorkflowEngine) -> HealthChecker:
    """Health checks for the storage backend and the handler registry."""
    checker = HealthChecker()

    async def storage_reachable():
        if not await engine.storage.check_connection():
            raise ConnectionError(f"{engine.storage.backend_name} storage is unreachable")
        return {"message": "Storage connection successful", "backend": engine.storage.backend_name}

    def handlers_registered():
        count = len(engine.list_node_types())
        if not count:
            raise RuntimeError("No node handlers registered")
        return {"message": "Node handler registry operational", "registered_types": count}

    checker.register_check("storage", storage_reachable, timeout=5.0)
    checker.register_check("node_registry", handlers_registered, timeout=2.0)
    return checker


def create_app(config: Optional[AppConfig] = None, storage: Optional[WorkflowStorage] = None,
               llm: Optional[LLMService] = None, tools: Optional[ToolServices] = None,
               delivery: Optional[DeliveryService] = None) -> FastAPI:
    """Build the API around one workflow engine.

    Collaborators may be injected (tests pass fakes); anything omitted is
    built from ``config``. The storage is closed when the app shuts down.
    """
    config = config or get_config()
    validate_config(config)

    if storage is None:
        storage = initialize_storage(config)
    engine = build_workflow_engine(storage, config, llm=llm, tools=tools, delivery=delivery)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version} with {storage.backend_name} storage")
        yield
        logger.info(f"Shutting down {config.app_name}")
        try:
            await storage.close()
        except Exception as e:
            logger.error(f"Error closing storage: {e}")

    app = FastAPI(
        title=config.app_name,
        description="Execute visual AI workflow graphs and record every run",
        version=config.app_version,
        debug=config.debug,
        lifespan=lifespan
    )
    app.state.config = config
    app.state.engine = engine
    app.state.health_checker = setup_health_checks(engine)

    # Starlette runs the last added middleware first, so request ids wrap everything.
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )
    if config.enable_performance_monitoring:
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(health_router)
    app.include_router(router)
    return app
