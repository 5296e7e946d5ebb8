"""Configuration management for the AgentFlow engine.

Every setting can be supplied as an ``AGENTFLOW_<FIELD>`` environment variable
(``AGENTFLOW_EXECUTION_TIMEOUT=60``); values are coerced by pydantic, so the
same rules apply to the environment, ``.env`` files and CLI overrides.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "AGENTFLOW_"

# Unprefixed variables honoured when the prefixed one is absent.
_ENV_FALLBACKS = {
    "database_url": "DATABASE_URL",
    "openai_api_key": "OPENAI_API_KEY",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
}


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class AppConfig(BaseModel):
    """Application configuration settings."""

    app_name: str = "AgentFlow Workflow Engine"
    app_version: str = "1.0.0"
    debug: bool = False

    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    reload: bool = False

    # No URL means the volatile in-memory store.
    database_url: Optional[str] = None
    database_echo: bool = Field(default=False, description="Echo SQLAlchemy statements")

    execution_timeout: Optional[float] = Field(
        default=300, description="Per-execution deadline in seconds; 0 or None disables it"
    )
    node_timeout: int = Field(default=30, ge=1, description="Wall-clock limit for sandboxed code nodes")
    branch_filtering: bool = Field(
        default=True, description="Follow only the matching true/false edges after a condition node"
    )
    email_failure_is_fatal: bool = False

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    anthropic_base_url: str = "https://api.anthropic.com"

    log_level: LogLevel = LogLevel.INFO
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - [%(execution_id)s] - %(message)s"
    log_file: Optional[str] = None
    log_max_size: int = 10 * 1024 * 1024
    log_backup_count: int = 5
    log_structured: bool = Field(default=False, description="Emit JSON log lines")

    slow_request_threshold: float = 5.0
    enable_performance_monitoring: bool = True

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    cors_methods: List[str] = Field(default_factory=lambda: ["GET", "POST", "PUT", "DELETE"])

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            return None
        scheme = v.split("://")[0].lower().split("+")[0]
        supported = [db.value for db in DatabaseType]
        if scheme not in supported:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported}")
        return v

    @field_validator("execution_timeout", mode="before")
    @classmethod
    def validate_execution_timeout(cls, v):
        if v in (None, "", 0, "0"):
            return None
        if float(v) < 0:
            raise ValueError("Execution timeout must be positive")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("cors_origins", "cors_methods", mode="before")
    @classmethod
    def split_comma_list(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def database_type(self) -> Optional[DatabaseType]:
        if not self.database_url:
            return None
        return DatabaseType(self.database_url.split("://")[0].lower().split("+")[0])

    @property
    def is_sqlite(self) -> bool:
        return self.database_type == DatabaseType.SQLITE

    def get_database_connect_args(self) -> Dict[str, Any]:
        """SQLite connections are shared with the worker threads storage calls run on."""
        return {"check_same_thread": False} if self.is_sqlite else {}

    def get_uvicorn_config(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug,
        }

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Build a configuration from ``AGENTFLOW_*`` variables; unset fields keep their defaults."""
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is None and name in _ENV_FALLBACKS:
                raw = os.getenv(_ENV_FALLBACKS[name])
            if raw is not None:
                values[name] = raw
        return cls.model_validate(values)


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the process configuration, loading it from the environment on first use."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load ``config_file`` (or ``./.env``) into the environment, then rebuild the configuration."""
    global _config

    from dotenv import load_dotenv

    env_file = config_file if config_file and os.path.exists(config_file) else ".env"
    if os.path.exists(env_file):
        load_dotenv(env_file)

    _config = AppConfig.from_env()
    return _config


def reset_config():
    """Forget the cached configuration (mainly for testing)."""
    global _config
    _config = None


def _ensure_directory(path: Optional[str], label: str, errors: List[str]) -> None:
    if not path:
        return
    try:
        Path(path).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        errors.append(f"Cannot create {label} directory {path}: {e}")


def validate_config(config: AppConfig) -> None:
    """Create the directories the SQLite file and the log file live in.

    Raises:
        ValueError: if any of them cannot be created
    """
    errors: List[str] = []

    if config.is_sqlite:
        db_path = config.database_url.split("///", 1)[-1]
        if db_path != ":memory:":
            _ensure_directory(os.path.dirname(db_path), "database", errors)

    if config.log_file:
        _ensure_directory(os.path.dirname(config.log_file), "log", errors)

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


def get_development_config() -> AppConfig:
    """Debug logging, auto-reload and a local SQLite file."""
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_url="sqlite:///./agentflow.db",
        database_echo=True,
    )


def get_production_config() -> AppConfig:
    """JSON logs, no CORS origins, database from ``DATABASE_URL``."""
    return AppConfig(
        database_url=os.getenv("DATABASE_URL"),
        log_structured=True,
        cors_origins=[],
    )


def get_testing_config() -> AppConfig:
    """In-memory storage with short deadlines and quiet logs."""
    return AppConfig(
        debug=True,
        log_level=LogLevel.WARNING,
        execution_timeout=30,
        node_timeout=10,
        enable_performance_monitoring=False,
    )
