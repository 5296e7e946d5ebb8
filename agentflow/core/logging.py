"""Logging configuration for the AgentFlow engine.

Log records carry the id of the execution (and HTTP request) they belong to.
Those fields live in a :class:`~contextvars.ContextVar`, so concurrent
executions on one event loop never see each other's fields.
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

_log_context: ContextVar[Dict[str, Any]] = ContextVar("agentflow_log_context", default={})

DEFAULT_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(execution_id)s] - %(message)s"

# Libraries whose INFO output drowns out execution logs.
_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "openai", "asyncio")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with the execution fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        log_entry.update(getattr(record, "extra_fields", {}))
        return json.dumps(log_entry, default=str)


class WorkflowContextFilter(logging.Filter):
    """Attach the current logging context to every record.

    ``record.execution_id`` is always set (``-`` outside an execution) so text
    formats can reference it unconditionally.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        fields = dict(getattr(record, "extra_fields", {}))
        fields.update(_log_context.get())
        record.extra_fields = fields
        record.execution_id = fields.get("execution_id", "-")
        return True


_context_filter = WorkflowContextFilter()


def _install(handler: logging.Handler, formatter: logging.Formatter, root: logging.Logger) -> None:
    handler.setFormatter(formatter)
    handler.addFilter(_context_filter)
    handler._agentflow_handler = True
    root.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure root logging for the engine, the API and the CLI.

    Calling it again replaces the handlers a previous call installed; handlers
    added by anything else (test capture, embedding applications) are kept.

    Args:
        level: Logging level name
        log_file: Optional path of a size-rotated log file
        log_format: Text format; ignored when ``structured`` is set
        structured: Emit JSON lines instead of text
        max_size: Bytes per log file before rotation
        backup_count: Rotated files to keep

    Returns:
        The root logger
    """
    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in list(root_logger.handlers):
        if getattr(handler, "_agentflow_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    _install(logging.StreamHandler(sys.stdout), formatter, root_logger)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        _install(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count), formatter, root_logger)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


@contextmanager
def logging_context(**fields) -> Iterator[Dict[str, Any]]:
    """Add ``fields`` to every record logged inside the block.

    The previous context is restored on exit, including when the block is
    left by an exception or a cancellation.
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield _log_context.get()
    finally:
        _log_context.reset(token)


def get_logging_context() -> Dict[str, Any]:
    """Return a copy of the fields attached to the current task's log records."""
    return dict(_log_context.get())


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional one-off fields."""
    logger.log(level, message, extra={"extra_fields": context})
