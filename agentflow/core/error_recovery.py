"""Retries for flaky storage writes and health checks for the engine's collaborators."""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple, Type, Union

from .exceptions import StorageError, TransientError, WorkflowEngineError
from .logging import get_logger, log_with_context

logger = get_logger(__name__)

HealthCheck = Callable[[], Union[Any, Awaitable[Any]]]


class RetryConfig:
    """How often, and how patiently, a failing coroutine is re-invoked.

    Only errors listed in ``retryable_exceptions`` are retried, and engine
    errors additionally have to be flagged ``recoverable``. A missing workflow
    or a rejected graph is never worth a second attempt.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 0.2, max_delay: float = 5.0,
                 jitter: bool = True,
                 retryable_exceptions: Optional[Sequence[Type[Exception]]] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retryable_exceptions: Tuple[Type[Exception], ...] = tuple(
            retryable_exceptions or (TransientError, StorageError)
        )

    def is_retryable(self, error: Exception) -> bool:
        if not isinstance(error, self.retryable_exceptions):
            return False
        if isinstance(error, WorkflowEngineError):
            return error.recoverable
        return True

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1``; doubles each time, capped at ``max_delay``."""
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay = random.uniform(delay / 2, delay)
        return delay


def with_async_retry(config: Optional[RetryConfig] = None):
    """Retry the decorated coroutine function according to ``config``.

    The last error is re-raised unchanged once attempts run out, so callers
    see the same exception type with or without the decorator.
    """
    policy = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not policy.is_retryable(e):
                        raise
                    if attempt >= policy.max_attempts:
                        log_with_context(
                            logger, logging.ERROR,
                            f"{func.__name__} still failing after {attempt} attempts: {e}",
                            operation=func.__name__,
                            error_type=type(e).__name__,
                            attempts=attempt,
                        )
                        raise
                    delay = policy.delay_for(attempt)
                    log_with_context(
                        logger, logging.WARNING,
                        f"{func.__name__} failed ({e}); attempt {attempt + 1}/{policy.max_attempts} in {delay:.2f}s",
                        operation=func.__name__,
                        error_type=type(e).__name__,
                        attempt=attempt,
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
        return wrapper

    return decorator


class HealthChecker:
    """Named checks reported by the health endpoints and the ``health`` command.

    A check passes by returning; a returned string becomes the message and a
    returned dict is merged into the report. Raising or overrunning its
    timeout marks the check unhealthy.
    """

    def __init__(self):
        self.checks: Dict[str, Tuple[HealthCheck, float]] = {}
        self.last_results: Dict[str, Dict[str, Any]] = {}

    def register_check(self, name: str, check_func: HealthCheck, timeout: float = 5.0):
        self.checks[name] = (check_func, timeout)
        logger.debug(f"Registered health check: {name}")

    async def run_check(self, name: str) -> Dict[str, Any]:
        if name not in self.checks:
            return {"status": "error", "message": f"Health check '{name}' not found",
                    "timestamp": datetime.now(timezone.utc).isoformat()}

        check_func, timeout = self.checks[name]
        started = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(self._call(check_func), timeout=timeout)
        except asyncio.TimeoutError:
            report = {"status": "timeout", "message": f"Health check timed out after {timeout}s"}
        except Exception as e:
            report = {"status": "unhealthy", "message": str(e), "error_type": type(e).__name__}
        else:
            report = {"status": "healthy", "message": outcome if isinstance(outcome, str) else "Check passed"}
            if isinstance(outcome, dict):
                report.update(outcome)

        report["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        report["timestamp"] = datetime.now(timezone.utc).isoformat()
        self.last_results[name] = report
        return report

    async def run_all_checks(self) -> Dict[str, Any]:
        """Run every check concurrently; one unhealthy check makes the whole report unhealthy."""
        names = list(self.checks)
        reports = await asyncio.gather(*(self.run_check(name) for name in names))
        checks = dict(zip(names, reports))
        healthy = all(report["status"] == "healthy" for report in reports)
        return {
            "overall_status": "healthy" if healthy else "unhealthy",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @staticmethod
    async def _call(check_func: HealthCheck) -> Any:
        outcome = check_func()
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        return outcome
