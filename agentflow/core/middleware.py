"""HTTP middleware: request ids, error translation and slow request logging."""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    WorkflowNotFoundError,
    TransientError,
    create_error_response,
)
from .logging import get_logger, logging_context

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def status_code_for_error(error: WorkflowEngineError) -> int:
    """Map an engine error onto an HTTP status code."""
    if isinstance(error, WorkflowNotFoundError):
        return 404
    if isinstance(error, GraphValidationError):
        return 400
    if isinstance(error, TransientError):
        return 503
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and turn escaped errors into JSON.

    A caller-supplied ``X-Request-ID`` is reused so a workflow run can be
    traced across services; otherwise a fresh id is generated. Every log line
    written while the request is handled, including those of the executions
    it triggers, carries the id.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        started = time.perf_counter()

        with logging_context(request_id=request_id, method=request.method, path=request.url.path):
            try:
                response = await call_next(request)
            except WorkflowEngineError as e:
                logger.warning(f"{request.method} {request.url.path} failed with {e.error_code}: {e.message}")
                response = JSONResponse(status_code=status_code_for_error(e), content=create_error_response(e))
            except Exception as e:
                logger.error(f"Unhandled error on {request.method} {request.url.path}: {e}", exc_info=True)
                response = JSONResponse(
                    status_code=500,
                    content={
                        "error": "InternalServerError",
                        "message": "An unexpected error occurred",
                        "details": {
                            "error_type": type(e).__name__,
                            "timestamp": datetime.now(timezone.utc).isoformat()
                        },
                        "request_id": request_id
                    }
                )

            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"in {time.perf_counter() - started:.3f}s"
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Report response time in a header and warn about slow requests.

    Executions run inside the request, so a slow ``/execute`` usually means a
    slow model or sandbox call rather than a slow API.
    """

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - started

        if duration > self.slow_request_threshold:
            kind = "workflow execution" if request.url.path.endswith("/execute") else "request"
            logger.warning(
                f"Slow {kind}: {request.method} {request.url.path} took {duration:.3f}s "
                f"(threshold {self.slow_request_threshold}s)"
            )

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
