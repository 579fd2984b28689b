"""
Middleware and exception handlers for the NL2SQL agent API.

This module contains:
- HTTP middleware for trace ids and request logging
- Centralized exception handlers for the NL2SQLException hierarchy

Exception Handling Strategy:
- Every NL2SQLException subclass becomes a JSON error body with its own
  http_status and error_code
- Framework validation errors use the same body shape
- Anything else becomes a generic 500 without internal details
- Every body carries the request trace_id

Usage in main.py:
    from nl2sql_agent.api.middleware import register_exception_handlers
    register_exception_handlers(app)
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nl2sql_agent.domain.errors import NL2SQLException
from nl2sql_agent.domain.responses import ErrorResponse
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.tracing import current_trace_id, generate_trace_id, reset_trace_id, set_trace_id

logger = get_module_logger()

TRACE_ID_HEADER = "X-Trace-ID"


# =============================================================================
# Middleware Functions
# =============================================================================


async def trace_id_middleware(request: Request, call_next: Callable) -> Response:
    """
    Bind a trace id to the request context.

    - Uses the X-Trace-ID header when the client sends one
    - Generates a new id otherwise
    - Echoes the id in the response headers
    """
    trace_id = request.headers.get(TRACE_ID_HEADER) or generate_trace_id()
    token = set_trace_id(trace_id)
    try:
        response = await call_next(request)
    finally:
        reset_trace_id(token)

    response.headers[TRACE_ID_HEADER] = trace_id
    return response


async def logging_middleware(request: Request, call_next: Callable) -> Response:
    """
    Log each request and its outcome, adding X-Process-Time to the response.
    """
    start_time = datetime.now(timezone.utc)
    trace_id = current_trace_id()

    logger.info(
        "HTTP request started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        trace_id=trace_id
    )

    response = await call_next(request)

    duration_ms = round((datetime.now(timezone.utc) - start_time).total_seconds() * 1000, 2)
    response.headers["X-Process-Time"] = str(duration_ms)

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=duration_ms,
        trace_id=trace_id
    )
    return response


# =============================================================================
# Exception Handlers
# =============================================================================


def _create_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    """
    Build the standard error body:

    {"error": "error_code", "message": "...", "details": {...}, "trace_id": "...", "timestamp": "..."}
    """
    error_response = ErrorResponse(
        error=error_code.lower(),
        message=message,
        details=details,
        trace_id=current_trace_id(),
        timestamp=datetime.now(timezone.utc)
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True)
    )


async def nl2sql_exception_handler(request: Request, exc: NL2SQLException) -> JSONResponse:
    """Map an NL2SQLException to its HTTP status and error code."""
    log_level = "warning" if exc.http_status < 500 else "error"
    getattr(logger, log_level)(
        f"{exc.__class__.__name__}: {exc.message}",
        error_code=exc.error_code,
        http_status=exc.http_status,
        path=request.url.path,
        trace_id=current_trace_id()
    )

    return _create_error_response(
        status_code=exc.http_status,
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details or None
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/query validation failures become 422 with per-field errors."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]

    logger.warning(
        "Request validation failed",
        error_count=len(errors),
        path=request.url.path,
        trace_id=current_trace_id()
    )

    return _create_error_response(
        status_code=422,
        error_code="VALIDATION_ERROR",
        message="Request validation failed",
        details={"errors": errors}
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework HTTP errors (404 route, 405 method) in the standard body."""
    error_code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    error_code = error_code_map.get(exc.status_code, "HTTP_ERROR")

    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        error_code=error_code,
        path=request.url.path,
        trace_id=current_trace_id()
    )

    return _create_error_response(
        status_code=exc.status_code,
        error_code=error_code,
        message=str(exc.detail) if exc.detail else f"HTTP {exc.status_code} error"
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback: log everything, expose nothing."""
    logger.error(
        "Unhandled exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        trace_id=current_trace_id(),
        exc_info=True
    )

    return _create_error_response(
        status_code=500,
        error_code="INTERNAL_ERROR",
        message="An internal server error occurred. Please try again later."
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Usage:
        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(NL2SQLException, nl2sql_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]


# These are used in route decorators to document error responses
ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    404: {"description": "Not Found - Unknown connection id"},
    422: {"description": "Unprocessable - Request validation failed, or the agent could not produce runnable SQL"},
    500: {"description": "Internal Server Error - An unexpected error occurred"},
    502: {"description": "Bad Gateway - The model returned output that could not be parsed"},
    503: {"description": "Service Unavailable - The LLM or database is not available"},
}
