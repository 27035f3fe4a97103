"""
RFC 7807 Problem Details exception handling.

Every failure raised by the lifecycle engine is a subclass of
``CampusFixException`` and renders as ``application/problem+json``.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel, Field
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import traceback
import uuid
from datetime import datetime, timezone

from campusfix.middleware.correlation import request_id_ctx

logger = logging.getLogger(__name__)


def _get_trace_id() -> str:
    """Get trace ID from the request context or generate a new one."""
    request_id = request_id_ctx.get()
    if request_id:
        return request_id
    return str(uuid.uuid4())[:12]


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # Validation
    VALIDATION_ERROR = "VAL_001"

    # Resource
    NOT_FOUND = "RES_001"
    CONFLICT = "RES_003"
    DUPLICATE_TASK = "RES_005"

    # Identity
    UNAUTHORIZED = "AUTH_001"
    FORBIDDEN = "AUTH_002"

    # Lifecycle
    INVALID_TRANSITION = "LIFE_001"
    CONCURRENT_MODIFICATION = "LIFE_002"

    # Assignment
    NO_WORKER_AVAILABLE = "ASSIGN_001"

    # Server
    INTERNAL_ERROR = "SRV_001"
    TIMEOUT = "SRV_003"


class ProblemDetail(BaseModel):
    """
    RFC 7807 Problem Details response schema.

    Attributes:
        type: URI reference identifying the problem type
        title: Short, human-readable summary
        status: HTTP status code
        detail: Human-readable explanation specific to this occurrence
        instance: URI reference identifying this specific occurrence
        code: Machine-readable error code for client handling
        timestamp: ISO 8601 timestamp of when the error occurred
        trace_id: Unique identifier for tracing in logs
        errors: List of field-level validation errors (for 422)
    """

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    code: str
    timestamp: str
    trace_id: str
    errors: Optional[List[Dict[str, Any]]] = None


def _problem_type(code: "ErrorCode") -> str:
    return f"https://campusfix.local/problems/{code.value.lower().replace('_', '-')}"


class CampusFixException(HTTPException):
    """
    Base exception with RFC 7807 support.

    Usage:
        raise CampusFixException(
            status_code=409,
            code=ErrorCode.CONFLICT,
            detail="Ticket was modified concurrently",
        )
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        title: Optional[str] = None,
        instance: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.errors = errors
        self.trace_id = _get_trace_id()
        self.timestamp = _timestamp()

        super().__init__(status_code=status_code, detail=detail, headers=headers)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.detail}"

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title based on status code."""
        titles = {
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            422: "Validation Error",
            500: "Internal Server Error",
            504: "Gateway Timeout",
        }
        return titles.get(status_code, "Error")

    def to_problem_detail(self) -> ProblemDetail:
        """Convert to RFC 7807 ProblemDetail."""
        return ProblemDetail(
            type=_problem_type(self.code),
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=self.instance,
            code=self.code.value,
            timestamp=self.timestamp,
            trace_id=self.trace_id,
            errors=self.errors,
        )


# Lifecycle and assignment errors

class NotFoundError(CampusFixException):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail=f"{resource} with ID {resource_id} was not found",
        )


class InvalidTransition(CampusFixException):
    """Attempted move is not in the transition table (409). Never mutates state."""

    def __init__(self, current: str, target: str, role: str, reason: Optional[str] = None):
        self.current = current
        self.target = target
        self.role = role
        detail = f"Cannot move from '{current}' to '{target}' as {role}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(
            status_code=409,
            code=ErrorCode.INVALID_TRANSITION,
            title="Invalid Transition",
            detail=detail,
        )


class ValidationFailure(CampusFixException):
    """Missing evidence, comment, rating or OTP (422). Raised before any state change."""

    def __init__(self, detail: str, field: Optional[str] = None):
        errors = [{"field": field, "message": detail}] if field else None
        super().__init__(
            status_code=422,
            code=ErrorCode.VALIDATION_ERROR,
            detail=detail,
            errors=errors,
        )


class NoWorkerAvailable(CampusFixException):
    """Assignment candidates exhausted (409). The ticket or task stays unassigned."""

    def __init__(self, detail: str = "No available worker could be found"):
        super().__init__(
            status_code=409,
            code=ErrorCode.NO_WORKER_AVAILABLE,
            title="No Worker Available",
            detail=detail,
        )


class ConcurrentModification(CampusFixException):
    """Lost a compare-and-set race on the same entity (409). Caller should retry."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            status_code=409,
            code=ErrorCode.CONCURRENT_MODIFICATION,
            title="Concurrent Modification",
            detail=f"{resource} {resource_id} was modified concurrently; reload and retry",
        )


class DuplicateTask(CampusFixException):
    """A recurring task already covers this location on this date (409)."""

    def __init__(self, scheduled_date: str, location_id: Optional[str] = None):
        self.location_id = location_id
        self.scheduled_date = scheduled_date
        if location_id:
            detail = f"Location {location_id} already has a task for {scheduled_date}"
        else:
            detail = f"Tasks for {scheduled_date} were inserted by a concurrent run"
        super().__init__(
            status_code=409,
            code=ErrorCode.DUPLICATE_TASK,
            title="Duplicate Task",
            detail=detail,
        )


class DeadlineExceeded(CampusFixException):
    """Caller-supplied deadline elapsed; all changes were rolled back (504)."""

    def __init__(self, operation: str, seconds: float):
        super().__init__(
            status_code=504,
            code=ErrorCode.TIMEOUT,
            detail=f"{operation} exceeded its {seconds:g}s deadline; nothing was committed",
        )


# Exception handlers for FastAPI

def create_problem_response(
    status_code: int,
    code: ErrorCode,
    detail: str,
    request: Request,
    errors: Optional[List[Dict[str, Any]]] = None,
    trace_id: Optional[str] = None,
) -> JSONResponse:
    """Create a RFC 7807 compliant JSON response."""
    problem = ProblemDetail(
        type=_problem_type(code),
        title=CampusFixException._default_title(status_code),
        status=status_code,
        detail=detail,
        instance=str(request.url.path),
        code=code.value,
        timestamp=_timestamp(),
        trace_id=trace_id or _get_trace_id(),
        errors=errors,
    )
    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


def create_exception_handlers(debug: bool = False):
    """
    Create exception handlers.

    Usage in main.py:
        handlers = create_exception_handlers(settings.DEBUG)
        app.add_exception_handler(CampusFixException, handlers["campusfix"])
        app.add_exception_handler(RequestValidationError, handlers["validation"])
        app.add_exception_handler(Exception, handlers["generic"])
    """

    async def handle_campusfix_exception(request: Request, exc: CampusFixException) -> JSONResponse:
        logger.warning(
            f"{type(exc).__name__}: {exc.code.value} - {exc.detail}",
            extra={
                "trace_id": exc.trace_id,
                "status_code": exc.status_code,
                "path": request.url.path,
            },
        )
        problem = exc.to_problem_detail()
        problem.instance = problem.instance or str(request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content=problem.model_dump(exclude_none=True),
            media_type="application/problem+json",
            headers=exc.headers,
        )

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle standard HTTPException with RFC 7807 response."""
        code_map = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.UNAUTHORIZED,
            403: ErrorCode.FORBIDDEN,
            404: ErrorCode.NOT_FOUND,
            409: ErrorCode.CONFLICT,
            422: ErrorCode.VALIDATION_ERROR,
        }
        return create_problem_response(
            status_code=exc.status_code,
            code=code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
            detail=str(exc.detail),
            request=request,
        )

    async def handle_validation_exception(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle Pydantic validation errors with field-level details."""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

        return create_problem_response(
            status_code=422,
            code=ErrorCode.VALIDATION_ERROR,
            detail="Request validation failed",
            request=request,
            errors=errors,
        )

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions with RFC 7807 response."""
        trace_id = str(uuid.uuid4())[:12]
        logger.error(
            f"Unhandled exception: {exc}",
            extra={"trace_id": trace_id, "path": request.url.path},
        )
        logger.error(traceback.format_exc())

        detail = str(exc) if debug else "An unexpected error occurred"
        return create_problem_response(
            status_code=500,
            code=ErrorCode.INTERNAL_ERROR,
            detail=detail,
            request=request,
            trace_id=trace_id,
        )

    return {
        "campusfix": handle_campusfix_exception,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "generic": handle_generic_exception,
    }
