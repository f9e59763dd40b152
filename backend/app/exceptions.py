"""
Structured exceptions and error responses for Taskgraph.

The engine itself reports structural problems (self-dependency, cycles,
non-template materialization, persistence failures) as result objects.
The HTTP layer translates those results into the exceptions below, which
are rendered by a single handler into a consistent JSON body.
"""

from typing import Any, Dict, Optional, List
from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.logging_config import get_logger

logger = get_logger("error")


# =============================================================================
# Error Response Schema
# =============================================================================

class ErrorDetail(BaseModel):
    """Detail of a single error."""
    loc: Optional[List[str]] = None  # Location of error (e.g., ["body", "title"])
    msg: str
    type: str


class ErrorResponse(BaseModel):
    """Structured error response format."""
    error: str  # Error code (e.g., "not_found", "cycle_detected")
    message: str  # Human-readable message
    details: Optional[List[ErrorDetail]] = None
    circular_dependencies: Optional[List[List[str]]] = None


# =============================================================================
# Custom Exceptions
# =============================================================================

class TaskGraphException(Exception):
    """Base exception for all Taskgraph errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "internal_error",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_content(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(TaskGraphException):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} with ID {resource_id} not found",
            error_code="not_found",
            status_code=status.HTTP_404_NOT_FOUND,
        )
        self.resource = resource
        self.resource_id = resource_id


class CycleDetectedError(TaskGraphException):
    """Adding a dependency would create a cycle."""

    def __init__(
        self,
        dependent_task_id: str,
        blocking_task_id: str,
        message: str,
        cycles: List[List[str]],
    ):
        super().__init__(
            message=message,
            error_code="cycle_detected",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=[{
                "loc": ["body"],
                "msg": f"Task {dependent_task_id} depending on {blocking_task_id} would create a cycle",
                "type": "cycle_error",
            }],
        )
        self.dependent_task_id = dependent_task_id
        self.blocking_task_id = blocking_task_id
        self.cycles = cycles

    def to_content(self) -> Dict[str, Any]:
        content = super().to_content()
        content["circular_dependencies"] = self.cycles
        return content


class DuplicateDependencyError(TaskGraphException):
    """Dependency already exists."""

    def __init__(self, dependent_task_id: str, blocking_task_id: str):
        super().__init__(
            message="This dependency already exists",
            error_code="duplicate_dependency",
            status_code=status.HTTP_409_CONFLICT,
        )
        self.dependent_task_id = dependent_task_id
        self.blocking_task_id = blocking_task_id


class SelfDependencyError(TaskGraphException):
    """Task cannot depend on itself."""

    def __init__(self, task_id: str, message: str = "A task cannot depend on itself"):
        super().__init__(
            message=message,
            error_code="self_dependency",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
        self.task_id = task_id


class CrossProjectDependencyError(TaskGraphException):
    """Cannot create dependency between tasks in different projects."""

    def __init__(self, dependent_project: str, blocking_project: str):
        super().__init__(
            message="Cannot create dependency between tasks in different projects",
            error_code="cross_project_dependency",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
        self.dependent_project = dependent_project
        self.blocking_project = blocking_project


class TaskBlockedError(TaskGraphException):
    """Task cannot be started or completed while a blocker is incomplete."""

    def __init__(self, task_id: str, blocking_task_ids: List[str]):
        super().__init__(
            message="Task is blocked by incomplete dependencies",
            error_code="task_blocked",
            status_code=status.HTTP_409_CONFLICT,
            details=[
                {"loc": ["dependencies"], "msg": f"Blocked by {blocker}", "type": "blocked"}
                for blocker in blocking_task_ids
            ],
        )
        self.task_id = task_id


class ValidationError(TaskGraphException):
    """Request validation error."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            message=message,
            error_code="validation_error",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class InvalidRecurrenceError(ValidationError):
    """Recurrence pattern failed rule validation."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            details=[{"loc": ["body", "pattern"], "msg": message, "type": "recurrence_error"}],
        )
        self.error_code = "invalid_recurrence"


class NotATemplateError(TaskGraphException):
    """Instance materialization requested for a task that is not a template."""

    def __init__(self, task_id: str, message: str = "Task is not a recurring task template"):
        super().__init__(
            message=message,
            error_code="not_a_template",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
        self.task_id = task_id


class RecurrenceEndedError(TaskGraphException):
    """The template's end condition has been reached."""

    def __init__(self, task_id: str, message: str = "Recurrence has ended"):
        super().__init__(
            message=message,
            error_code="recurrence_ended",
            status_code=status.HTTP_409_CONFLICT,
        )
        self.task_id = task_id


class PersistenceError(TaskGraphException):
    """The storage layer refused or failed a write."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="persistence_error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


# =============================================================================
# Exception Handlers
# =============================================================================

async def taskgraph_exception_handler(request: Request, exc: TaskGraphException) -> JSONResponse:
    """Handle TaskGraphException and return structured response."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": None,
        },
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(TaskGraphException, taskgraph_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
