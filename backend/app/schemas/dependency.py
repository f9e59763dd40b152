import uuid
from datetime import datetime
from pydantic import BaseModel

from app.schemas.task import TaskRead


class DependencyCreate(BaseModel):
    """Schema for creating a new dependency."""
    dependent_task_id: uuid.UUID  # The blocked task
    blocking_task_id: uuid.UUID   # The blocker task
    project_id: uuid.UUID         # Validation scope


class DependencyRead(BaseModel):
    """Schema for reading a dependency."""
    dependent_task_id: uuid.UUID
    blocking_task_id: uuid.UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class DependencyValidationRead(BaseModel):
    """Dry-run result of validating a new edge."""
    valid: bool
    errors: list[str]
    circular_dependencies: list[list[uuid.UUID]] | None = None


class DependencyStatusRead(BaseModel):
    """Blocked/ready state of one task."""
    is_blocked: bool
    can_start: bool
    blocking_tasks: list[TaskRead]
    dependent_tasks: list[TaskRead]
    dependency_depth: int = 0  # Blocking levels below the task
