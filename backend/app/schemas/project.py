import uuid
from datetime import datetime
from pydantic import BaseModel

from app.schemas.task import TaskRead


class ProjectCreate(BaseModel):
    """Schema for creating a new project."""
    name: str
    description: str | None = None


class ProjectUpdate(BaseModel):
    """Schema for updating a project."""
    name: str | None = None
    description: str | None = None


class ProjectRead(BaseModel):
    """Schema for reading a project."""
    id: uuid.UUID
    name: str
    description: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CriticalPathRead(BaseModel):
    """Longest blocking chain in a project, ending task first."""
    project_id: uuid.UUID
    length: int
    tasks: list[TaskRead]


class DependencyStatsRead(BaseModel):
    """Summary of a project's dependency graph."""
    project_id: uuid.UUID
    total_tasks: int
    tasks_with_dependencies: int
    blocked_tasks: int
    average_dependencies_per_task: float
    max_dependency_depth: int
