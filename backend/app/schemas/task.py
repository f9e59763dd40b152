import uuid
from datetime import datetime
from pydantic import BaseModel, Field

from app.schemas.recurrence import RecurrencePattern


class TaskCreate(BaseModel):
    """Schema for creating a new task."""
    title: str
    description: str | None = None
    status: str = "todo"
    start_date: datetime | None = None
    due_date: datetime | None = None
    project_id: uuid.UUID
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None


class TaskUpdate(BaseModel):
    """Schema for updating a task. Dependencies are changed via /dependencies only."""
    title: str | None = None
    description: str | None = None
    status: str | None = None
    completed: bool | None = None
    start_date: datetime | None = None
    due_date: datetime | None = None


class TaskRead(BaseModel):
    """
    Snapshot of a task.

    This is also the type the engine's pure functions operate on: routes
    load ORM rows and validate them into TaskRead before calling
    app.services.graph or app.services.instances.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    project_id: uuid.UUID | None = None
    title: str = ""
    description: str | None = None
    status: str = "todo"
    completed: bool = False
    start_date: datetime | None = None
    due_date: datetime | None = None
    dependencies: list[uuid.UUID] = Field(default_factory=list)
    dependent_task_ids: list[uuid.UUID] = Field(default_factory=list)
    is_blocked: bool = False
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None
    original_task_id: uuid.UUID | None = None
    occurrence_number: int | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = {"from_attributes": True}
