import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field, Relationship

if TYPE_CHECKING:
    from app.models.project import Project


class Task(SQLModel, table=True):
    """
    Task model carrying the dependency mirror and recurrence fields.

    Key fields:
    - dependencies: IDs of tasks blocking this one (JSON array of strings)
    - dependent_task_ids: IDs of tasks this one blocks. Mirror of
      `dependencies`, written only by the storage layer together with the
      task_dependencies edge table
    - is_blocked: cached; the dependency graph is the source of truth
    - is_recurring / recurrence_pattern: set on recurrence templates only
    - original_task_id / occurrence_number: set on generated instances only
    """

    __tablename__ = "tasks"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    title: str = Field(index=True)
    description: str | None = Field(default=None)
    status: str = Field(default="todo")
    completed: bool = Field(default=False)

    start_date: datetime | None = Field(default=None)
    due_date: datetime | None = Field(default=None)

    dependencies: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    dependent_task_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_blocked: bool = Field(default=False)

    is_recurring: bool = Field(default=False)
    recurrence_pattern: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    original_task_id: uuid.UUID | None = Field(default=None, index=True)
    occurrence_number: int | None = Field(default=None)

    # Foreign keys
    project_id: uuid.UUID = Field(foreign_key="projects.id", index=True, ondelete="CASCADE")

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    project: "Project" = Relationship(back_populates="tasks")
