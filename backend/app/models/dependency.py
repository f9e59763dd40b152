import uuid
from datetime import datetime
from sqlmodel import SQLModel, Field


class TaskDependency(SQLModel, table=True):
    """
    A directed "task blocks task" edge.

    dependent_task_id depends on blocking_task_id, meaning:
    "The blocking task must complete before the dependent task can start"

    The composite primary key makes each edge unique; deleting either
    endpoint task cascades to the edge.
    """

    __tablename__ = "task_dependencies"

    dependent_task_id: uuid.UUID = Field(
        foreign_key="tasks.id",
        primary_key=True,
        ondelete="CASCADE",
    )
    blocking_task_id: uuid.UUID = Field(
        foreign_key="tasks.id",
        primary_key=True,
        index=True,
        ondelete="CASCADE",
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
