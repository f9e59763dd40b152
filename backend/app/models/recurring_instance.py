import uuid
from datetime import datetime
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class RecurringTaskInstance(SQLModel, table=True):
    """
    Record of one task generated from a recurrence template.

    (template_task_id, occurrence_number) is unique so two concurrent
    materializations cannot both claim the same occurrence.
    """

    __tablename__ = "recurring_task_instances"
    __table_args__ = (
        UniqueConstraint("template_task_id", "occurrence_number", name="uq_instance_occurrence"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    template_task_id: uuid.UUID = Field(foreign_key="tasks.id", index=True, ondelete="CASCADE")
    # No foreign key: the record outlives the generated task if that is deleted
    generated_task_id: uuid.UUID = Field(index=True)
    occurrence_number: int = Field(ge=1)
    scheduled_date: datetime = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
