import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Frequency = Literal["daily", "weekly", "biweekly", "monthly", "quarterly", "yearly"]


class RecurrencePattern(BaseModel):
    """
    A repeating schedule.

    The model is deliberately permissive about values (interval=0, an empty
    days_of_week, both end conditions set): it has to be able to carry
    such input as far as `validate_rule`, which is the single gate.

    Wire format uses camelCase (daysOfWeek, dayOfMonth, endDate,
    maxOccurrences); Python code uses snake_case.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    frequency: Frequency
    interval: int = 1
    days_of_week: list[int] | None = None  # 0 = Sunday ... 6 = Saturday
    day_of_month: int | None = None  # 1-31
    end_date: str | None = None  # ISO-8601
    max_occurrences: int | None = None


class RuleValidation(BaseModel):
    """Result of validating a recurrence pattern."""
    valid: bool
    error: str | None = None


class NextOccurrence(BaseModel):
    """The next scheduled date of a recurrence."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date: str
    occurrence_number: int
    is_last_occurrence: bool


# =============================================================================
# Request / response bodies for the recurring routes
# =============================================================================

class PatternRequest(BaseModel):
    """Body carrying just a pattern (description)."""
    pattern: RecurrencePattern


class PreviewRequest(BaseModel):
    """Preview upcoming occurrence dates."""
    pattern: RecurrencePattern
    from_date: str | None = None  # Defaults to now
    look_ahead_days: int | None = Field(default=None, ge=0)  # 0 is an empty window


class NextOccurrenceRequest(BaseModel):
    pattern: RecurrencePattern
    from_date: str | None = None
    occurrence_number: int = Field(default=1, ge=1)


class ShouldGenerateRequest(BaseModel):
    pattern: RecurrencePattern
    last_generated_date: str | None = None
    occurrence_number: int | None = Field(default=None, ge=0)


class GenerateInstanceRequest(BaseModel):
    """Materialize an instance; both fields are computed when omitted."""
    scheduled_date: str | None = None
    occurrence_number: int | None = Field(default=None, ge=1)


class CatchUpRequest(BaseModel):
    """Generate every missing instance of a project's templates through now + look_ahead_days."""
    project_id: uuid.UUID
    look_ahead_days: int | None = Field(default=None, ge=0)


class RecurringTaskInstanceRead(BaseModel):
    """Schema for reading an instance record."""
    id: uuid.UUID
    template_task_id: uuid.UUID
    generated_task_id: uuid.UUID
    occurrence_number: int
    scheduled_date: datetime
    created_at: datetime

    model_config = {"from_attributes": True}
