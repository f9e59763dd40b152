from app.schemas.project import (
    ProjectCreate,
    ProjectUpdate,
    ProjectRead,
    CriticalPathRead,
    DependencyStatsRead,
)
from app.schemas.task import TaskCreate, TaskUpdate, TaskRead
from app.schemas.dependency import (
    DependencyCreate,
    DependencyRead,
    DependencyStatusRead,
    DependencyValidationRead,
)
from app.schemas.recurrence import (
    RecurrencePattern,
    RuleValidation,
    NextOccurrence,
    PatternRequest,
    PreviewRequest,
    NextOccurrenceRequest,
    ShouldGenerateRequest,
    GenerateInstanceRequest,
    CatchUpRequest,
    RecurringTaskInstanceRead,
)

__all__ = [
    "ProjectCreate",
    "ProjectUpdate",
    "ProjectRead",
    "CriticalPathRead",
    "DependencyStatsRead",
    "TaskCreate",
    "TaskUpdate",
    "TaskRead",
    "DependencyCreate",
    "DependencyRead",
    "DependencyStatusRead",
    "DependencyValidationRead",
    "RecurrencePattern",
    "RuleValidation",
    "NextOccurrence",
    "PatternRequest",
    "PreviewRequest",
    "NextOccurrenceRequest",
    "ShouldGenerateRequest",
    "GenerateInstanceRequest",
    "CatchUpRequest",
    "RecurringTaskInstanceRead",
]
