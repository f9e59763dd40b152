from app.models.project import Project
from app.models.task import Task
from app.models.dependency import TaskDependency
from app.models.recurring_instance import RecurringTaskInstance

__all__ = [
    "Project",
    "Task",
    "TaskDependency",
    "RecurringTaskInstance",
]
