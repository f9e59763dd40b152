"""
Storage collaborator for the dependency and recurrence services.

`TaskStore` is the interface the services depend on; `SqlTaskStore`
implements it on an SQLModel AsyncSession. Writes are flushed, not
committed: the request's session (see app.database.get_session) owns the
transaction. A write rejected by a database constraint rolls that
transaction back and is reported as None/False, never raised.
"""

import uuid
from datetime import datetime, timezone
from typing import Iterable, Protocol

from sqlalchemy import delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models import Task, TaskDependency, RecurringTaskInstance
from app.schemas.task import TaskRead
from app.services.graph import apply_mirror_change
from app.services.recurrence import parse_iso
from app.logging_config import get_logger

logger = get_logger(__name__)


class TaskStore(Protocol):
    """Persistence operations consumed by the engine services."""

    async def create_task_dependency(
        self, dependent_task_id: uuid.UUID, blocking_task_id: uuid.UUID
    ) -> TaskDependency | None: ...

    async def delete_task_dependency(
        self, dependent_task_id: uuid.UUID, blocking_task_id: uuid.UUID
    ) -> bool: ...

    async def delete_all_task_dependencies(self, task_id: uuid.UUID) -> bool: ...

    async def get_task_dependencies(self, task_id: uuid.UUID) -> list[TaskDependency]: ...

    async def get_dependent_tasks(self, task_id: uuid.UUID) -> list[Task]: ...

    async def create_recurring_task_instance(
        self,
        template_task_id: uuid.UUID,
        generated_task_id: uuid.UUID,
        occurrence_number: int,
        scheduled_date: str,
    ) -> RecurringTaskInstance | None: ...

    async def get_recurring_task_instances(
        self, template_task_id: uuid.UUID
    ) -> list[RecurringTaskInstance]: ...

    async def get_latest_recurring_task_instance(
        self, template_task_id: uuid.UUID
    ) -> RecurringTaskInstance | None: ...

    async def delete_all_recurring_task_instances(self, template_task_id: uuid.UUID) -> bool: ...

    async def save_generated_task(self, task: TaskRead) -> bool: ...


def as_naive_utc(value: datetime | None) -> datetime | None:
    """Columns are TIMESTAMP WITHOUT TIME ZONE holding UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def task_row_from_snapshot(task: TaskRead) -> Task:
    """Build an ORM row from a TaskRead snapshot (e.g. a generated instance)."""
    data = task.model_dump(
        exclude={"dependencies", "dependent_task_ids", "recurrence_pattern", "start_date", "due_date"}
    )
    return Task(
        **data,
        start_date=as_naive_utc(task.start_date),
        due_date=as_naive_utc(task.due_date),
        dependencies=[str(i) for i in task.dependencies],
        dependent_task_ids=[str(i) for i in task.dependent_task_ids],
        recurrence_pattern=(
            task.recurrence_pattern.model_dump(exclude_none=True)
            if task.recurrence_pattern else None
        ),
    )


class SqlTaskStore:
    """TaskStore backed by the tasks / task_dependencies / recurring_task_instances tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------------------------------------------------------------
    # Task reads used by the routes
    # -------------------------------------------------------------------------

    async def list_project_tasks(self, project_id: uuid.UUID) -> list[TaskRead]:
        """Current state of every task in a project, the dependency validation scope."""
        result = await self.session.execute(
            select(Task).where(Task.project_id == project_id).order_by(Task.created_at, Task.id)
        )
        return [TaskRead.model_validate(row) for row in result.scalars().all()]

    async def refresh_blocked_status(self, task_ids: Iterable[uuid.UUID]) -> None:
        """Recompute the cached is_blocked flag of the given tasks."""
        for task_id in task_ids:
            task = await self.session.get(Task, task_id)
            if task is None:
                continue
            await self._refresh_blocked(task)
        await self.session.flush()

    async def _refresh_blocked(self, task: Task) -> None:
        blocker_ids = [uuid.UUID(i) for i in task.dependencies]
        if not blocker_ids:
            task.is_blocked = False
            return
        result = await self.session.execute(
            select(Task.completed).where(Task.id.in_(blocker_ids))
        )
        task.is_blocked = any(not completed for completed in result.scalars().all())

    # -------------------------------------------------------------------------
    # Dependencies
    # -------------------------------------------------------------------------

    async def create_task_dependency(
        self, dependent_task_id: uuid.UUID, blocking_task_id: uuid.UUID
    ) -> TaskDependency | None:
        """Insert the edge and update both sides of the dependency mirror."""
        dependent = await self.session.get(Task, dependent_task_id)
        blocking = await self.session.get(Task, blocking_task_id)
        if dependent is None or blocking is None:
            logger.warning(f"Edge {dependent_task_id} -> {blocking_task_id} references a missing task")
            return None

        existing = await self.session.get(TaskDependency, (dependent_task_id, blocking_task_id))
        if existing is not None:
            logger.warning(f"Edge {dependent_task_id} -> {blocking_task_id} already exists")
            return None

        dependency = TaskDependency(
            dependent_task_id=dependent_task_id,
            blocking_task_id=blocking_task_id,
        )
        self.session.add(dependency)

        dependent.dependencies = apply_mirror_change(
            dependent.dependencies, str(blocking_task_id), "add"
        )
        blocking.dependent_task_ids = apply_mirror_change(
            blocking.dependent_task_ids, str(dependent_task_id), "add"
        )
        dependent.is_blocked = dependent.is_blocked or not blocking.completed
        dependent.updated_at = datetime.utcnow()

        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning(f"Edge {dependent_task_id} -> {blocking_task_id} rejected by database: {e.orig}")
            await self.session.rollback()
            return None

        return dependency

    async def delete_task_dependency(
        self, dependent_task_id: uuid.UUID, blocking_task_id: uuid.UUID
    ) -> bool:
        dependency = await self.session.get(TaskDependency, (dependent_task_id, blocking_task_id))
        if dependency is None:
            return False

        await self.session.delete(dependency)
        await self._unlink(dependent_task_id, blocking_task_id)
        await self.session.flush()
        return True

    async def delete_all_task_dependencies(self, task_id: uuid.UUID) -> bool:
        """Remove every edge touching `task_id` and strip it from the other endpoints' mirrors."""
        result = await self.session.execute(
            select(TaskDependency).where(
                or_(
                    TaskDependency.dependent_task_id == task_id,
                    TaskDependency.blocking_task_id == task_id,
                )
            )
        )
        edges = list(result.scalars().all())

        for edge in edges:
            await self._unlink(edge.dependent_task_id, edge.blocking_task_id)
            await self.session.delete(edge)

        await self.session.flush()
        logger.debug(f"Removed {len(edges)} dependency edges of task {task_id}")
        return True

    async def _unlink(self, dependent_task_id: uuid.UUID, blocking_task_id: uuid.UUID) -> None:
        dependent = await self.session.get(Task, dependent_task_id)
        blocking = await self.session.get(Task, blocking_task_id)
        if blocking is not None:
            blocking.dependent_task_ids = apply_mirror_change(
                blocking.dependent_task_ids, str(dependent_task_id), "remove"
            )
        if dependent is not None:
            dependent.dependencies = apply_mirror_change(
                dependent.dependencies, str(blocking_task_id), "remove"
            )
            dependent.updated_at = datetime.utcnow()
            await self._refresh_blocked(dependent)

    async def get_task_dependencies(self, task_id: uuid.UUID) -> list[TaskDependency]:
        """Edges where `task_id` is the dependent, i.e. its blockers."""
        result = await self.session.execute(
            select(TaskDependency).where(TaskDependency.dependent_task_id == task_id)
        )
        return list(result.scalars().all())

    async def get_dependent_tasks(self, task_id: uuid.UUID) -> list[Task]:
        """Tasks blocked by `task_id`."""
        result = await self.session.execute(
            select(Task)
            .join(TaskDependency, TaskDependency.dependent_task_id == Task.id)
            .where(TaskDependency.blocking_task_id == task_id)
        )
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Recurring instances
    # -------------------------------------------------------------------------

    async def create_recurring_task_instance(
        self,
        template_task_id: uuid.UUID,
        generated_task_id: uuid.UUID,
        occurrence_number: int,
        scheduled_date: str,
    ) -> RecurringTaskInstance | None:
        existing = await self.session.execute(
            select(RecurringTaskInstance.id).where(
                RecurringTaskInstance.template_task_id == template_task_id,
                RecurringTaskInstance.occurrence_number == occurrence_number,
            )
        )
        if existing.first() is not None:
            logger.warning(
                f"Occurrence #{occurrence_number} of template {template_task_id} already exists"
            )
            return None

        instance = RecurringTaskInstance(
            template_task_id=template_task_id,
            generated_task_id=generated_task_id,
            occurrence_number=occurrence_number,
            scheduled_date=as_naive_utc(parse_iso(scheduled_date)),
        )
        self.session.add(instance)

        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning(
                f"Occurrence #{occurrence_number} of template {template_task_id} "
                f"rejected by database: {e.orig}"
            )
            await self.session.rollback()
            return None

        return instance

    async def get_recurring_task_instances(
        self, template_task_id: uuid.UUID
    ) -> list[RecurringTaskInstance]:
        result = await self.session.execute(
            select(RecurringTaskInstance)
            .where(RecurringTaskInstance.template_task_id == template_task_id)
            .order_by(RecurringTaskInstance.occurrence_number)
        )
        return list(result.scalars().all())

    async def get_latest_recurring_task_instance(
        self, template_task_id: uuid.UUID
    ) -> RecurringTaskInstance | None:
        result = await self.session.execute(
            select(RecurringTaskInstance)
            .where(RecurringTaskInstance.template_task_id == template_task_id)
            .order_by(RecurringTaskInstance.occurrence_number.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def delete_all_recurring_task_instances(self, template_task_id: uuid.UUID) -> bool:
        await self.session.execute(
            delete(RecurringTaskInstance).where(
                RecurringTaskInstance.template_task_id == template_task_id
            )
        )
        await self.session.flush()
        return True

    async def save_generated_task(self, task: TaskRead) -> bool:
        self.session.add(task_row_from_snapshot(task))
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning(f"Generated task {task.id} rejected by database: {e.orig}")
            await self.session.rollback()
            return False
        return True
