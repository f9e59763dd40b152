"""
Task routes for the Taskgraph API.
"""

import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.database import get_session
from app.models import Task, Project
from app.schemas import TaskCreate, TaskUpdate, TaskRead, DependencyStatusRead
from app.services.dependencies import remove_all_dependencies
from app.services.graph import get_dependency_depth, get_dependency_status, get_tasks_unblocked_by
from app.services.instances import delete_all_instances
from app.services.recurrence import validate_rule
from app.storage import SqlTaskStore, as_naive_utc
from app.exceptions import NotFoundError, InvalidRecurrenceError, TaskBlockedError
from app.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()

# Statuses that count as starting or finishing work
ACTIVE_STATUSES = {"in_progress", "done"}


@router.post("/", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_in: TaskCreate,
    session: AsyncSession = Depends(get_session),
) -> Task:
    """
    Create a new task.

    A task created with `is_recurring=true` is a recurrence template and
    must carry a valid pattern.
    """
    project = await session.get(Project, task_in.project_id)
    if not project:
        raise NotFoundError("Project", str(task_in.project_id))

    if task_in.is_recurring:
        if task_in.recurrence_pattern is None:
            raise InvalidRecurrenceError("A recurring task needs a recurrence pattern")
        validation = validate_rule(task_in.recurrence_pattern)
        if not validation.valid:
            raise InvalidRecurrenceError(validation.error)

    task_data = task_in.model_dump(exclude={"recurrence_pattern", "start_date", "due_date"})
    task = Task(
        **task_data,
        start_date=as_naive_utc(task_in.start_date),
        due_date=as_naive_utc(task_in.due_date),
        recurrence_pattern=(
            task_in.recurrence_pattern.model_dump(exclude_none=True)
            if task_in.recurrence_pattern else None
        ),
    )
    session.add(task)
    await session.flush()
    await session.refresh(task)

    logger.info(
        f"Created task: id={task.id} title='{task.title}' project={task.project_id}"
        + (" (recurrence template)" if task.is_recurring else "")
    )

    return task


@router.get("/", response_model=list[TaskRead])
async def list_tasks(
    project_id: uuid.UUID | None = None,
    original_task_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_session),
) -> list[Task]:
    """
    List tasks.

    Optionally filter by project_id, or by original_task_id to list the
    instances generated from a template.
    """
    query = select(Task)
    if project_id:
        query = query.where(Task.project_id == project_id)
    if original_task_id:
        query = query.where(Task.original_task_id == original_task_id)

    result = await session.execute(query.order_by(Task.created_at))
    tasks = list(result.scalars().all())

    logger.debug(f"Listed {len(tasks)} tasks" + (f" for project={project_id}" if project_id else ""))

    return tasks


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(
    task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> Task:
    """Get a task by ID."""
    task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", str(task_id))
    return task


@router.get("/{task_id}/status", response_model=DependencyStatusRead)
async def get_task_status(
    task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> DependencyStatusRead:
    """Blocked/ready status, recomputed from the project's current graph."""
    task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", str(task_id))

    all_tasks = await SqlTaskStore(session).list_project_tasks(task.project_id)
    snapshot = next(t for t in all_tasks if t.id == task_id)
    dependency_status = get_dependency_status(snapshot, all_tasks)

    return DependencyStatusRead(
        is_blocked=dependency_status.is_blocked,
        can_start=dependency_status.can_start,
        blocking_tasks=dependency_status.blocking_tasks,
        dependent_tasks=dependency_status.dependent_tasks,
        dependency_depth=get_dependency_depth(snapshot, all_tasks),
    )


@router.get("/{task_id}/unblocks", response_model=list[TaskRead])
async def get_unblocked_by(
    task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> list[TaskRead]:
    """Tasks whose only incomplete dependency is this one."""
    task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", str(task_id))

    all_tasks = await SqlTaskStore(session).list_project_tasks(task.project_id)
    return get_tasks_unblocked_by(task_id, all_tasks)


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: uuid.UUID,
    task_in: TaskUpdate,
    session: AsyncSession = Depends(get_session),
) -> Task:
    """
    Update a task.

    A blocked task cannot be started or completed. When completion
    changes, the cached blocked flag of every dependent is recomputed.
    """
    task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", str(task_id))

    update_data = task_in.model_dump(exclude_unset=True)
    logger.info(f"Updating task {task_id}: {update_data}")

    store = SqlTaskStore(session)

    starting = update_data.get("completed") is True or update_data.get("status") in ACTIVE_STATUSES
    if starting and task.dependencies:
        all_tasks = await store.list_project_tasks(task.project_id)
        snapshot = next(t for t in all_tasks if t.id == task_id)
        dependency_status = get_dependency_status(snapshot, all_tasks)
        if dependency_status.is_blocked:
            blockers = [str(t.id) for t in dependency_status.blocking_tasks if not t.completed]
            logger.warning(f"Task {task_id} is blocked by {blockers}")
            raise TaskBlockedError(str(task_id), blockers)

    completion_changed = "completed" in update_data and update_data["completed"] != task.completed

    if completion_changed and update_data["completed"] and task.dependent_task_ids:
        all_tasks = await store.list_project_tasks(task.project_id)
        unblocked = get_tasks_unblocked_by(task_id, all_tasks)
        if unblocked:
            logger.info(f"Completing task {task_id} unblocks {[str(t.id) for t in unblocked]}")

    for field, value in update_data.items():
        if field in ("start_date", "due_date"):
            value = as_naive_utc(value)
        setattr(task, field, value)
    task.updated_at = datetime.utcnow()

    await session.flush()

    if completion_changed and task.dependent_task_ids:
        await store.refresh_blocked_status(uuid.UUID(i) for i in task.dependent_task_ids)

    await session.refresh(task)
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> None:
    """
    Delete a task.

    All dependency edges touching the task are removed first so no
    dangling IDs remain in other tasks' mirrors. Deleting a template also
    deletes its instance records; the generated tasks themselves remain.
    """
    task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", str(task_id))

    logger.info(f"Deleting task {task_id}: '{task.title}'")

    store = SqlTaskStore(session)
    await remove_all_dependencies(store, task_id)
    if task.is_recurring:
        await delete_all_instances(store, task_id)

    await session.delete(task)
    await session.flush()
