"""
Dependency routes for the Taskgraph API.
"""

import uuid
from typing import Literal
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_session
from app.models import Task, TaskDependency
from app.schemas import (
    DependencyCreate,
    DependencyRead,
    DependencyStatusRead,
    DependencyValidationRead,
    TaskRead,
)
from app.services.dependencies import PERSISTENCE_ERROR, add_dependency, project_locks, remove_dependency
from app.services.graph import get_dependency_status, validate_dependency
from app.storage import SqlTaskStore
from app.exceptions import (
    ErrorResponse,
    NotFoundError,
    CycleDetectedError,
    DuplicateDependencyError,
    SelfDependencyError,
    CrossProjectDependencyError,
    PersistenceError,
)
from app.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _load_edge_endpoints(
    session: AsyncSession,
    dep_in: DependencyCreate,
) -> tuple[Task, Task]:
    """Both tasks must exist and belong to the project named in the request."""
    dependent = await session.get(Task, dep_in.dependent_task_id)
    blocking = await session.get(Task, dep_in.blocking_task_id)

    if not dependent:
        raise NotFoundError("Dependent task", str(dep_in.dependent_task_id))
    if not blocking:
        raise NotFoundError("Blocking task", str(dep_in.blocking_task_id))

    if dependent.project_id != dep_in.project_id or blocking.project_id != dep_in.project_id:
        logger.warning(
            f"Cross-project dependency rejected: "
            f"{dependent.project_id} -> {blocking.project_id} (scope {dep_in.project_id})"
        )
        raise CrossProjectDependencyError(str(dependent.project_id), str(blocking.project_id))

    return dependent, blocking


@router.post(
    "/",
    response_model=DependencyRead,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_dependency(
    dep_in: DependencyCreate,
    session: AsyncSession = Depends(get_session),
) -> TaskDependency:
    """
    Create a new dependency: `dependent_task_id` is blocked by `blocking_task_id`.

    Validation and the write happen under the project's mutation lock and
    are committed before the lock is released.
    """
    logger.info(f"Creating dependency: {dep_in.dependent_task_id} -> {dep_in.blocking_task_id}")

    if dep_in.dependent_task_id == dep_in.blocking_task_id:
        logger.warning(f"Self-dependency rejected: {dep_in.dependent_task_id}")
        raise SelfDependencyError(str(dep_in.dependent_task_id))

    await _load_edge_endpoints(session, dep_in)
    store = SqlTaskStore(session)

    async with project_locks.hold(dep_in.project_id):
        existing = await session.get(
            TaskDependency,
            (dep_in.dependent_task_id, dep_in.blocking_task_id),
        )
        if existing:
            logger.warning(
                f"Duplicate dependency rejected: {dep_in.dependent_task_id} -> {dep_in.blocking_task_id}"
            )
            raise DuplicateDependencyError(
                str(dep_in.dependent_task_id),
                str(dep_in.blocking_task_id),
            )

        all_tasks = await store.list_project_tasks(dep_in.project_id)
        result = await add_dependency(
            store,
            dep_in.dependent_task_id,
            dep_in.blocking_task_id,
            all_tasks,
        )

        if not result.success:
            if result.circular_dependencies:
                raise CycleDetectedError(
                    str(dep_in.dependent_task_id),
                    str(dep_in.blocking_task_id),
                    message=result.error,
                    cycles=[[str(i) for i in cycle] for cycle in result.circular_dependencies],
                )
            raise PersistenceError(result.error or PERSISTENCE_ERROR)

        await session.commit()

    dependency = await session.get(
        TaskDependency,
        (dep_in.dependent_task_id, dep_in.blocking_task_id),
    )
    return dependency


@router.post("/validate", response_model=DependencyValidationRead)
async def validate_new_dependency(
    dep_in: DependencyCreate,
    session: AsyncSession = Depends(get_session),
) -> DependencyValidationRead:
    """Dry run: would this edge be accepted? Nothing is written."""
    if dep_in.dependent_task_id != dep_in.blocking_task_id:
        await _load_edge_endpoints(session, dep_in)

    all_tasks = await SqlTaskStore(session).list_project_tasks(dep_in.project_id)
    result = validate_dependency(dep_in.dependent_task_id, dep_in.blocking_task_id, all_tasks)

    return DependencyValidationRead(
        valid=result.valid,
        errors=result.errors,
        circular_dependencies=result.circular_dependencies,
    )


@router.get("/")
async def get_dependencies(
    task_id: uuid.UUID,
    type: Literal["blocking", "dependent", "status"] = Query(default="blocking"),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """
    Query the dependency graph around one task.

    - type=blocking: edges where the task is the dependent
    - type=dependent: tasks waiting on this task
    - type=status: blocked/ready status computed from the task's project
    """
    task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", str(task_id))

    store = SqlTaskStore(session)

    if type == "blocking":
        dependencies = await store.get_task_dependencies(task_id)
        return {"dependencies": [DependencyRead.model_validate(d) for d in dependencies]}

    if type == "dependent":
        dependents = await store.get_dependent_tasks(task_id)
        return {"dependents": [TaskRead.model_validate(t) for t in dependents]}

    all_tasks = await store.list_project_tasks(task.project_id)
    snapshot = next(t for t in all_tasks if t.id == task_id)
    dependency_status = get_dependency_status(snapshot, all_tasks)
    return {
        "status": DependencyStatusRead(
            is_blocked=dependency_status.is_blocked,
            can_start=dependency_status.can_start,
            blocking_tasks=dependency_status.blocking_tasks,
            dependent_tasks=dependency_status.dependent_tasks,
        )
    }


@router.delete(
    "/{dependent_task_id}/{blocking_task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_dependency(
    dependent_task_id: uuid.UUID,
    blocking_task_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> None:
    """
    Delete a dependency.

    The dependent task's cached blocked flag is recomputed.
    """
    store = SqlTaskStore(session)
    removed = await remove_dependency(store, dependent_task_id, blocking_task_id)
    if not removed:
        raise NotFoundError("Dependency", f"{dependent_task_id}/{blocking_task_id}")
