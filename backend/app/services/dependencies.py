"""
Dependency mutation service: the only writer of dependency edges.

Every edge addition is validated against the project's current graph
before it is persisted. Callers that may run concurrently must hold
`project_locks.hold(project_id)` from loading the task list until the
write is committed, so two individually valid edges cannot land together
and close a cycle.
"""

import uuid
from dataclasses import dataclass, field
from typing import Iterable

from app.schemas.task import TaskRead
from app.services.graph import link_tasks, validate_dependency
from app.services.locks import KeyedLocks
from app.storage import TaskStore
from app.logging_config import get_logger

logger = get_logger(__name__)

PERSISTENCE_ERROR = "Failed to create dependency"

project_locks = KeyedLocks("project")


@dataclass
class DependencyMutationResult:
    """Outcome of add_dependency; `tasks` reflects the mirror after a successful add."""
    success: bool
    error: str | None = None
    circular_dependencies: list[list[uuid.UUID]] | None = None
    tasks: list[TaskRead] = field(default_factory=list)


async def add_dependency(
    store: TaskStore,
    dependent_task_id: uuid.UUID,
    blocking_task_id: uuid.UUID,
    all_tasks: Iterable[TaskRead],
) -> DependencyMutationResult:
    """
    Validate and persist "dependent depends on blocking".

    On a structural rejection nothing is written. If the store fails the
    write, a generic persistence error is returned and `tasks` is the
    input unchanged.
    """
    all_tasks = list(all_tasks)

    validation = validate_dependency(dependent_task_id, blocking_task_id, all_tasks)
    if not validation.valid:
        logger.warning(
            f"Dependency rejected: {dependent_task_id} -> {blocking_task_id}: "
            f"{', '.join(validation.errors)}"
        )
        return DependencyMutationResult(
            success=False,
            error=", ".join(validation.errors),
            circular_dependencies=validation.circular_dependencies,
            tasks=all_tasks,
        )

    dependency = await store.create_task_dependency(dependent_task_id, blocking_task_id)
    if dependency is None:
        logger.error(f"Storage refused dependency {dependent_task_id} -> {blocking_task_id}")
        return DependencyMutationResult(success=False, error=PERSISTENCE_ERROR, tasks=all_tasks)

    logger.info(f"Created dependency: {dependent_task_id} depends on {blocking_task_id}")

    return DependencyMutationResult(
        success=True,
        tasks=link_tasks(all_tasks, dependent_task_id, blocking_task_id, "add"),
    )


async def remove_dependency(
    store: TaskStore,
    dependent_task_id: uuid.UUID,
    blocking_task_id: uuid.UUID,
) -> bool:
    removed = await store.delete_task_dependency(dependent_task_id, blocking_task_id)
    if removed:
        logger.info(f"Removed dependency: {dependent_task_id} no longer depends on {blocking_task_id}")
    return removed


async def remove_all_dependencies(store: TaskStore, task_id: uuid.UUID) -> bool:
    """Drop every edge touching `task_id`; used when the task is deleted."""
    return await store.delete_all_task_dependencies(task_id)
