"""
Project routes for the Taskgraph API.
"""

import uuid
from dataclasses import asdict
from datetime import datetime
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.database import get_session
from app.models import Project
from app.schemas import (
    ProjectCreate,
    ProjectUpdate,
    ProjectRead,
    CriticalPathRead,
    DependencyStatsRead,
    TaskRead,
)
from app.services.graph import get_critical_path, get_dependency_stats, get_topological_order
from app.storage import SqlTaskStore
from app.exceptions import NotFoundError
from app.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _get_project_or_404(session: AsyncSession, project_id: uuid.UUID) -> Project:
    project = await session.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", str(project_id))
    return project


@router.post("/", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_in: ProjectCreate,
    session: AsyncSession = Depends(get_session),
) -> Project:
    """Create a new project."""
    project = Project(**project_in.model_dump())
    session.add(project)
    await session.flush()
    await session.refresh(project)

    logger.info(f"Created project: id={project.id} name='{project.name}'")

    return project


@router.get("/", response_model=list[ProjectRead])
async def list_projects(
    session: AsyncSession = Depends(get_session),
) -> list[Project]:
    """List all projects."""
    result = await session.execute(select(Project).order_by(Project.created_at))
    projects = list(result.scalars().all())

    logger.debug(f"Listed {len(projects)} projects")

    return projects


@router.get("/{project_id}", response_model=ProjectRead)
async def get_project(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> Project:
    """Get a project by ID."""
    return await _get_project_or_404(session, project_id)


@router.get("/{project_id}/tasks/ordered", response_model=list[TaskRead])
async def get_ordered_tasks(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> list[TaskRead]:
    """Tasks of the project with every blocker listed before the tasks it blocks."""
    await _get_project_or_404(session, project_id)
    tasks = await SqlTaskStore(session).list_project_tasks(project_id)
    return get_topological_order(tasks)


@router.get("/{project_id}/critical-path", response_model=CriticalPathRead)
async def get_project_critical_path(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> CriticalPathRead:
    """
    Longest blocking chain in the project.

    `tasks` starts at the task that ends the chain and walks back to its
    root blocker.
    """
    await _get_project_or_404(session, project_id)
    tasks = await SqlTaskStore(session).list_project_tasks(project_id)
    path = get_critical_path(tasks)

    logger.debug(f"Critical path of project {project_id}: {len(path)} tasks")

    return CriticalPathRead(project_id=project_id, length=len(path), tasks=path)


@router.get("/{project_id}/dependency-stats", response_model=DependencyStatsRead)
async def get_project_dependency_stats(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> DependencyStatsRead:
    """Task, edge and depth counts of the project's dependency graph."""
    await _get_project_or_404(session, project_id)
    tasks = await SqlTaskStore(session).list_project_tasks(project_id)
    stats = get_dependency_stats(tasks)

    return DependencyStatsRead(project_id=project_id, **asdict(stats))


@router.patch("/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: uuid.UUID,
    project_in: ProjectUpdate,
    session: AsyncSession = Depends(get_session),
) -> Project:
    """Update a project."""
    project = await _get_project_or_404(session, project_id)

    update_data = project_in.model_dump(exclude_unset=True)

    logger.info(f"Updating project {project_id}: {update_data}")

    for field, value in update_data.items():
        setattr(project, field, value)

    project.updated_at = datetime.utcnow()
    await session.flush()
    await session.refresh(project)
    return project


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> None:
    """Delete a project; its tasks, edges and instance records go with it (ON DELETE CASCADE)."""
    project = await _get_project_or_404(session, project_id)

    logger.info(f"Deleting project {project_id}: '{project.name}'")

    await session.delete(project)
    await session.flush()
