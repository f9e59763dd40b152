"""
Pytest configuration and fixtures for Taskgraph tests.
"""

import asyncio
import os
import uuid

# Point the app at SQLite before app.config caches its settings
os.environ.setdefault("TASKGRAPH_DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from app.main import app
from app.database import enable_sqlite_foreign_keys, get_session
from app.models import RecurringTaskInstance, TaskDependency
from app.schemas import TaskRead
from app.services.graph import link_tasks
from app.services.recurrence import parse_iso


# In-memory database shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    # Drop all tables after tests
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(test_engine):
    """Create an async test client with test database."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_session():
        async with async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def project(client):
    """A project created through the API."""
    response = await client.post("/projects/", json={"name": "Test Project"})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def make_task(client, project):
    """Factory creating tasks in `project` through the API."""

    async def _make_task(title: str, **fields) -> dict:
        payload = {"title": title, "project_id": project["id"], **fields}
        response = await client.post("/tasks/", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _make_task


# =============================================================================
# In-memory storage for service-level tests
# =============================================================================

class InMemoryTaskStore:
    """
    TaskStore kept in dicts.

    The `fail_*` switches make the corresponding write report failure.
    Reads yield to the event loop once so concurrent callers interleave.
    """

    def __init__(self, tasks: list[TaskRead] | None = None):
        self.tasks: dict[uuid.UUID, TaskRead] = {t.id: t for t in tasks or []}
        self.edges: dict[tuple[uuid.UUID, uuid.UUID], TaskDependency] = {}
        self.instances: list[RecurringTaskInstance] = []
        self.generated: list[TaskRead] = []
        self.fail_dependency_writes = False
        self.fail_instance_writes = False
        self.fail_task_writes = False

    def add_tasks(self, *tasks: TaskRead) -> None:
        for task in tasks:
            self.tasks[task.id] = task

    def task_list(self) -> list[TaskRead]:
        return list(self.tasks.values())

    def _relink(self, dependent_task_id, blocking_task_id, action) -> None:
        updated = link_tasks(self.task_list(), dependent_task_id, blocking_task_id, action)
        self.tasks = {t.id: t for t in updated}

    async def create_task_dependency(self, dependent_task_id, blocking_task_id):
        if self.fail_dependency_writes:
            return None
        key = (dependent_task_id, blocking_task_id)
        if key in self.edges or dependent_task_id not in self.tasks or blocking_task_id not in self.tasks:
            return None
        edge = TaskDependency(dependent_task_id=dependent_task_id, blocking_task_id=blocking_task_id)
        self.edges[key] = edge
        self._relink(dependent_task_id, blocking_task_id, "add")
        return edge

    async def delete_task_dependency(self, dependent_task_id, blocking_task_id):
        if self.edges.pop((dependent_task_id, blocking_task_id), None) is None:
            return False
        self._relink(dependent_task_id, blocking_task_id, "remove")
        return True

    async def delete_all_task_dependencies(self, task_id):
        for dependent_task_id, blocking_task_id in list(self.edges):
            if task_id in (dependent_task_id, blocking_task_id):
                await self.delete_task_dependency(dependent_task_id, blocking_task_id)
        return True

    async def get_task_dependencies(self, task_id):
        return [edge for (dependent, _), edge in self.edges.items() if dependent == task_id]

    async def get_dependent_tasks(self, task_id):
        return [self.tasks[dependent] for (dependent, blocking) in self.edges if blocking == task_id]

    async def create_recurring_task_instance(
        self, template_task_id, generated_task_id, occurrence_number, scheduled_date
    ):
        await asyncio.sleep(0)
        if self.fail_instance_writes:
            return None
        if any(
            i.template_task_id == template_task_id and i.occurrence_number == occurrence_number
            for i in self.instances
        ):
            return None
        instance = RecurringTaskInstance(
            template_task_id=template_task_id,
            generated_task_id=generated_task_id,
            occurrence_number=occurrence_number,
            scheduled_date=parse_iso(scheduled_date),
        )
        self.instances.append(instance)
        return instance

    async def get_recurring_task_instances(self, template_task_id):
        return sorted(
            (i for i in self.instances if i.template_task_id == template_task_id),
            key=lambda i: i.occurrence_number,
        )

    async def get_latest_recurring_task_instance(self, template_task_id):
        await asyncio.sleep(0)
        instances = await self.get_recurring_task_instances(template_task_id)
        return instances[-1] if instances else None

    async def delete_all_recurring_task_instances(self, template_task_id):
        self.instances = [i for i in self.instances if i.template_task_id != template_task_id]
        return True

    async def save_generated_task(self, task):
        if self.fail_task_writes:
            return False
        self.tasks[task.id] = task
        self.generated.append(task)
        return True


@pytest.fixture
def memory_store():
    return InMemoryTaskStore()
