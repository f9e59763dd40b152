#!/usr/bin/env python3
"""
Seed script to generate a large task graph for manual and performance testing.

Generates a DAG with a realistic project structure:
- Tasks created in "waves"; each task is blocked by 1-3 tasks of earlier waves
- Every edge goes through the dependency mutation service, so the graph is
  validated exactly as API writes are
- A handful of recurring templates with a few materialized instances

Usage:
    python -m scripts.seed [--nodes 200] [--clear] [--recurring 5]

Options:
    --nodes N       Number of tasks to generate (default: 200)
    --recurring N   Number of recurring templates (default: 5)
    --clear         Clear existing data before seeding
    --project       Name of the project to create
"""

import argparse
import asyncio
import random
import time
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete

from app.database import async_session_maker, init_db
from app.models import Project, Task, TaskDependency, RecurringTaskInstance
from app.schemas import RecurrencePattern, TaskRead
from app.services.dependencies import add_dependency
from app.services.graph import get_critical_path, get_topological_order
from app.services.instances import materialize_next_instance
from app.services.recurrence import get_pattern_description
from app.storage import SqlTaskStore

SAMPLE_PATTERNS = [
    RecurrencePattern(frequency="daily"),
    RecurrencePattern(frequency="weekly", days_of_week=[1, 3, 5]),
    RecurrencePattern(frequency="biweekly", max_occurrences=6),
    RecurrencePattern(frequency="monthly", day_of_month=31),
    RecurrencePattern(frequency="quarterly", end_date="2027-12-31"),
    RecurrencePattern(frequency="yearly"),
]


async def clear_data():
    """Clear all existing data."""
    print("Clearing existing data...")
    async with async_session_maker() as session:
        for model in (RecurringTaskInstance, TaskDependency, Task, Project):
            await session.execute(delete(model))
        await session.commit()
    print("Data cleared.")


async def create_project(name: str) -> Project:
    """Create a project for the tasks."""
    async with async_session_maker() as session:
        project = Project(name=name, description="Seeded task graph")
        session.add(project)
        await session.commit()
        await session.refresh(project)
        return project


def plan_waves(num_nodes: int) -> list[int]:
    """Wave sizes, roughly 20 tasks per wave."""
    num_waves = max(5, num_nodes // 20)
    per_wave = max(1, num_nodes // num_waves)
    sizes = [per_wave] * (num_waves - 1)
    sizes.append(num_nodes - per_wave * (num_waves - 1))
    return [size for size in sizes if size > 0]


async def generate_graph(project_id: uuid.UUID, num_nodes: int) -> tuple[int, int]:
    """
    Insert the tasks, then add the edges through `add_dependency`.

    Returns:
        Tuple of (accepted edges, rejected edges)
    """
    start_date = datetime(2026, 1, 5)
    accepted = rejected = 0

    async with async_session_maker() as session:
        store = SqlTaskStore(session)
        waves: list[list[Task]] = []

        print(f"Inserting {num_nodes} tasks...")
        for wave_index, size in enumerate(plan_waves(num_nodes)):
            wave = [
                Task(
                    title=f"Task W{wave_index:02d}-{i:03d}",
                    description=f"Wave {wave_index}, Task {i}",
                    start_date=start_date + timedelta(days=wave_index * 3),
                    due_date=start_date + timedelta(days=wave_index * 3 + 2),
                    project_id=project_id,
                )
                for i in range(size)
            ]
            session.add_all(wave)
            waves.append(wave)
        await session.commit()

        print("Adding dependencies...")
        all_tasks = await store.list_project_tasks(project_id)
        for wave_index in range(1, len(waves)):
            # Prefer recent waves but occasionally reach back further
            available_waves = list(range(max(0, wave_index - 3), wave_index))
            for task in waves[wave_index]:
                for _ in range(random.randint(1, 3)):
                    blocker = random.choice(waves[random.choice(available_waves)])
                    if str(blocker.id) in task.dependencies:
                        continue
                    result = await add_dependency(store, task.id, blocker.id, all_tasks)
                    if result.success:
                        all_tasks = result.tasks
                        accepted += 1
                    else:
                        rejected += 1
        await session.commit()

    return accepted, rejected


async def generate_recurring(project_id: uuid.UUID, count: int, instances: int = 3) -> None:
    """Create recurring templates and materialize their first instances."""
    async with async_session_maker() as session:
        store = SqlTaskStore(session)
        for i in range(count):
            pattern = SAMPLE_PATTERNS[i % len(SAMPLE_PATTERNS)]
            template = Task(
                title=f"Recurring {i:02d}",
                description=get_pattern_description(pattern),
                due_date=datetime(2026, 1, 31),
                project_id=project_id,
                is_recurring=True,
                recurrence_pattern=pattern.model_dump(exclude_none=True),
            )
            session.add(template)
            await session.flush()

            snapshot = TaskRead.model_validate(template)
            for _ in range(instances):
                result = await materialize_next_instance(store, snapshot)
                if not result.success:
                    print(f"  {template.title}: {result.error}")
                    break
            print(f"  {template.title}: {get_pattern_description(pattern)}")
        await session.commit()


async def get_stats(project_id: uuid.UUID):
    """Print statistics about the generated graph."""
    async with async_session_maker() as session:
        tasks = await SqlTaskStore(session).list_project_tasks(project_id)

    num_deps = sum(len(t.dependencies) for t in tasks)
    num_roots = sum(1 for t in tasks if not t.dependencies)
    num_leaves = sum(1 for t in tasks if not t.dependent_task_ids)

    start_time = time.time()
    order = get_topological_order(tasks)
    path = get_critical_path(tasks)
    graph_time = time.time() - start_time

    print("\n=== Graph Statistics ===")
    print(f"Tasks:         {len(tasks)}")
    print(f"Dependencies:  {num_deps}")
    print(f"Root tasks:    {num_roots} (no blockers)")
    print(f"Leaf tasks:    {num_leaves} (no dependents)")
    print(f"Avg deps/task: {num_deps / len(tasks) if tasks else 0:.2f}")
    print(f"Ordered:       {len(order)} tasks")
    print(f"Critical path: {len(path)} tasks, ending at {path[0].title if path else '-'}")
    print(f"Graph time:    {graph_time * 1000:.2f}ms")


async def main():
    parser = argparse.ArgumentParser(description="Seed the database with a task graph")
    parser.add_argument("--nodes", type=int, default=200, help="Number of tasks to create")
    parser.add_argument("--recurring", type=int, default=5, help="Number of recurring templates")
    parser.add_argument("--clear", action="store_true", help="Clear existing data first")
    parser.add_argument("--project", type=str, default="Seeded Graph", help="Project name")

    args = parser.parse_args()

    print("=== Taskgraph Seed Script ===")

    # Initialize database
    await init_db()

    if args.clear:
        await clear_data()

    project = await create_project(args.project)
    print(f"Created project: {project.name} ({project.id})")

    start_time = time.time()
    accepted, rejected = await generate_graph(project.id, args.nodes)
    print(f"Edges: {accepted} accepted, {rejected} rejected ({time.time() - start_time:.2f}s)")

    print("Creating recurring templates...")
    await generate_recurring(project.id, args.recurring)

    await get_stats(project.id)

    print("\n=== Seeding Complete ===")
    print(f"Project ID: {project.id}")


if __name__ == "__main__":
    asyncio.run(main())
