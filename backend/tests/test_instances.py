"""
Tests for instance materialization against the in-memory store.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from app.schemas import RecurrencePattern, TaskRead
from app.services.instances import (
    INSTANCE_PERSISTENCE_ERROR,
    INVALID_DATE_ERROR,
    NOT_A_TEMPLATE_ERROR,
    RECURRENCE_ENDED_ERROR,
    TASK_PERSISTENCE_ERROR,
    check_and_generate_due_instances,
    delete_all_instances,
    generate_task_instance,
    get_next_occurrence_number,
    get_task_instances,
    is_template,
    materialize_next_instance,
    template_locks,
)


def utc(year, month, day) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def make_template(**pattern_fields) -> TaskRead:
    pattern_fields.setdefault("frequency", "daily")
    return TaskRead(
        title="Standup",
        status="in_progress",
        is_recurring=True,
        recurrence_pattern=RecurrencePattern(**pattern_fields),
        due_date=utc(2026, 1, 1),
    )


class TestGenerateTaskInstance:

    @pytest.mark.asyncio
    async def test_success(self, memory_store):
        template = make_template()
        memory_store.add_tasks(template)

        result = await generate_task_instance(memory_store, template, "2026-01-01", 1)

        assert result.success
        assert result.error is None
        task = result.generated_task
        assert task.id != template.id
        assert task.title == template.title
        assert task.status == "in_progress"
        assert task.start_date == utc(2026, 1, 1)
        assert task.due_date == utc(2026, 1, 1)
        assert not task.is_recurring
        assert task.recurrence_pattern is None
        assert task.original_task_id == template.id
        assert task.occurrence_number == 1
        assert task.dependencies == []
        assert task.dependent_task_ids == []
        assert result.instance.generated_task_id == task.id
        assert result.instance.occurrence_number == 1
        assert result.next_scheduled_date == utc(2026, 1, 2).isoformat()
        assert memory_store.generated == [task]

    @pytest.mark.asyncio
    async def test_non_template_rejected(self, memory_store):
        task = TaskRead(title="One-off")

        result = await generate_task_instance(memory_store, task, "2026-01-01", 1)

        assert not result.success
        assert result.error == NOT_A_TEMPLATE_ERROR
        assert memory_store.instances == []
        assert memory_store.generated == []

    def test_is_template_needs_pattern(self):
        assert is_template(make_template())
        assert not is_template(TaskRead(title="Flag only", is_recurring=True))

    @pytest.mark.asyncio
    async def test_instance_write_failure_discards_task(self, memory_store):
        memory_store.fail_instance_writes = True

        result = await generate_task_instance(memory_store, make_template(), "2026-01-01", 1)

        assert not result.success
        assert result.error == INSTANCE_PERSISTENCE_ERROR
        assert result.generated_task is None
        assert memory_store.generated == []

    @pytest.mark.asyncio
    async def test_task_write_failure(self, memory_store):
        memory_store.fail_task_writes = True

        result = await generate_task_instance(memory_store, make_template(), "2026-01-01", 1)

        assert not result.success
        assert result.error == TASK_PERSISTENCE_ERROR

    @pytest.mark.asyncio
    async def test_invalid_date(self, memory_store):
        result = await generate_task_instance(memory_store, make_template(), "garbage", 1)

        assert not result.success
        assert result.error == INVALID_DATE_ERROR

    @pytest.mark.asyncio
    async def test_duplicate_occurrence_rejected(self, memory_store):
        template = make_template()
        await generate_task_instance(memory_store, template, "2026-01-01", 1)

        result = await generate_task_instance(memory_store, template, "2026-01-05", 1)

        assert not result.success
        assert result.error == INSTANCE_PERSISTENCE_ERROR
        assert len(memory_store.instances) == 1


class TestMaterializeNextInstance:

    @pytest.mark.asyncio
    async def test_numbering_and_dates_follow_latest_instance(self, memory_store):
        template = make_template()

        results = [await materialize_next_instance(memory_store, template) for _ in range(3)]

        assert [r.success for r in results] == [True, True, True]
        assert [r.instance.occurrence_number for r in results] == [1, 2, 3]
        assert [r.generated_task.due_date for r in results] == [
            utc(2026, 1, 1),
            utc(2026, 1, 2),
            utc(2026, 1, 3),
        ]
        assert await get_next_occurrence_number(memory_store, template.id) == 4

    @pytest.mark.asyncio
    async def test_explicit_date_and_number(self, memory_store):
        template = make_template()

        result = await materialize_next_instance(
            memory_store, template, scheduled_date="2026-06-01", occurrence_number=5
        )

        assert result.success
        assert result.instance.occurrence_number == 5
        assert result.generated_task.due_date == utc(2026, 6, 1)

    @pytest.mark.asyncio
    async def test_stops_at_max_occurrences(self, memory_store):
        template = make_template(max_occurrences=2)

        results = [await materialize_next_instance(memory_store, template) for _ in range(3)]

        assert [r.success for r in results] == [True, True, False]
        assert results[2].error == RECURRENCE_ENDED_ERROR
        assert len(memory_store.instances) == 2

    @pytest.mark.asyncio
    async def test_stops_after_end_date(self, memory_store):
        template = make_template(end_date="2026-01-02")

        results = [await materialize_next_instance(memory_store, template) for _ in range(3)]

        assert [r.success for r in results] == [True, True, False]
        assert results[2].error == RECURRENCE_ENDED_ERROR

    @pytest.mark.asyncio
    async def test_invalid_rule(self, memory_store):
        template = make_template(interval=0)

        result = await materialize_next_instance(memory_store, template)

        assert not result.success
        assert result.error == "Interval must be at least 1"

    @pytest.mark.asyncio
    async def test_delete_all_restarts_numbering(self, memory_store):
        template = make_template()
        await materialize_next_instance(memory_store, template)
        await materialize_next_instance(memory_store, template)

        assert [i.occurrence_number for i in await get_task_instances(memory_store, template.id)] == [1, 2]
        assert await delete_all_instances(memory_store, template.id)

        assert await get_task_instances(memory_store, template.id) == []
        assert await get_next_occurrence_number(memory_store, template.id) == 1


class TestConcurrentMaterialization:

    @pytest.mark.asyncio
    async def test_template_lock_serializes_numbering(self, memory_store):
        """
        Five materializations started together under the template lock
        each read the latest instance after the previous one was written.
        """
        template = make_template()

        async def locked():
            async with template_locks.hold(template.id):
                return await materialize_next_instance(memory_store, template)

        results = await asyncio.gather(*(locked() for _ in range(5)))

        assert all(r.success for r in results)
        assert sorted(r.instance.occurrence_number for r in results) == [1, 2, 3, 4, 5]
        assert len(template_locks) == 0

    @pytest.mark.asyncio
    async def test_unlocked_race_never_duplicates_occurrence(self, memory_store):
        """Without the lock, the storage uniqueness check still prevents duplicates."""
        template = make_template()

        results = await asyncio.gather(*(materialize_next_instance(memory_store, template) for _ in range(3)))

        numbers = [i.occurrence_number for i in memory_store.instances]
        assert len(numbers) == len(set(numbers))
        assert sum(r.success for r in results) == len(memory_store.instances)


class TestCatchUp:
    """Generating every missing occurrence up to a horizon."""

    @pytest.mark.asyncio
    async def test_fills_window_then_stops(self, memory_store):
        template = make_template()

        results = await check_and_generate_due_instances(
            memory_store, template, look_ahead_days=4, now=utc(2026, 1, 1)
        )

        assert [r.instance.occurrence_number for r in results] == [1, 2, 3, 4, 5]
        assert [r.generated_task.due_date for r in results] == [utc(2026, 1, d) for d in range(1, 6)]

        again = await check_and_generate_due_instances(
            memory_store, template, look_ahead_days=4, now=utc(2026, 1, 1)
        )
        assert again == []
        assert len(memory_store.instances) == 5

    @pytest.mark.asyncio
    async def test_continues_after_existing_instances(self, memory_store):
        template = make_template()
        await materialize_next_instance(memory_store, template)
        await materialize_next_instance(memory_store, template)

        results = await check_and_generate_due_instances(
            memory_store, template, look_ahead_days=3, now=utc(2026, 1, 1)
        )

        assert [r.instance.occurrence_number for r in results] == [3, 4]
        assert results[-1].generated_task.due_date == utc(2026, 1, 4)

    @pytest.mark.asyncio
    async def test_stops_when_rule_is_exhausted(self, memory_store):
        template = make_template(max_occurrences=2)

        results = await check_and_generate_due_instances(
            memory_store, template, look_ahead_days=30, now=utc(2026, 1, 1)
        )

        assert [r.success for r in results] == [True, True]

    @pytest.mark.asyncio
    async def test_limit(self, memory_store):
        results = await check_and_generate_due_instances(
            memory_store, make_template(), look_ahead_days=365, limit=3, now=utc(2026, 1, 1)
        )

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_nothing_due_before_first_date(self, memory_store):
        results = await check_and_generate_due_instances(
            memory_store, make_template(), look_ahead_days=7, now=utc(2025, 6, 1)
        )

        assert results == []

    @pytest.mark.asyncio
    async def test_failed_write_ends_the_run(self, memory_store):
        memory_store.fail_task_writes = True

        results = await check_and_generate_due_instances(
            memory_store, make_template(), look_ahead_days=10, now=utc(2026, 1, 1)
        )

        assert len(results) == 1
        assert not results[0].success
        assert results[0].error == TASK_PERSISTENCE_ERROR

    @pytest.mark.asyncio
    async def test_not_a_template(self, memory_store):
        results = await check_and_generate_due_instances(memory_store, TaskRead(title="One-off"))

        assert [r.error for r in results] == [NOT_A_TEMPLATE_ERROR]
        assert memory_store.instances == []
