"""
Instance materializer: turns a recurrence template into concrete tasks.

The occurrence number must be read from storage immediately before each
materialization; `materialize_next_instance` does that, and callers that
may race hold `template_locks.hold(template_id)` until the write is
committed. The unique (template, occurrence) constraint in storage turns
any remaining race into a failed write instead of a duplicate.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.models import RecurringTaskInstance
from app.schemas.task import TaskRead
from app.services.locks import KeyedLocks
from app.services.recurrence import (
    DEFAULT_LOOK_AHEAD_DAYS,
    DEFAULT_SAFETY_CAP,
    calculate_next_occurrence,
    has_reached_end,
    parse_iso,
    to_iso,
    utcnow,
    validate_rule,
)
from app.storage import TaskStore
from app.logging_config import get_logger

logger = get_logger(__name__)

NOT_A_TEMPLATE_ERROR = "Task is not a recurring task template"
INSTANCE_PERSISTENCE_ERROR = "Failed to create instance record"
TASK_PERSISTENCE_ERROR = "Failed to save generated task"
INVALID_DATE_ERROR = "Scheduled date must be an ISO-8601 date"
RECURRENCE_ENDED_ERROR = "Recurrence has ended"

template_locks = KeyedLocks("template")


@dataclass
class GenerationResult:
    success: bool
    generated_task: TaskRead | None = None
    instance: RecurringTaskInstance | None = None
    next_scheduled_date: str | None = None
    error: str | None = None


def is_template(task: TaskRead) -> bool:
    return task.is_recurring and task.recurrence_pattern is not None


def build_instance_task(template: TaskRead, scheduled_date: str, occurrence_number: int) -> TaskRead:
    """
    Shallow copy of the template for one occurrence.

    Status and completion are copied from the template as they are. The
    copy gets its own ID, does not recur, points back at the template and
    starts with no dependency edges.
    """
    scheduled = parse_iso(scheduled_date)
    now = datetime.utcnow()
    return template.model_copy(
        update={
            "id": uuid.uuid4(),
            "start_date": scheduled,
            "due_date": scheduled,
            "is_recurring": False,
            "recurrence_pattern": None,
            "original_task_id": template.id,
            "occurrence_number": occurrence_number,
            "dependencies": [],
            "dependent_task_ids": [],
            "is_blocked": False,
            "created_at": now,
            "updated_at": now,
        }
    )


async def generate_task_instance(
    store: TaskStore,
    template: TaskRead,
    scheduled_date: str,
    occurrence_number: int,
) -> GenerationResult:
    """
    Materialize occurrence `occurrence_number` of `template` on `scheduled_date`.

    1. Reject anything that is not a recurrence template
    2. Build the instance task
    3. Persist the instance record, then the task; on failure the built
       task is discarded
    4. Report the following due date (nothing is scheduled)
    """
    if not is_template(template):
        return GenerationResult(success=False, error=NOT_A_TEMPLATE_ERROR)

    try:
        generated_task = build_instance_task(template, scheduled_date, occurrence_number)
    except (ValueError, OverflowError):
        return GenerationResult(success=False, error=INVALID_DATE_ERROR)

    instance = await store.create_recurring_task_instance(
        template.id,
        generated_task.id,
        occurrence_number,
        to_iso(generated_task.due_date),
    )
    if instance is None:
        return GenerationResult(success=False, error=INSTANCE_PERSISTENCE_ERROR)

    if not await store.save_generated_task(generated_task):
        return GenerationResult(success=False, error=TASK_PERSISTENCE_ERROR)

    next_occurrence = calculate_next_occurrence(
        template.recurrence_pattern,
        scheduled_date,
        occurrence_number=occurrence_number + 1,
    )

    logger.info(
        f"Generated occurrence #{occurrence_number} of template {template.id} "
        f"on {scheduled_date} as task {generated_task.id}"
    )

    return GenerationResult(
        success=True,
        generated_task=generated_task,
        instance=instance,
        next_scheduled_date=next_occurrence.date if next_occurrence else None,
    )


def _following_date(
    template: TaskRead,
    latest: RecurringTaskInstance | None,
    now: datetime | None = None,
) -> str:
    """Occurrence after the latest instance, else the template's due date, else the next from now."""
    pattern = template.recurrence_pattern
    if latest is not None:
        return calculate_next_occurrence(pattern, to_iso(latest.scheduled_date)).date
    if template.due_date is not None:
        return to_iso(template.due_date)
    return calculate_next_occurrence(pattern, now=now).date


async def get_next_occurrence_number(store: TaskStore, template_task_id: uuid.UUID) -> int:
    latest = await store.get_latest_recurring_task_instance(template_task_id)
    return latest.occurrence_number + 1 if latest else 1


async def materialize_next_instance(
    store: TaskStore,
    template: TaskRead,
    scheduled_date: str | None = None,
    occurrence_number: int | None = None,
) -> GenerationResult:
    """
    Generate the next instance of `template`, filling in what is missing.

    - occurrence_number defaults to one past the latest stored instance
    - scheduled_date defaults to the occurrence after the latest instance,
      or the template's due date (else now) for the first instance
    - an exhausted rule (max_occurrences reached, or the date after
      end_date) yields RECURRENCE_ENDED_ERROR
    """
    if not is_template(template):
        return GenerationResult(success=False, error=NOT_A_TEMPLATE_ERROR)

    pattern = template.recurrence_pattern
    validation = validate_rule(pattern)
    if not validation.valid:
        return GenerationResult(success=False, error=validation.error)

    latest = await store.get_latest_recurring_task_instance(template.id)
    if occurrence_number is None:
        occurrence_number = latest.occurrence_number + 1 if latest else 1

    if scheduled_date is None:
        scheduled_date = _following_date(template, latest)

    try:
        ended = has_reached_end(pattern, occurrence_number - 1, scheduled_date)
    except (ValueError, OverflowError):
        return GenerationResult(success=False, error=INVALID_DATE_ERROR)

    if ended:
        logger.info(f"Template {template.id} is exhausted at occurrence #{occurrence_number}")
        return GenerationResult(success=False, error=RECURRENCE_ENDED_ERROR)

    return await generate_task_instance(store, template, scheduled_date, occurrence_number)


async def check_and_generate_due_instances(
    store: TaskStore,
    template: TaskRead,
    look_ahead_days: int = DEFAULT_LOOK_AHEAD_DAYS,
    *,
    limit: int = DEFAULT_SAFETY_CAP,
    now: datetime | None = None,
) -> list[GenerationResult]:
    """
    Catch a template up: materialize every occurrence that falls on or
    before `now + look_ahead_days` and does not exist yet.

    Each step re-reads the latest instance, so a series that was partly
    generated continues where it stopped and a second call right after
    the first generates nothing. Stops at the window end, when the rule
    is exhausted, after `limit` instances, or at the first failed write.
    The failed result, if any, is the last element of the returned list.

    Callers that may race hold `template_locks.hold(template.id)` across
    the call and the commit.
    """
    if not is_template(template):
        return [GenerationResult(success=False, error=NOT_A_TEMPLATE_ERROR)]

    validation = validate_rule(template.recurrence_pattern)
    if not validation.valid:
        return [GenerationResult(success=False, error=validation.error)]

    horizon = (now or utcnow()) + timedelta(days=look_ahead_days)
    results: list[GenerationResult] = []

    while len(results) < limit:
        latest = await store.get_latest_recurring_task_instance(template.id)
        scheduled_date = _following_date(template, latest, now)
        if parse_iso(scheduled_date) > horizon:
            break

        result = await materialize_next_instance(store, template, scheduled_date=scheduled_date)
        if not result.success:
            if result.error != RECURRENCE_ENDED_ERROR:
                results.append(result)
            break
        results.append(result)

    logger.info(
        f"Caught up template {template.id}: "
        f"{sum(r.success for r in results)} instance(s) through {to_iso(horizon)}"
    )
    return results


async def get_task_instances(
    store: TaskStore, template_task_id: uuid.UUID
) -> list[RecurringTaskInstance]:
    return await store.get_recurring_task_instances(template_task_id)


async def delete_all_instances(store: TaskStore, template_task_id: uuid.UUID) -> bool:
    deleted = await store.delete_all_recurring_task_instances(template_task_id)
    if deleted:
        logger.info(f"Deleted all instance records of template {template_task_id}")
    return deleted
