"""
Recurrence routes for the Taskgraph API.

Pattern math (preview, next, should-generate, description) is stateless;
instance materialization goes through the per-template lock.
"""

import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_session
from app.models import Project, Task
from app.schemas import (
    CatchUpRequest,
    GenerateInstanceRequest,
    NextOccurrence,
    NextOccurrenceRequest,
    PatternRequest,
    PreviewRequest,
    RecurrencePattern,
    RecurringTaskInstanceRead,
    ShouldGenerateRequest,
    TaskRead,
)
from app.services.instances import (
    INSTANCE_PERSISTENCE_ERROR,
    INVALID_DATE_ERROR,
    NOT_A_TEMPLATE_ERROR,
    RECURRENCE_ENDED_ERROR,
    TASK_PERSISTENCE_ERROR,
    GenerationResult,
    check_and_generate_due_instances,
    delete_all_instances,
    get_task_instances,
    is_template,
    materialize_next_instance,
    template_locks,
)
from app.services.recurrence import (
    calculate_next_occurrence,
    get_pattern_description,
    get_upcoming_instances,
    should_generate_instance,
    to_iso,
    utcnow,
    validate_rule,
)
from app.storage import SqlTaskStore
from app.exceptions import (
    ErrorResponse,
    NotFoundError,
    InvalidRecurrenceError,
    NotATemplateError,
    PersistenceError,
    RecurrenceEndedError,
    ValidationError,
)
from app.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _require_valid(pattern: RecurrencePattern) -> None:
    validation = validate_rule(pattern)
    if not validation.valid:
        logger.warning(f"Invalid recurrence pattern rejected: {validation.error}")
        raise InvalidRecurrenceError(validation.error)


# =============================================================================
# Instances
# =============================================================================

@router.post(
    "/{template_id}/instances",
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def generate_instance(
    template_id: uuid.UUID,
    body: GenerateInstanceRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> dict:
    """
    Materialize the next occurrence of a recurrence template.

    `scheduled_date` and `occurrence_number` are computed from the latest
    stored instance when omitted. The occurrence number is read and the
    write committed while holding the template's lock.
    """
    body = body or GenerateInstanceRequest()

    task = await session.get(Task, template_id)
    if not task:
        raise NotFoundError("Task", str(template_id))
    template = TaskRead.model_validate(task)

    async with template_locks.hold(template_id):
        result = await materialize_next_instance(
            SqlTaskStore(session),
            template,
            scheduled_date=body.scheduled_date,
            occurrence_number=body.occurrence_number,
        )
        if not result.success:
            _raise_for_failure(template_id, result)

        await session.commit()

    return _generated(result)


@router.post("/catch-up", responses={404: {"model": ErrorResponse}})
async def catch_up_project(
    body: CatchUpRequest,
    session: AsyncSession = Depends(get_session),
) -> dict:
    """
    Materialize every missing occurrence of every template in a project
    up to `look_ahead_days` from now.

    Templates are caught up one at a time, each under its own lock and
    committed before the next one starts.
    """
    project = await session.get(Project, body.project_id)
    if not project:
        raise NotFoundError("Project", str(body.project_id))

    look_ahead_days = body.look_ahead_days
    if look_ahead_days is None:
        look_ahead_days = get_settings().default_look_ahead_days

    store = SqlTaskStore(session)
    templates = [t for t in await store.list_project_tasks(body.project_id) if is_template(t)]

    generated = []
    for template in templates:
        async with template_locks.hold(template.id):
            results = await check_and_generate_due_instances(
                store,
                template,
                look_ahead_days,
                limit=get_settings().upcoming_safety_cap,
            )
            if results and not results[-1].success:
                _raise_for_failure(template.id, results[-1])
            await session.commit()
        generated.extend(_generated(r) for r in results)

    logger.info(
        f"Catch-up of project {body.project_id}: {len(generated)} instance(s) "
        f"across {len(templates)} template(s)"
    )

    return {"generated": generated}


def _generated(result: GenerationResult) -> dict:
    return {
        "generated_task": result.generated_task,
        "instance": RecurringTaskInstanceRead.model_validate(result.instance),
        "next_scheduled_date": result.next_scheduled_date,
    }


def _raise_for_failure(template_id: uuid.UUID, result: GenerationResult) -> None:
    if result.error == NOT_A_TEMPLATE_ERROR:
        raise NotATemplateError(str(template_id))
    if result.error == RECURRENCE_ENDED_ERROR:
        raise RecurrenceEndedError(str(template_id))
    if result.error == INVALID_DATE_ERROR:
        raise ValidationError(INVALID_DATE_ERROR)
    if result.error in (INSTANCE_PERSISTENCE_ERROR, TASK_PERSISTENCE_ERROR):
        raise PersistenceError(result.error)
    raise InvalidRecurrenceError(result.error)


@router.get("/{template_id}/instances", response_model=list[RecurringTaskInstanceRead])
async def list_instances(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Instance records of a template, by occurrence number."""
    task = await session.get(Task, template_id)
    if not task:
        raise NotFoundError("Task", str(template_id))
    return await get_task_instances(SqlTaskStore(session), template_id)


@router.delete("/{template_id}/instances", status_code=status.HTTP_204_NO_CONTENT)
async def delete_instances(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> None:
    """Forget every instance record; numbering restarts at 1. Generated tasks are kept."""
    task = await session.get(Task, template_id)
    if not task:
        raise NotFoundError("Task", str(template_id))

    async with template_locks.hold(template_id):
        await delete_all_instances(SqlTaskStore(session), template_id)
        await session.commit()


@router.put("/{task_id}/pattern", response_model=TaskRead)
async def set_pattern(
    task_id: uuid.UUID,
    pattern: RecurrencePattern,
    session: AsyncSession = Depends(get_session),
) -> Task:
    """Turn a task into a recurrence template, or replace its pattern."""
    task = await session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task", str(task_id))
    if task.original_task_id is not None:
        raise NotATemplateError(str(task_id), message="A generated instance cannot become a template")

    _require_valid(pattern)

    task.is_recurring = True
    task.recurrence_pattern = pattern.model_dump(exclude_none=True)
    task.updated_at = datetime.utcnow()

    logger.info(f"Set recurrence on task {task_id}: {get_pattern_description(pattern)}")

    await session.flush()
    await session.refresh(task)
    return task


# =============================================================================
# Pattern math
# =============================================================================

@router.post("/preview")
async def preview(body: PreviewRequest) -> dict:
    """Upcoming occurrence dates from `from_date` (inclusive) over the look-ahead window."""
    _require_valid(body.pattern)
    settings = get_settings()

    look_ahead_days = body.look_ahead_days
    if look_ahead_days is None:
        look_ahead_days = settings.default_look_ahead_days

    try:
        dates = get_upcoming_instances(
            body.pattern,
            body.from_date or to_iso(utcnow()),
            look_ahead_days,
            safety_cap=settings.upcoming_safety_cap,
        )
    except (ValueError, OverflowError):
        raise ValidationError("from_date must be an ISO-8601 date")

    return {"dates": dates, "description": get_pattern_description(body.pattern)}


@router.post("/next", response_model=NextOccurrence, response_model_by_alias=True)
async def next_occurrence(body: NextOccurrenceRequest) -> NextOccurrence:
    _require_valid(body.pattern)
    try:
        return calculate_next_occurrence(
            body.pattern,
            body.from_date,
            occurrence_number=body.occurrence_number,
        )
    except (ValueError, OverflowError):
        raise ValidationError("from_date must be an ISO-8601 date")


@router.post("/should-generate")
async def should_generate(body: ShouldGenerateRequest) -> dict:
    """Whether a new instance is due now."""
    _require_valid(body.pattern)
    try:
        due = should_generate_instance(
            body.pattern,
            body.last_generated_date,
            occurrence_number=body.occurrence_number,
        )
    except (ValueError, OverflowError):
        raise ValidationError("last_generated_date must be an ISO-8601 date")
    return {"should_generate": due}


@router.post("/description")
async def describe(body: PatternRequest) -> dict:
    return {
        "description": get_pattern_description(body.pattern),
        "validation": validate_rule(body.pattern),
    }
