"""
Recurrence rules: validation, next-occurrence arithmetic and schedule previews.

All dates cross this module's boundary as ISO-8601 strings. Internally
they are timezone-aware UTC datetimes: naive input is read as UTC and
date-only input as midnight UTC. Month and year steps use
dateutil.relativedelta, which clamps to the end of shorter months
(Jan 31 + 1 month = Feb 28/29).

Every function here is pure apart from reading the clock when no `now`
or `from_date` is supplied. A pattern that fails `validate_rule` never
reaches the date arithmetic: the calculators return None / [] / False.
"""

from calendar import monthrange
from datetime import datetime, timedelta, timezone

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta
from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule

from app.schemas.recurrence import Frequency, NextOccurrence, RecurrencePattern, RuleValidation
from app.logging_config import get_logger

logger = get_logger(__name__)

# Indexed by days_of_week values, 0 = Sunday
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
WEEKDAYS = [SU, MO, TU, WE, TH, FR, SA]

# Upper bound on preview length when the rule itself has no max_occurrences
DEFAULT_SAFETY_CAP = 100
DEFAULT_LOOK_AHEAD_DAYS = 30


# =============================================================================
# ISO helpers
# =============================================================================

def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime. Raises ValueError."""
    parsed = isoparse(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Rule validation
# =============================================================================

def validate_rule(pattern: RecurrencePattern) -> RuleValidation:
    """
    Check a pattern before it is stored or evaluated.

    - interval must be >= 1
    - weekly with days_of_week needs at least one day, each 0-6
    - monthly day_of_month must be 1-31
    - max_occurrences must be >= 1 and end_date must parse
    - end_date and max_occurrences are mutually exclusive
    """
    if pattern.interval < 1:
        return RuleValidation(valid=False, error="Interval must be at least 1")

    if pattern.frequency == "weekly" and pattern.days_of_week is not None:
        if len(pattern.days_of_week) == 0:
            return RuleValidation(valid=False, error="Must select at least one day of week")
        if any(day < 0 or day > 6 for day in pattern.days_of_week):
            return RuleValidation(valid=False, error="Invalid day of week")

    if pattern.frequency == "monthly" and pattern.day_of_month is not None:
        if pattern.day_of_month < 1 or pattern.day_of_month > 31:
            return RuleValidation(valid=False, error="Day of month must be between 1-31")

    if pattern.max_occurrences is not None and pattern.max_occurrences < 1:
        return RuleValidation(valid=False, error="Max occurrences must be at least 1")

    if pattern.end_date is not None:
        try:
            parse_iso(pattern.end_date)
        except (ValueError, OverflowError):
            return RuleValidation(valid=False, error="End date must be an ISO-8601 date")

    if pattern.end_date is not None and pattern.max_occurrences is not None:
        return RuleValidation(valid=False, error="Cannot specify both end date and occurrences")

    return RuleValidation(valid=True)


def create_simple_rule(frequency: Frequency, end_date: str | None = None) -> RecurrencePattern:
    """Every day/week/... with no day selection."""
    return RecurrencePattern(frequency=frequency, interval=1, end_date=end_date)


# =============================================================================
# Date arithmetic
# =============================================================================

def _next_selected_weekday(current: datetime, days: list[int], interval: int) -> datetime | None:
    """
    First selected weekday after `current` in a week that is a whole
    number of `interval` weeks after `current`'s week. Weeks start on
    Sunday. Nothing further than 7 * interval days ahead is returned.
    """
    rule = rrule(
        WEEKLY,
        interval=interval,
        byweekday=[WEEKDAYS[day] for day in sorted(set(days))],
        wkst=SU,
        dtstart=current,
    )
    found = rule.after(current)
    if found is None or found - current > timedelta(weeks=interval):
        return None
    # rrule drops microseconds from dtstart
    return found.replace(microsecond=current.microsecond)


def advance(current: datetime, pattern: RecurrencePattern) -> datetime:
    """
    One step of the schedule after `current`.

    The pattern must already have passed `validate_rule`.
    """
    interval = pattern.interval
    frequency = pattern.frequency

    if frequency == "daily":
        return current + timedelta(days=interval)

    if frequency == "weekly":
        if pattern.days_of_week:
            found = _next_selected_weekday(current, pattern.days_of_week, interval)
            if found is not None:
                return found
        return current + timedelta(weeks=interval)

    if frequency == "biweekly":
        return current + timedelta(weeks=2 * interval)

    if frequency == "monthly":
        result = current + relativedelta(months=interval)
        if pattern.day_of_month:
            days_in_month = monthrange(result.year, result.month)[1]
            result = result.replace(day=min(pattern.day_of_month, days_in_month))
        return result

    if frequency == "quarterly":
        return current + relativedelta(months=3 * interval)

    if frequency == "yearly":
        return current + relativedelta(years=interval)

    raise ValueError(f"Unknown frequency: {frequency}")


def _end_date(pattern: RecurrencePattern) -> datetime | None:
    return parse_iso(pattern.end_date) if pattern.end_date else None


def _occurrences_exhausted(pattern: RecurrencePattern, occurrence_number: int | None) -> bool:
    return (
        pattern.max_occurrences is not None
        and occurrence_number is not None
        and occurrence_number >= pattern.max_occurrences
    )


# =============================================================================
# Scheduler
# =============================================================================

def calculate_next_occurrence(
    pattern: RecurrencePattern,
    from_date: str | None = None,
    *,
    occurrence_number: int = 1,
    now: datetime | None = None,
) -> NextOccurrence | None:
    """
    Next date of the schedule after `from_date` (default: now).

    `occurrence_number` is the position the returned date would take; it
    is echoed back and used for the max_occurrences check. The result is
    flagged `is_last_occurrence` when the date falls after end_date or the
    occurrence reaches max_occurrences. Callers must not materialize an
    instance for a date after end_date.

    Returns None when the pattern is invalid.
    """
    validation = validate_rule(pattern)
    if not validation.valid:
        logger.debug(f"Not computing next occurrence for invalid rule: {validation.error}")
        return None

    base = parse_iso(from_date) if from_date else (now or utcnow())
    next_date = advance(base, pattern)

    end_date = _end_date(pattern)
    is_last = (end_date is not None and next_date > end_date) or _occurrences_exhausted(
        pattern, occurrence_number
    )

    return NextOccurrence(
        date=to_iso(next_date),
        occurrence_number=occurrence_number,
        is_last_occurrence=is_last,
    )


def has_reached_end(
    pattern: RecurrencePattern,
    occurrence_number: int,
    current_date: str,
) -> bool:
    """True once `occurrence_number` hits max_occurrences or `current_date` is past end_date."""
    if _occurrences_exhausted(pattern, occurrence_number):
        return True
    end_date = _end_date(pattern)
    return end_date is not None and parse_iso(current_date) > end_date


def should_generate_instance(
    pattern: RecurrencePattern,
    last_generated_date: str | None = None,
    *,
    occurrence_number: int | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Whether a new instance is due.

    `occurrence_number` is the number of the latest generated instance,
    if known. Once the rule is exhausted (max_occurrences reached, or the
    next due date is after end_date) this always returns False. With no
    previous instance it returns True. Otherwise it returns True only once
    `now` reaches the next due date after `last_generated_date`, so
    repeated calls before that date keep returning False.
    """
    if not validate_rule(pattern).valid:
        return False

    if _occurrences_exhausted(pattern, occurrence_number):
        return False

    if not last_generated_date:
        return True

    next_due = advance(parse_iso(last_generated_date), pattern)

    end_date = _end_date(pattern)
    if end_date is not None and next_due > end_date:
        return False

    return (now or utcnow()) >= next_due


def get_upcoming_instances(
    pattern: RecurrencePattern,
    from_date: str,
    look_ahead_days: int = DEFAULT_LOOK_AHEAD_DAYS,
    *,
    safety_cap: int = DEFAULT_SAFETY_CAP,
) -> list[str]:
    """
    Occurrence dates from `from_date` (inclusive) up to the look-ahead
    window end (exclusive).

    Stops early at max_occurrences (or `safety_cap` when the rule has
    none) and after end_date. Each call recomputes from scratch.
    """
    if not validate_rule(pattern).valid:
        return []

    start = parse_iso(from_date)
    window_end = start + timedelta(days=look_ahead_days)
    end_date = _end_date(pattern)
    limit = pattern.max_occurrences or safety_cap

    upcoming: list[str] = []
    current = start
    while len(upcoming) < limit and current < window_end:
        if end_date is not None and current > end_date:
            break
        upcoming.append(to_iso(current))
        current = advance(current, pattern)

    return upcoming


# =============================================================================
# Description
# =============================================================================

def _every(count: int, unit: str, single: str) -> str:
    return single if count == 1 else f"Every {count} {unit}s"


def get_pattern_description(pattern: RecurrencePattern | None) -> str:
    """
    Human-readable sentence for a pattern, e.g.
    "Every 2 weeks on Monday, Wednesday until Jan 1, 2026".

    The wording follows `advance` exactly: day names in weekday order,
    biweekly/quarterly spelled out as their week/month counts.
    """
    if pattern is None:
        return "Does not repeat"

    interval = pattern.interval
    frequency = pattern.frequency
    parts: list[str] = []

    if frequency == "daily":
        parts.append(_every(interval, "day", "Daily"))
    elif frequency == "weekly":
        parts.append(_every(interval, "week", "Weekly"))
        if pattern.days_of_week:
            days = sorted(set(d for d in pattern.days_of_week if 0 <= d <= 6))
            parts.append("on " + ", ".join(DAY_NAMES[d] for d in days))
    elif frequency == "biweekly":
        parts.append(f"Every {2 * interval} weeks")
    elif frequency == "monthly":
        parts.append(_every(interval, "month", "Monthly"))
        if pattern.day_of_month:
            parts.append(f"on day {pattern.day_of_month}")
    elif frequency == "quarterly":
        parts.append("Quarterly" if interval == 1 else f"Every {3 * interval} months")
    elif frequency == "yearly":
        parts.append(_every(interval, "year", "Yearly"))

    if pattern.end_date:
        try:
            end = parse_iso(pattern.end_date)
            parts.append(f"until {end:%b} {end.day}, {end.year}")
        except (ValueError, OverflowError):
            parts.append(f"until {pattern.end_date}")
    elif pattern.max_occurrences:
        noun = "occurrence" if pattern.max_occurrences == 1 else "occurrences"
        parts.append(f"for {pattern.max_occurrences} {noun}")

    return " ".join(parts)
