"""Cron evaluation for schedules.

Expressions are evaluated in the schedule's own wall-clock timezone so a
"09:00 every weekday" schedule stays at 09:00 local time across DST
transitions. Everything entering and leaving this module is naive UTC,
matching what the models store.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from croniter import croniter

from jobengine.core.datetime_utils import is_valid_timezone, to_aware_utc, to_naive_utc

if TYPE_CHECKING:
    from jobengine.models.schedule import Schedule


class CronError(ValueError):
    """Raised for a malformed cron expression or an unknown timezone."""


# Candidates inspected before giving up on an expression that never advances
MAX_CANDIDATES = 8


def _zone(timezone: str) -> ZoneInfo:
    name = timezone or "UTC"
    if not is_valid_timezone(name):
        raise CronError(f"Unsupported timezone: {timezone!r}")
    return ZoneInfo(name)


def validate_schedule_cron(cron_expression: str, timezone: str) -> None:
    """Raise CronError unless both the expression and timezone are usable."""
    _zone(timezone)
    if not cron_expression or not croniter.is_valid(cron_expression):
        raise CronError(f"Invalid cron expression: {cron_expression!r}")


def _is_repeated_wall_time(fire_at: datetime, zone: ZoneInfo) -> bool:
    """True for the second occurrence of an ambiguous local time (DST fall-back)."""
    wall = fire_at.astimezone(zone).replace(tzinfo=None)
    first = wall.replace(tzinfo=zone, fold=0)
    return to_naive_utc(first) != to_naive_utc(fire_at)


def _fixed_hour(cron_expression: str) -> bool:
    fields = cron_expression.split()
    return len(fields) >= 2 and not fields[1].startswith("*")


def next_fire_time(cron_expression: str, timezone: str, reference: datetime) -> datetime:
    """
    Compute the next fire time strictly after a reference instant.

    When clocks fall back, a wall-clock time that occurs twice fires only
    on its first occurrence for expressions with a fixed hour; hourly
    wildcards keep firing through the repeated hour.

    Args:
        cron_expression: Standard cron expression (e.g. "*/5 * * * *")
        timezone: IANA timezone the expression is written in
        reference: Instant to start from (naive UTC or aware)

    Returns:
        Naive UTC datetime of the next fire time

    Raises:
        CronError: If the expression or timezone is invalid
    """
    validate_schedule_cron(cron_expression, timezone)
    zone = _zone(timezone)
    local_reference = to_aware_utc(reference).astimezone(zone)
    floor = to_naive_utc(reference)
    skip_repeated = _fixed_hour(cron_expression)

    try:
        candidates = croniter(cron_expression, local_reference)
        for _ in range(MAX_CANDIDATES):
            fire_at = candidates.get_next(datetime)
            if skip_repeated and _is_repeated_wall_time(fire_at, zone):
                continue
            result = to_naive_utc(fire_at)
            if result > floor:
                return result
    except (ValueError, KeyError) as e:
        raise CronError(f"Invalid cron expression: {cron_expression!r} ({e})") from e

    raise CronError(f"Cron expression {cron_expression!r} did not advance past {reference}")


def reference_for(schedule: "Schedule", now: datetime) -> datetime:
    """Instant the next fire time is computed from.

    A schedule that already fired advances from its previous scheduled
    time, not from now, so missed ticks are replayed one cadence step at a
    time instead of collapsing into one.
    """
    return schedule.next_run_at if schedule.next_run_at is not None else now
