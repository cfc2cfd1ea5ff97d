"""Five-field cron expression evaluator.

Format: ``minute hour day-of-month month day-of-week``.
Supports numbers, ``*``, lists (``,``), ranges (``-``) and steps (``/``).
All instants are evaluated in UTC; naive datetimes are treated as UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import MAXYEAR, datetime, timedelta, timezone

# ~1 year of minutes
MAX_ITERATIONS = 366 * 24 * 60


class CronError(ValueError):
    """Base class for cron expression errors."""


class InvalidFieldCountError(CronError):
    """Expression does not have exactly five fields."""


class InvalidStepError(CronError):
    """Step suffix is not a positive integer."""


class OutOfRangeError(CronError):
    """Value or range falls outside the field bounds."""


class InvalidRangeError(CronError):
    """Item is not a valid number or ``A-B`` range."""


class NoNextRunError(CronError):
    """No matching instant within the iteration cap."""


@dataclass(frozen=True)
class CronSchedule:
    """Parsed cron expression: immutable sets of allowed values."""

    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]
    dom_restricted: bool = False
    dow_restricted: bool = False

    def matches_day(self, d: datetime) -> bool:
        """POSIX day matching: OR when both day fields are restricted."""
        dom_ok = d.day in self.days_of_month
        # datetime.weekday(): Monday=0; cron: Sunday=0
        dow_ok = (d.weekday() + 1) % 7 in self.days_of_week
        if self.dom_restricted and self.dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def matches(self, d: datetime) -> bool:
        return (
            d.month in self.months
            and self.matches_day(d)
            and d.hour in self.hours
            and d.minute in self.minutes
        )


def _to_int(text: str, field: str) -> int:
    if not text.isascii() or not text.isdigit():
        raise InvalidRangeError(f"Invalid value '{text}' in field '{field}'")
    return int(text)


def parse_field(field: str, lo: int, hi: int) -> frozenset[int]:
    """Parse one cron field into the set of values it allows.

    Parameters
    ----------
    field : str
        Comma-separated items, each ``*``, ``N`` or ``A-B`` with an
        optional ``/S`` step suffix.
    lo, hi : int
        Inclusive bounds of the field.

    Raises
    ------
    InvalidStepError, OutOfRangeError, InvalidRangeError
    """
    values: set[int] = set()

    for part in field.split(","):
        base, slash, step_text = part.partition("/")
        step = 1
        if slash:
            if not step_text.isascii() or not step_text.isdigit():
                raise InvalidStepError(f"Invalid step value: '{step_text}'")
            step = int(step_text)
        if step < 1:
            raise InvalidStepError(f"Invalid step value: {step}")

        if base == "*":
            start, end = lo, hi
        elif "-" in base:
            first, _, last = base.partition("-")
            start = _to_int(first, field)
            end = _to_int(last, field)
            if start > end:
                raise InvalidRangeError(f"Invalid range: {base}")
            if start < lo or end > hi:
                raise OutOfRangeError(f"Range {base} out of bounds [{lo}-{hi}]")
        else:
            start = end = _to_int(base, field)
            if start < lo or start > hi:
                raise OutOfRangeError(f"Value {base} out of bounds [{lo}-{hi}]")

        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expr: str) -> CronSchedule:
    """Parse a 5-field cron expression into a CronSchedule."""
    parts = expr.split()
    if len(parts) != 5:
        raise InvalidFieldCountError(
            f"Invalid cron expression: expected 5 fields, got {len(parts)}"
        )

    minute, hour, dom, month, dow = parts
    return CronSchedule(
        minutes=parse_field(minute, 0, 59),
        hours=parse_field(hour, 0, 23),
        days_of_month=parse_field(dom, 1, 31),
        months=parse_field(month, 1, 12),
        days_of_week=parse_field(dow, 0, 6),
        dom_restricted=not dom.startswith("*"),
        dow_restricted=not dow.startswith("*"),
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_next_run(
    schedule: CronSchedule | str,
    after: datetime,
    max_iterations: int = MAX_ITERATIONS,
) -> datetime:
    """Return the first matching minute strictly after ``after`` (UTC).

    The search advances the coarsest unmatched field and resets the finer
    fields to their minimum.

    Raises
    ------
    NoNextRunError
        When nothing matches within ``max_iterations`` steps or before the
        end of ``datetime.max``.
    """
    if isinstance(schedule, str):
        expr = schedule
        schedule = parse_cron(schedule)
    else:
        expr = repr(schedule)

    d = _as_utc(after).replace(second=0, microsecond=0) + timedelta(minutes=1)

    for _ in range(max_iterations):
        if d.month not in schedule.months:
            if d.month == 12:
                if d.year == MAXYEAR:
                    break
                d = d.replace(year=d.year + 1, month=1, day=1, hour=0, minute=0)
            else:
                d = d.replace(month=d.month + 1, day=1, hour=0, minute=0)
            continue

        if not schedule.matches_day(d):
            if d.date() == datetime.max.date():
                break
            d = (d + timedelta(days=1)).replace(hour=0, minute=0)
            continue

        if d.hour not in schedule.hours:
            d = (d + timedelta(hours=1)).replace(minute=0)
            continue

        if d.minute not in schedule.minutes:
            d += timedelta(minutes=1)
            continue

        return d

    raise NoNextRunError(f"Could not find next run for cron expression: {expr}")
