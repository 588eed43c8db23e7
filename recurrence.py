"""
Recurrence rules: normalization, next-occurrence calculation and series identity.

Weekdays are ISO weekdays (Monday=1 .. Sunday=7). A weekday set is a 7-bit mask
where weekday w is bit (w - 1), so 127 means every day.
Everything in this module is pure: no database access, no clock.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict

from date_utils import civil_date
from errors import ValidationError

PATTERNS = ("daily", "weekly", "monthly")
ALL_DAYS_MASK = 127

REPEAT_FIELDS = (
    "repeat_enabled",
    "repeat_pattern",
    "repeat_days",
    "repeat_weekly_day",
    "repeat_monthly_day",
)


class RecurrenceSpec(BaseModel):
    """A normalized recurrence rule, exactly as it is stored on a task row."""

    model_config = ConfigDict(frozen=True)

    repeat_enabled: bool = False
    repeat_pattern: str | None = None
    repeat_days: int | None = None
    repeat_weekly_day: int | None = None
    repeat_monthly_day: int | None = None

    @classmethod
    def disabled(cls) -> "RecurrenceSpec":
        return cls()

    @property
    def is_active(self) -> bool:
        return self.repeat_enabled and self.repeat_pattern is not None

    def as_columns(self) -> dict[str, Any]:
        return self.model_dump()


def weekday_bit(weekday: int) -> int:
    return 1 << (weekday - 1)


def mask_for_weekdays(weekdays: Iterable[int]) -> int:
    mask = 0
    for w in weekdays:
        if not 1 <= w <= 7:
            raise ValidationError("repeat_days", "weekdays must be between 1 and 7")
        mask |= weekday_bit(w)
    return mask


def weekdays_in_mask(mask: int) -> list[int]:
    return [w for w in range(1, 8) if mask & weekday_bit(w)]


def weekday_from_mask(mask: int | None) -> int | None:
    """The weekday a single-bit mask stands for; None for empty or multi-day masks."""
    if mask is None or not 1 <= mask <= ALL_DAYS_MASK or mask & (mask - 1):
        return None
    return mask.bit_length()


def _month_max_day(year: int, month: int) -> int:
    if month in (4, 6, 9, 11):
        return 30
    if month == 2:
        return 29 if (year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)) else 28
    return 31


def _int_field(value: Any, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer")
    return value


def _pattern(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    p = value.strip().lower()
    return p if p in PATTERNS else None


def normalize_recurrence(
    repeat_enabled: bool,
    repeat_pattern: str | None,
    repeat_days: int | None,
    repeat_weekly_day: int | None,
    repeat_monthly_day: int | None,
    reference_date: date,
) -> RecurrenceSpec:
    """
    Validate a recurrence and fill in its defaults from reference_date (the task's start date).

    Disabled recurrence clears every repeat field whatever else was passed.
    Raises ValidationError naming the offending field.
    """
    if not repeat_enabled:
        return RecurrenceSpec.disabled()
    pattern = _pattern(repeat_pattern)
    if pattern is None:
        raise ValidationError("repeat_pattern", f"must be one of: {', '.join(PATTERNS)}")
    reference_date = civil_date(reference_date)
    days = _int_field(repeat_days, "repeat_days")
    weekly_day = _int_field(repeat_weekly_day, "repeat_weekly_day")
    monthly_day = _int_field(repeat_monthly_day, "repeat_monthly_day")

    if pattern == "daily":
        if days is None:
            days = ALL_DAYS_MASK
        if not 1 <= days <= ALL_DAYS_MASK:
            raise ValidationError("repeat_days", f"must be between 1 and {ALL_DAYS_MASK}")
        return RecurrenceSpec(repeat_enabled=True, repeat_pattern="daily", repeat_days=days)

    if pattern == "weekly":
        if weekly_day is None:
            weekly_day = weekday_from_mask(days)
        if weekly_day is None:
            weekly_day = reference_date.isoweekday()
        if not 1 <= weekly_day <= 7:
            raise ValidationError("repeat_weekly_day", "must be between 1 and 7")
        return RecurrenceSpec(
            repeat_enabled=True,
            repeat_pattern="weekly",
            repeat_days=weekday_bit(weekly_day),
            repeat_weekly_day=weekly_day,
        )

    if monthly_day is None:
        monthly_day = reference_date.day
    if not 1 <= monthly_day <= 31:
        raise ValidationError("repeat_monthly_day", "must be between 1 and 31")
    return RecurrenceSpec(repeat_enabled=True, repeat_pattern="monthly", repeat_monthly_day=monthly_day)


def merge_recurrence(existing: Mapping[str, Any], changes: Mapping[str, Any], reference_date: date) -> RecurrenceSpec:
    """Normalize the new-over-existing recurrence fields of a task row."""
    merged = {f: (changes[f] if f in changes else existing.get(f)) for f in REPEAT_FIELDS}
    return normalize_recurrence(
        bool(merged["repeat_enabled"]),
        merged["repeat_pattern"],
        merged["repeat_days"],
        merged["repeat_weekly_day"],
        merged["repeat_monthly_day"],
        reference_date,
    )


def spec_from_row(row: Mapping[str, Any]) -> RecurrenceSpec:
    """Authoritative normalization of a stored row against its own start date."""
    return merge_recurrence(row, {}, civil_date(row["start_date"]))


def next_occurrence_date(
    base_date: date | datetime,
    pattern: str,
    repeat_days: int | None = None,
    weekly_day: int | None = None,
    monthly_day: int | None = None,
) -> date:
    """Next slot strictly after the civil date of base_date."""
    base = civil_date(base_date)
    pattern = _pattern(pattern)
    if pattern is None:
        raise ValidationError("repeat_pattern", f"must be one of: {', '.join(PATTERNS)}")

    if pattern == "daily":
        mask = repeat_days or ALL_DAYS_MASK
        result = base + timedelta(days=1)
        for _ in range(7):
            if mask & weekday_bit(result.isoweekday()):
                break
            result += timedelta(days=1)
        else:
            result = base + timedelta(days=1)
    elif pattern == "weekly":
        target = weekly_day or weekday_from_mask(repeat_days) or base.isoweekday()
        diff = target - base.isoweekday()
        if diff <= 0:
            diff += 7
        result = base + timedelta(days=diff)
    else:
        target = monthly_day or base.day
        y, m = base.year, base.month + 1
        if m > 12:
            m = 1
            y += 1
        result = date(y, m, min(target, _month_max_day(y, m)))

    if result <= base:
        return base + timedelta(days=1)
    return result


def upcoming_occurrences(start: date, spec: RecurrenceSpec, count: int) -> list[date]:
    """The next `count` slots after start, each computed from the previous one."""
    out: list[date] = []
    if not spec.is_active:
        return out
    current = start
    for _ in range(count):
        current = next_occurrence_date(
            current,
            spec.repeat_pattern,
            spec.repeat_days,
            spec.repeat_weekly_day,
            spec.repeat_monthly_day,
        )
        out.append(current)
    return out


def series_id_of(task: Mapping[str, Any]) -> str:
    """A task's series; a task not yet in a series anchors its own."""
    return task.get("series_id") or task["id"]
