"""
Civil-date helpers. Every date the recurrence engine touches is a calendar
date (YYYY-MM-DD) with no time of day; timestamps coming in from clients are
reduced to the date they fall on in the user's timezone.
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from errors import ValidationError

# Already ISO date
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def _zone(tz_name: str | None) -> ZoneInfo:
    name = (tz_name or "").strip() or "UTC"
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def today_in_tz(tz_name: str | None = "UTC") -> date:
    """Today's civil date in the given IANA timezone (unknown names fall back to UTC)."""
    return datetime.now(_zone(tz_name)).date()


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def civil_date(value: date | datetime | str) -> date:
    """Strip any time-of-day component: datetime -> date, 'YYYY-MM-DD...' -> date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def resolve_relative_date(value: str | None, tz_name: str = "UTC") -> date | None:
    """
    Resolve 'today', 'tomorrow', 'yesterday', 'next week', 'in N days' or a weekday
    name (next occurrence of that weekday) to a date in the user's timezone.
    Returns None when the phrase is not recognised.
    """
    if not value or not str(value).strip():
        return None
    raw = str(value).strip().lower()
    today = today_in_tz(tz_name)
    if raw == "today":
        return today
    if raw == "tomorrow":
        return today + timedelta(days=1)
    if raw == "yesterday":
        return today - timedelta(days=1)
    if raw == "next week" or raw == "in a week":
        return today + timedelta(days=7)
    m = re.match(r"^in\s+(\d+)\s+days?$", raw)
    if m:
        return today + timedelta(days=int(m.group(1)))
    if raw in _WEEKDAYS:
        days_ahead = (_WEEKDAYS.index(raw) - today.weekday()) % 7
        if days_ahead == 0:
            days_ahead = 7  # "next" Monday if today is Monday
        return today + timedelta(days=days_ahead)
    return None


def parse_date_input(value: Any, field: str, tz_name: str = "UTC") -> date | None:
    """
    Parse a client-supplied date for `field`.
    Accepts a date, 'YYYY-MM-DD', an ISO timestamp (converted to the user's timezone
    before the time is dropped) or a relative phrase. None passes through.
    Raises ValidationError naming the field otherwise.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(_zone(tz_name)).date()
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(field, "must be a YYYY-MM-DD string, ISO string, or null")
    raw = value.strip()
    if not raw:
        raise ValidationError(field, "must not be empty")
    if _ISO_DATE.match(raw):
        try:
            return date.fromisoformat(raw)
        except ValueError:
            raise ValidationError(field, "must be a valid YYYY-MM-DD string, ISO string, or null") from None
    relative = resolve_relative_date(raw, tz_name)
    if relative is not None:
        return relative
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(field, "must be a valid YYYY-MM-DD string, ISO string, or null") from None
    if dt.tzinfo is not None:
        return dt.astimezone(_zone(tz_name)).date()
    return dt.date()


def iso_or_none(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None
