"""
Insights: completion and backlog metrics over a profile's tasks for one day, week or month.

Completion is counted on completed_on (a civil date); "created" uses created_at
reduced to the user's timezone. Weeks start on Monday unless asked otherwise.
"""
from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Any, Callable, Iterable

from config import load as load_config
from database import get_connection
from date_utils import civil_date, parse_date_input, today_in_tz
from errors import ValidationError
from task_store import row_to_task

VIEWS = ("day", "week", "month")
AVERAGE_BASES = ("calendar-days", "work-week")
TOP_LIMIT = 5


def _day(value: Any) -> date | None:
    """Civil date of a stored date column, or None."""
    if not value:
        return None
    return civil_date(value)


def _is_done(task: dict[str, Any]) -> bool:
    return bool(task.get("completed_at"))


def _starts_before(task: dict[str, Any], day: date) -> bool:
    start = _day(task.get("start_date"))
    return start is not None and start < day


def week_start(day: date, monday: bool = True) -> date:
    if monday:
        return day - timedelta(days=day.isoweekday() - 1)
    return day - timedelta(days=day.isoweekday() % 7)


def period_range(day: date, view: str, week_starts_monday: bool = True) -> tuple[date, date]:
    """Inclusive (start, end) of the day, week or month containing day."""
    if view == "month":
        last = calendar.monthrange(day.year, day.month)[1]
        return day.replace(day=1), day.replace(day=last)
    if view == "week":
        start = week_start(day, week_starts_monday)
        return start, start + timedelta(days=6)
    return day, day


def weekdays_between(start: date, end: date) -> int:
    n = 0
    d = start
    while d <= end:
        if d.isoweekday() <= 5:
            n += 1
        d += timedelta(days=1)
    return n


def completed_in(tasks: Iterable[dict[str, Any]], start: date, end: date) -> list[dict[str, Any]]:
    out = []
    for t in tasks:
        done = _day(t.get("completed_on"))
        if done is not None and start <= done <= end:
            out.append(t)
    return out


def top_breakdown(tasks: Iterable[dict[str, Any]], label: Callable[[dict[str, Any]], str], limit: int = TOP_LIMIT) -> list[dict[str, Any]]:
    """Most frequent labels, ties broken alphabetically."""
    counts: dict[str, int] = {}
    for t in tasks:
        key = label(t)
        counts[key] = counts.get(key, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0].lower()))
    return [{"label": k, "count": n} for k, n in ranked[:limit]]


def _average(count: int, basis_days: int) -> float:
    return count / basis_days if basis_days else 0.0


def day_metrics(tasks: list[dict[str, Any]], day: date, tz_name: str = "UTC") -> dict[str, Any]:
    open_tasks = [t for t in tasks if not _is_done(t)]
    return {
        "start": day.isoformat(),
        "end": day.isoformat(),
        "completed_count": sum(1 for t in tasks if _day(t.get("completed_on")) == day),
        "created_count": sum(
            1 for t in tasks if parse_date_input(t.get("created_at"), "created_at", tz_name) == day
        ),
        "open_count": sum(
            1 for t in open_tasks if _day(t.get("start_date")) == day or _day(t.get("due_at")) == day
        ),
        "rolled_over_count": sum(
            1 for t in open_tasks if _starts_before(t, day)
        ),
    }


def week_metrics(
    tasks: list[dict[str, Any]],
    day: date,
    week_starts_monday: bool = True,
    average_basis: str = "calendar-days",
) -> dict[str, Any]:
    start, end = period_range(day, "week", week_starts_monday)
    done = completed_in(tasks, start, end)
    per_day = [
        {"date": (start + timedelta(days=i)).isoformat(),
         "count": sum(1 for t in done if _day(t["completed_on"]) == start + timedelta(days=i))}
        for i in range(7)
    ]
    basis = 5 if average_basis == "work-week" else 7
    backlog = 0
    for t in tasks:
        if _is_done(t):
            continue
        s, due = _day(t.get("start_date")), _day(t.get("due_at"))
        if (s is not None and s <= end) or (due is not None and start <= due <= end):
            backlog += 1
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "completed_count": len(done),
        "basis_days": basis,
        "avg_per_day": _average(len(done), basis),
        # First day with the highest count
        "best_day": max(per_day, key=lambda d: d["count"]),
        "days": per_day,
        "backlog_count": backlog,
    }


def month_metrics(
    tasks: list[dict[str, Any]],
    day: date,
    week_starts_monday: bool = True,
    average_basis: str = "calendar-days",
) -> dict[str, Any]:
    start, end = period_range(day, "month")
    done = completed_in(tasks, start, end)
    basis = weekdays_between(start, end) if average_basis == "work-week" else end.day
    weeks: dict[date, int] = {}
    for t in done:
        ws = week_start(_day(t["completed_on"]), week_starts_monday)
        weeks[ws] = weeks.get(ws, 0) + 1
    if weeks:
        best_start, best_count = sorted(weeks.items(), key=lambda kv: (-kv[1], kv[0]))[0]
    else:
        best_start, best_count = week_start(start, week_starts_monday), 0
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "completed_count": len(done),
        "basis_days": basis,
        "avg_per_day": _average(len(done), basis),
        "days_in_month": end.day,
        "best_week": {
            "start": best_start.isoformat(),
            "end": (best_start + timedelta(days=6)).isoformat(),
            "count": best_count,
        },
        "backlog_snapshot_count": sum(
            1 for t in tasks if not _is_done(t) and _starts_before(t, end + timedelta(days=1))
        ),
    }


def completed_breakdowns(
    tasks: list[dict[str, Any]],
    day: date,
    view: str,
    project_names: dict[str, str],
) -> dict[str, Any]:
    """Top projects and categories among tasks completed in the week or month around day."""
    start, end = period_range(day, view)
    done = completed_in(tasks, start, end)
    return {
        "top_projects": top_breakdown(
            done, lambda t: project_names.get(t.get("project_id") or "", "Unassigned")
        ),
        "top_categories": top_breakdown(
            done, lambda t: (t.get("category") or "").strip() or "Uncategorized"
        ),
    }


def get_insights(
    profile_id: str,
    view: str = "day",
    day: date | None = None,
    *,
    week_starts_monday: bool = True,
    average_basis: str = "calendar-days",
) -> dict[str, Any]:
    """Metrics for the period of `view` around `day` (default: today in the user's timezone)."""
    view = (view or "day").strip().lower()
    if view not in VIEWS:
        raise ValidationError("view", f"must be one of: {', '.join(VIEWS)}")
    if average_basis not in AVERAGE_BASES:
        raise ValidationError("basis", f"must be one of: {', '.join(AVERAGE_BASES)}")
    tz_name = load_config().user_timezone
    if day is None:
        day = today_in_tz(tz_name)

    conn = get_connection()
    try:
        tasks = [row_to_task(r) for r in conn.execute(
            "SELECT * FROM tasks WHERE profile_id = ?", (profile_id,)
        ).fetchall()]
        project_names = {r["id"]: r["name"] for r in conn.execute(
            "SELECT id, name FROM projects WHERE profile_id = ?", (profile_id,)
        ).fetchall()}
    finally:
        conn.close()

    out: dict[str, Any] = {"view": view, "date": day.isoformat()}
    if view == "day":
        out["metrics"] = day_metrics(tasks, day, tz_name)
        return out
    if view == "week":
        out["metrics"] = week_metrics(tasks, day, week_starts_monday, average_basis)
    else:
        out["metrics"] = month_metrics(tasks, day, week_starts_monday, average_basis)
    out["breakdowns"] = completed_breakdowns(tasks, day, view, project_names)
    return out
