"""
Task Service layer: all task mutations go through here.
Each public function is one transaction; the _underscore helpers take the open
connection so bulk operations can run many of them in a single unit of work.

Lifecycle of an occurrence: open -> done (mark done), done -> open (reopen),
open/done -> deleted. Completing or deleting the newest occurrence of an active
series materializes the next one.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date
from typing import Any

from config import load as load_config
from database import get_connection, transaction
from date_utils import civil_date, now_iso, today_in_tz
from errors import NotFoundError, ValidationError
from occurrence_service import materialize_next_occurrence
from recurrence import REPEAT_FIELDS, merge_recurrence, normalize_recurrence, series_id_of, spec_from_row
from scope_expander import check_scope, expand_scope
from task_store import (
    delete_rows,
    fetch_task,
    insert_task,
    new_id,
    record_history,
    row_to_task,
    series_rows,
    update_columns,
)

logger = logging.getLogger("task_service")

STATUSES = frozenset({"open", "done"})

# Sentinel: pass for optional params to mean "don't change"; None means "set to null"
_UNSET = object()

EDITABLE_FIELDS = ("title", "notes", "category", "project_id", "start_date", "due_at") + REPEAT_FIELDS


def _clean_text(value: Any) -> Any:
    """Trim optional text; blank becomes None."""
    return (value.strip() or None) if isinstance(value, str) else value


def _clean_title(title: Any) -> str:
    t = title.strip() if isinstance(title, str) else ""
    if not t:
        raise ValidationError("title", "is required")
    return t


def _ensure_project(conn: sqlite3.Connection, profile_id: str, project_id: str | None) -> None:
    if not project_id:
        return
    row = conn.execute(
        "SELECT 1 FROM projects WHERE id = ? AND profile_id = ?", (project_id, profile_id)
    ).fetchone()
    if not row:
        raise NotFoundError("Project", project_id)


def _is_recurring(task: dict[str, Any]) -> bool:
    return bool(task.get("repeat_enabled") and task.get("repeat_pattern"))


def _adopt_legacy() -> bool:
    return load_config().adopt_legacy_occurrences


def today() -> date:
    """Today in the configured user timezone."""
    return today_in_tz(load_config().user_timezone)


def create_task(
    profile_id: str,
    title: str,
    start_date: date | None,
    *,
    due_at: date | None = None,
    category: str | None = None,
    notes: str | None = None,
    project_id: str | None = None,
    repeat_enabled: bool = False,
    repeat_pattern: str | None = None,
    repeat_days: int | None = None,
    repeat_weekly_day: int | None = None,
    repeat_monthly_day: int | None = None,
) -> dict[str, Any]:
    """Create a task. A recurring task is created as the first occurrence (and anchor) of a new series."""
    title = _clean_title(title)
    if start_date is None:
        raise ValidationError("start_date", "is required")
    start_date = civil_date(start_date)
    spec = normalize_recurrence(
        repeat_enabled, repeat_pattern, repeat_days, repeat_weekly_day, repeat_monthly_day, start_date
    )
    project_id = _clean_text(project_id)
    tid = new_id()
    with transaction() as conn:
        _ensure_project(conn, profile_id, project_id)
        values: dict[str, Any] = {
            "id": tid,
            "profile_id": profile_id,
            "project_id": project_id,
            "title": title,
            "notes": _clean_text(notes),
            "category": _clean_text(category),
            "start_date": start_date,
            "due_at": due_at,
            "series_id": tid if spec.repeat_enabled else None,
        }
        values.update(spec.as_columns())
        task = insert_task(conn, values)
        record_history(conn, tid, "created", {"title": title, "repeat_pattern": spec.repeat_pattern})
    logger.info("[task_service] created task %s (repeat=%s)", tid, spec.repeat_pattern)
    return task


def get_task(profile_id: str, task_id: str) -> dict[str, Any] | None:
    """Return one task by id, or None if it is not in this profile."""
    conn = get_connection()
    try:
        return fetch_task(conn, profile_id, task_id)
    finally:
        conn.close()


def list_tasks(
    profile_id: str,
    *,
    status: str | None = None,
    series_id: str | None = None,
    project_id: str | None = None,
    start_from: date | None = None,
    start_to: date | None = None,
    limit: int = 500,
) -> list[dict[str, Any]]:
    """List a profile's tasks, open ones first, then newest first.
    status: "open" or "done". start_from / start_to bound start_date (inclusive).
    """
    if status is not None and status not in STATUSES:
        raise ValidationError("status", f"must be one of: {', '.join(sorted(STATUSES))}")
    conn = get_connection()
    try:
        sql = "SELECT * FROM tasks WHERE profile_id = ?"
        params: list[Any] = [profile_id]
        if status == "open":
            sql += " AND completed_on IS NULL"
        elif status == "done":
            sql += " AND completed_on IS NOT NULL"
        if series_id:
            sql += " AND series_id = ?"
            params.append(series_id)
        if project_id:
            sql += " AND project_id = ?"
            params.append(project_id)
        if start_from:
            sql += " AND start_date >= ?"
            params.append(start_from.isoformat())
        if start_to:
            sql += " AND start_date <= ?"
            params.append(start_to.isoformat())
        sql += " ORDER BY completed_at ASC, created_at DESC LIMIT ?"
        params.append(limit)
        return [row_to_task(r) for r in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def update_task(
    profile_id: str,
    task_id: str,
    *,
    title: Any = _UNSET,
    notes: Any = _UNSET,
    category: Any = _UNSET,
    project_id: Any = _UNSET,
    start_date: Any = _UNSET,
    due_at: Any = _UNSET,
    repeat_enabled: Any = _UNSET,
    repeat_pattern: Any = _UNSET,
    repeat_days: Any = _UNSET,
    repeat_weekly_day: Any = _UNSET,
    repeat_monthly_day: Any = _UNSET,
) -> dict[str, Any]:
    """
    Edit non-lifecycle fields. Only supplied fields change; the recurrence is re-normalized
    from the merged (new over stored) fields. Turning recurrence on makes the task a series anchor.
    Raises UniquenessConflict if a new start date lands on an occupied slot of the series.
    """
    passed = dict(locals())
    supplied = {k: passed[k] for k in EDITABLE_FIELDS if passed[k] is not _UNSET}
    with transaction() as conn:
        row = _require(conn, profile_id, task_id)
        return _update_fields(conn, row, supplied)


def _update_fields(conn: sqlite3.Connection, row: dict[str, Any], supplied: dict[str, Any]) -> dict[str, Any]:
    """Apply the supplied editable fields to row inside the caller's transaction; returns the stored row."""
    if not supplied:
        return row
    unknown = sorted(set(supplied) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(unknown[0], "is not an editable field")
    profile_id, task_id = row["profile_id"], row["id"]
    changes: dict[str, Any] = {}
    if "title" in supplied:
        changes["title"] = _clean_title(supplied["title"])
    for key in ("notes", "category"):
        if key in supplied:
            changes[key] = _clean_text(supplied[key])
    if "project_id" in supplied:
        project_id = _clean_text(supplied["project_id"])
        _ensure_project(conn, profile_id, project_id)
        changes["project_id"] = project_id
    if "start_date" in supplied:
        if supplied["start_date"] is None:
            raise ValidationError("start_date", "is required")
        changes["start_date"] = civil_date(supplied["start_date"])
    if "due_at" in supplied:
        changes["due_at"] = supplied["due_at"]
    eff_start = changes.get("start_date") or civil_date(row["start_date"])
    repeat_changes = {k: supplied[k] for k in REPEAT_FIELDS if k in supplied}
    spec = merge_recurrence(row, repeat_changes, eff_start)
    changes.update(spec.as_columns())
    if spec.repeat_enabled and not row["repeat_enabled"]:
        changes["series_id"] = series_id_of(row)
    update_columns(conn, task_id, changes)
    record_history(conn, task_id, "updated", {"fields": sorted(supplied)})
    return fetch_task(conn, profile_id, task_id)


# --- Lifecycle ---


def _mark_done(conn: sqlite3.Connection, task: dict[str, Any], completed_on: date) -> tuple[bool, dict[str, Any] | None]:
    """
    Open -> done, guarded on the row still being open. Only the request that wins the
    guard materializes the successor. Returns (transitioned, successor).
    """
    won = update_columns(
        conn, task["id"],
        {"completed_on": completed_on, "completed_at": now_iso()},
        where="completed_on IS NULL",
    )
    if not won:
        return False, None
    record_history(conn, task["id"], "completed", {"completed_on": completed_on.isoformat()})
    if not _is_recurring(task):
        return True, None
    spec = spec_from_row(task)
    if not task.get("series_id"):
        update_columns(conn, task["id"], {"series_id": task["id"]})
        task = {**task, "series_id": task["id"]}
    result = materialize_next_occurrence(conn, task, spec, completed_on, adopt_legacy=_adopt_legacy())
    if result.task["id"] == task["id"]:
        # Completed before its own start date: the next slot is this row
        logger.warning("[task_service] %s completed on %s before its start %s; no successor",
                       task["id"], completed_on, task["start_date"])
        return True, None
    return True, result.task


def _mark_open(conn: sqlite3.Connection, task: dict[str, Any]) -> bool:
    """Done -> open, guarded on the row still being done. Successors are left alone."""
    won = update_columns(
        conn, task["id"],
        {"completed_on": None, "completed_at": None},
        where="completed_on IS NOT NULL",
    )
    if won:
        record_history(conn, task["id"], "reopened")
    return bool(won)


def _delete_single(conn: sqlite3.Connection, task: dict[str, Any]) -> dict[str, Any] | None:
    """
    Delete one occurrence. If it was the newest of an active series the series continues:
    the next slot after its start date is materialized. Returns that successor, if any.
    """
    if not delete_rows(conn, task["profile_id"], [task["id"]]):
        return None
    if not _is_recurring(task):
        return None
    series_id = series_id_of(task)
    start = civil_date(task["start_date"])
    if series_rows(conn, task["profile_id"], series_id, after=start):
        return None
    spec = spec_from_row(task)
    source = {**task, "series_id": series_id}
    return materialize_next_occurrence(conn, source, spec, start, adopt_legacy=_adopt_legacy()).task


def _require(conn: sqlite3.Connection, profile_id: str, task_id: str) -> dict[str, Any]:
    task = fetch_task(conn, profile_id, task_id)
    if not task:
        raise NotFoundError("Task", task_id)
    return task


def complete_occurrence(profile_id: str, task_id: str, completed_on: date | None = None) -> dict[str, Any]:
    """
    Mark an occurrence done on completed_on (default: today in the user's timezone).
    Returns {"task", "transitioned", "successor"}; transitioned is False when the task
    was already done (or another request completed it first).
    """
    completed_on = civil_date(completed_on) if completed_on is not None else today()
    with transaction() as conn:
        task = _require(conn, profile_id, task_id)
        transitioned, successor = _mark_done(conn, task, completed_on)
        updated = fetch_task(conn, profile_id, task_id)
    if transitioned:
        logger.info("[task_service] completed %s on %s (successor=%s)", task_id, completed_on,
                    successor["id"] if successor else None)
    return {"task": updated, "transitioned": transitioned, "successor": successor}


def patch_task(
    profile_id: str,
    task_id: str,
    changes: dict[str, Any],
    completed: bool | None = None,
    completed_on: date | None = None,
) -> dict[str, Any]:
    """
    Field edits plus an optional done/open toggle as one unit of work: if completing
    (or materializing its successor) fails, the edits are rolled back too.
    completed_on is only used when completed is True (default: today).
    """
    if completed_on is not None and completed is not True:
        raise ValidationError("completed_on", "requires completed: true")
    with transaction() as conn:
        task = _update_fields(conn, _require(conn, profile_id, task_id), changes)
        if completed is True:
            _mark_done(conn, task, civil_date(completed_on) if completed_on is not None else today())
        elif completed is False:
            _mark_open(conn, task)
        return fetch_task(conn, profile_id, task_id)


def reopen_occurrence(profile_id: str, task_id: str) -> dict[str, Any]:
    with transaction() as conn:
        task = _require(conn, profile_id, task_id)
        _mark_open(conn, task)
        return fetch_task(conn, profile_id, task_id)


def delete_occurrence(profile_id: str, task_id: str, scope: str = "this") -> dict[str, Any]:
    """
    Delete with a scope: "this" (may materialize a successor), "future" (this and every later
    occurrence; no successor) or "series" (every occurrence). Returns {"deleted", "successor"}.
    """
    scope = check_scope(scope)
    with transaction() as conn:
        task = _require(conn, profile_id, task_id)
        if scope == "this":
            successor = _delete_single(conn, task)
            deleted = 1
        else:
            targets = expand_scope(conn, profile_id, [task], scope)
            deleted = delete_rows(conn, profile_id, [t["id"] for t in targets])
            successor = None
    logger.info("[task_service] deleted %s (scope=%s, rows=%d)", task_id, scope, deleted)
    return {"deleted": deleted, "successor": successor}


def get_task_history(profile_id: str, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
    """Return history events for a task, newest first."""
    conn = get_connection()
    try:
        if not fetch_task(conn, profile_id, task_id):
            raise NotFoundError("Task", task_id)
        rows = conn.execute(
            "SELECT id, task_id, timestamp, event, payload FROM task_history WHERE task_id = ? ORDER BY id DESC LIMIT ?",
            (task_id, limit),
        ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            if d.get("payload"):
                d["payload"] = json.loads(d["payload"])
            out.append(d)
        return out
    finally:
        conn.close()
