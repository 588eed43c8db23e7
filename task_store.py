"""
Row-level access to the tasks table. Every function takes an open connection so
callers decide the transaction boundary; nothing here commits.
"""
from __future__ import annotations

import json
import sqlite3
from datetime import date
from typing import Any, Iterable

from ulid import ULID

from database import is_series_conflict
from date_utils import now_iso
from errors import UniquenessConflict

TASK_COLUMNS = (
    "id",
    "profile_id",
    "project_id",
    "title",
    "notes",
    "category",
    "start_date",
    "due_at",
    "completed_on",
    "completed_at",
    "series_id",
    "repeat_enabled",
    "repeat_pattern",
    "repeat_days",
    "repeat_weekly_day",
    "repeat_monthly_day",
    "created_at",
    "updated_at",
)


def new_id() -> str:
    return str(ULID())


def row_to_task(row: Any) -> dict[str, Any]:
    d = dict(row)
    d["repeat_enabled"] = bool(d.get("repeat_enabled"))
    return d


def record_history(conn: sqlite3.Connection, task_id: str, event: str, payload: Any = None) -> None:
    conn.execute(
        "INSERT INTO task_history (task_id, timestamp, event, payload) VALUES (?, ?, ?, ?)",
        (task_id, now_iso(), event, json.dumps(payload) if payload is not None else None),
    )


def fetch_task(conn: sqlite3.Connection, profile_id: str, task_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT * FROM tasks WHERE id = ? AND profile_id = ?", (task_id, profile_id)
    ).fetchone()
    return row_to_task(row) if row else None


def fetch_tasks(conn: sqlite3.Connection, profile_id: str, task_ids: Iterable[str]) -> list[dict[str, Any]]:
    ids = list(task_ids)
    if not ids:
        return []
    placeholders = ",".join("?" * len(ids))
    rows = conn.execute(
        f"SELECT * FROM tasks WHERE profile_id = ? AND id IN ({placeholders})",
        [profile_id, *ids],
    ).fetchall()
    return [row_to_task(r) for r in rows]


def find_in_series(
    conn: sqlite3.Connection, profile_id: str, series_id: str, start_date: date
) -> dict[str, Any] | None:
    """The occurrence occupying (series_id, start_date), if any."""
    row = conn.execute(
        "SELECT * FROM tasks WHERE profile_id = ? AND series_id = ? AND start_date = ?",
        (profile_id, series_id, start_date.isoformat()),
    ).fetchone()
    return row_to_task(row) if row else None


def series_rows(
    conn: sqlite3.Connection,
    profile_id: str,
    series_id: str,
    *,
    start_from: date | None = None,
    after: date | None = None,
) -> list[dict[str, Any]]:
    """Occurrences of a series, optionally start_date >= start_from or > after, oldest first."""
    sql = "SELECT * FROM tasks WHERE profile_id = ? AND series_id = ?"
    params: list[Any] = [profile_id, series_id]
    if start_from is not None:
        sql += " AND start_date >= ?"
        params.append(start_from.isoformat())
    if after is not None:
        sql += " AND start_date > ?"
        params.append(after.isoformat())
    sql += " ORDER BY start_date ASC, created_at ASC"
    return [row_to_task(r) for r in conn.execute(sql, params).fetchall()]


def insert_task(conn: sqlite3.Connection, values: dict[str, Any]) -> dict[str, Any]:
    """
    Insert one task row. Dates may be passed as date objects.
    Raises UniquenessConflict when the (series, start_date) slot is taken.
    """
    now = now_iso()
    row = {c: None for c in TASK_COLUMNS}
    row.update({"id": new_id(), "created_at": now, "updated_at": now, "repeat_enabled": False})
    row.update(values)
    for key in ("start_date", "due_at", "completed_on"):
        if isinstance(row[key], date):
            row[key] = row[key].isoformat()
    row["repeat_enabled"] = 1 if row["repeat_enabled"] else 0
    try:
        conn.execute(
            f"INSERT INTO tasks ({', '.join(TASK_COLUMNS)}) VALUES ({', '.join('?' * len(TASK_COLUMNS))})",
            [row[c] for c in TASK_COLUMNS],
        )
    except sqlite3.IntegrityError as e:
        if is_series_conflict(e):
            raise UniquenessConflict(str(e)) from e
        raise
    return row_to_task(row)


def update_columns(conn: sqlite3.Connection, task_id: str, values: dict[str, Any], where: str = "") -> int:
    """
    UPDATE the given columns of one task, touching updated_at. `where` adds a guard
    condition (e.g. "completed_on IS NULL"); returns the number of rows changed.
    """
    updates = ["updated_at = ?"]
    params: list[Any] = [now_iso()]
    for key, value in values.items():
        if key not in TASK_COLUMNS:
            raise KeyError(key)
        if isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, bool):
            value = 1 if value else 0
        updates.append(f"{key} = ?")
        params.append(value)
    sql = f"UPDATE tasks SET {', '.join(updates)} WHERE id = ?"
    params.append(task_id)
    if where:
        sql += f" AND {where}"
    try:
        return conn.execute(sql, params).rowcount
    except sqlite3.IntegrityError as e:
        if is_series_conflict(e):
            raise UniquenessConflict(str(e)) from e
        raise


def delete_rows(conn: sqlite3.Connection, profile_id: str, task_ids: Iterable[str]) -> int:
    ids = list(task_ids)
    if not ids:
        return 0
    placeholders = ",".join("?" * len(ids))
    return conn.execute(
        f"DELETE FROM tasks WHERE profile_id = ? AND id IN ({placeholders})",
        [profile_id, *ids],
    ).rowcount
