"""
Project service: CRUD for projects. Projects belong to a profile; tasks point at
them through tasks.project_id.
"""
from __future__ import annotations

from datetime import date
from typing import Any

from database import get_connection, transaction
from date_utils import iso_or_none, now_iso
from errors import ValidationError
from task_store import new_id

_PROJECT_COLUMNS = "id, profile_id, name, category, start_date, due_at, archived, created_at, updated_at"


def _project_row_to_dict(row: Any) -> dict[str, Any]:
    d = dict(row)
    d["archived"] = bool(d.get("archived"))
    return d


def _clean_name(name: Any) -> str:
    n = name.strip() if isinstance(name, str) else ""
    if not n:
        raise ValidationError("name", "is required")
    return n


def create_project(
    profile_id: str,
    name: str,
    *,
    category: str | None = None,
    start_date: date | None = None,
    due_at: date | None = None,
) -> dict[str, Any]:
    """Create a project in a profile."""
    name = _clean_name(name)
    pid = new_id()
    now = now_iso()
    with transaction() as conn:
        conn.execute(
            f"""INSERT INTO projects ({_PROJECT_COLUMNS})
               VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)""",
            (pid, profile_id, name, category or None, iso_or_none(start_date), iso_or_none(due_at), now, now),
        )
    return get_project(profile_id, pid)


def list_projects(profile_id: str, include_archived: bool = True) -> list[dict[str, Any]]:
    """List a profile's projects, oldest first."""
    conn = get_connection()
    try:
        sql = f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE profile_id = ?"
        if not include_archived:
            sql += " AND archived = 0"
        sql += " ORDER BY created_at, id"
        return [_project_row_to_dict(r) for r in conn.execute(sql, (profile_id,)).fetchall()]
    finally:
        conn.close()


def get_project(profile_id: str, project_id: str) -> dict[str, Any] | None:
    conn = get_connection()
    try:
        row = conn.execute(
            f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ? AND profile_id = ?",
            (project_id, profile_id),
        ).fetchone()
        return _project_row_to_dict(row) if row else None
    finally:
        conn.close()


def update_project(
    profile_id: str,
    project_id: str,
    *,
    name: str | None = None,
    category: str | None = None,
    archived: bool | None = None,
) -> dict[str, Any] | None:
    """Update project fields that are not None. Returns the project or None if not found."""
    with transaction() as conn:
        row = conn.execute(
            "SELECT id FROM projects WHERE id = ? AND profile_id = ?", (project_id, profile_id)
        ).fetchone()
        if not row:
            return None
        updates: list[str] = ["updated_at = ?"]
        params: list[Any] = [now_iso()]
        if name is not None:
            updates.append("name = ?")
            params.append(_clean_name(name))
        if category is not None:
            updates.append("category = ?")
            params.append(category.strip() or None)
        if archived is not None:
            updates.append("archived = ?")
            params.append(1 if archived else 0)
        params.append(project_id)
        conn.execute(f"UPDATE projects SET {', '.join(updates)} WHERE id = ?", params)
    return get_project(profile_id, project_id)


def delete_project(profile_id: str, project_id: str) -> bool:
    """Delete a project; its tasks stay, detached. Returns True if deleted."""
    with transaction() as conn:
        cur = conn.execute("DELETE FROM projects WHERE id = ? AND profile_id = ?", (project_id, profile_id))
        return cur.rowcount > 0
