"""
Profile service: a profile is an independent task list. Deleting one removes its
projects and tasks (foreign keys cascade). The default profile always exists.
"""
from __future__ import annotations

from typing import Any

from database import DEFAULT_PROFILE_ID, get_connection, transaction
from date_utils import now_iso
from errors import NotFoundError, ValidationError
from task_store import new_id


def _clean_name(name: Any) -> str:
    n = name.strip() if isinstance(name, str) else ""
    if not n:
        raise ValidationError("name", "is required")
    return n


def create_profile(name: str) -> dict[str, Any]:
    """Create a profile at the end of the ordering."""
    name = _clean_name(name)
    pid = new_id()
    now = now_iso()
    with transaction() as conn:
        next_order = conn.execute("SELECT COALESCE(MAX(sort_order), -1) + 1 FROM profiles").fetchone()[0]
        conn.execute(
            "INSERT INTO profiles (id, name, sort_order, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (pid, name, next_order, now, now),
        )
    return get_profile(pid)


def get_profile(profile_id: str) -> dict[str, Any] | None:
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_profiles() -> list[dict[str, Any]]:
    conn = get_connection()
    try:
        rows = conn.execute("SELECT * FROM profiles ORDER BY sort_order, created_at, id").fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def rename_profile(profile_id: str, name: str) -> dict[str, Any] | None:
    name = _clean_name(name)
    with transaction() as conn:
        cur = conn.execute(
            "UPDATE profiles SET name = ?, updated_at = ? WHERE id = ?", (name, now_iso(), profile_id)
        )
        if cur.rowcount == 0:
            return None
    return get_profile(profile_id)


def reorder_profiles(profile_ids: list[str]) -> list[dict[str, Any]]:
    """Set the display order to exactly the given list, which must name every profile once."""
    with transaction() as conn:
        existing = {r[0] for r in conn.execute("SELECT id FROM profiles").fetchall()}
        if len(set(profile_ids)) != len(profile_ids) or set(profile_ids) != existing:
            raise ValidationError("profile_ids", "must list every profile exactly once")
        now = now_iso()
        for order, pid in enumerate(profile_ids):
            conn.execute("UPDATE profiles SET sort_order = ?, updated_at = ? WHERE id = ?", (order, now, pid))
    return list_profiles()


def delete_profile(profile_id: str) -> bool:
    """Delete a profile with its projects and tasks. Returns True if deleted."""
    if profile_id == DEFAULT_PROFILE_ID:
        raise ValidationError("profile_id", "the default profile cannot be deleted")
    with transaction() as conn:
        cur = conn.execute("DELETE FROM profiles WHERE id = ?", (profile_id,))
        return cur.rowcount > 0


def require_profile(profile_id: str) -> dict[str, Any]:
    profile = get_profile(profile_id)
    if profile is None:
        raise NotFoundError("Profile", profile_id)
    return profile
