"""
Bulk actions over a selection of tasks. One call is one transaction: either every
target row is changed or none is.

Scope "this" runs each selected task through the lifecycle one by one (so completing or
deleting still materializes successors); "future" and "series" expand the selection
and apply plain set-based updates.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any

from database import transaction
from date_utils import civil_date, now_iso
from errors import NotFoundError, ValidationError
from scope_expander import check_scope, expand_scope, unique_ids
from task_service import _delete_single, _ensure_project, _mark_done, _mark_open, _require, today
from task_store import delete_rows, fetch_tasks, update_columns

logger = logging.getLogger("bulk_service")

ACTIONS = (
    "mark-done",
    "mark-open",
    "move-project",
    "set-category",
    "set-start-date",
    "set-due-date",
    "clear-due-date",
    "delete",
)


def bulk_apply(
    profile_id: str,
    task_ids: list[str],
    scope: str,
    action: str,
    *,
    project_id: str | None = None,
    category: str | None = None,
    start_date: date | None = None,
    due_at: date | None = None,
    completed_on: date | None = None,
) -> dict[str, Any]:
    """
    Apply `action` to the tasks selected by task_ids widened by `scope`.
    Returns {"targets": number of rows the action was applied to}.
    """
    if action not in ACTIONS:
        raise ValidationError("action", f"must be one of: {', '.join(ACTIONS)}")
    ids = unique_ids(task_ids)
    scope = check_scope(scope)
    if action == "set-due-date" and due_at is None:
        raise ValidationError("due_at", "is required")
    if action == "set-start-date" and start_date is None:
        raise ValidationError("start_date", "is required")

    with transaction() as conn:
        selected = fetch_tasks(conn, profile_id, ids)
        if len(selected) != len(ids):
            raise NotFoundError("One or more tasks")
        targets = expand_scope(conn, profile_id, selected, scope)
        target_ids = [t["id"] for t in targets]
        if not target_ids:
            return {"targets": 0}

        if action == "move-project":
            _ensure_project(conn, profile_id, project_id)
            _update_all(conn, target_ids, {"project_id": project_id or None})
        elif action == "set-category":
            _update_all(conn, target_ids, {"category": category or None})
        elif action == "set-due-date":
            _update_all(conn, target_ids, {"due_at": civil_date(due_at)})
        elif action == "clear-due-date":
            _update_all(conn, target_ids, {"due_at": None})
        elif action == "set-start-date":
            # Row by row: a slot collision inside a series surfaces as UniquenessConflict
            _update_all(conn, target_ids, {"start_date": civil_date(start_date)})
        elif action == "mark-done":
            day = civil_date(completed_on) if completed_on is not None else today()
            if scope == "this":
                for tid in ids:
                    _mark_done(conn, _require(conn, profile_id, tid), day)
            else:
                _update_all(conn, target_ids, {"completed_on": day, "completed_at": now_iso()},
                            where="completed_on IS NULL")
        elif action == "mark-open":
            if scope == "this":
                for tid in ids:
                    _mark_open(conn, _require(conn, profile_id, tid))
            else:
                _update_all(conn, target_ids, {"completed_on": None, "completed_at": None},
                            where="completed_on IS NOT NULL")
        else:
            if scope == "this":
                for tid in ids:
                    _delete_single(conn, _require(conn, profile_id, tid))
            else:
                delete_rows(conn, profile_id, target_ids)

    logger.info("[bulk_service] %s scope=%s selected=%d targets=%d", action, scope, len(ids), len(target_ids))
    return {"targets": len(target_ids)}


def _update_all(conn: sqlite3.Connection, task_ids: list[str], values: dict[str, Any], where: str = "") -> int:
    n = 0
    for tid in task_ids:
        n += update_columns(conn, tid, values, where=where)
    return n
