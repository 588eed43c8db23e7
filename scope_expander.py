"""
Resolve a selection of tasks plus a scope into the rows an operation acts on.

  this    the selection itself
  future  for each series in the selection, every occurrence on or after the
          earliest selected start date; non-recurring rows as selected
  series  every occurrence of each selected series; non-recurring rows as selected
"""
from __future__ import annotations

import sqlite3
from datetime import date
from typing import Any, Iterable

from date_utils import civil_date
from errors import ValidationError
from task_store import series_rows

SCOPES = ("this", "future", "series")


def check_scope(scope: str | None) -> str:
    scope = (scope or "this").strip().lower()
    if scope not in SCOPES:
        raise ValidationError("scope", f"must be one of: {', '.join(SCOPES)}")
    return scope


def unique_ids(values: Iterable[Any] | None) -> list[str]:
    """Distinct non-blank string ids in first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for v in values or []:
        if not isinstance(v, str) or not v.strip():
            continue
        if v not in seen:
            seen.add(v)
            out.append(v)
    if not out:
        raise ValidationError("task_ids", "must include at least one task id")
    return out


def expand_scope(
    conn: sqlite3.Connection,
    profile_id: str,
    selected: list[dict[str, Any]],
    scope: str,
) -> list[dict[str, Any]]:
    scope = check_scope(scope)
    if scope == "this":
        return list(selected)

    targets: dict[str, dict[str, Any]] = {}
    earliest: dict[str, date] = {}
    for task in selected:
        series_id = task.get("series_id")
        if not series_id:
            targets[task["id"]] = task
            continue
        start = civil_date(task["start_date"])
        if series_id not in earliest or start < earliest[series_id]:
            earliest[series_id] = start

    for series_id, start in earliest.items():
        rows = series_rows(
            conn, profile_id, series_id,
            start_from=start if scope == "future" else None,
        )
        for row in rows:
            targets[row["id"]] = row
    return list(targets.values())
