"""
Occurrence materializer: make sure exactly one successor row exists for a series slot.

Resolution order, first hit wins:
  1. an occurrence already in (series_id, next_date)
  2. a legacy row (no series id, same day, same descriptive fields) which is adopted
  3. a freshly inserted row
  4. if the insert lost a race on the unique index, the row the winner inserted
Runs inside the caller's transaction.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any, Callable, NamedTuple

from errors import StorageFailure, UniquenessConflict
from recurrence import RecurrenceSpec, next_occurrence_date, series_id_of
from task_store import find_in_series, insert_task, record_history, row_to_task, update_columns

logger = logging.getLogger("occurrence_service")

# Descriptive fields carried from one occurrence to the next
CARRIED_FIELDS = ("title", "category", "notes", "project_id")


class MaterializeResult(NamedTuple):
    task: dict[str, Any]
    outcome: str  # existing | adopted | created | reconciled


def insert_or_reconcile(
    insert: Callable[[], dict[str, Any]],
    lookup: Callable[[], dict[str, Any] | None],
) -> tuple[dict[str, Any], bool]:
    """
    Run insert(); if it hits the uniqueness index, run lookup() once and return the
    row a concurrent writer put there. Returns (row, inserted).
    """
    try:
        return insert(), True
    except UniquenessConflict as e:
        row = lookup()
        if row is None:
            raise StorageFailure("uniqueness conflict but no conflicting row found") from e
        return row, False


def find_legacy_occurrence(
    conn: sqlite3.Connection,
    source: dict[str, Any],
    spec: RecurrenceSpec,
    start_date: date,
) -> dict[str, Any] | None:
    """An open row from before series ids existed that already stands for this slot."""
    row = conn.execute(
        """SELECT * FROM tasks
           WHERE id != ? AND profile_id = ? AND series_id IS NULL
             AND date(start_date) = ? AND completed_on IS NULL
             AND title = ? AND category IS ? AND notes IS ? AND project_id IS ?
             AND repeat_enabled = 1 AND repeat_pattern IS ? AND repeat_days IS ?
             AND repeat_weekly_day IS ? AND repeat_monthly_day IS ?
           ORDER BY created_at ASC LIMIT 1""",
        (
            source["id"],
            source["profile_id"],
            start_date.isoformat(),
            source["title"],
            source.get("category"),
            source.get("notes"),
            source.get("project_id"),
            spec.repeat_pattern,
            spec.repeat_days,
            spec.repeat_weekly_day,
            spec.repeat_monthly_day,
        ),
    ).fetchone()
    return row_to_task(row) if row else None


def adopt_occurrence(conn: sqlite3.Connection, task: dict[str, Any], series_id: str, start_date: date) -> dict[str, Any]:
    update_columns(conn, task["id"], {"series_id": series_id, "start_date": start_date})
    record_history(conn, task["id"], "adopted", {"series_id": series_id, "start_date": start_date.isoformat()})
    return {**task, "series_id": series_id, "start_date": start_date.isoformat()}


def materialize_next_occurrence(
    conn: sqlite3.Connection,
    source: dict[str, Any],
    spec: RecurrenceSpec,
    base_date: date,
    *,
    adopt_legacy: bool = True,
) -> MaterializeResult:
    """Ensure the occurrence after base_date exists for source's series and return it."""
    series_id = series_id_of(source)
    profile_id = source["profile_id"]
    next_date = next_occurrence_date(
        base_date,
        spec.repeat_pattern,
        spec.repeat_days,
        spec.repeat_weekly_day,
        spec.repeat_monthly_day,
    )

    existing = find_in_series(conn, profile_id, series_id, next_date)
    if existing:
        logger.info("[occurrence_service] series %s: %s already materialized (%s)", series_id, next_date, existing["id"])
        return MaterializeResult(existing, "existing")

    if adopt_legacy:
        legacy = find_legacy_occurrence(conn, source, spec, next_date)
        if legacy:
            logger.info("[occurrence_service] series %s: adopting legacy row %s for %s", series_id, legacy["id"], next_date)
            return MaterializeResult(adopt_occurrence(conn, legacy, series_id, next_date), "adopted")

    def insert() -> dict[str, Any]:
        values = {f: source.get(f) for f in CARRIED_FIELDS}
        values.update(spec.as_columns())
        values.update(
            profile_id=profile_id,
            series_id=series_id,
            start_date=next_date,
            due_at=None,
        )
        return insert_task(conn, values)

    row, inserted = insert_or_reconcile(
        insert,
        lambda: find_in_series(conn, profile_id, series_id, next_date),
    )
    if not inserted:
        logger.info("[occurrence_service] series %s: lost insert race for %s, using %s", series_id, next_date, row["id"])
        return MaterializeResult(row, "reconciled")
    record_history(conn, row["id"], "materialized", {"series_id": series_id, "from": source["id"]})
    logger.info("[occurrence_service] series %s: created %s for %s", series_id, row["id"], next_date)
    return MaterializeResult(row, "created")
