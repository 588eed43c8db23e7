"""HTTP API for taskloop: validates raw input and forwards typed commands to the services."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import bulk_service
import insights_service
import profile_service
import project_service
import task_service
from config import load as load_config
from date_utils import parse_date_input
from errors import NotFoundError, StorageFailure, UniquenessConflict, ValidationError
from recurrence import normalize_recurrence, upcoming_occurrences

app = FastAPI(title="taskloop", version="1.0")
logger = logging.getLogger("taskloop.api")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """When config.debug is True, log API request method, path and response status."""
    debug = load_config().debug
    if debug:
        qs = request.url.query
        logger.warning("[API] %s %s%s", request.method, request.url.path, "?" + qs if qs else "")
    response = await call_next(request)
    if debug:
        logger.warning("[API] %s %s -> %s", request.method, request.url.path, response.status_code)
    return response


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "field": exc.field})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(UniquenessConflict)
async def _conflict(request: Request, exc: UniquenessConflict) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"detail": "Start date update would create duplicate recurring occurrences"},
    )


@app.exception_handler(StorageFailure)
async def _storage_failure(request: Request, exc: StorageFailure) -> JSONResponse:
    logger.error("[API] %s %s storage failure: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


def _tz() -> str:
    return load_config().user_timezone


def _require_profile(profile_id: str) -> None:
    if profile_service.get_profile(profile_id) is None:
        raise HTTPException(status_code=404, detail="Profile not found")


def _text(value: Any, field: str) -> str | None:
    """Optional text input: strings are trimmed, blank becomes None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string or null")
    return value.strip() or None


# --- API schemas ---


class ProfileCreate(BaseModel):
    name: str


class ProfileRename(BaseModel):
    name: str


class ProfileReorder(BaseModel):
    profile_ids: list[str]


class ProjectCreate(BaseModel):
    name: str
    category: str | None = None
    start_date: str | None = None
    due_at: str | None = None


class TaskCreate(BaseModel):
    title: str
    start_date: str | None = None
    due_at: str | None = None
    category: str | None = None
    notes: str | None = None
    project_id: str | None = None
    repeat_enabled: bool = False
    repeat_pattern: str | None = None
    repeat_days: int | None = None
    repeat_weekly_day: int | None = None
    repeat_monthly_day: int | None = None


class CompleteBody(BaseModel):
    completed_on: str | None = None


class BulkBody(BaseModel):
    task_ids: list[Any] = Field(default_factory=list)
    action: str
    scope: str = "this"
    project_id: str | None = None
    category: str | None = None
    start_date: str | None = None
    due_at: str | None = None
    completed_on: str | None = None


class RecurrencePreview(BaseModel):
    start_date: str
    repeat_enabled: bool = True
    repeat_pattern: str | None = None
    repeat_days: int | None = None
    repeat_weekly_day: int | None = None
    repeat_monthly_day: int | None = None
    count: int = Field(5, ge=1, le=50)


# --- Profiles ---


@app.get("/api/profiles")
def api_list_profiles():
    return profile_service.list_profiles()


@app.post("/api/profiles", status_code=201)
def api_create_profile(body: ProfileCreate):
    return profile_service.create_profile(body.name)


@app.post("/api/profiles/reorder")
def api_reorder_profiles(body: ProfileReorder):
    return profile_service.reorder_profiles(body.profile_ids)


@app.get("/api/profiles/{profile_id}")
def api_get_profile(profile_id: str):
    p = profile_service.get_profile(profile_id)
    if p is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return p


@app.patch("/api/profiles/{profile_id}")
def api_rename_profile(profile_id: str, body: ProfileRename):
    p = profile_service.rename_profile(profile_id, body.name)
    if p is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return p


@app.delete("/api/profiles/{profile_id}")
def api_delete_profile(profile_id: str):
    if not profile_service.delete_profile(profile_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"status": "deleted"}


# --- Projects ---


@app.get("/api/p/{profile_id}/projects")
def api_list_projects(profile_id: str, include_archived: bool = True):
    _require_profile(profile_id)
    return project_service.list_projects(profile_id, include_archived=include_archived)


@app.post("/api/p/{profile_id}/projects", status_code=201)
def api_create_project(profile_id: str, body: ProjectCreate):
    _require_profile(profile_id)
    tz = _tz()
    return project_service.create_project(
        profile_id,
        body.name,
        category=_text(body.category, "category"),
        start_date=parse_date_input(body.start_date, "start_date", tz),
        due_at=parse_date_input(body.due_at, "due_at", tz),
    )


@app.get("/api/p/{profile_id}/projects/{project_id}")
def api_get_project(profile_id: str, project_id: str):
    _require_profile(profile_id)
    p = project_service.get_project(profile_id, project_id)
    if p is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return p


@app.patch("/api/p/{profile_id}/projects/{project_id}")
def api_update_project(profile_id: str, project_id: str, body: dict):
    _require_profile(profile_id)
    archived = body.get("archived")
    if archived is not None and not isinstance(archived, bool):
        raise ValidationError("archived", "must be a boolean")
    p = project_service.update_project(
        profile_id,
        project_id,
        name=body["name"] if "name" in body else None,
        category=(body.get("category") or "") if "category" in body else None,
        archived=archived,
    )
    if p is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return p


@app.delete("/api/p/{profile_id}/projects/{project_id}")
def api_delete_project(profile_id: str, project_id: str):
    _require_profile(profile_id)
    if not project_service.delete_project(profile_id, project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"status": "deleted"}


# --- Tasks ---


@app.get("/api/p/{profile_id}/tasks")
def api_list_tasks(
    profile_id: str,
    status: str | None = None,
    series_id: str | None = None,
    project_id: str | None = None,
    start_from: str | None = None,
    start_to: str | None = None,
    limit: int = 500,
):
    _require_profile(profile_id)
    tz = _tz()
    return task_service.list_tasks(
        profile_id,
        status=status,
        series_id=series_id,
        project_id=project_id,
        start_from=parse_date_input(start_from, "start_from", tz),
        start_to=parse_date_input(start_to, "start_to", tz),
        limit=min(limit, 1000),
    )


@app.post("/api/p/{profile_id}/tasks", status_code=201)
def api_create_task(profile_id: str, body: TaskCreate):
    _require_profile(profile_id)
    tz = _tz()
    return task_service.create_task(
        profile_id,
        body.title,
        parse_date_input(body.start_date, "start_date", tz),
        due_at=parse_date_input(body.due_at, "due_at", tz),
        category=_text(body.category, "category"),
        notes=_text(body.notes, "notes"),
        project_id=_text(body.project_id, "project_id"),
        repeat_enabled=body.repeat_enabled,
        repeat_pattern=body.repeat_pattern,
        repeat_days=body.repeat_days,
        repeat_weekly_day=body.repeat_weekly_day,
        repeat_monthly_day=body.repeat_monthly_day,
    )


# Registered before /tasks/{task_id} routes so "bulk" is never taken for an id
@app.post("/api/p/{profile_id}/tasks/bulk")
def api_bulk_tasks(profile_id: str, body: BulkBody):
    _require_profile(profile_id)
    tz = _tz()
    result = bulk_service.bulk_apply(
        profile_id,
        body.task_ids,
        body.scope,
        body.action,
        project_id=_text(body.project_id, "project_id"),
        category=_text(body.category, "category"),
        start_date=parse_date_input(body.start_date, "start_date", tz),
        due_at=parse_date_input(body.due_at, "due_at", tz),
        completed_on=parse_date_input(body.completed_on, "completed_on", tz),
    )
    return {"ok": True, **result}


@app.get("/api/p/{profile_id}/tasks/{task_id}")
def api_get_task(profile_id: str, task_id: str):
    _require_profile(profile_id)
    t = task_service.get_task(profile_id, task_id)
    if t is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return t


_PATCH_TEXT_FIELDS = ("notes", "category", "project_id")
_PATCH_INT_FIELDS = ("repeat_days", "repeat_weekly_day", "repeat_monthly_day")


@app.patch("/api/p/{profile_id}/tasks/{task_id}")
def api_update_task(profile_id: str, task_id: str, body: dict):
    """Partial update. Only keys present in the body change; `completed` toggles done/open."""
    _require_profile(profile_id)
    if task_service.get_task(profile_id, task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found")
    tz = _tz()
    changes: dict[str, Any] = {}
    if "title" in body:
        changes["title"] = body["title"]
    for key in _PATCH_TEXT_FIELDS:
        if key in body:
            changes[key] = _text(body[key], key)
    if "start_date" in body:
        changes["start_date"] = parse_date_input(body["start_date"], "start_date", tz)
    if "due_at" in body:
        changes["due_at"] = parse_date_input(body["due_at"], "due_at", tz)
    if "repeat_enabled" in body:
        if not isinstance(body["repeat_enabled"], bool):
            raise ValidationError("repeat_enabled", "must be a boolean")
        changes["repeat_enabled"] = body["repeat_enabled"]
    if "repeat_pattern" in body:
        changes["repeat_pattern"] = body["repeat_pattern"]
    for key in _PATCH_INT_FIELDS:
        if key in body:
            changes[key] = body[key]
    completed = body.get("completed")
    if "completed" in body and not isinstance(completed, bool):
        raise ValidationError("completed", "must be a boolean")
    completed_on = parse_date_input(body.get("completed_on"), "completed_on", tz)
    if not changes and "completed" not in body:
        raise ValidationError(
            "body",
            "must include at least one of title, start_date, due_at, category, notes, project_id, "
            "repeat_enabled, repeat_pattern, repeat_days, repeat_weekly_day, repeat_monthly_day, or completed",
        )
    return task_service.patch_task(profile_id, task_id, changes, completed, completed_on)


@app.delete("/api/p/{profile_id}/tasks/{task_id}")
def api_delete_task(profile_id: str, task_id: str, scope: str = "this"):
    _require_profile(profile_id)
    result = task_service.delete_occurrence(profile_id, task_id, scope)
    return {"status": "deleted", **result}


@app.post("/api/p/{profile_id}/tasks/{task_id}/complete")
def api_complete_task(profile_id: str, task_id: str, body: CompleteBody | None = None):
    _require_profile(profile_id)
    completed_on = parse_date_input(body.completed_on if body else None, "completed_on", _tz())
    return task_service.complete_occurrence(profile_id, task_id, completed_on)


@app.post("/api/p/{profile_id}/tasks/{task_id}/reopen")
def api_reopen_task(profile_id: str, task_id: str):
    _require_profile(profile_id)
    return task_service.reopen_occurrence(profile_id, task_id)


@app.get("/api/p/{profile_id}/tasks/{task_id}/history")
def api_task_history(profile_id: str, task_id: str, limit: int = 100):
    _require_profile(profile_id)
    return task_service.get_task_history(profile_id, task_id, limit=min(limit, 1000))


# --- Insights ---


@app.get("/api/p/{profile_id}/insights")
def api_insights(
    profile_id: str,
    view: str = "day",
    date: str | None = None,
    basis: str = "calendar-days",
    week_starts_monday: bool = True,
):
    """Completion and backlog metrics for the day, week or month around `date` (default today)."""
    _require_profile(profile_id)
    return insights_service.get_insights(
        profile_id,
        view,
        parse_date_input(date, "date", _tz()),
        week_starts_monday=week_starts_monday,
        average_basis=basis,
    )


# --- Recurrence ---


@app.post("/api/recurrence/preview")
def api_recurrence_preview(body: RecurrencePreview):
    """Normalize a recurrence against a start date and list its next occurrences."""
    start = parse_date_input(body.start_date, "start_date", _tz())
    spec = normalize_recurrence(
        body.repeat_enabled,
        body.repeat_pattern,
        body.repeat_days,
        body.repeat_weekly_day,
        body.repeat_monthly_day,
        start,
    )
    return {
        "spec": spec.as_columns(),
        "next": [d.isoformat() for d in upcoming_occurrences(start, spec, body.count)],
    }


def main() -> None:
    import uvicorn
    config = load_config()
    uvicorn.run(
        "web_app:app",
        host="0.0.0.0",
        port=config.web_ui_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
