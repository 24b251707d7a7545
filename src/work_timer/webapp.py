"""FastAPI application exposing the tracker's state and commands locally."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .config import TrackerSettings
from .models import Project, WorkLog
from .paths import get_db_path
from .reporting import compute_statistics, day_bounds, project_progress
from .store import StoreError
from .tracker import Tracker

logger = logging.getLogger(__name__)


class ProjectPayload(BaseModel):
    name: str
    color: Optional[str] = None
    program_matchers: list[str] = Field(default_factory=list)
    daily_goal_hours: float = 8.0

    model_config = ConfigDict(extra="forbid")


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    program_matchers: Optional[list[str]] = None
    daily_goal_hours: Optional[float] = None

    model_config = ConfigDict(extra="forbid")


class ProgramMatcherPayload(BaseModel):
    matcher: str

    model_config = ConfigDict(extra="forbid")


class SelectionPayload(BaseModel):
    project_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ForceStatePayload(BaseModel):
    state: str

    model_config = ConfigDict(extra="forbid")


class ProgramPayload(BaseModel):
    name: str
    title: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class NotificationTogglesUpdate(BaseModel):
    state_change: Optional[bool] = None
    goal_achieved: Optional[bool] = None
    long_distraction: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class SettingsUpdate(BaseModel):
    sleeping_threshold_seconds: Optional[int] = None
    hardworking_threshold_seconds: Optional[int] = None
    resting_threshold_seconds: Optional[int] = None
    auto_start: Optional[bool] = None
    theme_color: Optional[str] = None
    notifications: Optional[NotificationTogglesUpdate] = None

    model_config = ConfigDict(extra="forbid")


def _lifespan(tracker: Tracker) -> Callable[[FastAPI], Any]:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        tracker.start()
        try:
            yield
        finally:
            tracker.stop()

    return lifespan


def create_app(
    *,
    db_path: Optional[Path] = None,
    tracker: Optional[Tracker] = None,
    settings: Optional[TrackerSettings] = None,
) -> FastAPI:
    """Instantiate the FastAPI application around a tracker."""
    resolved_tracker = tracker or Tracker.open(Path(db_path or get_db_path()), defaults=settings)

    app = FastAPI(title="Work Timer", version="0.3.0", lifespan=_lifespan(resolved_tracker))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.tracker = resolved_tracker

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        snapshot, duration = tracker.snapshot()
        return {
            "running": tracker.is_running(),
            "database_path": str(tracker.store.path) if tracker.store.path else None,
            **snapshot.to_dict(),
            "session_duration_seconds": duration,
            "last_persistence_error": _persistence_error(tracker),
        }

    @app.get("/api/projects")
    def list_projects(request: Request) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        return {
            "projects": [_project_payload(p) for p in tracker.catalog.list_projects()],
            "current_project_id": tracker.catalog.get_selected_project_id(),
        }

    @app.post("/api/projects", status_code=201)
    def create_project(payload: ProjectPayload, request: Request) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        try:
            project = tracker.catalog.create_project(
                payload.name,
                color=payload.color or "",
                program_matchers=payload.program_matchers,
                daily_goal_hours=payload.daily_goal_hours,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"project": _project_payload(project)}

    @app.patch("/api/projects/{project_id}")
    def update_project(project_id: str, payload: ProjectUpdate, request: Request) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        updates = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        try:
            updated = tracker.catalog.update_project(project_id, **updates)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not updated:
            raise HTTPException(status_code=404, detail="Project not found")
        return {"project": _project_payload(tracker.catalog.get_project(project_id))}

    @app.delete("/api/projects/{project_id}")
    def delete_project(project_id: str, request: Request) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        if not tracker.delete_project(project_id):
            raise HTTPException(status_code=404, detail="Project not found")
        return {"success": True}

    @app.post("/api/projects/{project_id}/programs")
    def add_program(
        project_id: str, payload: ProgramMatcherPayload, request: Request
    ) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        if tracker.catalog.get_project(project_id) is None:
            raise HTTPException(status_code=404, detail="Project not found")
        added = tracker.catalog.add_program_matcher(project_id, payload.matcher)
        return {"success": added, "project": _project_payload(tracker.catalog.get_project(project_id))}

    @app.put("/api/current-project")
    def select_project(payload: SelectionPayload, request: Request) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        if not tracker.select_project(payload.project_id):
            raise HTTPException(status_code=404, detail="Project not found")
        return {"current_project_id": payload.project_id}

    @app.post("/api/state/toggle-eating")
    def toggle_eating(request: Request) -> Dict[str, Any]:
        state = request.app.state.tracker.toggle_eating()
        return {"state": state.value}

    @app.post("/api/state/force")
    def force_state(payload: ForceStatePayload, request: Request) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        if not tracker.force_state(payload.state):
            raise HTTPException(status_code=400, detail=f"Unknown state: {payload.state}")
        snapshot, _ = tracker.snapshot()
        return snapshot.to_dict()

    @app.post("/api/state/program")
    def simulate_program(payload: ProgramPayload, request: Request) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        tracker.simulate_program(payload.name, payload.title)
        snapshot, _ = tracker.snapshot()
        return snapshot.to_dict()

    @app.get("/api/settings")
    def get_settings(request: Request) -> Dict[str, Any]:
        return request.app.state.tracker.settings_store.load().to_mapping()

    @app.patch("/api/settings")
    def update_settings(payload: SettingsUpdate, request: Request) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True)
        if isinstance(updates.get("notifications"), dict):
            updates["notifications"] = {
                k: v for k, v in updates["notifications"].items() if v is not None
            }
        try:
            settings = request.app.state.tracker.update_settings(updates)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return settings.to_mapping()

    @app.get("/api/statistics")
    def statistics(
        request: Request,
        start: Optional[str] = Query(
            default=None,
            description="Start date in YYYY-MM-DD format (inclusive).",
        ),
        end: Optional[str] = Query(
            default=None,
            description="End date in YYYY-MM-DD format (inclusive).",
        ),
    ) -> Dict[str, Any]:
        tracker: Tracker = request.app.state.tracker
        start_day = _parse_date(start)
        end_day = _parse_date(end) if end else start_day
        if end_day < start_day:
            raise HTTPException(
                status_code=400, detail="end date must be on or after start date"
            )
        range_end = end_day + timedelta(days=1) - timedelta(microseconds=1)
        try:
            stats = compute_statistics(tracker.work_logs.query(start_day, range_end))
            progress = project_progress(tracker.catalog, tracker.work_logs, end_day)
        except StoreError as exc:
            logger.exception("Statistics query failed.")
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {
            "start": start_day.strftime("%Y-%m-%d"),
            "end": end_day.strftime("%Y-%m-%d"),
            **stats.to_dict(),
            "goals": [
                {
                    "project_id": item.project_id,
                    "name": item.name,
                    "worked_seconds": item.worked_seconds,
                    "goal_hours": item.goal_hours,
                    "achieved": item.achieved,
                }
                for item in progress
            ],
        }

    @app.get("/api/work-logs")
    def work_logs(
        request: Request,
        date: Optional[str] = Query(
            default=None,
            description="Target date in YYYY-MM-DD format.",
        ),
    ) -> Dict[str, Any]:
        start, end = day_bounds(_parse_date(date))
        logs = request.app.state.tracker.work_logs.query(start, end)
        return {
            "date": start.strftime("%Y-%m-%d"),
            "work_logs": [_work_log_payload(log) for log in logs],
        }

    return app


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _start_of_day(datetime.now())
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    return _start_of_day(parsed)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _project_payload(project: Optional[Project]) -> Optional[Dict[str, Any]]:
    if project is None:
        return None
    return {
        "id": project.id,
        "name": project.name,
        "color": project.color,
        "program_matchers": list(project.program_matchers),
        "daily_goal_hours": project.daily_goal_hours,
        "created_at": project.created_at.isoformat(),
    }


def _work_log_payload(log: WorkLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "project_id": log.project_id,
        "state": log.state.value,
        "program_name": log.program_name,
        "start_time": log.start_time.isoformat(),
        "end_time": log.end_time.isoformat(),
        "duration_seconds": log.duration_seconds,
    }


def _persistence_error(tracker: Tracker) -> Optional[Dict[str, Any]]:
    if tracker.last_persistence_error is None:
        return None
    error, log = tracker.last_persistence_error
    return {"error": str(error), "work_log": _work_log_payload(log)}
