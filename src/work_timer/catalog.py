"""Project catalog and the current-project pointer."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Optional

from . import db
from .events import Signal
from .models import Project
from .store import Store
from .worklog import WorkLogStore, new_id

logger = logging.getLogger(__name__)

CURRENT_PROJECT_KEY = "current_project_id"
DEFAULT_COLOR = "#3B82F6"
DEFAULT_DAILY_GOAL_HOURS = 8.0

_EDITABLE_FIELDS = {"name", "color", "program_matchers", "daily_goal_hours"}


class ProjectCatalog:
    def __init__(self, store: Store, work_logs: WorkLogStore) -> None:
        self._store = store
        self._work_logs = work_logs
        self.selection_changed: Signal = Signal("project-selected")

    def list_projects(self) -> list[Project]:
        return self._store.run(db.fetch_projects)

    def get_project(self, project_id: Optional[str]) -> Optional[Project]:
        if not project_id:
            return None
        return self._store.run(lambda conn: db.fetch_project(conn, project_id))

    def create_project(
        self,
        name: str,
        *,
        color: str = DEFAULT_COLOR,
        program_matchers: Iterable[str] = (),
        daily_goal_hours: float = DEFAULT_DAILY_GOAL_HOURS,
    ) -> Project:
        project = Project(
            id=new_id(),
            name=_clean_name(name),
            color=color or DEFAULT_COLOR,
            program_matchers=_clean_matchers(program_matchers),
            daily_goal_hours=_clean_goal(daily_goal_hours),
            created_at=datetime.now(),
        )
        self._store.run(lambda conn: db.insert_project(conn, project))
        logger.info("Project added: %s", project.name)
        return project

    def update_project(self, project_id: str, **changes: Any) -> bool:
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown project fields: {', '.join(sorted(unknown))}")
        project = self.get_project(project_id)
        if project is None:
            logger.error("Project not found: %s", project_id)
            return False

        if "name" in changes:
            changes["name"] = _clean_name(changes["name"])
        if "program_matchers" in changes:
            changes["program_matchers"] = _clean_matchers(changes["program_matchers"])
        if "daily_goal_hours" in changes:
            changes["daily_goal_hours"] = _clean_goal(changes["daily_goal_hours"])
        if "color" in changes and not changes["color"]:
            changes["color"] = DEFAULT_COLOR

        updated = replace(project, **changes)
        saved = self._store.run(lambda conn: db.update_project(conn, updated))
        if saved:
            logger.info("Project updated: %s", project_id)
        return saved

    def add_program_matcher(self, project_id: str, matcher: str) -> bool:
        """Append ``matcher`` to a project unless an equal matcher is already listed."""
        project = self.get_project(project_id)
        cleaned = matcher.strip() if isinstance(matcher, str) else ""
        if project is None or not cleaned:
            return False
        if cleaned.lower() in (item.lower() for item in project.program_matchers):
            return False
        return self.update_project(
            project_id, program_matchers=[*project.program_matchers, cleaned]
        )

    def delete_project(self, project_id: str) -> bool:
        """Delete a project together with every work log attributed to it."""
        with self._store.transaction() as conn:
            deleted = db.delete_project(conn, project_id)
            if not deleted:
                logger.error("Project not found: %s", project_id)
                return False
            removed = self._work_logs.delete_by_project(project_id)
        logger.info("Project deleted: %s (%d logs removed)", project_id, removed)
        if self.get_selected_project_id() == project_id:
            self.select_project(None)
        return True

    def get_selected_project_id(self) -> Optional[str]:
        value = self._store.get(CURRENT_PROJECT_KEY)
        return value if isinstance(value, str) and value else None

    def select_project(self, project_id: Optional[str]) -> bool:
        if project_id is not None and self.get_project(project_id) is None:
            logger.error("Cannot select unknown project: %s", project_id)
            return False
        self._store.set(CURRENT_PROJECT_KEY, project_id)
        logger.info("Current project set to: %s", project_id)
        self.selection_changed.emit(project_id)
        return True


def _clean_name(name: object) -> str:
    cleaned = name.strip() if isinstance(name, str) else ""
    if not cleaned:
        raise ValueError("project name is required")
    return cleaned


def _clean_goal(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError("daily_goal_hours must be a positive number")
    return float(value)


def _clean_matchers(matchers: Iterable[str]) -> list[str]:
    if isinstance(matchers, str):
        matchers = [matchers]
    elif matchers is None or isinstance(matchers, (bytes, dict)):
        raise ValueError("program_matchers must be a list of strings")
    cleaned: list[str] = []
    for item in matchers:
        text = str(item).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned
