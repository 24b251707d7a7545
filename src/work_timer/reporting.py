"""Statistics over work logs and simple console reporting."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Iterable, Optional

from .catalog import ProjectCatalog
from .models import WorkLog, WorkState
from .worklog import WorkLogStore


@dataclass(slots=True)
class Statistics:
    state_seconds: dict[WorkState, float] = field(default_factory=dict)
    project_seconds: dict[str, float] = field(default_factory=dict)
    logs: list[WorkLog] = field(default_factory=list)

    @property
    def work_seconds(self) -> float:
        return sum(
            seconds for state, seconds in self.state_seconds.items() if state.is_engaged
        )

    @property
    def total_seconds(self) -> float:
        return sum(self.state_seconds.values())

    def to_dict(self) -> dict:
        return {
            "total_seconds": self.total_seconds,
            "work_seconds": self.work_seconds,
            "state_seconds": {state.value: seconds for state, seconds in self.state_seconds.items()},
            "project_seconds": dict(self.project_seconds),
        }


@dataclass(slots=True)
class ProjectProgress:
    project_id: str
    name: str
    worked_seconds: float
    goal_hours: float

    @property
    def ratio(self) -> float:
        return self.worked_seconds / (self.goal_hours * 3600) if self.goal_hours else 0.0

    @property
    def achieved(self) -> bool:
        return self.ratio >= 1.0


def compute_statistics(logs: Iterable[WorkLog]) -> Statistics:
    """Totals per state and engaged seconds per project."""
    state_totals: defaultdict[WorkState, float] = defaultdict(float)
    project_totals: defaultdict[str, float] = defaultdict(float)
    collected: list[WorkLog] = []
    for log in logs:
        collected.append(log)
        state_totals[log.state] += log.duration_seconds
        if log.project_id and log.state.is_engaged:
            project_totals[log.project_id] += log.duration_seconds
    return Statistics(
        state_seconds=dict(state_totals),
        project_seconds=dict(project_totals),
        logs=collected,
    )


def day_bounds(day: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(day.date(), time.min)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def project_progress(
    catalog: ProjectCatalog, work_logs: WorkLogStore, day: datetime
) -> list[ProjectProgress]:
    start, end = day_bounds(day)
    stats = compute_statistics(work_logs.query(start, end))
    return [
        ProjectProgress(
            project_id=project.id,
            name=project.name,
            worked_seconds=stats.project_seconds.get(project.id, 0.0),
            goal_hours=project.daily_goal_hours,
        )
        for project in catalog.list_projects()
    ]


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, catalog: ProjectCatalog, work_logs: WorkLogStore) -> None:
        self._catalog = catalog
        self._work_logs = work_logs

    def print_daily_summary(self, day: datetime) -> None:
        start, end = day_bounds(day)
        stats = compute_statistics(self._work_logs.query(start, end))
        if not stats.logs:
            print("No activity recorded for the selected day.")
            return

        print(f"Summary for {day.strftime('%Y-%m-%d')}")
        print("-" * 40)
        for state in WorkState:
            seconds = stats.state_seconds.get(state)
            if seconds:
                print(f"{state.value.capitalize() + ':':<14}{format_duration(seconds)}")
        print(f"{'Total:':<14}{format_duration(stats.total_seconds)}")

        progress = [
            item
            for item in project_progress(self._catalog, self._work_logs, day)
            if item.worked_seconds
        ]
        if progress:
            print()
            print("Projects:")
            for item in sorted(progress, key=lambda p: p.worked_seconds, reverse=True):
                marker = " (goal reached)" if item.achieved else ""
                print(
                    f"  {item.name[:28]:<30} {format_duration(item.worked_seconds)}"
                    f" / {item.goal_hours:g}h{marker}"
                )


def format_duration(seconds: Optional[float]) -> str:
    total_seconds = int(round(seconds or 0))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
