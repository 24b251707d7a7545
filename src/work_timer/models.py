"""Domain models for tracked work state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class WorkState(str, Enum):
    WORKING = "working"
    HARD_WORKING = "hardworking"
    RESTING = "resting"
    EATING = "eating"
    SLEEPING = "sleeping"

    @property
    def is_engaged(self) -> bool:
        """Engaged states accrue time billable to the selected project."""
        return self in ENGAGED_STATES

    @classmethod
    def parse(cls, value: object) -> Optional["WorkState"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower().replace("_", "").replace("-", "")
        for state in cls:
            if state.value == lowered or state.name.replace("_", "").lower() == lowered:
                return state
        return None


ENGAGED_STATES = frozenset({WorkState.WORKING, WorkState.HARD_WORKING})


class IdleEvent(str, Enum):
    RESTING = "resting"
    SLEEPING = "sleeping"
    RESUME = "resume"


@dataclass(frozen=True, slots=True)
class ForegroundProgram:
    """A single foreground window sample."""

    name: str
    title: str = ""
    bundle_id: Optional[str] = None

    def same_window(self, other: Optional["ForegroundProgram"]) -> bool:
        return other is not None and self.name == other.name and self.title == other.title


@dataclass(slots=True)
class Project:
    id: str
    name: str
    color: str
    program_matchers: list[str] = field(default_factory=list)
    daily_goal_hours: float = 8.0
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True, slots=True)
class WorkLog:
    """A closed interval spent continuously in one state."""

    id: str
    project_id: Optional[str]
    state: WorkState
    program_name: Optional[str]
    start_time: datetime
    end_time: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


@dataclass(frozen=True, slots=True)
class StateSnapshot:
    state: WorkState
    project_id: Optional[str]
    program_name: Optional[str]
    session_start_time: datetime
    previous_state: Optional[WorkState]

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "project_id": self.project_id,
            "program_name": self.program_name,
            "session_start_time": self.session_start_time.isoformat(),
            "previous_state": self.previous_state.value if self.previous_state else None,
        }
