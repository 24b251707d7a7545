"""Activity state machine.

Consumes foreground-program samples, idle transitions and user commands
and maintains a single timeline of work intervals. Exactly one interval is
open at a time; closing it on a transition persists a :class:`WorkLog`.

All entry points are expected to be called from one thread (the tracker's
event queue consumer). None of them raise for malformed input.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Optional, Union

from .catalog import ProjectCatalog
from .config import TrackerSettings
from .events import Signal
from .models import ForegroundProgram, IdleEvent, Project, StateSnapshot, WorkLog, WorkState
from .normalization import matches_any
from .store import StoreError
from .worklog import WorkLogStore, new_id

logger = logging.getLogger(__name__)

# Dwells of this many seconds or fewer are never persisted on their own.
DEBOUNCE_SECONDS = 5
BREAK_REMINDER_INTERVAL = timedelta(hours=1)

_UNSET: Any = object()

_IDLE_ALIASES = {
    "idle-resting": IdleEvent.RESTING,
    "idle-sleeping": IdleEvent.SLEEPING,
    "idle-resume": IdleEvent.RESUME,
}


class ActivityStateMachine:
    def __init__(
        self,
        work_logs: WorkLogStore,
        catalog: ProjectCatalog,
        settings: Callable[[], TrackerSettings],
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._work_logs = work_logs
        self._catalog = catalog
        self._settings = settings
        self._clock = clock

        now = clock()
        self._state = WorkState.RESTING
        self._previous_state: Optional[WorkState] = None
        self._project_id = self._initial_project()
        self._program: Optional[ForegroundProgram] = None
        self._session_start = now
        self._interval_start = now
        self._interval_program: Optional[str] = None
        self._working_start: Optional[datetime] = None
        self._resting_start: Optional[datetime] = now
        self._engaged_since: Optional[datetime] = None
        self._break_reminders_sent = 0
        self._eating_return_state: Optional[WorkState] = None
        self._goals_reached: set[tuple[str, date]] = set()

        self.state_changed = Signal("state-changed")
        self.state_transition = Signal("state-transition")
        self.timer_tick = Signal("timer-tick")
        self.break_due = Signal("break-due")
        self.goal_achieved = Signal("goal-achieved")
        self.persistence_failed = Signal("persistence-failed")

        logger.info("State machine initialized (project=%s).", self._project_id)

    # -- queries -------------------------------------------------------------

    @property
    def state(self) -> WorkState:
        return self._state

    @property
    def project_id(self) -> Optional[str]:
        return self._project_id

    @property
    def current_program(self) -> Optional[ForegroundProgram]:
        return self._program

    @property
    def working_start_time(self) -> Optional[datetime]:
        return self._working_start

    @property
    def resting_start_time(self) -> Optional[datetime]:
        return self._resting_start

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            state=self._state,
            project_id=self._project_id,
            program_name=self._program.name if self._program else None,
            session_start_time=self._session_start,
            previous_state=self._previous_state,
        )

    def session_duration_seconds(self) -> int:
        return max(0, int((self._clock() - self._session_start).total_seconds()))

    # -- transitions ---------------------------------------------------------

    def set_state(self, new_state: WorkState, project_id: Optional[str] = _UNSET) -> bool:
        """Move to ``new_state``, closing the open interval.

        With an unchanged state and a different ``project_id`` the project is
        switched in place and no interval is closed. Returns whether anything
        changed.
        """
        project_changed = project_id is not _UNSET and project_id != self._project_id

        if new_state == self._state:
            if not project_changed:
                return False
            logger.info(
                "Project switched %s -> %s while %s.",
                self._project_id,
                project_id,
                self._state.value,
            )
            self._project_id = project_id
            self.state_changed.emit(self.snapshot())
            return True

        now = self._clock()
        previous = self._state
        self._close_interval(now)

        self._session_start = now
        self._previous_state = previous
        self._state = new_state
        if project_id is not _UNSET:
            self._project_id = project_id
        self._track_durations(previous, new_state, now)

        logger.info(
            "State changed: %s -> %s (project=%s)",
            previous.value,
            new_state.value,
            self._project_id,
        )
        self.state_transition.emit(previous, new_state)
        self.state_changed.emit(self.snapshot())
        return True

    def force_state(self, state: Union[WorkState, str]) -> bool:
        """Enter ``state`` without classification; unknown states are rejected."""
        parsed = WorkState.parse(state)
        if parsed is None:
            logger.warning("Rejected unknown state %r.", state)
            return False
        logger.info("Force state change to: %s", parsed.value)
        if parsed == WorkState.EATING and self._state != WorkState.EATING:
            self._eating_return_state = self._state
        self.set_state(parsed, self._project_id)
        return True

    def toggle_eating(self) -> WorkState:
        if self._state == WorkState.EATING:
            restore = self._eating_return_state or WorkState.RESTING
            self._eating_return_state = None
            self.set_state(restore)
        else:
            self._eating_return_state = self._state
            self.set_state(WorkState.EATING)
        return self._state

    def on_program_change(self, program: Optional[ForegroundProgram]) -> bool:
        self._program = program
        if program is not None and self._interval_program is None:
            self._interval_program = program.name

        # Eating is sticky: only the user or a sleep signal ends it.
        if self._state == WorkState.EATING:
            return False

        return self.set_state(self._classify(program, self._project_id), self._project_id)

    def on_project_selected(self, project_id: Optional[str]) -> bool:
        if self._state == WorkState.EATING:
            return self.set_state(WorkState.EATING, project_id)
        return self.set_state(self._classify(self._program, project_id), project_id)

    def on_idle_detected(self, kind: Union[IdleEvent, str]) -> bool:
        event = _parse_idle_event(kind)
        if event is None:
            logger.warning("Ignoring unknown idle event %r.", kind)
            return False

        if event == IdleEvent.RESTING:
            if self._state == WorkState.EATING:
                return False
            return self.set_state(WorkState.RESTING, self._project_id)

        if event == IdleEvent.SLEEPING:
            # Entering Sleeping from Eating leaves previous_state == Eating,
            # which is what resume restores.
            return self.set_state(WorkState.SLEEPING, self._project_id)

        if self._state == WorkState.SLEEPING and self._previous_state == WorkState.EATING:
            return self.set_state(WorkState.EATING)
        if self._state in (WorkState.RESTING, WorkState.SLEEPING):
            return self.set_state(self._classify(self._program, self._project_id), self._project_id)
        return False

    # -- periodic ------------------------------------------------------------

    def tick(self) -> tuple[StateSnapshot, int]:
        """Report the live session duration; never changes persisted state."""
        payload = (self.snapshot(), self.session_duration_seconds())
        self.timer_tick.emit(*payload)
        return payload

    def check_timers(self) -> None:
        """Duration-based escalation, break reminders and goal tracking."""
        now = self._clock()
        settings = self._settings()
        hardworking = timedelta(seconds=settings.hardworking_threshold_seconds)
        sleeping = timedelta(seconds=settings.sleeping_threshold_seconds)

        if (
            self._state == WorkState.WORKING
            and self._working_start is not None
            and now - self._working_start >= hardworking
        ):
            self.set_state(WorkState.HARD_WORKING)
        elif (
            self._state == WorkState.RESTING
            and self._resting_start is not None
            and now - self._resting_start >= sleeping
        ):
            self.set_state(WorkState.SLEEPING)

        self._check_break(now)
        self._check_goal(now)

    def flush(self) -> Optional[WorkLog]:
        """Persist the open interval at shutdown."""
        now = self._clock()
        log = self._close_interval(now)
        self._interval_start = now
        self._interval_program = self._program.name if self._program else None
        return log

    # -- internals -----------------------------------------------------------

    def _initial_project(self) -> Optional[str]:
        try:
            return self._catalog.get_selected_project_id()
        except StoreError:
            logger.exception("Could not read the selected project; starting without one.")
            return None

    def _lookup_project(self, project_id: Optional[str]) -> Optional[Project]:
        if not project_id:
            return None
        try:
            return self._catalog.get_project(project_id)
        except StoreError:
            logger.exception("Project lookup failed for %s.", project_id)
            return None

    def _classify(
        self, program: Optional[ForegroundProgram], project_id: Optional[str]
    ) -> WorkState:
        # Without a project nothing counts as work.
        project = self._lookup_project(project_id)
        if project is None or program is None:
            return WorkState.RESTING
        if matches_any(program.name, project.program_matchers):
            # Already engaged (possibly escalated): keep the current state.
            return self._state if self._state.is_engaged else WorkState.WORKING
        return WorkState.RESTING

    def _close_interval(self, now: datetime) -> Optional[WorkLog]:
        elapsed = (now - self._interval_start).total_seconds()
        if elapsed <= DEBOUNCE_SECONDS:
            # The short dwell is folded into the next interval.
            return None

        start = self._interval_start
        log = WorkLog(
            id=new_id(),
            project_id=self._project_id if self._state.is_engaged else None,
            state=self._state,
            program_name=self._interval_program or (self._program.name if self._program else None),
            start_time=start,
            end_time=now,
        )
        self._interval_start = now
        self._interval_program = self._program.name if self._program else None
        try:
            return self._work_logs.add(log)
        except (StoreError, ValueError) as exc:
            logger.exception("Failed to persist %s interval.", self._state.value)
            self.persistence_failed.emit(exc, log)
            return None

    def _track_durations(self, previous: WorkState, new_state: WorkState, now: datetime) -> None:
        if new_state == WorkState.WORKING:
            self._working_start = now
        elif not new_state.is_engaged:
            self._working_start = None

        if new_state.is_engaged and not previous.is_engaged:
            self._engaged_since = now
            self._break_reminders_sent = 0
        elif not new_state.is_engaged:
            self._engaged_since = None

        self._resting_start = now if new_state == WorkState.RESTING else None

    def _check_break(self, now: datetime) -> None:
        if not self._state.is_engaged or self._engaged_since is None:
            return
        worked = now - self._engaged_since
        hours = int(worked / BREAK_REMINDER_INTERVAL)
        if hours > self._break_reminders_sent:
            self._break_reminders_sent = hours
            logger.info("Break due after %.0f minutes of work.", worked.total_seconds() / 60)
            self.break_due.emit(worked.total_seconds())

    def _check_goal(self, now: datetime) -> None:
        if not self._state.is_engaged:
            return
        project = self._lookup_project(self._project_id)
        if project is None:
            return
        key = (project.id, now.date())
        if key in self._goals_reached:
            return

        day_start = datetime.combine(now.date(), time.min)
        try:
            logged = self._work_logs.engaged_seconds(project.id, day_start, now)
        except StoreError:
            logger.exception("Could not total today's work for %s.", project.name)
            return
        open_seconds = max(0.0, (now - max(self._interval_start, day_start)).total_seconds())
        if logged + open_seconds >= project.daily_goal_hours * 3600:
            self._goals_reached.add(key)
            logger.info("Daily goal of %sh reached for %s.", project.daily_goal_hours, project.name)
            self.goal_achieved.emit(project.name, project.daily_goal_hours)


def _parse_idle_event(kind: Union[IdleEvent, str]) -> Optional[IdleEvent]:
    if isinstance(kind, IdleEvent):
        return kind
    if not isinstance(kind, str):
        return None
    lowered = kind.strip().lower()
    if lowered in _IDLE_ALIASES:
        return _IDLE_ALIASES[lowered]
    try:
        return IdleEvent(lowered)
    except ValueError:
        return None
