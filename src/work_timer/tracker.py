"""Tracker runtime: wires observers, the state machine and persistence."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from .catalog import ProjectCatalog
from .config import SettingsStore, TrackerSettings
from .events import EventQueue
from .models import ForegroundProgram, StateSnapshot, WorkLog, WorkState
from .notifications import NotificationDispatcher, Sender
from .observers import ForegroundObserver, IdleObserver
from .probes import ForegroundProbe, IdleProbe, default_probes
from .sleep import SleepWatcher, default_sleep_watcher
from .state_machine import ActivityStateMachine
from .store import Store, StoreError
from .worklog import WorkLogStore

logger = logging.getLogger(__name__)

LOG_RETENTION = timedelta(days=30)


class Tracker:
    """Owns every component for one process lifetime.

    Observer events and user commands all run on the event queue's single
    consumer, so the state machine never handles two inputs at once.
    """

    def __init__(
        self,
        store: Store,
        *,
        foreground_probe: Optional[ForegroundProbe] = None,
        idle_probe: Optional[IdleProbe] = None,
        sender: Optional[Sender] = None,
        sleep_watcher: Optional[SleepWatcher] = None,
        defaults: Optional[TrackerSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.sleep_watcher = sleep_watcher
        self.last_persistence_error: Optional[tuple[Exception, WorkLog]] = None
        self._clock = clock
        self._lock = threading.Lock()
        self._running = False
        self._timer_stop: Optional[threading.Event] = None
        self._timer_thread: Optional[threading.Thread] = None

        self.settings_store = SettingsStore(store, defaults=defaults)
        self._settings = self.settings_store.load()
        self.work_logs = WorkLogStore(store)
        self.catalog = ProjectCatalog(store, self.work_logs)
        self.queue = EventQueue("state-machine")

        if foreground_probe is None or idle_probe is None:
            default_foreground, default_idle = default_probes()
            foreground_probe = foreground_probe or default_foreground
            idle_probe = idle_probe or default_idle

        self.machine = ActivityStateMachine(
            self.work_logs, self.catalog, self.get_settings, clock=clock
        )
        self.foreground = ForegroundObserver(
            foreground_probe,
            interval=self._settings.foreground_interval,
            queue=self.queue,
        )
        self.idle = IdleObserver(
            idle_probe,
            sleeping_threshold_seconds=self._settings.sleeping_threshold_seconds,
            resting_threshold_seconds=self._settings.resting_threshold_seconds,
            interval=self._settings.idle_interval,
            queue=self.queue,
        )
        self.notifier = NotificationDispatcher(self.get_settings, sender)
        self.notifier.attach(self.machine)

        self.foreground.program_changed.connect(self.machine.on_program_change)
        self.idle.idle_event.connect(self.machine.on_idle_detected)
        self.settings_store.changed.connect(self._on_settings_changed)
        self.machine.persistence_failed.connect(self._on_persistence_failed)
        if sleep_watcher is not None:
            sleep_watcher.suspended.connect(self.idle.suspend)
            sleep_watcher.resumed.connect(self.idle.resume)

    @classmethod
    def open(cls, db_path: Path, **kwargs: Any) -> "Tracker":
        kwargs.setdefault("sleep_watcher", default_sleep_watcher())
        return cls(Store.open(db_path), **kwargs)

    def get_settings(self) -> TrackerSettings:
        return self._settings

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True

        try:
            self.work_logs.purge_older_than(self._clock() - LOG_RETENTION)
        except StoreError:
            logger.exception("Purging old work logs failed.")

        self.queue.start()
        self.foreground.start()
        self.idle.start()
        if self.sleep_watcher is not None:
            self.sleep_watcher.start()

        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run_timers, args=(stop_event,), name="tracker-timers", daemon=True
        )
        self._timer_stop = stop_event
        self._timer_thread = thread
        thread.start()
        logger.info("Tracker started; writing to %s", self.store.path or "memory")

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False

        if self.sleep_watcher is not None:
            self.sleep_watcher.stop()
        self.foreground.stop()
        self.idle.stop()
        if self._timer_stop is not None:
            self._timer_stop.set()
        if self._timer_thread is not None:
            self._timer_thread.join(timeout=5)
        self._timer_stop = None
        self._timer_thread = None

        try:
            self.queue.call(self.machine.flush)
        except Exception:
            logger.exception("Flushing the current session failed.")
        finally:
            self.queue.stop()
        logger.info("Tracker stopped.")

    def close(self) -> None:
        try:
            self.stop()
        finally:
            self.store.close()

    def run_forever(self) -> None:
        stop_event = threading.Event()
        try:
            self.run_until_stopped(stop_event)
        except KeyboardInterrupt:
            logger.info("Tracker interrupted; flushing current session.")
        finally:
            self.close()

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        self.start()
        try:
            while not stop_event.wait(1.0):
                pass
        finally:
            self.stop()

    def _run_timers(self, stop_event: threading.Event) -> None:
        settings = self._settings
        tick = settings.tick_interval.total_seconds()
        check = settings.escalation_interval.total_seconds()
        last_check = time.monotonic()
        while not stop_event.wait(tick):
            self.queue.post(self.machine.tick)
            if time.monotonic() - last_check >= check:
                last_check = time.monotonic()
                self.queue.post(self.machine.check_timers)

    def _on_settings_changed(self, settings: TrackerSettings) -> None:
        self._settings = settings
        self.idle.update_config(
            resting_threshold_seconds=settings.resting_threshold_seconds,
            sleeping_threshold_seconds=settings.sleeping_threshold_seconds,
        )

    def _on_persistence_failed(self, error: Exception, log: WorkLog) -> None:
        self.last_persistence_error = (error, log)
        logger.error(
            "Lost %s interval %s - %s: %s",
            log.state.value,
            log.start_time,
            log.end_time,
            error,
        )

    # -- commands ------------------------------------------------------------

    def snapshot(self) -> tuple[StateSnapshot, int]:
        return self.queue.call(
            lambda: (self.machine.snapshot(), self.machine.session_duration_seconds())
        )

    def select_project(self, project_id: Optional[str]) -> bool:
        if not self.catalog.select_project(project_id):
            return False
        self.queue.call(self.machine.on_project_selected, project_id)
        return True

    def delete_project(self, project_id: str) -> bool:
        if self.catalog.get_project(project_id) is None:
            return False
        if self.machine.project_id == project_id:
            # Close the open interval before its logs are cascaded away.
            self.queue.call(self.machine.on_project_selected, None)
        return self.catalog.delete_project(project_id)

    def toggle_eating(self) -> WorkState:
        return self.queue.call(self.machine.toggle_eating)

    def force_state(self, state: Union[WorkState, str]) -> bool:
        return self.queue.call(self.machine.force_state, state)

    def simulate_program(self, name: str, title: Optional[str] = None) -> bool:
        program = ForegroundProgram(name=name, title=title or name)
        return self.queue.call(self.machine.on_program_change, program)

    def update_settings(self, changes: Mapping[str, Any]) -> TrackerSettings:
        return self.settings_store.update(changes)
