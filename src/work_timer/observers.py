"""Polling observers for the foreground program and system idle time.

Both observers sample on their own thread and publish edge-triggered
events. Every start/stop bumps a generation counter; results and queued
deliveries carrying an older generation are dropped, so once ``stop()``
returns no further event reaches a listener.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from enum import Enum
from typing import Any, Optional

from .events import EventQueue, Signal
from .models import ForegroundProgram, IdleEvent
from .probes import ForegroundProbe, IdleProbe

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class _PollingObserver:
    name = "observer"

    def __init__(self, interval: timedelta, queue: Optional[EventQueue]) -> None:
        self._interval = interval
        self._queue = queue
        self._lock = threading.RLock()
        self._generation = 0
        self._running = False
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        with self._lock:
            if self._running:
                logger.info("%s is already running.", self.name)
                return
            self._running = True
            self._generation += 1
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._on_start()
            thread = threading.Thread(
                target=self._run_loop,
                args=(self._generation, stop_event),
                name=self.name,
                daemon=True,
            )
            self._thread = thread
        thread.start()
        logger.info("Started %s (every %.1fs).", self.name, self._interval.total_seconds())

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
            was_running = self._running
            self._running = False
            stop_event, self._stop_event = self._stop_event, None
            thread, self._thread = self._thread, None
            self._on_stop()
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            # A probe stuck in the OS may never return; its result is discarded anyway.
            thread.join(timeout=1.0)
        if was_running:
            logger.info("%s stopped.", self.name)

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def _current_generation(self) -> int:
        with self._lock:
            return self._generation

    def _on_start(self) -> None:
        pass

    def _on_stop(self) -> None:
        pass

    def _tick(self, generation: int) -> None:
        raise NotImplementedError

    def _run_loop(self, generation: int, stop_event: threading.Event) -> None:
        interval = self._interval.total_seconds()
        while not stop_event.is_set():
            try:
                self._tick(generation)
            except Exception:
                logger.exception("%s tick failed.", self.name)
            stop_event.wait(interval)

    def _publish(self, generation: int, signal: Signal, *args: Any) -> None:
        if self._queue is None:
            self._deliver(generation, signal, args)
        else:
            self._queue.post(self._deliver, generation, signal, args)

    def _deliver(self, generation: int, signal: Signal, args: tuple) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("%s dropped stale %s event.", self.name, signal.name)
                return
            signal.emit(*args)


class ForegroundObserver(_PollingObserver):
    """Samples the foreground program and emits ``program_changed`` on change.

    Queries run on a small worker pool so a slow OS call never delays the
    next scheduled sample. Results are applied in completion order.
    """

    name = "foreground-observer"

    def __init__(
        self,
        probe: ForegroundProbe,
        *,
        interval: timedelta = timedelta(milliseconds=500),
        queue: Optional[EventQueue] = None,
        max_in_flight: int = 4,
    ) -> None:
        super().__init__(interval, queue)
        self._probe = probe
        self._max_in_flight = max(1, max_in_flight)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight = 0
        self._current: Optional[ForegroundProgram] = None
        self.program_changed = Signal("program-changed")

    def get_current_program(self) -> Optional[ForegroundProgram]:
        with self._lock:
            return self._current

    def poll_once(self) -> bool:
        """Query and apply one sample on the calling thread."""
        generation = self._current_generation()
        return self._apply(generation, self._query())

    def request_sample(self) -> Optional[Future]:
        """Start an asynchronous query; ``None`` when stopped or saturated."""
        return self._submit(self._current_generation())

    def _tick(self, generation: int) -> None:
        self._submit(generation)

    def _submit(self, generation: int) -> Optional[Future]:
        with self._lock:
            executor = self._executor
            if (
                executor is None
                or generation != self._generation
                or self._in_flight >= self._max_in_flight
            ):
                return None
            self._in_flight += 1
        try:
            return executor.submit(self._sample, generation)
        except RuntimeError:
            # Executor shut down between the check and the submit.
            self._finish(generation)
            return None

    def _sample(self, generation: int) -> bool:
        try:
            return self._apply(generation, self._query())
        finally:
            self._finish(generation)

    def _finish(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation and self._in_flight > 0:
                self._in_flight -= 1

    def _query(self) -> Optional[ForegroundProgram]:
        try:
            return self._probe()
        except Exception:
            logger.debug("Foreground query failed.", exc_info=True)
            return None

    def _apply(self, generation: int, program: Optional[ForegroundProgram]) -> bool:
        if program is None:
            return False
        with self._lock:
            if generation != self._generation:
                logger.debug("Dropping late foreground sample %s.", program.name)
                return False
            if program.same_window(self._current):
                return False
            self._current = program
            logger.debug("Program changed to: %s - %s", program.name, program.title)
            self._publish(generation, self.program_changed, program)
        return True

    def _on_start(self) -> None:
        self._in_flight = 0
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_in_flight, thread_name_prefix="foreground-probe"
        )

    def _on_stop(self) -> None:
        self._current = None
        self._in_flight = 0
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


class IdleState(str, Enum):
    ACTIVE = "active"
    RESTING = "idle-resting"
    SLEEPING = "idle-sleeping"


_EVENT_FOR_STATE = {
    IdleState.RESTING: IdleEvent.RESTING,
    IdleState.SLEEPING: IdleEvent.SLEEPING,
    IdleState.ACTIVE: IdleEvent.RESUME,
}


class IdleObserver(_PollingObserver):
    """Turns polled idle seconds into edge-triggered ``idle_event`` emissions."""

    name = "idle-observer"

    def __init__(
        self,
        probe: IdleProbe,
        *,
        sleeping_threshold_seconds: float = 30 * 60,
        resting_threshold_seconds: Optional[float] = None,
        interval: timedelta = timedelta(seconds=10),
        queue: Optional[EventQueue] = None,
    ) -> None:
        super().__init__(interval, queue)
        self._probe = probe
        self._sleeping_threshold = float(sleeping_threshold_seconds)
        self._resting_threshold = (
            float(resting_threshold_seconds) if resting_threshold_seconds else None
        )
        self._state = IdleState.ACTIVE
        self.idle_event = Signal("idle-event")

    def get_state(self) -> IdleState:
        with self._lock:
            return self._state

    def get_config(self) -> dict[str, Optional[float]]:
        with self._lock:
            return {
                "resting_threshold_seconds": self._resting_threshold,
                "sleeping_threshold_seconds": self._sleeping_threshold,
            }

    def update_config(
        self,
        *,
        resting_threshold_seconds: Optional[float] = _UNSET,
        sleeping_threshold_seconds: Optional[float] = None,
    ) -> None:
        """Change thresholds live; the polling loop keeps running."""
        with self._lock:
            if sleeping_threshold_seconds is not None:
                if sleeping_threshold_seconds <= 0:
                    raise ValueError("sleeping_threshold_seconds must be positive")
                self._sleeping_threshold = float(sleeping_threshold_seconds)
            if resting_threshold_seconds is not _UNSET:
                self._resting_threshold = (
                    float(resting_threshold_seconds) if resting_threshold_seconds else None
                )
            logger.info("Idle observer config updated: %s", self.get_config())

    def classify(self, idle_seconds: float) -> IdleState:
        with self._lock:
            if idle_seconds >= self._sleeping_threshold:
                return IdleState.SLEEPING
            if self._resting_threshold is not None and idle_seconds >= self._resting_threshold:
                return IdleState.RESTING
            return IdleState.ACTIVE

    def poll_once(self) -> Optional[IdleEvent]:
        generation = self._current_generation()
        idle_seconds = self._query()
        if idle_seconds is None:
            return None
        return self._evaluate(generation, idle_seconds)

    def suspend(self) -> None:
        """OS is going to sleep: force ``sleeping`` immediately."""
        self._force(IdleState.SLEEPING, "System is going to suspend.")

    def resume(self) -> None:
        """OS woke up: force ``resume`` immediately."""
        self._force(IdleState.ACTIVE, "System resumed from suspend.")

    def _force(self, state: IdleState, message: str) -> None:
        with self._lock:
            if not self._running:
                return
            logger.info(message)
            self._state = state
            self._publish(self._generation, self.idle_event, _EVENT_FOR_STATE[state])

    def _tick(self, generation: int) -> None:
        idle_seconds = self._query()
        if idle_seconds is not None:
            self._evaluate(generation, idle_seconds)

    def _query(self) -> Optional[float]:
        try:
            return self._probe()
        except Exception:
            logger.debug("Idle query failed.", exc_info=True)
            return None

    def _evaluate(self, generation: int, idle_seconds: float) -> Optional[IdleEvent]:
        with self._lock:
            if generation != self._generation:
                return None
            previous = self._state
            new_state = self.classify(idle_seconds)
            if new_state == previous:
                return None
            self._state = new_state
            logger.info(
                "Idle state changed: %s -> %s (idle: %.0fs)",
                previous.value,
                new_state.value,
                idle_seconds,
            )
            event = _EVENT_FOR_STATE[new_state]
            self._publish(generation, self.idle_event, event)
            return event

    def _on_start(self) -> None:
        self._state = IdleState.ACTIVE
