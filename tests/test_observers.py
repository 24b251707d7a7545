import threading
from datetime import timedelta

import pytest

from work_timer.events import EventQueue
from work_timer.models import ForegroundProgram, IdleEvent
from work_timer.observers import ForegroundObserver, IdleObserver, IdleState


class SequenceProbe:
    def __init__(self, *values):
        self.values = list(values)

    def __call__(self):
        value = self.values.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


def test_foreground_emits_only_on_change():
    word = ForegroundProgram("Word", "Draft")
    probe = SequenceProbe(word, ForegroundProgram("Word", "Draft"), ForegroundProgram("Word", "Notes"))
    observer = ForegroundObserver(probe)
    received = []
    observer.program_changed.connect(received.append)

    assert observer.poll_once() is True
    assert observer.poll_once() is False
    assert observer.poll_once() is True

    assert [p.title for p in received] == ["Draft", "Notes"]
    assert observer.get_current_program().title == "Notes"


def test_foreground_failure_keeps_last_value():
    word = ForegroundProgram("Word", "Draft")
    observer = ForegroundObserver(SequenceProbe(word, None, OSError("no window")))
    received = []
    observer.program_changed.connect(received.append)

    observer.poll_once()
    assert observer.poll_once() is False
    assert observer.poll_once() is False

    assert received == [word]
    assert observer.get_current_program() == word


def test_foreground_queue_delivery_is_dropped_after_stop():
    queue = EventQueue()
    observer = ForegroundObserver(lambda: ForegroundProgram("Word"), queue=queue)
    received = []
    observer.program_changed.connect(received.append)

    assert observer.poll_once() is True
    observer.stop()
    queue.drain()

    assert received == []
    assert observer.get_current_program() is None


def test_foreground_late_sample_is_dropped_after_stop():
    entered = threading.Event()
    release = threading.Event()

    def slow_probe():
        entered.set()
        release.wait(5)
        return ForegroundProgram("Word")

    observer = ForegroundObserver(slow_probe, interval=timedelta(seconds=60))
    received = []
    observer.program_changed.connect(received.append)

    observer.start()
    assert entered.wait(5)
    executor = observer._executor
    observer.stop()
    release.set()
    executor.shutdown(wait=True)

    assert received == []
    assert observer.get_current_program() is None


def test_request_sample_runs_on_worker():
    observer = ForegroundObserver(lambda: ForegroundProgram("Word"), interval=timedelta(seconds=60))
    assert observer.request_sample() is None

    observer.start()
    try:
        future = observer.request_sample()
        if future is not None:
            future.result(timeout=5)
        received = observer.get_current_program()
    finally:
        observer.stop()

    assert received == ForegroundProgram("Word")


def test_idle_observer_is_edge_triggered():
    observer = IdleObserver(
        SequenceProbe(0.0, 2000.0, 2500.0, 3.0, 1.0),
        sleeping_threshold_seconds=1800,
    )
    received = []
    observer.idle_event.connect(received.append)

    results = [observer.poll_once() for _ in range(5)]

    assert results == [None, IdleEvent.SLEEPING, None, IdleEvent.RESUME, None]
    assert received == [IdleEvent.SLEEPING, IdleEvent.RESUME]


def test_idle_observer_resting_threshold_is_optional():
    observer = IdleObserver(lambda: 400.0, sleeping_threshold_seconds=1800)
    assert observer.classify(400) == IdleState.ACTIVE

    observer.update_config(resting_threshold_seconds=300)
    assert observer.classify(400) == IdleState.RESTING
    assert observer.poll_once() == IdleEvent.RESTING
    assert observer.get_state() == IdleState.RESTING

    observer.update_config(resting_threshold_seconds=None)
    assert observer.get_config()["resting_threshold_seconds"] is None


def test_idle_observer_update_config_applies_live():
    observer = IdleObserver(SequenceProbe(700.0, 700.0), sleeping_threshold_seconds=1800)
    assert observer.poll_once() is None

    observer.update_config(sleeping_threshold_seconds=600)
    assert observer.poll_once() == IdleEvent.SLEEPING


def test_idle_observer_rejects_invalid_threshold():
    observer = IdleObserver(lambda: 0.0)
    with pytest.raises(ValueError):
        observer.update_config(sleeping_threshold_seconds=0)


def test_idle_probe_failure_emits_nothing():
    observer = IdleObserver(SequenceProbe(OSError("no display")))
    assert observer.poll_once() is None
    assert observer.get_state() == IdleState.ACTIVE


def test_suspend_and_resume_only_while_running():
    queue = EventQueue()
    observer = IdleObserver(lambda: None, interval=timedelta(seconds=60), queue=queue)
    received = []
    observer.idle_event.connect(received.append)

    observer.suspend()
    queue.drain()
    assert received == []

    observer.start()
    try:
        observer.suspend()
        observer.resume()
        queue.drain()
    finally:
        observer.stop()

    assert received == [IdleEvent.SLEEPING, IdleEvent.RESUME]


def test_idle_events_are_dropped_after_stop():
    queue = EventQueue()
    observer = IdleObserver(lambda: 5000.0, interval=timedelta(seconds=60), queue=queue)
    received = []
    observer.idle_event.connect(received.append)

    observer.start()
    observer.suspend()
    observer.stop()
    queue.drain()

    assert received == []
