import pytest

from work_timer.config import TrackerSettings
from work_timer.events import Signal
from work_timer.models import WorkState
from work_timer.store import Store, StoreError
from work_timer.tracker import Tracker


@pytest.fixture
def sent():
    return []


@pytest.fixture
def tracker(clock, sent):
    instance = Tracker(
        Store.in_memory(),
        foreground_probe=lambda: None,
        idle_probe=lambda: None,
        sender=lambda title, message: sent.append(title),
        clock=clock,
    )
    yield instance
    instance.close()


def test_commands_drive_the_machine(tracker, clock):
    project = tracker.catalog.create_project("Writer", program_matchers=["Word"])

    assert tracker.select_project(project.id) is True
    clock.advance(10)
    tracker.simulate_program("Microsoft Word")

    snapshot, duration = tracker.snapshot()
    assert snapshot.state == WorkState.WORKING
    assert snapshot.project_id == project.id
    assert duration == 0


def test_select_unknown_project(tracker):
    assert tracker.select_project("missing") is False
    assert tracker.machine.project_id is None


def test_force_state_and_toggle_eating(tracker, clock, sent):
    clock.advance(30)
    assert tracker.force_state("nonsense") is False
    assert tracker.toggle_eating() == WorkState.EATING
    clock.advance(30)
    assert tracker.toggle_eating() == WorkState.RESTING
    assert sent == ["State changed", "State changed"]


def test_deleting_current_project_closes_interval(tracker, clock):
    project = tracker.catalog.create_project("Writer", program_matchers=["Word"])
    tracker.select_project(project.id)
    tracker.simulate_program("Word")
    clock.advance(600)

    assert tracker.delete_project(project.id) is True

    assert tracker.machine.state == WorkState.RESTING
    assert tracker.machine.project_id is None
    assert all(log.project_id != project.id for log in tracker.work_logs.query())
    assert tracker.delete_project(project.id) is False


def test_settings_update_reaches_idle_observer(tracker):
    tracker.update_settings({"sleeping_threshold_seconds": 600, "resting_threshold_seconds": 120})

    assert tracker.idle.get_config() == {
        "resting_threshold_seconds": 120.0,
        "sleeping_threshold_seconds": 600.0,
    }
    assert tracker.get_settings().sleeping_threshold_seconds == 600


def test_start_and_stop_flush_open_session(tracker, clock):
    project = tracker.catalog.create_project("Writer", program_matchers=["Word"])
    tracker.select_project(project.id)
    tracker.simulate_program("Word")
    clock.advance(100)

    tracker.start()
    assert tracker.is_running()
    tracker.stop()

    logs = tracker.work_logs.query()
    assert logs[-1].state == WorkState.WORKING
    assert logs[-1].duration_seconds == 100
    assert not tracker.is_running()


def test_start_purges_old_logs(tracker, clock):
    old_start = clock.now.replace(year=2026, month=8, day=1)
    tracker.work_logs.append(
        state=WorkState.RESTING,
        start_time=old_start,
        end_time=old_start.replace(hour=old_start.hour + 1),
    )

    tracker.start()
    tracker.stop()

    assert all(log.start_time != old_start for log in tracker.work_logs.query())


def test_defaults_seed_settings(clock):
    tracker = Tracker(
        Store.in_memory(),
        foreground_probe=lambda: None,
        idle_probe=lambda: None,
        sender=lambda title, message: None,
        defaults=TrackerSettings(sleeping_threshold_seconds=900),
        clock=clock,
    )
    try:
        assert tracker.get_settings().sleeping_threshold_seconds == 900
        assert tracker.idle.get_config()["sleeping_threshold_seconds"] == 900.0
    finally:
        tracker.close()


class FakeSleepSource:
    def __init__(self):
        self.suspended = Signal("fake-suspended")
        self.resumed = Signal("fake-resumed")
        self.running = False

    def start(self):
        self.running = True
        return True

    def stop(self):
        self.running = False


def test_system_sleep_drives_the_machine(clock):
    source = FakeSleepSource()
    tracker = Tracker(
        Store.in_memory(),
        foreground_probe=lambda: None,
        idle_probe=lambda: None,
        sender=lambda title, message: None,
        sleep_watcher=source,
        clock=clock,
    )
    try:
        project = tracker.catalog.create_project("Writer", program_matchers=["Word"])
        tracker.select_project(project.id)
        tracker.simulate_program("Word")
        clock.advance(60)

        tracker.start()
        assert source.running is True

        source.suspended.emit()
        snapshot, _ = tracker.snapshot()
        assert snapshot.state == WorkState.SLEEPING

        clock.advance(60)
        source.resumed.emit()
        snapshot, _ = tracker.snapshot()
        assert snapshot.state == WorkState.WORKING
    finally:
        tracker.close()

    assert source.running is False


def test_persistence_failure_is_recorded(tracker, clock, monkeypatch):
    def broken_add(log):
        raise StoreError("database is locked")

    monkeypatch.setattr(tracker.work_logs, "add", broken_add)
    clock.advance(30)
    tracker.toggle_eating()

    error, log = tracker.last_persistence_error
    assert str(error) == "database is locked"
    assert log.state == WorkState.RESTING
    assert log.duration_seconds == 30
