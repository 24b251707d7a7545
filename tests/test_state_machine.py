from datetime import timedelta

from conftest import program

from work_timer.models import IdleEvent, WorkState
from work_timer.state_machine import ActivityStateMachine
from work_timer.store import StoreError


def _start_working(machine, writer, clock):
    machine.on_project_selected(writer.id)
    clock.advance(10)
    machine.on_program_change(program("Microsoft Word"))
    assert machine.state == WorkState.WORKING


def test_starts_resting_with_selected_project(work_logs, catalog, settings, clock, writer):
    catalog.select_project(writer.id)
    machine = ActivityStateMachine(work_logs, catalog, lambda: settings, clock=clock)

    assert machine.state == WorkState.RESTING
    assert machine.project_id == writer.id
    assert machine.resting_start_time == clock.now
    assert machine.working_start_time is None


def test_writer_session_escalates_then_rests(machine, writer, clock, work_logs):
    _start_working(machine, writer, clock)
    assert machine.project_id == writer.id

    clock.advance(1200)
    machine.check_timers()
    assert machine.state == WorkState.HARD_WORKING

    clock.advance(300)
    machine.on_program_change(program("Google Chrome"))
    assert machine.state == WorkState.RESTING

    logs = work_logs.query()
    assert [log.state for log in logs] == [
        WorkState.RESTING,
        WorkState.WORKING,
        WorkState.HARD_WORKING,
    ]
    assert [log.duration_seconds for log in logs] == [10, 1200, 300]
    assert logs[0].project_id is None
    assert logs[1].project_id == writer.id
    assert logs[2].project_id == writer.id
    assert logs[1].program_name == "Microsoft Word"


def test_without_project_nothing_counts_as_work(machine, clock, work_logs):
    clock.advance(30)
    machine.on_program_change(program("Microsoft Word"))

    assert machine.state == WorkState.RESTING
    assert machine.project_id is None
    assert work_logs.query() == []


def test_non_matching_program_is_resting(machine, writer, clock):
    machine.on_project_selected(writer.id)
    clock.advance(10)
    machine.on_program_change(program("Spotify"))
    assert machine.state == WorkState.RESTING


def test_logs_are_contiguous(machine, writer, clock, work_logs):
    _start_working(machine, writer, clock)
    clock.advance(60)
    machine.on_idle_detected(IdleEvent.RESTING)
    clock.advance(2)
    machine.on_idle_detected(IdleEvent.RESUME)
    clock.advance(90)
    machine.toggle_eating()
    clock.advance(600)
    machine.toggle_eating()
    clock.advance(45)
    machine.on_idle_detected("idle-sleeping")
    clock.advance(3)
    machine.on_idle_detected("idle-resume")
    clock.advance(20)
    machine.flush()

    logs = sorted(work_logs.query(), key=lambda log: log.start_time)
    assert logs
    for earlier, later in zip(logs, logs[1:]):
        assert earlier.end_time == later.start_time
    assert sum(log.duration_seconds for log in logs) == 10 + 60 + 2 + 90 + 600 + 45 + 3 + 20


def test_short_dwell_is_not_persisted(machine, writer, clock, work_logs):
    machine.on_project_selected(writer.id)
    clock.advance(100)
    machine.on_program_change(program("Microsoft Word"))
    clock.advance(3)
    machine.on_program_change(program("Slack"))
    assert machine.state == WorkState.RESTING
    clock.advance(97)
    machine.on_program_change(program("Microsoft Word"))

    logs = work_logs.query()
    assert all(log.duration_seconds > 5 for log in logs)
    assert [log.state for log in logs] == [WorkState.RESTING, WorkState.RESTING]
    assert logs[0].end_time == logs[1].start_time


def test_short_dwell_still_restarts_session(machine, writer, clock, work_logs):
    _start_working(machine, writer, clock)
    clock.advance(100)
    machine.on_program_change(program("Slack"))
    clock.advance(3)
    machine.on_program_change(program("Microsoft Word"))

    snapshot, seconds = machine.tick()

    assert snapshot.state == WorkState.WORKING
    assert snapshot.session_start_time == clock.now
    assert seconds == 0
    assert work_logs.query()[-1].end_time == clock.now - timedelta(seconds=3)


def test_repeated_program_samples_are_idempotent(machine, writer, clock, work_logs):
    _start_working(machine, writer, clock)
    received = []
    machine.state_changed.connect(received.append)

    clock.advance(30)
    assert machine.on_program_change(program("Microsoft Word")) is False
    assert machine.on_program_change(program("WINWORD")) is False

    assert received == []
    assert len(work_logs.query()) == 1


def test_hardworking_is_not_demoted_by_matching_program(machine, writer, clock):
    _start_working(machine, writer, clock)
    clock.advance(1200)
    machine.check_timers()
    assert machine.state == WorkState.HARD_WORKING

    clock.advance(30)
    machine.on_program_change(program("Word", "Draft 2"))
    assert machine.state == WorkState.HARD_WORKING


def test_escalation_waits_for_threshold(machine, writer, clock):
    _start_working(machine, writer, clock)
    clock.advance(1199)
    machine.check_timers()
    assert machine.state == WorkState.WORKING


def test_resting_escalates_to_sleeping(machine, clock):
    clock.advance(1800)
    machine.check_timers()

    assert machine.state == WorkState.SLEEPING
    assert machine.resting_start_time is None


def test_eating_ignores_programs_and_idle_resting(machine, writer, clock):
    _start_working(machine, writer, clock)
    clock.advance(30)
    assert machine.toggle_eating() == WorkState.EATING

    clock.advance(30)
    machine.on_program_change(program("Google Chrome"))
    machine.on_idle_detected(IdleEvent.RESTING)
    clock.advance(4000)
    machine.check_timers()

    assert machine.state == WorkState.EATING
    assert machine.current_program.name == "Google Chrome"


def test_toggle_eating_restores_previous_state(machine, writer, clock, work_logs):
    _start_working(machine, writer, clock)
    clock.advance(600)
    machine.toggle_eating()
    assert machine.snapshot().previous_state == WorkState.WORKING
    clock.advance(1800)
    assert machine.toggle_eating() == WorkState.WORKING

    eating = [log for log in work_logs.query() if log.state == WorkState.EATING]
    assert len(eating) == 1
    assert eating[0].duration_seconds == 1800
    assert eating[0].project_id is None


def test_sleep_while_eating_resumes_to_eating(machine, writer, clock):
    _start_working(machine, writer, clock)
    clock.advance(60)
    machine.toggle_eating()
    clock.advance(60)

    machine.on_idle_detected("sleeping")
    assert machine.state == WorkState.SLEEPING
    assert machine.snapshot().previous_state == WorkState.EATING
    clock.advance(60)
    machine.on_idle_detected("resume")
    assert machine.state == WorkState.EATING


def test_resume_reclassifies_current_program(machine, writer, clock):
    _start_working(machine, writer, clock)
    clock.advance(60)
    machine.on_idle_detected(IdleEvent.RESTING)
    assert machine.state == WorkState.RESTING

    clock.advance(60)
    machine.on_idle_detected(IdleEvent.RESUME)
    assert machine.state == WorkState.WORKING


def test_idle_resting_wakes_forced_sleep(machine, clock):
    clock.advance(60)
    machine.force_state("sleeping")
    clock.advance(60)

    assert machine.on_idle_detected(IdleEvent.RESTING) is True
    assert machine.state == WorkState.RESTING
    assert machine.snapshot().previous_state == WorkState.SLEEPING


def test_unknown_idle_event_is_ignored(machine):
    assert machine.on_idle_detected("napping") is False
    assert machine.state == WorkState.RESTING


def test_project_switch_keeps_interval_open(machine, writer, catalog, clock, work_logs):
    editor = catalog.create_project("Editor", program_matchers=["word"])
    _start_working(machine, writer, clock)
    logged = len(work_logs.query())
    clock.advance(120)

    machine.on_project_selected(editor.id)

    assert machine.state == WorkState.WORKING
    assert machine.project_id == editor.id
    assert len(work_logs.query()) == logged

    clock.advance(60)
    machine.flush()
    assert work_logs.query()[-1].project_id == editor.id


def test_selecting_project_reclassifies_program(machine, writer, clock):
    clock.advance(30)
    machine.on_program_change(program("Microsoft Word"))
    assert machine.state == WorkState.RESTING

    clock.advance(30)
    machine.on_project_selected(writer.id)
    assert machine.state == WorkState.WORKING

    clock.advance(30)
    machine.on_project_selected(None)
    assert machine.state == WorkState.RESTING


def test_force_state_accepts_loose_names(machine, clock):
    clock.advance(30)
    assert machine.force_state("Hard_Working") is True
    assert machine.state == WorkState.HARD_WORKING


def test_force_state_rejects_unknown_state(machine):
    before = machine.snapshot()
    assert machine.force_state("distracted") is False
    assert machine.snapshot() == before


def test_transition_signals_fire_in_order(machine, writer, clock):
    machine.on_project_selected(writer.id)
    events = []
    machine.state_transition.connect(lambda old, new: events.append(("transition", old, new)))
    machine.state_changed.connect(lambda snap: events.append(("changed", snap.state)))

    clock.advance(10)
    machine.on_program_change(program("Microsoft Word"))

    assert events == [
        ("transition", WorkState.RESTING, WorkState.WORKING),
        ("changed", WorkState.WORKING),
    ]


def test_persistence_failure_still_transitions(machine, writer, clock, work_logs, monkeypatch):
    failures = []
    machine.persistence_failed.connect(lambda error, log: failures.append((error, log)))

    def broken_add(log):
        raise StoreError("disk full")

    monkeypatch.setattr(work_logs, "add", broken_add)
    _start_working(machine, writer, clock)

    assert machine.state == WorkState.WORKING
    assert len(failures) == 1
    error, log = failures[0]
    assert isinstance(error, StoreError)
    assert log.state == WorkState.RESTING
    assert log.duration_seconds == 10
    assert machine.snapshot().session_start_time == clock.now


def test_tick_reports_session_duration(machine, clock):
    ticks = []
    machine.timer_tick.connect(lambda snap, seconds: ticks.append(seconds))
    clock.advance(42)

    snapshot, seconds = machine.tick()

    assert seconds == 42
    assert ticks == [42]
    assert snapshot.state == WorkState.RESTING


def test_break_reminder_fires_once_per_hour(machine, writer, clock):
    reminders = []
    machine.break_due.connect(reminders.append)
    _start_working(machine, writer, clock)

    clock.advance(3600)
    machine.check_timers()
    clock.advance(60)
    machine.check_timers()
    assert reminders == [3600]

    clock.advance(3540)
    machine.check_timers()
    assert reminders == [3600, 7200]


def test_goal_achieved_fires_once_per_day(machine, catalog, clock):
    short = catalog.create_project("Short", program_matchers=["Word"], daily_goal_hours=1)
    reached = []
    machine.goal_achieved.connect(lambda name, hours: reached.append((name, hours)))
    _start_working(machine, short, clock)

    clock.advance(1800)
    machine.check_timers()
    assert reached == []

    clock.advance(1800)
    machine.check_timers()
    clock.advance(600)
    machine.check_timers()
    assert reached == [("Short", 1.0)]


def test_flush_persists_open_interval(machine, writer, clock, work_logs):
    _start_working(machine, writer, clock)
    clock.advance(timedelta(minutes=5).total_seconds())

    log = machine.flush()

    assert log is not None
    assert log.state == WorkState.WORKING
    assert log.duration_seconds == 300
    assert machine.flush() is None
