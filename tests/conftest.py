from datetime import datetime, timedelta

import pytest

from work_timer.catalog import ProjectCatalog
from work_timer.config import TrackerSettings
from work_timer.models import ForegroundProgram
from work_timer.state_machine import ActivityStateMachine
from work_timer.store import Store
from work_timer.worklog import WorkLogStore


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 10, 19, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


def program(name: str, title: str = "") -> ForegroundProgram:
    return ForegroundProgram(name=name, title=title or name)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    s = Store.in_memory()
    yield s
    s.close()


@pytest.fixture
def work_logs(store):
    return WorkLogStore(store)


@pytest.fixture
def catalog(store, work_logs):
    return ProjectCatalog(store, work_logs)


@pytest.fixture
def settings():
    return TrackerSettings(hardworking_threshold_seconds=1200, sleeping_threshold_seconds=1800)


@pytest.fixture
def machine(work_logs, catalog, settings, clock):
    return ActivityStateMachine(work_logs, catalog, lambda: settings, clock=clock)


@pytest.fixture
def writer(catalog):
    return catalog.create_project("Writer", program_matchers=["Word"], daily_goal_hours=8)
