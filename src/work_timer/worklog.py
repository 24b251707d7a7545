"""Append-only collection of closed work intervals."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Optional

from . import db
from .events import Signal
from .models import WorkLog, WorkState
from .store import Store

logger = logging.getLogger(__name__)


def new_id() -> str:
    return secrets.token_hex(16)


class WorkLogStore:
    """Write path and range queries for :class:`WorkLog` records."""

    def __init__(self, store: Store) -> None:
        self._store = store
        self.appended: Signal = Signal("work-log-appended")

    def append(
        self,
        *,
        state: WorkState,
        start_time: datetime,
        end_time: datetime,
        project_id: Optional[str] = None,
        program_name: Optional[str] = None,
    ) -> WorkLog:
        return self.add(
            WorkLog(
                id=new_id(),
                project_id=project_id,
                state=state,
                program_name=program_name,
                start_time=start_time,
                end_time=end_time,
            )
        )

    def add(self, log: WorkLog) -> WorkLog:
        """Persist an already built record."""
        if log.end_time <= log.start_time:
            raise ValueError("end_time must be after start_time")
        self._store.run(lambda conn: db.insert_work_logs(conn, [log]))
        logger.info(
            "Work log added: %s %.0fs project=%s", log.state.value, log.duration_seconds, log.project_id
        )
        self.appended.emit(log)
        return log

    def query(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[WorkLog]:
        return self._store.run(lambda conn: db.fetch_work_logs(conn, start, end))

    def query_project(
        self, project_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[WorkLog]:
        return self._store.run(
            lambda conn: db.fetch_work_logs(conn, start, end, project_id=project_id)
        )

    def engaged_seconds(self, project_id: str, start: datetime, end: datetime) -> float:
        return sum(
            log.duration_seconds
            for log in self.query_project(project_id, start, end)
            if log.state.is_engaged
        )

    def purge_older_than(self, cutoff: datetime) -> int:
        removed = self._store.run(lambda conn: db.delete_work_logs_before(conn, cutoff))
        if removed:
            logger.info("Cleaned %d old logs.", removed)
        return removed

    def delete_by_project(self, project_id: str) -> int:
        removed = self._store.run(lambda conn: db.delete_work_logs_for_project(conn, project_id))
        logger.debug("Deleted %d logs for project %s.", removed, project_id)
        return removed
