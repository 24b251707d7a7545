"""SQLite database layer for projects, work logs and settings documents."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .models import Project, WorkLog, WorkState


DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS documents (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS projects (
            seq INTEGER PRIMARY KEY,
            id TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            color TEXT NOT NULL,
            program_matchers TEXT NOT NULL DEFAULT '[]',
            daily_goal_hours REAL NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS work_logs (
            seq INTEGER PRIMARY KEY,
            id TEXT NOT NULL UNIQUE,
            project_id TEXT,
            state TEXT NOT NULL,
            program_name TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            duration_seconds REAL NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_work_logs_start_time
            ON work_logs(start_time);
        CREATE INDEX IF NOT EXISTS idx_work_logs_project
            ON work_logs(project_id);
        """
    )


def format_timestamp(value: datetime) -> str:
    return value.strftime(DATETIME_FMT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, DATETIME_FMT)


# -- documents ---------------------------------------------------------------


def fetch_document(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM documents WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def upsert_document(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO documents (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, value),
    )


# -- projects ----------------------------------------------------------------


def insert_project(conn: sqlite3.Connection, project: Project) -> None:
    conn.execute(
        """
        INSERT INTO projects (
            id,
            name,
            color,
            program_matchers,
            daily_goal_hours,
            created_at
        ) VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            project.id,
            project.name,
            project.color,
            json.dumps(project.program_matchers, ensure_ascii=False),
            project.daily_goal_hours,
            format_timestamp(project.created_at),
        ),
    )


def fetch_projects(conn: sqlite3.Connection) -> list[Project]:
    rows = conn.execute(
        """
        SELECT id, name, color, program_matchers, daily_goal_hours, created_at
        FROM projects
        ORDER BY seq
        """
    )
    return [row_to_project(row) for row in rows]


def fetch_project(conn: sqlite3.Connection, project_id: str) -> Optional[Project]:
    row = conn.execute(
        """
        SELECT id, name, color, program_matchers, daily_goal_hours, created_at
        FROM projects
        WHERE id = ?
        """,
        (project_id,),
    ).fetchone()
    return row_to_project(row) if row else None


def update_project(conn: sqlite3.Connection, project: Project) -> bool:
    cur = conn.execute(
        """
        UPDATE projects
        SET name = ?, color = ?, program_matchers = ?, daily_goal_hours = ?
        WHERE id = ?
        """,
        (
            project.name,
            project.color,
            json.dumps(project.program_matchers, ensure_ascii=False),
            project.daily_goal_hours,
            project.id,
        ),
    )
    return cur.rowcount > 0


def delete_project(conn: sqlite3.Connection, project_id: str) -> bool:
    cur = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
    return cur.rowcount > 0


def row_to_project(row: sqlite3.Row) -> Project:
    try:
        matchers = json.loads(row["program_matchers"] or "[]")
    except json.JSONDecodeError:
        matchers = []
    if not isinstance(matchers, list):
        matchers = []
    return Project(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        program_matchers=[str(item) for item in matchers],
        daily_goal_hours=float(row["daily_goal_hours"]),
        created_at=parse_timestamp(row["created_at"]),
    )


# -- work logs ---------------------------------------------------------------


def insert_work_logs(conn: sqlite3.Connection, logs: Iterable[WorkLog]) -> None:
    conn.executemany(
        """
        INSERT INTO work_logs (
            id,
            project_id,
            state,
            program_name,
            start_time,
            end_time,
            duration_seconds
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                log.id,
                log.project_id,
                log.state.value,
                log.program_name,
                format_timestamp(log.start_time),
                format_timestamp(log.end_time),
                log.duration_seconds,
            )
            for log in logs
        ],
    )


def fetch_work_logs(
    conn: sqlite3.Connection,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    *,
    project_id: Optional[str] = None,
) -> list[WorkLog]:
    """Return logs whose start time falls inside ``[start, end]`` in insertion order."""
    clauses: list[str] = []
    params: list[Any] = []
    if start is not None:
        clauses.append("start_time >= ?")
        params.append(format_timestamp(start))
    if end is not None:
        clauses.append("start_time <= ?")
        params.append(format_timestamp(end))
    if project_id is not None:
        clauses.append("project_id = ?")
        params.append(project_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = conn.execute(
        f"""
        SELECT id, project_id, state, program_name, start_time, end_time
        FROM work_logs
        {where}
        ORDER BY seq
        """,
        params,
    )
    return [log for log in (row_to_work_log(row) for row in rows) if log is not None]


def delete_work_logs_before(conn: sqlite3.Connection, cutoff: datetime) -> int:
    cur = conn.execute(
        "DELETE FROM work_logs WHERE start_time < ?", (format_timestamp(cutoff),)
    )
    return cur.rowcount


def delete_work_logs_for_project(conn: sqlite3.Connection, project_id: str) -> int:
    cur = conn.execute("DELETE FROM work_logs WHERE project_id = ?", (project_id,))
    return cur.rowcount


def row_to_work_log(row: sqlite3.Row) -> Optional[WorkLog]:
    state = WorkState.parse(row["state"])
    if state is None:
        # Rows written by a revision with a different state taxonomy.
        return None
    return WorkLog(
        id=row["id"],
        project_id=row["project_id"],
        state=state,
        program_name=row["program_name"],
        start_time=parse_timestamp(row["start_time"]),
        end_time=parse_timestamp(row["end_time"]),
    )
