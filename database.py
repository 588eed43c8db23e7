"""
SQLite database initialization and connection for taskloop.
Self-bootstrapping: creates DB file, tables, indexes, and constraints on first run.
"""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from errors import StorageFailure, TrackerError

# Default DB path: project directory
_DEFAULT_DB_PATH = Path(__file__).resolve().parent / "taskloop.db"

# Wait up to this many seconds for locks (concurrent request handlers share the file)
_CONNECT_TIMEOUT = 30.0

DEFAULT_PROFILE_ID = "default"

SERIES_INDEX = "uq_tasks_profile_series_start"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    name TEXT NOT NULL,
    category TEXT,
    start_date TEXT,
    due_at TEXT,
    archived INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_projects_profile ON projects(profile_id, created_at);

-- Primary table: tasks
-- start_date / due_at / completed_on: civil dates (YYYY-MM-DD)
-- series_id groups the occurrences of one recurring chain (NULL = not recurring)
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    project_id TEXT,
    title TEXT NOT NULL,
    notes TEXT,
    category TEXT,
    start_date TEXT NOT NULL,
    due_at TEXT,
    completed_on TEXT,
    completed_at TEXT,
    series_id TEXT,
    repeat_enabled INTEGER NOT NULL DEFAULT 0 CHECK (repeat_enabled IN (0, 1)),
    repeat_pattern TEXT CHECK (repeat_pattern IS NULL OR repeat_pattern IN ('daily', 'weekly', 'monthly')),
    repeat_days INTEGER CHECK (repeat_days IS NULL OR (repeat_days >= 1 AND repeat_days <= 127)),
    repeat_weekly_day INTEGER CHECK (repeat_weekly_day IS NULL OR (repeat_weekly_day >= 1 AND repeat_weekly_day <= 7)),
    repeat_monthly_day INTEGER CHECK (repeat_monthly_day IS NULL OR (repeat_monthly_day >= 1 AND repeat_monthly_day <= 31)),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE,
    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_profile_start ON tasks(profile_id, start_date);
CREATE INDEX IF NOT EXISTS idx_tasks_profile_due ON tasks(profile_id, due_at);
CREATE INDEX IF NOT EXISTS idx_tasks_profile_completed ON tasks(profile_id, completed_on);
CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);

-- History log for task events (audit)
CREATE TABLE IF NOT EXISTS task_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    event TEXT NOT NULL,
    payload TEXT,
    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_task_history_task ON task_history(task_id);
"""

# Databases already bootstrapped by this process
_initialized: set[str] = set()


def get_db_path() -> Path:
    """Return the database file path (from config if set)."""
    from config import load as load_config

    path = load_config().database_path
    if path:
        return Path(path)
    return _DEFAULT_DB_PATH


def init_database(path: Path | None = None) -> Path:
    """
    Ensure the database exists and is initialized. Creates file and all tables/indexes.
    Returns the path to the database file.
    """
    db_path = (path or get_db_path()).resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=_CONNECT_TIMEOUT)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(_SCHEMA)
        # Migration: databases created before series ids existed
        try:
            conn.execute("ALTER TABLE tasks ADD COLUMN series_id TEXT")
            added = True
        except sqlite3.OperationalError as e:
            if "duplicate column" not in str(e).lower():
                raise
            added = False
        if added:
            # Every recurring row becomes the anchor of its own series
            conn.execute("UPDATE tasks SET series_id = id WHERE repeat_enabled = 1")
        # Unique index on the series slot (after the column exists)
        conn.execute(
            f"CREATE UNIQUE INDEX IF NOT EXISTS {SERIES_INDEX} ON tasks(profile_id, series_id, start_date)"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_profile_series ON tasks(profile_id, series_id)")
        # Migration: profile ordering
        try:
            conn.execute("ALTER TABLE profiles ADD COLUMN sort_order INTEGER NOT NULL DEFAULT 0")
        except sqlite3.OperationalError as e:
            if "duplicate column" not in str(e).lower():
                raise
        conn.execute(
            """INSERT OR IGNORE INTO profiles (id, name, sort_order, created_at, updated_at)
               VALUES (?, 'Default', 0, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'), strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))""",
            (DEFAULT_PROFILE_ID,),
        )
        conn.commit()
    finally:
        conn.close()
    _initialized.add(str(db_path))
    return db_path


def get_connection(path: Path | None = None) -> sqlite3.Connection:
    """Return an autocommit connection (rows as sqlite3.Row). Bootstraps the database on first use."""
    db_path = (path or get_db_path()).resolve()
    if str(db_path) not in _initialized:
        init_database(db_path)
    conn = sqlite3.connect(str(db_path), timeout=_CONNECT_TIMEOUT, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """
    One unit of work: BEGIN IMMEDIATE on entry, COMMIT on normal exit, ROLLBACK on
    any exception. sqlite3 errors leave as StorageFailure; taskloop errors propagate as-is.
    """
    conn = get_connection(path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    except TrackerError:
        raise
    except sqlite3.Error as e:
        raise StorageFailure(str(e)) from e
    finally:
        conn.close()


def is_series_conflict(exc: sqlite3.IntegrityError) -> bool:
    """True if the integrity error is the (profile, series, start_date) unique index firing."""
    msg = str(exc).lower()
    return "unique constraint failed" in msg and "series_id" in msg and "start_date" in msg


def migrate() -> Path:
    """Run database init + migrations. Use this to migrate manually: python -m database"""
    return init_database()


if __name__ == "__main__":
    p = migrate()
    print("Database migrated:", p)
