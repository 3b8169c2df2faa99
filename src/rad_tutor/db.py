"""Database initialization and connection management."""
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from rad_tutor.config import DEFAULT_DB_PATH
from rad_tutor.errors import PersistenceError

SCHEMA = """
CREATE TABLE IF NOT EXISTS cases (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    modality TEXT,
    body_part TEXT,
    diagnosis TEXT,
    difficulty INTEGER DEFAULT 2,
    clinical_history TEXT,
    findings TEXT,
    teaching_points TEXT,
    image_url TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS case_progress (
    user_id TEXT NOT NULL,
    case_id TEXT NOT NULL,
    ease_factor REAL NOT NULL DEFAULT 2.5,
    interval_days INTEGER NOT NULL DEFAULT 1,
    repetitions INTEGER NOT NULL DEFAULT 0,
    next_review_date TEXT NOT NULL,
    last_reviewed_at TEXT NOT NULL,
    PRIMARY KEY (user_id, case_id)
);

CREATE INDEX IF NOT EXISTS idx_case_progress_due
    ON case_progress (user_id, next_review_date);

CREATE TABLE IF NOT EXISTS attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT,
    case_id TEXT NOT NULL,
    correct INTEGER NOT NULL,
    time_spent_ms INTEGER DEFAULT 0,
    session_id TEXT,
    answer_index INTEGER,
    correct_index INTEGER,
    attempted_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_attempts_user ON attempts (user_id, attempted_at);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    mode TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    started_at TEXT NOT NULL,
    completed_at TEXT,
    cards TEXT NOT NULL,
    current_index INTEGER NOT NULL DEFAULT 0,
    correct_count INTEGER NOT NULL DEFAULT 0,
    streak INTEGER NOT NULL DEFAULT 0,
    xp_earned INTEGER NOT NULL DEFAULT 0,
    plan_id TEXT,
    milestone_index INTEGER,
    rewards_enabled INTEGER NOT NULL DEFAULT 1,
    summary TEXT
);

CREATE TABLE IF NOT EXISTS session_answers (
    session_id TEXT NOT NULL REFERENCES sessions(id),
    card_index INTEGER NOT NULL,
    case_id TEXT NOT NULL,
    answer_index INTEGER NOT NULL,
    correct_index INTEGER NOT NULL,
    correct INTEGER NOT NULL,
    time_spent_ms INTEGER DEFAULT 0,
    xp_earned INTEGER DEFAULT 0,
    answered_at TEXT NOT NULL,
    UNIQUE(session_id, card_index)
);

CREATE TABLE IF NOT EXISTS active_sessions (
    user_id TEXT PRIMARY KEY,
    session_state TEXT NOT NULL,
    device_id TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_challenges (
    challenge_date TEXT PRIMARY KEY,
    case_ids TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_completions (
    user_id TEXT NOT NULL,
    challenge_date TEXT NOT NULL,
    score INTEGER NOT NULL,
    total INTEGER NOT NULL,
    completed_at TEXT NOT NULL,
    UNIQUE(user_id, challenge_date)
);

CREATE TABLE IF NOT EXISTS daily_reward_claims (
    user_id TEXT NOT NULL,
    challenge_date TEXT NOT NULL,
    session_id TEXT NOT NULL,
    claimed_at TEXT NOT NULL,
    PRIMARY KEY (user_id, challenge_date)
);

CREATE TABLE IF NOT EXISTS user_xp (
    user_id TEXT PRIMARY KEY,
    total_xp INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS xp_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    amount INTEGER NOT NULL,
    reason TEXT NOT NULL,
    reference TEXT,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_xp_reference
    ON xp_transactions (user_id, reference);

CREATE TABLE IF NOT EXISTS study_plan_templates (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    category TEXT,
    milestones TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_study_plans (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    template_id TEXT,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    current_milestone INTEGER NOT NULL DEFAULT 0,
    milestones TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS study_plan_progress (
    plan_id TEXT NOT NULL,
    case_id TEXT NOT NULL,
    milestone_index INTEGER NOT NULL,
    correct INTEGER NOT NULL,
    attempted_at TEXT NOT NULL,
    UNIQUE(plan_id, case_id)
);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 5.0) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path, timeout=timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


@contextmanager
def transaction(db_path: str, immediate: bool = True, timeout: float = 5.0) -> Iterator[sqlite3.Connection]:
    """Yield a connection inside one transaction; commit on success, roll back on error.

    With ``immediate`` the write lock is taken up front, so read-modify-write
    sequences on the same rows are serialized across connections.
    """
    try:
        conn = get_connection(db_path, timeout=timeout)
    except sqlite3.Error as exc:
        raise PersistenceError(f"cannot open {db_path}: {exc}") from exc
    try:
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise PersistenceError(str(exc)) from exc
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()
