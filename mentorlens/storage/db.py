"""SQLite database setup and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS profiles (
    user_id TEXT PRIMARY KEY,
    skill_level TEXT NOT NULL,
    predictions_correct INTEGER NOT NULL DEFAULT 0,
    predictions_answered INTEGER NOT NULL DEFAULT 0,
    time_saved_minutes REAL NOT NULL DEFAULT 0,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS concept_mastery (
    user_id TEXT NOT NULL REFERENCES profiles(user_id) ON DELETE CASCADE,
    concept_id TEXT NOT NULL,
    level INTEGER NOT NULL DEFAULT 0,
    last_practiced TIMESTAMP,
    challenges_completed INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, concept_id)
);

CREATE TABLE IF NOT EXISTS predictions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    code_context TEXT,
    predicted_mistake TEXT,
    follow_up_question TEXT,
    mental_model TEXT,
    confidence REAL,
    response TEXT,
    created_at TIMESTAMP,
    responded_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS progress_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL REFERENCES profiles(user_id) ON DELETE CASCADE,
    kind TEXT NOT NULL,
    payload TEXT,
    occurred_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_predictions_user ON predictions(user_id);
CREATE INDEX IF NOT EXISTS idx_progress_events_user ON progress_events(user_id);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create or open a SQLite database with the mentorlens schema."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    conn.commit()

    return conn
