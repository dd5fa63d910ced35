from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1
BUSY_TIMEOUT_S = 30.0


def connect(db_path: Path | str) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    # Autocommit mode: writers open their own BEGIN IMMEDIATE transactions.
    # Each connection is still used by a single thread; close() may run elsewhere.
    conn = sqlite3.connect(
        path, timeout=BUSY_TIMEOUT_S, isolation_level=None, check_same_thread=False
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS observations (
            id TEXT PRIMARY KEY,
            source_session_id TEXT NOT NULL,
            source_adapter_name TEXT NOT NULL,
            content TEXT NOT NULL,
            category TEXT NOT NULL,
            content_hash TEXT NOT NULL,
            created_at TEXT NOT NULL,
            state TEXT NOT NULL,
            state_changed_at TEXT NOT NULL,
            target_memories TEXT NOT NULL DEFAULT '[]',
            promoted_at TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_observations_state ON observations(state, created_at);
        CREATE INDEX IF NOT EXISTS idx_observations_hash ON observations(content_hash);

        CREATE TABLE IF NOT EXISTS promotion_records (
            id INTEGER PRIMARY KEY,
            observation_id TEXT NOT NULL REFERENCES observations(id),
            target_adapter_name TEXT NOT NULL,
            applied_at TEXT NOT NULL,
            content_written TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_promotion_records_pair
            ON promotion_records(observation_id, target_adapter_name);

        CREATE TABLE IF NOT EXISTS pipeline_state (
            key TEXT PRIMARY KEY,
            value TEXT
        );
        """
    )
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
