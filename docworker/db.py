from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .config import DEFAULT_DB_PATH

__all__ = [
    "DEFAULT_DB_PATH",
    "connect",
    "from_json",
    "from_json_list",
    "initialize_schema",
    "rows_to_dicts",
    "to_json",
]


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    if str(db_path) == ":memory:":
        conn = sqlite3.connect(":memory:", check_same_thread=check_same_thread)
    else:
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            status TEXT NOT NULL,
            outcome TEXT,
            thought_count INTEGER NOT NULL DEFAULT 0,
            task_count INTEGER NOT NULL DEFAULT 0,
            tier TEXT NOT NULL DEFAULT 'basic',
            auto_finalized INTEGER NOT NULL DEFAULT 0,
            tenant_id TEXT,
            agent_summary TEXT,
            metadata_json TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_status_updated ON sessions(status, updated_at);

        CREATE TABLE IF NOT EXISTS thoughts (
            id INTEGER PRIMARY KEY,
            session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            thought_number INTEGER NOT NULL,
            total_thoughts INTEGER NOT NULL,
            thought TEXT NOT NULL,
            branch_id TEXT,
            is_revision INTEGER NOT NULL DEFAULT 0,
            revises_thought INTEGER,
            created_at TEXT NOT NULL,
            UNIQUE(session_id, thought_number)
        );

        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY,
            session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            task_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL,
            completed_at_thought INTEGER,
            created_at TEXT NOT NULL,
            completed_at TEXT,
            UNIQUE(session_id, task_id)
        );

        CREATE TABLE IF NOT EXISTS documentation (
            session_id TEXT PRIMARY KEY REFERENCES sessions(id) ON DELETE CASCADE,
            generated_at TEXT NOT NULL,
            summary TEXT NOT NULL,
            thought_count INTEGER NOT NULL,
            task_count INTEGER NOT NULL,
            branches_json TEXT,
            content TEXT NOT NULL,
            executive_summary TEXT NOT NULL DEFAULT '',
            problem_statement TEXT NOT NULL DEFAULT '',
            approach TEXT NOT NULL DEFAULT '',
            outcome TEXT NOT NULL DEFAULT '',
            key_insights TEXT NOT NULL DEFAULT '',
            tags_json TEXT,
            mode TEXT NOT NULL,
            content_hash TEXT
        );

        CREATE TABLE IF NOT EXISTS retry_queue (
            id INTEGER PRIMARY KEY,
            session_id TEXT NOT NULL,
            retry_count INTEGER NOT NULL,
            due_at_ms INTEGER NOT NULL,
            event_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_retry_queue_due ON retry_queue(due_at_ms);

        CREATE TABLE IF NOT EXISTS dead_letters (
            id INTEGER PRIMARY KEY,
            session_id TEXT NOT NULL,
            event_json TEXT NOT NULL,
            error TEXT NOT NULL,
            failed_at TEXT NOT NULL,
            retry_count INTEGER NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_dead_letters_failed_at ON dead_letters(failed_at DESC);
        """
    )
    conn.commit()


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def from_json(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def from_json_list(text: str | None) -> list[str]:
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, list):
        return []
    return [str(item) for item in data]


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(r) for r in rows]
