from __future__ import annotations

import json
import sqlite3
from typing import Any

from ..models import DeadLetterEntry, Event, parse_ts, to_iso, utc_now


def enqueue_retry(conn: sqlite3.Connection, event: Event, *, due_at_ms: int) -> int:
    cur = conn.execute(
        """
        INSERT INTO retry_queue(session_id, retry_count, due_at_ms, event_json, created_at)
        VALUES (?, ?, ?, ?, ?)
        RETURNING id
        """,
        (
            event.session_id,
            event.retry_count,
            due_at_ms,
            json.dumps(event.to_dict(), ensure_ascii=False),
            to_iso(utc_now()),
        ),
    )
    row = cur.fetchone()
    conn.commit()
    if row is None:
        raise RuntimeError("Failed to enqueue retry")
    return int(row["id"])


def due_retry_ids(conn: sqlite3.Connection, *, now_ms: int, limit: int = 100) -> list[int]:
    rows = conn.execute(
        """
        SELECT id FROM retry_queue
        WHERE due_at_ms <= ?
        ORDER BY due_at_ms, id
        LIMIT ?
        """,
        (now_ms, limit),
    ).fetchall()
    return [int(row["id"]) for row in rows]


def claim_retry(conn: sqlite3.Connection, retry_id: int) -> Event | None:
    """Delete a queued retry and return its event.

    Returns None when another drain already removed the row, so only one caller
    ever redelivers a given entry.
    """

    row = conn.execute(
        "DELETE FROM retry_queue WHERE id = ? RETURNING event_json",
        (retry_id,),
    ).fetchone()
    conn.commit()
    if row is None:
        return None
    return Event.from_dict(json.loads(row["event_json"]))


def retry_queue_depth(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COUNT(*) AS n FROM retry_queue").fetchone()
    return int(row["n"] or 0) if row else 0


def list_retries(conn: sqlite3.Connection, *, limit: int = 25) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT id, session_id, retry_count, due_at_ms, created_at
        FROM retry_queue
        ORDER BY due_at_ms, id
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [dict(row) for row in rows]


def record_dead_letter(conn: sqlite3.Connection, entry: DeadLetterEntry) -> int:
    cur = conn.execute(
        """
        INSERT INTO dead_letters(session_id, event_json, error, failed_at, retry_count)
        VALUES (?, ?, ?, ?, ?)
        RETURNING id
        """,
        (
            entry.event.session_id,
            json.dumps(entry.event.to_dict(), ensure_ascii=False),
            entry.error,
            to_iso(entry.failed_at),
            entry.retry_count,
        ),
    )
    row = cur.fetchone()
    conn.commit()
    if row is None:
        raise RuntimeError("Failed to record dead letter")
    return int(row["id"])


def _row_to_dead_letter(row: sqlite3.Row) -> DeadLetterEntry:
    return DeadLetterEntry(
        id=int(row["id"]),
        event=Event.from_dict(json.loads(row["event_json"])),
        error=str(row["error"]),
        failed_at=parse_ts(row["failed_at"]),
        retry_count=int(row["retry_count"]),
    )


def list_dead_letters(conn: sqlite3.Connection, *, limit: int = 25) -> list[DeadLetterEntry]:
    rows = conn.execute(
        "SELECT * FROM dead_letters ORDER BY failed_at DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [_row_to_dead_letter(row) for row in rows]


def take_dead_letter(conn: sqlite3.Connection, entry_id: int) -> DeadLetterEntry | None:
    row = conn.execute(
        "DELETE FROM dead_letters WHERE id = ? RETURNING *",
        (entry_id,),
    ).fetchone()
    conn.commit()
    return _row_to_dead_letter(row) if row else None


def dead_letter_count(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COUNT(*) AS n FROM dead_letters").fetchone()
    return int(row["n"] or 0) if row else 0
