from __future__ import annotations

import datetime as dt
import hashlib
import json
import sqlite3

from .. import db
from ..models import (
    NON_TERMINAL_STATUSES,
    OUTCOME_ABANDONED,
    OUTCOME_COMPLETED,
    SESSION_STATUS_FINALIZED,
    TASK_COMPLETED,
    DocumentationEntry,
    Session,
    TaskCommit,
    ThoughtRecord,
    parse_ts,
    parse_ts_opt,
    to_iso,
)


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=str(row["id"]),
        created_at=parse_ts(row["created_at"]),
        updated_at=parse_ts(row["updated_at"]),
        status=str(row["status"]),
        outcome=row["outcome"],
        thought_count=int(row["thought_count"] or 0),
        task_count=int(row["task_count"] or 0),
        tier=str(row["tier"] or "basic"),
        auto_finalized=bool(row["auto_finalized"]),
        tenant_id=row["tenant_id"],
        agent_summary=row["agent_summary"],
        metadata=db.from_json(row["metadata_json"]),
    )


def _row_to_thought(row: sqlite3.Row) -> ThoughtRecord:
    return ThoughtRecord(
        session_id=str(row["session_id"]),
        thought=str(row["thought"]),
        thought_number=int(row["thought_number"]),
        total_thoughts=int(row["total_thoughts"]),
        timestamp=parse_ts(row["created_at"]),
        branch_id=row["branch_id"],
        is_revision=bool(row["is_revision"]),
        revises_thought=row["revises_thought"],
    )


def _row_to_task(row: sqlite3.Row) -> TaskCommit:
    return TaskCommit(
        session_id=str(row["session_id"]),
        task_id=str(row["task_id"]),
        task_title=str(row["title"]),
        status=str(row["status"]),
        completed_at_thought=row["completed_at_thought"],
        description=row["description"],
        created_at=parse_ts(row["created_at"]),
        completed_at=parse_ts_opt(row["completed_at"]),
    )


def _row_to_documentation(row: sqlite3.Row) -> DocumentationEntry:
    return DocumentationEntry(
        session_id=str(row["session_id"]),
        generated_at=parse_ts(row["generated_at"]),
        summary=str(row["summary"]),
        thought_count=int(row["thought_count"]),
        task_count=int(row["task_count"]),
        content=str(row["content"]),
        branches=db.from_json_list(row["branches_json"]),
        executive_summary=str(row["executive_summary"] or ""),
        problem_statement=str(row["problem_statement"] or ""),
        approach=str(row["approach"] or ""),
        outcome=str(row["outcome"] or ""),
        key_insights=str(row["key_insights"] or ""),
        tags=db.from_json_list(row["tags_json"]),
        mode=str(row["mode"]),
        content_hash=row["content_hash"],
    )


def get_session(conn: sqlite3.Connection, session_id: str) -> Session | None:
    row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    return _row_to_session(row) if row else None


def upsert_session(conn: sqlite3.Connection, session: Session) -> None:
    conn.execute(
        """
        INSERT INTO sessions(
            id, created_at, updated_at, status, outcome, thought_count, task_count,
            tier, auto_finalized, tenant_id, agent_summary, metadata_json
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            updated_at = excluded.updated_at,
            status = excluded.status,
            outcome = excluded.outcome,
            thought_count = excluded.thought_count,
            task_count = excluded.task_count,
            tier = excluded.tier,
            auto_finalized = excluded.auto_finalized,
            tenant_id = excluded.tenant_id,
            agent_summary = excluded.agent_summary,
            metadata_json = excluded.metadata_json
        """,
        (
            session.id,
            to_iso(session.created_at),
            to_iso(session.updated_at),
            session.status,
            session.outcome,
            session.thought_count,
            session.task_count,
            session.tier,
            1 if session.auto_finalized else 0,
            session.tenant_id,
            session.agent_summary,
            db.to_json(session.metadata),
        ),
    )
    conn.commit()


def update_session(conn: sqlite3.Connection, session: Session) -> None:
    cur = conn.execute(
        """
        UPDATE sessions
        SET updated_at = ?, status = ?, outcome = ?, thought_count = ?, task_count = ?,
            tier = ?, auto_finalized = ?, tenant_id = ?, agent_summary = ?, metadata_json = ?
        WHERE id = ?
        """,
        (
            to_iso(session.updated_at),
            session.status,
            session.outcome,
            session.thought_count,
            session.task_count,
            session.tier,
            1 if session.auto_finalized else 0,
            session.tenant_id,
            session.agent_summary,
            db.to_json(session.metadata),
            session.id,
        ),
    )
    conn.commit()
    if cur.rowcount == 0:
        raise KeyError(f"unknown session: {session.id}")


def finalize_if_idle(
    conn: sqlite3.Connection,
    session_id: str,
    *,
    now: dt.datetime,
    idle_before: dt.datetime,
) -> Session | None:
    """Auto-finalize a session only if it is still non-terminal and idle.

    Status, outcome and counts are decided against the row at update time, so a
    concurrent finalization or new activity wins. Returns the finalized session,
    or None when the row no longer qualifies.
    """

    placeholders = ", ".join("?" for _ in NON_TERMINAL_STATUSES)
    row = conn.execute(
        f"""
        UPDATE sessions
        SET status = ?,
            outcome = CASE
                WHEN EXISTS (
                    SELECT 1 FROM tasks WHERE tasks.session_id = sessions.id AND tasks.status = ?
                ) THEN ?
                ELSE ?
            END,
            auto_finalized = 1,
            updated_at = ?
        WHERE id = ? AND status IN ({placeholders}) AND updated_at < ?
        RETURNING *
        """,
        (
            SESSION_STATUS_FINALIZED,
            TASK_COMPLETED,
            OUTCOME_COMPLETED,
            OUTCOME_ABANDONED,
            to_iso(now),
            session_id,
            *NON_TERMINAL_STATUSES,
            to_iso(idle_before),
        ),
    ).fetchone()
    conn.commit()
    return _row_to_session(row) if row else None


def list_non_terminal_sessions(conn: sqlite3.Connection) -> list[Session]:
    placeholders = ", ".join("?" for _ in NON_TERMINAL_STATUSES)
    rows = conn.execute(
        f"SELECT * FROM sessions WHERE status IN ({placeholders}) ORDER BY updated_at",
        NON_TERMINAL_STATUSES,
    ).fetchall()
    return [_row_to_session(row) for row in rows]


def get_thoughts(conn: sqlite3.Connection, session_id: str) -> list[ThoughtRecord]:
    rows = conn.execute(
        "SELECT * FROM thoughts WHERE session_id = ? ORDER BY thought_number",
        (session_id,),
    ).fetchall()
    return [_row_to_thought(row) for row in rows]


def add_thought(conn: sqlite3.Connection, thought: ThoughtRecord) -> None:
    conn.execute(
        """
        INSERT INTO thoughts(
            session_id, thought_number, total_thoughts, thought, branch_id,
            is_revision, revises_thought, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            thought.session_id,
            thought.thought_number,
            thought.total_thoughts,
            thought.thought,
            thought.branch_id,
            1 if thought.is_revision else 0,
            thought.revises_thought,
            to_iso(thought.timestamp),
        ),
    )
    conn.execute(
        """
        UPDATE sessions
        SET thought_count = (SELECT COUNT(*) FROM thoughts WHERE session_id = ?),
            updated_at = MAX(updated_at, ?)
        WHERE id = ?
        """,
        (thought.session_id, to_iso(thought.timestamp), thought.session_id),
    )
    conn.commit()


def get_tasks(conn: sqlite3.Connection, session_id: str) -> list[TaskCommit]:
    rows = conn.execute(
        "SELECT * FROM tasks WHERE session_id = ? ORDER BY id",
        (session_id,),
    ).fetchall()
    return [_row_to_task(row) for row in rows]


def upsert_task(conn: sqlite3.Connection, task: TaskCommit) -> None:
    conn.execute(
        """
        INSERT INTO tasks(
            session_id, task_id, title, description, status, completed_at_thought,
            created_at, completed_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(session_id, task_id) DO UPDATE SET
            title = excluded.title,
            description = excluded.description,
            status = excluded.status,
            completed_at_thought = excluded.completed_at_thought,
            completed_at = excluded.completed_at
        """,
        (
            task.session_id,
            task.task_id,
            task.task_title,
            task.description,
            task.status,
            task.completed_at_thought,
            to_iso(task.created_at),
            to_iso(task.completed_at),
        ),
    )
    conn.execute(
        """
        UPDATE sessions
        SET task_count = (SELECT COUNT(*) FROM tasks WHERE session_id = ?),
            updated_at = MAX(updated_at, ?)
        WHERE id = ?
        """,
        (task.session_id, to_iso(task.completed_at or task.created_at), task.session_id),
    )
    conn.commit()


def get_documentation(conn: sqlite3.Connection, session_id: str) -> DocumentationEntry | None:
    row = conn.execute(
        "SELECT * FROM documentation WHERE session_id = ?", (session_id,)
    ).fetchone()
    return _row_to_documentation(row) if row else None


def save_documentation(conn: sqlite3.Connection, doc: DocumentationEntry) -> None:
    conn.execute(
        """
        INSERT INTO documentation(
            session_id, generated_at, summary, thought_count, task_count, branches_json,
            content, executive_summary, problem_statement, approach, outcome,
            key_insights, tags_json, mode, content_hash
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(session_id) DO UPDATE SET
            generated_at = excluded.generated_at,
            summary = excluded.summary,
            thought_count = excluded.thought_count,
            task_count = excluded.task_count,
            branches_json = excluded.branches_json,
            content = excluded.content,
            executive_summary = excluded.executive_summary,
            problem_statement = excluded.problem_statement,
            approach = excluded.approach,
            outcome = excluded.outcome,
            key_insights = excluded.key_insights,
            tags_json = excluded.tags_json,
            mode = excluded.mode,
            content_hash = excluded.content_hash
        """,
        (
            doc.session_id,
            to_iso(doc.generated_at),
            doc.summary,
            doc.thought_count,
            doc.task_count,
            json.dumps(doc.branches, ensure_ascii=False),
            doc.content,
            doc.executive_summary,
            doc.problem_statement,
            doc.approach,
            doc.outcome,
            doc.key_insights,
            json.dumps(doc.tags, ensure_ascii=False),
            doc.mode,
            doc.content_hash,
        ),
    )
    conn.commit()


def content_hash(conn: sqlite3.Connection, session_id: str) -> str:
    """Digest of a session's thoughts and tasks.

    Recorded on each documentation entry; staleness is decided by timestamps
    and counts, not by this value.
    """

    thoughts = conn.execute(
        """
        SELECT thought_number, thought, branch_id, is_revision, revises_thought
        FROM thoughts WHERE session_id = ? ORDER BY thought_number
        """,
        (session_id,),
    ).fetchall()
    tasks = conn.execute(
        "SELECT task_id, title, description, status FROM tasks WHERE session_id = ? ORDER BY id",
        (session_id,),
    ).fetchall()
    content = json.dumps(
        {"thoughts": db.rows_to_dicts(thoughts), "tasks": db.rows_to_dicts(tasks)},
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
