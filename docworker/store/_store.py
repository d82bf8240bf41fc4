from __future__ import annotations

import datetime as dt
import threading
from pathlib import Path
from typing import Any

from .. import db
from ..models import (
    DeadLetterEntry,
    DocumentationEntry,
    Event,
    Session,
    SessionContext,
    TaskCommit,
    ThoughtRecord,
    utc_now,
)
from . import queues as store_queues
from . import sessions as store_sessions


class SessionStore:
    """Thread-shared sqlite store for sessions, documentation and work queues.

    One connection is opened with ``check_same_thread=False`` and every access is
    serialized through a re-entrant lock, so the worker pool, the retry loop and
    the idle scanner can all use the same instance.
    """

    def __init__(self, db_path: Path | str = db.DEFAULT_DB_PATH):
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=False)
        db.initialize_schema(self.conn)
        self._lock = threading.RLock()
        self._closed = False

    # sessions

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return store_sessions.get_session(self.conn, session_id)

    def upsert_session(self, session: Session) -> None:
        with self._lock:
            store_sessions.upsert_session(self.conn, session)

    def update_session(self, session: Session) -> None:
        with self._lock:
            store_sessions.update_session(self.conn, session)

    def finalize_if_idle(
        self, session_id: str, *, now: dt.datetime, idle_before: dt.datetime
    ) -> Session | None:
        with self._lock:
            return store_sessions.finalize_if_idle(
                self.conn, session_id, now=now, idle_before=idle_before
            )

    def list_non_terminal_sessions(self) -> list[Session]:
        with self._lock:
            return store_sessions.list_non_terminal_sessions(self.conn)

    def get_thoughts(self, session_id: str) -> list[ThoughtRecord]:
        with self._lock:
            return store_sessions.get_thoughts(self.conn, session_id)

    def add_thought(self, thought: ThoughtRecord) -> None:
        with self._lock:
            store_sessions.add_thought(self.conn, thought)

    def get_tasks(self, session_id: str) -> list[TaskCommit]:
        with self._lock:
            return store_sessions.get_tasks(self.conn, session_id)

    def add_task(self, task: TaskCommit) -> None:
        with self._lock:
            store_sessions.upsert_task(self.conn, task)

    def get_session_context(self, session_id: str) -> SessionContext | None:
        # One lock hold so session, thoughts and tasks come from the same state.
        with self._lock:
            session = store_sessions.get_session(self.conn, session_id)
            if session is None:
                return None
            loaded_at = utc_now()
            thoughts = store_sessions.get_thoughts(self.conn, session_id)
            tasks = store_sessions.get_tasks(self.conn, session_id)
        return SessionContext(session=session, thoughts=thoughts, tasks=tasks, loaded_at=loaded_at)

    def content_hash(self, session_id: str) -> str:
        with self._lock:
            return store_sessions.content_hash(self.conn, session_id)

    # documentation

    def get_documentation(self, session_id: str) -> DocumentationEntry | None:
        with self._lock:
            return store_sessions.get_documentation(self.conn, session_id)

    def save_documentation(self, doc: DocumentationEntry) -> None:
        with self._lock:
            store_sessions.save_documentation(self.conn, doc)

    # retry queue

    def enqueue_retry(self, event: Event, *, due_at_ms: int) -> int:
        with self._lock:
            return store_queues.enqueue_retry(self.conn, event, due_at_ms=due_at_ms)

    def due_retry_ids(self, *, now_ms: int, limit: int = 100) -> list[int]:
        with self._lock:
            return store_queues.due_retry_ids(self.conn, now_ms=now_ms, limit=limit)

    def claim_retry(self, retry_id: int) -> Event | None:
        with self._lock:
            return store_queues.claim_retry(self.conn, retry_id)

    def retry_queue_depth(self) -> int:
        with self._lock:
            return store_queues.retry_queue_depth(self.conn)

    def list_retries(self, *, limit: int = 25) -> list[dict[str, Any]]:
        with self._lock:
            return store_queues.list_retries(self.conn, limit=limit)

    # dead letters

    def record_dead_letter(self, entry: DeadLetterEntry) -> int:
        with self._lock:
            return store_queues.record_dead_letter(self.conn, entry)

    def list_dead_letters(self, *, limit: int = 25) -> list[DeadLetterEntry]:
        with self._lock:
            return store_queues.list_dead_letters(self.conn, limit=limit)

    def take_dead_letter(self, entry_id: int) -> DeadLetterEntry | None:
        with self._lock:
            return store_queues.take_dead_letter(self.conn, entry_id)

    def dead_letter_count(self) -> int:
        with self._lock:
            return store_queues.dead_letter_count(self.conn)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.conn.close()
