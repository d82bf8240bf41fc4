from __future__ import annotations

import logging
import threading
import weakref

from .models import DocumentationEntry, ParsedDocument, SessionContext
from .store import SessionStore

logger = logging.getLogger(__name__)


class DocumentWriter:
    """Serializes documentation writes per session id.

    A result built from an older snapshot is dropped when the stored document
    was generated at or after that snapshot and covers at least as many
    thoughts and tasks.
    """

    def __init__(self, store: SessionStore) -> None:
        self.store = store
        # Entries vanish once no writer holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def lock_for(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def _superseded(self, existing: DocumentationEntry, context: SessionContext) -> bool:
        return (
            existing.generated_at >= context.loaded_at
            and existing.thought_count >= len(context.thoughts)
            and existing.task_count >= len(context.tasks)
        )

    def write(
        self, context: SessionContext, parsed: ParsedDocument, *, mode: str
    ) -> DocumentationEntry | None:
        session_id = context.session_id
        with self.lock_for(session_id):
            existing = self.store.get_documentation(session_id)
            if existing is not None and self._superseded(existing, context):
                logger.info(
                    "documentation already newer than snapshot",
                    extra={"session_id": session_id, "mode": mode},
                )
                return None
            entry = DocumentationEntry.from_parsed(
                context,
                parsed,
                mode=mode,
                content_hash=self.store.content_hash(session_id),
            )
            self.store.save_documentation(entry)
        logger.info(
            "documentation saved",
            extra={"session_id": session_id, "mode": mode, "thoughts": entry.thought_count},
        )
        return entry
