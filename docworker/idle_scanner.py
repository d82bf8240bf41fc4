from __future__ import annotations

import datetime as dt
import logging
import threading

from .config import DocWorkerConfig
from .events import EventBus, publish_event
from .models import (
    EVENT_IDLE_TIMEOUT,
    Event,
    EventPayload,
    Session,
    utc_now,
)
from .store import SessionStore

logger = logging.getLogger(__name__)


class IdleSessionScanner:
    """Auto-finalizes sessions with no activity for ``idle_timeout_minutes``.

    Finalization is announced on the bus as ``session.idle_timeout``; the
    scanner never calls the documentation pipeline itself.
    """

    def __init__(self, config: DocWorkerConfig, store: SessionStore, bus: EventBus) -> None:
        self.config = config
        self.store = store
        self.bus = bus
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def idle_timeout(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.config.idle_timeout_minutes)

    def tick(self, now: dt.datetime | None = None) -> list[str]:
        """Run one scan; returns the ids of sessions finalized."""

        current = now or utc_now()
        idle_before = current - self.idle_timeout
        finalized: list[str] = []
        for session in self.store.list_non_terminal_sessions():
            if session.updated_at >= idle_before:
                continue
            try:
                done = self._finalize(session, current, idle_before)
            except Exception as exc:
                logger.exception(
                    "idle finalization failed",
                    extra={"session_id": session.id},
                    exc_info=exc,
                )
                continue
            if done:
                finalized.append(session.id)
        if finalized:
            logger.info("idle sessions finalized", extra={"count": len(finalized)})
        return finalized

    def _finalize(self, session: Session, now: dt.datetime, idle_before: dt.datetime) -> bool:
        updated = self.store.finalize_if_idle(session.id, now=now, idle_before=idle_before)
        if updated is None:
            logger.debug(
                "session changed before idle finalization", extra={"session_id": session.id}
            )
            return False
        idle_for = now - session.updated_at
        event = Event(
            type=EVENT_IDLE_TIMEOUT,
            session_id=updated.id,
            timestamp=now,
            tenant_id=updated.tenant_id,
            payload=EventPayload(
                outcome=updated.outcome,
                idle_minutes=int(idle_for.total_seconds() // 60),
                thought_count=updated.thought_count,
                task_count=updated.task_count,
                tier=updated.tier,
            ),
        )
        publish_event(self.bus, self.config.events_topic, event)
        logger.info(
            "session auto-finalized",
            extra={"session_id": updated.id, "outcome": updated.outcome},
        )
        return True

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="docworker-idle", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None:
            thread.join(timeout)

    def _run(self) -> None:
        interval = max(0.1, float(self.config.scan_interval_s))
        while True:
            try:
                self.tick()
            except Exception as exc:
                logger.exception("idle scan failed", exc_info=exc)
            if self._stop.wait(interval):
                return
