from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import replace

from .config import DocWorkerConfig
from .models import DeadLetterEntry, Event, utc_now
from .store import SessionStore

logger = logging.getLogger(__name__)

Deliver = Callable[[Event], None]


def now_ms() -> int:
    return int(time.time() * 1000)


class RetryScheduler:
    """Durable delayed redelivery backed by the ``retry_queue`` table."""

    def __init__(
        self,
        store: SessionStore,
        config: DocWorkerConfig,
        deliver: Deliver | None = None,
        *,
        batch_limit: int = 100,
    ) -> None:
        self.store = store
        self.config = config
        self.deliver = deliver
        self.batch_limit = batch_limit
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def delay_ms(self, retry_count: int) -> int:
        return self.config.retry_delay_ms(retry_count)

    def schedule(self, event: Event, retry_count: int, *, now: int | None = None) -> int:
        """Queue ``event`` for redelivery as attempt ``retry_count``; returns the due time."""

        due_at_ms = (now if now is not None else now_ms()) + self.delay_ms(retry_count)
        self.store.enqueue_retry(event.with_retry_count(retry_count), due_at_ms=due_at_ms)
        logger.info(
            "retry scheduled",
            extra={
                "session_id": event.session_id,
                "retry_count": retry_count,
                "due_at_ms": due_at_ms,
            },
        )
        return due_at_ms

    def tick(self, now: int | None = None) -> int:
        if self.deliver is None:
            raise RuntimeError("retry scheduler has no delivery target")
        current = now if now is not None else now_ms()
        delivered = 0
        for retry_id in self.store.due_retry_ids(now_ms=current, limit=self.batch_limit):
            event = self.store.claim_retry(retry_id)
            if event is None:
                continue
            try:
                self.deliver(event)
            except Exception as exc:
                logger.exception(
                    "retry delivery failed",
                    extra={"session_id": event.session_id, "retry_count": event.retry_count},
                    exc_info=exc,
                )
                continue
            delivered += 1
        return delivered

    def depth(self) -> int:
        return self.store.retry_queue_depth()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="docworker-retry", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None:
            thread.join(timeout)

    def _run(self) -> None:
        interval = max(0.1, float(self.config.retry_poll_interval_s))
        while not self._stop.wait(interval):
            try:
                self.tick()
            except Exception as exc:
                logger.exception("retry drain failed", exc_info=exc)


class DeadLetterSink:
    def __init__(self, store: SessionStore, config: DocWorkerConfig) -> None:
        self.store = store
        self.config = config

    def record(self, event: Event, error: BaseException | str) -> DeadLetterEntry:
        entry = DeadLetterEntry(
            event=event,
            error=str(error),
            failed_at=utc_now(),
            retry_count=self.config.max_retries,
        )
        entry_id = self.store.record_dead_letter(entry)
        logger.error(
            "event dead-lettered",
            extra={
                "session_id": event.session_id,
                "event_type": event.type,
                "retry_count": entry.retry_count,
                "error": entry.error,
            },
        )
        return replace(entry, id=entry_id)

    def list(self, limit: int = 25) -> list[DeadLetterEntry]:
        return self.store.list_dead_letters(limit=limit)

    def count(self) -> int:
        return self.store.dead_letter_count()

    def replay(self, entry_id: int, publish: Deliver) -> Event | None:
        """Republish a dead-lettered event with a fresh retry budget.

        The entry is removed before publishing; if publishing raises, it is
        recorded again so it is not lost.
        """

        entry = self.store.take_dead_letter(entry_id)
        if entry is None:
            return None
        event = entry.event.with_retry_count(0)
        try:
            publish(event)
        except Exception:
            self.store.record_dead_letter(entry)
            raise
        logger.info(
            "dead letter replayed",
            extra={"session_id": event.session_id, "dead_letter_id": entry_id},
        )
        return event
