from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from .batching import BatchAccumulator, PendingSession
from .config import DocWorkerConfig
from .documents import DocumentWriter
from .errors import SessionNotFoundError
from .events import EventBus
from .generation import TextGenerator
from .models import Event, resolve_tier
from .retry import DeadLetterSink, RetryScheduler
from .store import SessionStore
from .summarizer import Summarizer

logger = logging.getLogger(__name__)

OUTCOME_IGNORED = "ignored"
OUTCOME_SKIPPED = "skipped"
OUTCOME_BATCHED = "batched"
OUTCOME_STAGED = "staged"
OUTCOME_FAILED = "failed"


class DocumentationWorker:
    """Consumes finalization events and routes sessions to documentation.

    ``handle_event`` is the single failure boundary: anything raised while
    loading, generating, or saving goes to ``handle_failure``, which either
    schedules a retry or dead-letters the event once its retry budget is spent.
    """

    def __init__(
        self,
        config: DocWorkerConfig,
        store: SessionStore,
        bus: EventBus,
        generator: TextGenerator,
    ) -> None:
        self.config = config
        self.store = store
        self.bus = bus
        self.generator = generator
        self.writer = DocumentWriter(store)
        self.accumulator = BatchAccumulator(
            config,
            generator,
            self.writer,
            on_failure=self.handle_failure,
            on_success=self._on_batch_saved,
        )
        self.summarizer = Summarizer(config, generator, self.writer)
        self.retry = RetryScheduler(store, config, deliver=self.submit)
        self.dead_letters = DeadLetterSink(store, config)
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, config.worker_threads), thread_name_prefix="docworker"
        )
        self._counter_lock = threading.Lock()
        self._accepting = True
        self._subscribed = False
        self.started_at = time.time()
        self.processed_total = 0
        self.failed_total = 0
        self.skipped_total = 0
        self.retried_total = 0
        self.dead_lettered_total = 0

    def _bump(self, name: str) -> None:
        with self._counter_lock:
            setattr(self, name, getattr(self, name) + 1)

    @property
    def pending_batch_count(self) -> int:
        return self.accumulator.pending_count()

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    def connect(self) -> None:
        self.bus.subscribe(self.config.events_topic, self.on_message)
        self._subscribed = True
        logger.info("subscribed to events", extra={"topic": self.config.events_topic})

    def on_message(self, raw: str) -> None:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            event = Event.from_dict(data)
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            logger.warning("dropping undecodable event", extra={"error": str(exc)})
            return
        self.submit(event)

    def submit(self, event: Event) -> Future[str]:
        if not self._accepting:
            raise RuntimeError("worker is shutting down")
        return self._executor.submit(self.handle_event, event)

    def handle_event(self, event: Event) -> str:
        if not event.is_finalization:
            logger.debug(
                "ignoring event", extra={"event_type": event.type, "session_id": event.session_id}
            )
            return OUTCOME_IGNORED
        try:
            return self._process(event)
        except Exception as exc:
            logger.exception(
                "event processing failed",
                extra={
                    "session_id": event.session_id,
                    "event_type": event.type,
                    "retry_count": event.retry_count,
                },
                exc_info=exc,
            )
            self.handle_failure(event, exc)
            return OUTCOME_FAILED

    def _process(self, event: Event) -> str:
        context = self.store.get_session_context(event.session_id)
        if context is None:
            raise SessionNotFoundError(event.session_id)

        existing = self.store.get_documentation(event.session_id)
        if existing is not None and not existing.is_stale_for(context):
            logger.info("documentation up to date", extra={"session_id": event.session_id})
            self._bump("skipped_total")
            self._bump("processed_total")
            return OUTCOME_SKIPPED

        if len(context.thoughts) <= self.config.small_session_threshold:
            self.accumulator.enqueue(context, event)
            return OUTCOME_BATCHED

        self.summarizer.staged_summarization(context, resolve_tier(context.session, event))
        self._bump("processed_total")
        return OUTCOME_STAGED

    def handle_failure(self, event: Event, exc: BaseException) -> None:
        self._bump("failed_total")
        try:
            if event.retry_count >= self.config.max_retries:
                self.dead_letters.record(event, exc)
                self._bump("dead_lettered_total")
            else:
                self.retry.schedule(event, event.retry_count + 1)
                self._bump("retried_total")
        except Exception as routing_exc:
            logger.exception(
                "failed to route failed event",
                extra={"session_id": event.session_id, "retry_count": event.retry_count},
                exc_info=routing_exc,
            )

    def _on_batch_saved(self, item: PendingSession) -> None:
        self._bump("processed_total")

    def stats(self) -> dict[str, Any]:
        with self._counter_lock:
            counters = {
                "processed_total": self.processed_total,
                "failed_total": self.failed_total,
                "skipped_total": self.skipped_total,
                "retried_total": self.retried_total,
                "dead_lettered_total": self.dead_lettered_total,
            }
        counters["pending_batch_count"] = self.pending_batch_count
        return counters

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop intake, finish in-flight events, then flush pending batches."""

        self._accepting = False
        self._executor.shutdown(wait=wait)
        drained = self.accumulator.drain()
        logger.info("worker stopped", extra={"drained_sessions": drained})
