from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from .config import DocWorkerConfig
from .doc_parser import parse_batch_response
from .documents import DocumentWriter
from .errors import BatchParseError
from .generation import TextGenerator
from .models import MODE_BATCH, TIERS, Event, SessionContext, resolve_tier
from .prompts import build_batch_prompt

logger = logging.getLogger(__name__)


@dataclass
class PendingSession:
    context: SessionContext
    event: Event

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def tier(self) -> str:
        return resolve_tier(self.context.session, self.event)


FailureCallback = Callable[[Event, BaseException], None]
SuccessCallback = Callable[[PendingSession], None]


class BatchAccumulator:
    """Collects small sessions and documents them several at a time.

    A batch is flushed when ``batch_size`` sessions are pending or when the
    window timer armed by the first pending session fires, whichever is first.
    Pending state and the timer are owned by ``_lock``; generation happens
    outside it.
    """

    def __init__(
        self,
        config: DocWorkerConfig,
        generator: TextGenerator,
        writer: DocumentWriter,
        *,
        on_failure: FailureCallback | None = None,
        on_success: SuccessCallback | None = None,
    ) -> None:
        self.config = config
        self.generator = generator
        self.writer = writer
        self.on_failure = on_failure
        self.on_success = on_success
        self._lock = threading.Lock()
        self._pending: dict[str, PendingSession] = {}
        self._timer: threading.Timer | None = None
        self._generation = 0

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def enqueue(self, context: SessionContext, event: Event) -> None:
        batch: list[PendingSession] = []
        with self._lock:
            self._pending[context.session_id] = PendingSession(context=context, event=event)
            if len(self._pending) >= self.config.batch_size:
                batch = self._take_locked()
            elif self._timer is None:
                self._arm_timer_locked()
        if batch:
            logger.info("batch size reached", extra={"sessions": len(batch)})
            self._flush(batch)

    def flush(self) -> int:
        with self._lock:
            batch = self._take_locked()
        if batch:
            self._flush(batch)
        return len(batch)

    def drain(self) -> int:
        """Flush everything pending in ``batch_size`` chunks and disarm the timer."""

        with self._lock:
            self._cancel_timer_locked()
            pending = list(self._pending.values())
            self._pending.clear()
        size = max(1, self.config.batch_size)
        for start in range(0, len(pending), size):
            self._flush(pending[start : start + size])
        if pending:
            logger.info("batch accumulator drained", extra={"sessions": len(pending)})
        return len(pending)

    def _arm_timer_locked(self) -> None:
        self._generation += 1
        timer = threading.Timer(
            float(self.config.batch_window_seconds),
            self._on_timer,
            args=(self._generation,),
        )
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer_locked(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _take_locked(self) -> list[PendingSession]:
        self._cancel_timer_locked()
        ids = list(self._pending)[: max(1, self.config.batch_size)]
        batch = [self._pending.pop(session_id) for session_id in ids]
        if self._pending:
            self._arm_timer_locked()
        return batch

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            batch = self._take_locked()
        if batch:
            logger.info("batch window elapsed", extra={"sessions": len(batch)})
            self._flush(batch)

    def _flush(self, batch: list[PendingSession]) -> None:
        groups = {tier: [item for item in batch if item.tier == tier] for tier in TIERS}
        groups = {tier: items for tier, items in groups.items() if items}
        if len(groups) == 1:
            for tier, items in groups.items():
                self._flush_group(tier, items)
            return
        with ThreadPoolExecutor(
            max_workers=len(groups), thread_name_prefix="docworker-batch"
        ) as pool:
            futures = [
                pool.submit(self._flush_group, tier, items) for tier, items in groups.items()
            ]
            for future in futures:
                future.result()

    def _flush_group(self, tier: str, items: list[PendingSession]) -> None:
        model = self.config.model_for_tier(tier)
        session_ids = [item.session_id for item in items]
        try:
            text = self.generator.generate(
                build_batch_prompt([item.context for item in items]),
                model=model,
                max_tokens=self.config.batch_max_tokens,
            )
        except Exception as exc:
            logger.exception(
                "batch generation failed",
                extra={"tier": tier, "model": model, "session_ids": session_ids},
                exc_info=exc,
            )
            for item in items:
                self._report_failure(item, exc)
            return

        docs = parse_batch_response(text, expected_ids=session_ids)
        for item in items:
            parsed = docs.get(item.session_id)
            if parsed is None:
                logger.warning(
                    "no parsed documentation for session",
                    extra={"session_id": item.session_id, "tier": tier},
                )
                self._report_failure(item, BatchParseError(item.session_id))
                continue
            try:
                self.writer.write(item.context, parsed, mode=MODE_BATCH)
            except Exception as exc:
                logger.exception(
                    "batch documentation save failed",
                    extra={"session_id": item.session_id},
                    exc_info=exc,
                )
                self._report_failure(item, exc)
                continue
            if self.on_success is not None:
                self.on_success(item)

    def _report_failure(self, item: PendingSession, exc: BaseException) -> None:
        if self.on_failure is None:
            return
        try:
            self.on_failure(item.event, exc)
        except Exception as callback_exc:
            logger.exception(
                "batch failure callback failed",
                extra={"session_id": item.session_id},
                exc_info=callback_exc,
            )
