from __future__ import annotations

import pytest
from conftest import BASE_TIME

from docworker.config import DocWorkerConfig
from docworker.models import EVENT_FINALIZED, Event, EventPayload
from docworker.retry import DeadLetterSink, RetryScheduler
from docworker.store import SessionStore


def _event(session_id: str = "s1") -> Event:
    return Event(
        type=EVENT_FINALIZED,
        session_id=session_id,
        timestamp=BASE_TIME,
        payload=EventPayload(outcome="completed"),
    )


def test_delays_follow_schedule_and_clamp(store: SessionStore, config: DocWorkerConfig) -> None:
    scheduler = RetryScheduler(store, config)
    assert [scheduler.delay_ms(n) for n in (1, 2, 3, 4, 9)] == [
        5000,
        30000,
        120000,
        120000,
        120000,
    ]


def test_schedule_persists_event_with_retry_count(
    store: SessionStore, config: DocWorkerConfig
) -> None:
    scheduler = RetryScheduler(store, config)

    due = scheduler.schedule(_event(), 2, now=1_000)

    assert due == 31_000
    assert scheduler.depth() == 1
    [row] = store.list_retries()
    assert row["retry_count"] == 2
    assert row["due_at_ms"] == 31_000


def test_tick_delivers_only_due_events(store: SessionStore, config: DocWorkerConfig) -> None:
    delivered: list[Event] = []
    scheduler = RetryScheduler(store, config, deliver=delivered.append)
    scheduler.schedule(_event("early"), 1, now=0)
    scheduler.schedule(_event("late"), 3, now=0)

    assert scheduler.tick(now=4_999) == 0
    assert scheduler.tick(now=5_000) == 1
    assert [(e.session_id, e.retry_count) for e in delivered] == [("early", 1)]
    assert scheduler.depth() == 1

    assert scheduler.tick(now=120_000) == 1
    assert [e.session_id for e in delivered] == ["early", "late"]
    assert scheduler.depth() == 0


def test_tick_continues_after_delivery_error(store: SessionStore, config: DocWorkerConfig) -> None:
    seen: list[str] = []

    def deliver(event: Event) -> None:
        seen.append(event.session_id)
        if event.session_id == "bad":
            raise RuntimeError("pool closed")

    scheduler = RetryScheduler(store, config, deliver=deliver)
    scheduler.schedule(_event("bad"), 1, now=0)
    scheduler.schedule(_event("good"), 1, now=1)

    assert scheduler.tick(now=10_000) == 1
    assert seen == ["bad", "good"]
    assert scheduler.depth() == 0


def test_tick_without_target_raises(store: SessionStore, config: DocWorkerConfig) -> None:
    with pytest.raises(RuntimeError):
        RetryScheduler(store, config).tick()


def test_start_stop_thread(store: SessionStore, config: DocWorkerConfig) -> None:
    scheduler = RetryScheduler(store, config, deliver=lambda event: None)
    scheduler.start()
    scheduler.start()
    scheduler.stop(timeout=1.0)
    scheduler.stop(timeout=1.0)


def test_dead_letter_records_max_retries(store: SessionStore, config: DocWorkerConfig) -> None:
    sink = DeadLetterSink(store, config)

    entry = sink.record(_event().with_retry_count(3), RuntimeError("model unavailable"))

    assert entry.id is not None
    assert entry.retry_count == config.max_retries
    assert entry.error == "model unavailable"
    assert sink.count() == 1
    [listed] = sink.list()
    assert listed.event.session_id == "s1"
    assert listed.event.payload.outcome == "completed"


def test_replay_resets_retry_budget(store: SessionStore, config: DocWorkerConfig) -> None:
    sink = DeadLetterSink(store, config)
    entry = sink.record(_event().with_retry_count(3), "boom")
    published: list[Event] = []

    event = sink.replay(entry.id, published.append)

    assert event is not None
    assert event.retry_count == 0
    assert published == [event]
    assert sink.count() == 0
    assert sink.replay(entry.id, published.append) is None


def test_replay_keeps_entry_when_publish_fails(
    store: SessionStore, config: DocWorkerConfig
) -> None:
    sink = DeadLetterSink(store, config)
    entry = sink.record(_event(), "boom")

    def publish(event: Event) -> None:
        raise ConnectionError("bus down")

    with pytest.raises(ConnectionError):
        sink.replay(entry.id, publish)
    assert sink.count() == 1
    assert sink.list()[0].error == "boom"
