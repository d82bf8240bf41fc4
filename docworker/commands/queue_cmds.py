from __future__ import annotations

import datetime as dt

from rich import print

from docworker.commands.common import exit_with_error, store_from_config
from docworker.config import DocWorkerConfig
from docworker.events import create_event_bus, publish_event
from docworker.models import Event
from docworker.retry import DeadLetterSink


def dead_letters_list_cmd(cfg: DocWorkerConfig, *, limit: int) -> None:
    """Show the most recent dead-lettered events."""

    store = store_from_config(cfg)
    try:
        sink = DeadLetterSink(store, cfg)
        entries = sink.list(limit)
        total = sink.count()
    finally:
        store.close()
    if not entries:
        print("No dead letters")
        return
    print(f"[bold]Dead letters[/bold] ({len(entries)} of {total})")
    for entry in entries:
        print(
            f"- #{entry.id} {entry.event.session_id} {entry.event.type} "
            f"failed_at={entry.failed_at.isoformat()} retries={entry.retry_count}"
        )
        print(f"  error: {entry.error}")


def dead_letters_replay_cmd(cfg: DocWorkerConfig, *, entry_id: int) -> None:
    """Republish a dead-lettered event with its retry count reset."""

    store = store_from_config(cfg)
    bus = create_event_bus(cfg)
    try:

        def _publish(event: Event) -> None:
            publish_event(bus, cfg.events_topic, event)

        event = DeadLetterSink(store, cfg).replay(entry_id, _publish)
    finally:
        bus.close()
        store.close()
    if event is None:
        exit_with_error(f"No dead letter with id {entry_id}")
    print(f"Replayed {event.type} for {event.session_id} on {cfg.events_topic}")


def retry_queue_cmd(cfg: DocWorkerConfig, *, limit: int) -> None:
    """Show queued retries ordered by due time."""

    store = store_from_config(cfg)
    try:
        items = store.list_retries(limit=limit)
        depth = store.retry_queue_depth()
    finally:
        store.close()
    if not items:
        print("Retry queue is empty")
        return
    print(f"[bold]Retry queue[/bold] ({len(items)} of {depth})")
    for item in items:
        due = dt.datetime.fromtimestamp(int(item["due_at_ms"]) / 1000, tz=dt.UTC)
        print(
            f"- #{item['id']} {item['session_id']} attempt={item['retry_count']} "
            f"due={due.isoformat()}"
        )
