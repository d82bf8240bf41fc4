from __future__ import annotations

import httpx
from rich import print

from docworker.commands.common import exit_with_error, store_from_config
from docworker.config import DocWorkerConfig
from docworker.documents import DocumentWriter
from docworker.errors import ConfigurationError, DocWorkerError
from docworker.events import create_event_bus, publish_event
from docworker.generation import GenerationClient
from docworker.idle_scanner import IdleSessionScanner
from docworker.models import (
    FINALIZATION_EVENTS,
    Event,
    EventPayload,
    normalize_tier,
    utc_now,
)
from docworker.runtime import WorkerRuntime
from docworker.summarizer import Summarizer
from docworker.worker import DocumentationWorker


def run_cmd(cfg: DocWorkerConfig) -> None:
    """Run the worker until SIGINT/SIGTERM."""

    try:
        runtime = WorkerRuntime(cfg)
    except ConfigurationError as exc:
        exit_with_error(f"Cannot start worker: {exc}", exc)
    print(
        f"[green]docworker listening on {cfg.events_topic}[/green] "
        f"(bus={cfg.bus_backend}, batch={cfg.batch_size}/{cfg.batch_window_seconds}s, "
        f"idle={cfg.idle_timeout_minutes}m)"
    )
    runtime.run_forever()


def status_cmd(*, host: str, port: int, timeout: float) -> None:
    url = f"http://{host}:{port}/health"
    try:
        resp = httpx.get(url, timeout=timeout)
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        exit_with_error(f"Worker health check failed at {url}: {exc}", exc)
    payload = resp.json()
    print(f"[bold]docworker[/bold] {payload.get('version', '')} ({payload.get('status')})")
    print(f"- Bus: {payload.get('bus')}")
    print(f"- Pending batch: {payload.get('pendingBatch')}")
    print(f"- Processed: {payload.get('processedTotal')}")
    print(f"- Retry queue: {payload.get('retryQueueDepth')}")
    print(f"- Dead letters: {payload.get('deadLetterCount')}")
    config = payload.get("config") or {}
    print(
        f"- Config: idle={config.get('idleTimeoutMinutes')}m "
        f"batch={config.get('batchSize')} window={config.get('batchWindowSeconds')}s"
    )


def scan_once_cmd(cfg: DocWorkerConfig) -> None:
    """Run one idle scan and publish timeouts on the configured bus.

    An in-process bus has no other consumer, so with the memory backend the
    timeouts are documented here before the command exits.
    """

    store = store_from_config(cfg)
    bus = create_event_bus(cfg)
    worker: DocumentationWorker | None = None
    try:
        if cfg.bus_backend == "memory":
            try:
                worker = DocumentationWorker(cfg, store, bus, GenerationClient(cfg))
            except ConfigurationError as exc:
                exit_with_error(f"Cannot document sessions on the memory bus: {exc}", exc)
            worker.connect()
        try:
            finalized = IdleSessionScanner(cfg, store, bus).tick()
        finally:
            if worker is not None:
                worker.shutdown()
        documented = {sid for sid in finalized if store.get_documentation(sid) is not None}
    finally:
        bus.close()
        store.close()
    if not finalized:
        print("No idle sessions")
        return
    for session_id in finalized:
        if worker is None:
            print(f"- finalized {session_id}")
        elif session_id in documented:
            print(f"- finalized {session_id} (documented)")
        else:
            print(f"- finalized {session_id} (queued for retry)")


def generate_cmd(cfg: DocWorkerConfig, *, session_id: str, tier: str | None) -> None:
    """Generate documentation for one session immediately, bypassing the queue."""

    store = store_from_config(cfg)
    try:
        context = store.get_session_context(session_id)
        if context is None:
            exit_with_error(f"Session not found: {session_id}")
        try:
            generator = GenerationClient(cfg)
            summarizer = Summarizer(cfg, generator, DocumentWriter(store))
            doc = summarizer.generate_documentation(
                context, normalize_tier(tier) if tier else None
            )
        except DocWorkerError as exc:
            exit_with_error(f"Generation failed: {exc}", exc)
    finally:
        store.close()
    if doc is None:
        print("Documentation already newer than this snapshot; nothing written")
        return
    print(f"[green]Saved {doc.mode} documentation for {session_id}[/green]")
    print(doc.summary)
    if doc.tags:
        print(f"Tags: {', '.join(doc.tags)}")


def publish_cmd(
    cfg: DocWorkerConfig, *, session_id: str, event_type: str, tier: str | None
) -> None:
    if event_type not in FINALIZATION_EVENTS:
        exit_with_error(f"Unsupported event type: {event_type}")
    if cfg.bus_backend == "memory":
        exit_with_error(
            "Nothing consumes the in-process bus outside a running worker; "
            "use the redis bus or `docworker generate`"
        )
    event = Event(
        type=event_type,
        session_id=session_id,
        timestamp=utc_now(),
        payload=EventPayload(tier=normalize_tier(tier) if tier else None),
    )
    bus = create_event_bus(cfg)
    try:
        publish_event(bus, cfg.events_topic, event)
    finally:
        bus.close()
    print(f"Published {event.type} for {session_id} on {cfg.events_topic}")


def init_db_cmd(cfg: DocWorkerConfig) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    store = store_from_config(cfg)
    store.close()
    print(f"Initialized database at {store.db_path}")
