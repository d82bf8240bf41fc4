from __future__ import annotations

import datetime as dt
import gc

from conftest import SessionFactory, doc_body, fresh_documentation

from docworker.doc_parser import parse_document
from docworker.documents import DocumentWriter
from docworker.models import MODE_BATCH, MODE_STAGED, DocumentationEntry
from docworker.store import SessionStore


def test_write_saves_entry_with_branches_and_hash(
    store: SessionStore, make_session: SessionFactory
) -> None:
    make_session("s1", thoughts=4, branch_every=2)
    context = store.get_session_context("s1")
    assert context is not None

    entry = DocumentWriter(store).write(
        context, parse_document("s1", doc_body(summary="Did it.")), mode=MODE_BATCH
    )

    assert entry is not None
    stored = store.get_documentation("s1")
    assert stored is not None
    assert stored.summary == "Did it."
    assert stored.branches == ["b1", "b2"]
    assert stored.tags == ["auth", "jwt"]
    assert stored.thought_count == 4
    assert stored.content_hash == store.content_hash("s1")


def test_summary_falls_back_when_executive_summary_missing(
    store: SessionStore, make_session: SessionFactory
) -> None:
    make_session("s1", thoughts=30)
    context = store.get_session_context("s1")
    assert context is not None

    entry = DocumentWriter(store).write(
        context, parse_document("s1", "no sections at all"), mode=MODE_STAGED
    )

    assert entry is not None
    assert entry.summary == "Large session with 30 thoughts"


def test_older_snapshot_does_not_overwrite_newer_document(
    store: SessionStore, make_session: SessionFactory
) -> None:
    make_session("s1", thoughts=2)
    context = store.get_session_context("s1")
    assert context is not None
    newer = DocumentationEntry(
        session_id="s1",
        generated_at=context.loaded_at + dt.timedelta(seconds=5),
        summary="newer",
        thought_count=2,
        task_count=0,
        content="newer",
    )
    store.save_documentation(newer)

    result = DocumentWriter(store).write(context, parse_document("s1", doc_body()), mode=MODE_BATCH)

    assert result is None
    stored = store.get_documentation("s1")
    assert stored is not None
    assert stored.summary == "newer"


def test_stale_document_is_replaced(store: SessionStore, make_session: SessionFactory) -> None:
    make_session("s1", thoughts=2)
    fresh_documentation(store, "s1")
    context = store.get_session_context("s1")
    assert context is not None
    context.thoughts = context.thoughts + context.thoughts[:1]

    result = DocumentWriter(store).write(context, parse_document("s1", doc_body()), mode=MODE_BATCH)

    assert result is not None
    stored = store.get_documentation("s1")
    assert stored is not None
    assert stored.thought_count == 3


def test_lock_is_per_session(store: SessionStore) -> None:
    writer = DocumentWriter(store)
    assert writer.lock_for("a") is writer.lock_for("a")
    assert writer.lock_for("a") is not writer.lock_for("b")


def test_session_locks_are_released_after_writes(
    store: SessionStore, make_session: SessionFactory
) -> None:
    writer = DocumentWriter(store)
    held = writer.lock_for("held")
    for session_id in ("s1", "s2", "s3"):
        make_session(session_id)
        context = store.get_session_context(session_id)
        assert context is not None
        assert writer.write(context, parse_document(session_id, doc_body()), mode=MODE_BATCH)

    gc.collect()
    assert list(writer._locks.keys()) == ["held"]
    assert writer.lock_for("held") is held
