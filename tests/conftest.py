from __future__ import annotations

import datetime as dt
import re
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from docworker.config import DocWorkerConfig
from docworker.models import (
    TASK_COMPLETED,
    DocumentationEntry,
    Session,
    TaskCommit,
    ThoughtRecord,
)
from docworker.store import SessionStore

BASE_TIME = dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.UTC)
SESSION_HEADER_RE = re.compile(r"^## SESSION \d+: (\S+)$", re.MULTILINE)

_ENV_VARS = [
    "DOCWORKER_CONFIG",
    "DOCWORKER_DB",
    "DOCWORKER_BUS",
    "REDIS_URL",
    "DOCWORKER_EVENTS_TOPIC",
    "DOCWORKER_PROVIDER",
    "DOCWORKER_API_KEY",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "DOCWORKER_BASE_URL",
    "DOCWORKER_BASIC_MODEL",
    "DOCWORKER_PREMIUM_MODEL",
    "DOCWORKER_BATCH_SIZE",
    "DOCWORKER_BATCH_WINDOW_SECONDS",
    "DOCWORKER_MAX_RETRIES",
    "DOCWORKER_RETRY_DELAYS_MS",
    "DOCWORKER_IDLE_TIMEOUT_MINUTES",
    "DOCWORKER_GENERATION_TIMEOUT_S",
    "DOCWORKER_SCAN_INTERVAL_S",
    "DOCWORKER_RETRY_POLL_INTERVAL_S",
    "DOCWORKER_SMALL_SESSION_THRESHOLD",
    "DOCWORKER_STAGE_SIZE",
    "DOCWORKER_WORKER_THREADS",
    "DOCWORKER_HEALTH",
    "DOCWORKER_HEALTH_HOST",
    "DOCWORKER_HEALTH_PORT",
    "DOCWORKER_LOG_LEVEL",
    "DOCWORKER_LOG_FILE",
]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DOCWORKER_CONFIG", str(tmp_path / "config.json"))


@pytest.fixture
def config(tmp_path: Path) -> DocWorkerConfig:
    return DocWorkerConfig(
        db_path=str(tmp_path / "docworker.sqlite"),
        api_key="test-key",
        health_enabled=False,
        worker_threads=2,
    )


@pytest.fixture
def store(config: DocWorkerConfig) -> Iterator[SessionStore]:
    store = SessionStore(config.db_path)
    try:
        yield store
    finally:
        store.close()


def doc_body(summary: str = "Refactored the login flow.", tags: str = "auth, jwt") -> str:
    return (
        f"## Executive Summary\n{summary}\n\n"
        "## Problem Statement\nTokens expired early.\n\n"
        "## Approach\nMoved refresh into middleware.\n\n"
        "## Outcome\nShipped.\n\n"
        "## Key Insights\nKeep clocks in sync.\n\n"
        f"## Tags\n{tags}\n"
    )


def batch_response_for(prompt: str, *, skip: set[str] | None = None) -> str:
    blocks = []
    for session_id in SESSION_HEADER_RE.findall(prompt):
        if skip and session_id in skip:
            continue
        blocks.append(
            f"===SESSION_START: {session_id}===\n"
            f"{doc_body(summary=f'Summary for {session_id}.')}"
            "===SESSION_END==="
        )
    return "\n\n".join(blocks)


@dataclass
class GenerationCall:
    prompt: str
    model: str
    max_tokens: int


@dataclass
class FakeGenerator:
    """Records calls; answers batch prompts with one block per session."""

    responder: Callable[[str, str, int], str] | None = None
    calls: list[GenerationCall] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def generate(self, prompt: str, *, model: str, max_tokens: int) -> str:
        with self._lock:
            self.calls.append(GenerationCall(prompt=prompt, model=model, max_tokens=max_tokens))
        if self.responder is not None:
            return self.responder(prompt, model, max_tokens)
        if "===SESSION_START" in prompt:
            return batch_response_for(prompt)
        return doc_body()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


SessionFactory = Callable[..., Session]


@pytest.fixture
def make_session(store: SessionStore) -> SessionFactory:
    def _make(
        session_id: str,
        *,
        thoughts: int = 3,
        tasks: list[str] | None = None,
        tier: str = "basic",
        status: str = "active",
        start: dt.datetime = BASE_TIME,
        branch_every: int = 0,
    ) -> Session:
        session = Session(
            id=session_id,
            created_at=start,
            updated_at=start,
            status=status,
            tier=tier,
        )
        store.upsert_session(session)
        for number in range(1, thoughts + 1):
            branch = None
            if branch_every and number % branch_every == 0:
                branch = f"b{number // branch_every}"
            store.add_thought(
                ThoughtRecord(
                    session_id=session_id,
                    thought=f"thought {number} for {session_id}",
                    thought_number=number,
                    total_thoughts=thoughts,
                    timestamp=start + dt.timedelta(seconds=number),
                    branch_id=branch,
                )
            )
        for index, task_status in enumerate(tasks or [], start=1):
            store.add_task(
                TaskCommit(
                    session_id=session_id,
                    task_id=f"t{index}",
                    task_title=f"Task {index}",
                    status=task_status,
                    created_at=start,
                    completed_at=(
                        start + dt.timedelta(seconds=1) if task_status == TASK_COMPLETED else None
                    ),
                )
            )
        loaded = store.get_session(session_id)
        assert loaded is not None
        return loaded

    return _make


def fresh_documentation(store: SessionStore, session_id: str) -> DocumentationEntry:
    """Store a documentation entry that is current for the session's data."""

    context = store.get_session_context(session_id)
    assert context is not None
    entry = DocumentationEntry(
        session_id=session_id,
        generated_at=context.session.updated_at + dt.timedelta(minutes=1),
        summary="existing",
        thought_count=len(context.thoughts),
        task_count=len(context.tasks),
        content="existing",
    )
    store.save_documentation(entry)
    return entry

