from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from typing import Any

SESSION_STATUS_ACTIVE = "active"
SESSION_STATUS_COMPLETED = "completed"
SESSION_STATUS_FINALIZED = "finalized"
NON_TERMINAL_STATUSES = (SESSION_STATUS_ACTIVE, SESSION_STATUS_COMPLETED)

OUTCOME_COMPLETED = "completed"
OUTCOME_ABANDONED = "abandoned"
OUTCOME_DEFERRED = "deferred"

TASK_PENDING = "pending"
TASK_IN_PROGRESS = "in_progress"
TASK_COMPLETED = "completed"

TIER_BASIC = "basic"
TIER_PREMIUM = "premium"
TIERS = (TIER_BASIC, TIER_PREMIUM)

EVENT_THOUGHT = "session.thought"
EVENT_TASK_COMPLETED = "session.task_completed"
EVENT_FINALIZED = "session.finalized"
EVENT_IDLE_TIMEOUT = "session.idle_timeout"
FINALIZATION_EVENTS = frozenset({EVENT_FINALIZED, EVENT_IDLE_TIMEOUT})

MODE_BATCH = "batch"
MODE_SINGLE = "single"
MODE_STAGED = "staged"


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def parse_ts(value: Any) -> dt.datetime:
    """Parse an ISO-8601 string (or pass through a datetime) as an aware UTC datetime."""

    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def parse_ts_opt(value: Any) -> dt.datetime | None:
    if value is None or value == "":
        return None
    return parse_ts(value)


def to_iso(value: dt.datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def normalize_tier(value: Any) -> str:
    return TIER_PREMIUM if value == TIER_PREMIUM else TIER_BASIC


@dataclass
class Session:
    id: str
    created_at: dt.datetime
    updated_at: dt.datetime
    status: str = SESSION_STATUS_ACTIVE
    outcome: str | None = None
    thought_count: int = 0
    task_count: int = 0
    tier: str = TIER_BASIC
    auto_finalized: bool = False
    tenant_id: str | None = None
    agent_summary: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status not in NON_TERMINAL_STATUSES


@dataclass(frozen=True)
class ThoughtRecord:
    session_id: str
    thought: str
    thought_number: int
    total_thoughts: int
    timestamp: dt.datetime
    branch_id: str | None = None
    is_revision: bool = False
    revises_thought: int | None = None


@dataclass
class TaskCommit:
    session_id: str
    task_id: str
    task_title: str
    status: str = TASK_PENDING
    completed_at_thought: int | None = None
    description: str | None = None
    created_at: dt.datetime = field(default_factory=utc_now)
    completed_at: dt.datetime | None = None


@dataclass
class SessionContext:
    session: Session
    thoughts: list[ThoughtRecord]
    tasks: list[TaskCommit]
    loaded_at: dt.datetime = field(default_factory=utc_now)

    @property
    def session_id(self) -> str:
        return self.session.id

    def branches(self) -> list[str]:
        seen: list[str] = []
        for thought in self.thoughts:
            if thought.branch_id and thought.branch_id not in seen:
                seen.append(thought.branch_id)
        return seen


@dataclass
class ParsedDocument:
    session_id: str
    content: str
    executive_summary: str = ""
    problem_statement: str = ""
    approach: str = ""
    outcome: str = ""
    key_insights: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class DocumentationEntry:
    session_id: str
    generated_at: dt.datetime
    summary: str
    thought_count: int
    task_count: int
    content: str
    branches: list[str] = field(default_factory=list)
    executive_summary: str = ""
    problem_statement: str = ""
    approach: str = ""
    outcome: str = ""
    key_insights: str = ""
    tags: list[str] = field(default_factory=list)
    mode: str = MODE_BATCH
    content_hash: str | None = None

    def is_stale_for(self, context: SessionContext) -> bool:
        if self.generated_at < context.session.updated_at:
            return True
        if self.thought_count != len(context.thoughts):
            return True
        return self.task_count != len(context.tasks)

    @classmethod
    def from_parsed(
        cls,
        context: SessionContext,
        parsed: ParsedDocument,
        *,
        mode: str,
        content_hash: str | None = None,
    ) -> DocumentationEntry:
        fallback = f"Session with {len(context.thoughts)} thoughts"
        if mode == MODE_STAGED:
            fallback = f"Large session with {len(context.thoughts)} thoughts"
        return cls(
            session_id=context.session_id,
            generated_at=utc_now(),
            summary=parsed.executive_summary or fallback,
            thought_count=len(context.thoughts),
            task_count=len(context.tasks),
            content=parsed.content,
            branches=context.branches(),
            executive_summary=parsed.executive_summary,
            problem_statement=parsed.problem_statement,
            approach=parsed.approach,
            outcome=parsed.outcome,
            key_insights=parsed.key_insights,
            tags=list(parsed.tags),
            mode=mode,
            content_hash=content_hash,
        )


@dataclass(frozen=True)
class EventPayload:
    outcome: str | None = None
    agent_summary: str | None = None
    thought_count: int | None = None
    task_count: int | None = None
    tier: str | None = None
    retry_count: int = 0
    idle_minutes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "outcome": self.outcome,
            "agentSummary": self.agent_summary,
            "thoughtCount": self.thought_count,
            "taskCount": self.task_count,
            "tier": self.tier,
            "idleMinutes": self.idle_minutes,
        }
        payload = {key: value for key, value in data.items() if value is not None}
        payload["retryCount"] = self.retry_count
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EventPayload:
        data = data or {}

        def _int_opt(key: str) -> int | None:
            value = data.get(key)
            if value is None:
                return None
            return int(value)

        return cls(
            outcome=data.get("outcome"),
            agent_summary=data.get("agentSummary"),
            thought_count=_int_opt("thoughtCount"),
            task_count=_int_opt("taskCount"),
            tier=data.get("tier"),
            retry_count=int(data.get("retryCount") or 0),
            idle_minutes=_int_opt("idleMinutes"),
        )


@dataclass(frozen=True)
class Event:
    type: str
    session_id: str
    timestamp: dt.datetime
    payload: EventPayload = field(default_factory=EventPayload)
    tenant_id: str | None = None

    @property
    def retry_count(self) -> int:
        return self.payload.retry_count

    @property
    def is_finalization(self) -> bool:
        return self.type in FINALIZATION_EVENTS

    def with_retry_count(self, retry_count: int) -> Event:
        return replace(self, payload=replace(self.payload, retry_count=retry_count))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "sessionId": self.session_id,
            "timestamp": to_iso(self.timestamp),
            "payload": self.payload.to_dict(),
        }
        if self.tenant_id is not None:
            data["tenantId"] = self.tenant_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        event_type = data.get("type")
        session_id = data.get("sessionId")
        if not isinstance(event_type, str) or not event_type:
            raise ValueError("event type is required")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("event sessionId is required")
        payload = data.get("payload")
        return cls(
            type=event_type,
            session_id=session_id,
            timestamp=parse_ts(data.get("timestamp") or utc_now()),
            payload=EventPayload.from_dict(payload if isinstance(payload, dict) else None),
            tenant_id=data.get("tenantId"),
        )


def resolve_tier(session: Session, event: Event | None = None) -> str:
    """Tier requested by the event payload, falling back to the session's tier."""

    if event is not None and event.payload.tier:
        return normalize_tier(event.payload.tier)
    return normalize_tier(session.tier)


@dataclass(frozen=True)
class DeadLetterEntry:
    event: Event
    error: str
    failed_at: dt.datetime
    retry_count: int
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "error": self.error,
            "failedAt": to_iso(self.failed_at),
            "retryCount": self.retry_count,
        }
