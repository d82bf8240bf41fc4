from __future__ import annotations

from collections.abc import Sequence

from .models import (
    TASK_COMPLETED,
    TASK_IN_PROGRESS,
    Session,
    SessionContext,
    TaskCommit,
    ThoughtRecord,
    to_iso,
)

SESSION_START = "===SESSION_START: {session_id}==="
SESSION_END = "===SESSION_END==="

SYSTEM_IDENTITY = (
    "You are a technical documentation specialist for a software development workflow tool."
)

DOCUMENT_SCHEMA = """
## Executive Summary
(2-3 sentences: What was the developer trying to accomplish? What was the outcome?)

## Problem Statement
(What specific problem or task was being addressed?)

## Approach
(Key decisions made and reasoning. Focus on WHY, not just WHAT.)

## Outcome
(What was achieved? Any notable results or artifacts?)

## Key Insights
(Lessons learned, patterns identified, or recommendations for future work)

## Tags
(3-5 relevant tags for categorization, comma-separated)
""".strip()

WRITING_RULES = """
Rules:
- Keep each section concise (2-4 sentences max)
- Focus on actionable information
- Use technical language appropriate for developers
- If a session was abandoned/deferred, note what was incomplete and why
""".strip()

_TASK_MARKERS = {TASK_COMPLETED: "[x]", TASK_IN_PROGRESS: "[~]"}


def _thought_prefix(thought: ThoughtRecord, *, compact: bool) -> str:
    if thought.is_revision:
        return "[REV] " if compact else "[REVISION] "
    if thought.branch_id:
        return f"[B:{thought.branch_id}] " if compact else f"[BRANCH:{thought.branch_id}] "
    return ""


def _branch_ids(thoughts: Sequence[ThoughtRecord]) -> list[str]:
    seen: list[str] = []
    for thought in thoughts:
        if thought.branch_id and thought.branch_id not in seen:
            seen.append(thought.branch_id)
    return seen


def format_thoughts(thoughts: Sequence[ThoughtRecord], *, compact: bool = False) -> str:
    """Render thoughts for a prompt, eliding the middle of long sessions.

    Compact mode (used for batches) keeps 5 thoughts in full and otherwise the
    first and last 2; the full mode keeps 10, otherwise the first and last 3
    plus up to 3 revision excerpts.
    """

    if not thoughts:
        return "(No thoughts recorded)"
    full_limit, keep = (5, 2) if compact else (10, 3)
    sep = "\n" if compact else "\n\n"
    if len(thoughts) <= full_limit:
        return sep.join(
            f"{t.thought_number}. {_thought_prefix(t, compact=compact)}{t.thought}"
            for t in thoughts
        )

    first = thoughts[:keep]
    last = thoughts[-keep:]
    lines = [sep.join(f"{t.thought_number}. {t.thought}" for t in first)]
    lines.append(f"... ({len(thoughts) - 2 * keep} thoughts omitted) ...")
    lines.append(sep.join(f"{t.thought_number}. {t.thought}" for t in last))
    output = sep.join(lines)

    revisions = [t for t in thoughts if t.is_revision]
    branches = _branch_ids(thoughts)
    if compact:
        if revisions:
            output += f"\nRevisions: {len(revisions)} total"
        if branches:
            output += f"\nBranches: {', '.join(branches)}"
        return output
    if revisions:
        output += f"\n\n### Key Revisions ({len(revisions)} total):"
        for t in revisions[:3]:
            output += (
                f"\n- Thought {t.thought_number} revised thought {t.revises_thought}: "
                f"{t.thought[:150]}..."
            )
    if branches:
        output += f"\n\n### Branches explored: {', '.join(branches)}"
    return output


def format_tasks(tasks: Sequence[TaskCommit]) -> str:
    if not tasks:
        return "(No tasks tracked)"
    lines = []
    for task in tasks:
        marker = _TASK_MARKERS.get(task.status, "[ ]")
        description = f": {task.description}" if task.description else ""
        lines.append(f"{marker} {task.task_title}{description} ({task.status})")
    return "\n".join(lines)


def _session_header(session: Session) -> list[str]:
    return [
        f"Created: {to_iso(session.created_at)}",
        f"Outcome: {session.outcome or 'completed'}",
        f"Agent Summary: {session.agent_summary or 'Not provided'}",
    ]


def build_batch_prompt(contexts: Sequence[SessionContext]) -> str:
    blocks: list[str] = []
    for index, context in enumerate(contexts, start=1):
        block = [f"## SESSION {index}: {context.session_id}"]
        block.extend(_session_header(context.session))
        block.append("")
        block.append(f"### Thoughts ({len(context.thoughts)} total)")
        block.append(format_thoughts(context.thoughts, compact=True))
        block.append("")
        block.append(f"### Tasks ({len(context.tasks)} total)")
        block.append(format_tasks(context.tasks))
        block.append("---")
        blocks.append("\n".join(block))

    count = len(contexts)
    wrapper = "\n".join(
        [SESSION_START.format(session_id="{session_id}"), DOCUMENT_SCHEMA, SESSION_END]
    )
    return "\n\n".join(
        [
            SYSTEM_IDENTITY,
            f"You are given {count} completed thinking sessions from developers. "
            "For EACH session, generate concise but informative documentation.",
            "\n\n".join(blocks),
            "For EACH session above, generate documentation with this EXACT structure:",
            wrapper,
            WRITING_RULES + "\n- Identify connections between sessions if they exist",
            f"Generate documentation for all {count} sessions now:",
        ]
    )


def build_single_prompt(context: SessionContext) -> str:
    info = [
        "## Session Information",
        f"- Session ID: {context.session_id}",
        *(f"- {line}" for line in _session_header(context.session)),
    ]
    return "\n\n".join(
        [
            SYSTEM_IDENTITY,
            "Generate concise but informative documentation for this completed thinking session.",
            "\n".join(info),
            f"## Thoughts ({len(context.thoughts)} total)\n{format_thoughts(context.thoughts)}",
            f"## Tasks ({len(context.tasks)} total)\n{format_tasks(context.tasks)}",
            "Generate documentation with this structure:",
            DOCUMENT_SCHEMA,
            WRITING_RULES,
            "Generate the documentation now:",
        ]
    )


def build_stage_prompt(
    thoughts: Sequence[ThoughtRecord], stage_number: int, total_stages: int
) -> str:
    rendered = "\n\n".join(
        f"[{t.thought_number}] {_thought_prefix(t, compact=False)}{t.thought}" for t in thoughts
    )
    return "\n\n".join(
        [
            f"You are summarizing stage {stage_number} of {total_stages} "
            "from a developer's thinking session.",
            f"This stage contains {len(thoughts)} thoughts:",
            rendered,
            "Summarize this stage in 3-5 sentences:\n"
            "- What was explored or decided?\n"
            "- Any key turning points or revisions?\n"
            "- What direction did the thinking take?",
            f"Stage {stage_number} Summary:",
        ]
    )


def build_synthesis_prompt(
    stage_summaries: Sequence[str], tasks: Sequence[TaskCommit], session: Session
) -> str:
    meta = [
        f"Session ID: {session.id}",
        f"Total Thoughts: {session.thought_count}",
        f"Total Tasks: {session.task_count}",
        f"Outcome: {session.outcome or 'completed'}",
        f"Agent Summary: {session.agent_summary or 'Not provided'}",
    ]
    stages = "\n\n".join(
        f"### Stage {index}\n{summary.strip()}"
        for index, summary in enumerate(stage_summaries, start=1)
    )
    return "\n\n".join(
        [
            "You are creating final documentation from a large thinking session.",
            "\n".join(meta),
            f"The session was processed in {len(stage_summaries)} stages:",
            stages,
            f"### Tasks Tracked\n{format_tasks(tasks)}",
            "Create comprehensive documentation covering the whole session "
            "with this structure:",
            DOCUMENT_SCHEMA,
            WRITING_RULES,
            "Generate the documentation:",
        ]
    )
