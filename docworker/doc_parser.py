from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from .models import ParsedDocument

logger = logging.getLogger(__name__)

SESSION_BLOCK_RE = re.compile(
    r"===SESSION_START:\s*(?P<session_id>\S+?)\s*===(?P<body>.*?)===SESSION_END===",
    re.DOTALL,
)
CODE_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*$", re.MULTILINE)
TAG_SPLIT_RE = re.compile(r"[,\n]")

SECTION_FIELDS = {
    "executive summary": "executive_summary",
    "problem statement": "problem_statement",
    "approach": "approach",
    "outcome": "outcome",
    "key insights": "key_insights",
    "tags": "tags",
}


def _clean_text(text: str) -> str:
    return CODE_FENCE_RE.sub("", text).strip()


def parse_sections(content: str) -> dict[str, str]:
    """Split markdown into ``## Header`` sections keyed by lowercased header.

    Only lines starting with exactly ``## `` open a section; deeper headers stay
    in the body. When a header repeats, the first occurrence wins.
    """

    sections: dict[str, str] = {}
    current: str | None = None
    buffer: list[str] = []

    def _close() -> None:
        if current is not None and current not in sections:
            sections[current] = "\n".join(buffer).strip()

    for line in content.splitlines():
        stripped = line.lstrip()
        if stripped.startswith("## "):
            _close()
            current = stripped[3:].strip().rstrip(":").strip().lower()
            buffer = []
            continue
        if current is not None:
            buffer.append(line)
    _close()
    return sections


def parse_tags(text: str) -> list[str]:
    tags: list[str] = []
    for raw in TAG_SPLIT_RE.split(text or ""):
        tag = raw.strip().lstrip("-*•").strip()
        if tag:
            tags.append(tag)
    return tags


def parse_document(session_id: str, content: str) -> ParsedDocument:
    cleaned = _clean_text(content)
    sections = parse_sections(cleaned)
    fields = {
        attr: sections.get(header, "")
        for header, attr in SECTION_FIELDS.items()
        if attr != "tags"
    }
    return ParsedDocument(
        session_id=session_id,
        content=cleaned,
        tags=parse_tags(sections.get("tags", "")),
        **fields,
    )


def parse_batch_response(
    text: str, expected_ids: Iterable[str] | None = None
) -> dict[str, ParsedDocument]:
    """Extract per-session documents from a delimited multi-session response.

    Ids without a block are simply absent from the result; the caller decides
    how to treat them. Blocks for ids outside ``expected_ids`` are dropped.
    """

    expected = set(expected_ids) if expected_ids is not None else None
    docs: dict[str, ParsedDocument] = {}
    for match in SESSION_BLOCK_RE.finditer(text or ""):
        session_id = match.group("session_id")
        if expected is not None and session_id not in expected:
            logger.warning(
                "batch response block for unexpected session",
                extra={"session_id": session_id},
            )
            continue
        if session_id in docs:
            continue
        docs[session_id] = parse_document(session_id, match.group("body"))
    return docs
