from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .config import DocWorkerConfig
from .doc_parser import parse_document
from .documents import DocumentWriter
from .errors import StagedSummaryError
from .generation import TextGenerator
from .models import (
    MODE_SINGLE,
    MODE_STAGED,
    DocumentationEntry,
    SessionContext,
    ThoughtRecord,
    normalize_tier,
)
from .prompts import build_single_prompt, build_stage_prompt, build_synthesis_prompt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    number: int
    thoughts: tuple[ThoughtRecord, ...]


def plan_stages(thoughts: Sequence[ThoughtRecord], stage_size: int) -> list[Stage]:
    """Split thoughts into contiguous stages numbered from 1; the last may be short."""

    if stage_size < 1:
        raise ValueError("stage_size must be positive")
    return [
        Stage(number=index + 1, thoughts=tuple(thoughts[start : start + stage_size]))
        for index, start in enumerate(range(0, len(thoughts), stage_size))
    ]


class Summarizer:
    def __init__(
        self, config: DocWorkerConfig, generator: TextGenerator, writer: DocumentWriter
    ) -> None:
        self.config = config
        self.generator = generator
        self.writer = writer

    def generate_documentation(
        self, context: SessionContext, tier: str | None = None
    ) -> DocumentationEntry | None:
        tier = normalize_tier(tier or context.session.tier)
        if len(context.thoughts) > self.config.stage_size:
            return self.staged_summarization(context, tier)
        return self.single_pass_summarization(context, tier)

    def single_pass_summarization(
        self, context: SessionContext, tier: str
    ) -> DocumentationEntry | None:
        text = self.generator.generate(
            build_single_prompt(context),
            model=self.config.model_for_tier(tier),
            max_tokens=self.config.single_max_tokens,
        )
        parsed = parse_document(context.session_id, text)
        return self.writer.write(context, parsed, mode=MODE_SINGLE)

    def staged_summarization(self, context: SessionContext, tier: str) -> DocumentationEntry | None:
        """Summarize each stage in order, then synthesize one document.

        Any stage or synthesis failure abandons the whole run with a
        ``StagedSummaryError``; no stage output is kept for the next attempt.
        """

        model = self.config.model_for_tier(tier)
        stages = plan_stages(context.thoughts, self.config.stage_size)
        summaries: list[str] = []
        for stage in stages:
            logger.debug(
                "summarizing stage",
                extra={
                    "session_id": context.session_id,
                    "stage": stage.number,
                    "stages": len(stages),
                },
            )
            try:
                summary = self.generator.generate(
                    build_stage_prompt(stage.thoughts, stage.number, len(stages)),
                    model=model,
                    max_tokens=self.config.stage_max_tokens,
                )
            except Exception as exc:
                raise StagedSummaryError(context.session_id, stage.number, exc) from exc
            summaries.append(summary)

        try:
            text = self.generator.generate(
                build_synthesis_prompt(summaries, context.tasks, context.session),
                model=model,
                max_tokens=self.config.synthesis_max_tokens,
            )
        except Exception as exc:
            raise StagedSummaryError(context.session_id, None, exc) from exc
        parsed = parse_document(context.session_id, text)
        logger.info(
            "staged summarization complete",
            extra={"session_id": context.session_id, "stages": len(stages)},
        )
        return self.writer.write(context, parsed, mode=MODE_STAGED)
