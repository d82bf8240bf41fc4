from __future__ import annotations

import logging
from typing import Protocol

from .config import DocWorkerConfig
from .errors import ConfigurationError, GenerationError
from .prompts import SYSTEM_IDENTITY

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = SYSTEM_IDENTITY


class TextGenerator(Protocol):
    def generate(self, prompt: str, *, model: str, max_tokens: int) -> str: ...


class GenerationClient:
    """Thin wrapper over the provider SDKs.

    Every failure mode (SDK error, timeout, empty response) surfaces as a
    ``GenerationError`` so callers have one transient error to route.
    """

    def __init__(self, config: DocWorkerConfig) -> None:
        self.provider = (config.provider or "anthropic").lower()
        self.timeout_s = config.generation_timeout_s
        self.client: object | None = None
        if not config.api_key:
            raise ConfigurationError("missing api key", {"provider": self.provider})
        if self.provider == "anthropic":
            import anthropic

            kwargs: dict[str, object] = {"api_key": config.api_key, "timeout": self.timeout_s}
            if config.base_url:
                kwargs["base_url"] = config.base_url
            self.client = anthropic.Anthropic(**kwargs)
        elif self.provider == "openai":
            from openai import OpenAI

            self.client = OpenAI(
                api_key=config.api_key,
                base_url=config.base_url or None,
                timeout=self.timeout_s,
            )
        else:
            raise ConfigurationError("unknown generation provider", {"provider": self.provider})

    def generate(self, prompt: str, *, model: str, max_tokens: int) -> str:
        try:
            text = self._call(prompt, model=model, max_tokens=max_tokens)
        except GenerationError:
            raise
        except Exception as exc:
            logger.exception(
                "generation call failed",
                extra={"provider": self.provider, "model": model},
                exc_info=exc,
            )
            raise GenerationError(
                f"{exc.__class__.__name__}: {exc}", model=model, provider=self.provider
            ) from exc
        if not text or not text.strip():
            logger.warning(
                "generation returned no text",
                extra={"provider": self.provider, "model": model},
            )
            raise GenerationError("empty response", model=model, provider=self.provider)
        return text

    def _call(self, prompt: str, *, model: str, max_tokens: int) -> str:
        if self.provider == "anthropic":
            resp = self.client.messages.create(  # type: ignore[union-attr]
                model=model,
                max_tokens=max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
            parts = [
                getattr(block, "text", "")
                for block in (resp.content or [])
                if getattr(block, "type", None) == "text"
            ]
            return "".join(parts)
        resp = self.client.chat.completions.create(  # type: ignore[union-attr]
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
        )
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""
