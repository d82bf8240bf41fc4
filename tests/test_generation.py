from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from docworker.config import DocWorkerConfig
from docworker.errors import ConfigurationError, GenerationError
from docworker.generation import SYSTEM_PROMPT, GenerationClient


def _anthropic_response(*texts: str) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text) for text in texts])


def test_missing_api_key_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="missing api key"):
        GenerationClient(DocWorkerConfig(api_key=None))


def test_unknown_provider_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        GenerationClient(DocWorkerConfig(api_key="k", provider="cohere"))


def test_anthropic_generate_joins_text_blocks() -> None:
    with patch("anthropic.Anthropic") as anthropic_cls:
        client = anthropic_cls.return_value
        client.messages.create.return_value = _anthropic_response("## Executive ", "Summary")
        generator = GenerationClient(
            DocWorkerConfig(api_key="k", base_url="https://proxy.local", generation_timeout_s=9)
        )

        text = generator.generate("prompt", model="claude-x", max_tokens=123)

    assert text == "## Executive Summary"
    anthropic_cls.assert_called_once_with(api_key="k", timeout=9, base_url="https://proxy.local")
    client.messages.create.assert_called_once_with(
        model="claude-x",
        max_tokens=123,
        system=SYSTEM_PROMPT,
        messages=[{"role": "user", "content": "prompt"}],
    )


def test_openai_generate_uses_chat_completions() -> None:
    with patch("openai.OpenAI") as openai_cls:
        client = openai_cls.return_value
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="doc"))]
        )
        generator = GenerationClient(DocWorkerConfig(api_key="k", provider="openai"))

        assert generator.generate("prompt", model="gpt-x", max_tokens=50) == "doc"

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-x"
    assert kwargs["max_tokens"] == 50
    assert kwargs["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}


def test_sdk_errors_become_generation_errors() -> None:
    with patch("anthropic.Anthropic") as anthropic_cls:
        anthropic_cls.return_value.messages.create.side_effect = TimeoutError("read timeout")
        generator = GenerationClient(DocWorkerConfig(api_key="k"))

        with pytest.raises(GenerationError) as excinfo:
            generator.generate("prompt", model="claude-x", max_tokens=10)

    assert excinfo.value.model == "claude-x"
    assert excinfo.value.provider == "anthropic"
    assert "read timeout" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, TimeoutError)


def test_empty_response_is_a_generation_error() -> None:
    with patch("anthropic.Anthropic") as anthropic_cls:
        anthropic_cls.return_value.messages.create.return_value = _anthropic_response("  ")
        generator = GenerationClient(DocWorkerConfig(api_key="k"))

        with pytest.raises(GenerationError, match="empty response"):
            generator.generate("prompt", model="claude-x", max_tokens=10)


def test_openai_without_choices_is_empty() -> None:
    with patch("openai.OpenAI") as openai_cls:
        openai_cls.return_value.chat.completions.create.return_value = MagicMock(choices=[])
        generator = GenerationClient(DocWorkerConfig(api_key="k", provider="openai"))

        with pytest.raises(GenerationError):
            generator.generate("prompt", model="gpt-x", max_tokens=10)
