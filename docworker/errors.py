"""Exception hierarchy for the documentation worker.

Exception hierarchy:
    DocWorkerError (base)
    ├── ConfigurationError
    └── TransientError          retried with backoff by the worker
        ├── SessionNotFoundError
        ├── GenerationError
        ├── StagedSummaryError
        └── BatchParseError

Exhausting the retry budget is not an exception; the worker routes the event
to the dead-letter sink instead of scheduling another attempt.
"""

from __future__ import annotations

from typing import Any


class DocWorkerError(Exception):
    """Base exception for all worker errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ConfigurationError(DocWorkerError):
    """Raised when configuration is invalid or cannot be loaded."""


class TransientError(DocWorkerError):
    """A failure that is expected to succeed on a later attempt."""


class SessionNotFoundError(TransientError):
    """The session is not (yet) visible in the store.

    Producers may publish before their write is readable, so this is retried
    rather than treated as fatal.
    """

    def __init__(self, session_id: str):
        super().__init__("session not found", {"session_id": session_id})
        self.session_id = session_id


class GenerationError(TransientError):
    """The generation service failed, timed out, or returned no text."""

    def __init__(self, message: str, *, model: str | None = None, provider: str | None = None):
        details: dict[str, Any] = {}
        if provider:
            details["provider"] = provider
        if model:
            details["model"] = model
        super().__init__(message, details)
        self.model = model
        self.provider = provider


class StagedSummaryError(TransientError):
    """A stage or synthesis call failed; the whole staged run is abandoned."""

    def __init__(self, session_id: str, stage: int | None, cause: BaseException):
        details: dict[str, Any] = {"session_id": session_id}
        details["stage"] = stage if stage is not None else "synthesis"
        super().__init__(f"staged summarization failed: {cause}", details)
        self.session_id = session_id
        self.stage = stage


class BatchParseError(TransientError):
    """A batched response did not contain a block for an expected session."""

    def __init__(self, session_id: str):
        super().__init__("no documentation block in batch response", {"session_id": session_id})
        self.session_id = session_id
