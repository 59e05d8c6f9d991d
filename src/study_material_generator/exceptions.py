"""Domain exceptions for the generation pipeline.

Each exception carries a stable ``error_code`` so failed jobs can be tagged
consistently in logs and in ``GenerationJob.error_message``.

Only :class:`ConfigurationError` and :class:`LLMRetriesExhaustedError` are
expected to move a job to ``FAILED``; the others are degraded locally.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a language model failure."""
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXHAUSTED = "quota_exhausted"
    PROVIDER = "provider"


class GenerationError(Exception):
    """Base class for generation pipeline errors."""

    error_code = "generation_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class ConfigurationError(GenerationError):
    """Required credentials or endpoints are missing. Never retried."""

    error_code = "configuration"


class LLMError(GenerationError):
    """A single failed language model attempt."""

    error_code = "llm_error"

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.PROVIDER) -> None:
        super().__init__(message)
        self.kind = kind


class LLMRetriesExhaustedError(LLMError):
    """Every attempt of a language model call failed; carries the last error."""

    error_code = "llm_retries_exhausted"

    def __init__(self, kind: ErrorKind, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            f"{attempts} attempt(s) failed, last error ({kind.value}): {last_error}",
            kind=kind,
        )
        self.last_error = last_error
        self.attempts = attempts


class SearchProviderError(GenerationError):
    """Search request failed for one sub-question. Skipped, never fatal."""

    error_code = "search_failed"


class NestedDocumentError(GenerationError):
    """A block's text looks like a serialized document (double encoding)."""

    error_code = "nested_document"

    def __init__(self, message: str = "Invalid JSON nesting detected in block content") -> None:
        super().__init__(message)
