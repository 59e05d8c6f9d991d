"""Language model client: one completion with timeout, retry and backoff.

The client owns the retry policy.  Providers make exactly one HTTP request
per call and enforce the timeout in their transport, so a timed-out request
is aborted before the next attempt starts.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol

import autogen

from .config import build_role_llm_config, require_llm_credentials
from .exceptions import ConfigurationError, ErrorKind, LLMRetriesExhaustedError
from .models import ProjectConfig

logger = logging.getLogger(__name__)


class ChatProvider(Protocol):
    """A single chat completion against some model endpoint."""

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        timeout: float,
    ) -> str: ...


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

def _status_code(exc: BaseException) -> int | None:
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def classify_error(exc: BaseException) -> ErrorKind:
    """Map a provider exception to an :class:`ErrorKind`."""
    if isinstance(exc, TimeoutError) or "Timeout" in type(exc).__name__:
        return ErrorKind.TIMEOUT
    status = _status_code(exc)
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status == 402:
        return ErrorKind.QUOTA_EXHAUSTED
    return ErrorKind.PROVIDER


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff after the given 1-based *attempt*."""
    return min(base * 2 ** (attempt - 1), cap)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class LLMClient:
    """Retrying wrapper around a :class:`ChatProvider`."""

    def __init__(
        self,
        provider: ChatProvider,
        *,
        timeout: float = 120,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        backoff_cap: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: ProjectConfig,
        provider: ChatProvider | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> LLMClient:
        return cls(
            provider or AG2ChatProvider(config),
            timeout=config.llm_timeout,
            max_retries=config.llm_max_retries,
            backoff_base=config.backoff_base,
            backoff_cap=config.backoff_cap,
            sleep=sleep,
        )

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> str:
        """Return the completion text, retrying failed attempts.

        Raises ``LLMRetriesExhaustedError`` carrying the last error and its
        kind once every attempt has failed.  ``ConfigurationError`` is never
        retried.
        """
        attempts = max(1, max_retries if max_retries is not None else self.max_retries)
        per_attempt = timeout if timeout is not None else self.timeout
        last_error: BaseException | None = None
        kind = ErrorKind.PROVIDER

        for attempt in range(1, attempts + 1):
            started = time.monotonic()
            try:
                text = self.provider.complete(model, system_prompt, user_prompt, timeout=per_attempt)
            except ConfigurationError:
                raise
            except Exception as exc:
                last_error = exc
                kind = classify_error(exc)
                logger.warning(
                    "[llm] attempt %d/%d model=%s failed after %.1fs (%s): %s",
                    attempt, attempts, model, time.monotonic() - started, kind.value, exc,
                )
                if attempt < attempts:
                    delay = backoff_delay(attempt, self.backoff_base, self.backoff_cap)
                    logger.debug("[llm] backing off %.1fs", delay)
                    self._sleep(delay)
                continue

            logger.debug(
                "[llm] attempt %d/%d model=%s ok in %.1fs (%d chars)",
                attempt, attempts, model, time.monotonic() - started, len(text or ""),
            )
            return text or ""

        assert last_error is not None
        raise LLMRetriesExhaustedError(kind, last_error, attempts)


# ---------------------------------------------------------------------------
# AG2 provider
# ---------------------------------------------------------------------------

class AG2ChatProvider:
    """Chat provider backed by AG2's ``OpenAIWrapper``.

    Talks to any OpenAI-compatible gateway with bearer-token auth.  The
    timeout is handed to the HTTP client, which closes the connection when
    it fires; the SDK's own retries are disabled.
    """

    def __init__(self, config: ProjectConfig) -> None:
        require_llm_credentials(config)
        self.config = config

    def _make_client(self, model: str, timeout: float) -> Any:
        llm_config = build_role_llm_config("writer", self.config, model=model, timeout=timeout)
        return autogen.OpenAIWrapper(**llm_config)

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        timeout: float,
    ) -> str:
        client = self._make_client(model, timeout)
        response = client.create(messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ])
        texts = client.extract_text_or_completion_object(response)
        if not texts:
            return ""
        first = texts[0]
        return first if isinstance(first, str) else str(getattr(first, "content", "") or "")
