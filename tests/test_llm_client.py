"""Tests for llm_client.py: retry, backoff and error classification."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from study_material_generator.exceptions import ConfigurationError, ErrorKind, LLMRetriesExhaustedError
from study_material_generator.llm_client import (
    AG2ChatProvider,
    LLMClient,
    backoff_delay,
    classify_error,
)
from study_material_generator.models import ProjectConfig

from conftest import FakeChatProvider


class _HTTPError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class APITimeoutError(Exception):
    pass


class TestBackoffDelay:
    def test_exponential(self):
        assert backoff_delay(1, 2.0, 10.0) == 2.0
        assert backoff_delay(2, 2.0, 10.0) == 4.0
        assert backoff_delay(3, 2.0, 10.0) == 8.0

    def test_capped(self):
        assert backoff_delay(4, 2.0, 10.0) == 10.0
        assert backoff_delay(10, 2.0, 10.0) == 10.0


class TestClassifyError:
    def test_timeout(self):
        assert classify_error(TimeoutError("slow")) == ErrorKind.TIMEOUT
        assert classify_error(APITimeoutError("slow")) == ErrorKind.TIMEOUT

    def test_rate_limit(self):
        assert classify_error(_HTTPError(429)) == ErrorKind.RATE_LIMIT

    def test_quota(self):
        assert classify_error(_HTTPError(402)) == ErrorKind.QUOTA_EXHAUSTED

    def test_status_on_response(self):
        exc = Exception("boom")
        exc.response = MagicMock(status_code=429)
        assert classify_error(exc) == ErrorKind.RATE_LIMIT

    def test_other(self):
        assert classify_error(_HTTPError(500)) == ErrorKind.PROVIDER
        assert classify_error(ValueError("bad")) == ErrorKind.PROVIDER


class TestLLMClient:
    def test_success_first_attempt(self):
        provider = FakeChatProvider({"m": ["hello"]})
        sleeps: list[float] = []
        client = LLMClient(provider, max_retries=3, sleep=sleeps.append)
        assert client.complete("m", "sys", "user") == "hello"
        assert len(provider.calls) == 1
        assert sleeps == []

    def test_timeout_then_success(self):
        """A timed-out attempt is abandoned and the next attempt succeeds."""
        provider = FakeChatProvider({"m": [TimeoutError("took too long"), "draft"]})
        sleeps: list[float] = []
        client = LLMClient(provider, timeout=5, max_retries=2, backoff_base=2.0, sleep=sleeps.append)

        assert client.complete("m", "sys", "user") == "draft"
        assert len(provider.calls) == 2
        assert sleeps == [2.0]
        assert all(call[2] == 5 for call in provider.calls)

    def test_exhaustion_carries_last_error(self):
        last = _HTTPError(429)
        provider = FakeChatProvider({"m": [_HTTPError(500), _HTTPError(500), last]})
        sleeps: list[float] = []
        client = LLMClient(provider, max_retries=3, backoff_base=1.0, backoff_cap=3.0, sleep=sleeps.append)

        with pytest.raises(LLMRetriesExhaustedError) as excinfo:
            client.complete("m", "sys", "user")
        assert excinfo.value.kind == ErrorKind.RATE_LIMIT
        assert excinfo.value.last_error is last
        assert excinfo.value.attempts == 3
        # No sleep after the final attempt
        assert sleeps == [1.0, 2.0]

    def test_quota_kind(self):
        provider = FakeChatProvider({"m": [_HTTPError(402)]})
        client = LLMClient(provider, max_retries=2, sleep=lambda s: None)
        with pytest.raises(LLMRetriesExhaustedError) as excinfo:
            client.complete("m", "sys", "user")
        assert excinfo.value.kind == ErrorKind.QUOTA_EXHAUSTED

    def test_configuration_error_not_retried(self):
        provider = FakeChatProvider({"m": [ConfigurationError("no key")]})
        client = LLMClient(provider, max_retries=3, sleep=lambda s: None)
        with pytest.raises(ConfigurationError):
            client.complete("m", "sys", "user")
        assert len(provider.calls) == 1

    def test_per_call_overrides(self):
        provider = FakeChatProvider({"m": [RuntimeError("down")]})
        client = LLMClient(provider, timeout=120, max_retries=5, sleep=lambda s: None)
        with pytest.raises(LLMRetriesExhaustedError):
            client.complete("m", "sys", "user", timeout=3, max_retries=1)
        assert provider.calls == [("m", "user", 3)]

    def test_none_text_becomes_empty(self):
        provider = MagicMock()
        provider.complete.return_value = None
        client = LLMClient(provider, sleep=lambda s: None)
        assert client.complete("m", "sys", "user") == ""

    def test_from_config(self):
        config = ProjectConfig(llm_timeout=30, llm_max_retries=4, backoff_base=1.5, backoff_cap=6.0)
        provider = FakeChatProvider()
        client = LLMClient.from_config(config, provider)
        assert client.provider is provider
        assert client.timeout == 30
        assert client.max_retries == 4
        assert client.backoff_base == 1.5
        assert client.backoff_cap == 6.0


class TestAG2ChatProvider:
    def test_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            AG2ChatProvider(ProjectConfig())

    def test_complete_builds_wrapper_per_model(self):
        config = ProjectConfig(llm={"api_key": "k", "endpoint": "https://gateway.example.com/v1"})
        with patch("study_material_generator.llm_client.autogen.OpenAIWrapper") as wrapper_cls:
            wrapper = wrapper_cls.return_value
            wrapper.extract_text_or_completion_object.return_value = ["# Draft"]
            provider = AG2ChatProvider(config)
            text = provider.complete("openai/gpt-5", "system", "user", timeout=42)

        assert text == "# Draft"
        kwargs = wrapper_cls.call_args.kwargs
        assert kwargs["config_list"][0]["model"] == "openai/gpt-5"
        assert kwargs["config_list"][0]["base_url"] == "https://gateway.example.com/v1"
        assert kwargs["timeout"] == 42
        assert kwargs["cache_seed"] is None
        messages = wrapper.create.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]

    def test_empty_response(self):
        config = ProjectConfig(llm={"api_key": "k", "endpoint": "https://gateway.example.com/v1"})
        with patch("study_material_generator.llm_client.autogen.OpenAIWrapper") as wrapper_cls:
            wrapper_cls.return_value.extract_text_or_completion_object.return_value = []
            assert AG2ChatProvider(config).complete("m", "s", "u", timeout=1) == ""
