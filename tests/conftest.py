"""Shared test fixtures."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from study_material_generator.exceptions import SearchProviderError
from study_material_generator.models import EvidenceSnippet, ProjectConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_CONFIG = FIXTURES_DIR / "sample_config.yaml"
SAMPLE_DRAFT = FIXTURES_DIR / "sample_draft.md"

DECOMPOSER_MODEL = "google/gemini-2.5-flash"
WRITER_MODEL = "google/gemini-2.5-pro"
FALLBACK_MODEL = "openai/gpt-5"


class FakeChatProvider:
    """Scripted chat provider keyed by model name.

    Each model has a queue of responses; an exception in the queue is raised
    instead of returned.  The last item repeats once the queue is drained.
    """

    def __init__(self, script: dict[str, list] | None = None, default: str = "") -> None:
        self.script = {model: list(items) for model, items in (script or {}).items()}
        self.default = default
        self.calls: list[tuple[str, str, float]] = []

    def complete(self, model, system_prompt, user_prompt, *, timeout):
        self.calls.append((model, user_prompt, timeout))
        queue = self.script.get(model)
        if not queue:
            return self.default
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def calls_for(self, model: str) -> list[tuple[str, str, float]]:
        return [c for c in self.calls if c[0] == model]


class FakeSearchProvider:
    """Returns canned snippets per query; queries listed in *failing* raise."""

    def __init__(self, results: dict[str, list[EvidenceSnippet]] | None = None, failing: set[str] | None = None):
        self.results = results or {}
        self.failing = failing or set()
        self.queries: list[tuple[str, str, int]] = []
        self._lock = threading.Lock()

    def search(self, query, domain_filter, max_results):
        with self._lock:
            self.queries.append((query, domain_filter, max_results))
        if query in self.failing:
            raise SearchProviderError(f"search failed for {query!r}")
        if query in self.results:
            return list(self.results[query])
        return [
            EvidenceSnippet(title=f"{query} source {i}", description="snippet", url=f"https://example.edu/{i}", rank=i)
            for i in range(1, 4)
        ]


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def sample_config_path() -> Path:
    return SAMPLE_CONFIG


@pytest.fixture
def sample_draft_md() -> str:
    return SAMPLE_DRAFT.read_text(encoding="utf-8")


@pytest.fixture
def project_config(tmp_path) -> ProjectConfig:
    """Config with credentials and small length targets for pipeline tests."""
    return ProjectConfig(
        project_name="Test",
        output_dir=str(tmp_path / "output"),
        llm={"api_key": "k", "endpoint": "https://gateway.example.com/v1"},
        search={"api_key": "s"},
        models={
            "default": DECOMPOSER_MODEL,
            "writer": WRITER_MODEL,
            "fallback_writer": FALLBACK_MODEL,
        },
        pipeline={
            "max_retries": 2,
            "retry_delay": 0.0,
            "min_draft_chars": 200,
            "target_words": 200,
            "min_word_ratio": 0.5,
            "language": "en",
        },
        llm_max_retries=2,
    )
