"""Hydra structured config dataclasses.

These mirror the Pydantic ``ProjectConfig`` for Hydra schema validation.
At runtime the Hydra DictConfig is converted to ``ProjectConfig`` via
``cli._to_project_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hydra.core.config_store import ConfigStore


@dataclass
class LLMConf:
    api_key: str = "${oc.env:LLM_API_KEY,''}"
    endpoint: str = "${oc.env:LLM_ENDPOINT,''}"
    api_version: str = "${oc.env:LLM_API_VERSION,''}"


@dataclass
class SearchConf:
    api_key: str = "${oc.env:BRAVE_SEARCH_API_KEY,''}"
    endpoint: str = "https://api.search.brave.com/res/v1/web/search"
    results_per_question: int = 2
    max_results: int = 10
    timeout: float = 20.0


@dataclass
class ModelConf:
    default: str = "google/gemini-2.5-flash"
    decomposer: str | None = None
    writer: str | None = "google/gemini-2.5-pro"
    fallback_writer: str | None = "openai/gpt-5"


@dataclass
class PipelineConf:
    max_retries: int = 2
    retry_delay: float = 2.0
    question_count: int = 4
    min_draft_chars: int = 500
    target_words: int = 3000
    min_word_ratio: float = 0.5
    max_banned_references: int = 5
    min_references: int = 5
    format_references: bool = True
    language: str = "pt-BR"


@dataclass
class SmgConf:
    # --- Dispatch + CLI-only fields ---
    mode: str = "run"
    verbose: bool = False
    quiet: bool = False
    topic: str | None = None
    tags: list[str] = field(default_factory=list)
    job_id: str | None = None
    input: str | None = None
    output: str | None = None

    # --- ProjectConfig fields (1:1 mapping) ---
    project_name: str = "study-material"
    output_dir: str = "output/"

    llm: LLMConf = field(default_factory=LLMConf)
    search: SearchConf = field(default_factory=SearchConf)
    models: ModelConf = field(default_factory=ModelConf)
    pipeline: PipelineConf = field(default_factory=PipelineConf)

    llm_timeout: int = 120
    llm_max_retries: int = 3
    backoff_base: float = 2.0
    backoff_cap: float = 10.0


# Keys present in SmgConf that are NOT part of ProjectConfig.
CLI_ONLY_KEYS = frozenset({
    "mode", "verbose", "quiet", "topic", "tags", "job_id", "input", "output",
})


def register_configs() -> None:
    """Register the structured config schema with Hydra's ConfigStore."""
    cs = ConfigStore.instance()
    cs.store(name="smg_schema", node=SmgConf)
