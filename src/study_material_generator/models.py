"""Pydantic models for the study material generation pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    DECOMPOSING = "decomposing"
    RESEARCHING = "researching"
    SYNTHESIZING = "synthesizing"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# ---------------------------------------------------------------------------
# Content blocks (closed tagged union)
# ---------------------------------------------------------------------------

class Heading(BaseModel):
    kind: Literal["heading"] = "heading"
    level: int = Field(default=2, ge=2, le=4, description="Heading depth (2-4)")
    text: str


class Paragraph(BaseModel):
    kind: Literal["paragraph"] = "paragraph"
    text: str


class ListBlock(BaseModel):
    kind: Literal["list"] = "list"
    items: list[str] = Field(default_factory=list)
    ordered: bool = False


class Callout(BaseModel):
    kind: Literal["callout"] = "callout"
    text: str


class Diagram(BaseModel):
    kind: Literal["diagram"] = "diagram"
    dsl: str = Field(..., description="Repaired flowchart DSL source")


class ReferenceList(BaseModel):
    kind: Literal["references"] = "references"
    entries: list[str] = Field(default_factory=list)


ContentBlock = Annotated[
    Union[Heading, Paragraph, ListBlock, Callout, Diagram, ReferenceList],
    Field(discriminator="kind"),
]


class StructuredDocument(BaseModel):
    """Durable output artifact: a title plus an ordered list of typed blocks."""
    title: str = Field(default="")
    blocks: list[ContentBlock] = Field(default_factory=list)

    def blocks_of(self, kind: type[BaseModel]) -> list[Any]:
        return [b for b in self.blocks if isinstance(b, kind)]


# ---------------------------------------------------------------------------
# Jobs, evidence, drafts
# ---------------------------------------------------------------------------

class GenerationJob(BaseModel):
    """A request for study material. Mutated only by the pipeline."""
    id: str = Field(..., description="Job identifier")
    target_id: str | None = Field(default=None, description="Entity whose document is replaced (defaults to id)")
    topic: str = Field(..., description="Topic to research and write about")
    tags: list[str] = Field(default_factory=list)
    status: JobStatus = Field(default=JobStatus.PENDING)
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    progress_message: str = Field(default="")
    attempts: int = Field(default=0, description="Synthesis attempts made")
    error_message: str | None = Field(default=None)
    warnings: list[str] = Field(default_factory=list, description="Degraded-path audit trail")

    @property
    def document_target(self) -> str:
        return self.target_id or self.id


class EvidenceSnippet(BaseModel):
    """One search result used as synthesis context."""
    model_config = ConfigDict(frozen=True)

    title: str = Field(default="")
    description: str = Field(default="")
    url: str = Field(default="")
    rank: int = Field(default=0)


class DraftReport(BaseModel):
    text: str = Field(default="")
    model: str = Field(default="")
    attempt: int = Field(default=1)


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------

class ValidationOutcome(BaseModel):
    """Result of a single validator on a single draft attempt."""
    validator: str = Field(..., description="'references', 'diagrams' or 'length'")
    valid: bool = Field(...)
    errors: list[str] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)


class DiagramValidationResult(BaseModel):
    valid: bool = Field(...)
    errors: list[str] = Field(default_factory=list)
    fixed_text: str = Field(default="")


class ReferenceValidationResult(BaseModel):
    valid: bool = Field(...)
    errors: list[str] = Field(default_factory=list)
    total_count: int = Field(default=0)
    academic_count: int = Field(default=0)
    banned_count: int = Field(default=0)
    academic_percentage: float = Field(default=0.0)


class JobResult(BaseModel):
    """Top-level result of one ``run_job`` invocation."""
    job: GenerationJob
    document: StructuredDocument | None = Field(default=None)
    drafts_attempted: int = Field(default=0)
    validation: list[ValidationOutcome] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Project Configuration (loaded from YAML)
# ---------------------------------------------------------------------------

class ModelConfig(BaseModel):
    """LLM model configuration per role."""
    default: str = Field(default="google/gemini-2.5-flash", description="Default model")
    decomposer: str | None = Field(default=None)
    writer: str | None = Field(default="google/gemini-2.5-pro")
    fallback_writer: str | None = Field(default="openai/gpt-5")


class LLMEndpointConfig(BaseModel):
    """OpenAI-compatible gateway settings (bearer-token auth)."""
    api_key: str = Field(default="", description="API key (or ${ENV_VAR})")
    endpoint: str = Field(default="", description="Base URL of the chat completions API")
    api_version: str = Field(default="", description="Only used for Azure OpenAI endpoints")


class SearchConfig(BaseModel):
    """Web search provider settings."""
    api_key: str = Field(default="", description="Brave Search subscription token")
    endpoint: str = Field(default="https://api.search.brave.com/res/v1/web/search")
    results_per_question: int = Field(default=2, description="Snippets kept per sub-question")
    max_results: int = Field(default=10, description="Results requested per query")
    timeout: float = Field(default=20.0, description="HTTP timeout in seconds")


class PipelineSettings(BaseModel):
    max_retries: int = Field(default=2, description="Synthesize/validate cycles before accepting")
    retry_delay: float = Field(default=2.0, description="Seconds to wait between cycles")
    question_count: int = Field(default=4, description="Sub-questions requested from the decomposer")
    min_draft_chars: int = Field(default=500, description="Shorter drafts escalate to the fallback model")
    target_words: int = Field(default=3000, description="Target draft length in words")
    min_word_ratio: float = Field(default=0.5, description="Below ratio * target_words is a soft failure")
    max_banned_references: int = Field(default=5)
    min_references: int = Field(default=5)
    format_references: bool = Field(default=True, description="Normalize reference entries when parsing")
    language: str = Field(default="pt-BR", description="Language the material is written in")


class ProjectConfig(BaseModel):
    """Full project configuration loaded from config.yaml."""
    project_name: str = Field(default="study-material")
    output_dir: str = Field(default="output/", description="Where the JSON document store writes")

    llm: LLMEndpointConfig = Field(default_factory=LLMEndpointConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

    llm_timeout: int = Field(default=120, description="Per-attempt LLM timeout in seconds")
    llm_max_retries: int = Field(default=3, description="Attempts per LLM call")
    backoff_base: float = Field(default=2.0, description="Backoff base in seconds")
    backoff_cap: float = Field(default=10.0, description="Backoff cap in seconds")


class SubQuestions(BaseModel):
    """Decomposer output: the research questions for one topic."""
    questions: list[str] = Field(default_factory=list)
