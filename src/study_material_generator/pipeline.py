"""Pipeline: drives one generation job from PENDING to a terminal state.

PENDING → DECOMPOSING  : split the topic into sub-questions
        → RESEARCHING  : academic-filtered search per sub-question
        → SYNTHESIZING : draft from evidence (primary model, fallback on failure)
        → VALIDATING   : references, diagrams, length; bounded retry loop
        → COMPLETED    : math normalized, parsed, document saved
Any unrecoverable error moves the job to FAILED without saving a document.
"""

from __future__ import annotations

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

from .agents import question_decomposer, report_writer
from .config import resolve_role_model
from .exceptions import GenerationError, LLMRetriesExhaustedError, SearchProviderError
from .llm_client import LLMClient
from .logging_config import PipelineCallbacks, RichCallbacks
from .models import (
    DraftReport,
    EvidenceSnippet,
    GenerationJob,
    JobResult,
    JobStatus,
    ProjectConfig,
    StructuredDocument,
    ValidationOutcome,
)
from .search import ACADEMIC_DOMAIN_FILTER, SearchProvider
from .stores import DocumentStore, JobStore
from .tools.diagram_validator import extract_diagrams, validate_diagram
from .tools.document_parser import parse_document
from .tools.math_normalizer import lint_math, normalize_math
from .tools.reference_validator import validate_references

logger = logging.getLogger(__name__)

PROGRESS_DECOMPOSED = 0.1
PROGRESS_RESEARCHED = 0.3
PROGRESS_SYNTHESIZING = 0.8
PROGRESS_DONE = 1.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _count_words(text: str) -> int:
    """Count words in markdown text, excluding code blocks and HTML comments."""
    cleaned = re.sub(r"```.*?```", "", text, flags=re.DOTALL)
    cleaned = re.sub(r"<!--.*?-->", "", cleaned, flags=re.DOTALL)
    return len(cleaned.split())


def _feedback_from(outcomes: list[ValidationOutcome]) -> list[str]:
    """Turn failed validation outcomes into retry instructions."""
    feedback: list[str] = []
    for outcome in outcomes:
        if outcome.validator == "length":
            feedback.append(
                f"The draft is too short ({outcome.metrics.get('word_count', 0)} words); "
                f"expand every section with more explanation and worked examples."
            )
        else:
            feedback.extend(f"{outcome.validator}: {err}" for err in outcome.errors[:5])
    return feedback


class GenerationPipeline:
    """Orchestrates the generation job state machine.

    All collaborators are injected; the pipeline itself keeps no state
    between jobs.
    """

    def __init__(
        self,
        config: ProjectConfig,
        *,
        llm: LLMClient,
        search: SearchProvider,
        job_store: JobStore,
        document_store: DocumentStore,
        callbacks: PipelineCallbacks | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.llm = llm
        self.search = search
        self.job_store = job_store
        self.document_store = document_store
        self.callbacks = callbacks or RichCallbacks()
        self._sleep = sleep

    # -----------------------------------------------------------------------
    # Job state helpers
    # -----------------------------------------------------------------------

    def _set_status(self, job: GenerationJob, status: JobStatus, error_message: str | None = None) -> None:
        job.status = status
        job.error_message = error_message
        self.job_store.set_status(job.id, status, error_message)
        logger.debug("[job %s] status → %s", job.id, status.value)

    def _report_progress(self, job: GenerationJob, fraction: float, message: str) -> None:
        """Fire-and-forget progress update; never moves backwards."""
        job.progress = max(job.progress, fraction)
        job.progress_message = message
        self.callbacks.on_progress(job.progress, message)
        try:
            self.job_store.update_progress(job.id, job.progress, message)
        except Exception as exc:
            logger.warning("[job %s] progress update failed: %s", job.id, exc)

    def _warn(self, job: GenerationJob, message: str) -> None:
        logger.warning("[job %s] %s", job.id, message)
        job.warnings.append(message)
        self.callbacks.on_warning(message)

    # -----------------------------------------------------------------------
    # Phase 1: Decomposition
    # -----------------------------------------------------------------------

    def run_decomposition(self, job: GenerationJob) -> list[str]:
        """Ask for ``question_count`` sub-questions; fall back to the topic."""
        settings = self.config.pipeline
        self._set_status(job, JobStatus.DECOMPOSING)
        self.callbacks.on_phase_start("decompose", f"Splitting {job.topic!r} into sub-questions")

        model = resolve_role_model("decomposer", self.config)
        raw = self.llm.complete(
            model,
            question_decomposer.build_system_prompt(settings.question_count),
            question_decomposer.build_user_prompt(job.topic, job.tags, settings.language),
        )
        questions = question_decomposer.parse_questions(raw, limit=settings.question_count)

        if not questions:
            questions = [job.topic]
            logger.info("[decompose] using the topic as the only sub-question")

        logger.info("[decompose] %d sub-question(s)", len(questions))
        self._report_progress(job, PROGRESS_DECOMPOSED, f"topic split into {len(questions)} question(s)")
        self.callbacks.on_phase_end("decompose", True)
        return questions

    # -----------------------------------------------------------------------
    # Phase 2: Research
    # -----------------------------------------------------------------------

    def run_research(self, job: GenerationJob, questions: list[str]) -> list[EvidenceSnippet]:
        """Search every sub-question concurrently; merge results in question order."""
        settings = self.config.search
        self._set_status(job, JobStatus.RESEARCHING)
        self.callbacks.on_phase_start("research", f"Searching {len(questions)} question(s)")

        results: list[list[EvidenceSnippet]] = [[] for _ in questions]
        with ThreadPoolExecutor(max_workers=max(1, len(questions))) as pool:
            futures = {
                pool.submit(self.search.search, q, ACADEMIC_DOMAIN_FILTER, settings.max_results): idx
                for idx, q in enumerate(questions)
            }
            for future in as_completed(futures):
                idx = futures[future]
                try:
                    results[idx] = future.result()[:settings.results_per_question]
                except SearchProviderError as exc:
                    self._warn(job, f"search skipped for question {idx + 1}: {exc}")

        snippets = [s for group in results for s in group]
        logger.info("[research] %d snippet(s) from %d question(s)", len(snippets), len(questions))
        self._report_progress(job, PROGRESS_RESEARCHED, f"{len(snippets)} source(s) collected")
        self.callbacks.on_phase_end("research", True)
        return snippets

    # -----------------------------------------------------------------------
    # Phase 3: Synthesis (with model escalation)
    # -----------------------------------------------------------------------

    def run_synthesis(
        self,
        job: GenerationJob,
        context: str,
        feedback: list[str],
        attempt: int,
    ) -> DraftReport:
        """Generate one draft; escalate once to the fallback model if needed."""
        settings = self.config.pipeline
        primary = resolve_role_model("writer", self.config)
        fallback = resolve_role_model("fallback_writer", self.config)
        system_prompt = report_writer.SYSTEM_PROMPT
        user_prompt = report_writer.build_user_prompt(
            job.topic,
            context,
            tags=job.tags,
            language=settings.language,
            target_words=settings.target_words,
            feedback=feedback,
        )

        self.callbacks.on_attempt(attempt, settings.max_retries, primary)
        logger.info("[synthesize] attempt %d/%d model=%s", attempt, settings.max_retries, primary)
        try:
            text = self.llm.complete(primary, system_prompt, user_prompt)
        except LLMRetriesExhaustedError as exc:
            if fallback == primary:
                raise
            reason = f"primary model {primary} failed ({exc.kind.value})"
        else:
            if len(text.strip()) >= settings.min_draft_chars:
                return DraftReport(text=text, model=primary, attempt=attempt)
            if fallback == primary:
                return DraftReport(text=text, model=primary, attempt=attempt)
            reason = f"primary draft too short ({len(text.strip())} chars < {settings.min_draft_chars})"

        self._warn(job, f"escalating to fallback model {fallback}: {reason}")
        text = self.llm.complete(fallback, system_prompt, user_prompt)
        if not text.strip():
            raise GenerationError("primary and fallback models both returned an empty draft")
        return DraftReport(text=text, model=fallback, attempt=attempt)

    # -----------------------------------------------------------------------
    # Phase 4: Validation
    # -----------------------------------------------------------------------

    def run_validation(self, job: GenerationJob, draft: DraftReport) -> list[ValidationOutcome]:
        """Run every validator on *draft*; one outcome per validator."""
        settings = self.config.pipeline
        self._set_status(job, JobStatus.VALIDATING)

        refs = validate_references(
            draft.text,
            max_banned=settings.max_banned_references,
            min_references=settings.min_references,
        )
        references = ValidationOutcome(
            validator="references",
            valid=refs.valid,
            errors=refs.errors,
            metrics={
                "total_count": refs.total_count,
                "academic_count": refs.academic_count,
                "banned_count": refs.banned_count,
                "academic_percentage": round(refs.academic_percentage, 1),
            },
        )

        diagram_errors: list[str] = []
        dsl_blocks = extract_diagrams(draft.text)
        repaired = 0
        for idx, dsl in enumerate(dsl_blocks, start=1):
            result = validate_diagram(dsl)
            if result.fixed_text != dsl.strip():
                repaired += 1
            diagram_errors.extend(f"diagram {idx}: {err}" for err in result.errors)
        diagrams = ValidationOutcome(
            validator="diagrams",
            valid=not diagram_errors,
            errors=diagram_errors,
            metrics={
                "diagram_count": len(dsl_blocks),
                "repaired_count": repaired,
                "diagram_error_count": len(diagram_errors),
            },
        )

        words = _count_words(draft.text)
        minimum = int(settings.target_words * settings.min_word_ratio)
        length = ValidationOutcome(
            validator="length",
            valid=words >= minimum,
            errors=[] if words >= minimum else [f"{words} words, expected at least {minimum}"],
            metrics={"word_count": words, "minimum_words": minimum},
        )

        outcomes = [references, diagrams, length]
        for outcome in outcomes:
            logger.info(
                "[validate] attempt %d %s: %s %s",
                draft.attempt, outcome.validator, "ok" if outcome.valid else "FAILED", outcome.metrics,
            )
        return outcomes

    def _accept_with_warnings(
        self,
        job: GenerationJob,
        draft: DraftReport,
        failed: list[ValidationOutcome],
    ) -> DraftReport:
        """Retry budget exhausted: keep the last draft and record why it is degraded."""
        for outcome in failed:
            self._warn(
                job,
                f"accepted after {job.attempts} attempt(s) despite {outcome.validator} issues: "
                + "; ".join(outcome.errors[:3]),
            )
        return draft

    def run_generation_loop(
        self,
        job: GenerationJob,
        snippets: list[EvidenceSnippet],
    ) -> tuple[DraftReport, list[ValidationOutcome]]:
        """Bounded synthesize → validate cycles; returns the accepted draft."""
        settings = self.config.pipeline
        max_attempts = max(1, settings.max_retries)
        context = report_writer.build_evidence_context(snippets)
        self.callbacks.on_phase_start("synthesize", f"Up to {max_attempts} draft attempt(s)")

        all_outcomes: list[ValidationOutcome] = []
        feedback: list[str] = []
        failed: list[ValidationOutcome] = []
        draft: DraftReport | None = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                logger.info("[synthesize] waiting %.1fs before retry", settings.retry_delay)
                self._sleep(settings.retry_delay)
            job.attempts = attempt
            self._set_status(job, JobStatus.SYNTHESIZING)
            self._report_progress(job, PROGRESS_SYNTHESIZING, f"generating report (attempt {attempt}/{max_attempts})")

            draft = self.run_synthesis(job, context, feedback, attempt)
            outcomes = self.run_validation(job, draft)
            all_outcomes.extend(outcomes)

            failed = [o for o in outcomes if not o.valid]
            if not failed:
                self.callbacks.on_phase_end("synthesize", True)
                return draft, all_outcomes
            feedback = _feedback_from(failed)
            logger.warning(
                "[synthesize] attempt %d/%d rejected by: %s",
                attempt, max_attempts, ", ".join(o.validator for o in failed),
            )

        assert draft is not None
        self.callbacks.on_phase_end("synthesize", False)
        return self._accept_with_warnings(job, draft, failed), all_outcomes

    # -----------------------------------------------------------------------
    # Phase 5: Post-processing
    # -----------------------------------------------------------------------

    def run_post_processing(self, job: GenerationJob, draft: DraftReport) -> StructuredDocument:
        """Normalize math, parse, and persist the accepted draft."""
        normalized = normalize_math(draft.text)
        for issue in lint_math(normalized):
            self._warn(job, f"math: {issue}")

        document, parse_warnings = parse_document(
            normalized,
            format_references=self.config.pipeline.format_references,
            strict=False,
        )
        for warning in parse_warnings:
            self._warn(job, f"parse: {warning}")
        if not document.title:
            document.title = job.topic

        self.document_store.save_document(job.document_target, document)
        logger.info("[post-process] saved %d block(s) for %s", len(document.blocks), job.document_target)
        return document

    # -----------------------------------------------------------------------
    # Full run
    # -----------------------------------------------------------------------

    def run_job(self, job: GenerationJob) -> JobResult:
        """Drive *job* to COMPLETED or FAILED. A terminal job is left untouched."""
        if job.status.is_terminal:
            logger.info("[job %s] already %s, nothing to do", job.id, job.status.value)
            return JobResult(job=job, drafts_attempted=job.attempts)

        outcomes: list[ValidationOutcome] = []
        document: StructuredDocument | None = None
        try:
            questions = self.run_decomposition(job)
            snippets = self.run_research(job, questions)
            draft, outcomes = self.run_generation_loop(job, snippets)
            document = self.run_post_processing(job, draft)
            self._report_progress(job, PROGRESS_DONE, "done")
            self._set_status(job, JobStatus.COMPLETED)
        except GenerationError as exc:
            logger.error("[job %s] failed: %s", job.id, exc)
            self.callbacks.on_error(str(exc))
            document = None
            self._set_status(job, JobStatus.FAILED, str(exc))
        except Exception as exc:
            logger.exception("Pipeline failed")
            self.callbacks.on_error(str(exc))
            document = None
            self._set_status(job, JobStatus.FAILED, f"unexpected error: {exc}")

        return JobResult(job=job, document=document, drafts_attempted=job.attempts, validation=outcomes)
