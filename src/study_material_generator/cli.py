"""CLI entry point using Hydra.

Usage examples:
  smg mode=run topic="Thermodynamics — First Law" tags=[physics]
  smg mode=run topic="Heat engines" output=heat_engines.md
  smg mode=parse input=draft.md output=draft.json
  smg mode=validate input=draft.md
  smg mode=fix_diagrams input=draft.md output=draft.fixed.md
  smg --config-dir examples --config-name config mode=run topic="Entropy"
"""

from __future__ import annotations

import sys
import uuid
from pathlib import Path
from typing import Any

import hydra
from omegaconf import DictConfig, OmegaConf
from rich.table import Table

from ._hydra_conf import CLI_ONLY_KEYS, register_configs
from .config import apply_credential_fallbacks
from .logging_config import RichCallbacks, console, setup_logging
from .models import GenerationJob, ProjectConfig, StructuredDocument

register_configs()

# ---------------------------------------------------------------------------
# Hydra DictConfig → Pydantic ProjectConfig bridge
# ---------------------------------------------------------------------------


def _to_project_config(cfg: DictConfig) -> ProjectConfig:
    """Convert a Hydra *DictConfig* to a Pydantic ``ProjectConfig``.

    CLI-only keys (``mode``, ``topic``, etc.) are stripped before validation.
    Credential env-var fallbacks are applied afterwards.
    """
    container: dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]
    for key in CLI_ONLY_KEYS:
        container.pop(key, None)
    config = ProjectConfig.model_validate(container)
    return apply_credential_fallbacks(config)


def _read_input(cfg: DictConfig) -> tuple[Path, str]:
    source = cfg.get("input")
    if not source:
        console.print("[red]input=<markdown file> is required for this mode[/]")
        sys.exit(1)
    path = Path(source)
    if not path.exists():
        console.print(f"[red]Input file not found: {path}[/]")
        sys.exit(1)
    return path, path.read_text(encoding="utf-8")


def _write_document(document: StructuredDocument, output: str | None) -> None:
    from .tools.markdown_exporter import document_to_markdown

    if output is None:
        console.print_json(document.model_dump_json())
        return
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".md", ".markdown"):
        path.write_text(document_to_markdown(document), encoding="utf-8")
    else:
        path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
    console.print(f"[green]Written to {path}[/]")


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _run_mode(cfg: DictConfig) -> None:
    topic = cfg.get("topic")
    if not topic:
        console.print("[red]topic=... is required for run mode[/]")
        sys.exit(1)

    config = _to_project_config(cfg)

    from .exceptions import ConfigurationError
    from .llm_client import LLMClient
    from .pipeline import GenerationPipeline
    from .search import BraveSearchProvider
    from .stores import InMemoryJobStore, JsonFileDocumentStore

    job = GenerationJob(
        id=cfg.get("job_id") or uuid.uuid4().hex[:12],
        topic=topic,
        tags=list(cfg.get("tags") or []),
    )
    document_store = JsonFileDocumentStore(config.output_dir)
    try:
        pipeline = GenerationPipeline(
            config,
            llm=LLMClient.from_config(config),
            search=BraveSearchProvider(config.search),
            job_store=InMemoryJobStore(),
            document_store=document_store,
            callbacks=RichCallbacks(),
        )
    except ConfigurationError as exc:
        console.print(f"[bold red]Configuration error:[/] {exc.message}")
        sys.exit(1)

    console.print(f"[bold]Generating study material:[/] {topic}")
    result = pipeline.run_job(job)

    if result.document is None:
        console.print("\n[bold red]Job failed.[/]")
        console.print(f"  [red]{job.error_message}[/]")
        sys.exit(1)

    console.print("\n[bold green]Job completed.[/]")
    console.print(f"  Attempts: {result.drafts_attempted}")
    console.print(f"  Blocks: {len(result.document.blocks)}")
    console.print(f"  Document: {document_store.path_for(job.document_target)}")
    if job.warnings:
        console.print(f"  [yellow]Warnings ({len(job.warnings)}):[/]")
        for warning in job.warnings:
            console.print(f"    - {warning}")
    if cfg.get("output"):
        _write_document(result.document, cfg.output)


def _parse_mode(cfg: DictConfig) -> None:
    from .tools.document_parser import parse_document
    from .tools.math_normalizer import normalize_math

    config = _to_project_config(cfg)
    path, text = _read_input(cfg)
    document, warnings = parse_document(
        normalize_math(text),
        format_references=config.pipeline.format_references,
        strict=False,
    )
    if not document.title:
        document.title = path.stem.replace("_", " ")
    for warning in warnings:
        console.print(f"  [yellow]WARNING:[/] {warning}")
    _write_document(document, cfg.get("output"))


def _validate_mode(cfg: DictConfig) -> None:
    from .tools.diagram_validator import extract_diagrams, validate_diagram
    from .tools.math_normalizer import lint_math, normalize_math
    from .tools.reference_validator import validate_references

    config = _to_project_config(cfg)
    _, text = _read_input(cfg)

    refs = validate_references(
        text,
        max_banned=config.pipeline.max_banned_references,
        min_references=config.pipeline.min_references,
    )
    table = Table(title="Draft validation")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    table.add_row(
        "References",
        "[green]OK[/]" if refs.valid else "[red]FAIL[/]",
        f"{refs.total_count} refs, {refs.academic_percentage:.0f}% academic, {refs.banned_count} banned",
    )
    for idx, dsl in enumerate(extract_diagrams(text), start=1):
        result = validate_diagram(dsl)
        table.add_row(
            f"Diagram {idx}",
            "[green]OK[/]" if result.valid else "[red]FAIL[/]",
            "; ".join(result.errors) or ("repaired" if result.fixed_text != dsl.strip() else ""),
        )
    math_issues = lint_math(normalize_math(text))
    table.add_row("Math", "[green]OK[/]" if not math_issues else "[yellow]WARN[/]", "; ".join(math_issues))
    console.print(table)

    for err in refs.errors:
        console.print(f"  [red]{err}[/]")


def _fix_diagrams_mode(cfg: DictConfig) -> None:
    from .tools.diagram_validator import repair_diagrams_in_markdown

    path, text = _read_input(cfg)
    fixed, removed = repair_diagrams_in_markdown(text)
    output = Path(cfg.get("output") or path)
    output.write_text(fixed, encoding="utf-8")
    console.print(f"[green]Diagrams repaired → {output}[/] ({removed} removed)")


_MODE_DISPATCH: dict[str, Any] = {
    "run": _run_mode,
    "parse": _parse_mode,
    "validate": _validate_mode,
    "fix_diagrams": _fix_diagrams_mode,
}


# ---------------------------------------------------------------------------
# Hydra entry point
# ---------------------------------------------------------------------------


@hydra.main(config_path="conf", config_name="config", version_base=None)
def hydra_entry(cfg: DictConfig) -> None:
    """Hydra-managed CLI entry point."""
    setup_logging(verbose=cfg.get("verbose", False), quiet=cfg.get("quiet", False))

    mode = cfg.get("mode", "run")
    handler = _MODE_DISPATCH.get(mode)
    if handler is None:
        console.print(f"[red]Unknown mode: {mode!r}. Choose from: {', '.join(_MODE_DISPATCH)}[/]")
        sys.exit(1)

    handler(cfg)


def main() -> None:
    """Package entry point (``[project.scripts]`` target)."""
    hydra_entry()  # pylint: disable=no-value-for-parameter
