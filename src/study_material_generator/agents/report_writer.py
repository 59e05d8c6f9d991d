"""ReportWriter: synthesizes the study material draft from evidence."""

from __future__ import annotations

from ..models import EvidenceSnippet

SYSTEM_PROMPT = """\
You are a university lecturer writing self-contained study material.

Write a complete markdown report on the topic using the numbered evidence.
Structure:
- One # title, then ## sections and ### subsections.
- Definitions and key results as "> " callouts or **Label:** lines.
- Equations in $$ ... $$ delimiters.
- At least one ```mermaid flowchart (graph TD) summarising the process.
  Node ids are plain letters/digits, one statement per line, ASCII arrows
  only (-->), no HTML tags, style lines after all nodes and edges.
- A final "## References" section listing every source as "[n] Author.
  Title. Publisher, year. - URL: ..." using peer-reviewed, university or
  government sources. Never cite Wikipedia, blogs, video or Q&A sites.

Return ONLY the markdown report. No meta-commentary.
"""


def build_evidence_context(snippets: list[EvidenceSnippet]) -> str:
    """Numbered evidence block: ``[i] title / description / URL``."""
    return "\n\n".join(
        f"[{i}] {s.title}\n{s.description}\nURL: {s.url}"
        for i, s in enumerate(snippets, start=1)
    )


def build_user_prompt(
    topic: str,
    context: str,
    *,
    tags: list[str] | None = None,
    language: str = "pt-BR",
    target_words: int = 3000,
    feedback: list[str] | None = None,
) -> str:
    parts = [
        f"Topic: {topic}",
        f"Language: {language}",
        f"Target length: about {target_words} words.",
    ]
    if tags:
        parts.append(f"Tags: {', '.join(tags)}")
    parts.append(f"\nEvidence:\n{context or '(no search results; rely on well-established textbook knowledge)'}")
    if feedback:
        parts.append(
            "\nThe previous draft was rejected. Fix every issue below and expand "
            "the material:\n" + "\n".join(f"- {item}" for item in feedback)
        )
    return "\n".join(parts)
