"""Structured document parser: normalized markdown → ``StructuredDocument``.

A single pass over the lines with four accumulator states (none, paragraph,
list, diagram) plus a references mode entered after a references heading.
The parser is total: non-empty input always yields at least one block.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from ..exceptions import NestedDocumentError
from ..models import (
    Callout,
    ContentBlock,
    Diagram,
    Heading,
    ListBlock,
    Paragraph,
    ReferenceList,
    StructuredDocument,
)
from .diagram_validator import DIAGRAM_REMOVED_NOTICE, validate_diagram
from .reference_validator import is_references_heading

logger = logging.getLogger(__name__)

# Tunable heuristics, not sentence-boundary detection.
PARAGRAPH_SOFT_LIMIT = 200
PARAGRAPH_HARD_LIMIT = 400
FALLBACK_MIN_CHUNK = 50

NESTED_CONTENT_NOTICE = "⚠️ Content removed: block contained a nested serialized document."

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_BULLET_RE = re.compile(r"^[-*•]\s+(.*)$")
_NUMBERED_RE = re.compile(r"^\d+[.)]\s+(.*)$")
_QUOTE_RE = re.compile(r"^>\s?(.*)$")
_BOLD_LABEL_RE = re.compile(r"^\*\*([^*:\n]+):\*\*")
_REF_ENTRY_RE = re.compile(r"^(?:\[\d+\]|\d+\.)\s+\S")
_REF_SUBFIELD_RE = re.compile(r"^[-*•]\s*(?:URL|Autor|Author|DOI|Acesso|Accessed)\s*:", re.IGNORECASE)
_REF_SPLIT_RE = re.compile(r"\s+(?=\[\d+\]\s)")
_BLANK_SPLIT_RE = re.compile(r"\n\s*\n")


class _State(str, Enum):
    NONE = "none"
    PARAGRAPH = "paragraph"
    LIST = "list"
    DIAGRAM = "diagram"


# ---------------------------------------------------------------------------
# Reference entry formatting
# ---------------------------------------------------------------------------

_URL_FIELD_RE = re.compile(r"\s*-\s*URL:\s*", re.IGNORECASE)
_AUTHOR_FIELD_RE = re.compile(r"\s*-\s*(Autor|Author):\s*", re.IGNORECASE)
_PDF_RE = re.compile(r"(\(PDF\)|\[PDF\])[ \t]*\n?", re.IGNORECASE)
_EXCESS_BREAKS_RE = re.compile(r"\n{3,}")


def format_reference_entry(entry: str) -> str:
    """Put URL/author sub-fields on their own lines and collapse excess breaks."""
    entry = _URL_FIELD_RE.sub("\n- URL: ", entry)
    entry = _AUTHOR_FIELD_RE.sub(lambda m: f"\n- {m.group(1)}: ", entry)
    entry = _PDF_RE.sub(lambda m: f"{m.group(1)}\n", entry)
    entry = _EXCESS_BREAKS_RE.sub("\n\n", entry)
    return entry.strip()


def _strip_bold(text: str) -> str:
    return text.replace("**", "").strip()


def _callout_text(stripped: str) -> str | None:
    """Callout body for a ``> quote`` or ``**Label:**`` line, else ``None``."""
    quote = _QUOTE_RE.match(stripped)
    if quote:
        return quote.group(1).strip()
    label = _BOLD_LABEL_RE.match(stripped)
    if label and label.group(1)[:1].isupper():
        return stripped
    return None


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class _DocumentBuilder:
    """Line-by-line state machine that accumulates blocks."""

    def __init__(self, title: str, format_references: bool) -> None:
        self.title = title
        self.format_references = format_references
        self.blocks: list[ContentBlock] = []
        self.warnings: list[str] = []
        self.state = _State.NONE
        self.paragraph: list[str] = []
        self.items: list[str] = []
        self.ordered = False
        self.diagram: list[str] = []
        self.references: list[str] | None = None
        # the last reference entry may still take wrapped continuation lines
        self.reference_open = False
        self.diagram_count = 0

    # -- flushing -----------------------------------------------------------

    def flush_paragraph(self) -> None:
        text = " ".join(self.paragraph).strip()
        if text:
            self.blocks.append(Paragraph(text=text))
        self.paragraph = []
        if self.state == _State.PARAGRAPH:
            self.state = _State.NONE

    def flush_list(self) -> None:
        if self.items:
            self.blocks.append(ListBlock(items=self.items, ordered=self.ordered))
        self.items = []
        self.ordered = False
        if self.state == _State.LIST:
            self.state = _State.NONE

    def flush_references(self) -> None:
        if self.references:
            entries = self.references
            if self.format_references:
                entries = [format_reference_entry(e) for e in entries]
            self.blocks.append(ReferenceList(entries=entries))
        self.references = None
        self.reference_open = False

    def flush_all(self) -> None:
        self.flush_paragraph()
        self.flush_list()
        self.flush_references()

    def finish_diagram(self) -> None:
        self.diagram_count += 1
        result = validate_diagram("\n".join(self.diagram))
        if result.valid:
            self.blocks.append(Diagram(dsl=result.fixed_text))
        else:
            message = f"diagram {self.diagram_count} removed: {'; '.join(result.errors)}"
            logger.warning("[parse] %s", message)
            self.warnings.append(message)
            self.blocks.append(Paragraph(text=DIAGRAM_REMOVED_NOTICE))
        self.diagram = []
        self.state = _State.NONE

    # -- line handlers --------------------------------------------------------

    def feed(self, line: str) -> None:
        stripped = line.strip()

        if self.state == _State.DIAGRAM:
            if stripped.startswith("```"):
                self.finish_diagram()
            else:
                self.diagram.append(line.rstrip())
            return

        if not stripped:
            self.flush_paragraph()
            self.flush_list()
            self.reference_open = False
            return

        if stripped.startswith("```mermaid"):
            self.flush_all()
            self.state = _State.DIAGRAM
            return
        if stripped.startswith("```"):
            return

        heading = _HEADING_RE.match(stripped)
        if heading:
            self._heading(len(heading.group(1)), heading.group(2), stripped)
            return

        if self.references is not None and self._reference_line(stripped):
            return

        if self._callout(stripped):
            return

        bullet = _BULLET_RE.match(stripped)
        numbered = None if bullet else _NUMBERED_RE.match(stripped)
        if bullet or numbered:
            self._list_item((bullet or numbered).group(1).strip(), ordered=numbered is not None)
            return

        self._paragraph_line(stripped)

    def _heading(self, level: int, raw_text: str, line: str) -> None:
        self.flush_all()
        text = _strip_bold(raw_text)
        if level == 1:
            if not self.title and text:
                self.title = text
            return
        if not text:
            return
        self.blocks.append(Heading(level=min(level, 4), text=text))
        if is_references_heading(line):
            self.references = []

    def _reference_line(self, stripped: str) -> bool:
        assert self.references is not None
        if _REF_SUBFIELD_RE.match(stripped) and self.references:
            self.references[-1] += "\n" + stripped
            self.reference_open = True
            return True
        if _REF_ENTRY_RE.match(stripped):
            self.flush_paragraph()
            self.references.extend(part.strip() for part in _REF_SPLIT_RE.split(stripped) if part.strip())
            self.reference_open = True
            return True
        bullet = _BULLET_RE.match(stripped)
        if bullet:
            self.flush_paragraph()
            self.references.append(bullet.group(1).strip())
            self.reference_open = True
            return True
        if self.reference_open and _callout_text(stripped) is None:
            self.references[-1] += " " + stripped
            return True
        # anything else after the entries closes the list
        if self.references:
            self.flush_references()
        return False

    def _callout(self, stripped: str) -> bool:
        text = _callout_text(stripped)
        if text is None:
            return False
        self.flush_paragraph()
        self.flush_list()
        if text:
            self.blocks.append(Callout(text=text))
        return True

    def _list_item(self, item: str, *, ordered: bool) -> None:
        self.flush_paragraph()
        if self.items and self.ordered != ordered:
            self.flush_list()
        self.state = _State.LIST
        self.ordered = ordered
        self.items.append(item)

    def _paragraph_line(self, stripped: str) -> None:
        self.flush_list()
        current = len(" ".join(self.paragraph))
        if current > PARAGRAPH_SOFT_LIMIT and stripped[:1].isupper():
            self.flush_paragraph()
        self.paragraph.append(stripped)
        self.state = _State.PARAGRAPH
        if len(" ".join(self.paragraph)) > PARAGRAPH_HARD_LIMIT:
            self.flush_paragraph()

    def finish(self) -> None:
        if self.state == _State.DIAGRAM:
            self.warnings.append("unterminated diagram fence at end of input")
            self.finish_diagram()
        self.flush_all()


# ---------------------------------------------------------------------------
# Nested-document guard
# ---------------------------------------------------------------------------

def _text_fields(block: ContentBlock) -> list[str]:
    if isinstance(block, Diagram):
        return [block.dsl]
    if isinstance(block, ListBlock):
        return list(block.items)
    if isinstance(block, ReferenceList):
        return list(block.entries)
    return [block.text]


def _guard_nested(blocks: list[ContentBlock], strict: bool, warnings: list[str]) -> list[ContentBlock]:
    checked: list[ContentBlock] = []
    for idx, block in enumerate(blocks):
        if any(value.strip().startswith("{") for value in _text_fields(block)):
            message = f"block {idx} ({block.kind}) contains a nested serialized document"
            if strict:
                raise NestedDocumentError(f"Invalid JSON nesting detected: {message}")
            logger.warning("[parse] %s, replaced with notice", message)
            warnings.append(message)
            checked.append(Paragraph(text=NESTED_CONTENT_NOTICE))
            continue
        checked.append(block)
    return checked


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _fallback_blocks(text: str) -> list[ContentBlock]:
    chunks = [c.strip() for c in _BLANK_SPLIT_RE.split(text)]
    blocks: list[ContentBlock] = [Paragraph(text=c) for c in chunks if len(c) >= FALLBACK_MIN_CHUNK]
    if not blocks:
        blocks = [Paragraph(text=text.strip() or text)]
    return blocks


def parse_document(
    text: str,
    title: str = "",
    *,
    format_references: bool = False,
    strict: bool = True,
) -> tuple[StructuredDocument, list[str]]:
    """Parse *text* into a ``StructuredDocument``.

    Returns ``(document, warnings)``.  With ``strict=True`` a block whose
    content starts with ``{`` raises ``NestedDocumentError``; otherwise the
    block is replaced by a notice paragraph and a warning is recorded.
    """
    builder = _DocumentBuilder(title, format_references)
    for line in text.splitlines():
        builder.feed(line)
    builder.finish()

    blocks = builder.blocks
    if not blocks and text:
        logger.warning("[parse] no blocks recognised, falling back to plain paragraphs")
        builder.warnings.append("no structure recognised; fell back to plain paragraphs")
        blocks = _fallback_blocks(text)

    blocks = _guard_nested(blocks, strict, builder.warnings)
    document = StructuredDocument(title=builder.title, blocks=blocks)
    logger.debug("[parse] %d blocks, %d warnings", len(document.blocks), len(builder.warnings))
    return document, builder.warnings
