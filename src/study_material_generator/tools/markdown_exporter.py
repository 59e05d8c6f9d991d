"""Serialize a ``StructuredDocument`` back to markdown."""

from __future__ import annotations

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


def block_to_markdown(block: ContentBlock) -> str:
    if isinstance(block, Heading):
        return f"{'#' * block.level} {block.text}"
    if isinstance(block, Paragraph):
        return block.text
    if isinstance(block, ListBlock):
        if block.ordered:
            return "\n".join(f"{idx}. {item}" for idx, item in enumerate(block.items, 1))
        return "\n".join(f"- {item}" for item in block.items)
    if isinstance(block, Callout):
        return f"> {block.text}"
    if isinstance(block, Diagram):
        return f"```mermaid\n{block.dsl}\n```"
    if isinstance(block, ReferenceList):
        return "\n\n".join(block.entries)
    raise TypeError(f"Unknown block type: {type(block).__name__}")


def document_to_markdown(document: StructuredDocument) -> str:
    """Render *document* as markdown; parsing the result yields the same block kinds."""
    parts: list[str] = []
    if document.title:
        parts.append(f"# {document.title}")
    parts.extend(block_to_markdown(b) for b in document.blocks)
    return "\n\n".join(p for p in parts if p) + "\n"
