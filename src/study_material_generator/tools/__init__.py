"""Deterministic tools for draft validation, math repair, and document parsing."""

from .diagram_validator import lint_diagram, repair_diagram, repair_diagrams_in_markdown, validate_diagram
from .document_parser import parse_document
from .markdown_exporter import document_to_markdown
from .math_normalizer import lint_math, normalize_math
from .reference_validator import validate_references

__all__ = [
    "document_to_markdown",
    "lint_diagram",
    "lint_math",
    "normalize_math",
    "parse_document",
    "repair_diagram",
    "repair_diagrams_in_markdown",
    "validate_diagram",
    "validate_references",
]
