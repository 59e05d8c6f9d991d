"""Deterministic diagram validator: regex checks and auto-repairs for mermaid blocks.

Runs on every fenced ``mermaid`` block of a draft before parsing.  No LLM calls.
Repairs are applied first; the repaired text is then validated, so
``validate_diagram(r.fixed_text)`` returns the same ``fixed_text`` again.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..models import DiagramValidationResult

DIAGRAM_REMOVED_NOTICE = "⚠️ Diagram removed: the generated diagram had invalid syntax."

ALLOWED_TYPES = (
    "graph",
    "flowchart",
    "sequenceDiagram",
    "stateDiagram",
    "stateDiagram-v2",
    "classDiagram",
    "gantt",
)
FLOW_TYPES = frozenset({"graph", "flowchart"})
DIRECTIONS = ("TD", "TB", "BT", "LR", "RL")

_DIR = "|".join(DIRECTIONS)

# ---------------------------------------------------------------------------
# Repair rules (pure str -> str, applied in order)
# ---------------------------------------------------------------------------

_GLUED_HEADER_RE = re.compile(rf"^([ \t]*)(graph|flowchart)[ \t]*({_DIR})(?=[A-Za-z0-9_])")
_GLUED_HEADER_ALONE_RE = re.compile(rf"^([ \t]*)(graph|flowchart)({_DIR})[ \t]*;?[ \t]*$")
_GLUED_SUBGRAPH_RE = re.compile(r"^([ \t]*)subgraph(?=[A-Za-z0-9_\"])", re.MULTILINE)
_GLUED_DIRECTION_RE = re.compile(rf"^([ \t]*)direction({_DIR})\b", re.MULTILINE)
_GLUED_END_RE = re.compile(r"^([ \t]*)end(?=[A-Z]\w*[\[\(\{])", re.MULTILINE)


def _unglue_header(dsl: str) -> str:
    lines = dsl.split("\n")
    for i, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or stripped.startswith("%%"):
            continue
        line = _GLUED_HEADER_RE.sub(lambda m: f"{m.group(1)}{m.group(2)} {m.group(3)}\n{m.group(1)}", line, count=1)
        lines[i] = _GLUED_HEADER_ALONE_RE.sub(r"\1\2 \3", line, count=1)
        break
    return "\n".join(lines)


def unglue_keywords(dsl: str) -> str:
    """Insert the separator missing after a keyword.

    ``graphTDA[Start]`` → ``graph TD\\nA[Start]``; ``subgraphX`` → ``subgraph X``;
    ``directionLR`` → ``direction LR``; ``endB[Next]`` → ``end\\nB[Next]``.
    Only the header statement is checked for a glued ``graph``/``flowchart``.
    Continuation lines keep the indentation of the original line.
    """
    dsl = _unglue_header(dsl)
    dsl = _GLUED_SUBGRAPH_RE.sub(r"\1subgraph ", dsl)
    dsl = _GLUED_DIRECTION_RE.sub(r"\1direction \2", dsl)
    dsl = _GLUED_END_RE.sub(lambda m: f"{m.group(1)}end\n{m.group(1)}", dsl)
    return dsl


UNICODE_ARROWS = {
    "→": "-->",
    "⇒": "==>",
    "←": "<--",
    "⇐": "<==",
    "↔": "<-->",
    "⇔": "<==>",
}


def replace_unicode_arrows(dsl: str) -> str:
    for glyph, ascii_arrow in UNICODE_ARROWS.items():
        dsl = dsl.replace(glyph, ascii_arrow)
    return dsl


GREEK_LETTERS = {
    "Δ": "Delta",
    "∆": "Delta",
    "α": "alpha",
    "β": "beta",
    "γ": "gamma",
    "θ": "theta",
    "λ": "lambda",
    "π": "pi",
    "σ": "sigma",
    "ω": "omega",
    "μ": "mu",
    "ε": "epsilon",
    "ρ": "rho",
}


def spell_greek_letters(dsl: str) -> str:
    for letter, name in GREEK_LETTERS.items():
        dsl = dsl.replace(letter, name)
    return dsl


_TAG_RE = re.compile(r"</?[a-zA-Z][a-zA-Z0-9]*(?:\s[^<>\n]*)?/?>")
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)


def convert_markup_tags(dsl: str) -> str:
    """``<br>`` becomes the DSL's ``\\n`` line break; other tags are stripped, content kept."""
    dsl = _BR_RE.sub(r"\\n", dsl)
    return _TAG_RE.sub("", dsl)


_BLANK_RUN_RE = re.compile(r"\n(?:[ \t]*\n){2,}")


def collapse_blank_lines(dsl: str) -> str:
    return _BLANK_RUN_RE.sub("\n\n", dsl)


# unglue_keywords runs after the rules that can leave letters next to a keyword
REPAIR_RULES = (
    replace_unicode_arrows,
    spell_greek_letters,
    convert_markup_tags,
    unglue_keywords,
    collapse_blank_lines,
    str.strip,
)


def repair_diagram(dsl: str) -> str:
    """Run every repair rule in order."""
    for rule in REPAIR_RULES:
        dsl = rule(dsl)
    return dsl


# ---------------------------------------------------------------------------
# Flowchart structure extraction
# ---------------------------------------------------------------------------

_QUOTED_RE = re.compile(r'"[^"\n]*"')
_LABEL_RES = (
    re.compile(r"\[[^\[\]]*\]"),
    re.compile(r"\([^()]*\)"),
    re.compile(r"\{[^{}]*\}"),
)
# asymmetric node shape: A>Flag]
_ASYMMETRIC_LABEL_RE = re.compile(r"(?<=[A-Za-z0-9_])>[^\[\]\n]*\]")
_EDGE_LABEL_RE = re.compile(r"\|[^|\n]*\|")
_EDGE_TEXT_RE = re.compile(r"(?<![-=.<])(--|==)\s+\S[^\n]*?\s+(-->|==>|---|===)")
_ARROW_RE = re.compile(r"\s*(?:<?-{2,}[>xo]?|<?={2,}>?|<?-\.+->?|~~~)\s*")
_CLASS_SUFFIX_RE = re.compile(r":::[\w-]+")
_NODE_ID_RE = re.compile(r"^[A-Za-z0-9_]+$")
_STYLE_RE = re.compile(r"^(style|classDef|linkStyle|class)\s")
_SKIP_RE = re.compile(r"^(subgraph\b|end\b|direction\s|click\s|%%)")


@dataclass
class FlowGraph:
    """Nodes and edges declared by a graph/flowchart diagram."""

    nodes: list[str] = field(default_factory=list)
    connected: set[str] = field(default_factory=set)
    edge_count: int = 0
    structure_lines: list[int] = field(default_factory=list)
    style_lines: list[int] = field(default_factory=list)


def _strip_labels(statement: str) -> str:
    statement = _QUOTED_RE.sub("", statement)
    statement = _ASYMMETRIC_LABEL_RE.sub("", statement)
    previous = None
    while previous != statement:
        previous = statement
        for label_re in _LABEL_RES:
            statement = label_re.sub("", statement)
    statement = _EDGE_LABEL_RE.sub("", statement)
    statement = _EDGE_TEXT_RE.sub(r"\2", statement)
    return _CLASS_SUFFIX_RE.sub("", statement)


def parse_flowchart(lines: list[str]) -> FlowGraph:
    """Collect nodes and edges from the body lines (header excluded)."""
    graph = FlowGraph()
    seen: set[str] = set()

    for lineno, raw in enumerate(lines):
        line = raw.strip()
        if not line or _SKIP_RE.match(line):
            continue
        if _STYLE_RE.match(line):
            graph.style_lines.append(lineno)
            continue

        for statement in _strip_labels(line).split(";"):
            statement = statement.strip()
            if not statement:
                continue
            groups = [
                [tok.strip() for tok in part.split("&") if tok.strip()]
                for part in _ARROW_RE.split(statement)
            ]
            groups = [g for g in groups if g]
            if not groups:
                continue
            graph.structure_lines.append(lineno)
            for group in groups:
                for node in group:
                    if node not in seen:
                        seen.add(node)
                        graph.nodes.append(node)
            for left, right in zip(groups, groups[1:]):
                graph.edge_count += len(left) * len(right)
                graph.connected.update(left)
                graph.connected.update(right)
    return graph


# ---------------------------------------------------------------------------
# Lint checks
# ---------------------------------------------------------------------------

def _split_header(dsl: str) -> tuple[str, list[str]]:
    lines = dsl.splitlines()
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped and not stripped.startswith("%%"):
            return stripped, lines[i + 1:]
    return "", []


def diagram_type(dsl: str) -> str:
    header, _ = _split_header(dsl)
    return header.split()[0].rstrip(";") if header else ""


def check_diagram_type(header: str) -> list[str]:
    """1. Declared type is in the allow-list; flowcharts declare a direction."""
    if not header:
        return ["empty diagram: no diagram type declared"]
    kind = header.split()[0].rstrip(";")
    if kind not in ALLOWED_TYPES:
        return [f"unknown diagram type {kind!r} (allowed: {', '.join(ALLOWED_TYPES)})"]
    if kind in FLOW_TYPES and not re.fullmatch(rf"{kind}\s+({_DIR})\s*;?", header):
        return [f"{kind} header must declare a direction ({', '.join(DIRECTIONS)})"]
    return []


def check_markup_tags(dsl: str) -> list[str]:
    """2. No angle-bracket markup tags."""
    tags = sorted(set(_TAG_RE.findall(dsl)))
    if tags:
        return [f"markup tags are not allowed in diagrams: {', '.join(tags[:5])}"]
    return []


def check_unicode_arrows(dsl: str) -> list[str]:
    """3. No Unicode arrow glyphs."""
    found = [glyph for glyph in UNICODE_ARROWS if glyph in dsl]
    if found:
        return [f"unicode arrows must be ASCII (-->, <--, ==>): {' '.join(found)}"]
    return []


def check_node_identifiers(graph: FlowGraph) -> list[str]:
    """4. Node identifiers are alphanumeric."""
    bad = [n for n in graph.nodes if not _NODE_ID_RE.match(n)]
    if bad:
        return [f"invalid node identifier(s) {', '.join(repr(n) for n in bad[:5])}: use letters, digits and _"]
    return []


def check_connectivity(graph: FlowGraph) -> list[str]:
    """5. No orphan nodes; at least ``nodes - 1`` edges."""
    issues: list[str] = []
    node_count = len(graph.nodes)
    if node_count <= 1:
        return issues
    if graph.edge_count < node_count - 1:
        issues.append(
            f"too few edges: {graph.edge_count} edge(s) for {node_count} node(s) "
            f"(need at least {node_count - 1})"
        )
    orphans = [n for n in graph.nodes if n not in graph.connected]
    if orphans:
        issues.append(f"orphan node(s) without edges: {', '.join(orphans)}")
    return issues


_OPENERS = {"[": "]", "(": ")", "{": "}"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}


def check_bracket_balance(dsl: str) -> list[str]:
    """6. ``[]``, ``()`` and ``{}`` are balanced and properly nested.

    Quoted text and asymmetric ``A>Flag]`` labels are ignored.
    """
    stack: list[str] = []
    text = _ASYMMETRIC_LABEL_RE.sub("", _QUOTED_RE.sub("", dsl))
    for lineno, line in enumerate(text.splitlines(), start=1):
        for ch in line:
            if ch in _OPENERS:
                stack.append(ch)
            elif ch in _CLOSERS:
                if not stack or stack[-1] != _CLOSERS[ch]:
                    return [f"unbalanced brackets: unexpected {ch!r} on line {lineno}"]
                stack.pop()
    if stack:
        return [f"unbalanced brackets: {len(stack)} unclosed ({''.join(stack)})"]
    return []


def check_style_order(graph: FlowGraph) -> list[str]:
    """7. Style directives only after every node and edge declaration."""
    if graph.style_lines and graph.structure_lines and min(graph.style_lines) < max(graph.structure_lines):
        return ["style directives (style/classDef/linkStyle/class) must come after all nodes and edges"]
    return []


def lint_diagram(dsl: str) -> list[str]:
    """Return a list of human-readable issues found in *dsl*.

    Checks performed, in order:
    1. Diagram type allow-list (and flowchart direction)
    2. Raw markup tags
    3. Unicode arrows
    4. Alphanumeric node identifiers (flowcharts)
    5. Orphan nodes / minimum edge count (flowcharts)
    6. Bracket balance
    7. Style directive placement (flowcharts)
    """
    header, body = _split_header(dsl)
    issues = check_diagram_type(header)
    if issues and not header:
        return issues
    issues += check_markup_tags(dsl)
    issues += check_unicode_arrows(dsl)

    kind = header.split()[0].rstrip(";")
    graph = parse_flowchart(body) if kind in FLOW_TYPES else None
    if graph is not None:
        issues += check_node_identifiers(graph)
        issues += check_connectivity(graph)
    issues += check_bracket_balance(dsl)
    if graph is not None:
        issues += check_style_order(graph)
    return issues


# ---------------------------------------------------------------------------
# Convenience: repair + validate
# ---------------------------------------------------------------------------

def validate_diagram(dsl: str) -> DiagramValidationResult:
    """Repair *dsl*, then validate the repaired text."""
    fixed = repair_diagram(dsl)
    errors = lint_diagram(fixed)
    return DiagramValidationResult(valid=not errors, errors=errors, fixed_text=fixed)


MERMAID_FENCE_RE = re.compile(r"```mermaid[ \t]*\n(.*?)```", re.DOTALL)


def extract_diagrams(markdown: str) -> list[str]:
    """Return the DSL of every fenced mermaid block in *markdown*."""
    return [m.group(1) for m in MERMAID_FENCE_RE.finditer(markdown)]


def repair_diagrams_in_markdown(markdown: str) -> tuple[str, int]:
    """Repair every mermaid block in place; replace unrecoverable ones with a notice.

    Returns ``(fixed_markdown, removed_count)``.
    """
    removed = 0

    def _replace(m: re.Match) -> str:
        nonlocal removed
        result = validate_diagram(m.group(1))
        if result.valid:
            return f"```mermaid\n{result.fixed_text}\n```"
        removed += 1
        return f"> {DIAGRAM_REMOVED_NOTICE}"

    return MERMAID_FENCE_RE.sub(_replace, markdown), removed
