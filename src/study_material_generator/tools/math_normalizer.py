"""Math delimiter normalizer: repairs malformed ``$``/``$$`` math before parsing.

Each rule is a pure ``str -> str`` transform.  Rules only add delimiters or
remove known-corrupt placeholders; formula text itself is never deleted.
Order matters: later rules assume the cleanup done by earlier ones.
"""

from __future__ import annotations

import re
from typing import Callable

_DISPLAY_RE = re.compile(r"\$\$(.*?)\$\$", re.DOTALL)
_ANY_MATH_RE = re.compile(r"\$\$.*?\$\$|(?<!\$)\$(?!\s)[^$\n]+?(?<!\s)\$(?!\$)", re.DOTALL)


def _map_outside(text: str, fn: Callable[[str], str], span_re: re.Pattern = _DISPLAY_RE) -> str:
    """Apply *fn* to the text between math spans, leaving the spans untouched."""
    out: list[str] = []
    pos = 0
    for m in span_re.finditer(text):
        out.append(fn(text[pos:m.start()]))
        out.append(m.group(0))
        pos = m.end()
    out.append(fn(text[pos:]))
    return "".join(out)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

_PLACEHOLDER_RES = (
    re.compile(r"\*\*\s*\d+\$\s*\*\*"),
    re.compile(r"___LATEX_(?:DOUBLE|SINGLE)_\d+___"),
)
_BOLD_COMMAND_RE = re.compile(r"\*\*[ \t]*(\\[A-Za-z]+[^*\n]*?)\$[ \t]*\*\*")


def remove_placeholders(text: str) -> str:
    r"""Drop tokens left by broken upstream substitution.

    ``** 12$ **`` and ``___LATEX_DOUBLE_3___`` are removed; a bolded command
    such as ``** \Delta U = Q - W$ **`` is recovered as ``$$\Delta U = Q - W$$``.
    """
    for pattern in _PLACEHOLDER_RES:
        text = pattern.sub("", text)
    return _BOLD_COMMAND_RE.sub(lambda m: "$$" + m.group(1).replace("$", "").strip() + "$$", text)


_NESTED_IN_DISPLAY_RE = re.compile(r"(?<!\$)\$\$\s*\$(?!\$)([^$]+)(?<!\$)\$\s*\$\$(?!\$)")
_DISPLAY_IN_INLINE_RE = re.compile(r"(?<!\$)\$\s*\$\$(?!\$)([^$]+)(?<!\$)\$\$\s*\$(?!\$)")


def remove_nested_delimiters(text: str) -> str:
    """``$$ $x$ $$`` and ``$ $$x$$ $`` both become ``$$x$$``."""
    text = _NESTED_IN_DISPLAY_RE.sub(lambda m: f"$${m.group(1).strip()}$$", text)
    return _DISPLAY_IN_INLINE_RE.sub(lambda m: f"$${m.group(1).strip()}$$", text)


_STRAY_RE = re.compile(r"(?<!\S)\$(?:[ \t]+|(?=\s)|\Z)")


def remove_stray_dollars(text: str) -> str:
    """Remove a lone ``$`` surrounded by whitespace (outside display math)."""
    return _map_outside(text, lambda chunk: _STRAY_RE.sub("", chunk))


_PAIR_OR_LONE_RE = re.compile(
    r"(?<!\$)\$(?!\s)([^$\n]+?)(?<!\s)\$(?!\$)"
    r"|(?<!\$)\$([^\s$]{1,50}?)([.,;:!?)]*)(?=\s|\Z)"
)


def wrap_unterminated(text: str) -> str:
    """``$dU was`` → ``$$dU$$ was``: a single ``$`` with no closing partner.

    Properly paired ``$x$`` spans are skipped here; the wrapped span is
    bounded to 50 characters.
    """
    def _fix(m: re.Match) -> str:
        if m.group(1) is not None:
            return m.group(0)
        return f"$${m.group(2)}$${m.group(3)}"

    return _map_outside(text, lambda chunk: _PAIR_OR_LONE_RE.sub(_fix, chunk))


_BARE_COMMAND_RE = re.compile(
    r"(?<![\\\w$])(\\[A-Za-z]+(?:\{[^{}\n]*\})*(?:[ \t]*[A-Za-z0-9]+)?"
    r"(?:[ \t]*[=+\-*/^_][ \t]*\\?[A-Za-z0-9{}]+)+)"
)


def _promote(chunk: str) -> str:
    return _BARE_COMMAND_RE.sub(lambda m: f"$${m.group(1).strip()}$$", chunk)


def promote_bare_commands(text: str) -> str:
    r"""Wrap ``\Delta U = Q - W`` style expressions found outside math in ``$$``.

    A command glued to the end of a math span is left alone, the same as one
    glued to a word, so a second pass never wraps what the first one skipped.
    """
    out: list[str] = []
    pos = 0
    for m in _ANY_MATH_RE.finditer(text):
        chunk = text[pos:m.start()]
        # the "$" prefix stands in for the closing delimiter before this chunk
        out.append(_promote("$" + chunk)[1:] if pos else _promote(chunk))
        out.append(m.group(0))
        pos = m.end()
    chunk = text[pos:]
    out.append(_promote("$" + chunk)[1:] if pos else _promote(chunk))
    return "".join(out)


_INLINE_RE = re.compile(r"(?<!\$)\$(?!\s)([^$\n]+?)(?<!\s)\$(?!\$)")


def inline_to_display(text: str) -> str:
    """``$x$`` → ``$$x$$`` without double-wrapping existing ``$$`` spans."""
    return _map_outside(text, lambda chunk: _INLINE_RE.sub(r"$$\1$$", chunk))


def tidy_display_spacing(text: str) -> str:
    """Trim whitespace inside ``$$`` spans, drop empty spans, space them from words."""
    out: list[str] = []
    pos = 0
    for m in _DISPLAY_RE.finditer(text):
        before = text[pos:m.start()]
        pos = m.end()
        inner = m.group(1).strip()
        if not inner:
            out.append(before)
            continue
        if before and before[-1].isalnum():
            before += " "
        out.append(before)
        out.append(f"$${inner}$$")
        if pos < len(text) and text[pos].isalnum():
            out.append(" ")
    out.append(text[pos:])
    return "".join(out)


MATH_RULES: tuple[Callable[[str], str], ...] = (
    remove_placeholders,
    remove_nested_delimiters,
    remove_stray_dollars,
    wrap_unterminated,
    promote_bare_commands,
    inline_to_display,
    tidy_display_spacing,
)


def normalize_math(text: str) -> str:
    """Run every math rule in order."""
    for rule in MATH_RULES:
        text = rule(text)
    return text


# ---------------------------------------------------------------------------
# Lint
# ---------------------------------------------------------------------------

_NESTED_LEFTOVER_RE = re.compile(r"\$\$[^$]*(?<!\$)\$(?!\$)[^$]+(?<!\$)\$(?!\$)[^$]*\$\$")


def lint_math(text: str) -> list[str]:
    """Return issues that normalization could not repair."""
    issues: list[str] = []
    count = text.count("$$")
    if count % 2:
        issues.append(f"unbalanced display math delimiters ({count} occurrences of $$)")
    if _NESTED_LEFTOVER_RE.search(text):
        issues.append("nested math delimiters remain inside a $$ span")
    return issues
