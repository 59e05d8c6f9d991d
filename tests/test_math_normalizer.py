"""Tests for tools/math_normalizer.py."""

from __future__ import annotations

import pytest

from study_material_generator.tools.math_normalizer import (
    inline_to_display,
    lint_math,
    normalize_math,
    promote_bare_commands,
    remove_nested_delimiters,
    remove_placeholders,
    remove_stray_dollars,
    tidy_display_spacing,
    wrap_unterminated,
)


class TestRules:
    def test_placeholders_removed(self):
        assert remove_placeholders("Energy ** 12$ ** balance") == "Energy  balance"
        assert remove_placeholders("A ___LATEX_DOUBLE_3___ B") == "A  B"

    def test_bold_command_recovered(self):
        assert remove_placeholders(r"Law: ** \Delta U = Q - W$ **") == r"Law: $$\Delta U = Q - W$$"

    def test_nested_in_display(self):
        assert remove_nested_delimiters("$$ $x^2$ $$") == "$$x^2$$"

    def test_display_in_inline(self):
        assert remove_nested_delimiters("$ $$y$$ $") == "$$y$$"

    def test_stray_dollar(self):
        assert remove_stray_dollars("costs $ 5 today") == "costs 5 today"

    def test_stray_dollar_inside_display_untouched(self):
        assert remove_stray_dollars("$$a $ b$$") == "$$a $ b$$"

    def test_unterminated_wrapped(self):
        assert wrap_unterminated("the change $dU was positive") == "the change $$dU$$ was positive"

    def test_unterminated_keeps_trailing_punctuation(self):
        assert wrap_unterminated("equals $T.") == "equals $$T$$."

    def test_pairs_left_for_inline_rule(self):
        assert wrap_unterminated("$x$ and $y$") == "$x$ and $y$"

    def test_bare_command_promoted(self):
        assert promote_bare_commands(r"where \frac{a}{b} = c holds") == r"where $$\frac{a}{b} = c$$ holds"

    def test_bare_command_inside_math_untouched(self):
        assert promote_bare_commands(r"$\Delta U = Q - W$") == r"$\Delta U = Q - W$"

    def test_command_glued_to_math_span_untouched(self):
        text = r"$$\Delta U = Q - W$$\Delta H = U + PV here"
        assert promote_bare_commands(text) == text

    def test_inline_to_display(self):
        assert inline_to_display("so $a+b$ holds") == "so $$a+b$$ holds"

    def test_inline_to_display_no_double_wrap(self):
        assert inline_to_display("$$a+b$$") == "$$a+b$$"

    def test_tidy_spacing(self):
        assert tidy_display_spacing("$$ x $$") == "$$x$$"
        assert tidy_display_spacing("a$$x$$b") == "a $$x$$ b"

    def test_tidy_drops_empty_span(self):
        assert tidy_display_spacing("before $$  $$ after") == "before  after"


class TestNormalizeMath:
    def test_inline_becomes_display(self):
        text = r"The balance $\Delta U = Q - W$ holds."
        assert normalize_math(text) == r"The balance $$\Delta U = Q - W$$ holds."

    def test_bare_expression(self):
        text = r"where \Delta U = Q - W in joules"
        assert normalize_math(text) == r"where $$\Delta U = Q - W$$ in joules"

    def test_plain_text_unchanged(self):
        text = "No math here, just [1] references and 300 J of work."
        assert normalize_math(text) == text

    @pytest.mark.parametrize("text", [
        r"The balance $\Delta U = Q - W$ holds.",
        "Energy $E was conserved",
        r"where \Delta U = Q - W in joules",
        "$$ $x^2$ $$ and ** 3$ ** done",
        "a$$x$$b and $$  $$ end",
        r"Balance: \Delta U = Q - W\Delta H = U + PV here",
        r"$x$\Delta H = U + PV and \frac{a}{b} = c",
    ])
    def test_stable(self, text):
        once = normalize_math(text)
        assert normalize_math(once) == once

    def test_formula_text_preserved(self, sample_draft_md):
        normalized = normalize_math(sample_draft_md)
        assert r"$$\Delta U = Q - W$$" in normalized
        assert "https://ocw.mit.edu/courses/thermodynamics" in normalized


class TestLintMath:
    def test_clean(self):
        assert lint_math("$$a$$ and $$b$$") == []

    def test_unbalanced(self):
        issues = lint_math("$$a$$ and $$b")
        assert issues == ["unbalanced display math delimiters (3 occurrences of $$)"]

    def test_nested_leftover(self):
        issues = lint_math("$$ a $b$ c $$")
        assert "nested math delimiters remain inside a $$ span" in issues
