"""QuestionDecomposer: splits a topic into research sub-questions."""

from __future__ import annotations

import json
import logging
import re

from ..models import SubQuestions

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a research planner for engineering and science study material.

Split the user's topic into exactly {count} focused research questions that,
answered together, cover the fundamentals, the governing equations, a worked
application, and the current state of practice.

Return ONLY JSON in this form, no commentary:
{{"questions": ["...", "...", "...", "..."]}}
"""


def build_system_prompt(count: int) -> str:
    return SYSTEM_PROMPT.format(count=count)


def build_user_prompt(topic: str, tags: list[str], language: str) -> str:
    prompt = f"Topic: {topic}\nWrite the questions in {language}."
    if tags:
        prompt += f"\nContext tags: {', '.join(tags)}"
    return prompt


def _strip_fences(raw: str) -> str:
    """Remove markdown fences."""
    return re.sub(r"```(?:json)?|```", "", raw).strip()


def _attempt_repair(raw: str) -> str | None:
    """Lightweight repair for common LLM JSON mistakes."""
    txt = raw.strip()
    if not txt:
        return None
    if "{" in txt and "}" in txt:
        txt = txt[txt.find("{"):txt.rfind("}") + 1]
    txt = txt.replace("“", '"').replace("”", '"')
    txt = re.sub(r",\s*([}\]])", r"\1", txt)
    return txt


def parse_questions(raw: str, *, limit: int = 4) -> list[str] | None:
    """2-stage parser for decomposer output.

    Stage 1: direct parse of ``{"questions": [...]}`` or a bare JSON array.
    Stage 2: repair (smart quotes, trailing commas) then parse.

    Returns ``None`` when nothing usable is found; the caller falls back to
    the topic itself.
    """
    stripped = _strip_fences(raw)

    if "{" in stripped and "}" in stripped:
        segment = stripped[stripped.find("{"):stripped.rfind("}") + 1]
        try:
            parsed = SubQuestions.model_validate_json(segment)
            return _clean(parsed.questions, limit)
        except ValueError:
            pass
    elif stripped.startswith("["):
        try:
            items = json.loads(stripped[:stripped.rfind("]") + 1])
            if isinstance(items, list):
                return _clean([str(q) for q in items], limit)
        except ValueError:
            pass

    repaired = _attempt_repair(stripped)
    if repaired:
        try:
            return _clean(SubQuestions.model_validate_json(repaired).questions, limit)
        except ValueError:
            pass

    logger.warning("[decompose] could not parse sub-questions from response (%d chars)", len(raw))
    return None


def _clean(questions: list[str], limit: int) -> list[str] | None:
    cleaned = [q.strip() for q in questions if q and q.strip()]
    return cleaned[:limit] or None
