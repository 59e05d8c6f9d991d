"""Reference quality validator: scores citation lists by source trustworthiness.

A soft gate: a few low-trust sources are tolerated, but reference lists
dominated by consumer sites are rejected so the draft is regenerated.
"""

from __future__ import annotations

import logging
import re

from ..models import ReferenceValidationResult

logger = logging.getLogger(__name__)

MAX_BANNED = 5
MIN_REFERENCES = 5
MIN_SECTION_CHARS = 50

BANNED_DOMAINS = (
    "brasilescola.uol.com.br",
    "mundoeducacao.uol.com.br",
    "todamateria.com.br",
    "wikipedia.org",
    "infoescola.com",
    "soescola.com",
    "escolakids.uol.com.br",
    "educacao.uol.com.br",
    "uol.com.br/educacao",
    "blogspot.com",
    "wordpress.com",
    "youtube.com",
    "youtu.be",
    "facebook.com",
    "instagram.com",
    "quora.com",
    "answers.yahoo.com",
    "brainly.com.br",
    "passeiweb.com",
    "coladaweb.com",
    "suapesquisa.com",
)

ACADEMIC_DOMAINS = (
    ".edu",
    ".ac.uk",
    ".ac.br",
    ".gov",
    "scielo.org",
    "scielo.br",
    "journals.",
    "journal.",
    "pubmed",
    "ncbi.nlm.nih.gov",
    "springer.com",
    "springerlink.com",
    "elsevier.com",
    "sciencedirect.com",
    "wiley.com",
    "nature.com",
    "science.org",
    "researchgate.net",
    "academia.edu",
    "ieee.org",
    "acm.org",
    "doi.org",
    "iso.org",
    "nist.gov",
    "arxiv.org",
)

REFERENCES_HEADING_RE = re.compile(
    r"^(#{1,4})[ \t]*(?:\d+\.?[ \t]*)?(?:\*\*)?[ \t]*(?:Fontes e |Sources and )?"
    r"(?:Refer[eê]ncias|References|Bibliograf[ií]a|Bibliography)\b.*$",
    re.IGNORECASE | re.MULTILINE,
)
_ANY_HEADING_RE = re.compile(r"^(#{1,6})\s", re.MULTILINE)
REFERENCE_ENTRY_RE = re.compile(r"^[ \t]*(?:\[\d+\]|\d+\.)[ \t]+\S.*$", re.MULTILINE)


def is_references_heading(line: str) -> bool:
    return REFERENCES_HEADING_RE.match(line.strip()) is not None


def extract_references_section(text: str) -> str:
    """Return the body of the references section, or ``""`` if there is none.

    The section ends at the next heading of the same or a higher level.
    """
    m = REFERENCES_HEADING_RE.search(text)
    if m is None:
        return ""
    level = len(m.group(1))
    body = text[m.end():]
    for h in _ANY_HEADING_RE.finditer(body):
        if len(h.group(1)) <= level:
            return body[:h.start()].strip()
    return body.strip()


def extract_reference_entries(section: str) -> list[str]:
    return [line.strip() for line in REFERENCE_ENTRY_RE.findall(section)]


def classify_reference(entry: str) -> str:
    """Return ``"banned"``, ``"academic"`` or ``"other"``. Banned wins."""
    lower = entry.lower()
    if any(domain in lower for domain in BANNED_DOMAINS):
        return "banned"
    if any(domain in lower for domain in ACADEMIC_DOMAINS):
        return "academic"
    return "other"


def validate_references(
    text: str,
    *,
    max_banned: int = MAX_BANNED,
    min_references: int = MIN_REFERENCES,
    min_section_chars: int = MIN_SECTION_CHARS,
) -> ReferenceValidationResult:
    """Score the references section of *text*.

    Valid iff the section exists, holds at least *min_references* numbered
    entries, and at most *max_banned* of them come from the deny-list.
    """
    section = extract_references_section(text)
    if len(section) < min_section_chars:
        logger.debug("[references] section missing or shorter than %d chars", min_section_chars)
        return ReferenceValidationResult(valid=False, errors=["no references section"])

    entries = extract_reference_entries(section)
    errors: list[str] = []
    if len(entries) < min_references:
        errors.append(f"too few references: {len(entries)} (minimum {min_references})")

    academic = banned = 0
    for idx, entry in enumerate(entries, start=1):
        kind = classify_reference(entry)
        if kind == "banned":
            banned += 1
            errors.append(f"reference [{idx}] is from a banned source: {entry[:80]}")
        elif kind == "academic":
            academic += 1

    if banned > max_banned:
        errors.append(f"REJECTED: {banned} banned sources (max {max_banned})")

    percentage = academic / len(entries) * 100 if entries else 0.0
    valid = len(entries) >= min_references and banned <= max_banned
    logger.info(
        "[references] %d/%d academic (%.0f%%), %d banned (max %d) -> %s",
        academic, len(entries), percentage, banned, max_banned, "ok" if valid else "invalid",
    )
    return ReferenceValidationResult(
        valid=valid,
        errors=errors,
        total_count=len(entries),
        academic_count=academic,
        banned_count=banned,
        academic_percentage=percentage,
    )
