"""Web search provider: academic-filtered evidence retrieval via Brave Search."""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

import httpx

from .exceptions import ConfigurationError, SearchProviderError
from .models import EvidenceSnippet, SearchConfig

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"

ACADEMIC_DOMAIN_FILTER = (
    "site:.edu OR site:.gov OR site:scielo.org OR site:ieeexplore.ieee.org "
    "OR site:springer.com OR site:.ac.uk"
)


class SearchProvider(Protocol):
    def search(self, query: str, domain_filter: str, max_results: int) -> list[EvidenceSnippet]: ...


def build_query(query: str, domain_filter: str) -> str:
    """Append the domain filter as a parenthesised ``site:`` clause."""
    return f"{query} ({domain_filter})" if domain_filter else query


_HIGHLIGHT_RE = re.compile(r"</?strong>")


def _parse_results(payload: Any, max_results: int) -> list[EvidenceSnippet]:
    raw_results = (payload.get("web") or {}).get("results", []) or []
    snippets: list[EvidenceSnippet] = []
    for idx, item in enumerate(raw_results[:max_results], start=1):
        description = item.get("description", "") or " ".join(item.get("extra_snippets", []) or [])
        snippets.append(EvidenceSnippet(
            title=_HIGHLIGHT_RE.sub("", item.get("title", "") or ""),
            description=_HIGHLIGHT_RE.sub("", description).strip(),
            url=item.get("url", "") or "",
            rank=idx,
        ))
    return snippets


class BraveSearchProvider:
    """Synchronous Brave Web Search client.

    Transport, HTTP status and decoding failures are raised as
    ``SearchProviderError`` so the pipeline can skip a single sub-question.
    """

    def __init__(self, settings: SearchConfig, *, transport: httpx.BaseTransport | None = None) -> None:
        if not settings.api_key:
            raise ConfigurationError("search.api_key (BRAVE_SEARCH_API_KEY) is not configured")
        self.settings = settings
        self._transport = transport

    def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        with httpx.Client(timeout=self.settings.timeout, transport=self._transport) as client:
            response = client.get(
                self.settings.endpoint or BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": self.settings.api_key,
                },
            )
            response.raise_for_status()
            return response.json()

    def search(self, query: str, domain_filter: str, max_results: int) -> list[EvidenceSnippet]:
        params: dict[str, Any] = {
            "q": build_query(query, domain_filter),
            "count": max_results,
            "safesearch": "strict",
        }
        try:
            payload = self._get(params)
        except httpx.HTTPStatusError as exc:
            raise SearchProviderError(
                f"search returned HTTP {exc.response.status_code} for {query!r}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise SearchProviderError(f"search failed for {query!r}: {exc}") from exc

        try:
            snippets = _parse_results(payload, max_results)
        except (AttributeError, TypeError, ValueError) as exc:
            raise SearchProviderError(f"unexpected search response for {query!r}: {exc}") from exc
        logger.debug("[search] %d result(s) for %r", len(snippets), query)
        return snippets
