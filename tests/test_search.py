"""Tests for search.py: Brave Search client over a mocked transport."""

from __future__ import annotations

import httpx
import pytest

from study_material_generator.exceptions import ConfigurationError, SearchProviderError
from study_material_generator.models import SearchConfig
from study_material_generator.search import ACADEMIC_DOMAIN_FILTER, BraveSearchProvider, build_query

PAYLOAD = {
    "web": {
        "results": [
            {
                "title": "First law of <strong>thermodynamics</strong>",
                "description": "Energy <strong>conservation</strong> for closed systems.",
                "url": "https://ocw.mit.edu/thermo",
            },
            {
                "title": "Fluid properties",
                "description": "",
                "extra_snippets": ["NIST data", "tables"],
                "url": "https://webbook.nist.gov",
            },
        ]
    }
}


def _provider(handler) -> BraveSearchProvider:
    return BraveSearchProvider(SearchConfig(api_key="token"), transport=httpx.MockTransport(handler))


class TestBuildQuery:
    def test_with_filter(self):
        assert build_query("entropy", "site:.edu") == "entropy (site:.edu)"

    def test_without_filter(self):
        assert build_query("entropy", "") == "entropy"


class TestBraveSearchProvider:
    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            BraveSearchProvider(SearchConfig(api_key=""))

    def test_parses_results(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=PAYLOAD)

        snippets = _provider(handler).search("first law", ACADEMIC_DOMAIN_FILTER, 5)

        assert len(snippets) == 2
        assert snippets[0].title == "First law of thermodynamics"
        assert snippets[0].description == "Energy conservation for closed systems."
        assert snippets[0].rank == 1
        assert snippets[1].description == "NIST data tables"
        assert snippets[1].rank == 2

        request = seen[0]
        assert request.headers["X-Subscription-Token"] == "token"
        assert request.url.params["q"] == f"first law ({ACADEMIC_DOMAIN_FILTER})"
        assert request.url.params["count"] == "5"
        assert request.url.params["safesearch"] == "strict"

    def test_max_results_truncates(self):
        snippets = _provider(lambda r: httpx.Response(200, json=PAYLOAD)).search("q", "", 1)
        assert len(snippets) == 1

    def test_missing_web_section(self):
        assert _provider(lambda r: httpx.Response(200, json={})).search("q", "", 5) == []

    def test_http_error_status(self):
        with pytest.raises(SearchProviderError) as excinfo:
            _provider(lambda r: httpx.Response(429, json={"error": "rate"})).search("q", "", 5)
        assert "HTTP 429" in excinfo.value.message

    def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(SearchProviderError):
            _provider(handler).search("q", "", 5)

    def test_invalid_json(self):
        with pytest.raises(SearchProviderError):
            _provider(lambda r: httpx.Response(200, text="<html>")).search("q", "", 5)

    @pytest.mark.parametrize("payload", [
        {"web": "x"},
        {"web": {"results": [None]}},
        {"web": {"results": 5}},
        ["not", "an", "object"],
    ])
    def test_unexpected_payload_shape(self, payload):
        with pytest.raises(SearchProviderError) as excinfo:
            _provider(lambda r: httpx.Response(200, json=payload)).search("q", "", 5)
        assert "unexpected search response" in excinfo.value.message
