"""Tests for the search client, credibility scoring and date extraction."""

import json

import httpx
import pytest

from mcp_server_company_research.exceptions import SearchProviderError
from mcp_server_company_research.research.models import DatePrecision
from mcp_server_company_research.research.search import (
    CallTracker,
    SearchHit,
    TavilyClient,
    batch_search,
    extract_domain,
    extract_publication_date,
    score_credibility,
)


def make_client(handler) -> TavilyClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TavilyClient(api_key="tvly-test", http_client=http_client)


class TestCredibility:
    """Domain credibility lookups."""

    def test_known_domain(self):
        assert score_credibility("reuters.com") == 0.95

    def test_subdomain_inherits_score(self):
        assert score_credibility("finance.yahoo.com") == 0.75
        assert score_credibility("markets.reuters.com") == 0.95

    def test_government_suffix(self):
        assert score_credibility("census.gov") == 0.9

    def test_unknown_domain_default(self):
        assert score_credibility("some-blog.net") == 0.5

    def test_extract_domain_strips_www(self):
        assert extract_domain("https://www.bloomberg.com/news/x") == "bloomberg.com"
        assert extract_domain("not a url") == ""


class TestPublicationDate:
    """Date extraction picks the most precise form available."""

    def test_provider_date_wins(self):
        assert extract_publication_date("March 2023", provider_date="2024-05-02T10:00:00Z") == ("2024-05-02", DatePrecision.EXACT)

    def test_iso_date_in_text(self):
        assert extract_publication_date("Published 2024-03-15 by staff") == ("2024-03-15", DatePrecision.EXACT)

    def test_month_day_year(self):
        assert extract_publication_date("On Sept. 4, 2024 the company said") == ("2024-09-04", DatePrecision.EXACT)

    def test_month_year(self):
        assert extract_publication_date("Results for March 2024") == ("2024-03-01", DatePrecision.MONTH)

    def test_quarter(self):
        assert extract_publication_date("Q3 2024 earnings call") == ("2024-07-01", DatePrecision.QUARTER)

    def test_bare_year(self):
        assert extract_publication_date("Founded long ago, restructured in 2021") == ("2021-01-01", DatePrecision.YEAR)

    def test_no_date(self):
        assert extract_publication_date("No date here") == (None, DatePrecision.UNKNOWN)

    def test_invalid_calendar_date_falls_through(self):
        """2024-02-31 is not a date, so the bare year is used instead."""
        assert extract_publication_date("filed 2024-02-31") == ("2024-01-01", DatePrecision.YEAR)


class TestSearchHit:
    def test_to_source_reference(self):
        hit = SearchHit(title="Acme beats estimates", url="https://www.reuters.com/acme", content="x" * 600, score=0.8)
        source = hit.to_source_reference()

        assert source.domain == "reuters.com"
        assert source.credibility_score == 0.95
        assert len(source.snippet) == 500
        assert source.relevance_score == 0.8


class TestCallTracker:
    """The call budget is never exceeded."""

    def test_try_acquire_stops_at_limit(self):
        tracker = CallTracker(2)
        assert tracker.try_acquire()
        assert tracker.try_acquire()
        assert not tracker.try_acquire()
        assert tracker.count == 2
        assert tracker.remaining == 0

    def test_zero_budget(self):
        tracker = CallTracker(0)
        assert not tracker.can_make_call()
        assert not tracker.try_acquire()


class TestTavilyClient:
    """HTTP behavior against a mocked transport."""

    @pytest.mark.anyio
    async def test_search_parses_results(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"title": "Acme news", "url": "https://apnews.com/acme", "content": "Acme grew", "score": 0.9},
                        {"title": "no url"},
                    ]
                },
            )

        async with make_client(handler) as client:
            hits = await client.search("acme news", search_depth="advanced", max_results=2)

        assert captured["path"] == "/search"
        assert captured["body"]["api_key"] == "tvly-test"
        assert captured["body"]["search_depth"] == "advanced"
        assert captured["body"]["max_results"] == 2
        assert [hit.url for hit in hits] == ["https://apnews.com/acme"]

    @pytest.mark.anyio
    async def test_error_status_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"detail": "Unauthorized: missing or invalid API key"})

        async with make_client(handler) as client:
            with pytest.raises(SearchProviderError, match="401"):
                await client.search("acme")

    @pytest.mark.anyio
    async def test_extract_splits_failures(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "results": [{"url": "https://acme.com", "raw_content": "<p>Hello</p>"}],
                    "failed_results": [{"url": "https://acme.com/about", "error": "404"}],
                },
            )

        async with make_client(handler) as client:
            response = await client.extract(["https://acme.com", "https://acme.com/about"])

        assert response.results[0].raw_content == "<p>Hello</p>"
        assert response.failed_results == [{"url": "https://acme.com/about", "error": "404"}]

    @pytest.mark.anyio
    async def test_non_object_body_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[1, 2])

        async with make_client(handler) as client:
            with pytest.raises(SearchProviderError, match="expected an object"):
                await client.search("acme")
            with pytest.raises(SearchProviderError, match="expected an object"):
                await client.extract(["https://acme.com"])

    @pytest.mark.anyio
    async def test_malformed_result_fields_parse_leniently(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"url": "https://acme.com/x", "score": "high", "published_date": 20240101},
                        "not an object",
                        {"url": "https://acme.com/y", "score": None},
                    ]
                },
            )

        async with make_client(handler) as client:
            hits = await client.search("acme")

        assert [hit.url for hit in hits] == ["https://acme.com/x", "https://acme.com/y"]
        assert [hit.score for hit in hits] == [0.0, 0.0]
        assert hits[0].published_date is None
        assert hits[0].to_source_reference().relevance_score == 0.0

    @pytest.mark.anyio
    async def test_extract_ignores_non_list_fields(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"results": "oops", "failed_results": [None, {"url": "https://acme.com"}]})

        async with make_client(handler) as client:
            response = await client.extract(["https://acme.com"])

        assert response.results == []
        assert response.failed_results == [{"url": "https://acme.com", "error": ""}]


class TestBatchSearch:
    """Fan-out of a stage's queries."""

    @pytest.mark.anyio
    async def test_failing_query_does_not_fail_batch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["query"] == "bad":
                return httpx.Response(500, text="oops")
            return httpx.Response(200, json={"results": [{"title": "t", "url": "https://a.com/1", "content": "c"}]})

        async with make_client(handler) as client:
            outcomes = await batch_search(client, ["good", "bad"], CallTracker(5))

        assert [o.success for o in outcomes] == [True, False]
        assert "500" in outcomes[1].error

    @pytest.mark.anyio
    async def test_non_object_body_fails_only_its_query(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["query"] == "bad":
                return httpx.Response(200, json=[1, 2])
            return httpx.Response(200, json={"results": [{"url": "https://a.com/1", "score": "high"}]})

        async with make_client(handler) as client:
            outcomes = await batch_search(client, ["good", "bad"], CallTracker(5))

        assert [o.success for o in outcomes] == [True, False]
        assert outcomes[0].hits[0].score == 0.0
        assert "expected an object" in outcomes[1].error

    @pytest.mark.anyio
    async def test_budget_shared_across_queries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"results": []})

        tracker = CallTracker(2)
        async with make_client(handler) as client:
            outcomes = await batch_search(client, ["a", "b", "c"], tracker)

        assert len(calls) == 2
        assert tracker.count == 2
        assert [o.error for o in outcomes if not o.success] == ["Call limit reached"]
