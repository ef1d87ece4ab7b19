"""Tests for the staged research pipeline."""

import asyncio
import json

import httpx
import pytest

from mcp_server_company_research.exceptions import RequiredStageFailure, SearchProviderError
from mcp_server_company_research.research.models import StageName, Subject
from mcp_server_company_research.research.pipeline import (
    CALL_LIMIT_REACHED,
    STAGE_TIMEOUT,
    TIME_BUDGET_EXCEEDED,
    ResearchPipeline,
    deduplicate_sources,
    format_pipeline_for_prompt,
)
from mcp_server_company_research.research.search import ExtractedPage, ExtractResponse, SearchHit, TavilyClient
from mcp_server_company_research.research.stages import DEFAULT_STAGES, PipelineConfig, StageDefinition
from mcp_server_company_research.research.website import extract_title, html_to_text, normalize_url

from conftest import make_source

ACME = Subject(name="Acme Foods", industry="food manufacturing")

ALL_STAGES = (
    StageName.COMPANY_BASICS,
    StageName.RECENT_SIGNALS,
    StageName.FINANCIAL_ACTIVITY,
    StageName.TECHNOLOGY_SIGNALS,
    StageName.COMPETITIVE_CONTEXT,
)


def single_query_stages(required: StageName | None = None, timeout_s: float = 5.0) -> tuple[StageDefinition, ...]:
    return tuple(
        StageDefinition(
            stage=stage,
            query_templates=(f"{{company}} {stage.value}",),
            max_queries=1,
            timeout_s=timeout_s,
            required=stage == required,
        )
        for stage in ALL_STAGES
    )


class FakeSearchClient:
    """Search client double that records queries and answers from a callback."""

    def __init__(self, answer=None, delay: float = 0.0, pages: list[ExtractedPage] | None = None):
        self.queries: list[str] = []
        self.extracted: list[list[str]] = []
        self._answer = answer
        self._delay = delay
        self._pages = pages or []

    async def search(self, query: str, search_depth: str = "basic", max_results: int = 5) -> list[SearchHit]:
        self.queries.append(query)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._answer is not None:
            return self._answer(query)
        slug = query.replace(" ", "-")
        return [SearchHit(title=query, url=f"https://news.example.com/{slug}", content=f"{query} content")]

    async def extract(self, urls: list[str]) -> ExtractResponse:
        self.extracted.append(urls)
        return ExtractResponse(results=self._pages)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestCallBudget:
    """The call budget caps the whole pipeline."""

    @pytest.mark.anyio
    async def test_single_call_budget_runs_only_first_stage(self):
        """With one call and five optional stages, only the first stage executes."""
        client = FakeSearchClient()
        config = PipelineConfig(max_calls=1, scrape_website=False, stages=single_query_stages())

        result = await ResearchPipeline(client).run(ACME, config)

        assert len(client.queries) == 1
        assert result.metadata.calls_used == 1
        assert result.stage_results[0].success
        for stage_result in result.stage_results[1:]:
            assert not stage_result.success
            assert stage_result.error == CALL_LIMIT_REACHED
        assert result.metadata.stages_completed == (StageName.COMPANY_BASICS,)
        assert len(result.metadata.stages_failed) == 4

    @pytest.mark.anyio
    async def test_budget_exhausted_mid_stage(self):
        """A stage with more queries than remaining calls succeeds with what it could run."""
        client = FakeSearchClient()
        config = PipelineConfig(max_calls=1, scrape_website=False, stages=DEFAULT_STAGES[:1])

        result = await ResearchPipeline(client).run(ACME, config)

        basics = result.get_stage(StageName.COMPANY_BASICS)
        assert basics.success
        assert len(basics.queries_executed) == 1
        assert result.metadata.calls_used == 1

    @pytest.mark.anyio
    async def test_failed_calls_still_count(self):
        def failing(query):
            raise SearchProviderError("upstream down")

        client = FakeSearchClient(answer=failing)
        config = PipelineConfig(max_calls=3, scrape_website=False, stages=single_query_stages())

        result = await ResearchPipeline(client).run(ACME, config)

        assert result.metadata.calls_used == 3
        assert [r.error for r in result.stage_results] == ["upstream down"] * 3 + [CALL_LIMIT_REACHED] * 2


class TestRequiredStages:
    """Required stage failures escalate, optional ones never do."""

    @pytest.mark.anyio
    async def test_required_stage_failure_raises(self):
        def failing(query):
            raise SearchProviderError("Tavily API error (401): Unauthorized")

        client = FakeSearchClient(answer=failing)
        config = PipelineConfig(scrape_website=False, stages=single_query_stages(required=StageName.COMPANY_BASICS))

        with pytest.raises(RequiredStageFailure) as exc_info:
            await ResearchPipeline(client).run(ACME, config)

        assert exc_info.value.stage == "company_basics"
        assert len(client.queries) == 1

    @pytest.mark.anyio
    async def test_optional_stage_failure_is_recorded(self):
        def answer(query):
            if "financial_activity" in query:
                raise SearchProviderError("boom")
            return [SearchHit(title=query, url=f"https://x.com/{len(query)}-{query[-3:]}", content="ok")]

        client = FakeSearchClient(answer=answer)
        config = PipelineConfig(scrape_website=False, stages=single_query_stages(required=StageName.COMPANY_BASICS))

        result = await ResearchPipeline(client).run(ACME, config)

        assert result.metadata.stages_failed == (StageName.FINANCIAL_ACTIVITY,)
        assert len(result.metadata.stages_completed) == 4

    @pytest.mark.anyio
    async def test_required_stage_skipped_by_budget_raises(self):
        client = FakeSearchClient()
        config = PipelineConfig(max_calls=0, scrape_website=False, stages=single_query_stages(required=StageName.COMPANY_BASICS))

        with pytest.raises(RequiredStageFailure, match=CALL_LIMIT_REACHED):
            await ResearchPipeline(client).run(ACME, config)


class TestTimeBudgets:
    """Stage timeouts and the total time budget."""

    @pytest.mark.anyio
    async def test_stage_timeout_recorded(self):
        client = FakeSearchClient(delay=1.0)
        stages = single_query_stages(timeout_s=0.05)[:2]
        config = PipelineConfig(scrape_website=False, stages=stages)

        result = await ResearchPipeline(client).run(ACME, config)

        assert all(r.error == STAGE_TIMEOUT for r in result.stage_results)
        assert result.metadata.calls_used == 2

    @pytest.mark.anyio
    async def test_total_time_budget_skips_remaining_stages(self):
        clock = FakeClock()

        def slow(query):
            clock.now += 20.0
            return [SearchHit(title=query, url=f"https://x.com/{query.replace(' ', '-')}", content="c")]

        client = FakeSearchClient(answer=slow)
        config = PipelineConfig(max_total_time_ms=28_000, scrape_website=False, stages=single_query_stages())

        result = await ResearchPipeline(client, clock=clock).run(ACME, config)

        assert [r.success for r in result.stage_results] == [True, True, False, False, False]
        assert result.stage_results[2].error == TIME_BUDGET_EXCEEDED
        assert result.metadata.calls_used == 2


class TestStagePlanning:
    """Depth presets, angles and stage selection."""

    def test_quick_depth_runs_subset(self):
        config = PipelineConfig.for_depth("quick")
        assert [d.stage for d in config.planned_stages()] == [StageName.COMPANY_BASICS, StageName.RECENT_SIGNALS]

    def test_unknown_depth(self):
        with pytest.raises(ValueError, match="Unknown research depth"):
            PipelineConfig.for_depth("extreme")

    def test_widened_budget_is_capped(self):
        deep = PipelineConfig.for_depth("deep").widened_for_all_angles()
        assert deep.max_calls == 20
        assert deep.max_total_time_ms == 60_000

        standard = PipelineConfig.for_depth("standard").widened_for_all_angles()
        assert standard.max_calls == 15
        assert standard.max_total_time_ms == 42_000

    def test_angle_adds_one_composite_query(self):
        recent = DEFAULT_STAGES[1]
        themes = ("pricing strategy", "margin pressure", "profit decline", "cost increases")

        base = recent.expand_queries(ACME)
        with_angle = recent.expand_queries(ACME, themes)

        assert with_angle[: len(base)] == base
        assert with_angle[-1] == "Acme Foods pricing strategy margin pressure profit decline"

    def test_angle_ignored_for_non_aware_stage(self):
        basics = DEFAULT_STAGES[0]
        assert basics.expand_queries(ACME, ("pricing",)) == basics.expand_queries(ACME)

    def test_empty_industry_collapses_whitespace(self):
        queries = DEFAULT_STAGES[0].expand_queries(Subject(name="Acme"))
        assert queries[1] == "Acme business model company profile"


class TestWebsiteStage:
    """The website stage runs first and uses one call."""

    @pytest.mark.anyio
    async def test_website_stage_consumes_one_call(self):
        page = ExtractedPage(url="https://acme.com", raw_content="<title>Acme</title>" + "<p>We make food.</p>" * 20)
        client = FakeSearchClient(pages=[page])
        config = PipelineConfig(max_calls=2, stages=single_query_stages())

        result = await ResearchPipeline(client).run(Subject(name="Acme", website="acme.com"), config)

        website = result.stage_results[0]
        assert website.stage == StageName.WEBSITE_CONTENT
        assert website.success
        assert website.sources[0].credibility_score == 0.9
        assert client.extracted[0][0] == "https://acme.com"
        assert result.metadata.calls_used == 2
        assert len(client.queries) == 1

    @pytest.mark.anyio
    async def test_no_pages_is_failure(self):
        client = FakeSearchClient(pages=[])
        config = PipelineConfig(stages=single_query_stages()[:1])

        result = await ResearchPipeline(client).run(Subject(name="Acme", website="https://acme.com/"), config)

        assert not result.stage_results[0].success
        assert result.stage_results[0].error == "No pages could be scraped"

    @pytest.mark.anyio
    async def test_skipped_without_website(self):
        client = FakeSearchClient()
        config = PipelineConfig(stages=single_query_stages()[:1])

        result = await ResearchPipeline(client).run(ACME, config)

        assert result.get_stage(StageName.WEBSITE_CONTENT) is None
        assert client.extracted == []


class TestSources:
    def test_deduplicate_keeps_first(self):
        first = make_source("https://a.com/1", credibility=0.9)
        duplicate = make_source("https://a.com/1", credibility=0.1)
        other = make_source("https://b.com/2")

        assert deduplicate_sources([first, duplicate, other]) == [first, other]

    @pytest.mark.anyio
    async def test_duplicate_urls_within_stage_removed(self):
        def same_url(query):
            return [SearchHit(title=query, url="https://same.com/story", content="c")]

        client = FakeSearchClient(answer=same_url)
        config = PipelineConfig(scrape_website=False, stages=DEFAULT_STAGES[:1])

        result = await ResearchPipeline(client).run(ACME, config)

        assert len(result.stage_results[0].sources) == 1

    @pytest.mark.anyio
    async def test_prompt_rendering_lists_successful_sources(self):
        client = FakeSearchClient()
        config = PipelineConfig(scrape_website=False, stages=single_query_stages()[:2])

        result = await ResearchPipeline(client).run(ACME, config)
        text = format_pipeline_for_prompt(result)

        assert "COMPANY BASICS" in text
        assert "RECENT SIGNALS" in text
        assert "[Date: unknown]" in text


class TestPageText:
    def test_html_to_text_drops_scripts(self):
        raw = "<html><head><title>Acme</title><style>p {}</style></head><body><script>track()</script><p>Snacks &amp; more</p>\n<p>since 1990</p></body></html>"
        assert html_to_text(raw) == "Snacks & more since 1990"

    def test_plain_text_passes_through(self):
        assert html_to_text("Already   plain text") == "Already plain text"

    def test_title_falls_back_to_og_title(self):
        assert extract_title("<title> Acme Foods </title>") == "Acme Foods"
        assert extract_title('<meta property="og:title" content="Acme OG">') == "Acme OG"
        assert extract_title("<p>none</p>") == ""

    def test_normalize_url(self):
        assert normalize_url(" acme.com/ ") == "https://acme.com"
        assert normalize_url("http://acme.com") == "http://acme.com"


def provider_client(handler) -> TavilyClient:
    return TavilyClient(api_key="tvly-test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestMalformedProviderResponses:
    """Odd provider payloads degrade a stage instead of crashing the run."""

    @pytest.mark.anyio
    async def test_non_numeric_score_keeps_stage_successful(self):
        def handler(request: httpx.Request) -> httpx.Response:
            query = json.loads(request.content)["query"]
            if query.endswith("news"):
                return httpx.Response(200, json={"results": [{"url": "https://a.com/x", "score": "high"}]})
            return httpx.Response(200, json={"results": [{"url": "https://b.com/y", "content": "Acme", "score": 0.7}]})

        stages = (
            StageDefinition(
                stage=StageName.COMPANY_BASICS,
                query_templates=("{company} overview", "{company} news"),
                max_queries=2,
                timeout_s=5.0,
            ),
        )
        config = PipelineConfig(max_calls=5, scrape_website=False, stages=stages)

        async with provider_client(handler) as client:
            result = await ResearchPipeline(client).run(ACME, config)

        basics = result.get_stage(StageName.COMPANY_BASICS)
        assert basics.success
        assert sorted(source.relevance_score for source in basics.sources) == [0.0, 0.7]

    @pytest.mark.anyio
    async def test_non_object_body_fails_optional_stage(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[1, 2])

        config = PipelineConfig(max_calls=5, scrape_website=False, stages=single_query_stages()[:1])

        async with provider_client(handler) as client:
            result = await ResearchPipeline(client).run(ACME, config)

        basics = result.get_stage(StageName.COMPANY_BASICS)
        assert not basics.success
        assert "expected an object" in basics.error
        assert result.metadata.stages_failed == (StageName.COMPANY_BASICS,)
