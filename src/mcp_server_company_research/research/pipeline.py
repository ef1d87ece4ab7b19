"""Budget-constrained, multi-stage evidence gathering for one subject."""

import asyncio
import logging
import time
from collections.abc import Callable

from ..exceptions import RequiredStageFailure, SearchProviderError, StageCallLimitExceeded, StageError, StageTimeout
from .models import PipelineMetadata, PipelineResult, SourceReference, StageName, StageResult, Subject
from .search import CallTracker, TavilyClient, batch_search
from .stages import WEBSITE_MAX_PAGES, WEBSITE_TIMEOUT_S, PipelineConfig, StageDefinition
from .website import format_website_content, scrape_website, website_to_sources

logger = logging.getLogger(__name__)

TIME_BUDGET_EXCEEDED = "Time budget exceeded"
CALL_LIMIT_REACHED = "Call limit reached"
STAGE_TIMEOUT = "Stage timeout"


def deduplicate_sources(sources: list[SourceReference]) -> list[SourceReference]:
    """Keep the first source seen for each URL."""
    seen: set[str] = set()
    unique = []
    for source in sources:
        if source.url in seen:
            continue
        seen.add(source.url)
        unique.append(source)
    return unique


class ResearchPipeline:
    """Runs the configured stages strictly in order under time and call budgets.

    Each ``run`` owns a fresh CallTracker, so budgets are never shared across
    subjects. The clock is injectable so budget behavior can be tested
    without sleeping.
    """

    def __init__(self, client: TavilyClient, clock: Callable[[], float] = time.monotonic):
        self.client = client
        self._clock = clock

    def _elapsed_ms(self, since: float) -> int:
        return int((self._clock() - since) * 1000)

    async def run(self, subject: Subject, config: PipelineConfig | None = None) -> PipelineResult:
        """Gather evidence for a subject.

        Raises:
            RequiredStageFailure: If a stage flagged as required does not succeed.
        """
        config = config or PipelineConfig()
        tracker = CallTracker(config.max_calls)
        start = self._clock()
        stage_results: list[StageResult] = []
        all_queries: list[str] = []

        logger.info(f"Starting pipeline for '{subject.name}' (max_calls={config.max_calls}, budget={config.max_total_time_ms}ms)")

        if config.scrape_website and subject.website and config.should_run(StageName.WEBSITE_CONTENT):
            skip_reason = self._budget_exhausted(start, config, tracker)
            if skip_reason:
                stage_results.append(StageResult(stage=StageName.WEBSITE_CONTENT, error=skip_reason))
            else:
                stage_results.append(await self._run_website_stage(subject.website, tracker))

        for definition in config.planned_stages():
            skip_reason = self._budget_exhausted(start, config, tracker)
            if skip_reason:
                logger.warning(f"{skip_reason}, skipping stage: {definition.stage.value}")
                result = StageResult(stage=definition.stage, error=skip_reason)
            else:
                result = await self._run_stage(definition, subject, config, tracker)
                all_queries.extend(result.queries_executed)

            stage_results.append(result)

            if definition.required and not result.success:
                raise RequiredStageFailure(definition.stage.value, result.error)

        metadata = PipelineMetadata(
            calls_used=tracker.count,
            sources_found=sum(len(r.sources) for r in stage_results),
            stages_completed=tuple(r.stage for r in stage_results if r.success),
            stages_failed=tuple(r.stage for r in stage_results if not r.success),
            total_time_ms=self._elapsed_ms(start),
            queries=tuple(all_queries),
        )
        logger.info(
            f"Pipeline finished for '{subject.name}': {metadata.sources_found} sources, "
            f"{metadata.calls_used} calls, {len(metadata.stages_failed)} failed stages"
        )
        return PipelineResult(stage_results=tuple(stage_results), metadata=metadata)

    def _budget_exhausted(self, start: float, config: PipelineConfig, tracker: CallTracker) -> str | None:
        if self._elapsed_ms(start) >= config.max_total_time_ms:
            return TIME_BUDGET_EXCEEDED
        if not tracker.can_make_call():
            return CALL_LIMIT_REACHED
        return None

    async def _run_stage(
        self,
        definition: StageDefinition,
        subject: Subject,
        config: PipelineConfig,
        tracker: CallTracker,
    ) -> StageResult:
        stage_start = self._clock()
        queries = definition.expand_queries(subject, config.angle_themes)
        try:
            return await self._execute_stage(definition, queries, config, tracker, stage_start)
        except StageError as e:
            logger.warning(f"Stage {definition.stage.value} failed: {e}")
            return StageResult(
                stage=definition.stage,
                queries_executed=tuple(queries),
                execution_time_ms=self._elapsed_ms(stage_start),
                error=str(e),
            )

    async def _execute_stage(
        self,
        definition: StageDefinition,
        queries: list[str],
        config: PipelineConfig,
        tracker: CallTracker,
        stage_start: float,
    ) -> StageResult:
        try:
            outcomes = await asyncio.wait_for(
                batch_search(
                    self.client,
                    queries,
                    tracker,
                    search_depth=config.search_depth,
                    max_results=config.results_per_query,
                ),
                timeout=definition.timeout_s,
            )
        except TimeoutError as e:
            raise StageTimeout(STAGE_TIMEOUT) from e

        succeeded = [outcome for outcome in outcomes if outcome.success]
        if not succeeded:
            errors = [outcome.error for outcome in outcomes if outcome.error]
            if errors and all(error == CALL_LIMIT_REACHED for error in errors):
                raise StageCallLimitExceeded(CALL_LIMIT_REACHED)
            raise StageError(errors[0] if errors else "No queries executed")

        sources: list[SourceReference] = []
        content_parts: list[str] = []
        for outcome in succeeded:
            for hit in outcome.hits:
                sources.append(hit.to_source_reference())
                content_parts.append(f"[{hit.title}]: {hit.content}")

        return StageResult(
            stage=definition.stage,
            queries_executed=tuple(outcome.query for outcome in succeeded),
            sources=tuple(deduplicate_sources(sources)),
            raw_content="\n\n".join(content_parts),
            execution_time_ms=self._elapsed_ms(stage_start),
            success=True,
        )

    async def _run_website_stage(self, website: str, tracker: CallTracker) -> StageResult:
        stage_start = self._clock()
        if not tracker.try_acquire():
            return StageResult(stage=StageName.WEBSITE_CONTENT, queries_executed=(website,), error=CALL_LIMIT_REACHED)

        try:
            scrape = await asyncio.wait_for(scrape_website(self.client, website, WEBSITE_MAX_PAGES), timeout=WEBSITE_TIMEOUT_S)
        except TimeoutError:
            error = "Website scrape timeout"
        except SearchProviderError as e:
            error = str(e)
        else:
            success = scrape.pages_scraped > 0
            return StageResult(
                stage=StageName.WEBSITE_CONTENT,
                queries_executed=(website,),
                sources=tuple(website_to_sources(scrape)),
                raw_content=format_website_content(scrape),
                execution_time_ms=self._elapsed_ms(stage_start),
                success=success,
                error=None if success else "No pages could be scraped",
            )

        logger.warning(f"Website scraping failed for {website}: {error}")
        return StageResult(
            stage=StageName.WEBSITE_CONTENT,
            queries_executed=(website,),
            execution_time_ms=self._elapsed_ms(stage_start),
            error=error,
        )


def format_pipeline_for_prompt(result: PipelineResult) -> str:
    """Render gathered evidence as text for the generative provider."""
    metadata = result.metadata
    sections = [f"=== GATHERED RESEARCH DATA ({metadata.sources_found} sources from {len(metadata.stages_completed)} stages) ==="]

    for stage_result in result.stage_results:
        if not stage_result.success or not stage_result.sources:
            continue
        sections.append(f"--- {stage_result.stage.value.replace('_', ' ').upper()} ---")
        for source in stage_result.sources:
            date_info = (
                f"[Date: {source.publication_date} ({source.date_precision.value})]" if source.publication_date else "[Date: unknown]"
            )
            sections.append(
                f"Source: {source.title}\n"
                f"URL: {source.url}\n"
                f"{date_info} [Credibility: {source.credibility_score * 100:.0f}%]\n"
                f"Content: {source.snippet}"
            )

    return "\n\n".join(sections)
