"""Full research cycle for one subject: pipeline, extraction, matching, confidence."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ..config import AppSettings
from ..exceptions import ConfigurationError
from ..knowledge.catalog import Catalog, get_catalog
from ..knowledge.matching import combined_matching, match_all_categories, sources_to_evidence
from ..knowledge.models import HypothesisWithEvidence
from ..scoring.confidence import ConfidenceBreakdown, generate_gaps, score_confidence
from .extraction import SignalExtractor
from .models import PipelineResult, Subject
from .normalize import NOT_SPECIFIED, ExtractedResearch
from .pipeline import ResearchPipeline
from .search import TavilyClient
from .stages import PipelineConfig

if TYPE_CHECKING:
    from browser_use.llm.base import BaseChatModel

logger = logging.getLogger(__name__)


@dataclass
class SubjectResearchResult:
    """Everything one subject-cycle produced."""

    subject: Subject
    depth: str
    angle: str | None
    research: ExtractedResearch
    pipeline: PipelineResult
    hypotheses: list[HypothesisWithEvidence]
    confidence: ConfidenceBreakdown
    gaps: list[str]
    cost: float
    execution_time_ms: int
    generated_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_payload(self) -> dict[str, Any]:
        """Serializable payload used for CLI output, saved files and CRM write-back."""
        research = self.research.to_dict()
        gaps = list(dict.fromkeys([*self.gaps, *self.research.research_gaps]))
        return {
            "company": {
                "id": self.subject.id,
                "name": self.subject.name,
                "industry": self.subject.industry,
                "website": self.subject.website,
            },
            "depth": self.depth,
            "angle": self.angle,
            "company_profile": research["company_profile"],
            "recent_signals": research["recent_signals"],
            "persona_angles": research["persona_angles"],
            "outreach_priority": research["outreach_priority"],
            "pain_point_hypotheses": [h.to_dict() for h in self.hypotheses],
            "confidence": self.confidence.to_dict(),
            "research_gaps": gaps,
            "sources": [s.to_dict() for s in self.pipeline.all_sources()],
            "pipeline": {
                **self.pipeline.metadata.to_dict(),
                "stages": [r.to_dict() for r in self.pipeline.stage_results],
            },
            "cost": round(self.cost, 4),
            "execution_time_ms": self.execution_time_ms,
            "generated_at": self.generated_at,
        }


class SubjectResearcher:
    """Runs complete research cycles against one search client and one model.

    A researcher holds no per-subject state: each ``research`` call owns its
    own pipeline budget.
    """

    def __init__(
        self,
        search_client: TavilyClient,
        llm: "BaseChatModel",
        catalog: Catalog | None = None,
        cost_per_call: float = 0.01,
        input_per_1k_tokens: float = 0.0,
        output_per_1k_tokens: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.search_client = search_client
        self.catalog = catalog or get_catalog()
        self.pipeline = ResearchPipeline(search_client, clock=clock)
        self.extractor = SignalExtractor(llm)
        self.cost_per_call = cost_per_call
        self.input_per_1k_tokens = input_per_1k_tokens
        self.output_per_1k_tokens = output_per_1k_tokens
        self._clock = clock

    @classmethod
    def from_settings(cls, app_settings: AppSettings, catalog: Catalog | None = None) -> "SubjectResearcher":
        """Build a researcher from settings, failing fast on missing credentials.

        Raises:
            ConfigurationError: If the search or LLM API key is missing.
        """
        from ..providers import get_llm_from_settings

        search_key = app_settings.search.get_api_key()
        if not search_key:
            raise ConfigurationError("Search API key not configured. Set TAVILY_API_KEY or MCP_SEARCH_API_KEY.")

        llm_settings = app_settings.llm
        if llm_settings.requires_api_key() and not llm_settings.get_api_key_for_provider():
            raise ConfigurationError(
                f"API key required for provider '{llm_settings.provider}'. Set MCP_LLM_API_KEY or the provider's standard variable."
            )

        client = TavilyClient(
            api_key=search_key,
            base_url=app_settings.search.base_url,
            timeout=app_settings.search.request_timeout,
        )
        return cls(
            search_client=client,
            llm=get_llm_from_settings(llm_settings),
            catalog=catalog,
            cost_per_call=app_settings.search.cost_per_call,
            input_per_1k_tokens=app_settings.cost.input_per_1k_tokens,
            output_per_1k_tokens=app_settings.cost.output_per_1k_tokens,
        )

    async def __aenter__(self) -> "SubjectResearcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.search_client.aclose()

    def build_config(self, depth: str, angle: str | None, scrape_website: bool = True) -> PipelineConfig:
        """Pipeline config for a depth and angle. No angle means a widened all-angle budget.

        Raises:
            ValueError: If the depth or angle is unknown.
        """
        if angle and self.catalog.angle(angle) is None:
            raise ValueError(f"Unknown research angle '{angle}'. Use one of: {', '.join(self.catalog.angles)}")
        config = PipelineConfig.for_depth(depth, self.catalog.search_themes(angle), scrape_website)
        if not angle:
            config = config.widened_for_all_angles()
        return config

    def estimate_cost(self, calls_used: int, prompt_tokens: int = 0, completion_tokens: int = 0) -> float:
        token_cost = prompt_tokens / 1000 * self.input_per_1k_tokens + completion_tokens / 1000 * self.output_per_1k_tokens
        return calls_used * self.cost_per_call + token_cost

    async def research(
        self,
        subject: Subject,
        depth: str = "standard",
        angle: str | None = None,
        scrape_website: bool = True,
        now: datetime | None = None,
    ) -> SubjectResearchResult:
        """Run one complete subject-cycle.

        Args:
            subject: Company to research
            depth: quick, standard or deep
            angle: Research angle id, or None to match every category
            scrape_website: Whether to read the company website first
            now: Reference time for freshness scoring and timestamps

        Returns:
            The assembled research result.

        Raises:
            RequiredStageFailure: If a required pipeline stage fails.
            ValueError: If the depth or angle is unknown.
        """
        start = self._clock()
        config = self.build_config(depth, angle, scrape_website)

        pipeline_result = await self.pipeline.run(subject, config)
        extraction = await self.extractor.extract(subject, pipeline_result)
        research = extraction.research

        domain_label = subject.industry or ("" if research.company_profile.industry == NOT_SPECIFIED else research.company_profile.industry)
        sources = pipeline_result.all_sources()

        if angle:
            hypotheses = combined_matching(research.evidence_items(), sources, angle, subject.name, domain_label, self.catalog, now)
        else:
            evidence = [*research.evidence_items(), *sources_to_evidence(sources)]
            hypotheses = match_all_categories(evidence, subject.name, domain_label, self.catalog, now)

        confidence = score_confidence(pipeline_result.stage_results, hypotheses, now)
        gaps = generate_gaps(confidence, subject.name, pipeline_result.stage_results)
        cost = self.estimate_cost(pipeline_result.metadata.calls_used, extraction.prompt_tokens, extraction.completion_tokens)
        execution_time_ms = int((self._clock() - start) * 1000)

        logger.info(
            f"Research complete for '{subject.name}': {len(hypotheses)} hypotheses, "
            f"confidence {confidence.overall:.2f}, cost ${cost:.3f}, {execution_time_ms}ms"
        )

        return SubjectResearchResult(
            subject=subject,
            depth=depth,
            angle=angle,
            research=research,
            pipeline=pipeline_result,
            hypotheses=hypotheses,
            confidence=confidence,
            gaps=gaps,
            cost=cost,
            execution_time_ms=execution_time_ms,
            generated_at=(now or datetime.now(UTC)).isoformat(),
        )
