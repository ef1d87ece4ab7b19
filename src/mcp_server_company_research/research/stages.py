"""Stage plan, budgets and depth presets for the research pipeline."""

from dataclasses import dataclass, field, replace

from .models import StageName, Subject


@dataclass(frozen=True)
class StageDefinition:
    """One bounded unit of evidence gathering."""

    stage: StageName
    query_templates: tuple[str, ...]
    max_queries: int
    timeout_s: float
    required: bool = False
    angle_aware: bool = False

    def expand_queries(self, subject: Subject, angle_themes: tuple[str, ...] = ()) -> list[str]:
        """Render the stage's queries for a subject.

        Angle-aware stages get one extra composite query built from the first
        three angle themes. Base queries are never removed.
        """
        values = {"company": subject.name, "industry": subject.industry}
        queries = []
        for template in self.query_templates[: self.max_queries]:
            query = template
            for key, value in values.items():
                query = query.replace(f"{{{key}}}", value)
            queries.append(" ".join(query.split()))

        if self.angle_aware and angle_themes:
            queries.append(f"{subject.name} {' '.join(angle_themes[:3])}")
        return queries


DEFAULT_STAGES: tuple[StageDefinition, ...] = (
    StageDefinition(
        stage=StageName.COMPANY_BASICS,
        query_templates=(
            "{company} company overview revenue employees headquarters",
            "{company} {industry} business model company profile",
        ),
        max_queries=2,
        timeout_s=8.0,
        required=True,
    ),
    StageDefinition(
        stage=StageName.RECENT_SIGNALS,
        query_templates=(
            "{company} news announcements 2024 2025",
            "{company} press release latest developments",
            "{company} {industry} market news recent",
        ),
        max_queries=3,
        timeout_s=8.0,
        angle_aware=True,
    ),
    StageDefinition(
        stage=StageName.FINANCIAL_ACTIVITY,
        query_templates=(
            "{company} earnings revenue financial results growth",
            "{company} funding acquisition investment merger",
        ),
        max_queries=2,
        timeout_s=6.0,
    ),
    StageDefinition(
        stage=StageName.TECHNOLOGY_SIGNALS,
        query_templates=("{company} technology ERP CRM digital transformation AI analytics hiring",),
        max_queries=1,
        timeout_s=5.0,
    ),
    StageDefinition(
        stage=StageName.COMPETITIVE_CONTEXT,
        query_templates=(
            "{company} competitors market share {industry}",
            "{company} pricing strategy competitive analysis",
        ),
        max_queries=2,
        timeout_s=6.0,
        angle_aware=True,
    ),
)

WEBSITE_TIMEOUT_S = 8.0
WEBSITE_MAX_PAGES = 5


@dataclass(frozen=True)
class DepthPreset:
    max_calls: int
    max_total_time_ms: int
    results_per_query: int
    search_depth: str
    stages_to_run: tuple[StageName, ...] | None = None


DEPTH_PRESETS: dict[str, DepthPreset] = {
    "quick": DepthPreset(
        max_calls=5,
        max_total_time_ms=15_000,
        results_per_query=2,
        search_depth="basic",
        stages_to_run=(StageName.WEBSITE_CONTENT, StageName.COMPANY_BASICS, StageName.RECENT_SIGNALS),
    ),
    "standard": DepthPreset(max_calls=10, max_total_time_ms=28_000, results_per_query=3, search_depth="basic"),
    "deep": DepthPreset(max_calls=15, max_total_time_ms=45_000, results_per_query=5, search_depth="advanced"),
}


@dataclass(frozen=True)
class PipelineConfig:
    """Budgets and options for one pipeline invocation."""

    max_calls: int = 10
    max_total_time_ms: int = 28_000
    search_depth: str = "basic"
    results_per_query: int = 3
    scrape_website: bool = True
    angle_themes: tuple[str, ...] = ()
    stages: tuple[StageDefinition, ...] = field(default=DEFAULT_STAGES)
    stages_to_run: tuple[StageName, ...] | None = None

    @classmethod
    def for_depth(cls, depth: str, angle_themes: tuple[str, ...] = (), scrape_website: bool = True) -> "PipelineConfig":
        """Build a config from a named depth preset (quick, standard or deep)."""
        preset = DEPTH_PRESETS.get(depth)
        if preset is None:
            raise ValueError(f"Unknown research depth '{depth}'. Use one of: {', '.join(DEPTH_PRESETS)}")
        return cls(
            max_calls=preset.max_calls,
            max_total_time_ms=preset.max_total_time_ms,
            search_depth=preset.search_depth,
            results_per_query=preset.results_per_query,
            scrape_website=scrape_website,
            angle_themes=angle_themes,
            stages_to_run=preset.stages_to_run,
        )

    def widened_for_all_angles(self) -> "PipelineConfig":
        """Budget used when researching every angle at once (x1.5, capped at 20 calls / 60s)."""
        return replace(
            self,
            max_calls=min(int(self.max_calls * 1.5), 20),
            max_total_time_ms=min(int(self.max_total_time_ms * 1.5), 60_000),
        )

    def should_run(self, stage: StageName) -> bool:
        return self.stages_to_run is None or stage in self.stages_to_run

    def planned_stages(self) -> list[StageDefinition]:
        return [definition for definition in self.stages if self.should_run(definition.stage)]
