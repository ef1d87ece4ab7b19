"""Data models for the staged research pipeline."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class StageName(str, Enum):
    """Evidence-gathering stages, in the order the pipeline runs them."""

    WEBSITE_CONTENT = "website_content"
    COMPANY_BASICS = "company_basics"
    RECENT_SIGNALS = "recent_signals"
    FINANCIAL_ACTIVITY = "financial_activity"
    TECHNOLOGY_SIGNALS = "technology_signals"
    COMPETITIVE_CONTEXT = "competitive_context"


class DatePrecision(str, Enum):
    """How precisely a source's publication date is known."""

    EXACT = "exact"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Subject:
    """A company to research."""

    name: str
    industry: str = ""
    website: str | None = None
    id: str | None = None


@dataclass(frozen=True)
class SourceReference:
    """A single piece of evidence returned by the search or extraction provider."""

    url: str
    title: str
    domain: str
    credibility_score: float
    publication_date: str | None = None
    date_precision: DatePrecision = DatePrecision.UNKNOWN
    snippet: str = ""
    relevance_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date_precision"] = self.date_precision.value
        return data


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage execution. Never mutated after creation."""

    stage: StageName
    queries_executed: tuple[str, ...] = ()
    sources: tuple[SourceReference, ...] = ()
    raw_content: str = ""
    execution_time_ms: int = 0
    success: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "queries_executed": list(self.queries_executed),
            "sources": [s.to_dict() for s in self.sources],
            "execution_time_ms": self.execution_time_ms,
            "success": self.success,
            "error": self.error,
        }


@dataclass(frozen=True)
class PipelineMetadata:
    """Aggregate counters for one pipeline invocation."""

    calls_used: int
    sources_found: int
    stages_completed: tuple[StageName, ...]
    stages_failed: tuple[StageName, ...]
    total_time_ms: int
    queries: tuple[str, ...]
    pipeline_version: str = "1.0.0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_version": self.pipeline_version,
            "calls_used": self.calls_used,
            "sources_found": self.sources_found,
            "stages_completed": [s.value for s in self.stages_completed],
            "stages_failed": [s.value for s in self.stages_failed],
            "total_time_ms": self.total_time_ms,
            "queries": list(self.queries),
        }


@dataclass(frozen=True)
class PipelineResult:
    """Stage results plus metadata for one subject-cycle."""

    stage_results: tuple[StageResult, ...]
    metadata: PipelineMetadata

    def all_sources(self) -> list[SourceReference]:
        """Sources from every stage, in stage order."""
        return [source for result in self.stage_results for source in result.sources]

    def get_stage(self, stage: StageName) -> StageResult | None:
        for result in self.stage_results:
            if result.stage == stage:
                return result
        return None
