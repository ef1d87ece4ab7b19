"""Explainable five-metric confidence scoring for one research cycle.

Every function here is pure: identical inputs (including ``now``) always give
identical outputs.
"""

import re
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime

from ..knowledge.models import HypothesisWithEvidence
from ..research.models import DatePrecision, SourceReference, StageName, StageResult

EXPECTED_SIGNALS = 15
TIER1_CREDIBILITY_THRESHOLD = 0.85
TIER2_CREDIBILITY_THRESHOLD = 0.70
STRONG_HYPOTHESIS_THRESHOLD = 1.5
UNDATED_DISCOUNT = 0.3

WEIGHTS = {
    "signal_quantity": 0.15,
    "source_quality": 0.25,
    "signal_freshness": 0.20,
    "financial_data": 0.20,
    "hypothesis_evidence": 0.20,
}

PRECISION_SCORES = {
    DatePrecision.EXACT: 1.0,
    DatePrecision.MONTH: 0.8,
    DatePrecision.QUARTER: 0.6,
    DatePrecision.YEAR: 0.4,
    DatePrecision.UNKNOWN: 0.2,
}

REVENUE_PATTERNS = [
    re.compile(r"\$[\d,.]+\s*(million|billion|m|b|mn|bn)\b", re.IGNORECASE),
    re.compile(r"revenue (of|is|at|was|reached|grew|increased|declined|fell).*[\d,]+", re.IGNORECASE),
    re.compile(r"[\d,.]+\s*(million|billion|m|b|mn|bn)\s*(in )?(revenue|sales)", re.IGNORECASE),
]
MARGIN_PATTERNS = [
    re.compile(r"(gross |operating |net |profit )margin", re.IGNORECASE),
    re.compile(r"margin (of|at|is|was|increased|decreased|improved|declined)", re.IGNORECASE),
    re.compile(r"profitability|gross profit|operating income", re.IGNORECASE),
]
GROWTH_PATTERNS = [
    re.compile(r"(revenue|sales|earnings) (growth|grew|increased|up|rose)", re.IGNORECASE),
    re.compile(r"\d+%?\s*(growth|increase|gain|improvement)", re.IGNORECASE),
    re.compile(r"year.over.year|yoy|q.q|quarterly growth", re.IGNORECASE),
]


def _round(value: float) -> float:
    return round(value, 2)


@dataclass(frozen=True)
class SignalQuantityMetric:
    score: float
    found: int
    expected: int
    detail: str


@dataclass(frozen=True)
class SourceQualityMetric:
    score: float
    tier1_count: int
    tier2_count: int
    average_credibility: float


@dataclass(frozen=True)
class SignalFreshnessMetric:
    score: float
    within_3_months: int
    within_6_months: int
    within_12_months: int


@dataclass(frozen=True)
class FinancialDataMetric:
    score: float
    has_revenue: bool
    has_margins: bool
    has_growth: bool


@dataclass(frozen=True)
class HypothesisEvidenceMetric:
    score: float
    average_links_per_hypothesis: float
    hypotheses_with_strong_evidence: int


@dataclass(frozen=True)
class ConfidenceBreakdown:
    """The five sub-metrics and their fixed-weight combination."""

    signal_quantity: SignalQuantityMetric
    source_quality: SourceQualityMetric
    signal_freshness: SignalFreshnessMetric
    financial_data: FinancialDataMetric
    hypothesis_evidence: HypothesisEvidenceMetric
    overall: float

    @property
    def five_point_score(self) -> float:
        return to_five_point_scale(self.overall)

    @property
    def label(self) -> str:
        return confidence_label(self.overall)

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in WEIGHTS:
            data[name]["score"] = _round(data[name]["score"])
        data["source_quality"]["average_credibility"] = _round(data["source_quality"]["average_credibility"])
        data["hypothesis_evidence"]["average_links_per_hypothesis"] = round(
            data["hypothesis_evidence"]["average_links_per_hypothesis"], 1
        )
        data["overall"] = _round(self.overall)
        data["five_point_score"] = self.five_point_score
        data["label"] = self.label
        return data


def signal_quantity(sources: Sequence[SourceReference]) -> SignalQuantityMetric:
    found = len(sources)
    expected = EXPECTED_SIGNALS

    if found >= expected:
        detail = "Excellent coverage with multiple sources"
    elif found >= expected * 0.7:
        detail = "Good coverage across most areas"
    elif found >= expected * 0.4:
        detail = "Moderate coverage, some gaps exist"
    else:
        detail = "Limited sources found, research may be incomplete"

    return SignalQuantityMetric(score=min(found / expected, 1.0), found=found, expected=expected, detail=detail)


def source_quality(sources: Sequence[SourceReference]) -> SourceQualityMetric:
    if not sources:
        return SourceQualityMetric(score=0.0, tier1_count=0, tier2_count=0, average_credibility=0.0)

    tier1_count = sum(1 for s in sources if s.credibility_score >= TIER1_CREDIBILITY_THRESHOLD)
    tier2_count = sum(1 for s in sources if TIER2_CREDIBILITY_THRESHOLD <= s.credibility_score < TIER1_CREDIBILITY_THRESHOLD)
    average = sum(s.credibility_score for s in sources) / len(sources)

    tier1_bonus = min(tier1_count / 3, 0.15)
    tier2_bonus = min(tier2_count / 5, 0.10)
    return SourceQualityMetric(
        score=min(average + tier1_bonus + tier2_bonus, 1.0),
        tier1_count=tier1_count,
        tier2_count=tier2_count,
        average_credibility=average,
    )


def _parse_date(value: str) -> date | None:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def signal_freshness(sources: Sequence[SourceReference], now: datetime | None = None) -> SignalFreshnessMetric:
    if not sources:
        return SignalFreshnessMetric(score=0.0, within_3_months=0, within_6_months=0, within_12_months=0)

    today = (now or datetime.now(UTC)).date()
    within_3 = within_6 = within_12 = 0
    total = 0.0

    for source in sources:
        published = _parse_date(source.publication_date) if source.publication_date else None
        if published is None:
            total += PRECISION_SCORES[source.date_precision] * UNDATED_DISCOUNT
            continue

        age_months = (today - published).days / 30
        if age_months <= 3:
            within_3 += 1
            total += 1.0
        elif age_months <= 6:
            within_6 += 1
            total += 0.7
        elif age_months <= 12:
            within_12 += 1
            total += 0.4
        else:
            total += 0.1

    return SignalFreshnessMetric(
        score=min(total / len(sources), 1.0),
        within_3_months=within_3,
        within_6_months=within_6,
        within_12_months=within_12,
    )


def financial_data(stage_results: Sequence[StageResult]) -> FinancialDataMetric:
    financial_stage = next((r for r in stage_results if r.stage == StageName.FINANCIAL_ACTIVITY), None)
    stage_succeeded = bool(financial_stage and financial_stage.success and financial_stage.sources)

    content = " ".join(r.raw_content for r in stage_results)
    has_revenue = any(p.search(content) for p in REVENUE_PATTERNS)
    has_margins = any(p.search(content) for p in MARGIN_PATTERNS)
    has_growth = any(p.search(content) for p in GROWTH_PATTERNS)

    score = 0.0
    if stage_succeeded:
        score += 0.4
    if has_revenue:
        score += 0.25
    if has_margins:
        score += 0.2
    if has_growth:
        score += 0.15

    return FinancialDataMetric(score=min(score, 1.0), has_revenue=has_revenue, has_margins=has_margins, has_growth=has_growth)


def hypothesis_evidence(hypotheses: Sequence[HypothesisWithEvidence]) -> HypothesisEvidenceMetric:
    if not hypotheses:
        return HypothesisEvidenceMetric(score=0.0, average_links_per_hypothesis=0.0, hypotheses_with_strong_evidence=0)

    average_links = sum(len(h.evidence_chain) for h in hypotheses) / len(hypotheses)
    strong = sum(1 for h in hypotheses if h.total_score >= STRONG_HYPOTHESIS_THRESHOLD)

    score = 0.5 * min(average_links / 3, 1.0) + 0.5 * (strong / len(hypotheses))
    return HypothesisEvidenceMetric(
        score=min(score, 1.0),
        average_links_per_hypothesis=average_links,
        hypotheses_with_strong_evidence=strong,
    )


def score_confidence(
    stage_results: Sequence[StageResult],
    hypotheses: Sequence[HypothesisWithEvidence],
    now: datetime | None = None,
) -> ConfidenceBreakdown:
    """Compute the confidence breakdown for one subject-cycle.

    Args:
        stage_results: Every stage result from the pipeline, failed ones included
        hypotheses: Hypotheses surfaced by matching
        now: Reference time for freshness (defaults to the current UTC time)

    Returns:
        Breakdown whose ``overall`` is the weighted sum of the five scores, clamped to [0, 1].
    """
    sources = [source for result in stage_results for source in result.sources]

    quantity = signal_quantity(sources)
    quality = source_quality(sources)
    freshness = signal_freshness(sources, now)
    financial = financial_data(stage_results)
    evidence = hypothesis_evidence(hypotheses)

    overall = (
        quantity.score * WEIGHTS["signal_quantity"]
        + quality.score * WEIGHTS["source_quality"]
        + freshness.score * WEIGHTS["signal_freshness"]
        + financial.score * WEIGHTS["financial_data"]
        + evidence.score * WEIGHTS["hypothesis_evidence"]
    )

    return ConfidenceBreakdown(
        signal_quantity=quantity,
        source_quality=quality,
        signal_freshness=freshness,
        financial_data=financial,
        hypothesis_evidence=evidence,
        overall=min(max(overall, 0.0), 1.0),
    )


def generate_gaps(breakdown: ConfidenceBreakdown, subject_name: str, stage_results: Sequence[StageResult]) -> list[str]:
    """List human-readable research gaps. Each rule fires independently."""
    gaps: list[str] = []

    if breakdown.signal_quantity.score < 0.5:
        gaps.append(f'Limited information found. Consider searching for "{subject_name}" with industry-specific terms.')

    if breakdown.source_quality.tier1_count == 0:
        gaps.append(f"No tier-1 sources (SEC filings, Bloomberg, Reuters) found. Check if {subject_name} is publicly traded.")
    if breakdown.source_quality.score < 0.6:
        gaps.append("Most sources are lower-credibility outlets. Verify key facts with official sources.")

    if breakdown.signal_freshness.within_3_months == 0:
        gaps.append("No recent news (last 3 months) found. Company may have low media presence.")
    if breakdown.signal_freshness.score < 0.4:
        gaps.append("Most information is dated. Consider direct outreach to confirm current situation.")

    if not breakdown.financial_data.has_revenue:
        gaps.append(f'Revenue data not found. Search for "{subject_name} revenue" or check annual reports.')
    if not breakdown.financial_data.has_margins:
        gaps.append("Margin/profitability data not found. May need to infer from industry benchmarks.")

    if breakdown.hypothesis_evidence.hypotheses_with_strong_evidence == 0:
        gaps.append("No hypotheses have strong supporting evidence. Consider broader search terms.")
    if breakdown.hypothesis_evidence.average_links_per_hypothesis < 2:
        gaps.append("Hypotheses have limited evidence chains. More research may strengthen the case.")

    failed = {r.stage for r in stage_results if not r.success}
    if StageName.WEBSITE_CONTENT in failed:
        gaps.append("Company website could not be scraped. Manual website review recommended.")
    if StageName.COMPETITIVE_CONTEXT in failed:
        gaps.append("Competitive context not gathered. Consider searching for industry comparisons.")

    return gaps


def to_five_point_scale(score: float) -> float:
    """Map a [0, 1] score onto the 1-5 display scale."""
    return round(score * 4 + 1, 1)


def confidence_label(score: float) -> str:
    if score >= 0.8:
        return "High Confidence"
    if score >= 0.6:
        return "Good Confidence"
    if score >= 0.4:
        return "Moderate Confidence"
    if score >= 0.2:
        return "Low Confidence"
    return "Very Low Confidence"
