"""Filtering, selection and cost estimation for bulk sessions."""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .models import BulkCostEstimate, BulkFilterConfig, BulkSession, SelectionStrategy, SubjectItem

if TYPE_CHECKING:
    from ..crm import CRMClient

logger = logging.getLogger(__name__)

DEFAULT_SECONDS_PER_SUBJECT = 45

# Per-subject (min, max, avg) cost in USD and time in seconds
COST_ESTIMATES = {
    "standard": {"cost": (0.30, 0.60, 0.45), "time": (30, 60, 45)},
    "deep": {"cost": (0.40, 0.70, 0.55), "time": (45, 90, 67)},
}


def filter_subjects(subjects: Iterable[SubjectItem], filters: BulkFilterConfig) -> list[SubjectItem]:
    """Keep the subjects that pass every configured filter."""
    exclude = set(filters.exclude_ids)
    industries = [industry.lower() for industry in filters.industries if industry]
    kept = []

    for subject in subjects:
        if filters.min_score is not None and (subject.score is None or subject.score < filters.min_score):
            continue
        if filters.max_score is not None and subject.score is not None and subject.score > filters.max_score:
            continue
        if industries:
            if not subject.industry:
                continue
            industry = subject.industry.lower()
            if not any(wanted in industry for wanted in industries):
                continue
        if filters.has_website is True and not (subject.website and subject.website.strip()):
            continue
        if filters.has_existing_research is not None and subject.has_existing_research != filters.has_existing_research:
            continue
        if subject.id in exclude:
            continue
        kept.append(subject)

    return kept


def apply_selection_strategy(
    subjects: list[SubjectItem],
    strategy: SelectionStrategy,
    custom_ids: list[str] | None = None,
) -> list[SubjectItem]:
    """Pick the final subject list. Custom with no ids keeps everything."""
    if strategy == SelectionStrategy.CUSTOM:
        if not custom_ids:
            return list(subjects)
        wanted = set(custom_ids)
        return [subject for subject in subjects if subject.id in wanted]

    ordered = sorted(subjects, key=lambda s: s.score or 0, reverse=True) if strategy.by_score else list(subjects)
    return ordered[: strategy.limit]


def unique_industries(subjects: Iterable[SubjectItem]) -> list[str]:
    return sorted({subject.industry for subject in subjects if subject.industry})


def estimate_cost(subject_count: int, depth: str) -> BulkCostEstimate:
    """Estimate cost and duration for a batch. Depths without their own table use standard."""
    table = COST_ESTIMATES.get(depth, COST_ESTIMATES["standard"])
    min_cost, max_cost, avg_cost = table["cost"]
    min_time, max_time, avg_time = table["time"]

    return BulkCostEstimate(
        subject_count=subject_count,
        depth=depth,
        min_cost=round(subject_count * min_cost, 2),
        max_cost=round(subject_count * max_cost, 2),
        avg_cost_per_subject=avg_cost,
        min_time_minutes=round(subject_count * min_time / 60),
        max_time_minutes=round(subject_count * max_time / 60),
        avg_time_per_subject_seconds=avg_time,
    )


def format_duration(ms: int | float) -> str:
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_cost(cost: float) -> str:
    return f"${cost:.2f}"


async def create_session_from_crm(
    crm: "CRMClient",
    name: str,
    depth: str = "standard",
    angle: str | None = None,
    filters: BulkFilterConfig | None = None,
    strategy: SelectionStrategy = SelectionStrategy.CUSTOM,
    custom_ids: list[str] | None = None,
    query: str | None = None,
) -> BulkSession:
    """Fetch CRM records, filter and select them, and return a ready session."""
    filters = filters or BulkFilterConfig()
    records = await crm.list_subjects(query)
    selected = apply_selection_strategy(filter_subjects(records, filters), strategy, custom_ids)

    session = BulkSession.create(name, depth=depth, angle=angle, filters=filters, selection_strategy=strategy)
    session.select(selected)
    logger.info(f"Created session {session.id} with {session.total_count} of {len(records)} CRM records")
    return session
