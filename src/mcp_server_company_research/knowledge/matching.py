"""Deterministic evidence-to-hypothesis matching against the pain point catalog."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from ..research.models import SourceReference
from .catalog import Catalog, get_catalog
from .models import EvidenceItem, EvidenceLink, HypothesisWithEvidence, TriggerSignal

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.5
MAX_HYPOTHESES = 5


def rank_hypotheses(hypotheses: Iterable[HypothesisWithEvidence], limit: int = MAX_HYPOTHESES) -> list[HypothesisWithEvidence]:
    """Highest score first, ties broken by pain point id, truncated to ``limit``."""
    return sorted(hypotheses, key=lambda h: (-h.total_score, h.pain_point_id))[:limit]


def _match_triggers(triggers: Sequence[TriggerSignal], items: Sequence[EvidenceItem], index_offset: int = 0) -> list[EvidenceLink]:
    links: list[EvidenceLink] = []
    for index, item in enumerate(items, start=index_offset):
        text = item.matchable_text()
        for trigger in triggers:
            match = trigger.regex.search(text)
            if match:
                links.append(
                    EvidenceLink(
                        signal_index=index,
                        trigger_pattern=trigger.pattern,
                        match_score=trigger.weight,
                        matched_text=match.group(0),
                        source_url=item.source_url,
                    )
                )
    return links


def match_evidence(
    items: Sequence[EvidenceItem],
    category: str,
    subject_name: str,
    domain_label: str,
    catalog: Catalog | None = None,
    now: datetime | None = None,
    index_offset: int = 0,
) -> list[HypothesisWithEvidence]:
    """Score every pain point in ``category`` against the evidence.

    A pain point surfaces when its triggers matched at least once and the
    summed weights reach MATCH_THRESHOLD. Each (item, pattern) pair counts at
    most once.

    Args:
        items: Evidence to match, indexed by position (plus ``index_offset``)
        category: Pain point category (research angle id)
        subject_name: Company name substituted into hypothesis text
        domain_label: Industry label substituted into hypothesis text
        catalog: Catalog to match against (defaults to the bundled one)
        now: Timestamp recorded on each hypothesis
        index_offset: Added to each item's position to form ``signal_index``

    Returns:
        At most MAX_HYPOTHESES hypotheses, highest score first.
    """
    catalog = catalog or get_catalog()
    generated_at = (now or datetime.now(UTC)).isoformat()
    hypotheses = []

    for pain_point_id, triggers in catalog.triggers_for(category).items():
        links = _match_triggers(triggers, items, index_offset)
        if not links:
            continue
        total_score = sum(link.match_score for link in links)
        if total_score < MATCH_THRESHOLD:
            continue
        pain_point = catalog.get(pain_point_id)
        hypotheses.append(
            HypothesisWithEvidence(
                pain_point_id=pain_point.id,
                pain_point_name=pain_point.name,
                hypothesis=pain_point.render_hypothesis(subject_name, domain_label),
                total_score=total_score,
                evidence_chain=tuple(links),
                discovery_questions=pain_point.discovery_questions,
                primary_personas=pain_point.primary_personas,
                generated_at=generated_at,
            )
        )

    ranked = rank_hypotheses(hypotheses)
    logger.debug(f"Matched {len(hypotheses)} pain points in {category} for {subject_name}; returning {len(ranked)}")
    return ranked


def sources_to_evidence(sources: Iterable[SourceReference]) -> list[EvidenceItem]:
    """Treat raw pipeline sources as evidence items."""
    return [
        EvidenceItem(
            description=source.snippet,
            relevance_note=f"From {source.domain}",
            source_name=source.title,
            source_url=source.url,
        )
        for source in sources
    ]


def match_sources(
    sources: Sequence[SourceReference],
    category: str,
    subject_name: str,
    domain_label: str,
    catalog: Catalog | None = None,
    now: datetime | None = None,
    index_offset: int = 0,
) -> list[HypothesisWithEvidence]:
    return match_evidence(sources_to_evidence(sources), category, subject_name, domain_label, catalog, now, index_offset)


def merge_hypotheses(
    primary: Iterable[HypothesisWithEvidence],
    secondary: Iterable[HypothesisWithEvidence],
) -> list[HypothesisWithEvidence]:
    """Combine two hypothesis sets keyed by pain point id.

    Evidence links already present for the same (signal_index, pattern) are
    discarded; every other link is appended and its score added. The first
    set's text and metadata win. Inputs are not modified.
    """
    merged: dict[str, HypothesisWithEvidence] = {}
    for hypothesis in [*primary, *secondary]:
        existing = merged.get(hypothesis.pain_point_id)
        if existing is None:
            merged[hypothesis.pain_point_id] = hypothesis
            continue

        seen = {link.key for link in existing.evidence_chain}
        new_links = []
        for link in hypothesis.evidence_chain:
            if link.key not in seen:
                seen.add(link.key)
                new_links.append(link)
        merged[hypothesis.pain_point_id] = replace(
            existing,
            evidence_chain=existing.evidence_chain + tuple(new_links),
            total_score=existing.total_score + sum(link.match_score for link in new_links),
        )

    return rank_hypotheses(merged.values())


def combined_matching(
    extracted_signals: Sequence[EvidenceItem],
    sources: Sequence[SourceReference],
    category: str,
    subject_name: str,
    domain_label: str,
    catalog: Catalog | None = None,
    now: datetime | None = None,
) -> list[HypothesisWithEvidence]:
    """Match model-extracted signals and raw sources, then merge.

    Source evidence is indexed after the extracted signals so that both sets
    share one index space.
    """
    from_signals = match_evidence(extracted_signals, category, subject_name, domain_label, catalog, now)
    from_sources = match_sources(sources, category, subject_name, domain_label, catalog, now, index_offset=len(extracted_signals))
    return merge_hypotheses(from_signals, from_sources)


def match_all_categories(
    items: Sequence[EvidenceItem],
    subject_name: str,
    domain_label: str,
    catalog: Catalog | None = None,
    now: datetime | None = None,
) -> list[HypothesisWithEvidence]:
    """Match every catalog category, used when no research angle was chosen."""
    catalog = catalog or get_catalog()
    results: dict[str, HypothesisWithEvidence] = {}
    for category in catalog.categories:
        for hypothesis in match_evidence(items, category, subject_name, domain_label, catalog, now):
            results.setdefault(hypothesis.pain_point_id, hypothesis)
    return rank_hypotheses(results.values())
