"""Pain point catalog and evidence-to-hypothesis matching."""

from .catalog import Catalog, get_catalog, load_catalog
from .matching import combined_matching, match_all_categories, match_evidence, match_sources, merge_hypotheses
from .models import EvidenceItem, EvidenceLink, HypothesisWithEvidence, PainPoint, ResearchAngle, TriggerSignal

__all__ = [
    "Catalog",
    "EvidenceItem",
    "EvidenceLink",
    "HypothesisWithEvidence",
    "PainPoint",
    "ResearchAngle",
    "TriggerSignal",
    "combined_matching",
    "get_catalog",
    "load_catalog",
    "match_all_categories",
    "match_evidence",
    "match_sources",
    "merge_hypotheses",
]
