"""Confidence aggregation for research results."""

from .confidence import ConfidenceBreakdown, confidence_label, generate_gaps, score_confidence, to_five_point_scale

__all__ = [
    "ConfidenceBreakdown",
    "confidence_label",
    "generate_gaps",
    "score_confidence",
    "to_five_point_scale",
]
