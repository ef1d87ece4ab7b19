"""Staged evidence gathering and per-subject research cycles."""

from .models import DatePrecision, PipelineMetadata, PipelineResult, SourceReference, StageName, StageResult, Subject
from .pipeline import ResearchPipeline, format_pipeline_for_prompt
from .stages import DEFAULT_STAGES, DEPTH_PRESETS, PipelineConfig, StageDefinition

__all__ = [
    "DEFAULT_STAGES",
    "DEPTH_PRESETS",
    "DatePrecision",
    "PipelineConfig",
    "PipelineMetadata",
    "PipelineResult",
    "ResearchPipeline",
    "SourceReference",
    "StageDefinition",
    "StageName",
    "StageResult",
    "Subject",
    "format_pipeline_for_prompt",
]
