"""
Pydantic models for the ReportFlow document pipeline.

Exports:
    - Stage model (Stage, Pipeline, statuses, derivation helpers)
    - Collaborator result models (ExtractedText, AnalysisOutput, Failure, ...)
"""

from reportflow.models.pipeline import (
    AUDIENCE_BY_DOCUMENT_TYPE,
    Audience,
    DocumentType,
    Pipeline,
    PipelineStatus,
    Stage,
    StageStatus,
    derive_overall_progress,
    derive_time_remaining,
    is_terminal,
)
from reportflow.models.schemas import (
    AnalysisOutput,
    AudioOutput,
    ExtractedText,
    Failure,
    FailureKind,
    FinancialData,
    LoadedDocument,
    PipelineEvent,
    PipelineEventType,
    PipelineResult,
    ScriptAlternative,
    ScriptBundle,
    SourceDocument,
    VideoOutput,
    VoiceSettings,
)

__all__ = [
    # Stage model
    "AUDIENCE_BY_DOCUMENT_TYPE",
    "Audience",
    "DocumentType",
    "Pipeline",
    "PipelineStatus",
    "Stage",
    "StageStatus",
    "derive_overall_progress",
    "derive_time_remaining",
    "is_terminal",
    # Collaborator results
    "AnalysisOutput",
    "AudioOutput",
    "ExtractedText",
    "Failure",
    "FailureKind",
    "FinancialData",
    "LoadedDocument",
    "ScriptAlternative",
    "ScriptBundle",
    "SourceDocument",
    "VideoOutput",
    "VoiceSettings",
    # Results and events
    "PipelineEvent",
    "PipelineEventType",
    "PipelineResult",
]
