"""
Pydantic models for documents, collaborator results, events and the API.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from reportflow.models.pipeline import DocumentType, Pipeline

# Letters, digits, dot, dash, underscore; no leading dot
SUBJECT_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"


# ═══════════════════════════════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════════════════════════════


class SourceDocument(BaseModel):
    """Reference to an uploaded document.

    Exactly where the bytes live varies: a local path (inbox or upload dir),
    a remote URL, or inline content. Inline content is never serialised, so
    the persisted reference stays small.
    """

    filename: str
    path: Path | None = None
    url: str | None = None
    content: bytes | None = Field(default=None, exclude=True, repr=False)

    @property
    def has_source(self) -> bool:
        return bool(self.path or self.url or self.content)


class LoadedDocument(BaseModel):
    """Document bytes stored for the run (upload stage output)."""

    outcome: Literal["ok"] = "ok"
    filename: str
    path: Path
    size_bytes: int


class ExtractedText(BaseModel):
    """Text extracted from a document (extract stage output)."""

    outcome: Literal["ok"] = "ok"
    content: str
    word_count: int
    page_count: int = 0


# ═══════════════════════════════════════════════════════════════════════════
# Analysis and scripts
# ═══════════════════════════════════════════════════════════════════════════


class FinancialData(BaseModel):
    """Structured financial data returned by the analysis collaborator.

    Unknown keys are kept: providers return richer payloads for some reports.
    """

    model_config = ConfigDict(extra="allow")

    company_name: str | None = None
    period: str | None = None
    financial_metrics: dict[str, str] = Field(default_factory=dict)
    key_highlights: list[str] = Field(default_factory=list)
    data_quality: Literal["high", "low"] | None = None


class ScriptAlternative(BaseModel):
    """Alternative script variant (executive, investor, social...)."""

    type: str
    title: str
    duration: str = ""
    script: str
    tone: str = ""
    key_points: list[str] = Field(default_factory=list)


class AnalysisOutput(BaseModel):
    """AI analysis result (analyze stage output)."""

    outcome: Literal["ok"] = "ok"
    script_text: str = ""
    script_alternatives: list[ScriptAlternative] = Field(default_factory=list)
    financial_data: FinancialData = Field(default_factory=FinancialData)


class ScriptBundle(BaseModel):
    """Final scripts (generate_scripts stage output)."""

    outcome: Literal["ok"] = "ok"
    script_text: str
    script_alternatives: list[ScriptAlternative] = Field(default_factory=list)
    composed: bool = False

    @computed_field
    @property
    def word_count(self) -> int:
        return len(self.script_text.split())


# ═══════════════════════════════════════════════════════════════════════════
# Audio and video
# ═══════════════════════════════════════════════════════════════════════════


class VoiceSettings(BaseModel):
    """Text-to-speech voice parameters."""

    stability: float = Field(default=0.5, ge=0, le=1)
    similarity_boost: float = Field(default=0.8, ge=0, le=1)
    style: float = Field(default=0.2, ge=0, le=1)


class AudioOutput(BaseModel):
    """Synthesised narration (synthesize_audio stage output)."""

    outcome: Literal["ok"] = "ok"
    audio_url: str
    duration_seconds: float | None = None


class VideoOutput(BaseModel):
    """Avatar video (synthesize_video stage output)."""

    outcome: Literal["ok"] = "ok"
    video_url: str
    thumbnail_url: str | None = None
    duration_seconds: float | None = None
    is_placeholder: bool = False


# ═══════════════════════════════════════════════════════════════════════════
# Collaborator failures
# ═══════════════════════════════════════════════════════════════════════════


class FailureKind(str, Enum):
    """Why a collaborator call failed."""
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    RESPONSE = "response"
    TOO_LARGE = "too_large"
    TOO_SMALL = "too_small"
    UNKNOWN = "unknown"


class Failure(BaseModel):
    """Failed collaborator call. `message` is shown to the user verbatim."""

    outcome: Literal["error"] = "error"
    kind: FailureKind
    message: str


LoadResult = Annotated[Union[LoadedDocument, Failure], Field(discriminator="outcome")]
ExtractionResult = Annotated[Union[ExtractedText, Failure], Field(discriminator="outcome")]
AnalysisResult = Annotated[Union[AnalysisOutput, Failure], Field(discriminator="outcome")]
AudioResult = Annotated[Union[AudioOutput, Failure], Field(discriminator="outcome")]
VideoResult = Annotated[Union[VideoOutput, Failure], Field(discriminator="outcome")]


# ═══════════════════════════════════════════════════════════════════════════
# Pipeline result and events
# ═══════════════════════════════════════════════════════════════════════════


class PipelineResult(BaseModel):
    """Aggregate result surfaced to the caller when a pipeline completes."""

    subject_id: str
    script_text: str
    script_alternatives: list[ScriptAlternative] = Field(default_factory=list)
    audio_url: str | None = None
    video_url: str | None = None
    thumbnail_url: str | None = None
    video_duration_seconds: float | None = None
    video_is_placeholder: bool = False
    financial_data: FinancialData = Field(default_factory=FinancialData)
    word_count: int = 0


class PipelineEventType(str, Enum):
    """Kinds of pipeline transitions published to listeners."""
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_RESTORED = "pipeline_restored"
    STAGE_STARTED = "stage_started"
    STAGE_PROGRESS = "stage_progress"
    STAGE_COMPLETED = "stage_completed"
    STAGE_DEGRADED = "stage_degraded"
    STAGE_FAILED = "stage_failed"
    PIPELINE_PAUSED = "pipeline_paused"
    PIPELINE_RESUMED = "pipeline_resumed"
    PIPELINE_RETRYING = "pipeline_retrying"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"


class PipelineEvent(BaseModel):
    """Immutable notification of a pipeline transition."""

    model_config = ConfigDict(frozen=True)

    type: PipelineEventType
    pipeline: Pipeline
    stage_id: str | None = None
    message: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def stage(self):
        return self.pipeline.stage(self.stage_id) if self.stage_id else None


class Notice(BaseModel):
    """Toast-style user-facing message."""

    title: str
    description: str
    variant: Literal["default", "destructive"] = "default"


# ═══════════════════════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════════════════════


class ProcessRequest(BaseModel):
    """Request to start processing a document.

    The document is taken from the inbox directory (`document_filename`)
    or downloaded from `document_url`.
    """

    subject_id: str = Field(..., min_length=1, max_length=128, pattern=SUBJECT_ID_PATTERN)
    document_type: DocumentType
    document_filename: str | None = None
    document_url: str | None = None
    voice_id: str | None = None
    voice_settings: VoiceSettings | None = None
    avatar_id: str | None = None


class PipelineView(BaseModel):
    """Pipeline snapshot with its reporter state, as shown in the UI."""

    pipeline: Pipeline
    notifications: list[str] = Field(default_factory=list)
    notices: list[Notice] = Field(default_factory=list)
    milestones: list[int] = Field(default_factory=list)


def event_to_message(event: PipelineEvent) -> dict[str, Any]:
    """Flatten an event into the JSON message sent to WebSocket clients."""
    pipeline = event.pipeline
    return {
        "type": event.type.value,
        "status": pipeline.status.value,
        "stage_id": event.stage_id,
        "current_stage_index": pipeline.current_stage_index,
        "progress": round(pipeline.overall_progress, 1),
        "estimated_time_remaining_ms": pipeline.estimated_time_remaining_ms,
        "message": event.message,
        "timestamp": event.timestamp.isoformat(),
        "pipeline": pipeline.model_dump(mode="json"),
    }
