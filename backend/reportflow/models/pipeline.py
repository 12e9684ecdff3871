"""
Stage and pipeline records for the document-processing pipeline.

Pure data plus a few derivation helpers. Everything here is serialisable:
`Pipeline.model_dump(mode="json")` is the persisted snapshot format and
`Pipeline.model_validate(...)` parses it back (ISO-8601 strings -> datetime).

Example:
    pipeline = Pipeline.create("project-42", DocumentType.QUARTERLY, stages)
    pipeline.overall_progress          # 0.0
    pipeline.estimated_time_remaining_ms
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class StageStatus(str, Enum):
    """Status of a single stage."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStatus(str, Enum):
    """Status of a pipeline run."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class DocumentType(str, Enum):
    """Kind of report being processed.

    - quarterly: public-company interim report (Investor Relations)
    - board: private-company board pack (Board Management)
    """
    QUARTERLY = "quarterly"
    BOARD = "board"


class Audience(str, Enum):
    """Target audience for generated scripts."""
    INVESTORS = "investors"
    BOARD = "board"


AUDIENCE_BY_DOCUMENT_TYPE = {
    DocumentType.QUARTERLY: Audience.INVESTORS,
    DocumentType.BOARD: Audience.BOARD,
}


def is_terminal(status: PipelineStatus) -> bool:
    """True for statuses a run cannot leave without an explicit action."""
    return status in (PipelineStatus.COMPLETED, PipelineStatus.FAILED)


class Stage(BaseModel):
    """One ordered unit of work in the pipeline."""

    id: str
    name: str
    description: str
    status: StageStatus = StageStatus.PENDING
    progress: float = Field(default=0.0, ge=0, le=100)
    estimated_duration_ms: int = Field(..., ge=0)
    start_time: datetime | None = None
    completed_time: datetime | None = None
    actual_duration_ms: int | None = None
    error_message: str | None = None
    degraded: bool = False
    output: dict[str, Any] | None = None

    def reset(self) -> None:
        """Return the stage to its initial pending state (used by retry)."""
        self.status = StageStatus.PENDING
        self.progress = 0.0
        self.start_time = None
        self.completed_time = None
        self.actual_duration_ms = None
        self.error_message = None
        self.degraded = False
        self.output = None


def derive_overall_progress(stages: list[Stage]) -> float:
    """Average of all stage progress values.

    Every stage contributes equally regardless of its estimated duration,
    so milestone thresholds track the number of finished stages.
    """
    if not stages:
        return 0.0
    return sum(stage.progress for stage in stages) / len(stages)


def derive_time_remaining(stages: list[Stage], from_index: int = 0) -> int:
    """Sum of estimated durations (ms) of not-yet-completed stages."""
    return sum(
        stage.estimated_duration_ms
        for stage in stages[from_index:]
        if stage.status != StageStatus.COMPLETED
    )


class Pipeline(BaseModel):
    """One end-to-end run of all stages for a single document.

    Attributes:
        id: Unique run identifier
        subject_id: Owning project/document identifier (snapshot key)
        document_type: quarterly or board
        status: Pipeline status
        stages: Fixed ordered stage list
        current_stage_index: Stage processing now, or last attempted
        metadata: Document reference and processing options
    """

    id: str
    subject_id: str
    document_type: DocumentType
    status: PipelineStatus = PipelineStatus.QUEUED
    stages: list[Stage]
    current_stage_index: int = Field(default=0, ge=0)
    start_time: datetime = Field(default_factory=datetime.now)
    last_update: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(
        cls,
        subject_id: str,
        document_type: DocumentType,
        stages: list[Stage],
        metadata: dict[str, Any] | None = None,
    ) -> "Pipeline":
        """Build a fresh queued pipeline."""
        now = datetime.now()
        return cls(
            id=f"pipeline_{uuid.uuid4().hex[:12]}",
            subject_id=subject_id,
            document_type=document_type,
            stages=stages,
            start_time=now,
            last_update=now,
            metadata=metadata or {},
        )

    @computed_field
    @property
    def overall_progress(self) -> float:
        """Average stage progress (0-100)."""
        return derive_overall_progress(self.stages)

    @computed_field
    @property
    def estimated_time_remaining_ms(self) -> int:
        """Estimated milliseconds left for unfinished stages."""
        return derive_time_remaining(self.stages)

    @computed_field
    @property
    def can_pause(self) -> bool:
        return self.status == PipelineStatus.PROCESSING

    @computed_field
    @property
    def can_resume(self) -> bool:
        return self.status == PipelineStatus.PAUSED

    @property
    def current_stage(self) -> Stage:
        return self.stages[self.current_stage_index]

    def stage(self, stage_id: str) -> Stage:
        """Get stage by id.

        Raises:
            KeyError: If no stage has this id
        """
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(
            f"Stage '{stage_id}' not found. "
            f"Available: {[s.id for s in self.stages]}"
        )

    def touch(self) -> None:
        self.last_update = datetime.now()
