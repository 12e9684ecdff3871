"""Tests for reportflow.models.pipeline: stage records and derived values."""

import pytest

from reportflow.models.pipeline import (
    DocumentType,
    Pipeline,
    PipelineStatus,
    Stage,
    StageStatus,
    derive_overall_progress,
    derive_time_remaining,
    is_terminal,
)


def make_stages() -> list[Stage]:
    return [
        Stage(id="upload", name="Uploading PDF", description="", estimated_duration_ms=10000),
        Stage(id="extract", name="Extracting", description="", estimated_duration_ms=20000),
        Stage(id="analyze", name="Analyzing", description="", estimated_duration_ms=15000),
    ]


class TestDerivedValues:
    def test_overall_progress_weights_stages_equally(self):
        stages = make_stages()
        stages[0].progress = 100
        stages[1].progress = 50

        assert derive_overall_progress(stages) == 50

    def test_overall_progress_of_empty_list(self):
        assert derive_overall_progress([]) == 0.0

    def test_time_remaining_skips_completed_stages(self):
        stages = make_stages()
        stages[0].status = StageStatus.COMPLETED

        assert derive_time_remaining(stages) == 35000

    def test_time_remaining_counts_processing_and_failed(self):
        stages = make_stages()
        stages[0].status = StageStatus.COMPLETED
        stages[1].status = StageStatus.FAILED
        stages[2].status = StageStatus.PROCESSING

        assert derive_time_remaining(stages) == 35000

    def test_terminal_statuses(self):
        assert is_terminal(PipelineStatus.COMPLETED)
        assert is_terminal(PipelineStatus.FAILED)
        assert not is_terminal(PipelineStatus.PAUSED)


class TestStage:
    def test_progress_is_bounded(self):
        with pytest.raises(ValueError):
            Stage(id="x", name="X", description="", estimated_duration_ms=1, progress=120)

    def test_reset_returns_to_pending(self):
        stage = make_stages()[0]
        stage.status = StageStatus.FAILED
        stage.progress = 40
        stage.error_message = "boom"
        stage.output = {"a": 1}

        stage.reset()

        assert stage.status == StageStatus.PENDING
        assert stage.progress == 0
        assert stage.error_message is None
        assert stage.output is None


class TestPipeline:
    def test_create_is_queued_at_first_stage(self):
        pipeline = Pipeline.create("acme", DocumentType.BOARD, make_stages())

        assert pipeline.id.startswith("pipeline_")
        assert pipeline.status == PipelineStatus.QUEUED
        assert pipeline.current_stage.id == "upload"
        assert pipeline.overall_progress == 0
        assert pipeline.estimated_time_remaining_ms == 45000

    def test_pause_resume_flags_follow_status(self):
        pipeline = Pipeline.create("acme", DocumentType.QUARTERLY, make_stages())
        pipeline.status = PipelineStatus.PROCESSING
        assert pipeline.can_pause and not pipeline.can_resume

        pipeline.status = PipelineStatus.PAUSED
        assert pipeline.can_resume and not pipeline.can_pause

    def test_stage_lookup(self):
        pipeline = Pipeline.create("acme", DocumentType.QUARTERLY, make_stages())

        assert pipeline.stage("extract").name == "Extracting"
        with pytest.raises(KeyError, match="Available"):
            pipeline.stage("render")

    def test_snapshot_format_parses_back(self):
        pipeline = Pipeline.create("acme", DocumentType.QUARTERLY, make_stages(), {"voice_id": "v"})
        pipeline.stages[0].status = StageStatus.COMPLETED
        pipeline.stages[0].progress = 100

        data = pipeline.model_dump(mode="json")
        assert data["overall_progress"] == pytest.approx(100 / 3)
        assert isinstance(data["start_time"], str)

        restored = Pipeline.model_validate(data)
        assert restored.start_time == pipeline.start_time
        assert restored.stages[0].status == StageStatus.COMPLETED
        assert restored.metadata == {"voice_id": "v"}
