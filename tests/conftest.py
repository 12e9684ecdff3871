"""
Shared fixtures for the test suite.

Provides: settings pointing at tmp dirs, scripted fake collaborators,
a fast deterministic progress estimator and an orchestrator wired to all of it.
"""

import asyncio
from pathlib import Path

import pytest

from reportflow.config import Settings, load_messages_config
from reportflow.models.schemas import (
    AnalysisOutput,
    AudioOutput,
    ExtractedText,
    FinancialData,
    LoadedDocument,
    PipelineEvent,
    SourceDocument,
    VideoOutput,
)
from reportflow.services.pipeline import (
    FixedIncrementEstimator,
    InMemorySnapshotStore,
    PipelineOrchestrator,
    PipelineReporter,
)
from reportflow.services.job_manager import JobManager
from reportflow.services.stages import create_default_stages

SUBJECT_ID = "acme-q3"

SCRIPT_TEXT = (
    "Welcome to Acme Corp's third quarter results. Revenue grew twelve percent "
    "to 4.2 billion and operating margin improved to eighteen percent."
)


class ScriptedCall:
    """Async callable returning queued results, then a default.

    Exceptions in the queue (or as default) are raised. With `gate` set the
    call blocks until the event is set; `delay` adds a sleep before returning.
    """

    def __init__(self, default):
        self.default = default
        self.queue: list = []
        self.calls: list[tuple] = []
        self.gate: asyncio.Event | None = None
        self.delay = 0.0
        self.started = asyncio.Event()

    async def __call__(self, *args):
        self.calls.append(args)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)

        result = self.queue.pop(0) if self.queue else self.default
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def call_count(self) -> int:
        return len(self.calls)


class FakeExtractor:
    def __init__(self, upload_dir: Path):
        self.load = ScriptedCall(
            LoadedDocument(
                filename="q3.pdf",
                path=upload_dir / SUBJECT_ID / "q3.pdf",
                size_bytes=2048,
            )
        )
        self.extract_text = ScriptedCall(
            ExtractedText(
                content="Acme Corp Q3 2024 interim report. Revenue 4.2bn, up 12%.",
                word_count=10,
                page_count=3,
            )
        )


class FakeAnalyzer:
    def __init__(self):
        self.analyze = ScriptedCall(
            AnalysisOutput(
                script_text=SCRIPT_TEXT,
                financial_data=FinancialData(
                    company_name="Acme Corp",
                    period="Q3 2024",
                    financial_metrics={"revenue": "4.2bn", "growth_rate": "12%"},
                    key_highlights=["Record revenue", "Margin expansion"],
                    data_quality="high",
                ),
            )
        )


class FakeSpeech:
    def __init__(self):
        self.synthesize_audio = ScriptedCall(
            AudioOutput(audio_url="http://media.test/audio/a1.mp3", duration_seconds=9.6)
        )


class FakeVideo:
    def __init__(self):
        self.synthesize_video = ScriptedCall(
            VideoOutput(
                video_url="http://cdn.test/v1.mp4",
                thumbnail_url="http://cdn.test/v1.jpg",
                duration_seconds=42.0,
            )
        )


class EventRecorder:
    """Listener collecting every published event."""

    def __init__(self):
        self.events: list[PipelineEvent] = []

    async def __call__(self, event: PipelineEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type.value for event in self.events]

    def of_type(self, event_type: str) -> list[PipelineEvent]:
        return [event for event in self.events if event.type.value == event_type]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_root=tmp_path,
        inbox_dir=tmp_path / "inbox",
        upload_dir=tmp_path / "uploads",
        media_dir=tmp_path / "media",
        snapshot_dir=tmp_path / "snapshots",
        media_base_url="http://media.test",
        notification_webhook_url=None,
    )


@pytest.fixture
def extractor(settings) -> FakeExtractor:
    return FakeExtractor(settings.upload_dir)


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def speech() -> FakeSpeech:
    return FakeSpeech()


@pytest.fixture
def video() -> FakeVideo:
    return FakeVideo()


@pytest.fixture
def stages_factory(extractor, analyzer, speech, video, settings):
    """Build a fresh stage list over the shared fakes."""
    return lambda: create_default_stages(extractor, analyzer, speech, video, settings)


@pytest.fixture
def store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def estimator() -> FixedIncrementEstimator:
    return FixedIncrementEstimator(increment=10.0, interval_seconds=0.002)


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def make_orchestrator(stages_factory, store, settings, estimator):
    def factory(subject_id: str = SUBJECT_ID) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            subject_id, stages_factory(), store, settings, estimator=estimator
        )

    return factory


@pytest.fixture
def orchestrator(make_orchestrator, recorder) -> PipelineOrchestrator:
    orchestrator = make_orchestrator()
    orchestrator.subscribe(recorder)
    return orchestrator


@pytest.fixture
def document() -> SourceDocument:
    return SourceDocument(filename="q3.pdf", url="https://ir.acme.test/reports/q3.pdf")


@pytest.fixture
def manager(settings, store, stages_factory) -> JobManager:
    messages = load_messages_config(settings)
    return JobManager(
        settings,
        store=store,
        stages_factory=stages_factory,
        reporter_factory=lambda: PipelineReporter(messages, []),
    )
