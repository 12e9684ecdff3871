"""
Job manager hosting one pipeline orchestrator per subject.

Creates orchestrators on demand, restores persisted runs at startup and
broadcasts pipeline events to WebSocket subscribers.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from reportflow.config import Settings, get_settings
from reportflow.models.pipeline import Pipeline
from reportflow.models.schemas import PipelineEvent, PipelineView, event_to_message
from reportflow.services.collaborators import (
    ClaudeScriptAnalyzer,
    ElevenLabsSpeechClient,
    HeyGenVideoClient,
    PdfDocumentExtractor,
)
from reportflow.services.pipeline import (
    JsonFileSnapshotStore,
    PipelineOrchestrator,
    PipelineReporter,
    SnapshotStore,
)
from reportflow.services.stages import BaseStage, create_default_stages

logger = logging.getLogger(__name__)


@dataclass
class PipelineSession:
    """An orchestrator and the reporter listening to it."""

    orchestrator: PipelineOrchestrator
    reporter: PipelineReporter

    def view(self) -> PipelineView | None:
        pipeline = self.orchestrator.pipeline
        if pipeline is None:
            return None
        return PipelineView(
            pipeline=pipeline,
            notifications=self.reporter.notifications,
            notices=self.reporter.notices,
            milestones=self.reporter.milestones_for(pipeline.id),
        )


def build_default_stages(settings: Settings) -> list[BaseStage]:
    """
    Build stages backed by the real providers.

    Raises:
        ValueError: If a provider API key is missing
    """
    return create_default_stages(
        extractor=PdfDocumentExtractor.from_settings(settings),
        analyzer=ClaudeScriptAnalyzer.from_settings(settings),
        speech=ElevenLabsSpeechClient.from_settings(settings),
        video=HeyGenVideoClient.from_settings(settings),
        settings=settings,
    )


class JobManager:
    """
    Registry of pipeline sessions with WebSocket broadcasting.

    Sessions live in memory; snapshots make runs survive restarts.

    Example:
        manager = JobManager(settings)
        session = manager.get_or_create("acme-q3")
        await session.orchestrator.start(document, "quarterly")

        queue = manager.subscribe("acme-q3")
        message = await queue.get()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: SnapshotStore | None = None,
        stages_factory: Callable[[], list[BaseStage]] | None = None,
        reporter_factory: Callable[[], PipelineReporter] | None = None,
    ):
        """
        Args:
            settings: Application settings
            store: Snapshot store shared by all orchestrators
            stages_factory: Builds the stage list (real providers if None)
            reporter_factory: Builds one reporter per session
        """
        self.settings = settings or get_settings()
        self.store = store or JsonFileSnapshotStore(self.settings.snapshot_dir)
        self._stages_factory = stages_factory or (lambda: build_default_stages(self.settings))
        self._reporter_factory = reporter_factory or (
            lambda: PipelineReporter.from_settings(self.settings)
        )
        self._stages: list[BaseStage] | None = None
        self._sessions: dict[str, PipelineSession] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    # ═══════════════════════════════════════════════════════════════════════════
    # Sessions
    # ═══════════════════════════════════════════════════════════════════════════

    def get(self, subject_id: str) -> PipelineSession | None:
        return self._sessions.get(subject_id)

    def get_or_create(self, subject_id: str) -> PipelineSession:
        """Get the subject's session, creating the orchestrator on first use.

        Raises:
            ValueError: If the providers cannot be configured
        """
        session = self._sessions.get(subject_id)
        if session is not None:
            return session

        if self._stages is None:
            self._stages = self._stages_factory()

        orchestrator = PipelineOrchestrator(
            subject_id, self._stages, self.store, self.settings
        )
        reporter = self._reporter_factory()
        orchestrator.subscribe(reporter)

        async def broadcast(event: PipelineEvent) -> None:
            await self._broadcast(subject_id, event_to_message(event))

        orchestrator.subscribe(broadcast)

        session = PipelineSession(orchestrator=orchestrator, reporter=reporter)
        self._sessions[subject_id] = session
        logger.info(f"Created session for {subject_id}")
        return session

    def list_pipelines(self) -> list[Pipeline]:
        pipelines = [s.orchestrator.pipeline for s in self._sessions.values()]
        return [p for p in pipelines if p is not None]

    async def restore_all(self) -> int:
        """
        Restore every persisted run (called at startup).

        Returns:
            Number of pipelines restored
        """
        restored = 0
        for subject_id in self.store.list_subjects():
            session = self.get_or_create(subject_id)
            if session.orchestrator.is_active:
                continue
            if await session.orchestrator.restore() is not None:
                restored += 1

        if restored:
            logger.info(f"Restored {restored} pipeline(s) from snapshots")
        return restored

    # ═══════════════════════════════════════════════════════════════════════════
    # WebSocket subscribers
    # ═══════════════════════════════════════════════════════════════════════════

    def subscribe(self, subject_id: str) -> asyncio.Queue:
        """
        Subscribe to a subject's pipeline events.

        Returns:
            Queue receiving event messages (see event_to_message)
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(subject_id, []).append(queue)
        logger.debug(f"Client subscribed to {subject_id}")
        return queue

    def unsubscribe(self, subject_id: str, queue: asyncio.Queue) -> None:
        if subject_id in self._subscribers:
            try:
                self._subscribers[subject_id].remove(queue)
                logger.debug(f"Client unsubscribed from {subject_id}")
            except ValueError:
                pass

    async def _broadcast(self, subject_id: str, message: dict) -> None:
        for queue in self._subscribers.get(subject_id, []):
            try:
                await queue.put(message)
            except Exception as e:
                logger.warning(f"Failed to broadcast to subscriber: {e}")


_job_manager: JobManager | None = None


def get_job_manager() -> JobManager:
    """Get the application's job manager (created on first use)."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobManager()
    return _job_manager
