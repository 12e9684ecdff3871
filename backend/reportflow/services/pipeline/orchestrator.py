"""
Pipeline orchestrator for document processing.

Drives one subject's document through the six stages, strictly in order,
with pause/resume/retry, snapshot persistence after every transition and
event publishing for the reporter and WebSocket clients.
"""

import asyncio
import logging
import time
from datetime import datetime
from functools import partial
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from reportflow.config import Settings, get_settings, load_performance_config
from reportflow.models.pipeline import (
    DocumentType,
    Pipeline,
    PipelineStatus,
    Stage,
    StageStatus,
)
from reportflow.models.schemas import (
    PipelineEventType,
    PipelineResult,
    SourceDocument,
    VoiceSettings,
)
from reportflow.services.stages import BaseStage, StageContext, StageError, build_stage_records

from .errors import (
    InvalidStateError,
    PersistenceError,
    PipelineFailedError,
    PipelineInterruptedError,
    ValidationError,
)
from .fallback_factory import FallbackFactory
from .progress_estimator import ProgressEstimator, RandomIncrementEstimator
from .progress_manager import PipelineListener, ProgressManager
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (PipelineStatus.QUEUED, PipelineStatus.PROCESSING, PipelineStatus.PAUSED)


class PipelineOrchestrator:
    """
    Orchestrator for one subject's pipeline.

    Collaborators reach the orchestrator through its stages; persistence and
    progress estimation are injected, so tests run with fakes, an in-memory
    store and a fixed-increment estimator.

    Example:
        orchestrator = PipelineOrchestrator("acme-q3", stages, store, settings)
        orchestrator.subscribe(reporter)

        await orchestrator.start(document, "quarterly")
        await orchestrator.pause()
        await orchestrator.resume()
        pipeline = await orchestrator.wait()

        # Or in one call
        result = await orchestrator.process(document, "quarterly")
    """

    def __init__(
        self,
        subject_id: str,
        stages: list[BaseStage],
        store: SnapshotStore,
        settings: Settings | None = None,
        estimator: ProgressEstimator | None = None,
        fallback_factory: FallbackFactory | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            subject_id: Owning subject id (snapshot key)
            stages: Stage implementations in execution order
            store: Snapshot persistence
            settings: Application settings (uses defaults if None)
            estimator: Ticker strategy (random increments if None)
            fallback_factory: Placeholder results for degradable stages
        """
        if not subject_id:
            raise ValueError("subject_id is required")

        self.subject_id = subject_id
        self.settings = settings or get_settings()
        self.stages = list(stages)
        self._stages_by_id = {stage.id: stage for stage in self.stages}
        self.store = store
        self.estimator = estimator or RandomIncrementEstimator.from_config(
            load_performance_config(self.settings)
        )
        self.fallback_factory = fallback_factory or FallbackFactory(self.settings)
        self.progress_manager = ProgressManager()

        self._pipeline: Pipeline | None = None
        self._context: StageContext | None = None
        self._result: PipelineResult | None = None
        self._run_task: asyncio.Task | None = None
        self._stage_task: asyncio.Task | None = None
        self._aborted_call: asyncio.Task | None = None
        self._ticker: asyncio.Task | None = None

    # ═══════════════════════════════════════════════════════════════════════════
    # Observers and snapshots
    # ═══════════════════════════════════════════════════════════════════════════

    def subscribe(self, listener: PipelineListener) -> None:
        self.progress_manager.subscribe(listener)

    def unsubscribe(self, listener: PipelineListener) -> None:
        self.progress_manager.unsubscribe(listener)

    @property
    def pipeline(self) -> Pipeline | None:
        """Copy of the current pipeline (None before the first run)."""
        return self._pipeline.model_copy(deep=True) if self._pipeline else None

    @property
    def result(self) -> PipelineResult | None:
        """Aggregate result, available once the pipeline has completed."""
        return self._result.model_copy(deep=True) if self._result else None

    @property
    def is_active(self) -> bool:
        return self._pipeline is not None and self._pipeline.status in ACTIVE_STATUSES

    # ═══════════════════════════════════════════════════════════════════════════
    # Public operations
    # ═══════════════════════════════════════════════════════════════════════════

    async def start(
        self,
        document: SourceDocument | None,
        document_type: DocumentType | str | None,
        *,
        voice_id: str | None = None,
        voice_settings: VoiceSettings | dict | None = None,
        avatar_id: str | None = None,
    ) -> Pipeline:
        """
        Start a new run.

        Validates input before anything is created, builds a fresh pipeline,
        marks the first stage processing and schedules execution.

        Args:
            document: Source document reference
            document_type: "quarterly" or "board"
            voice_id: Override of the default narration voice
            voice_settings: Override of the default voice parameters
            avatar_id: Override of the default video avatar

        Returns:
            Pipeline snapshot (status processing)

        Raises:
            ValidationError: Missing document, unknown type or bad options
            InvalidStateError: A run is already active for this subject
        """
        if self.is_active:
            raise InvalidStateError("start", self._pipeline.status)

        doc_type = self._validate_document(document, document_type)
        settings = self._validate_voice_settings(voice_settings)

        metadata = {
            "document": document.model_dump(mode="json"),
            "voice_id": voice_id,
            "voice_settings": settings.model_dump() if settings else None,
            "avatar_id": avatar_id,
        }
        pipeline = Pipeline.create(
            self.subject_id,
            doc_type,
            build_stage_records(self.stages, self.settings),
            metadata,
        )

        self._pipeline = pipeline
        self._result = None
        self._context = StageContext(
            subject_id=self.subject_id,
            document_type=doc_type,
            metadata={**metadata, "document": document, "voice_settings": settings},
        )
        self._persist()

        logger.info(
            f"Pipeline {pipeline.id} started for {self.subject_id}: "
            f"{document.filename} ({doc_type.value})"
        )

        pipeline.status = PipelineStatus.PROCESSING
        pipeline.touch()
        await self.progress_manager.publish(PipelineEventType.PIPELINE_STARTED, pipeline)
        await self._begin_stage(pipeline.current_stage)
        self._launch()
        return self.pipeline

    async def pause(self) -> Pipeline:
        """
        Pause a processing run.

        The stage ticker stops and the stage keeps its progress. A cancellable
        stage has its collaborator call aborted; a non-cancellable one runs to
        completion and the pause takes effect at the next stage boundary.
        Only the collaborator call is cancelled, so event delivery in
        progress always reaches every listener.

        Raises:
            InvalidStateError: Pipeline is not processing
        """
        pipeline = self._require_status("pause", PipelineStatus.PROCESSING)

        pipeline.status = PipelineStatus.PAUSED
        pipeline.touch()

        record = pipeline.current_stage
        await self._stop_ticker(record)

        call = self._stage_task
        stage = self._stages_by_id[record.id]
        if call is not None and not call.done():
            if stage.cancellable:
                self._aborted_call = call
                call.cancel()
                await asyncio.wait([call])
            else:
                logger.info(f"Pause of {self.subject_id} deferred until {record.id} finishes")

        self._persist()
        logger.info(f"Pipeline {pipeline.id} paused at {record.id} ({record.progress:.0f}%)")
        await self.progress_manager.publish(
            PipelineEventType.PIPELINE_PAUSED, pipeline, record.id
        )
        return self.pipeline

    async def resume(self) -> Pipeline:
        """
        Resume a paused run from `current_stage_index`.

        The current stage's collaborator call is made again; its progress
        continues from the last recorded value.

        Raises:
            InvalidStateError: Pipeline is not paused
        """
        pipeline = self._require_status("resume", PipelineStatus.PAUSED)

        pipeline.status = PipelineStatus.PROCESSING
        pipeline.touch()
        self._persist()

        record = pipeline.current_stage
        logger.info(f"Pipeline {pipeline.id} resumed at {record.id}")
        await self.progress_manager.publish(
            PipelineEventType.PIPELINE_RESUMED, pipeline, record.id
        )

        task = self._run_task
        if task is not None and not task.done():
            # Deferred pause: the stage call never stopped, only its ticker
            if record.status == StageStatus.PROCESSING and self._ticker is None:
                self._ticker = self._start_ticker(record)
        else:
            self._launch()
        return self.pipeline

    async def retry_failed_stage(self) -> Pipeline:
        """
        Reset the failed stage and continue from it.

        Raises:
            InvalidStateError: Pipeline is not failed
        """
        pipeline = self._require_status("retry", PipelineStatus.FAILED)

        record = pipeline.current_stage
        record.reset()
        pipeline.status = PipelineStatus.PROCESSING
        pipeline.touch()
        self._persist()

        logger.info(f"Pipeline {pipeline.id} retrying {record.id}")
        await self.progress_manager.publish(
            PipelineEventType.PIPELINE_RETRYING, pipeline, record.id
        )
        await self._begin_stage(record)
        self._launch()
        return self.pipeline

    async def restore(self) -> Pipeline | None:
        """
        Rehydrate the persisted run for this subject.

        A snapshot in processing continues immediately; paused and failed
        snapshots wait for `resume` / `retry_failed_stage`. An unreadable
        snapshot is logged and discarded.

        Returns:
            Restored pipeline, or None if there was nothing to restore

        Raises:
            InvalidStateError: A run is already active
        """
        if self.is_active:
            raise InvalidStateError("restore", self._pipeline.status)

        try:
            snapshot = self.store.load(self.subject_id)
            if snapshot is None:
                return None
            context = self._rebuild_context(snapshot)
        except (PersistenceError, PydanticValidationError, KeyError) as e:
            logger.warning(f"Discarding unreadable snapshot for {self.subject_id}: {e}")
            self._delete_snapshot()
            return None

        if snapshot.status == PipelineStatus.COMPLETED:
            self._delete_snapshot()
            return None

        self._pipeline = snapshot
        self._context = context
        self._result = None

        logger.info(
            f"Pipeline {snapshot.id} restored for {self.subject_id}: "
            f"{snapshot.status.value} at {snapshot.current_stage.id}"
        )
        await self.progress_manager.publish(
            PipelineEventType.PIPELINE_RESTORED, snapshot, snapshot.current_stage.id
        )

        if snapshot.status in (PipelineStatus.QUEUED, PipelineStatus.PROCESSING):
            snapshot.status = PipelineStatus.PROCESSING
            self._launch()
        return self.pipeline

    async def wait(self) -> Pipeline:
        """
        Wait until the current run settles (completed, failed or paused).

        Raises:
            InvalidStateError: No pipeline was started or restored
        """
        while self._run_task is not None and not self._run_task.done():
            await asyncio.wait([self._run_task])

        if self._pipeline is None:
            raise InvalidStateError("wait", None)
        return self.pipeline

    async def process(
        self,
        document: SourceDocument | None,
        document_type: DocumentType | str | None,
        **options: Any,
    ) -> PipelineResult:
        """
        Run a document through the whole pipeline.

        Returns:
            PipelineResult with scripts, audio, video and financial data

        Raises:
            ValidationError: Invalid input
            PipelineFailedError: A stage failed (message is the stage error)
            PipelineInterruptedError: The run was paused
        """
        await self.start(document, document_type, **options)
        pipeline = await self.wait()

        if pipeline.status == PipelineStatus.COMPLETED:
            return self.result
        if pipeline.status == PipelineStatus.FAILED:
            raise PipelineFailedError(pipeline)
        raise PipelineInterruptedError(pipeline)

    # ═══════════════════════════════════════════════════════════════════════════
    # Execution
    # ═══════════════════════════════════════════════════════════════════════════

    def _launch(self) -> None:
        self._run_task = asyncio.create_task(
            self._run(), name=f"pipeline-{self.subject_id}"
        )

    async def _run(self) -> None:
        """Execute stages from `current_stage_index` while processing."""
        pipeline = self._pipeline
        last_index = len(pipeline.stages) - 1

        try:
            while pipeline.status == PipelineStatus.PROCESSING:
                record = pipeline.current_stage

                if record.status == StageStatus.PENDING:
                    # Re-check status afterwards: a listener may have paused
                    await self._begin_stage(record)
                elif record.status == StageStatus.PROCESSING:
                    if not await self._execute_stage(record):
                        return
                elif record.status == StageStatus.COMPLETED:
                    if pipeline.current_stage_index == last_index:
                        await self._complete()
                        return
                    pipeline.current_stage_index += 1
                else:
                    return

        except Exception as e:
            logger.exception(f"Pipeline {pipeline.id} crashed")
            await self._fail(pipeline.current_stage, f"Unexpected error: {e}")

    async def _begin_stage(self, record: Stage) -> None:
        pipeline = self._pipeline
        record.status = StageStatus.PROCESSING
        record.start_time = datetime.now()
        record.progress = 0.0
        record.error_message = None
        pipeline.touch()
        self._persist()

        logger.info(
            f"Stage {record.id} started "
            f"({pipeline.current_stage_index + 1}/{len(pipeline.stages)})"
        )
        await self.progress_manager.publish(
            PipelineEventType.STAGE_STARTED, pipeline, record.id
        )

    async def _execute_stage(self, record: Stage) -> bool:
        """
        Run one stage's collaborator call with a progress ticker.

        The call runs in its own task so that `pause` can abort it without
        interrupting the run task.

        Returns:
            True to keep looping (next stage, or the same one after a paused
            call is resumed), False to halt
        """
        stage = self._stages_by_id[record.id]
        started = time.monotonic()
        await self._stop_ticker(record)
        self._ticker = self._start_ticker(record)

        call = asyncio.create_task(
            stage.execute(self._context), name=f"stage-{self.subject_id}-{record.id}"
        )
        self._stage_task = call
        try:
            await asyncio.wait([call])
        except asyncio.CancelledError:
            call.cancel()
            await self._stop_ticker(record)
            raise
        finally:
            self._stage_task = None

        if call is self._aborted_call:
            # Aborted by pause; the loop re-runs the call if already resumed
            self._aborted_call = None
            logger.info(f"Stage {record.id} call aborted at {record.progress:.0f}%")
            return True
        if call.cancelled():
            await self._stop_ticker(record)
            return await self._handle_failure(stage, record, f"{record.name} was cancelled")

        try:
            output = call.result()
        except StageError as e:
            await self._stop_ticker(record)
            return await self._handle_failure(stage, record, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error in stage {record.id}")
            await self._stop_ticker(record)
            return await self._handle_failure(
                stage, record, f"{record.name} failed unexpectedly: {e}"
            )

        actual_ms = int((time.monotonic() - started) * 1000)
        await self._stop_ticker(record, actual_ms)
        await self._complete_stage(stage, record, output, actual_ms)
        return True

    async def _handle_failure(self, stage: BaseStage, record: Stage, message: str) -> bool:
        if stage.degradable:
            logger.warning(f"Stage {record.id} degraded: {message}")
            fallback = self.fallback_factory.create_for_stage(record.id, reason=message)
            await self._complete_stage(stage, record, fallback, None, degraded_reason=message)
            return True

        await self._fail(record, message)
        return False

    async def _complete_stage(
        self,
        stage: BaseStage,
        record: Stage,
        output: BaseModel,
        actual_ms: int | None,
        degraded_reason: str | None = None,
    ) -> None:
        pipeline = self._pipeline

        record.status = StageStatus.COMPLETED
        record.progress = 100.0
        record.completed_time = datetime.now()
        record.actual_duration_ms = actual_ms
        record.error_message = None
        record.degraded = degraded_reason is not None
        record.output = output.model_dump(mode="json")

        self._context = self._context.with_result(record.id, output)
        if pipeline.current_stage_index < len(pipeline.stages) - 1:
            pipeline.current_stage_index += 1
        pipeline.touch()
        self._persist()

        logger.info(f"Stage {record.id} completed{' (degraded)' if record.degraded else ''}")
        await self.progress_manager.publish(
            PipelineEventType.STAGE_DEGRADED if record.degraded else PipelineEventType.STAGE_COMPLETED,
            pipeline,
            record.id,
            degraded_reason or "",
        )

    async def _fail(self, record: Stage, message: str) -> None:
        pipeline = self._pipeline

        record.status = StageStatus.FAILED
        record.error_message = message
        record.completed_time = None
        pipeline.status = PipelineStatus.FAILED
        pipeline.touch()
        self._persist()

        logger.error(f"Pipeline {pipeline.id} failed at {record.id}: {message}")
        await self.progress_manager.publish(
            PipelineEventType.STAGE_FAILED, pipeline, record.id, message
        )
        await self.progress_manager.publish(
            PipelineEventType.PIPELINE_FAILED, pipeline, record.id, message
        )

    async def _complete(self) -> None:
        pipeline = self._pipeline
        pipeline.status = PipelineStatus.COMPLETED
        pipeline.touch()
        self._result = self._build_result()

        self._persist()
        self._delete_snapshot()

        elapsed = (datetime.now() - pipeline.start_time).total_seconds()
        logger.info(f"Pipeline {pipeline.id} completed in {elapsed:.1f}s")
        await self.progress_manager.publish(PipelineEventType.PIPELINE_COMPLETED, pipeline)

    def _build_result(self) -> PipelineResult:
        fields: dict[str, Any] = {"subject_id": self.subject_id, "script_text": ""}
        for stage in self.stages:
            if self._context.has_result(stage.id):
                fields.update(stage.contribute(self._context.get_result(stage.id)))
        return PipelineResult(**fields)

    # ═══════════════════════════════════════════════════════════════════════════
    # Progress ticker
    # ═══════════════════════════════════════════════════════════════════════════

    def _start_ticker(self, record: Stage) -> asyncio.Task:
        return self.estimator.start_ticker(
            record.id,
            record.estimated_duration_ms,
            record.progress,
            partial(self._on_tick, record.id),
        )

    async def _on_tick(self, stage_id: str, progress: float) -> bool:
        pipeline = self._pipeline
        if pipeline is None or pipeline.status != PipelineStatus.PROCESSING:
            return False

        record = pipeline.stage(stage_id)
        if record.status != StageStatus.PROCESSING:
            return False

        if progress > record.progress:
            record.progress = progress
            pipeline.touch()
            await self.progress_manager.publish(
                PipelineEventType.STAGE_PROGRESS, pipeline, stage_id
            )
        return True

    async def _stop_ticker(self, record: Stage, actual_ms: int = 0) -> None:
        ticker, self._ticker = self._ticker, None
        await self.estimator.stop_ticker(
            ticker, record.id, record.estimated_duration_ms, actual_ms
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Helpers
    # ═══════════════════════════════════════════════════════════════════════════

    def _require_status(self, operation: str, status: PipelineStatus) -> Pipeline:
        pipeline = self._pipeline
        if pipeline is None or pipeline.status != status:
            raise InvalidStateError(operation, pipeline.status if pipeline else None)
        return pipeline

    @staticmethod
    def _validate_document(
        document: SourceDocument | None,
        document_type: DocumentType | str | None,
    ) -> DocumentType:
        if not isinstance(document, SourceDocument) or not document.has_source:
            raise ValidationError("A document is required")
        try:
            return DocumentType(document_type)
        except ValueError:
            allowed = ", ".join(t.value for t in DocumentType)
            raise ValidationError(
                f"Unknown document type: {document_type!r}. Expected one of: {allowed}"
            ) from None

    @staticmethod
    def _validate_voice_settings(
        voice_settings: VoiceSettings | dict | None,
    ) -> VoiceSettings | None:
        if voice_settings is None or isinstance(voice_settings, VoiceSettings):
            return voice_settings
        try:
            return VoiceSettings.model_validate(voice_settings)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid voice settings: {e}", cause=e) from e

    def _rebuild_context(self, snapshot: Pipeline) -> StageContext:
        """Rebuild stage results from persisted stage outputs.

        Raises:
            KeyError: Snapshot stages do not match this orchestrator's stages
            pydantic.ValidationError: Persisted output or metadata is invalid
        """
        expected = [stage.id for stage in self.stages]
        found = [record.id for record in snapshot.stages]
        if found != expected:
            raise KeyError(f"Snapshot stages {found} do not match {expected}")

        metadata = dict(snapshot.metadata)
        raw_settings = metadata.get("voice_settings")
        context = StageContext(
            subject_id=self.subject_id,
            document_type=snapshot.document_type,
            metadata={
                **metadata,
                "document": SourceDocument.model_validate(metadata["document"]),
                "voice_settings": VoiceSettings.model_validate(raw_settings)
                if raw_settings
                else None,
            },
        )

        for record in snapshot.stages:
            if record.status == StageStatus.COMPLETED and record.output is not None:
                output = self._stages_by_id[record.id].restore_output(record.output)
                context = context.with_result(record.id, output)
        return context

    def _persist(self) -> None:
        try:
            self.store.save(self._pipeline)
        except PersistenceError as e:
            logger.warning(f"Snapshot not saved for {self.subject_id}: {e}")

    def _delete_snapshot(self) -> None:
        try:
            self.store.delete(self.subject_id)
        except PersistenceError as e:
            logger.warning(f"Snapshot not deleted for {self.subject_id}: {e}")
