"""
Event publishing for pipeline transitions.

Listeners receive a `PipelineEvent` holding a deep copy of the pipeline,
so nothing outside the orchestrator can mutate the live record.
"""

import logging
from typing import Awaitable, Callable

from reportflow.models.pipeline import Pipeline
from reportflow.models.schemas import PipelineEvent, PipelineEventType

logger = logging.getLogger(__name__)

# Signature: (event) -> None
PipelineListener = Callable[[PipelineEvent], Awaitable[None]]


class ProgressManager:
    """
    Registry of pipeline listeners.

    Example:
        manager = ProgressManager()
        manager.subscribe(reporter)
        await manager.publish(PipelineEventType.STAGE_STARTED, pipeline, "extract")
    """

    def __init__(self) -> None:
        self._listeners: list[PipelineListener] = []

    def subscribe(self, listener: PipelineListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: PipelineListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(
        self,
        event_type: PipelineEventType,
        pipeline: Pipeline,
        stage_id: str | None = None,
        message: str = "",
    ) -> PipelineEvent:
        """
        Notify every listener, in subscription order.

        Args:
            event_type: Kind of transition
            pipeline: Live pipeline (copied before delivery)
            stage_id: Stage the event relates to
            message: Optional human-readable detail

        Returns:
            The delivered event
        """
        event = PipelineEvent(
            type=event_type,
            pipeline=pipeline.model_copy(deep=True),
            stage_id=stage_id,
            message=message,
        )
        logger.debug(
            f"Event {event_type.value}: {pipeline.subject_id}"
            f"{f' [{stage_id}]' if stage_id else ''}"
        )

        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                # Never fail due to listener error
                logger.warning(f"Pipeline listener error: {e}", exc_info=True)

        return event
