"""
Progress and notification reporting.

Turns pipeline events into what a user sees:
- a rolling log of the last five status lines ("Starting: Analyzing Content",
  canned messages when a stage passes 25/50/75 percent);
- toast-style notices (Processing Started, Step Completed, ...);
- milestone notifications at 25/50/75/100 percent overall progress,
  delivered to notifiers (log, webhook).

Example:
    reporter = PipelineReporter.from_settings(settings)
    orchestrator.subscribe(reporter)
    ...
    reporter.notifications   # ["Starting: Uploading PDF", ...]
"""

import logging
from collections import deque
from typing import Protocol

import httpx

from reportflow.config import Settings, load_messages_config
from reportflow.models.pipeline import StageStatus
from reportflow.models.schemas import Notice, PipelineEvent, PipelineEventType

logger = logging.getLogger(__name__)

MILESTONES = (25, 50, 75, 100)
STAGE_THRESHOLDS = (25, 50, 75)
MAX_NOTIFICATIONS = 5
MAX_NOTICES = 20


class MilestoneNotifier(Protocol):
    """Receives milestone notifications (stand-in for OS notifications)."""

    async def notify(self, subject_id: str, milestone: int, title: str, body: str) -> None:
        ...


class LoggingNotifier:
    """Writes milestones to the application log."""

    async def notify(self, subject_id: str, milestone: int, title: str, body: str) -> None:
        logger.info(f"MILESTONE | {subject_id} | {milestone}% | {title}: {body}")


class WebhookNotifier:
    """
    Posts milestones as JSON to a webhook URL.

    Delivery errors are logged and dropped; notifications are best-effort.
    """

    def __init__(self, url: str, http_client: httpx.AsyncClient | None = None):
        self.url = url
        self.http_client = http_client or httpx.AsyncClient(timeout=10.0)

    async def notify(self, subject_id: str, milestone: int, title: str, body: str) -> None:
        payload = {
            "subject_id": subject_id,
            "milestone": milestone,
            "title": title,
            "body": body,
        }
        try:
            response = await self.http_client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Webhook notification failed for {subject_id}: {e}")

    async def close(self) -> None:
        await self.http_client.aclose()


class PipelineReporter:
    """
    Listener that keeps the user-facing status of one subject's pipeline.

    Attributes:
        notifications: Last five status lines, oldest first
        notices: Recent toast-style notices, oldest first
        milestones: Milestones already emitted for the current pipeline run
    """

    def __init__(
        self,
        messages: dict,
        notifiers: list[MilestoneNotifier] | None = None,
        max_notifications: int = MAX_NOTIFICATIONS,
    ):
        """
        Args:
            messages: Parsed messages.yaml (stages, milestones, notices)
            notifiers: Milestone notifiers
            max_notifications: Size of the rolling status log
        """
        self.messages = messages
        self.notifiers = notifiers or []
        self._notifications: deque[str] = deque(maxlen=max_notifications)
        self._notices: deque[Notice] = deque(maxlen=MAX_NOTICES)
        self._emitted: dict[str, set[int]] = {}
        self._delivering: dict[str, set[int]] = {}
        self._crossed: dict[tuple[str, str], set[int]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        notifiers: list[MilestoneNotifier] | None = None,
    ) -> "PipelineReporter":
        if notifiers is None:
            notifiers = [LoggingNotifier()]
            if settings.notification_webhook_url:
                notifiers.append(WebhookNotifier(settings.notification_webhook_url))
        return cls(load_messages_config(settings), notifiers)

    # ═══════════════════════════════════════════════════════════════════════════
    # State
    # ═══════════════════════════════════════════════════════════════════════════

    @property
    def notifications(self) -> list[str]:
        return list(self._notifications)

    @property
    def notices(self) -> list[Notice]:
        return list(self._notices)

    def milestones_for(self, pipeline_id: str) -> list[int]:
        return sorted(self._emitted.get(pipeline_id, set()))

    # ═══════════════════════════════════════════════════════════════════════════
    # Event handling
    # ═══════════════════════════════════════════════════════════════════════════

    async def __call__(self, event: PipelineEvent) -> None:
        stage = event.stage

        if event.type == PipelineEventType.STAGE_STARTED and stage is not None:
            if stage.progress == 0:
                self._crossed[(event.pipeline.id, stage.id)] = set()
            self._notifications.append(f"Starting: {stage.name}")

        elif event.type == PipelineEventType.STAGE_PROGRESS and stage is not None:
            self._report_thresholds(event)

        elif event.type == PipelineEventType.STAGE_COMPLETED and stage is not None:
            self._add_notice("stage_completed", name=stage.name)

        elif event.type == PipelineEventType.STAGE_DEGRADED:
            self._add_notice("degraded")

        elif event.type == PipelineEventType.PIPELINE_STARTED:
            self._forget_other_runs(event.pipeline.id)
            self._add_notice("started")

        elif event.type == PipelineEventType.PIPELINE_PAUSED:
            self._add_notice("paused")

        elif event.type == PipelineEventType.PIPELINE_RESUMED:
            self._add_notice("resumed")

        elif event.type == PipelineEventType.PIPELINE_RETRYING:
            self._add_notice("retrying")

        elif event.type == PipelineEventType.PIPELINE_COMPLETED:
            self._add_notice("completed")

        elif event.type == PipelineEventType.PIPELINE_FAILED:
            self._add_notice("failed", variant="destructive", error=event.message)

        await self._report_milestones(event)

    def _forget_other_runs(self, pipeline_id: str) -> None:
        """Drop milestone and threshold state of earlier runs."""
        for runs in (self._emitted, self._delivering):
            for stale in [key for key in runs if key != pipeline_id]:
                del runs[stale]
        for stale in [key for key in self._crossed if key[0] != pipeline_id]:
            del self._crossed[stale]

    def _report_thresholds(self, event: PipelineEvent) -> None:
        stage = event.stage
        if stage.status != StageStatus.PROCESSING:
            return

        crossed = self._crossed.setdefault((event.pipeline.id, stage.id), set())
        for threshold in STAGE_THRESHOLDS:
            if stage.progress >= threshold and threshold not in crossed:
                crossed.add(threshold)
                self._notifications.append(self._stage_message(stage.id, stage.name, threshold))

    def _stage_message(self, stage_id: str, name: str, threshold: int) -> str:
        canned = self.messages.get("stages", {}).get(stage_id, {}).get("progress", {})
        return canned.get(threshold) or f"Processing {name.lower()}..."

    async def _report_milestones(self, event: PipelineEvent) -> None:
        pipeline = event.pipeline
        emitted = self._emitted.setdefault(pipeline.id, set())
        delivering = self._delivering.setdefault(pipeline.id, set())
        progress = pipeline.overall_progress

        for milestone in MILESTONES:
            if progress < milestone or milestone in emitted or milestone in delivering:
                continue

            # Recorded once delivered; an interrupted delivery is retried on the next event
            delivering.add(milestone)
            try:
                await self._notify_milestone(pipeline.subject_id, milestone)
            finally:
                delivering.discard(milestone)
            emitted.add(milestone)

    async def _notify_milestone(self, subject_id: str, milestone: int) -> None:
        text = self.messages.get("milestones", {}).get(milestone, {})
        title = text.get("title", "Processing Update")
        body = text.get("body", f"{milestone}% complete")
        for notifier in self.notifiers:
            try:
                await notifier.notify(subject_id, milestone, title, body)
            except Exception as e:
                logger.warning(f"Milestone notifier error: {e}")

    def _add_notice(self, key: str, variant: str = "default", **values: str) -> None:
        template = self.messages.get("notices", {}).get(key)
        if not template:
            return
        self._notices.append(
            Notice(
                title=template["title"],
                description=template["description"].format(**values),
                variant=variant,
            )
        )
