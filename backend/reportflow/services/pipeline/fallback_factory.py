"""
Fallback results for degradable stages.

Only video synthesis degrades: a run without video is still useful
as script + audio + financial data.
"""

import logging

from pydantic import BaseModel

from reportflow.config import Settings
from reportflow.models.schemas import VideoOutput

logger = logging.getLogger(__name__)


class FallbackFactory:
    """
    Factory for placeholder results when a degradable stage fails.

    Example:
        factory = FallbackFactory(settings)
        video = factory.create_video(reason="HeyGen API error: HTTP 500")
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def create_for_stage(self, stage_id: str, reason: str = "") -> BaseModel:
        """
        Create the placeholder output for a degradable stage.

        Raises:
            KeyError: If the stage has no fallback
        """
        builders = {"synthesize_video": self.create_video}
        if stage_id not in builders:
            raise KeyError(f"No fallback for stage '{stage_id}'")
        return builders[stage_id](reason=reason)

    def create_video(self, reason: str = "") -> VideoOutput:
        """
        Create a placeholder video result.

        Args:
            reason: Why the real video is missing (logged)

        Returns:
            VideoOutput pointing at the configured placeholder, flagged
            with is_placeholder=True
        """
        logger.warning(f"Creating fallback video: {reason or 'no reason given'}")
        return VideoOutput(
            video_url=self.settings.placeholder_video_url,
            thumbnail_url=None,
            duration_seconds=None,
            is_placeholder=True,
        )
