"""
Video stage: avatar video presenting the script.
"""

from reportflow.models.schemas import ScriptBundle, VideoOutput
from reportflow.services.collaborators.base import VideoSynthesizer
from reportflow.services.stages.base import BaseStage, StageContext


class VideoStage(BaseStage):
    """Render the avatar video.

    Input (from context):
        - generate_scripts: ScriptBundle
        - metadata avatar_id (optional override)

    Output:
        VideoOutput

    Degradable: on failure the orchestrator substitutes a placeholder video
    and the pipeline still completes.
    """

    id = "synthesize_video"
    result_model = VideoOutput
    depends_on = ["generate_scripts"]
    degradable = True

    def __init__(self, synthesizer: VideoSynthesizer, default_avatar_id: str = "default"):
        self.synthesizer = synthesizer
        self.default_avatar_id = default_avatar_id

    async def execute(self, context: StageContext) -> VideoOutput:
        self.validate_context(context)
        scripts: ScriptBundle = context.get_result("generate_scripts")
        avatar_id = context.get_metadata("avatar_id", self.default_avatar_id)

        result = await self.synthesizer.synthesize_video(scripts.script_text, avatar_id)
        return self.unwrap(result)

    def contribute(self, output: VideoOutput) -> dict:
        return {
            "video_url": output.video_url,
            "thumbnail_url": output.thumbnail_url,
            "video_duration_seconds": output.duration_seconds,
            "video_is_placeholder": output.is_placeholder,
        }
