"""
Audio stage: narrate the script.
"""

from reportflow.models.schemas import AudioOutput, ScriptBundle, VoiceSettings
from reportflow.services.collaborators.base import AudioSynthesizer
from reportflow.services.stages.base import BaseStage, StageContext


class AudioStage(BaseStage):
    """Synthesize narration for the primary script.

    Input (from context):
        - generate_scripts: ScriptBundle
        - metadata voice_id / voice_settings (optional overrides)

    Output:
        AudioOutput with a playable URL
    """

    id = "synthesize_audio"
    result_model = AudioOutput
    depends_on = ["generate_scripts"]

    def __init__(
        self,
        synthesizer: AudioSynthesizer,
        default_voice_id: str,
        default_voice_settings: VoiceSettings | None = None,
    ):
        self.synthesizer = synthesizer
        self.default_voice_id = default_voice_id
        self.default_voice_settings = default_voice_settings or VoiceSettings()

    async def execute(self, context: StageContext) -> AudioOutput:
        self.validate_context(context)
        scripts: ScriptBundle = context.get_result("generate_scripts")

        voice_id = context.get_metadata("voice_id", self.default_voice_id)
        voice_settings = context.get_metadata("voice_settings", self.default_voice_settings)
        if isinstance(voice_settings, dict):
            voice_settings = VoiceSettings.model_validate(voice_settings)

        result = await self.synthesizer.synthesize_audio(
            scripts.script_text, voice_id, voice_settings
        )
        return self.unwrap(result)

    def contribute(self, output: AudioOutput) -> dict:
        return {"audio_url": output.audio_url}
