"""
Pipeline stages for document processing.

Usage:
    from reportflow.services.stages import build_stage_records, create_default_stages

    stages = create_default_stages(extractor, analyzer, speech, video, settings)
    records = build_stage_records(stages, settings)   # Stage models for a new Pipeline

Stage order is fixed:
    upload -> extract -> analyze -> generate_scripts -> synthesize_audio -> synthesize_video
"""

from reportflow.config import Settings, load_messages_config, load_performance_config
from reportflow.models.pipeline import Stage
from reportflow.models.schemas import VoiceSettings
from reportflow.services.collaborators.base import (
    AudioSynthesizer,
    DocumentExtractor,
    ScriptAnalyzer,
    VideoSynthesizer,
)
from reportflow.services.stages.analyze_stage import AnalyzeStage
from reportflow.services.stages.audio_stage import AudioStage
from reportflow.services.stages.base import BaseStage, StageContext, StageError
from reportflow.services.stages.extract_stage import ExtractStage
from reportflow.services.stages.script_stage import ScriptStage
from reportflow.services.stages.upload_stage import UploadStage
from reportflow.services.stages.video_stage import VideoStage

STAGE_ORDER = [
    "upload",
    "extract",
    "analyze",
    "generate_scripts",
    "synthesize_audio",
    "synthesize_video",
]

DEFAULT_ESTIMATE_MS = 10000


def create_default_stages(
    extractor: DocumentExtractor,
    analyzer: ScriptAnalyzer,
    speech: AudioSynthesizer,
    video: VideoSynthesizer,
    settings: Settings,
) -> list[BaseStage]:
    """Create the six stages in execution order."""
    voice_settings = VoiceSettings(
        stability=settings.voice_stability,
        similarity_boost=settings.voice_similarity_boost,
        style=settings.voice_style,
    )
    return [
        UploadStage(extractor),
        ExtractStage(extractor),
        AnalyzeStage(analyzer),
        ScriptStage(),
        AudioStage(speech, settings.default_voice_id, voice_settings),
        VideoStage(video, settings.default_avatar_id),
    ]


def build_stage_records(stages: list[BaseStage], settings: Settings) -> list[Stage]:
    """
    Build fresh pending Stage records for a new pipeline.

    Names and descriptions come from messages.yaml, duration estimates from
    performance.yaml. Missing entries fall back to the stage id and a
    default estimate.
    """
    estimates = load_performance_config(settings).get("stages", {})
    texts = load_messages_config(settings).get("stages", {})

    records = []
    for stage in stages:
        text = texts.get(stage.id, {})
        records.append(
            Stage(
                id=stage.id,
                name=text.get("name", stage.id.replace("_", " ").title()),
                description=text.get("description", ""),
                estimated_duration_ms=estimates.get(stage.id, {}).get(
                    "estimated_ms", DEFAULT_ESTIMATE_MS
                ),
            )
        )
    return records


__all__ = [
    "STAGE_ORDER",
    "BaseStage",
    "StageContext",
    "StageError",
    "UploadStage",
    "ExtractStage",
    "AnalyzeStage",
    "ScriptStage",
    "AudioStage",
    "VideoStage",
    "create_default_stages",
    "build_stage_records",
]
