"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

# backend/config holds the bundled YAML files
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paths
    data_root: Path = Path("/data")
    inbox_dir: Path = Path("/data/inbox")
    upload_dir: Path = Path("/data/uploads")
    media_dir: Path = Path("/data/media")
    snapshot_dir: Path = Path("/data/snapshots")
    config_dir: Path = DEFAULT_CONFIG_DIR

    # Document limits
    max_document_bytes: int = 50 * 1024 * 1024
    min_text_length: int = 50
    request_timeout: float = 30.0  # Download and extraction timeout (seconds)

    # Analysis (Claude)
    anthropic_api_key: str | None = None
    analysis_model: str = "claude-sonnet-4-5"
    analysis_timeout: int = 120
    analysis_max_tokens: int = 4096

    # Speech (ElevenLabs)
    elevenlabs_api_key: str | None = None
    elevenlabs_url: str = "https://api.elevenlabs.io"
    default_voice_id: str = "EXAVITQu4vr4xnSDxMaL"
    voice_model_id: str = "eleven_multilingual_v2"
    voice_stability: float = 0.5
    voice_similarity_boost: float = 0.8
    voice_style: float = 0.2

    # Video (HeyGen)
    heygen_api_key: str | None = None
    heygen_url: str = "https://api.heygen.com"
    default_avatar_id: str = "default"
    heygen_voice_id: str | None = None
    background_style: str = "professional"
    video_timeout: float = 600.0
    video_poll_interval: float = 5.0
    placeholder_video_url: str = (
        "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/BigBuckBunny.mp4"
    )

    # Where media_dir is served from
    media_base_url: str = "http://localhost:8000/media"

    # Milestone webhook (optional)
    notification_webhook_url: str | None = None

    # Server
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8080"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_pipeline: str | None = None
    log_level_stages: str | None = None
    log_level_collaborators: str | None = None
    log_level_api: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def _load_yaml(name: str, settings: Settings | None) -> dict:
    if settings is None:
        settings = get_settings()

    path = settings.config_dir / name
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_prompt(stage: str, component: str, settings: Settings | None = None) -> str:
    """
    Load a prompt template from config/prompts/{stage}/{component}.md.

    Args:
        stage: Prompt group ("analysis")
        component: Prompt part ("system", "user")
        settings: Optional settings instance

    Raises:
        FileNotFoundError: If the prompt file does not exist
    """
    if settings is None:
        settings = get_settings()

    path = settings.config_dir / "prompts" / stage / f"{component}.md"
    if not path.exists():
        raise FileNotFoundError(
            f"Prompt not found: stage={stage}, component={component}. Checked: {path}"
        )
    return path.read_text(encoding="utf-8")


def load_performance_config(settings: Settings | None = None) -> dict:
    """
    Load stage estimates from config/performance.yaml.

    Used by the progress estimator and the default stage list.

    Structure:
        ticker: {min_increment, max_increment, cap}
        stages: {<stage_id>: {estimated_ms}}

    Args:
        settings: Optional settings instance

    Returns:
        Performance configuration dictionary
    """
    return _load_yaml("performance.yaml", settings)


def load_messages_config(settings: Settings | None = None) -> dict:
    """
    Load user-facing texts from config/messages.yaml.

    Contains stage names and descriptions, canned progress messages per
    stage (at 25/50/75 percent), milestone notifications and notices.

    Args:
        settings: Optional settings instance

    Returns:
        Messages configuration dictionary
    """
    return _load_yaml("messages.yaml", settings)
