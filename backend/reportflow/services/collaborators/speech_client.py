"""
Text-to-speech via the ElevenLabs API.

The synthesized MP3 is written to media_dir/audio/ and exposed under
media_base_url so the UI can play it.
"""

import asyncio
import logging
import time
import uuid
from pathlib import Path

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reportflow.config import Settings
from reportflow.models.schemas import AudioOutput, Failure, VoiceSettings
from reportflow.services.collaborators.base import (
    CollaboratorConnectionError,
    CollaboratorError,
    CollaboratorResponseError,
    CollaboratorTimeoutError,
    failure_from_error,
)

logger = logging.getLogger(__name__)

# Connection errors are retried; timeouts are reported as-is
RETRY_DECORATOR = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.ConnectError),
    reraise=True,
)

# Roughly 150 spoken words per minute
WORDS_PER_SECOND = 2.5


class ElevenLabsSpeechClient:
    """
    Audio collaborator backed by ElevenLabs.

    Example:
        async with ElevenLabsSpeechClient.from_settings(settings) as client:
            result = await client.synthesize_audio(script, "EXAVITQu4vr4xnSDxMaL", VoiceSettings())
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        media_dir: Path,
        media_base_url: str,
        model_id: str = "eleven_multilingual_v2",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.media_dir = Path(media_dir)
        self.media_base_url = media_base_url.rstrip("/")
        self.model_id = model_id
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "ElevenLabsSpeechClient":
        """
        Raises:
            ValueError: If ELEVENLABS_API_KEY is not configured
        """
        if not settings.elevenlabs_api_key:
            raise ValueError("ELEVENLABS_API_KEY not set. Speech synthesis requires it.")
        return cls(
            api_key=settings.elevenlabs_api_key,
            base_url=settings.elevenlabs_url,
            media_dir=settings.media_dir,
            media_base_url=settings.media_base_url,
            model_id=settings.voice_model_id,
            http_client=http_client,
        )

    async def __aenter__(self) -> "ElevenLabsSpeechClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.http_client.aclose()

    async def synthesize_audio(
        self, script_text: str, voice_id: str, voice_settings: VoiceSettings
    ) -> AudioOutput | Failure:
        """
        Synthesize narration for a script.

        Returns:
            AudioOutput with a public URL, or Failure
        """
        logger.info(f"Synthesizing audio: voice={voice_id}, {len(script_text)} chars")
        start_time = time.time()

        try:
            audio = await self._request(script_text, voice_id, voice_settings)
        except CollaboratorError as e:
            logger.error(f"Audio synthesis failed: {e}")
            return failure_from_error(e)

        filename = f"{uuid.uuid4().hex}.mp3"
        await asyncio.to_thread(self._write, self.media_dir / "audio" / filename, audio)

        logger.info(
            f"Audio ready: {filename} ({len(audio) / 1024:.0f} KB), "
            f"elapsed: {time.time() - start_time:.1f}s"
        )
        return AudioOutput(
            audio_url=f"{self.media_base_url}/audio/{filename}",
            duration_seconds=round(len(script_text.split()) / WORDS_PER_SECOND, 1),
        )

    async def _request(
        self, script_text: str, voice_id: str, voice_settings: VoiceSettings
    ) -> bytes:
        try:
            response = await self._post(
                f"{self.base_url}/v1/text-to-speech/{voice_id}",
                {
                    "text": script_text,
                    "model_id": self.model_id,
                    "voice_settings": {
                        **voice_settings.model_dump(),
                        "use_speaker_boost": True,
                    },
                },
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise CollaboratorTimeoutError(
                "Speech synthesis timed out", provider="elevenlabs", original_error=e
            ) from e
        except httpx.HTTPStatusError as e:
            raise CollaboratorResponseError(
                f"Speech synthesis failed: HTTP {e.response.status_code}",
                provider="elevenlabs",
                status_code=e.response.status_code,
                response_body=e.response.text[:500],
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorConnectionError(
                f"Cannot connect to ElevenLabs: {e}",
                provider="elevenlabs",
                original_error=e,
            ) from e

        if not response.content:
            raise CollaboratorResponseError("ElevenLabs returned no audio", provider="elevenlabs")
        return response.content

    @RETRY_DECORATOR
    async def _post(self, url: str, payload: dict) -> httpx.Response:
        return await self.http_client.post(
            url,
            json=payload,
            headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
        )

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
