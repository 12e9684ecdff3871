"""
Avatar video generation via the HeyGen API.

HeyGen renders asynchronously: a generate request returns a video id,
then the status endpoint is polled until the video is completed, failed,
or the configured timeout elapses.
"""

import asyncio
import logging
import time

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reportflow.config import Settings
from reportflow.models.schemas import Failure, VideoOutput
from reportflow.services.collaborators.base import (
    CollaboratorConnectionError,
    CollaboratorError,
    CollaboratorResponseError,
    CollaboratorTimeoutError,
    failure_from_error,
)

logger = logging.getLogger(__name__)

RETRY_DECORATOR = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.ConnectError),
    reraise=True,
)

BACKGROUNDS = {
    "professional": {"type": "color", "value": "#1F2937"},
    "light": {"type": "color", "value": "#F3F4F6"},
}


class HeyGenVideoClient:
    """
    Video collaborator backed by HeyGen.

    Example:
        async with HeyGenVideoClient.from_settings(settings) as client:
            result = await client.synthesize_video(script, "default")
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        voice_id: str | None = None,
        background_style: str = "professional",
        timeout: float = 600.0,
        poll_interval: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.voice_id = voice_id
        self.background_style = background_style
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "HeyGenVideoClient":
        """
        Raises:
            ValueError: If HEYGEN_API_KEY is not configured
        """
        if not settings.heygen_api_key:
            raise ValueError("HEYGEN_API_KEY not set. Video synthesis requires it.")
        return cls(
            api_key=settings.heygen_api_key,
            base_url=settings.heygen_url,
            voice_id=settings.heygen_voice_id,
            background_style=settings.background_style,
            timeout=settings.video_timeout,
            poll_interval=settings.video_poll_interval,
            http_client=http_client,
        )

    async def __aenter__(self) -> "HeyGenVideoClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.http_client.aclose()

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-Api-Key": self.api_key}

    async def synthesize_video(
        self, script_text: str, avatar_id: str
    ) -> VideoOutput | Failure:
        """
        Render an avatar video presenting the script.

        Returns:
            VideoOutput, or Failure (the pipeline degrades to a placeholder)
        """
        logger.info(f"Generating video: avatar={avatar_id}, {len(script_text)} chars")
        start_time = time.time()

        try:
            video_id = await self._create(script_text, avatar_id)
            output = await self._wait_until_done(video_id, start_time)
        except CollaboratorError as e:
            logger.error(f"Video synthesis failed: {e}")
            return failure_from_error(e)

        logger.info(
            f"Video ready: {video_id}, elapsed: {time.time() - start_time:.1f}s"
        )
        return output

    async def _create(self, script_text: str, avatar_id: str) -> str:
        voice: dict = {"type": "text", "input_text": script_text}
        if self.voice_id:
            voice["voice_id"] = self.voice_id

        payload = {
            "video_inputs": [
                {
                    "character": {
                        "type": "avatar",
                        "avatar_id": avatar_id,
                        "avatar_style": "normal",
                    },
                    "voice": voice,
                    "background": BACKGROUNDS.get(
                        self.background_style, BACKGROUNDS["professional"]
                    ),
                }
            ],
            "dimension": {"width": 1280, "height": 720},
        }

        data = await self._call("POST", f"{self.base_url}/v2/video/generate", json=payload)
        video_id = (data.get("data") or {}).get("video_id")
        if not video_id:
            raise CollaboratorResponseError(
                "HeyGen did not return a video id", provider="heygen"
            )
        logger.debug(f"HeyGen job created: {video_id}")
        return video_id

    async def _wait_until_done(self, video_id: str, start_time: float) -> VideoOutput:
        while True:
            data = await self._call(
                "GET",
                f"{self.base_url}/v1/video_status.get",
                params={"video_id": video_id},
            )
            status = data.get("data") or {}
            state = status.get("status")

            if state == "completed":
                if not status.get("video_url"):
                    raise CollaboratorResponseError(
                        "HeyGen completed without a video URL", provider="heygen"
                    )
                return VideoOutput(
                    video_url=status["video_url"],
                    thumbnail_url=status.get("thumbnail_url"),
                    duration_seconds=status.get("duration"),
                )
            if state == "failed":
                error = status.get("error") or {}
                detail = error.get("message") if isinstance(error, dict) else str(error)
                raise CollaboratorResponseError(
                    f"Video rendering failed: {detail or 'unknown error'}",
                    provider="heygen",
                )

            elapsed = time.time() - start_time
            if elapsed >= self.timeout:
                raise CollaboratorTimeoutError(
                    f"Video rendering timed out after {elapsed:.0f}s", provider="heygen"
                )
            logger.debug(f"HeyGen {video_id}: {state}, {elapsed:.0f}s elapsed")
            await asyncio.sleep(self.poll_interval)

    async def _call(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self._send(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise CollaboratorTimeoutError(
                "HeyGen request timed out", provider="heygen", original_error=e
            ) from e
        except httpx.HTTPStatusError as e:
            raise CollaboratorResponseError(
                f"HeyGen API error: HTTP {e.response.status_code}",
                provider="heygen",
                status_code=e.response.status_code,
                response_body=e.response.text[:500],
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorConnectionError(
                f"Cannot connect to HeyGen: {e}", provider="heygen", original_error=e
            ) from e
        except ValueError as e:
            raise CollaboratorResponseError(
                "HeyGen returned invalid JSON", provider="heygen", original_error=e
            ) from e

    @RETRY_DECORATOR
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self.http_client.request(method, url, headers=self._headers, **kwargs)
