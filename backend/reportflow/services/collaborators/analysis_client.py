"""
Report analysis via Anthropic's Claude API.

Sends the extracted report text with an audience-specific prompt and
parses the JSON answer into an `AnalysisOutput`.
"""

import logging
import os

from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic
from pydantic import ValidationError

from reportflow.config import Settings, load_prompt
from reportflow.models.pipeline import Audience, DocumentType
from reportflow.models.schemas import AnalysisOutput, Failure
from reportflow.services.collaborators.base import (
    CollaboratorConnectionError,
    CollaboratorError,
    CollaboratorResponseError,
    CollaboratorTimeoutError,
    failure_from_error,
)
from reportflow.utils.json_utils import parse_json_object

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"

# Long reports are cut to keep the request within a sane token budget
MAX_INPUT_CHARS = 150_000


class ClaudeScriptAnalyzer:
    """
    Analysis collaborator backed by Claude.

    Example:
        analyzer = ClaudeScriptAnalyzer.from_settings(settings)
        result = await analyzer.analyze(text, DocumentType.QUARTERLY, Audience.INVESTORS)
    """

    def __init__(
        self,
        client: AsyncAnthropic,
        system_prompt: str,
        user_template: str,
        model: str = DEFAULT_CLAUDE_MODEL,
        max_tokens: int = 4096,
    ):
        """
        Args:
            client: Configured Anthropic client
            system_prompt: System prompt text
            user_template: User prompt with {document_type}, {audience}, {text}
            model: Claude model name
            max_tokens: Response token limit
        """
        self.client = client
        self.system_prompt = system_prompt
        self.user_template = user_template
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClaudeScriptAnalyzer":
        """
        Raises:
            ValueError: If no Anthropic API key is configured
        """
        api_key = settings.anthropic_api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY not set. Claude analysis requires authentication."
            )

        client = AsyncAnthropic(
            api_key=api_key,
            timeout=settings.analysis_timeout,
            max_retries=3,
        )
        logger.info(f"Claude analyzer initialized, model: {settings.analysis_model}")
        return cls(
            client=client,
            system_prompt=load_prompt("analysis", "system", settings),
            user_template=load_prompt("analysis", "user", settings),
            model=settings.analysis_model,
            max_tokens=settings.analysis_max_tokens,
        )

    async def close(self) -> None:
        await self.client.close()

    async def analyze(
        self, text: str, document_type: DocumentType, audience: Audience
    ) -> AnalysisOutput | Failure:
        """
        Analyse report text.

        Returns:
            AnalysisOutput, or Failure when the API call fails or the
            answer is not the expected JSON
        """
        if len(text) > MAX_INPUT_CHARS:
            logger.info(f"Report text truncated: {len(text)} -> {MAX_INPUT_CHARS} chars")
            text = text[:MAX_INPUT_CHARS]

        prompt = self.user_template.format(
            document_type=document_type.value,
            audience=audience.value,
            text=text,
        )

        try:
            answer = await self._complete(prompt)
            return self._parse(answer)
        except CollaboratorError as e:
            logger.error(f"Analysis failed: {e}")
            return failure_from_error(e)

    async def _complete(self, prompt: str) -> str:
        logger.debug(f"Claude request: model={self.model}, prompt={len(prompt)} chars")
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.3,
                system=self.system_prompt,
                messages=[{"role": "user", "content": prompt}],
            )
        except APITimeoutError as e:
            raise CollaboratorTimeoutError(
                "Analysis request timed out", provider="claude", original_error=e
            ) from e
        except APIConnectionError as e:
            raise CollaboratorConnectionError(
                f"Cannot connect to Claude API: {e}", provider="claude", original_error=e
            ) from e
        except APIStatusError as e:
            raise CollaboratorResponseError(
                f"Claude API error: {e.message}",
                provider="claude",
                status_code=e.status_code,
                response_body=str(e.body) if e.body else None,
                original_error=e,
            ) from e

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        logger.info(
            f"Claude response: {len(content)} chars, "
            f"tokens: {response.usage.input_tokens} in / {response.usage.output_tokens} out"
        )
        return content

    @staticmethod
    def _parse(answer: str) -> AnalysisOutput:
        data = parse_json_object(answer)
        if data is None:
            raise CollaboratorResponseError(
                "Analysis response did not contain valid JSON", provider="claude"
            )
        try:
            return AnalysisOutput.model_validate(data)
        except ValidationError as e:
            raise CollaboratorResponseError(
                f"Analysis response has unexpected shape: {e.error_count()} errors",
                provider="claude",
                original_error=e,
            ) from e
