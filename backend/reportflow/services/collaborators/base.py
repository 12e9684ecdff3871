"""
Collaborator protocols and errors.

Collaborators are the external services a pipeline stage delegates to.
Every call returns a tagged result: the stage's payload model on success
or a `Failure` describing what went wrong. Implementations raise
`CollaboratorError` internally and convert it at their public boundary
with `failure_from_error`, so stages never see provider exceptions.

Example:
    async def run(extractor: DocumentExtractor, doc: LoadedDocument) -> str:
        result = await extractor.extract_text(doc)
        if isinstance(result, Failure):
            raise StageError("extract", result.message)
        return result.content
"""

from typing import Protocol, runtime_checkable

from reportflow.models.pipeline import Audience, DocumentType
from reportflow.models.schemas import (
    AnalysisOutput,
    AudioOutput,
    ExtractedText,
    Failure,
    FailureKind,
    LoadedDocument,
    SourceDocument,
    VideoOutput,
    VoiceSettings,
)


# ═══════════════════════════════════════════════════════════════════════════
# Protocols
# ═══════════════════════════════════════════════════════════════════════════


@runtime_checkable
class DocumentExtractor(Protocol):
    """Loads uploaded documents and extracts their text."""

    async def load(
        self, document: SourceDocument, subject_id: str
    ) -> LoadedDocument | Failure:
        """Resolve the document bytes and store them for the run."""
        ...

    async def extract_text(self, document: LoadedDocument) -> ExtractedText | Failure:
        """Extract plain text from a stored document."""
        ...


@runtime_checkable
class ScriptAnalyzer(Protocol):
    """Turns report text into financial data and presenter scripts."""

    async def analyze(
        self, text: str, document_type: DocumentType, audience: Audience
    ) -> AnalysisOutput | Failure:
        ...


@runtime_checkable
class AudioSynthesizer(Protocol):
    """Text-to-speech provider."""

    async def synthesize_audio(
        self, script_text: str, voice_id: str, voice_settings: VoiceSettings
    ) -> AudioOutput | Failure:
        ...


@runtime_checkable
class VideoSynthesizer(Protocol):
    """Avatar video provider."""

    async def synthesize_video(
        self, script_text: str, avatar_id: str
    ) -> VideoOutput | Failure:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════


class CollaboratorError(Exception):
    """
    Base exception for collaborator errors.

    Attributes:
        message: Error description (shown to the user)
        provider: Service name (pymupdf, claude, elevenlabs, heygen)
        original_error: Underlying exception if available
    """

    kind = FailureKind.UNKNOWN

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        if self.provider:
            return f"{self.message} | provider={self.provider}"
        return self.message


class CollaboratorTimeoutError(CollaboratorError):
    """Raised when a request times out."""

    kind = FailureKind.TIMEOUT


class CollaboratorConnectionError(CollaboratorError):
    """Raised when the service cannot be reached."""

    kind = FailureKind.CONNECTION


class CollaboratorResponseError(CollaboratorError):
    """
    Raised when the service answers with an error or unusable payload.

    Attributes:
        status_code: HTTP status code if available
        response_body: Response body if available
    """

    kind = FailureKind.RESPONSE

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response_body = response_body


def failure_from_error(error: CollaboratorError) -> Failure:
    """Convert a collaborator exception into a tagged `Failure` result."""
    return Failure(kind=error.kind, message=error.message)
