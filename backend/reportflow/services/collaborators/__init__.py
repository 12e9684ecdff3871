"""
External service collaborators used by pipeline stages.

Exports:
    - Protocols: DocumentExtractor, ScriptAnalyzer, AudioSynthesizer, VideoSynthesizer
    - Errors: CollaboratorError and its timeout/connection/response subclasses
    - Providers: PdfDocumentExtractor, ClaudeScriptAnalyzer,
      ElevenLabsSpeechClient, HeyGenVideoClient
"""

from reportflow.services.collaborators.analysis_client import ClaudeScriptAnalyzer
from reportflow.services.collaborators.base import (
    AudioSynthesizer,
    CollaboratorConnectionError,
    CollaboratorError,
    CollaboratorResponseError,
    CollaboratorTimeoutError,
    DocumentExtractor,
    ScriptAnalyzer,
    VideoSynthesizer,
    failure_from_error,
)
from reportflow.services.collaborators.document_extractor import PdfDocumentExtractor
from reportflow.services.collaborators.speech_client import ElevenLabsSpeechClient
from reportflow.services.collaborators.video_client import HeyGenVideoClient

__all__ = [
    # Protocols
    "DocumentExtractor",
    "ScriptAnalyzer",
    "AudioSynthesizer",
    "VideoSynthesizer",
    # Errors
    "CollaboratorError",
    "CollaboratorTimeoutError",
    "CollaboratorConnectionError",
    "CollaboratorResponseError",
    "failure_from_error",
    # Providers
    "PdfDocumentExtractor",
    "ClaudeScriptAnalyzer",
    "ElevenLabsSpeechClient",
    "HeyGenVideoClient",
]
