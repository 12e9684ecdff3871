"""Tests for reportflow.services.collaborators.

HTTP providers run against httpx.MockTransport; PDFs are generated with
PyMuPDF; the Anthropic client is replaced by a stub with the same shape.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import fitz
import httpx
import pytest
from anthropic import APIConnectionError, APITimeoutError
from tenacity import wait_none

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
from reportflow.services.collaborators import (
    ClaudeScriptAnalyzer,
    CollaboratorResponseError,
    DocumentExtractor,
    ElevenLabsSpeechClient,
    HeyGenVideoClient,
    PdfDocumentExtractor,
    failure_from_error,
)
from reportflow.services.collaborators.document_extractor import extract_pdf_text

REPORT_LINES = [
    "Acme Corp interim report Q3 2024",
    "Revenue increased 12 percent to EUR 4.2 billion.",
    "Operating margin improved to 18 percent.",
    "Net result was EUR 310 million.",
]


def make_pdf(lines: list[str], pages: int = 1) -> bytes:
    doc = fitz.open()
    for _ in range(pages):
        page = doc.new_page()
        page.insert_text((72, 72), "\n".join(lines), fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# =============================================================================
# Errors
# =============================================================================


class TestCollaboratorErrors:
    def test_failure_from_error_keeps_kind_and_message(self):
        error = CollaboratorResponseError("HeyGen API error: HTTP 500", provider="heygen", status_code=500)

        failure = failure_from_error(error)

        assert failure == Failure(kind=FailureKind.RESPONSE, message="HeyGen API error: HTTP 500")
        assert str(error) == "HeyGen API error: HTTP 500 | provider=heygen"


# =============================================================================
# PDF extractor
# =============================================================================


class TestPdfDocumentExtractor:
    @pytest.fixture
    def extractor(self, tmp_path) -> PdfDocumentExtractor:
        return PdfDocumentExtractor(tmp_path / "uploads", min_text_length=50)

    def test_implements_protocol(self, extractor):
        assert isinstance(extractor, DocumentExtractor)

    def test_extract_pdf_text(self):
        text, page_count = extract_pdf_text(make_pdf(REPORT_LINES, pages=2))

        assert page_count == 2
        assert "Revenue increased 12 percent" in text

    def test_extract_pdf_text_rejects_garbage(self):
        with pytest.raises(ValueError):
            extract_pdf_text(b"not a pdf at all")

    async def test_load_inline_content(self, extractor, tmp_path):
        data = make_pdf(REPORT_LINES)

        loaded = await extractor.load(SourceDocument(filename="q3.pdf", content=data), "acme-q3")

        assert isinstance(loaded, LoadedDocument)
        assert loaded.path == tmp_path / "uploads" / "acme-q3" / "q3.pdf"
        assert loaded.path.read_bytes() == data
        assert loaded.size_bytes == len(data)

    async def test_load_from_path(self, extractor, tmp_path):
        source = tmp_path / "inbox" / "board.pdf"
        source.parent.mkdir()
        source.write_bytes(make_pdf(REPORT_LINES))

        loaded = await extractor.load(SourceDocument(filename="board.pdf", path=source), "acme")

        assert loaded.path.exists()

    async def test_missing_path_fails(self, extractor, tmp_path):
        result = await extractor.load(
            SourceDocument(filename="gone.pdf", path=tmp_path / "gone.pdf"), "acme"
        )

        assert isinstance(result, Failure)
        assert result.message == "Document not found: gone.pdf"

    async def test_too_large(self, tmp_path):
        extractor = PdfDocumentExtractor(tmp_path, max_bytes=1024 * 1024)
        data = b"%PDF-" + b"0" * (2 * 1024 * 1024)

        result = await extractor.load(SourceDocument(filename="big.pdf", content=data), "acme")

        assert result.kind == FailureKind.TOO_LARGE
        assert result.message == "File too large (2.0MB). Maximum size is 1MB."

    async def test_subject_id_cannot_leave_upload_dir(self, extractor, tmp_path):
        document = SourceDocument(filename="q3.pdf", content=make_pdf(REPORT_LINES))
        uploads = (tmp_path / "uploads").resolve()

        loaded = await extractor.load(document, "../../escaped")

        assert uploads in loaded.path.resolve().parents
        assert loaded.path.parent.name == "..%2F..%2Fescaped"
        assert not (tmp_path.parent / "escaped").exists()

    @pytest.mark.parametrize("subject_id", ["..", "."])
    async def test_dot_subject_ids_are_rejected(self, extractor, tmp_path, subject_id):
        document = SourceDocument(filename="q3.pdf", content=make_pdf(REPORT_LINES))

        result = await extractor.load(document, subject_id)

        assert result.kind == FailureKind.VALIDATION
        assert not (tmp_path / "q3.pdf").exists()
        assert not (tmp_path / "uploads" / "q3.pdf").exists()

    async def test_not_a_pdf(self, extractor):
        result = await extractor.load(
            SourceDocument(filename="notes.docx", content=b"PK\x03\x04 zip"), "acme"
        )

        assert result.kind == FailureKind.VALIDATION
        assert result.message == "Invalid file type. Only PDF files are supported."

    async def test_empty_document(self, extractor):
        result = await extractor.load(SourceDocument(filename="empty.pdf", content=b""), "acme")

        assert result.kind == FailureKind.TOO_SMALL

    async def test_download(self, tmp_path):
        data = make_pdf(REPORT_LINES)

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url == "https://ir.acme.test/q3.pdf"
            return httpx.Response(200, content=data)

        extractor = PdfDocumentExtractor(tmp_path, http_client=mock_client(handler))
        loaded = await extractor.load(
            SourceDocument(filename="q3.pdf", url="https://ir.acme.test/q3.pdf"), "acme"
        )
        await extractor.close()

        assert loaded.size_bytes == len(data)

    async def test_download_rejects_declared_size(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"%PDF-" + b"0" * (3 * 1024 * 1024))

        extractor = PdfDocumentExtractor(
            tmp_path, max_bytes=1024 * 1024, http_client=mock_client(handler)
        )
        result = await extractor.load(
            SourceDocument(filename="q3.pdf", url="https://ir.acme.test/q3.pdf"), "acme"
        )

        assert result.kind == FailureKind.TOO_LARGE
        assert result.message == "File too large (3.0MB). Maximum size is 1MB."

    async def test_download_stops_after_limit(self, tmp_path):
        chunk = b"0" * (256 * 1024)
        sent = []

        async def body():
            for _ in range(40):
                sent.append(len(chunk))
                yield chunk

        def handler(request: httpx.Request) -> httpx.Response:
            # No Content-Length: the size is only known while streaming
            return httpx.Response(200, content=body())

        extractor = PdfDocumentExtractor(
            tmp_path, max_bytes=1024 * 1024, http_client=mock_client(handler)
        )
        result = await extractor.load(
            SourceDocument(filename="q3.pdf", url="https://ir.acme.test/q3.pdf"), "acme"
        )

        assert result.kind == FailureKind.TOO_LARGE
        assert result.message == "File too large. Maximum size is 1MB."
        assert len(sent) < 40

    async def test_download_http_error(self, tmp_path):
        extractor = PdfDocumentExtractor(
            tmp_path, http_client=mock_client(lambda request: httpx.Response(404))
        )

        result = await extractor.load(
            SourceDocument(filename="q3.pdf", url="https://ir.acme.test/q3.pdf"), "acme"
        )

        assert result.kind == FailureKind.RESPONSE
        assert "HTTP 404" in result.message

    async def test_download_timeout(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        extractor = PdfDocumentExtractor(tmp_path, http_client=mock_client(handler))
        result = await extractor.load(
            SourceDocument(filename="q3.pdf", url="https://ir.acme.test/q3.pdf"), "acme"
        )

        assert result.kind == FailureKind.TIMEOUT

    async def test_extract_text(self, extractor, tmp_path):
        path = tmp_path / "q3.pdf"
        path.write_bytes(make_pdf(REPORT_LINES, pages=3))

        result = await extractor.extract_text(
            LoadedDocument(filename="q3.pdf", path=path, size_bytes=path.stat().st_size)
        )

        assert isinstance(result, ExtractedText)
        assert result.page_count == 3
        assert result.word_count > 30

    async def test_extract_insufficient_text(self, extractor, tmp_path):
        path = tmp_path / "scan.pdf"
        path.write_bytes(make_pdf(["Page 1"]))

        result = await extractor.extract_text(
            LoadedDocument(filename="scan.pdf", path=path, size_bytes=1)
        )

        assert result.kind == FailureKind.TOO_SMALL
        assert result.message.startswith("PDF contains insufficient text content.")

    async def test_extract_corrupt_pdf(self, extractor, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"%PDF-1.7 this is not really a pdf")

        result = await extractor.extract_text(
            LoadedDocument(filename="broken.pdf", path=path, size_bytes=1)
        )

        assert result.kind == FailureKind.VALIDATION
        assert result.message == "Could not read PDF: broken.pdf"


# =============================================================================
# Claude analyzer
# =============================================================================


def claude_response(text: str) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=1200, output_tokens=300),
    )


class TestClaudeScriptAnalyzer:
    @pytest.fixture
    def create(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def analyzer(self, create) -> ClaudeScriptAnalyzer:
        client = SimpleNamespace(messages=SimpleNamespace(create=create))
        return ClaudeScriptAnalyzer(
            client=client,
            system_prompt="You are a financial analyst.",
            user_template="Type: {document_type}\nAudience: {audience}\n\n{text}",
        )

    async def test_parses_fenced_json(self, analyzer, create):
        payload = {
            "script_text": "Welcome to Acme.",
            "script_alternatives": [
                {"type": "social", "title": "Teaser", "script": "Big quarter!"}
            ],
            "financial_data": {
                "company_name": "Acme Corp",
                "period": "Q3 2024",
                "financial_metrics": {"revenue": "EUR 4.2bn"},
                "data_quality": "high",
                "sector": "Industrials",
            },
        }
        create.return_value = claude_response(f"Here you go:\n```json\n{json.dumps(payload)}\n```")

        result = await analyzer.analyze("Report text", DocumentType.QUARTERLY, Audience.INVESTORS)

        assert isinstance(result, AnalysisOutput)
        assert result.financial_data.company_name == "Acme Corp"
        assert result.financial_data.model_extra == {"sector": "Industrials"}
        assert result.script_alternatives[0].type == "social"

        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "You are a financial analyst."
        assert kwargs["messages"][0]["content"] == "Type: quarterly\nAudience: investors\n\nReport text"

    async def test_non_json_answer_fails(self, analyzer, create):
        create.return_value = claude_response("I cannot help with that.")

        result = await analyzer.analyze("Report text", DocumentType.BOARD, Audience.BOARD)

        assert result.kind == FailureKind.RESPONSE
        assert result.message == "Analysis response did not contain valid JSON"

    async def test_wrong_shape_fails(self, analyzer, create):
        create.return_value = claude_response('{"financial_data": {"data_quality": "medium"}}')

        result = await analyzer.analyze("Report text", DocumentType.BOARD, Audience.BOARD)

        assert result.kind == FailureKind.RESPONSE

    async def test_connection_error(self, analyzer, create):
        create.side_effect = APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))

        result = await analyzer.analyze("Report text", DocumentType.BOARD, Audience.BOARD)

        assert result.kind == FailureKind.CONNECTION

    async def test_timeout(self, analyzer, create):
        create.side_effect = APITimeoutError(request=httpx.Request("POST", "https://api.anthropic.com"))

        result = await analyzer.analyze("Report text", DocumentType.BOARD, Audience.BOARD)

        assert result.kind == FailureKind.TIMEOUT

    async def test_long_text_truncated(self, analyzer, create):
        create.return_value = claude_response('{"script_text": "ok"}')

        await analyzer.analyze("x" * 200_000, DocumentType.QUARTERLY, Audience.INVESTORS)

        content = create.call_args.kwargs["messages"][0]["content"]
        assert content.count("x") == 150_000

    def test_from_settings_requires_key(self, settings, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        settings.anthropic_api_key = None

        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            ClaudeScriptAnalyzer.from_settings(settings)

    def test_from_settings_loads_prompts(self, settings):
        settings.anthropic_api_key = "sk-test"

        analyzer = ClaudeScriptAnalyzer.from_settings(settings)

        assert "{text}" in analyzer.user_template
        assert analyzer.system_prompt


# =============================================================================
# ElevenLabs
# =============================================================================


class TestElevenLabsSpeechClient:
    @pytest.fixture(autouse=True)
    def no_retry_wait(self, monkeypatch):
        monkeypatch.setattr(ElevenLabsSpeechClient._post.retry, "wait", wait_none())

    def make_client(self, tmp_path, handler) -> ElevenLabsSpeechClient:
        return ElevenLabsSpeechClient(
            api_key="xi-test",
            base_url="https://api.elevenlabs.test/",
            media_dir=tmp_path / "media",
            media_base_url="http://media.test/",
            http_client=mock_client(handler),
        )

    async def test_synthesize_writes_audio(self, tmp_path):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=b"ID3 fake mp3 bytes")

        client = self.make_client(tmp_path, handler)
        result = await client.synthesize_audio(
            "one two three four five", "voice-1", VoiceSettings(stability=0.7)
        )

        assert isinstance(result, AudioOutput)
        assert result.audio_url.startswith("http://media.test/audio/")
        assert result.duration_seconds == 2.0

        filename = result.audio_url.rsplit("/", 1)[1]
        assert (tmp_path / "media" / "audio" / filename).read_bytes() == b"ID3 fake mp3 bytes"

        request = requests[0]
        assert request.url.path == "/v1/text-to-speech/voice-1"
        assert request.headers["xi-api-key"] == "xi-test"
        body = json.loads(request.content)
        assert body["text"] == "one two three four five"
        assert body["voice_settings"]["stability"] == 0.7
        assert body["voice_settings"]["use_speaker_boost"] is True

    async def test_http_error(self, tmp_path):
        client = self.make_client(tmp_path, lambda request: httpx.Response(401, text="bad key"))

        result = await client.synthesize_audio("Hello", "voice-1", VoiceSettings())

        assert result.kind == FailureKind.RESPONSE
        assert result.message == "Speech synthesis failed: HTTP 401"

    async def test_empty_audio(self, tmp_path):
        client = self.make_client(tmp_path, lambda request: httpx.Response(200, content=b""))

        result = await client.synthesize_audio("Hello", "voice-1", VoiceSettings())

        assert result.kind == FailureKind.RESPONSE

    async def test_connect_errors_are_retried(self, tmp_path):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = self.make_client(tmp_path, handler)
        result = await client.synthesize_audio("Hello", "voice-1", VoiceSettings())

        assert len(attempts) == 3
        assert result.kind == FailureKind.CONNECTION

    async def test_recovers_after_connect_error(self, tmp_path):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, content=b"audio")

        client = self.make_client(tmp_path, handler)
        result = await client.synthesize_audio("Hello", "voice-1", VoiceSettings())

        assert isinstance(result, AudioOutput)
        assert len(attempts) == 2

    def test_from_settings_requires_key(self, settings):
        settings.elevenlabs_api_key = None

        with pytest.raises(ValueError, match="ELEVENLABS_API_KEY"):
            ElevenLabsSpeechClient.from_settings(settings)


# =============================================================================
# HeyGen
# =============================================================================


class TestHeyGenVideoClient:
    @pytest.fixture(autouse=True)
    def no_retry_wait(self, monkeypatch):
        monkeypatch.setattr(HeyGenVideoClient._send.retry, "wait", wait_none())

    def make_client(self, handler, **kwargs) -> HeyGenVideoClient:
        return HeyGenVideoClient(
            api_key="hg-test",
            base_url="https://api.heygen.test",
            poll_interval=0,
            http_client=mock_client(handler),
            **kwargs,
        )

    async def test_generates_and_polls_until_completed(self):
        statuses = iter([
            {"status": "pending"},
            {"status": "processing"},
            {
                "status": "completed",
                "video_url": "https://cdn.heygen.test/v1.mp4",
                "thumbnail_url": "https://cdn.heygen.test/v1.jpg",
                "duration": 41.5,
            },
        ])
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "POST":
                return httpx.Response(200, json={"data": {"video_id": "vid-1"}})
            return httpx.Response(200, json={"data": next(statuses)})

        client = self.make_client(handler, voice_id="hg-voice")
        result = await client.synthesize_video("Welcome to Acme.", "anna")

        assert isinstance(result, VideoOutput)
        assert result.video_url == "https://cdn.heygen.test/v1.mp4"
        assert result.duration_seconds == 41.5
        assert result.is_placeholder is False

        create = requests[0]
        assert create.url.path == "/v2/video/generate"
        assert create.headers["x-api-key"] == "hg-test"
        body = json.loads(create.content)
        video_input = body["video_inputs"][0]
        assert video_input["character"]["avatar_id"] == "anna"
        assert video_input["voice"] == {
            "type": "text",
            "input_text": "Welcome to Acme.",
            "voice_id": "hg-voice",
        }
        assert requests[1].url.params["video_id"] == "vid-1"
        assert len(requests) == 4

    async def test_render_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"data": {"video_id": "vid-1"}})
            return httpx.Response(
                200, json={"data": {"status": "failed", "error": {"message": "avatar not found"}}}
            )

        result = await self.make_client(handler).synthesize_video("Hello", "ghost")

        assert result.kind == FailureKind.RESPONSE
        assert result.message == "Video rendering failed: avatar not found"

    async def test_render_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"data": {"video_id": "vid-1"}})
            return httpx.Response(200, json={"data": {"status": "processing"}})

        result = await self.make_client(handler, timeout=0).synthesize_video("Hello", "anna")

        assert result.kind == FailureKind.TIMEOUT

    async def test_missing_video_id(self):
        result = await self.make_client(
            lambda request: httpx.Response(200, json={"data": {}})
        ).synthesize_video("Hello", "anna")

        assert result.message == "HeyGen did not return a video id"

    async def test_server_error(self):
        result = await self.make_client(
            lambda request: httpx.Response(500, text="oops")
        ).synthesize_video("Hello", "anna")

        assert result.kind == FailureKind.RESPONSE
        assert result.message == "HeyGen API error: HTTP 500"

    async def test_invalid_json(self):
        result = await self.make_client(
            lambda request: httpx.Response(200, text="<html>")
        ).synthesize_video("Hello", "anna")

        assert result.message == "HeyGen returned invalid JSON"
