"""
PDF document loading and text extraction.

Loads an uploaded document from a local path, inline bytes or a URL,
enforces size limits, stores it under upload_dir/<subject_id>/ and
extracts its text with PyMuPDF. Parsing runs in a worker thread under
a timeout so a pathological PDF cannot stall the event loop.
"""

import asyncio
import logging
import time
from pathlib import Path
from urllib.parse import quote

import fitz  # PyMuPDF
import httpx

from reportflow.config import Settings
from reportflow.models.schemas import (
    ExtractedText,
    Failure,
    FailureKind,
    LoadedDocument,
    SourceDocument,
)
from reportflow.services.collaborators.base import (
    CollaboratorConnectionError,
    CollaboratorError,
    CollaboratorResponseError,
    CollaboratorTimeoutError,
    failure_from_error,
)

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"


class DocumentTooLargeError(CollaboratorError):
    """Raised when a document exceeds the size limit."""

    kind = FailureKind.TOO_LARGE


def extract_pdf_text(pdf_bytes: bytes) -> tuple[str, int]:
    """
    Extract text from all pages of a PDF.

    Args:
        pdf_bytes: PDF file content

    Returns:
        Tuple of (text, page_count). Pages are separated by blank lines.

    Raises:
        ValueError: If the bytes are not a readable PDF
    """
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise ValueError(f"Cannot open PDF: {e}") from e

    try:
        pages = [page.get_text("text").strip() for page in doc]
        return "\n\n".join(p for p in pages if p), len(pages)
    finally:
        doc.close()


class PdfDocumentExtractor:
    """
    Document collaborator backed by the filesystem, httpx and PyMuPDF.

    Example:
        async with PdfDocumentExtractor.from_settings(settings) as extractor:
            loaded = await extractor.load(SourceDocument(filename="q3.pdf", path=p), "acme")
            text = await extractor.extract_text(loaded)
    """

    def __init__(
        self,
        upload_dir: Path,
        max_bytes: int = 50 * 1024 * 1024,
        min_text_length: int = 50,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes
        self.min_text_length = min_text_length
        self.timeout = timeout
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "PdfDocumentExtractor":
        return cls(
            upload_dir=settings.upload_dir,
            max_bytes=settings.max_document_bytes,
            min_text_length=settings.min_text_length,
            timeout=settings.request_timeout,
            http_client=http_client,
        )

    async def __aenter__(self) -> "PdfDocumentExtractor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.http_client.aclose()

    # ═══════════════════════════════════════════════════════════════════════
    # Load
    # ═══════════════════════════════════════════════════════════════════════

    async def load(
        self, document: SourceDocument, subject_id: str
    ) -> LoadedDocument | Failure:
        """
        Resolve document bytes, validate them and store a copy for the run.

        Returns:
            LoadedDocument with the stored path, or Failure with kind
            validation, too_large, too_small, timeout, connection or response
        """
        try:
            data = await self._read_source(document)
        except CollaboratorError as e:
            logger.warning(f"Document load failed: {e}")
            return failure_from_error(e)

        size_mb = len(data) / 1024 / 1024
        if len(data) > self.max_bytes:
            return Failure(kind=FailureKind.TOO_LARGE, message=self._too_large_message(len(data)))
        if not data:
            return Failure(kind=FailureKind.TOO_SMALL, message="Document is empty.")
        if not data.startswith(PDF_MAGIC):
            return Failure(
                kind=FailureKind.VALIDATION,
                message="Invalid file type. Only PDF files are supported.",
            )

        filename = Path(document.filename).name or "document.pdf"
        target = self._target_path(subject_id, filename)
        if target is None:
            logger.warning(f"Rejected upload path for subject {subject_id!r}")
            return Failure(
                kind=FailureKind.VALIDATION,
                message=f"Invalid subject id: {subject_id}",
            )
        await asyncio.to_thread(self._write, target, data)

        logger.info(f"Document stored: {target} ({size_mb:.2f} MB)")
        return LoadedDocument(filename=filename, path=target, size_bytes=len(data))

    async def _read_source(self, document: SourceDocument) -> bytes:
        if document.content is not None:
            return document.content

        if document.path is not None:
            path = Path(document.path)
            if not path.exists():
                raise CollaboratorError(
                    f"Document not found: {document.filename}", provider="filesystem"
                )
            return await asyncio.to_thread(path.read_bytes)

        if document.url:
            return await self._download(document.url)

        raise CollaboratorError("Document has no content, path or URL")

    def _target_path(self, subject_id: str, filename: str) -> Path | None:
        """Storage path for an upload, or None if it would leave upload_dir."""
        target = self.upload_dir / quote(subject_id, safe="") / filename
        root = self.upload_dir.resolve()
        resolved = target.resolve()
        if resolved.parent == root or root not in resolved.parents:
            return None
        return target

    def _too_large_message(self, size: int | None = None) -> str:
        limit_mb = self.max_bytes // (1024 * 1024)
        if size is None:
            return f"File too large. Maximum size is {limit_mb}MB."
        return f"File too large ({size / 1024 / 1024:.1f}MB). Maximum size is {limit_mb}MB."

    async def _download(self, url: str) -> bytes:
        """
        Download a document. Timeouts are not retried.

        The body is streamed; a Content-Length over the limit is rejected
        before reading, and the transfer stops once the limit is exceeded.
        """
        logger.info(f"Downloading document: {url}")
        start_time = time.time()

        try:
            async with self.http_client.stream("GET", url, timeout=self.timeout) as response:
                response.raise_for_status()

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise DocumentTooLargeError(
                        self._too_large_message(int(declared)), provider="http"
                    )

                data = bytearray()
                async for chunk in response.aiter_bytes():
                    data.extend(chunk)
                    if len(data) > self.max_bytes:
                        raise DocumentTooLargeError(self._too_large_message(), provider="http")
        except httpx.TimeoutException as e:
            raise CollaboratorTimeoutError(
                f"Document download timed out after {self.timeout:.0f}s",
                provider="http",
                original_error=e,
            ) from e
        except httpx.HTTPStatusError as e:
            raise CollaboratorResponseError(
                f"Document download failed: HTTP {e.response.status_code}",
                provider="http",
                status_code=e.response.status_code,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorConnectionError(
                f"Cannot download document: {e}", provider="http", original_error=e
            ) from e

        logger.debug(f"Downloaded {len(data)} bytes in {time.time() - start_time:.1f}s")
        return bytes(data)

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    # ═══════════════════════════════════════════════════════════════════════
    # Extract
    # ═══════════════════════════════════════════════════════════════════════

    async def extract_text(self, document: LoadedDocument) -> ExtractedText | Failure:
        """
        Extract text from a stored PDF.

        Returns:
            ExtractedText, or Failure (timeout, validation, too_small)
        """
        start_time = time.time()
        try:
            text, page_count = await asyncio.wait_for(
                asyncio.to_thread(self._extract_file, document.path),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return Failure(
                kind=FailureKind.TIMEOUT,
                message=f"Text extraction timed out after {self.timeout:.0f}s",
            )
        except (OSError, ValueError) as e:
            logger.warning(f"Extraction failed for {document.filename}: {e}")
            return Failure(
                kind=FailureKind.VALIDATION,
                message=f"Could not read PDF: {document.filename}",
            )

        if len(text.strip()) < self.min_text_length:
            return Failure(
                kind=FailureKind.TOO_SMALL,
                message=(
                    "PDF contains insufficient text content. "
                    "It may be a scanned or image-based document."
                ),
            )

        word_count = len(text.split())
        logger.info(
            f"Extracted {word_count} words from {page_count} pages "
            f"in {time.time() - start_time:.1f}s"
        )
        return ExtractedText(content=text, word_count=word_count, page_count=page_count)

    @staticmethod
    def _extract_file(path: Path) -> tuple[str, int]:
        return extract_pdf_text(Path(path).read_bytes())
