"""Text-bearing file extractor: PDF, DOCX, plain text and markdown.

PDF pages are read with PyMuPDF (imported as ``fitz``), DOCX paragraphs
with python-docx, and text files are decoded as UTF-8 with a Latin-1
fallback.  Parsing runs in a worker thread so a large file does not block
the event loop.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import docx
import fitz  # PyMuPDF
import structlog

from memoria.interfaces.content_extractor import ExtractionResult, IContentExtractor
from memoria.models.job import DocumentJobPayload, ExtractionPayload
from memoria.utils.errors import ExtractionError
from memoria.utils.text import detect_language

logger = structlog.get_logger(logger_name=__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIMES = frozenset({"text/plain", "text/markdown"})


class FileDocumentExtractor(IContentExtractor):
    """Extracts text from uploaded documents."""

    def supports(self, mime_type: str | None) -> bool:
        return mime_type in (PDF_MIME, DOCX_MIME) or mime_type in TEXT_MIMES

    async def extract(self, payload: ExtractionPayload) -> ExtractionResult:
        if not isinstance(payload, DocumentJobPayload):
            raise ExtractionError("Document extractor received a non-document job", retryable=False)

        path = Path(payload.file_path)
        if not path.exists():
            raise ExtractionError(
                f"Upload not found: {path.name}",
                provider_name=self.get_provider_name(),
                retryable=False,
            )

        if payload.mime_type == PDF_MIME:
            text, pages = await asyncio.to_thread(self._read_pdf, path)
        elif payload.mime_type == DOCX_MIME:
            text, pages = await asyncio.to_thread(self._read_docx, path), None
        elif payload.mime_type in TEXT_MIMES:
            text, pages = await asyncio.to_thread(self._read_text, path), None
        else:
            raise ExtractionError(
                f"Unsupported file type: {payload.mime_type}",
                provider_name=self.get_provider_name(),
                retryable=False,
            )

        logger.info(
            "document_text_extracted",
            file=path.name,
            mime_type=payload.mime_type,
            chars=len(text),
            pages=pages,
        )
        return ExtractionResult(text=text, language=detect_language(text), page_count=pages)

    def _read_pdf(self, path: Path) -> tuple[str, int]:
        try:
            pdf = fitz.open(str(path))
        except Exception as exc:
            raise ExtractionError(
                f"Corrupt or unreadable PDF: {exc}",
                provider_name=self.get_provider_name(),
                retryable=False,
            ) from exc
        try:
            pages = [page.get_text("text") for page in pdf]
            return "\n\n".join(p.strip() for p in pages if p.strip()), len(pages)
        finally:
            pdf.close()

    def _read_docx(self, path: Path) -> str:
        try:
            document = docx.Document(str(path))
        except Exception as exc:
            raise ExtractionError(
                f"Corrupt or unreadable DOCX: {exc}",
                provider_name=self.get_provider_name(),
                retryable=False,
            ) from exc
        return "\n\n".join(p.text for p in document.paragraphs if p.text.strip())

    @staticmethod
    def _read_text(path: Path) -> str:
        raw = path.read_bytes()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw.decode("latin-1")

    def get_provider_name(self) -> str:
        return "document"
