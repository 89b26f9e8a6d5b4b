"""Image OCR via pytesseract.

Opens the image with Pillow, converts to greyscale, and runs Tesseract
once with word-level data so a mean confidence can be recorded alongside
the cleaned text.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytesseract
import structlog
from PIL import Image, UnidentifiedImageError

from memoria.interfaces.content_extractor import ExtractionResult, IContentExtractor
from memoria.models.job import ExtractionPayload, ImageJobPayload
from memoria.utils.errors import ExtractionError
from memoria.utils.text import clean_ocr_text

logger = structlog.get_logger(logger_name=__name__)


class TesseractImageExtractor(IContentExtractor):
    """OCR extractor for uploaded images."""

    def __init__(self, language: str = "eng") -> None:
        self._language = language

    def supports(self, mime_type: str | None) -> bool:
        return bool(mime_type) and mime_type.startswith("image/")

    async def extract(self, payload: ExtractionPayload) -> ExtractionResult:
        if not isinstance(payload, ImageJobPayload):
            raise ExtractionError("Image extractor received a non-image job", retryable=False)

        path = Path(payload.file_path)
        if not path.exists():
            raise ExtractionError(
                f"Upload not found: {path.name}",
                provider_name=self.get_provider_name(),
                retryable=False,
            )

        text, confidence = await asyncio.to_thread(self._ocr, path)
        logger.info("image_ocr_complete", file=path.name, chars=len(text), confidence=confidence)
        return ExtractionResult(text=text, language="en", confidence=confidence)

    def _ocr(self, path: Path) -> tuple[str, float]:
        try:
            with Image.open(path) as image:
                greyscale = image.convert("L")
        except (UnidentifiedImageError, OSError) as exc:
            raise ExtractionError(
                f"Unreadable image: {exc}",
                provider_name=self.get_provider_name(),
                retryable=False,
            ) from exc

        try:
            data = pytesseract.image_to_data(
                greyscale, lang=self._language, output_type=pytesseract.Output.DICT
            )
        except pytesseract.TesseractError as exc:
            raise ExtractionError(
                f"Tesseract failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        words: list[str] = []
        confidences: list[float] = []
        for word, conf in zip(data.get("text", []), data.get("conf", [])):
            score = float(conf)
            if word.strip() and score >= 0:
                words.append(word)
                confidences.append(score)

        mean_conf = sum(confidences) / len(confidences) / 100.0 if confidences else 0.0
        return clean_ocr_text(" ".join(words)), min(max(mean_conf, 0.0), 1.0)

    def get_provider_name(self) -> str:
        return "tesseract"
