"""Audio transcription via the OpenAI Whisper API.

Uses the same OpenAI-compatible endpoint as the other model calls.  The
API accepts mp3, mp4, m4a, wav and webm directly, so no local conversion
is needed.  Whisper does not report a confidence; a fixed 0.9 is
recorded, matching how transcripts are treated elsewhere.
"""

from __future__ import annotations

from pathlib import Path

import openai
import structlog

from memoria.config.settings import ProviderConfig
from memoria.interfaces.content_extractor import ExtractionResult, IContentExtractor
from memoria.models.job import AudioJobPayload, ExtractionPayload
from memoria.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)

_TRANSCRIPT_CONFIDENCE = 0.9


class WhisperAudioExtractor(IContentExtractor):
    """Transcribes uploaded audio to text."""

    def __init__(self, config: ProviderConfig) -> None:
        client_kwargs: dict = {"api_key": config.api_key, "timeout": config.request_timeout}
        if config.endpoint:
            client_kwargs["base_url"] = config.endpoint
        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = config.transcription_model

    def supports(self, mime_type: str | None) -> bool:
        return bool(mime_type) and mime_type.startswith("audio/")

    async def extract(self, payload: ExtractionPayload) -> ExtractionResult:
        if not isinstance(payload, AudioJobPayload):
            raise ExtractionError("Audio extractor received a non-audio job", retryable=False)

        audio_path = Path(payload.file_path)
        if not audio_path.exists():
            raise ExtractionError(
                f"Upload not found: {audio_path.name}",
                provider_name=self.get_provider_name(),
                retryable=False,
            )

        kwargs: dict = {"model": self._model, "response_format": "verbose_json"}
        if payload.language:
            kwargs["language"] = payload.language

        try:
            with open(audio_path, "rb") as f:
                response = await self._client.audio.transcriptions.create(file=f, **kwargs)
        except openai.BadRequestError as exc:
            raise ExtractionError(
                f"Audio rejected by transcription service: {exc}",
                provider_name=self.get_provider_name(),
                retryable=False,
            ) from exc
        except openai.APIError as exc:
            raise ExtractionError(
                f"Transcription failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        text = getattr(response, "text", "") or ""
        language = getattr(response, "language", None) or payload.language or "en"
        duration = getattr(response, "duration", None)
        logger.info(
            "audio_transcribed",
            file=audio_path.name,
            language=language,
            duration=duration,
            chars=len(text),
        )
        return ExtractionResult(
            text=text,
            language=_language_code(language),
            confidence=_TRANSCRIPT_CONFIDENCE,
            duration_seconds=duration,
        )

    def get_provider_name(self) -> str:
        return "whisper"


# verbose_json reports language names ("english"), not codes.
_LANGUAGE_NAMES = {"english": "en", "spanish": "es", "french": "fr", "german": "de"}


def _language_code(language: str) -> str:
    lowered = language.lower()
    return _LANGUAGE_NAMES.get(lowered, lowered[:2] if len(lowered) > 2 else lowered)
