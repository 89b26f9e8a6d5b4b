"""Content extractors, one per extraction job type, plus the registry that routes to them."""

from memoria.providers.extractors.audio_extractor import WhisperAudioExtractor
from memoria.providers.extractors.document_extractor import FileDocumentExtractor
from memoria.providers.extractors.image_extractor import TesseractImageExtractor
from memoria.providers.extractors.registry import ExtractorRegistry
from memoria.providers.extractors.web_extractor import WebPageExtractor

__all__ = [
    "ExtractorRegistry",
    "FileDocumentExtractor",
    "TesseractImageExtractor",
    "WebPageExtractor",
    "WhisperAudioExtractor",
]
