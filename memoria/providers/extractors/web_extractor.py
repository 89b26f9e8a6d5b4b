"""Web page extractor using httpx and trafilatura.

Fetches a page with a hard timeout (30 s by default) and pulls the main
text out with trafilatura, dropping navigation and boilerplate.  A timeout
or connection error is a retryable :class:`ExtractionError`; an HTTP 4xx or
a page with too little readable text is not.
"""

from __future__ import annotations

import json

import httpx
import structlog
import trafilatura

from memoria.interfaces.content_extractor import ExtractionResult, IContentExtractor
from memoria.models.job import ExtractionPayload, WebJobPayload
from memoria.utils.errors import ExtractionError
from memoria.utils.text import detect_language

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_TIMEOUT = 30.0
# Pages yielding less readable text than this are treated as empty.
_MIN_PAGE_CHARS = 100
_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; memoria/0.1)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


class WebPageExtractor(IContentExtractor):
    """Page text extraction backed by httpx + trafilatura."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        min_chars: int = _MIN_PAGE_CHARS,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers=_DEFAULT_HEADERS,
            follow_redirects=True,
        )
        self._min_chars = min_chars

    async def extract(self, payload: ExtractionPayload) -> ExtractionResult:
        if not isinstance(payload, WebJobPayload):
            raise ExtractionError("Web extractor received a non-web job", retryable=False)
        url = payload.url

        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExtractionError(
                f"Timeout fetching {url}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ExtractionError(
                f"HTTP {status} for {url}",
                provider_name=self.get_provider_name(),
                retryable=status >= 500 or status == 429,
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(
                f"HTTP error fetching {url}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        html = response.text
        text = trafilatura.extract(html, include_comments=False, include_tables=True) or ""
        if len(text.strip()) < self._min_chars:
            raise ExtractionError(
                f"Insufficient content extracted from {url}",
                provider_name=self.get_provider_name(),
                retryable=False,
            )

        title = self._extract_title(html, url)
        logger.info("web_page_extracted", url=url, title=title, chars=len(text))
        return ExtractionResult(text=text, title=title, language=detect_language(text))

    @staticmethod
    def _extract_title(html: str, url: str) -> str | None:
        metadata = trafilatura.extract(html, output_format="json", with_metadata=True)
        if not metadata:
            return None
        try:
            return json.loads(metadata).get("title") or None
        except json.JSONDecodeError:
            logger.debug("web_metadata_parse_failed", url=url)
            return None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def get_provider_name(self) -> str:
        return "web"
