"""Custom exception hierarchy for Memoria.

All application exceptions inherit from :class:`MemoriaError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "tesseract", "sqlite") caused the failure,
and a ``retryable`` flag the job queue consults before scheduling another
attempt.

    MemoriaError  (base -- catch-all for any memoria error)
    +-- ExtractionError     (unsupported mime type, corrupt file, too little text)
    +-- ProviderError       (embedding / completion / classification calls)
    +-- ValidationError     (intake rejected before any job exists)
    +-- NotFoundError       (unknown document, or owned by someone else)
    +-- ConflictError       (conditional write guard did not match)
    +-- StoreError          (persistence layer failure)
    +-- RetrievalError      (search failed, surfaced to the caller)
    +-- PipelineError       (queue misuse: unknown job type, not started)
    +-- ConfigurationError  (startup / invalid provider config)
"""


class MemoriaError(Exception):
    """Base exception for all Memoria errors.

    Every subclass carries a human-readable ``message``, an optional
    ``provider_name`` identifying which external service triggered the
    error, and a ``retryable`` hint.  The ``__str__`` method prefixes the
    provider name in brackets, e.g. ``[openai] Rate limit exceeded``.
    """

    default_message = "An unexpected error occurred"
    default_retryable = False

    def __init__(
        self,
        message: str | None = None,
        provider_name: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        self._message = message or self.default_message
        self._provider_name = provider_name
        self._retryable = self.default_retryable if retryable is None else retryable
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def retryable(self) -> bool:
        return self._retryable

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Pipeline stage errors
# ---------------------------------------------------------------------------

class ExtractionError(MemoriaError):
    """Raised when a content extractor cannot produce usable text.

    Transient causes (a network timeout while fetching a page, a Whisper
    API hiccup) are retryable.  Unsupported or corrupt input and results
    below the minimum length are raised with ``retryable=False``.
    """

    default_message = "Content extraction failed"
    default_retryable = True


class ProviderError(MemoriaError):
    """Raised when an embedding, completion or classification call fails."""

    default_message = "Provider call failed"
    default_retryable = True


# ---------------------------------------------------------------------------
# Caller-facing errors
# ---------------------------------------------------------------------------

class ValidationError(MemoriaError):
    """Raised when intake input is missing or malformed.  Never retried."""

    default_message = "Invalid input"


class NotFoundError(MemoriaError):
    """Raised for a document id that does not exist or is not owned by the caller."""

    default_message = "Document not found"


class ConflictError(MemoriaError):
    """Raised when a guarded update finds the document in an unexpected state."""

    default_message = "Document is not in the expected state"


class RetrievalError(MemoriaError):
    """Raised when a search cannot be completed (store-level failure)."""

    default_message = "Search failed"


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------

class StoreError(MemoriaError):
    """Raised when the document store or vector index fails."""

    default_message = "Document store operation failed"
    default_retryable = True


class PipelineError(MemoriaError):
    """Raised when the job queue is misused (unknown job type, not started)."""

    default_message = "Pipeline operation failed"


class ConfigurationError(MemoriaError):
    """Raised when configuration is invalid or missing at startup."""

    default_message = "Invalid or missing configuration"
