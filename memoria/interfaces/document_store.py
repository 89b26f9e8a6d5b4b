"""Abstract base class for the document store.

The store is the only shared mutable state in the system.  Every mutation
is one conditional write guarded by ``(owner_id, document_id)`` and, where
it matters, the expected processing status, so stage workers never do a
read-modify-write over a document another worker might touch.

Every read is owner-scoped.  A document owned by someone else is
indistinguishable from a missing one (:class:`NotFoundError`).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection
from datetime import datetime

from memoria.models.document import (
    Chunk,
    ContentType,
    Document,
    DocumentMetadata,
    ProcessingStatus,
)
from memoria.models.search import DateRange


# Concrete implementations (memoria/providers/store/):
#   SQLiteDocumentStore    -- aiosqlite with an FTS5 index for lexical search
#   InMemoryDocumentStore  -- dict-backed, used by tests and the CLI --memory mode
class IDocumentStore(ABC):
    """Typed read/write operations shared by the pipeline and retrieval."""

    async def initialize(self) -> None:
        """Create tables / open connections.  No-op by default."""

    async def close(self) -> None:
        """Release connections.  No-op by default."""

    # -- CRUD ----------------------------------------------------------------

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        """Insert a new document.

        Raises
        ------
        memoria.utils.errors.ConflictError
            If the document id already exists.
        """

    @abstractmethod
    async def get_document(self, owner_id: str, document_id: str) -> Document:
        """Return a document.

        Raises
        ------
        memoria.utils.errors.NotFoundError
            If it does not exist or belongs to another owner.
        """

    @abstractmethod
    async def get_documents(self, owner_id: str, document_ids: Collection[str]) -> dict[str, Document]:
        """Return the owner's documents among *document_ids*, keyed by id.  Missing ids are omitted."""

    @abstractmethod
    async def list_documents(
        self,
        owner_id: str,
        content_type: ContentType | None = None,
        tags: Collection[str] | None = None,
        date_range: DateRange | None = None,
        limit: int = 50,
        processed_only: bool = False,
    ) -> list[Document]:
        """Return the owner's documents, newest first, matching every given filter.

        A document matches *tags* when it carries at least one of them.
        *processed_only* keeps searchable documents only, applied before
        *limit*.
        """

    @abstractmethod
    async def delete_document(self, owner_id: str, document_id: str) -> None:
        """Delete a document.  Raises NotFoundError when absent."""

    # -- Guarded stage writes ------------------------------------------------

    @abstractmethod
    async def transition_status(
        self,
        owner_id: str,
        document_id: str,
        expected: Collection[ProcessingStatus],
        new_status: ProcessingStatus,
    ) -> Document:
        """Move a document to *new_status* iff its status is in *expected*.

        Clears ``processing_error``.  Raises ConflictError when the guard
        does not match and NotFoundError when the document is absent.
        """

    @abstractmethod
    async def save_extraction(
        self,
        owner_id: str,
        document_id: str,
        content: str,
        metadata: DocumentMetadata,
        title: str | None = None,
    ) -> Document:
        """Write extracted text and metadata to a ``processing`` document.

        The status stays ``processing``; the embedding stage completes it.
        """

    @abstractmethod
    async def replace_chunks(
        self,
        owner_id: str,
        document_id: str,
        chunks: list[Chunk],
        indexed_at: datetime,
    ) -> Document:
        """Replace the whole chunk list and mark the document queryable.

        Sets ``processing_status=completed``, ``is_processed=True`` and
        ``indexed_at`` in the same write.  Refused (ConflictError) for a
        ``failed`` document.
        """

    @abstractmethod
    async def mark_failed(self, owner_id: str, document_id: str, error: str) -> Document:
        """Mark a document failed with *error*.

        Content and chunks are left exactly as they were; ``is_processed``
        is cleared so the document drops out of retrieval.
        """

    @abstractmethod
    async def touch_documents(self, owner_id: str, document_ids: Collection[str], at: datetime) -> None:
        """Set ``last_accessed_at`` on the given documents."""

    # -- Retrieval primitives ------------------------------------------------

    @abstractmethod
    async def full_text_search(
        self,
        owner_id: str,
        query: str,
        content_type: ContentType | None = None,
        date_range: DateRange | None = None,
        limit: int = 20,
    ) -> list[tuple[Document, float]]:
        """Full-text match of *query* against processed documents' content.

        Returns ``(document, score)`` pairs, best first.  Higher is better;
        the score scale is store-specific.
        """

    @abstractmethod
    async def scan_chunks(
        self,
        owner_id: str,
        content_type: ContentType | None = None,
        date_range: DateRange | None = None,
    ) -> list[tuple[Document, Chunk]]:
        """Return every chunk of the owner's processed documents, with its document."""
