"""Dict-backed document store.

Keeps documents in process memory under an ``asyncio.Lock``.  Each
mutation checks its guard and swaps in a new frozen :class:`Document`
while holding the lock, which gives the same all-or-nothing behaviour the
SQLite store gets from a single ``UPDATE``.  Used by the test suite and by
the CLI's ``--memory`` mode.

Lexical scoring is the fraction of distinct query terms present in the
document, so scores fall in ``(0, 1]``.
"""

from __future__ import annotations

import asyncio
import re
from collections import Counter
from collections.abc import Callable, Collection
from datetime import datetime

import structlog

from memoria.interfaces.document_store import IDocumentStore
from memoria.models.document import (
    Chunk,
    ContentType,
    Document,
    DocumentMetadata,
    ProcessingStatus,
    utc_now,
)
from memoria.models.search import DateRange
from memoria.utils.errors import ConflictError, NotFoundError

logger = structlog.get_logger(logger_name=__name__)

_TOKEN_RE = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _matches(
    document: Document,
    content_type: ContentType | None,
    date_range: DateRange | None,
) -> bool:
    if content_type is not None and document.content_type != content_type:
        return False
    if date_range is not None and not date_range.contains(document.created_at):
        return False
    return True


class InMemoryDocumentStore(IDocumentStore):
    """In-process :class:`IDocumentStore` implementation."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._lock = asyncio.Lock()

    def _lookup(self, owner_id: str, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None or document.owner_id != owner_id:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def _update(
        self,
        owner_id: str,
        document_id: str,
        guard: Callable[[Document], bool],
        changes: Callable[[Document], dict],
        conflict: str,
    ) -> Document:
        async with self._lock:
            current = self._lookup(owner_id, document_id)
            if not guard(current):
                raise ConflictError(f"{conflict} (document {document_id} is {current.processing_status.value})")
            updated = current.model_copy(update={**changes(current), "updated_at": utc_now()})
            # model_copy skips validation; re-validate so invariants hold.
            updated = Document.model_validate(updated.model_dump())
            self._documents[document_id] = updated
            return updated

    # -- CRUD ----------------------------------------------------------------

    async def create_document(self, document: Document) -> Document:
        async with self._lock:
            if document.document_id in self._documents:
                raise ConflictError(f"Document {document.document_id} already exists")
            self._documents[document.document_id] = document
        logger.debug("document_created", document_id=document.document_id, store="memory")
        return document

    async def get_document(self, owner_id: str, document_id: str) -> Document:
        return self._lookup(owner_id, document_id)

    async def get_documents(self, owner_id: str, document_ids: Collection[str]) -> dict[str, Document]:
        found: dict[str, Document] = {}
        for document_id in document_ids:
            document = self._documents.get(document_id)
            if document is not None and document.owner_id == owner_id:
                found[document_id] = document
        return found

    async def list_documents(
        self,
        owner_id: str,
        content_type: ContentType | None = None,
        tags: Collection[str] | None = None,
        date_range: DateRange | None = None,
        limit: int = 50,
        processed_only: bool = False,
    ) -> list[Document]:
        wanted_tags = set(tags or ())
        documents = [
            d
            for d in self._documents.values()
            if d.owner_id == owner_id
            and _matches(d, content_type, date_range)
            and (not wanted_tags or wanted_tags.intersection(d.tags))
            and (d.is_processed or not processed_only)
        ]
        documents.sort(key=lambda d: d.created_at, reverse=True)
        return documents[:limit]

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        async with self._lock:
            self._lookup(owner_id, document_id)
            del self._documents[document_id]

    # -- Guarded stage writes ------------------------------------------------

    async def transition_status(
        self,
        owner_id: str,
        document_id: str,
        expected: Collection[ProcessingStatus],
        new_status: ProcessingStatus,
    ) -> Document:
        allowed = set(expected)
        return await self._update(
            owner_id,
            document_id,
            guard=lambda d: d.processing_status in allowed,
            changes=lambda d: {
                "processing_status": new_status,
                "processing_error": None,
                "is_processed": d.is_processed and new_status == ProcessingStatus.COMPLETED,
            },
            conflict=f"Cannot move to {new_status.value}",
        )

    async def save_extraction(
        self,
        owner_id: str,
        document_id: str,
        content: str,
        metadata: DocumentMetadata,
        title: str | None = None,
    ) -> Document:
        return await self._update(
            owner_id,
            document_id,
            guard=lambda d: d.processing_status == ProcessingStatus.PROCESSING,
            changes=lambda d: {
                "content": content,
                "metadata": metadata,
                "title": title or d.title,
            },
            conflict="Extraction can only be saved while processing",
        )

    async def replace_chunks(
        self,
        owner_id: str,
        document_id: str,
        chunks: list[Chunk],
        indexed_at: datetime,
    ) -> Document:
        return await self._update(
            owner_id,
            document_id,
            guard=lambda d: d.processing_status != ProcessingStatus.FAILED,
            changes=lambda d: {
                "chunks": list(chunks),
                "processing_status": ProcessingStatus.COMPLETED,
                "processing_error": None,
                "is_processed": True,
                "indexed_at": indexed_at,
            },
            conflict="Cannot index a failed document",
        )

    async def mark_failed(self, owner_id: str, document_id: str, error: str) -> Document:
        return await self._update(
            owner_id,
            document_id,
            guard=lambda d: True,
            changes=lambda d: {
                "processing_status": ProcessingStatus.FAILED,
                "processing_error": error or "Processing failed",
                "is_processed": False,
            },
            conflict="",
        )

    async def touch_documents(self, owner_id: str, document_ids: Collection[str], at: datetime) -> None:
        async with self._lock:
            for document_id in document_ids:
                document = self._documents.get(document_id)
                if document is not None and document.owner_id == owner_id:
                    self._documents[document_id] = document.model_copy(update={"last_accessed_at": at})

    # -- Retrieval primitives ------------------------------------------------

    async def full_text_search(
        self,
        owner_id: str,
        query: str,
        content_type: ContentType | None = None,
        date_range: DateRange | None = None,
        limit: int = 20,
    ) -> list[tuple[Document, float]]:
        terms = set(tokenize(query))
        if not terms:
            return []

        scored: list[tuple[Document, float, int]] = []
        for document in self._documents.values():
            if document.owner_id != owner_id or not document.is_processed:
                continue
            if not _matches(document, content_type, date_range):
                continue
            counts = Counter(tokenize(f"{document.title} {document.content}"))
            present = [t for t in terms if counts[t]]
            if not present:
                continue
            frequency = sum(counts[t] for t in present)
            scored.append((document, len(present) / len(terms), frequency))

        scored.sort(key=lambda item: (item[1], item[2]), reverse=True)
        return [(document, score) for document, score, _ in scored[:limit]]

    async def scan_chunks(
        self,
        owner_id: str,
        content_type: ContentType | None = None,
        date_range: DateRange | None = None,
    ) -> list[tuple[Document, Chunk]]:
        return [
            (document, chunk)
            for document in self._documents.values()
            if document.owner_id == owner_id
            and document.is_processed
            and _matches(document, content_type, date_range)
            for chunk in document.chunks
        ]
