"""Abstract base class for an optional native vector index.

When no index is configured the retrieval engine scans the owner's chunks
and computes cosine similarity itself.  Both paths apply the same
threshold and ordering, so an index is purely a performance choice.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict

from memoria.models.document import Chunk, ContentType, Document
from memoria.models.search import DateRange


class VectorHit(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_id: str
    similarity: float


# Concrete implementation: ChromaDBVectorIndex (memoria/providers/vector_index/)
class IVectorIndex(ABC):
    """Contract for a native nearest-neighbour index over chunk embeddings."""

    @abstractmethod
    async def add_chunks(self, document: Document, chunks: list[Chunk]) -> int:
        """Index *chunks* of *document*.  Degraded chunks are skipped.

        Returns
        -------
        int
            Number of chunks indexed.
        """

    @abstractmethod
    async def delete_document(self, owner_id: str, document_id: str) -> int:
        """Remove every indexed chunk of a document.  Returns the count removed."""

    @abstractmethod
    async def query(
        self,
        owner_id: str,
        embedding: list[float],
        top_k: int,
        min_similarity: float,
        content_type: ContentType | None = None,
        date_range: DateRange | None = None,
    ) -> list[VectorHit]:
        """Return up to *top_k* hits with cosine similarity strictly above
        *min_similarity*, ordered by similarity descending.

        Raises
        ------
        memoria.utils.errors.StoreError
            If the index query fails.
        """
