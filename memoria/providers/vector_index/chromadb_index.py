"""ChromaDB vector index adapter.

Wraps a ``chromadb`` client to implement :class:`IVectorIndex`.  The
collection uses cosine space, so ``similarity = 1 - distance``, the same
measure the brute-force scan computes.  Embeddings are always supplied by
the pipeline; the collection never embeds text itself.

Each stored chunk carries ``owner_id``, ``document_id``, ``content_type``
and ``created_ts`` (epoch seconds) metadata so owner scoping and the
search filters translate to a ChromaDB ``where`` clause.
"""

from __future__ import annotations

import os
from typing import Any

# Telemetry off before chromadb is imported.
os.environ.setdefault("ANONYMIZED_TELEMETRY", "False")

import chromadb  # noqa: E402
import structlog  # noqa: E402
from chromadb.utils.embedding_functions import register_embedding_function  # noqa: E402

from memoria.interfaces.vector_index import IVectorIndex, VectorHit  # noqa: E402
from memoria.models.document import Chunk, ContentType, Document  # noqa: E402
from memoria.models.search import DateRange  # noqa: E402
from memoria.utils.errors import StoreError  # noqa: E402

logger = structlog.get_logger(logger_name=__name__)


@register_embedding_function
class _PrecomputedEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Stops ChromaDB from loading its default ONNX model; we pass vectors in.

    ``name``/``get_config``/``build_from_config`` plus registration let
    ChromaDB persist the function with the collection and rebuild it when
    a persistent collection is reopened.
    """

    def __init__(self) -> None:
        pass

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError("memoria supplies pre-computed embeddings")

    @staticmethod
    def name() -> str:
        return "memoria_precomputed"

    def get_config(self) -> dict[str, Any]:
        return {}

    @staticmethod
    def build_from_config(config: dict[str, Any]) -> _PrecomputedEmbeddingFunction:
        return _PrecomputedEmbeddingFunction()


class ChromaDBVectorIndex(IVectorIndex):
    """Native vector index backed by a ChromaDB collection.

    Parameters
    ----------
    persist_directory:
        Where a ``PersistentClient`` stores data.  Ignored when *client*
        is given.
    collection_name:
        Collection holding chunk vectors.
    client:
        Pre-built client, e.g. ``chromadb.EphemeralClient()`` in tests.
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "memoria_chunks",
        client: Any | None = None,
        batch_size: int = 500,
    ) -> None:
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        try:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_PrecomputedEmbeddingFunction(),
            )
        except ValueError:
            # Collection persisted with another embedding function; vectors
            # are always supplied, so open it with whatever it recorded.
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        self._batch_size = batch_size

    async def add_chunks(self, document: Document, chunks: list[Chunk]) -> int:
        usable = [c for c in chunks if c.embedding and not c.embedding_degraded]
        if not usable:
            return 0

        metadata = {
            "owner_id": document.owner_id,
            "document_id": document.document_id,
            "content_type": document.content_type.value,
            "created_ts": document.created_at.timestamp(),
        }
        try:
            for start in range(0, len(usable), self._batch_size):
                batch = usable[start : start + self._batch_size]
                self._collection.upsert(
                    ids=[c.chunk_id for c in batch],
                    embeddings=[c.embedding for c in batch],
                    documents=[c.text for c in batch],
                    metadatas=[dict(metadata) for _ in batch],
                )
        except Exception as exc:
            raise StoreError(f"ChromaDB upsert failed: {exc}", provider_name="chromadb") from exc

        logger.info("chromadb_add_chunks", document_id=document.document_id, count=len(usable))
        return len(usable)

    async def delete_document(self, owner_id: str, document_id: str) -> int:
        where = {"$and": [{"owner_id": owner_id}, {"document_id": document_id}]}
        try:
            existing = self._collection.get(where=where)
            count = len(existing["ids"]) if existing["ids"] else 0
            if count:
                self._collection.delete(where=where)
        except Exception as exc:
            raise StoreError(f"ChromaDB delete failed: {exc}", provider_name="chromadb") from exc
        return count

    async def query(
        self,
        owner_id: str,
        embedding: list[float],
        top_k: int,
        min_similarity: float,
        content_type: ContentType | None = None,
        date_range: DateRange | None = None,
    ) -> list[VectorHit]:
        try:
            available = self._collection.count()
            if available == 0:
                return []
            results = self._collection.query(
                query_embeddings=[embedding],
                n_results=min(top_k, available),
                where=self._where(owner_id, content_type, date_range),
                include=["metadatas", "distances"],
            )
        except Exception as exc:
            raise StoreError(f"ChromaDB query failed: {exc}", provider_name="chromadb") from exc

        ids = results["ids"][0] if results["ids"] else []
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(ids)
        distances = results["distances"][0] if results["distances"] else [1.0] * len(ids)

        hits = [
            VectorHit(
                document_id=str(meta["document_id"]),
                chunk_id=chunk_id,
                similarity=1.0 - distance,
            )
            for chunk_id, meta, distance in zip(ids, metadatas, distances, strict=True)
            if 1.0 - distance > min_similarity
        ]
        hits.sort(key=lambda h: h.similarity, reverse=True)
        logger.debug("chromadb_query", owner_id=owner_id, raw=len(ids), kept=len(hits))
        return hits

    @staticmethod
    def _where(
        owner_id: str,
        content_type: ContentType | None,
        date_range: DateRange | None,
    ) -> dict[str, Any]:
        conditions: list[dict[str, Any]] = [{"owner_id": owner_id}]
        if content_type is not None:
            conditions.append({"content_type": content_type.value})
        if date_range is not None and date_range.start is not None:
            conditions.append({"created_ts": {"$gte": date_range.start.timestamp()}})
        if date_range is not None and date_range.end is not None:
            conditions.append({"created_ts": {"$lte": date_range.end.timestamp()}})
        if len(conditions) == 1:
            return conditions[0]
        return {"$and": conditions}
