"""Native vector index.  ChromaDB (cosine space) is the only implementation."""

from memoria.providers.vector_index.chromadb_index import ChromaDBVectorIndex

__all__ = ["ChromaDBVectorIndex"]
