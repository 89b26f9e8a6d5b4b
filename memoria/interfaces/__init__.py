"""Abstract interfaces for every external collaborator.

Concrete adapters live in :mod:`memoria.providers`; services and the
pipeline depend only on these ABCs and receive implementations through
their constructors.
"""

from memoria.interfaces.content_extractor import ExtractionResult, IContentExtractor
from memoria.interfaces.document_store import IDocumentStore
from memoria.interfaces.embedding_provider import IEmbeddingProvider
from memoria.interfaces.llm_provider import ILLMProvider
from memoria.interfaces.query_classifier import IQueryClassifier
from memoria.interfaces.vector_index import IVectorIndex, VectorHit

__all__ = [
    "ExtractionResult",
    "IContentExtractor",
    "IDocumentStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IQueryClassifier",
    "IVectorIndex",
    "VectorHit",
]
