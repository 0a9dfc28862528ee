"""Knowledge base embeddings and retrieval."""

from .embeddings import (
    EmbeddingError,
    EmbeddingResult,
    EmbeddingService,
    EmbeddingStats,
    build_embedding_service,
    embed_all_entries,
    embedding_coverage,
)
from .retrieval import KnowledgeAnswer, KnowledgeMatch, KnowledgeRetrievalEngine

__all__ = [
    "EmbeddingError",
    "EmbeddingResult",
    "EmbeddingService",
    "EmbeddingStats",
    "KnowledgeAnswer",
    "KnowledgeMatch",
    "KnowledgeRetrievalEngine",
    "build_embedding_service",
    "embed_all_entries",
    "embedding_coverage",
]
