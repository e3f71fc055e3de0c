"""
Retrieval — vector search, merging, and prompt-context assembly.

This module wraps the vector store behind a clean interface so that
callers never need to know which DB is backing retrieval.

Public surface
--------------
- :class:`SemanticRetriever` — thresholded single-category search.
- :class:`ContextBuilder` — multi-category context for agent prompts.
- :class:`VectorStoreBase` — abstract backend (subclass for pgvector, etc.).
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`SearchResult`, :class:`SearchResponse`, :class:`RAGContext`,
  :class:`MetadataFilter` — data models.
"""

from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.cache import QueryCache
from knowledge_rag.retrieval.context import ContextBuilder
from knowledge_rag.retrieval.models import (
    ContextResult,
    MetadataFilter,
    RAGContext,
    SearchResponse,
    SearchResult,
    SystemPrompt,
    UpsertItem,
    UpsertResult,
)
from knowledge_rag.retrieval.reranker import merge_ranked
from knowledge_rag.retrieval.retriever import SemanticRetriever

__all__ = [
    "ChromaVectorStore",
    "ContextBuilder",
    "ContextResult",
    "MetadataFilter",
    "QueryCache",
    "RAGContext",
    "SearchResponse",
    "SearchResult",
    "SemanticRetriever",
    "SystemPrompt",
    "UpsertItem",
    "UpsertResult",
    "VectorStoreBase",
    "merge_ranked",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from knowledge_rag.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
