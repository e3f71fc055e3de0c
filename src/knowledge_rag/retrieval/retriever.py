"""Semantic retriever — thresholded similarity search over the vector store.

This module is the **primary public interface** for single-category
retrieval.  It never raises: an unavailable store or a failed query
yields an empty :class:`SearchResponse` carrying the error.

Usage::

    from knowledge_rag.retrieval.retriever import SemanticRetriever

    retriever = SemanticRetriever(store)
    response  = await retriever.search("gluten free bread", category="menu")
    for r in response.results:
        print(r)
"""

from __future__ import annotations

import logging
from typing import Any

from knowledge_rag.config import Settings, settings
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.models import (
    ContextResult,
    ContextSource,
    MetadataFilter,
    SearchResponse,
    SearchResult,
)

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


class SemanticRetriever:
    """High-level retriever that wraps any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.  When *None*, a default
        :class:`~knowledge_rag.retrieval.chroma_store.ChromaVectorStore`
        is created from the global settings.
    config:
        Settings providing the default ``search_limit`` and
        ``search_threshold``.
    """

    def __init__(self, store: VectorStoreBase | None = None, *, config: Settings | None = None) -> None:
        if store is None:
            from knowledge_rag.retrieval.chroma_store import ChromaVectorStore

            store = ChromaVectorStore()
        self._store = store
        self.config = config or settings

    @property
    def store(self) -> VectorStoreBase:
        return self._store

    # -- public API -----------------------------------------------------------

    async def search(
        self,
        query: str,
        *,
        category: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
        filters: list[MetadataFilter] | None = None,
    ) -> SearchResponse:
        """Run a similarity search and return results scoring at least *threshold*.

        Parameters
        ----------
        query:
            Natural-language query string.
        category:
            Restrict results to one category.
        limit:
            Maximum number of results (defaults to ``search_limit``).
        threshold:
            Minimum similarity score (defaults to ``search_threshold``).
        filters:
            Optional metadata filters forwarded to the vector store.

        Returns
        -------
        SearchResponse
            Results sorted by descending score.
        """
        limit = self.config.search_limit if limit is None else limit
        threshold = self.config.search_threshold if threshold is None else threshold

        query = str(query or "")
        if not self._store.is_ready():
            return SearchResponse(query=query, error="Vector store not ready")
        if not query or not query.strip() or limit <= 0:
            return SearchResponse(query=query)

        try:
            rows = await self._store.search(
                query, k=limit, category=category, threshold=threshold, filters=filters
            )
        except Exception as exc:
            logger.error("Search failed for %r: %s", query[:80], exc)
            return SearchResponse(query=query, error=str(exc) or type(exc).__name__)

        results = [r for r in self._to_results(rows) if r.score >= threshold]
        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug("Search %r (category=%s) returned %d results", query[:80], category, len(results))
        return SearchResponse(query=query, results=results[:limit])

    async def generate_context(
        self,
        query: str,
        *,
        category: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> ContextResult | None:
        """Format search hits as numbered ``[n] title:`` blocks; ``None`` when nothing matches."""
        response = await self.search(query, category=category, limit=limit, threshold=threshold)
        if not response.results:
            return None

        parts = [f"[{i}] {r.title}:\n{r.text}" for i, r in enumerate(response.results, start=1)]
        return ContextResult(
            context=CONTEXT_SEPARATOR.join(parts),
            sources=[
                ContextSource(title=r.title, category=r.category, score=r.score)
                for r in response.results
            ],
            count=response.count,
        )

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _to_results(rows: list[dict[str, Any]]) -> list[SearchResult]:
        results: list[SearchResult] = []
        for row in rows:
            meta = dict(row.get("metadata") or {})
            meta.setdefault("id", row.get("id"))
            results.append(
                SearchResult(
                    text=row.get("content") or "",
                    score=float(row.get("score") or 0.0),
                    category=row.get("category") or meta.get("category"),
                    source=row.get("source") or meta.get("source"),
                    metadata=meta,
                )
            )
        return results
