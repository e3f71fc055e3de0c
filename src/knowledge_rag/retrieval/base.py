"""Abstract base class for vector-store backends.

Adding a new backend (pgvector, Qdrant, Pinecone …) only requires
subclassing :class:`VectorStoreBase` and implementing the abstract
methods.  The ingestion pipeline and the retrieval stack are
backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from knowledge_rag.retrieval.models import MetadataFilter, UpsertItem, UpsertResult


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Every I/O method is a coroutine; backends with blocking clients should
    off-load to a worker thread.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def upsert_batch(self, items: list[UpsertItem]) -> UpsertResult:
        """Embed and persist *items*.

        Must not raise for per-item failures: report them in
        :attr:`UpsertResult.errors` and count only what was stored.
        Each item's ``ttl`` (``None`` = keep forever) is applied here.
        """
        ...

    @abstractmethod
    async def search(
        self,
        query: str,
        *,
        k: int = 5,
        category: str | None = None,
        threshold: float = 0.0,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        """Return up to *k* rows ranked by similarity to *query*.

        Each row dict **must** contain at least:

        * ``"id"`` – chunk identifier
        * ``"content"`` – the chunk text
        * ``"score"`` – similarity score (higher = more similar)
        * ``"category"`` / ``"source"`` – provenance
        * ``"metadata"`` – associated metadata dict

        Parameters
        ----------
        query:
            Natural-language query; the backend embeds it.
        k:
            Number of results to return.
        category:
            Restrict to one category when given.
        threshold:
            Minimum similarity score.
        filters:
            Optional extra metadata filters applied server-side.

        Raises
        ------
        StoreUnavailableError
            When the backend is not connected.
        """
        ...

    @abstractmethod
    async def invalidate_by_source(self, source: str) -> int:
        """Drop every chunk tagged with *source*; return how many were removed."""
        ...

    @abstractmethod
    def is_ready(self) -> bool:
        """Return ``True`` when the backend is connected and usable."""
        ...

    # -- optional overrides ---------------------------------------------------

    def health_check(self) -> bool:
        """Probe the backend.  Defaults to :meth:`is_ready`."""
        return self.is_ready()

    async def get_stats(self) -> dict[str, Any]:
        return {"collection": self.collection_name, "ready": self.is_ready()}
