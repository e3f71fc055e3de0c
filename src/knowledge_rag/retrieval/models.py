"""Domain models for vector-store I/O, search results and assembled context."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from pydantic import BaseModel, Field


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"source"``, ``"category"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def not_equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)


class UpsertItem(BaseModel):
    """One chunk handed to the store for embedding and persistence."""

    id: str
    text: str
    category: str = "general"
    source: str = "manual"
    metadata: dict[str, Any] = Field(default_factory=dict)
    ttl: timedelta | None = None


class UpsertResult(BaseModel):
    """In-band result of a batched upsert; stores report errors here instead of raising."""

    inserted: int = 0
    errors: list[str] = Field(default_factory=list)


class SearchResult(BaseModel):
    """A single ranked passage returned by a similarity search."""

    text: str
    score: float
    category: str | None = None
    source: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def title(self) -> str:
        return self.metadata.get("document_title") or self.source or "Document"

    def __str__(self) -> str:  # noqa: D105
        return f"[{self.title} {self.score:.2f}] {self.text[:120]}…"


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult] = Field(default_factory=list)
    error: str | None = None

    @property
    def count(self) -> int:
        return len(self.results)


class ContextSource(BaseModel):
    title: str | None = None
    category: str | None = None
    score: float | None = None


class ContextResult(BaseModel):
    """Numbered context block produced by :meth:`SemanticRetriever.generate_context`."""

    context: str
    sources: list[ContextSource] = Field(default_factory=list)
    count: int = 0


class ContextStats(BaseModel):
    chunks_found: int = 0
    categories: list[str] = Field(default_factory=list)
    avg_score: float = 0.0
    truncated: bool = False


class RAGContext(BaseModel):
    """Agent-facing retrieval outcome.

    ``has_context`` is ``False`` with a ``reason`` of ``rag_disabled``,
    ``not_needed``, ``no_matches`` or ``error`` when nothing is returned.
    """

    has_context: bool
    reason: str | None = None
    formatted_context: str = ""
    sources: list[ContextSource] = Field(default_factory=list)
    stats: ContextStats | None = None
    duration_ms: float = 0.0
    cached: bool = False
    error: str | None = None


class SystemPrompt(BaseModel):
    """A system prompt with retrieved context appended when any was found."""

    system_prompt: str
    rag_used: bool = False
    reason: str | None = None
    sources: list[ContextSource] = Field(default_factory=list)
    stats: ContextStats | None = None
