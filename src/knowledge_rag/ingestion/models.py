"""Domain models for documents, chunks, and ingestion results."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChunkStrategy(str, Enum):
    """Closed set of chunking strategies.

    ``SEMANTIC`` → ``PARAGRAPH`` → ``SENTENCE`` → ``PHRASE`` form the
    fallback cascade, in that order.  ``FIXED`` is an independent sliding
    window, ``SINGLE`` marks the whole-document shortcut and ``AI`` marks
    chunks supplied verbatim by an enhancer.
    """

    SEMANTIC = "semantic"
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    PHRASE = "phrase"
    FIXED = "fixed"
    SINGLE = "single"
    AI = "ai"


class LoadedDocument(BaseModel):
    """A source document after format-specific extraction.

    Attributes
    ----------
    content:
        Extracted plain text.
    metadata:
        Loader metadata (``format``, ``title``, ``file_name``, …).
    content_hash:
        Content-derived digest used for dedup and chunk back-reference.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    content_hash: str = ""

    @property
    def format(self) -> str | None:
        return self.metadata.get("format")

    @property
    def title(self) -> str | None:
        return self.metadata.get("title") or self.metadata.get("file_name")


class Chunk(BaseModel):
    """A bounded text fragment ready for embedding.

    Chunks are immutable; the orchestrator derives TTL-stamped copies with
    :meth:`pydantic.BaseModel.model_copy` rather than mutating them.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    index: int = 0
    hash: str
    char_start: int = 0
    char_end: int = 0
    strategy: ChunkStrategy
    category: str = "general"
    source_id: str = "manual"
    document_hash: str | None = None
    ttl: timedelta | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.text)


class IngestOptions(BaseModel):
    """Per-document ingestion options."""

    title: str | None = None
    category: str = "general"
    source_id: str = "manual"
    metadata: dict[str, Any] = Field(default_factory=dict)
    chunk_strategy: ChunkStrategy | None = None
    file_name: str | None = None
    skip_enhancement: bool = False


class IngestRequest(BaseModel):
    """One unit of work for :meth:`IngestionPipeline.ingest_batch`.

    ``index`` is echoed back on the result so callers can restore
    submission order (batch results arrive in completion order).
    """

    source: str | Path | bytes
    options: IngestOptions = Field(default_factory=IngestOptions)
    index: int | None = None

    def describe(self) -> str:
        if isinstance(self.source, bytes):
            return self.options.file_name or "buffer"
        return str(self.source)


class JobStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class DocumentInfo(BaseModel):
    title: str | None = None
    content_length: int = 0
    format: str | None = None
    hash: str | None = None


class ChunkCounts(BaseModel):
    total: int = 0
    inserted: int = 0
    strategy: ChunkStrategy | None = None


class EnhancementReport(BaseModel):
    enabled: bool = False
    summary: bool = False
    entities: int = 0
    ai_chunking: bool = False
    processing_time_ms: float | None = None


class IngestResult(BaseModel):
    """Outcome of ingesting one document (the ingestion job record)."""

    ok: bool
    job_id: str
    index: int | None = None
    status: JobStatus = JobStatus.FAILED
    error: str | None = None
    source: str | None = None
    category: str | None = None
    document: DocumentInfo | None = None
    chunks: ChunkCounts = Field(default_factory=ChunkCounts)
    enhancement: EnhancementReport = Field(default_factory=EnhancementReport)
    duration_ms: float = 0.0
    errors: list[str] = Field(default_factory=list)


class BatchIngestResult(BaseModel):
    """Aggregate outcome of a batch; ``documents`` is in completion order."""

    ok: bool = True
    batch_id: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    documents: list[IngestResult] = Field(default_factory=list)
    duration_ms: float = 0.0
    error: str | None = None

    def ordered(self) -> list[IngestResult]:
        """Return per-document results sorted by their request ``index``."""
        return sorted(self.documents, key=lambda r: (r.index is None, r.index or 0))


class ReindexResult(BaseModel):
    ok: bool = True
    invalidated: int = 0
    message: str = ""
