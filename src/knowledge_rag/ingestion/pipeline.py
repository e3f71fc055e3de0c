"""Ingestion orchestrator — load → enhance → chunk → embed/store.

:class:`IngestionPipeline` processes one document at a time
(:meth:`~IngestionPipeline.ingest_document`) or many under a
concurrency cap (:meth:`~IngestionPipeline.ingest_batch`).  Each
document's stages run strictly in order; documents in a batch run
concurrently and their results are collected as they finish.

Failures are isolated per document: nothing raises past
``ingest_document``, and a failed document never cancels its siblings.

Usage::

    pipeline = IngestionPipeline(store=ChromaVectorStore())
    result = await pipeline.ingest_document("docs/menu.md", IngestOptions(category="menu"))
    print(result.chunks.inserted, result.status)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from knowledge_rag.config import Settings, settings
from knowledge_rag.exceptions import LoadError
from knowledge_rag.ingestion.chunker import chunk_text, hash_text
from knowledge_rag.ingestion.enhancer import EnhancementOutcome, EnhancerBase, try_enhance
from knowledge_rag.ingestion.loader import DocumentLoaderBase, FileDocumentLoader, content_hash
from knowledge_rag.ingestion.models import (
    BatchIngestResult,
    Chunk,
    ChunkCounts,
    ChunkStrategy,
    DocumentInfo,
    EnhancementReport,
    IngestOptions,
    IngestRequest,
    IngestResult,
    JobStatus,
    LoadedDocument,
    ReindexResult,
)
from knowledge_rag.ingestion.policy import CategoryPolicy, detect_category_from_path
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.models import UpsertItem

logger = logging.getLogger(__name__)


def _generate_job_id(prefix: str = "ingest") -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _describe_source(source: str | Path | bytes, options: IngestOptions) -> str:
    if isinstance(source, bytes):
        return options.file_name or "buffer"
    return str(source)


@dataclass
class PipelineState:
    """Counters shared by every document task of one pipeline.

    Only mutated from the event-loop thread, so plain increments are safe.
    """

    in_flight: int = 0
    last_run: str | None = None
    last_error: str | None = None
    total_processed: int = 0
    total_chunks: int = 0
    total_errors: int = 0
    by_category: dict[str, int] = field(default_factory=dict)

    @property
    def is_processing(self) -> bool:
        return self.in_flight > 0

    def record_success(self, category: str, chunk_count: int) -> None:
        self.last_run = datetime.now(timezone.utc).isoformat()
        self.total_processed += 1
        self.total_chunks += chunk_count
        self.by_category[category] = self.by_category.get(category, 0) + 1

    def record_failure(self, error: str) -> None:
        self.last_error = error
        self.total_errors += 1

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_chunks": self.total_chunks,
            "total_errors": self.total_errors,
            "by_category": dict(self.by_category),
        }


class IngestionPipeline:
    """Coordinates loaders, the optional enhancer, the chunker and the store.

    Parameters
    ----------
    store:
        Vector store receiving the chunks; its readiness gates every entry point.
    loader:
        Document loader (defaults to :class:`FileDocumentLoader`).
    enhancer:
        Optional AI enhancer; failures fall back to the chunker.
    config:
        Settings instance (defaults to the module-level ``settings``).
    category_policy:
        TTL policy (defaults to :meth:`CategoryPolicy.from_settings`).
    """

    def __init__(
        self,
        store: VectorStoreBase,
        loader: DocumentLoaderBase | None = None,
        enhancer: EnhancerBase | None = None,
        *,
        config: Settings | None = None,
        category_policy: CategoryPolicy | None = None,
    ) -> None:
        self.config = config or settings
        self._store = store
        self._loader = loader or FileDocumentLoader(max_file_size_bytes=self.config.max_file_size_bytes)
        self._enhancer = enhancer
        self.policy = category_policy or CategoryPolicy.from_settings(self.config)
        self.state = PipelineState()

    # -- public API -----------------------------------------------------------

    async def ingest_document(
        self,
        source: str | Path | bytes,
        options: IngestOptions | None = None,
        *,
        index: int | None = None,
    ) -> IngestResult:
        """Ingest one document; never raises.

        Parameters
        ----------
        source:
            File path, URL, or raw bytes (``options.file_name`` required).
        options:
            Title, category, source id, extra metadata, strategy override.
        index:
            Caller-supplied position echoed on the result.
        """
        options = options or IngestOptions()
        return await self._execute(
            lambda: self._load(source, options),
            options,
            label=_describe_source(source, options),
            index=index,
        )

    async def ingest_text(
        self,
        text: str,
        options: IngestOptions | None = None,
        *,
        index: int | None = None,
    ) -> IngestResult:
        """Ingest already-extracted text without going through a loader."""
        options = options or IngestOptions()

        async def wrap() -> LoadedDocument:
            if not isinstance(text, str):
                raise LoadError("Invalid source type. Expected text")
            meta = {"format": "text", "title": options.title, "category": options.category, **options.metadata}
            return LoadedDocument(content=text, metadata=meta, content_hash=content_hash(text))

        return await self._execute(wrap, options, label=options.title or "text", index=index)

    async def ingest_batch(self, requests: Sequence[IngestRequest]) -> BatchIngestResult:
        """Ingest many documents with at most ``max_concurrent`` in flight.

        ``documents`` on the result is in completion order; each entry
        carries its request ``index`` (or submission position) so callers
        can re-sort with :meth:`BatchIngestResult.ordered`.
        """
        started = time.perf_counter()
        batch = BatchIngestResult(batch_id=_generate_job_id("batch"), total=len(requests))
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent))
        logger.info("Starting batch %s with %d documents", batch.batch_id, len(requests))

        async def run_one(position: int, request: IngestRequest) -> IngestResult:
            index = request.index if request.index is not None else position
            async with semaphore:
                try:
                    return await self.ingest_document(request.source, request.options, index=index)
                except Exception as exc:
                    logger.exception("Unexpected failure for %s", request.describe())
                    return IngestResult(
                        ok=False,
                        job_id=_generate_job_id(),
                        index=index,
                        source=request.describe(),
                        error=str(exc) or type(exc).__name__,
                    )

        tasks = [asyncio.ensure_future(run_one(i, r)) for i, r in enumerate(requests)]
        for finished in asyncio.as_completed(tasks):
            outcome = await finished
            batch.documents.append(outcome)
            if outcome.ok:
                batch.succeeded += 1
            else:
                batch.failed += 1

        batch.ok = batch.failed == 0
        batch.duration_ms = _elapsed_ms(started)
        logger.info(
            "Batch %s complete: %d succeeded, %d failed in %.0fms",
            batch.batch_id,
            batch.succeeded,
            batch.failed,
            batch.duration_ms,
        )
        return batch

    async def ingest_directory(
        self,
        path: str | Path,
        *,
        recursive: bool = True,
        category: str | None = None,
        invalidate_first: bool = False,
        source_id: str | None = None,
    ) -> BatchIngestResult:
        """Ingest every supported file under *path*.

        The category of each file is inferred from keywords in its path
        unless *category* is given.  With *invalidate_first*, chunks from a
        previous run of the same source id are dropped before loading.
        """
        path = Path(path)
        source = source_id or f"dir:{path.name}"
        batch_id = _generate_job_id("batch")

        if not self._store.is_ready():
            return BatchIngestResult(ok=False, batch_id=batch_id, error="Vector store not ready")

        if invalidate_first:
            removed = await self._store.invalidate_by_source(source)
            logger.info("Invalidated %d existing chunks from %s", removed, source)

        try:
            files = list(self._loader.iter_supported_files(path, recursive=recursive))
        except LoadError as exc:
            return BatchIngestResult(ok=False, batch_id=batch_id, error=exc.message)

        if not files:
            return BatchIngestResult(ok=False, batch_id=batch_id, error="No documents found in directory")

        requests = [
            IngestRequest(
                source=file,
                options=IngestOptions(
                    category=category or detect_category_from_path(path.name / file.relative_to(path)),
                    source_id=source,
                ),
                index=i,
            )
            for i, file in enumerate(files)
        ]
        return await self.ingest_batch(requests)

    async def reindex_source(self, source_id: str) -> ReindexResult:
        """Invalidate every chunk of *source_id*; callers must re-submit the documents."""
        if not self._store.is_ready():
            return ReindexResult(ok=False, message="Vector store not ready")
        logger.info("Reindexing source %s", source_id)
        invalidated = await self._store.invalidate_by_source(source_id)
        return ReindexResult(
            ok=True,
            invalidated=invalidated,
            message=f"Invalidated {invalidated} embeddings. Please re-ingest documents.",
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "config": {
                "enabled": self.config.pipeline_enabled,
                "batch_size": self.config.batch_size,
                "max_concurrent": self.config.max_concurrent,
            },
            "state": {
                "is_processing": self.state.is_processing,
                "in_flight": self.state.in_flight,
                "last_run": self.state.last_run,
                "last_error": self.state.last_error,
            },
            "stats": self.state.snapshot(),
        }

    def get_health(self) -> dict[str, Any]:
        return {
            "pipeline": self.config.pipeline_enabled,
            "vector_store": self._store.is_ready(),
            "enhancer": self._enhancer is not None and self._enhancer.is_ready(),
            "last_run": self.state.last_run,
            "errors": self.state.total_errors,
        }

    def get_config(self) -> dict[str, Any]:
        return {
            "enabled": self.config.pipeline_enabled,
            "batch_size": self.config.batch_size,
            "max_concurrent": self.config.max_concurrent,
            "ai_enhancement": self._enhancement_enabled(IngestOptions()),
            "categories": self.policy.categories(),
        }

    # -- internals ------------------------------------------------------------

    async def _execute(
        self,
        load: Callable[[], Awaitable[LoadedDocument]],
        options: IngestOptions,
        *,
        label: str,
        index: int | None,
    ) -> IngestResult:
        started = time.perf_counter()
        job_id = _generate_job_id()

        if not self.config.pipeline_enabled:
            return IngestResult(ok=False, job_id=job_id, index=index, source=label, error="Pipeline disabled")
        if not self._store.is_ready():
            return IngestResult(ok=False, job_id=job_id, index=index, source=label, error="Vector store not ready")

        logger.info("Starting ingestion job %s for %s (category=%s)", job_id, label, options.category)
        self.state.in_flight += 1
        try:
            document = await load()
            result = await self._run(document, options, job_id=job_id, started=started)
        except LoadError as exc:
            self.state.record_failure(exc.message)
            logger.error("Ingestion job %s failed to load %s: %s", job_id, label, exc.message)
            result = self._failed(job_id, options, error=exc.message, started=started)
        except Exception as exc:
            self.state.record_failure(str(exc))
            logger.exception("Ingestion job %s failed", job_id)
            result = self._failed(job_id, options, error=str(exc) or type(exc).__name__, started=started)
        finally:
            self.state.in_flight -= 1

        return result.model_copy(update={"index": index, "source": label})

    async def _run(
        self,
        document: LoadedDocument,
        options: IngestOptions,
        *,
        job_id: str,
        started: float,
    ) -> IngestResult:
        logger.debug(
            "Job %s loaded %d chars (format=%s)", job_id, len(document.content), document.format
        )
        title = options.title or document.title

        outcome = EnhancementOutcome.failure("Enhancement disabled")
        if self._enhancement_enabled(options):
            outcome = await try_enhance(
                self._enhancer,
                document,
                summary=self.config.ai_generate_summary,
                entities=self.config.ai_extract_entities,
                chunking=self.config.ai_intelligent_chunking,
            )
            if not outcome.ok:
                logger.warning("Job %s: AI enhancement failed, using standard chunking: %s", job_id, outcome.error)

        base_meta = {
            "document_hash": document.content_hash,
            "document_title": title,
            "category": options.category,
            "source_id": options.source_id,
            **options.metadata,
        }
        if outcome.chunks:
            chunks = self._chunks_from_enhancement(outcome, document, options, base_meta)
        else:
            chunks = chunk_text(
                document.content,
                strategy=options.chunk_strategy or self._forced_strategy(),
                target_size=self.config.chunk_size,
                overlap=self.config.chunk_overlap,
                min_size=self.config.min_chunk_size,
                max_size=self.config.max_chunk_size,
                metadata=base_meta,
                category=options.category,
                source_id=options.source_id,
                document_hash=document.content_hash,
                format_hint=document.format,
            )

        info = DocumentInfo(
            title=title,
            content_length=len(document.content),
            format=document.format,
            hash=document.content_hash,
        )
        if not chunks:
            self.state.record_failure("No chunks generated")
            logger.warning("Job %s produced no chunks", job_id)
            return IngestResult(
                ok=False,
                job_id=job_id,
                error="No chunks generated",
                category=options.category,
                document=info,
                duration_ms=_elapsed_ms(started),
            )

        strategy = chunks[0].strategy
        logger.debug("Job %s chunked into %d chunks (strategy=%s)", job_id, len(chunks), strategy.value)

        ttl = self.policy.ttl_for(options.category)
        chunks = [chunk.model_copy(update={"ttl": ttl}) for chunk in chunks]
        items = self._to_upsert_items(chunks, document, job_id=job_id, title=title, outcome=outcome)
        inserted, errors = await self._store_in_batches(items, job_id=job_id)

        self.state.record_success(options.category, len(chunks))
        if errors:
            self.state.last_error = errors[-1]

        status = JobStatus.COMPLETED if not errors else JobStatus.PARTIAL if inserted else JobStatus.FAILED
        result = IngestResult(
            ok=status is not JobStatus.FAILED,
            job_id=job_id,
            status=status,
            error=None if status is not JobStatus.FAILED else "; ".join(errors),
            category=options.category,
            document=info,
            chunks=ChunkCounts(total=len(chunks), inserted=inserted, strategy=strategy),
            enhancement=self._enhancement_report(outcome, strategy),
            duration_ms=_elapsed_ms(started),
            errors=errors,
        )
        logger.info(
            "Job %s ingested %s: %d/%d chunks stored (%s) in %.0fms",
            job_id,
            title,
            inserted,
            len(chunks),
            status.value,
            result.duration_ms,
        )
        return result

    async def _load(self, source: str | Path | bytes, options: IngestOptions) -> LoadedDocument:
        kwargs = {"title": options.title, "category": options.category, "metadata": options.metadata}
        if isinstance(source, bytes):
            if not options.file_name:
                raise LoadError("file_name required for buffer input")
            return await self._loader.load_from_buffer(source, options.file_name, **kwargs)
        if isinstance(source, (str, Path)):
            return await self._loader.load(source, **kwargs)
        raise LoadError("Invalid source type. Expected a path, URL, or bytes")

    def _enhancement_enabled(self, options: IngestOptions) -> bool:
        return self.config.ai_enhance_enabled and self._enhancer is not None and not options.skip_enhancement

    def _forced_strategy(self) -> ChunkStrategy | None:
        if not self.config.chunk_strategy:
            return None
        try:
            return ChunkStrategy(self.config.chunk_strategy)
        except ValueError:
            logger.warning("Ignoring unknown chunk_strategy setting %r", self.config.chunk_strategy)
            return None

    def _chunks_from_enhancement(
        self,
        outcome: EnhancementOutcome,
        document: LoadedDocument,
        options: IngestOptions,
        base_meta: dict[str, Any],
    ) -> list[Chunk]:
        enhanced = [c for c in outcome.chunks if c.text.strip()]
        chunks: list[Chunk] = []
        for index, item in enumerate(enhanced):
            chunks.append(
                Chunk(
                    text=item.text,
                    index=index,
                    hash=hash_text(item.text),
                    char_start=item.start or 0,
                    char_end=item.end if item.end is not None else len(item.text),
                    strategy=ChunkStrategy.AI,
                    category=options.category,
                    source_id=options.source_id,
                    document_hash=document.content_hash,
                    metadata={
                        **base_meta,
                        "chunk_title": item.title,
                        "chunk_summary": item.summary,
                        "ai_generated": item.ai_generated,
                        "chunk_index": index,
                        "total_chunks": len(enhanced),
                    },
                )
            )
        return chunks

    def _to_upsert_items(
        self,
        chunks: list[Chunk],
        document: LoadedDocument,
        *,
        job_id: str,
        title: str | None,
        outcome: EnhancementOutcome,
    ) -> list[UpsertItem]:
        extra: dict[str, Any] = {}
        enhancement = outcome.enhancement
        if enhancement is not None:
            if enhancement.summary and enhancement.summary.summary:
                extra["document_summary"] = enhancement.summary.summary
                extra["key_points"] = enhancement.summary.key_points
                extra["topics"] = enhancement.summary.topics
            if enhancement.entities:
                extra["entities"] = [e.model_dump() for e in enhancement.entities]
                extra["entity_count"] = len(enhancement.entities)

        ingested_at = datetime.now(timezone.utc).isoformat()
        return [
            UpsertItem(
                id=f"{document.content_hash}-{chunk.index:04d}-{chunk.hash}",
                text=chunk.text,
                category=chunk.category,
                source=chunk.source_id,
                ttl=chunk.ttl,
                metadata={
                    **chunk.metadata,
                    **extra,
                    "chunk_hash": chunk.hash,
                    "char_start": chunk.char_start,
                    "char_end": chunk.char_end,
                    "document_title": title,
                    "format": document.format,
                    "chunking_method": chunk.strategy.value,
                    "ingested_at": ingested_at,
                    "job_id": job_id,
                },
            )
            for chunk in chunks
        ]

    async def _store_in_batches(self, items: list[UpsertItem], *, job_id: str) -> tuple[int, list[str]]:
        size = max(1, self.config.batch_size)
        inserted = 0
        errors: list[str] = []
        for offset in range(0, len(items), size):
            batch = items[offset : offset + size]
            try:
                result = await self._store.upsert_batch(batch)
            except Exception as exc:
                logger.error("Job %s: batch at offset %d failed: %s", job_id, offset, exc)
                errors.append(str(exc) or type(exc).__name__)
                continue
            inserted += result.inserted
            errors.extend(result.errors)
        return inserted, errors

    @staticmethod
    def _enhancement_report(outcome: EnhancementOutcome, strategy: ChunkStrategy) -> EnhancementReport:
        enhancement = outcome.enhancement
        if not outcome.ok or enhancement is None:
            return EnhancementReport(enabled=False)
        return EnhancementReport(
            enabled=True,
            summary=bool(enhancement.summary and enhancement.summary.summary),
            entities=len(enhancement.entities),
            ai_chunking=strategy is ChunkStrategy.AI,
            processing_time_ms=enhancement.processing_time_ms,
        )

    def _failed(self, job_id: str, options: IngestOptions, *, error: str, started: float) -> IngestResult:
        return IngestResult(
            ok=False,
            job_id=job_id,
            error=error,
            category=options.category,
            duration_ms=_elapsed_ms(started),
        )
