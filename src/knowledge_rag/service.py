"""KnowledgeBase — one object wiring ingestion and retrieval together.

Usage::

    kb = KnowledgeBase.from_settings()
    await kb.ingest_directory("docs/")
    context = await kb.enrich_prompt("Do you sell gluten free bread?")
    print(context.formatted_context)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from knowledge_rag.config import Settings, settings
from knowledge_rag.ingestion.enhancer import EnhancerBase
from knowledge_rag.ingestion.loader import DocumentLoaderBase
from knowledge_rag.ingestion.models import (
    BatchIngestResult,
    IngestOptions,
    IngestRequest,
    IngestResult,
    ReindexResult,
)
from knowledge_rag.ingestion.pipeline import IngestionPipeline
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.context import ContextBuilder
from knowledge_rag.retrieval.models import ContextResult, RAGContext, SearchResponse, SystemPrompt
from knowledge_rag.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """Facade over :class:`IngestionPipeline`, :class:`SemanticRetriever` and :class:`ContextBuilder`.

    All three share the same store and settings but keep their own state,
    so two knowledge bases never see each other's counters or cache.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        *,
        loader: DocumentLoaderBase | None = None,
        enhancer: EnhancerBase | None = None,
        config: Settings | None = None,
    ) -> None:
        self.config = config or settings
        self.store = store
        self.pipeline = IngestionPipeline(store, loader, enhancer, config=self.config)
        self.retriever = SemanticRetriever(store, config=self.config)
        self.context_builder = ContextBuilder(self.retriever, config=self.config)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> KnowledgeBase:
        """Build the default Chroma + file loader stack, with the LLM enhancer when configured."""
        from knowledge_rag.ingestion.enhancer import LLMEnhancer
        from knowledge_rag.ingestion.loader import FileDocumentLoader
        from knowledge_rag.llm import build_chat_model, llm_configured
        from knowledge_rag.retrieval.chroma_store import ChromaVectorStore

        config = config or settings
        store = ChromaVectorStore(
            config.chroma_collection,
            host=config.chroma_host,
            port=config.chroma_port,
            embedding_model=config.embedding_model,
        )
        enhancer = None
        if config.ai_enhance_enabled and llm_configured(config):
            enhancer = LLMEnhancer(
                build_chat_model(config),
                max_analysis_chars=config.enhancer_max_analysis_chars,
                max_chunking_chars=config.enhancer_max_chunking_chars,
            )
        else:
            logger.info("AI enhancement disabled; using the chunker only")
        loader = FileDocumentLoader(max_file_size_bytes=config.max_file_size_bytes)
        return cls(store, loader=loader, enhancer=enhancer, config=config)

    # ── Ingestion ────────────────────────────────────────────────────────────

    async def ingest_document(
        self, source: str | Path | bytes, options: IngestOptions | None = None
    ) -> IngestResult:
        return await self.pipeline.ingest_document(source, options)

    async def ingest_text(self, text: str, options: IngestOptions | None = None) -> IngestResult:
        return await self.pipeline.ingest_text(text, options)

    async def ingest_batch(self, requests: Sequence[IngestRequest]) -> BatchIngestResult:
        return await self.pipeline.ingest_batch(requests)

    async def ingest_directory(self, path: str | Path | None = None, **kwargs: Any) -> BatchIngestResult:
        """Ingest *path*, defaulting to the configured ``documents_dir``."""
        return await self.pipeline.ingest_directory(path or self.config.documents_dir, **kwargs)

    async def reindex_source(self, source_id: str) -> ReindexResult:
        result = await self.pipeline.reindex_source(source_id)
        if result.ok and result.invalidated:
            self.context_builder.clear_cache()
        return result

    # ── Retrieval ────────────────────────────────────────────────────────────

    async def search(self, query: str, **kwargs: Any) -> SearchResponse:
        return await self.retriever.search(query, **kwargs)

    async def generate_context(self, query: str, **kwargs: Any) -> ContextResult | None:
        return await self.retriever.generate_context(query, **kwargs)

    async def enrich_prompt(self, query: str, **kwargs: Any) -> RAGContext:
        return await self.context_builder.enrich(query, **kwargs)

    async def build_system_prompt(self, base_prompt: str, query: str, **kwargs: Any) -> SystemPrompt:
        return await self.context_builder.build_system_prompt(base_prompt, query, **kwargs)

    # ── Introspection ────────────────────────────────────────────────────────

    async def get_stats(self) -> dict[str, Any]:
        return {
            **self.pipeline.get_stats(),
            "store": await self.store.get_stats(),
            "context": self.context_builder.get_status(),
        }

    def get_health(self) -> dict[str, Any]:
        health = self.pipeline.get_health()
        health["vector_store"] = self.store.health_check()
        health["agent"] = self.context_builder.is_available()
        return health
