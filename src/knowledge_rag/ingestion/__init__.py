"""
Ingestion — document loading, chunking, enhancement, and storage.

This module converts raw documents (PDF, Markdown, HTML, JSON, …) into
bounded, TTL-stamped chunks stored in a vector database.

Public surface
--------------
- :class:`IngestionPipeline` — orchestrates load → enhance → chunk → store.
- :func:`chunk_text` / :func:`detect_best_strategy` — the chunker.
- :class:`FileDocumentLoader` — default loader.
- :class:`LLMEnhancer` — optional AI enhancement.
"""

from knowledge_rag.ingestion.chunker import chunk_text, detect_best_strategy, normalize_text
from knowledge_rag.ingestion.enhancer import EnhancementOutcome, EnhancerBase, LLMEnhancer, try_enhance
from knowledge_rag.ingestion.loader import DocumentLoaderBase, FileDocumentLoader
from knowledge_rag.ingestion.models import (
    BatchIngestResult,
    Chunk,
    ChunkStrategy,
    IngestOptions,
    IngestRequest,
    IngestResult,
    JobStatus,
    LoadedDocument,
)
from knowledge_rag.ingestion.pipeline import IngestionPipeline, PipelineState
from knowledge_rag.ingestion.policy import CategoryPolicy, detect_category_from_path

__all__ = [
    "BatchIngestResult",
    "CategoryPolicy",
    "Chunk",
    "ChunkStrategy",
    "DocumentLoaderBase",
    "EnhancementOutcome",
    "EnhancerBase",
    "FileDocumentLoader",
    "IngestOptions",
    "IngestRequest",
    "IngestResult",
    "IngestionPipeline",
    "JobStatus",
    "LLMEnhancer",
    "LoadedDocument",
    "PipelineState",
    "chunk_text",
    "detect_best_strategy",
    "detect_category_from_path",
    "normalize_text",
    "try_enhance",
]
