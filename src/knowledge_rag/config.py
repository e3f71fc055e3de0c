"""Shared configuration loaded from environment / ``.env``."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide settings, populated from ``RAG_*`` env vars or a .env file."""

    # Chunking
    chunk_size: int = Field(default=1200, description="Target chunk size in characters")
    chunk_overlap: int = Field(default=200, description="Window overlap (fixed strategy only)")
    min_chunk_size: int = 100
    max_chunk_size: int = 3000
    chunk_strategy: str | None = Field(
        default=None,
        description="Force a chunking strategy; empty means auto-detect per document",
    )
    max_cascade_iterations: int = 10_000

    # Ingestion pipeline
    pipeline_enabled: bool = True
    batch_size: int = 20
    max_concurrent: int = 3
    max_file_size_bytes: int = 50 * 1024 * 1024
    documents_dir: str = "./documents"
    category_ttl_days: dict[str, float | None] = Field(
        default_factory=lambda: {
            "menu": 7,
            "policy": 30,
            "recipe": 90,
            "history": None,
            "faq": 7,
            "training": 14,
            "promo": 1,
            "general": 7,
        },
        description="Retention per category in days; null keeps chunks indefinitely",
    )

    # AI enhancement
    ai_enhance_enabled: bool = True
    ai_generate_summary: bool = True
    ai_extract_entities: bool = True
    ai_intelligent_chunking: bool = True
    enhancer_max_analysis_chars: int = 50_000
    enhancer_max_chunking_chars: int = 30_000

    # Retrieval
    agent_enabled: bool = True
    search_limit: int = 5
    search_threshold: float = 0.7
    min_threshold: float = 0.65
    max_chunks: int = 4
    max_context_length: int = 4000
    priority_categories: list[str] = Field(default_factory=lambda: ["menu", "faq", "policy"])
    query_cache_enabled: bool = True
    query_cache_ttl_seconds: float = 60.0
    query_cache_max_entries: int = 100

    # LLM (enhancer)
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for local vLLM)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="LLM model identifier")
    llm_base_url: str = Field(
        default="",
        description="Base URL for an OpenAI-compatible endpoint. Leave empty to use OpenAI cloud.",
    )
    llm_temperature: float = 0.3
    llm_timeout_seconds: float = 60.0
    llm_max_retries: int = 2

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "knowledge_rag"

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    model_config = SettingsConfigDict(env_prefix="RAG_", env_file=".env", env_file_encoding="utf-8")


# Singleton — import `settings` wherever needed.
settings = Settings()
