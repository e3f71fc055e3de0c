"""Embedding model factory."""

from __future__ import annotations

from functools import lru_cache

from langchain_huggingface import HuggingFaceEmbeddings

from knowledge_rag.config import settings


@lru_cache(maxsize=4)
def get_embedding_function(model_name: str | None = None) -> HuggingFaceEmbeddings:
    """Return the sentence-transformer embedding function for *model_name*.

    Instances are cached per model because loading weights is expensive.
    """
    return HuggingFaceEmbeddings(model_name=model_name or settings.embedding_model)
