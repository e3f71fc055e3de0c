"""Chat model used by the AI enhancer.

Any OpenAI-compatible endpoint works: leave ``RAG_LLM_BASE_URL`` empty
for the OpenAI cloud (``RAG_OPENAI_API_KEY`` required) or point it at a
self-hosted server such as vLLM, which accepts any key.
"""

from __future__ import annotations

import logging

from langchain_openai import ChatOpenAI

from knowledge_rag.config import Settings, settings

logger = logging.getLogger(__name__)


def llm_configured(config: Settings | None = None) -> bool:
    """Return ``True`` when *config* names either an API key or a custom endpoint."""
    config = config or settings
    return bool(config.openai_api_key or config.llm_base_url)


def build_chat_model(
    config: Settings | None = None,
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> ChatOpenAI:
    """Create the enhancement chat model from *config*.

    Parameters
    ----------
    config:
        Settings to read model, endpoint, key and retry policy from.
    temperature:
        Sampling temperature; defaults to ``llm_temperature``.
    max_tokens:
        Optional completion cap.
    """
    config = config or settings
    kwargs: dict = {
        "model": config.llm_model_name,
        "temperature": config.llm_temperature if temperature is None else temperature,
        "timeout": config.llm_timeout_seconds,
        "max_retries": config.llm_max_retries,
    }
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens

    if config.llm_base_url:
        logger.info("Enhancer using OpenAI-compatible endpoint %s (%s)", config.llm_base_url, config.llm_model_name)
        kwargs["base_url"] = config.llm_base_url
        # Self-hosted servers ignore the key but the client rejects an empty one.
        kwargs["api_key"] = config.openai_api_key or "EMPTY"
    else:
        kwargs["api_key"] = config.openai_api_key

    return ChatOpenAI(**kwargs)
