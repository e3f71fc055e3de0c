"""Optional AI enhancement — intelligent chunking, summaries, entities.

The pipeline never depends on enhancement succeeding.  It calls
:func:`try_enhance`, which returns an :class:`EnhancementOutcome` instead
of raising, and falls back to the regular chunker whenever the outcome
is a failure or carries no chunks.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from knowledge_rag.config import settings
from knowledge_rag.exceptions import EnhancementError
from knowledge_rag.ingestion.chunker import chunk_text
from knowledge_rag.ingestion.models import ChunkStrategy, LoadedDocument
from knowledge_rag.ingestion.prompts import (
    build_chunking_prompt,
    build_entities_prompt,
    build_summary_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_ENTITY_TYPES: list[str] = [
    "product",
    "price",
    "location",
    "opening_hours",
    "date",
    "promotion",
    "ingredient",
    "policy",
    "contact",
    "size",
]


class EnhancedChunk(BaseModel):
    """A chunk proposed by the enhancer, used verbatim by the pipeline."""

    text: str
    title: str = ""
    summary: str = ""
    start: int | None = None
    end: int | None = None
    ai_generated: bool = True


class DocumentSummary(BaseModel):
    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)


class Entity(BaseModel):
    type: str
    value: str


class Enhancement(BaseModel):
    """Everything an enhancer produced for one document."""

    chunks: list[EnhancedChunk] | None = None
    summary: DocumentSummary | None = None
    entities: list[Entity] = Field(default_factory=list)
    processing_time_ms: float = 0.0


class EnhancementOutcome(BaseModel):
    """Result type for the enhancement step: either an enhancement or an error."""

    ok: bool
    enhancement: Enhancement | None = None
    error: str | None = None

    @classmethod
    def success(cls, enhancement: Enhancement) -> EnhancementOutcome:
        return cls(ok=True, enhancement=enhancement)

    @classmethod
    def failure(cls, error: str) -> EnhancementOutcome:
        return cls(ok=False, error=error)

    @property
    def chunks(self) -> list[EnhancedChunk]:
        if self.enhancement is None or not self.enhancement.chunks:
            return []
        return self.enhancement.chunks


class EnhancerBase(ABC):
    """Interface for document enhancers."""

    @abstractmethod
    async def enhance(
        self,
        document: LoadedDocument,
        *,
        summary: bool = True,
        entities: bool = True,
        chunking: bool = True,
    ) -> Enhancement:
        """Enhance *document*; raise :class:`EnhancementError` on failure."""
        ...

    def is_ready(self) -> bool:
        return True


async def try_enhance(
    enhancer: EnhancerBase | None,
    document: LoadedDocument,
    *,
    summary: bool = True,
    entities: bool = True,
    chunking: bool = True,
) -> EnhancementOutcome:
    """Run *enhancer* and capture any failure in the returned outcome."""
    if enhancer is None:
        return EnhancementOutcome.failure("No enhancer configured")
    if not enhancer.is_ready():
        return EnhancementOutcome.failure("Enhancer not ready")
    try:
        enhancement = await enhancer.enhance(document, summary=summary, entities=entities, chunking=chunking)
    except Exception as exc:
        return EnhancementOutcome.failure(str(exc) or type(exc).__name__)
    return EnhancementOutcome.success(enhancement)


def _safe_parse_json(text: str) -> dict[str, Any]:
    """Parse LLM JSON output, stripping markdown fences.

    Raises :class:`EnhancementError` when the payload is not a JSON object.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.index("\n") if "\n" in cleaned else 3
        cleaned = cleaned[first_newline + 1 :]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        cleaned = cleaned.strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise EnhancementError(f"Could not parse LLM JSON: {text[:200]!r}") from exc
    if not isinstance(parsed, dict):
        raise EnhancementError("LLM response is not a JSON object")
    return parsed


class LLMEnhancer(EnhancerBase):
    """Enhancer backed by an OpenAI-compatible chat model.

    Parameters
    ----------
    llm:
        A LangChain chat model.  When *None* the configured
        :func:`~knowledge_rag.llm.build_chat_model` model is created lazily.
    target_chunk_size, min_chunk_size, max_chunks:
        Guidance passed to the chunking prompt.
    entity_types:
        Entity labels requested from the model.
    """

    def __init__(
        self,
        llm: Any | None = None,
        *,
        target_chunk_size: int = 1500,
        min_chunk_size: int = 500,
        max_chunks: int = 50,
        entity_types: list[str] | None = None,
        max_analysis_chars: int = settings.enhancer_max_analysis_chars,
        max_chunking_chars: int = settings.enhancer_max_chunking_chars,
    ) -> None:
        self._llm = llm
        self.target_chunk_size = target_chunk_size
        self.min_chunk_size = min_chunk_size
        self.max_chunks = max_chunks
        self.entity_types = entity_types or DEFAULT_ENTITY_TYPES
        self.max_analysis_chars = max_analysis_chars
        self.max_chunking_chars = max_chunking_chars

    @property
    def llm(self) -> Any:
        if self._llm is None:
            from knowledge_rag.llm import build_chat_model

            self._llm = build_chat_model()
        return self._llm

    def is_ready(self) -> bool:
        if self._llm is not None:
            return True
        from knowledge_rag.llm import llm_configured

        return llm_configured()

    async def enhance(
        self,
        document: LoadedDocument,
        *,
        summary: bool = True,
        entities: bool = True,
        chunking: bool = True,
    ) -> Enhancement:
        started = time.perf_counter()
        context = {
            "title": document.title,
            "category": document.metadata.get("category"),
            "format": document.format,
        }

        tasks: dict[str, Any] = {}
        if summary:
            tasks["summary"] = self.generate_summary(document.content, context=context)
        if entities:
            tasks["entities"] = self.extract_entities(document.content, context=context)
        if chunking:
            tasks["chunks"] = self.intelligent_chunk(document.content, context=context)
        if not tasks:
            return Enhancement()

        outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
        results: dict[str, Any] = {}
        failures: list[str] = []
        for name, outcome in zip(tasks, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Enhancement task %s failed: %s", name, outcome)
                failures.append(f"{name}: {outcome}")
            else:
                results[name] = outcome

        if not results:
            raise EnhancementError("; ".join(failures))

        enhancement = Enhancement(
            chunks=results.get("chunks"),
            summary=results.get("summary"),
            entities=results.get("entities", []),
            processing_time_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        logger.info(
            "Enhanced document %s in %.0fms (summary=%s, entities=%d, chunks=%d)",
            document.content_hash,
            enhancement.processing_time_ms,
            bool(enhancement.summary and enhancement.summary.summary),
            len(enhancement.entities),
            len(enhancement.chunks or []),
        )
        return enhancement

    # -- individual tasks -----------------------------------------------------

    async def intelligent_chunk(self, text: str, *, context: dict[str, Any]) -> list[EnhancedChunk]:
        """Ask the model for chunk boundaries as character offsets into *text*."""
        if len(text) < self.min_chunk_size * 2:
            return [
                EnhancedChunk(
                    text=text.strip(), title=context.get("title") or "Full document", start=0, end=len(text)
                )
            ]

        head = text[: self.max_chunking_chars]
        prompt = build_chunking_prompt(
            head,
            target_size=self.target_chunk_size,
            min_size=self.min_chunk_size,
            max_chunks=self.max_chunks,
            context=context,
        )
        response = await self.llm.ainvoke(prompt)
        parsed = _safe_parse_json(response.content)
        raw_chunks = parsed.get("chunks")
        if not isinstance(raw_chunks, list):
            raise EnhancementError("Invalid chunking response structure")

        chunks: list[EnhancedChunk] = []
        for idx, raw in enumerate(raw_chunks):
            start, end = int(raw.get("start", 0)), int(raw.get("end", 0))
            body = head[start:end].strip()
            if len(body) < self.min_chunk_size / 2:
                continue
            chunks.append(
                EnhancedChunk(
                    text=body,
                    title=raw.get("title") or f"Section {idx + 1}",
                    summary=raw.get("summary") or "",
                    start=start,
                    end=end,
                )
            )

        if len(text) > self.max_chunking_chars:
            offset = self.max_chunking_chars
            remainder = chunk_text(text[offset:], strategy=ChunkStrategy.PARAGRAPH)
            chunks.extend(
                EnhancedChunk(
                    text=c.text,
                    title=f"Continuation {i + 1}",
                    start=offset + c.char_start,
                    end=offset + c.char_end,
                    ai_generated=False,
                )
                for i, c in enumerate(remainder)
            )
        return chunks

    async def generate_summary(self, text: str, *, context: dict[str, Any]) -> DocumentSummary:
        response = await self.llm.ainvoke(build_summary_prompt(text[: self.max_analysis_chars], context=context))
        parsed = _safe_parse_json(response.content)
        return DocumentSummary(
            summary=str(parsed.get("summary", "")),
            key_points=[str(p) for p in parsed.get("key_points", [])],
            topics=[str(t) for t in parsed.get("topics", [])],
        )

    async def extract_entities(self, text: str, *, context: dict[str, Any]) -> list[Entity]:
        prompt = build_entities_prompt(
            text[: self.max_analysis_chars],
            entity_types=self.entity_types,
            context=context,
        )
        response = await self.llm.ainvoke(prompt)
        parsed = _safe_parse_json(response.content)
        entities: list[Entity] = []
        for raw in parsed.get("entities", []):
            if isinstance(raw, dict) and raw.get("type") and raw.get("value"):
                entities.append(Entity(type=str(raw["type"]), value=str(raw["value"])))
        return entities
