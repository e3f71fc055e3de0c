"""Agent-facing context builder.

:class:`ContextBuilder` decides whether a user message needs retrieval at
all, picks the categories worth searching, queries them concurrently,
merges the hits and renders a bounded context block for a system
prompt.  It sits on the user-facing response path, so
:meth:`ContextBuilder.enrich` never raises: every outcome is a
:class:`~knowledge_rag.retrieval.models.RAGContext`.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from typing import Any

from knowledge_rag.config import Settings, settings
from knowledge_rag.exceptions import SearchError
from knowledge_rag.retrieval.cache import QueryCache
from knowledge_rag.retrieval.models import (
    ContextSource,
    ContextStats,
    RAGContext,
    SearchResult,
    SystemPrompt,
)
from knowledge_rag.retrieval.reranker import merge_ranked
from knowledge_rag.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[... context truncated]"

_RULE = "=" * 59
_MIN_QUERY_LENGTH = 5

# ── Trivial messages that never need retrieval ─────────────────────────────

_SKIP_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(hola|hi|hey|hello|buen[oa]s? d[ií]as?|buenas? (tardes?|noches?)|good (morning|afternoon|evening))[.!]*$",
        r"^(gracias|muchas gracias|thanks|thank you|ok|okay|vale|listo|perfecto|great|cool)[.!]*$",
        r"^(s[ií]|no|yes|yep|nope|sure|claro|por supuesto)[.!]*$",
        r"^[👍👌🙏😊❤️\s]+$",
        r"^(adi[oó]s|bye|goodbye|hasta luego|chao|see you)[.!]*$",
    )
)

# ── Keyword → category detection ───────────────────────────────────────────

_CATEGORY_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    category: tuple(re.compile(p, re.IGNORECASE) for p in patterns)
    for category, patterns in {
        "menu": (
            r"\b(menu|menú|carta|producto|product|precio|price|costo|cost|pan|bread|rosca|pastel|cake|"
            r"galleta|cookie|postre|dessert|cafe|café|coffee|bebida|drink)\b",
            r"\b(tienen|hay|venden|cuanto|cuánto|cuesta|sell|how much)\b",
        ),
        "faq": (
            r"\b(pregunta|question|duda|como|cómo|how|que es|qué es|what is|porque|por qué|why)\b",
            r"\b(horario|hours|ubicación|ubicacion|location|sucursal|branch|dirección|direccion|address|"
            r"donde|dónde|where)\b",
        ),
        "policy": (
            r"\b(politica|política|policy|terminos|términos|terms|condicion|condición|devolución|devolucion|"
            r"refund|return|cambio|exchange|garantía|garantia|warranty)\b",
            r"\b(envío|envio|shipping|domicilio|delivery|entrega|cancelar|cancel)\b",
        ),
        "recipe": (
            r"\b(receta|recipe|ingrediente|ingredient|preparación|preparacion|hacer|cocinar|cook|bake)\b",
            r"\b(sin gluten|gluten free|vegano|vegan|vegetariano|vegetarian|alergia|allergy|alergeno|allergen)\b",
        ),
        "training": (
            r"\b(capacitación|capacitacion|training|entrenamiento|procedimiento|procedure|proceso|process)\b",
        ),
        "promo": (
            r"\b(promoción|promocion|promo|promotion|descuento|discount|oferta|offer|especial|special|2x1)\b",
        ),
    }.items()
}


def is_trivial_message(message: str | None) -> bool:
    """Return ``True`` for very short input, greetings, acknowledgements and farewells."""
    lower = str(message or "").lower().strip()
    if len(lower) < _MIN_QUERY_LENGTH:
        return True
    return any(p.match(lower) for p in _SKIP_PATTERNS)


def format_context(results: list[SearchResult]) -> str:
    """Render *results* as labeled ``[CATEGORY] title:`` blocks between header and footer rules."""
    if not results:
        return ""
    lines = ["", _RULE, "REFERENCE INFORMATION (knowledge base):", _RULE, ""]
    for result in results:
        category = (result.category or "general").upper()
        lines.append(f"[{category}] {result.title}:")
        lines.append(result.text)
        lines.append("")
    lines.extend(
        [
            _RULE,
            "Use this information to answer precisely.",
            "If the answer is not in the context, answer from general knowledge.",
            _RULE,
            "",
        ]
    )
    return "\n".join(lines)


def truncate_context(text: str, max_length: int, marker: str = TRUNCATION_MARKER) -> tuple[str, bool]:
    """Cut *text* so that ``len(result) <= max_length``, ending in *marker* exactly once.

    Returns ``(text, truncated)``.
    """
    if len(text) <= max_length:
        return text, False
    if max_length <= len(marker):
        raise ValueError(f"max_length ({max_length}) must exceed the truncation marker length ({len(marker)})")
    return text[: max_length - len(marker)] + marker, True


class ContextBuilder:
    """Builds prompt context from several category searches.

    Each instance owns its :class:`QueryCache`, so builders never share
    cached answers.

    Parameters
    ----------
    retriever:
        Retriever used for the per-category searches.
    config:
        Settings (defaults to the module-level ``settings``).
    cache:
        Cache override; by default one is built from the ``query_cache_*``
        settings.
    """

    def __init__(
        self,
        retriever: SemanticRetriever,
        *,
        config: Settings | None = None,
        cache: QueryCache[RAGContext] | None = None,
    ) -> None:
        self.config = config or settings
        if self.config.max_context_length <= len(TRUNCATION_MARKER):
            raise ValueError("max_context_length is too small to hold the truncation marker")
        self._retriever = retriever
        self._cache: QueryCache[RAGContext] = cache or QueryCache(
            ttl_seconds=self.config.query_cache_ttl_seconds,
            max_entries=self.config.query_cache_max_entries,
        )

    # -- detection ------------------------------------------------------------

    def is_available(self) -> bool:
        return self.config.agent_enabled and self._retriever.store.is_ready()

    def should_use_rag(self, message: str | None) -> bool:
        """Return ``True`` when *message* is worth a knowledge-base lookup."""
        return self.is_available() and not is_trivial_message(message)

    def detect_relevant_categories(self, message: str | None) -> list[str]:
        """Categories whose keywords appear in *message*; the priority categories otherwise."""
        lower = str(message or "").lower()
        found = [c for c, patterns in _CATEGORY_PATTERNS.items() if any(p.search(lower) for p in patterns)]
        return found or list(self.config.priority_categories)

    # -- context --------------------------------------------------------------

    async def enrich(
        self,
        query: str,
        *,
        categories: list[str] | None = None,
        max_chunks: int | None = None,
        threshold: float | None = None,
        force_search: bool = False,
    ) -> RAGContext:
        """Retrieve and format context for *query*.

        Parameters
        ----------
        query:
            The user's message.
        categories:
            Categories to search; detected from the message when omitted.
        max_chunks:
            Cap on merged results (defaults to ``max_chunks``).
        threshold:
            Minimum similarity (defaults to ``min_threshold``).
        force_search:
            Search even when the message looks trivial.
        """
        started = time.perf_counter()
        query = str(query or "")
        if not self.is_available():
            return RAGContext(has_context=False, reason="rag_disabled")
        if not force_search and is_trivial_message(query):
            return RAGContext(has_context=False, reason="not_needed")

        max_chunks = max_chunks or self.config.max_chunks
        threshold = self.config.min_threshold if threshold is None else threshold
        key = self._cache_key(query, categories, max_chunks, threshold)

        if self.config.query_cache_enabled:
            hit = self._cache.get(key)
            if hit is not None:
                logger.debug("Context cache hit for %r", query[:50])
                return hit.model_copy(update={"cached": True})

        try:
            context = await self._build(query, categories, max_chunks, threshold, started)
        except Exception as exc:
            logger.error("Context enrichment failed: %s", exc)
            return RAGContext(
                has_context=False,
                reason="error",
                error=str(exc) or type(exc).__name__,
                duration_ms=_elapsed_ms(started),
            )

        if context.has_context and self.config.query_cache_enabled:
            self._cache.set(key, context)
        return context

    async def build_system_prompt(self, base_prompt: str, query: str, **options: Any) -> SystemPrompt:
        """Append retrieved context to *base_prompt*; keyword *options* go to :meth:`enrich`."""
        context = await self.enrich(query, **options)
        if not context.has_context:
            return SystemPrompt(system_prompt=base_prompt, rag_used=False, reason=context.reason)
        return SystemPrompt(
            system_prompt=base_prompt + context.formatted_context,
            rag_used=True,
            sources=context.sources,
            stats=context.stats,
        )

    def get_status(self) -> dict[str, Any]:
        return {
            "enabled": self.config.agent_enabled,
            "vector_ready": self._retriever.store.is_ready(),
            "cache_size": len(self._cache),
            "config": {
                "min_threshold": self.config.min_threshold,
                "max_chunks": self.config.max_chunks,
                "max_context_length": self.config.max_context_length,
            },
        }

    def clear_cache(self) -> int:
        """Empty the query cache; return how many entries were dropped."""
        return self._cache.clear()

    # -- internals ------------------------------------------------------------

    async def _build(
        self,
        query: str,
        categories: list[str] | None,
        max_chunks: int,
        threshold: float,
        started: float,
    ) -> RAGContext:
        categories = list(categories) if categories else self.detect_relevant_categories(query)
        per_category = math.ceil(max_chunks / len(categories)) + 1

        responses = await asyncio.gather(
            *(
                self._retriever.search(query, category=c, limit=per_category, threshold=threshold)
                for c in categories
            )
        )
        failed = [r.error for r in responses if r.error]
        if failed and len(failed) == len(responses):
            raise SearchError(failed[0])
        for category, response in zip(categories, responses):
            if response.error:
                logger.warning("Search in category %s failed: %s", category, response.error)

        results = merge_ranked((r.results for r in responses), max_chunks)
        if not results:
            return RAGContext(has_context=False, reason="no_matches", duration_ms=_elapsed_ms(started))

        formatted, truncated = truncate_context(format_context(results), self.config.max_context_length)
        context = RAGContext(
            has_context=True,
            formatted_context=formatted,
            sources=[ContextSource(title=r.title, category=r.category, score=r.score) for r in results],
            stats=ContextStats(
                chunks_found=len(results),
                categories=list(dict.fromkeys(r.category for r in results if r.category)),
                avg_score=sum(r.score for r in results) / len(results),
                truncated=truncated,
            ),
            duration_ms=_elapsed_ms(started),
        )
        logger.debug(
            "Built context for %r: %d chunks in %.0fms", query[:50], len(results), context.duration_ms
        )
        return context

    @staticmethod
    def _cache_key(
        query: str,
        categories: list[str] | None,
        max_chunks: int,
        threshold: float,
    ) -> str:
        cats = ",".join(sorted(categories)) if categories else "*"
        return f"{QueryCache.normalize(query)}|{cats}|{max_chunks}|{threshold}"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
