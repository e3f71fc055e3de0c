"""Text chunking strategies.

Documents are cut into :class:`~knowledge_rag.ingestion.models.Chunk`
objects by one of the strategies in
:class:`~knowledge_rag.ingestion.models.ChunkStrategy`:

* **semantic** → **paragraph** → **sentence** → **phrase** form a
  cascade.  A unit that is still larger than ``target_size`` after one
  level is handed to the next level; the phrase level emits whatever it
  cannot reduce as an atomic chunk.
* **fixed** is a sliding window with overlap, used for content with no
  exploitable structure (serialised JSON, CSV, …).
* **single** is the whole-document shortcut.

All splitting works on ``(start, end)`` spans of the normalised text, so
the character offsets stamped on each chunk are exact and the cascade
never drops text: joining the chunks of a non-overlapping strategy in
order gives back the normalised source, minus inter-chunk whitespace.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from knowledge_rag.config import settings
from knowledge_rag.ingestion.models import Chunk, ChunkStrategy

logger = logging.getLogger(__name__)

Span = tuple[int, int]

# ── Boundary patterns ─────────────────────────────────────────────────
#
# A match made only of whitespace (or zero-width) cuts *before* itself and
# the whitespace is trimmed away; a match with visible characters (rule
# lines) cuts *after* itself so the characters stay in the text.

_HEADING = re.compile(r"\n+(?=#{1,6}[ \t])")
_RULE_LINE = re.compile(r"(?m)^(?:\*{3,}|-{3,}|={3,}|_{3,})[ \t]*$")
_SECTION_GAP = re.compile(r"\n{3,}")
_BLANK_LINE = re.compile(r"\n\n+")
_SENTENCE_END = re.compile(r"(?<=[.!?])(?:[ \t]*\n\s*|\s+(?=[\"'“¿¡(\[0-9A-ZÁÉÍÓÚÑ]))")
_CLAUSE_END = re.compile(r"(?<=[,;:])\s+")

_HEADING_LINE = re.compile(r"(?m)^#{1,6}[ \t]+\S")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INLINE_SPACE = re.compile(r"[^\S\n]+")
_LINE_EDGE_SPACE = re.compile(r" *\n *")

_STRUCTURED_FORMATS = frozenset({"structured-data", "json", "csv"})


@dataclass(frozen=True)
class ChunkLimits:
    """Size parameters shared by every splitter."""

    target_size: int
    overlap: int
    min_size: int
    max_size: int
    max_iterations: int

    @classmethod
    def resolve(
        cls,
        target_size: int | None = None,
        overlap: int | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
    ) -> ChunkLimits:
        max_size = max_size or settings.max_chunk_size
        target_size = min(target_size or settings.chunk_size, max_size)
        overlap = settings.chunk_overlap if overlap is None else overlap
        min_size = settings.min_chunk_size if min_size is None else min_size
        return cls(
            target_size=target_size,
            overlap=max(0, min(overlap, target_size - 1)),
            min_size=min(min_size, target_size),
            max_size=max_size,
            max_iterations=settings.max_cascade_iterations,
        )


@dataclass(frozen=True)
class _Level:
    """One step of the cascade."""

    strategy: ChunkStrategy
    boundaries: tuple[re.Pattern[str], ...]
    accumulate: bool


_CASCADE: tuple[_Level, ...] = (
    _Level(ChunkStrategy.SEMANTIC, (_HEADING, _RULE_LINE, _SECTION_GAP), accumulate=False),
    _Level(ChunkStrategy.PARAGRAPH, (_BLANK_LINE,), accumulate=True),
    _Level(ChunkStrategy.SENTENCE, (_SENTENCE_END,), accumulate=True),
    _Level(ChunkStrategy.PHRASE, (_CLAUSE_END,), accumulate=True),
)

_ENTRY_LEVEL: dict[ChunkStrategy, int] = {level.strategy: i for i, level in enumerate(_CASCADE)}


# ── Text helpers ──────────────────────────────────────────────────────


def normalize_text(text: str) -> str:
    """Unicode NFC, unify newlines, collapse inline whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = _INLINE_SPACE.sub(" ", text)
    text = _LINE_EDGE_SPACE.sub("\n", text)
    return text.strip()


def hash_text(text: str) -> str:
    """Deterministic digest of lower-cased, trimmed *text*."""
    return hashlib.sha256(text.lower().strip().encode("utf-8")).hexdigest()[:16]


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def is_valid_chunk_size(text: str, *, min_size: int | None = None, max_size: int | None = None) -> bool:
    if not text:
        return False
    low = settings.min_chunk_size if min_size is None else min_size
    high = settings.max_chunk_size if max_size is None else max_size
    return low <= len(text) <= high


def _trim(text: str, start: int, end: int) -> Span | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None


def _split_span(text: str, span: Span, boundaries: tuple[re.Pattern[str], ...]) -> list[Span]:
    """Cut *span* at every boundary match; pieces are trimmed, never dropped."""
    start, end = span
    cuts: set[int] = set()
    for pattern in boundaries:
        for match in pattern.finditer(text, start, end):
            cut = match.end() if match.group().strip() else match.start()
            if start < cut < end:
                cuts.add(cut)

    bounds = [start, *sorted(cuts), end]
    pieces: list[Span] = []
    for a, b in zip(bounds, bounds[1:]):
        piece = _trim(text, a, b)
        if piece is not None:
            pieces.append(piece)
    return pieces


def _accumulate(units: list[Span], target_size: int) -> list[Span]:
    """Greedily join consecutive units while the joined span fits *target_size*.

    An oversized unit always ends up alone in its group.
    """
    groups: list[Span] = []
    buffer: Span | None = None
    for unit in units:
        if buffer is not None and unit[1] - buffer[0] <= target_size:
            buffer = (buffer[0], unit[1])
            continue
        if buffer is not None:
            groups.append(buffer)
        buffer = unit
    if buffer is not None:
        groups.append(buffer)
    return groups


# ── Strategies ────────────────────────────────────────────────────────


def _cascade(text: str, entry: int, limits: ChunkLimits) -> list[Span]:
    """Run the cascade from level *entry* with an explicit work stack."""
    root = _trim(text, 0, len(text))
    if root is None:
        return []

    out: list[Span] = []
    stack: list[tuple[Span, int]] = [(root, entry)]
    iterations = 0
    while stack:
        span, level = stack.pop()
        iterations += 1
        if span[1] - span[0] <= limits.target_size or level >= len(_CASCADE):
            out.append(span)
            continue
        if iterations > limits.max_iterations:
            if iterations == limits.max_iterations + 1:
                logger.warning("Chunk cascade hit %d iterations; emitting remaining units as-is", limits.max_iterations)
            out.append(span)
            continue

        step = _CASCADE[level]
        units = _split_span(text, span, step.boundaries)
        if len(units) <= 1:
            stack.append((span, level + 1))
            continue
        groups = _accumulate(units, limits.target_size) if step.accumulate else units
        # Reversed so the next pop is the left-most group.
        stack.extend((group, level + 1) for group in reversed(groups))
    return out


def _merge_small(spans: list[Span], limits: ChunkLimits) -> list[Span]:
    """Coalesce chunks below ``min_size`` into a neighbour.

    Prefers the previous chunk, then the next one, while the result stays
    within ``target_size``; otherwise the smaller join within ``max_size``.
    """
    merged = list(spans)
    i = 0
    while i < len(merged) and len(merged) > 1:
        start, end = merged[i]
        if end - start >= limits.min_size:
            i += 1
            continue

        with_next = merged[i + 1][1] - start if i + 1 < len(merged) else None
        with_prev = end - merged[i - 1][0] if i > 0 else None

        if with_prev is not None and with_prev <= limits.target_size:
            merged[i - 1 : i + 1] = [(merged[i - 1][0], end)]
            i -= 1
        elif with_next is not None and with_next <= limits.target_size:
            merged[i : i + 2] = [(start, merged[i + 1][1])]
        else:
            options = [
                (size, side)
                for size, side in ((with_prev, -1), (with_next, 1))
                if size is not None and size <= limits.max_size
            ]
            if not options:
                i += 1
                continue
            _, side = min(options)
            if side == 1:
                merged[i : i + 2] = [(start, merged[i + 1][1])]
            else:
                merged[i - 1 : i + 1] = [(merged[i - 1][0], end)]
                i -= 1
    return merged


def _split_semantic(text: str, limits: ChunkLimits) -> list[Span]:
    return _merge_small(_cascade(text, _ENTRY_LEVEL[ChunkStrategy.SEMANTIC], limits), limits)


def _split_paragraph(text: str, limits: ChunkLimits) -> list[Span]:
    return _merge_small(_cascade(text, _ENTRY_LEVEL[ChunkStrategy.PARAGRAPH], limits), limits)


def _split_sentence(text: str, limits: ChunkLimits) -> list[Span]:
    return _merge_small(_cascade(text, _ENTRY_LEVEL[ChunkStrategy.SENTENCE], limits), limits)


def _split_phrase(text: str, limits: ChunkLimits) -> list[Span]:
    return _merge_small(_cascade(text, _ENTRY_LEVEL[ChunkStrategy.PHRASE], limits), limits)


def _split_fixed(text: str, limits: ChunkLimits) -> list[Span]:
    """Sliding window snapped to word boundaries; windows overlap by ``overlap``."""
    length = len(text)
    spans: list[Span] = []
    start = 0
    while start < length:
        end = min(start + limits.target_size, length)
        if end < length:
            cut = end
            while cut > start and not text[cut].isspace():
                cut -= 1
            if cut > start:
                end = cut

        piece = _trim(text, start, end)
        if piece is not None:
            spans.append(piece)
        if end >= length:
            break

        next_start = max(end - limits.overlap, start + 1)
        while next_start < end and not text[next_start - 1].isspace():
            next_start += 1
        start = next_start

    if len(spans) > 1 and spans[-1][1] - spans[-1][0] < limits.min_size:
        tail = spans.pop()
        spans[-1] = (spans[-1][0], tail[1])
    return spans


def _split_single(text: str, limits: ChunkLimits) -> list[Span]:
    span = _trim(text, 0, len(text))
    return [span] if span is not None else []


_SPLITTERS: dict[ChunkStrategy, Callable[[str, ChunkLimits], list[Span]]] = {
    ChunkStrategy.SEMANTIC: _split_semantic,
    ChunkStrategy.PARAGRAPH: _split_paragraph,
    ChunkStrategy.SENTENCE: _split_sentence,
    ChunkStrategy.PHRASE: _split_phrase,
    ChunkStrategy.FIXED: _split_fixed,
    ChunkStrategy.SINGLE: _split_single,
    # Enhancer chunks arrive pre-split; if one is re-chunked, treat it as structured text.
    ChunkStrategy.AI: _split_semantic,
}


def split_spans(text: str, strategy: ChunkStrategy, limits: ChunkLimits) -> list[Span]:
    """Dispatch *strategy* over already-normalised *text*."""
    return _SPLITTERS[strategy](text, limits)


# ── Public API ────────────────────────────────────────────────────────


def detect_best_strategy(
    text: str,
    *,
    target_size: int | None = None,
    format_hint: str | None = None,
) -> ChunkStrategy:
    """Pick a chunking strategy from the structure of *text*.

    Parameters
    ----------
    text:
        Raw or normalised document text.
    target_size:
        Documents shorter than this are kept whole.
    format_hint:
        Source format reported by the loader (``"json"``, ``"pdf"``, …).
        Structured-data formats fall back to the fixed window when the
        text carries no paragraph structure.
    """
    text = normalize_text(text or "")
    target_size = target_size or settings.chunk_size

    if len(text) < target_size:
        return ChunkStrategy.SINGLE
    if _HEADING_LINE.search(text) or _RULE_LINE.search(text) or _SECTION_GAP.search(text):
        return ChunkStrategy.SEMANTIC
    if _BLANK_LINE.search(text):
        return ChunkStrategy.PARAGRAPH
    if format_hint and format_hint.lower() in _STRUCTURED_FORMATS:
        return ChunkStrategy.FIXED
    return ChunkStrategy.SENTENCE


def chunk_text(
    text: str,
    *,
    strategy: ChunkStrategy | str | None = None,
    target_size: int | None = None,
    overlap: int | None = None,
    min_size: int | None = None,
    max_size: int | None = None,
    metadata: dict[str, Any] | None = None,
    category: str = "general",
    source_id: str = "manual",
    document_hash: str | None = None,
    format_hint: str | None = None,
) -> list[Chunk]:
    """Split *text* into chunks ready for embedding.

    Parameters
    ----------
    text:
        Document text; it is normalised before splitting and chunk offsets
        refer to the normalised form.
    strategy:
        Chunking strategy; ``None`` auto-detects with
        :func:`detect_best_strategy`.
    target_size, overlap, min_size, max_size:
        Size limits in characters (defaults from settings).  ``overlap``
        only affects the fixed strategy.
    metadata:
        Extra metadata copied into every chunk.
    category, source_id, document_hash:
        Provenance stamped on every chunk.
    format_hint:
        Loader format, forwarded to strategy detection.

    Returns
    -------
    list[Chunk]
        Chunks in document order.  Empty or whitespace-only input yields an
        empty list; this function does not raise on bad input.
    """
    if not isinstance(text, str):
        return []
    clean = normalize_text(text)
    if not clean:
        return []

    limits = ChunkLimits.resolve(target_size, overlap, min_size, max_size)

    if len(clean) <= limits.max_size:
        used = ChunkStrategy.SINGLE
    elif strategy is None:
        used = detect_best_strategy(clean, target_size=limits.target_size, format_hint=format_hint)
    else:
        try:
            used = ChunkStrategy(strategy)
        except ValueError:
            logger.warning("Unknown chunk strategy %r, using semantic", strategy)
            used = ChunkStrategy.SEMANTIC

    spans = split_spans(clean, used, limits)

    base_meta = dict(metadata or {})
    chunks: list[Chunk] = []
    for index, (start, end) in enumerate(spans):
        body = clean[start:end]
        chunks.append(
            Chunk(
                text=body,
                index=index,
                hash=hash_text(body),
                char_start=start,
                char_end=end,
                strategy=used,
                category=category,
                source_id=source_id,
                document_hash=document_hash,
                metadata={
                    **base_meta,
                    "chunk_index": index,
                    "total_chunks": len(spans),
                    "char_length": len(body),
                    "word_count": len(body.split()),
                },
            )
        )

    if chunks:
        logger.debug(
            "Chunked %d chars into %d chunks (strategy=%s, avg=%d)",
            len(clean),
            len(chunks),
            used.value,
            len(clean) // len(chunks),
        )
    return chunks
