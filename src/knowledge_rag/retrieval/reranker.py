"""Merge and re-rank result lists gathered from several searches."""

from __future__ import annotations

from collections.abc import Iterable

from knowledge_rag.retrieval.models import SearchResult


def _identity(result: SearchResult) -> str:
    return result.metadata.get("chunk_hash") or result.text


def merge_ranked(result_lists: Iterable[Iterable[SearchResult]], limit: int) -> list[SearchResult]:
    """Concatenate *result_lists*, sort by score descending and keep the top *limit*.

    The same chunk surfacing in more than one list is kept once, with its
    best score.  Ties keep their input order.
    """
    best: dict[str, SearchResult] = {}
    for results in result_lists:
        for result in results:
            key = _identity(result)
            current = best.get(key)
            if current is None or result.score > current.score:
                best[key] = result
    ranked = sorted(best.values(), key=lambda r: r.score, reverse=True)
    return ranked[: max(0, limit)]
