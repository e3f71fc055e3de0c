"""Shared pytest configuration, in-memory fakes and fixtures."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from knowledge_rag.config import Settings
from knowledge_rag.exceptions import LoadError
from knowledge_rag.ingestion.enhancer import Enhancement, EnhancerBase
from knowledge_rag.ingestion.loader import DocumentLoaderBase, content_hash
from knowledge_rag.ingestion.models import LoadedDocument
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.models import MetadataFilter, UpsertItem, UpsertResult


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake vector store ───────────────────────────────────────────────────


def _tokens(text: str) -> set[str]:
    return set(re.findall(r"\w+", text.lower()))


class FakeVectorStore(VectorStoreBase):
    """In-memory store scoring chunks by the share of query words they contain."""

    def __init__(
        self,
        *,
        ready: bool = True,
        fail_batches: set[int] | None = None,
        search_error: Exception | None = None,
    ) -> None:
        super().__init__("test-collection")
        self.ready = ready
        self.fail_batches = fail_batches or set()
        self.search_error = search_error
        self.items: dict[str, UpsertItem] = {}
        self.upsert_calls: list[list[UpsertItem]] = []
        self.search_calls: list[dict[str, Any]] = []

    async def upsert_batch(self, items: list[UpsertItem]) -> UpsertResult:
        call = len(self.upsert_calls)
        self.upsert_calls.append(list(items))
        if call in self.fail_batches:
            raise RuntimeError(f"embedding batch {call} failed")
        for item in items:
            self.items[item.id] = item
        return UpsertResult(inserted=len(items))

    async def search(
        self,
        query: str,
        *,
        k: int = 5,
        category: str | None = None,
        threshold: float = 0.0,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        self.search_calls.append({"query": query, "k": k, "category": category, "threshold": threshold})
        if self.search_error is not None:
            raise self.search_error

        wanted = _tokens(query)
        rows: list[dict[str, Any]] = []
        for item in self.items.values():
            if category and item.category != category:
                continue
            score = len(wanted & _tokens(item.text)) / len(wanted) if wanted else 0.0
            if score < threshold:
                continue
            rows.append(
                {
                    "id": item.id,
                    "content": item.text,
                    "score": score,
                    "category": item.category,
                    "source": item.source,
                    "metadata": dict(item.metadata),
                }
            )
        rows.sort(key=lambda r: r["score"], reverse=True)
        return rows[:k]

    async def invalidate_by_source(self, source: str) -> int:
        doomed = [key for key, item in self.items.items() if item.source == source]
        for key in doomed:
            del self.items[key]
        return len(doomed)

    def is_ready(self) -> bool:
        return self.ready

    def add(self, text: str, *, category: str = "general", source: str = "manual", **metadata: Any) -> None:
        """Seed a chunk directly, bypassing the pipeline."""
        key = f"seed-{len(self.items)}"
        self.items[key] = UpsertItem(id=key, text=text, category=category, source=source, metadata=metadata)


# ── Fake loader ─────────────────────────────────────────────────────────


class FakeLoader(DocumentLoaderBase):
    """Serves canned documents keyed by source; an Exception value is raised instead.

    *delay* is either one latency for every load or a per-source mapping.
    """

    def __init__(
        self,
        documents: dict[str, str | Exception] | None = None,
        *,
        delay: float | dict[str, float] = 0.0,
    ) -> None:
        self.documents = documents or {}
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def load(
        self,
        source: str | Path,
        *,
        title: str | None = None,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoadedDocument:
        key = str(source)
        self.calls.append(key)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            delay = self.delay.get(key, 0.0) if isinstance(self.delay, dict) else self.delay
            await asyncio.sleep(delay)
            entry = self.documents.get(key)
            if entry is None:
                raise LoadError(f"File not found: {key}")
            if isinstance(entry, Exception):
                raise entry
            return self._document(entry, Path(key).stem, title, metadata)
        finally:
            self.active -= 1

    async def load_from_buffer(
        self,
        data: bytes,
        file_name: str,
        *,
        title: str | None = None,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoadedDocument:
        self.calls.append(file_name)
        return self._document(data.decode("utf-8"), Path(file_name).stem, title, metadata)

    @staticmethod
    def _document(
        content: str, stem: str, title: str | None, metadata: dict[str, Any] | None
    ) -> LoadedDocument:
        meta = {"format": "text", "title": title or stem, **(metadata or {})}
        return LoadedDocument(content=content, metadata=meta, content_hash=content_hash(content))


# ── Fake enhancer ───────────────────────────────────────────────────────


class FakeEnhancer(EnhancerBase):
    """Returns a canned :class:`Enhancement` or raises *error*."""

    def __init__(self, enhancement: Enhancement | None = None, *, error: Exception | None = None) -> None:
        self.enhancement = enhancement or Enhancement()
        self.error = error
        self.calls: list[LoadedDocument] = []

    async def enhance(
        self,
        document: LoadedDocument,
        *,
        summary: bool = True,
        entities: bool = True,
        chunking: bool = True,
    ) -> Enhancement:
        self.calls.append(document)
        if self.error is not None:
            raise self.error
        return self.enhancement


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def test_settings() -> Settings:
    """Settings isolated from any local ``.env`` file."""
    return Settings(_env_file=None)


@pytest.fixture()
def make_store() -> Callable[..., FakeVectorStore]:
    return FakeVectorStore


@pytest.fixture()
def make_loader() -> Callable[..., FakeLoader]:
    return FakeLoader


@pytest.fixture()
def make_enhancer() -> Callable[..., FakeEnhancer]:
    return FakeEnhancer


@pytest.fixture()
def fake_store() -> FakeVectorStore:
    return FakeVectorStore()
