"""Unit tests for the ingestion orchestrator."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from knowledge_rag.config import Settings
from knowledge_rag.exceptions import EnhancementError, LoadError
from knowledge_rag.ingestion.enhancer import DocumentSummary, EnhancedChunk, Enhancement, Entity
from knowledge_rag.ingestion.loader import FileDocumentLoader
from knowledge_rag.ingestion.models import ChunkStrategy, IngestOptions, IngestRequest, JobStatus
from knowledge_rag.ingestion.pipeline import IngestionPipeline, PipelineState


def _menu_document() -> str:
    sections = []
    for heading, item in (("# Breads", "sourdough loaf"), ("## Cakes", "chocolate cake"), ("## Drinks", "iced latte")):
        paragraphs = [
            " ".join(
                f"Our {item} number {p}-{s} is prepared fresh every morning by the bakery team."
                for s in range(6)
            )
            for p in range(4)
        ]
        sections.append(heading + "\n\n" + "\n\n".join(paragraphs))
    return "\n\n".join(sections)


@pytest.fixture()
def no_ai(test_settings: Settings) -> Settings:
    return test_settings.model_copy(update={"ai_enhance_enabled": False})


# ── Single document ─────────────────────────────────────────────────────


class TestIngestDocument:
    @pytest.mark.asyncio
    async def test_markdown_menu_document(self, fake_store, make_loader, no_ai) -> None:
        pipeline = IngestionPipeline(fake_store, make_loader(), config=no_ai)

        result = await pipeline.ingest_text(_menu_document(), IngestOptions(category="menu", title="Menu"))

        assert result.ok
        assert result.status is JobStatus.COMPLETED
        assert result.chunks.total >= 3
        assert result.chunks.inserted == result.chunks.total
        assert result.chunks.strategy is ChunkStrategy.SEMANTIC
        assert len(fake_store.items) == result.chunks.total
        for item in fake_store.items.values():
            assert item.category == "menu"
            assert item.ttl == timedelta(days=7)
            assert item.metadata["document_title"] == "Menu"

    @pytest.mark.asyncio
    async def test_empty_text_reports_no_chunks(self, fake_store, make_loader, no_ai) -> None:
        pipeline = IngestionPipeline(fake_store, make_loader(), config=no_ai)

        result = await pipeline.ingest_text("")

        assert not result.ok
        assert "no chunks generated" in result.error.lower()
        assert fake_store.upsert_calls == []
        assert pipeline.state.total_errors == 1

    @pytest.mark.asyncio
    async def test_empty_upload_reports_no_chunks(self, fake_store, make_loader, no_ai) -> None:
        pipeline = IngestionPipeline(fake_store, make_loader(), config=no_ai)

        result = await pipeline.ingest_document(b"", IngestOptions(file_name="empty.txt"))

        assert not result.ok
        assert result.error == "No chunks generated"
        assert result.source == "empty.txt"

    @pytest.mark.asyncio
    async def test_buffer_without_file_name_fails(self, fake_store, make_loader, no_ai) -> None:
        loader = make_loader()
        pipeline = IngestionPipeline(fake_store, loader, config=no_ai)

        result = await pipeline.ingest_document(b"hello")

        assert not result.ok
        assert result.error == "file_name required for buffer input"
        assert loader.calls == []

    @pytest.mark.asyncio
    async def test_loader_error_is_reported(self, fake_store, make_loader, no_ai) -> None:
        pipeline = IngestionPipeline(fake_store, make_loader({"bad.pdf": LoadError("corrupt pdf")}), config=no_ai)

        result = await pipeline.ingest_document("bad.pdf")

        assert not result.ok
        assert result.error == "corrupt pdf"
        assert pipeline.state.last_error == "corrupt pdf"

    @pytest.mark.asyncio
    async def test_disabled_pipeline_does_no_io(self, fake_store, make_loader, no_ai) -> None:
        loader = make_loader({"a.txt": "text"})
        config = no_ai.model_copy(update={"pipeline_enabled": False})
        pipeline = IngestionPipeline(fake_store, loader, config=config)

        result = await pipeline.ingest_document("a.txt")

        assert not result.ok
        assert result.error == "Pipeline disabled"
        assert loader.calls == []

    @pytest.mark.asyncio
    async def test_store_not_ready_does_no_io(self, make_store, make_loader, no_ai) -> None:
        loader = make_loader({"a.txt": "text"})
        pipeline = IngestionPipeline(make_store(ready=False), loader, config=no_ai)

        result = await pipeline.ingest_document("a.txt")

        assert not result.ok
        assert result.error == "Vector store not ready"
        assert loader.calls == []

    @pytest.mark.asyncio
    async def test_ttl_follows_category(self, fake_store, make_loader, no_ai) -> None:
        pipeline = IngestionPipeline(fake_store, make_loader(), config=no_ai)

        await pipeline.ingest_text("Founded in 1952 by two brothers.", IngestOptions(category="history"))
        await pipeline.ingest_text("Misc note about the parking lot.", IngestOptions(category="misc"))

        ttls = {item.category: item.ttl for item in fake_store.items.values()}
        assert ttls["history"] is None
        assert ttls["misc"] == timedelta(days=7)

    @pytest.mark.asyncio
    async def test_forced_strategy_option(self, fake_store, make_loader, no_ai) -> None:
        pipeline = IngestionPipeline(fake_store, make_loader(), config=no_ai)
        text = " ".join(f"token{i}" for i in range(1000))

        result = await pipeline.ingest_text(text, IngestOptions(chunk_strategy=ChunkStrategy.FIXED))

        assert result.chunks.strategy is ChunkStrategy.FIXED
        assert result.chunks.total > 1


# ── Storage batches ─────────────────────────────────────────────────────


class TestStorageBatches:
    @pytest.mark.asyncio
    async def test_partial_failure(self, make_store, make_loader, no_ai) -> None:
        store = make_store(fail_batches={0})
        config = no_ai.model_copy(update={"batch_size": 2})
        pipeline = IngestionPipeline(store, make_loader(), config=config)

        result = await pipeline.ingest_text(_menu_document())

        assert result.ok
        assert result.status is JobStatus.PARTIAL
        assert result.chunks.inserted == result.chunks.total - 2
        assert result.errors == ["embedding batch 0 failed"]
        assert len(store.upsert_calls) == -(-result.chunks.total // 2)

    @pytest.mark.asyncio
    async def test_every_batch_failing(self, make_store, make_loader, no_ai) -> None:
        store = make_store(fail_batches={0, 1, 2, 3, 4, 5, 6, 7})
        config = no_ai.model_copy(update={"batch_size": 2})
        pipeline = IngestionPipeline(store, make_loader(), config=config)

        result = await pipeline.ingest_text(_menu_document())

        assert not result.ok
        assert result.status is JobStatus.FAILED
        assert result.chunks.inserted == 0
        assert result.errors


# ── Enhancement ─────────────────────────────────────────────────────────


class TestEnhancement:
    @pytest.mark.asyncio
    async def test_enhancer_failure_falls_back_to_chunker(self, fake_store, make_loader, make_enhancer, test_settings) -> None:
        enhancer = make_enhancer(error=EnhancementError("model timeout"))
        pipeline = IngestionPipeline(fake_store, make_loader(), enhancer, config=test_settings)

        result = await pipeline.ingest_text(_menu_document())

        assert result.ok
        assert len(enhancer.calls) == 1
        assert result.chunks.strategy is ChunkStrategy.SEMANTIC
        assert not result.enhancement.enabled

    @pytest.mark.asyncio
    async def test_enhancer_chunks_are_used_verbatim(self, fake_store, make_loader, make_enhancer, test_settings) -> None:
        enhancement = Enhancement(
            chunks=[
                EnhancedChunk(text="Breads are baked daily.", title="Breads", start=0, end=23),
                EnhancedChunk(text="Cakes need 24h notice.", title="Cakes", start=24, end=46),
            ],
            summary=DocumentSummary(summary="Bakery menu overview", topics=["bread"]),
            entities=[Entity(type="product", value="sourdough")],
            processing_time_ms=12.5,
        )
        pipeline = IngestionPipeline(fake_store, make_loader(), make_enhancer(enhancement), config=test_settings)

        result = await pipeline.ingest_text("Breads are baked daily. Cakes need 24h notice.")

        assert result.ok
        assert result.chunks.strategy is ChunkStrategy.AI
        assert result.enhancement.enabled
        assert result.enhancement.summary
        assert result.enhancement.entities == 1
        assert result.enhancement.ai_chunking
        texts = sorted(item.text for item in fake_store.items.values())
        assert texts == ["Breads are baked daily.", "Cakes need 24h notice."]
        for item in fake_store.items.values():
            assert item.metadata["document_summary"] == "Bakery menu overview"
            assert item.metadata["chunking_method"] == "ai"
            assert item.metadata["chunk_title"] in {"Breads", "Cakes"}

    @pytest.mark.asyncio
    async def test_skip_enhancement(self, fake_store, make_loader, make_enhancer, test_settings) -> None:
        enhancer = make_enhancer()
        pipeline = IngestionPipeline(fake_store, make_loader(), enhancer, config=test_settings)

        result = await pipeline.ingest_text("Short note.", IngestOptions(skip_enhancement=True))

        assert result.ok
        assert enhancer.calls == []

    @pytest.mark.asyncio
    async def test_enhancement_without_chunks_uses_chunker(self, fake_store, make_loader, make_enhancer, test_settings) -> None:
        enhancement = Enhancement(summary=DocumentSummary(summary="Short"))
        pipeline = IngestionPipeline(fake_store, make_loader(), make_enhancer(enhancement), config=test_settings)

        result = await pipeline.ingest_text("Short note about opening hours.")

        assert result.chunks.strategy is ChunkStrategy.SINGLE
        assert result.enhancement.enabled
        assert not result.enhancement.ai_chunking


# ── Batches ─────────────────────────────────────────────────────────────


class TestIngestBatch:
    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, fake_store, make_loader, no_ai) -> None:
        documents = {f"doc-{i}.txt": f"Document {i} describes branch number {i}." for i in range(5)}
        documents["doc-2.txt"] = LoadError("doc-2.txt is corrupt")
        loader = make_loader(documents, delay=0.01)
        config = no_ai.model_copy(update={"max_concurrent": 2})
        pipeline = IngestionPipeline(fake_store, loader, config=config)

        batch = await pipeline.ingest_batch([IngestRequest(source=f"doc-{i}.txt") for i in range(5)])

        assert batch.total == 5
        assert batch.succeeded == 4
        assert batch.failed == 1
        assert not batch.ok
        assert loader.max_active <= 2

        failed = [r for r in batch.documents if not r.ok]
        assert len(failed) == 1
        assert failed[0].index == 2
        assert failed[0].source == "doc-2.txt"
        assert "doc-2.txt" in failed[0].error
        assert all(r.error is None for r in batch.documents if r.ok)
        assert [r.index for r in batch.ordered()] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_results_arrive_in_completion_order(self, fake_store, make_loader, no_ai) -> None:
        loader = make_loader(
            {"slow.txt": "Slow document.", "fast.txt": "Fast document."},
            delay={"slow.txt": 0.05},
        )
        pipeline = IngestionPipeline(fake_store, loader, config=no_ai)

        batch = await pipeline.ingest_batch(
            [IngestRequest(source="slow.txt", index=0), IngestRequest(source="fast.txt", index=1)]
        )

        assert [r.index for r in batch.documents] == [1, 0]


# ── Directories and reindexing ──────────────────────────────────────────


class TestDirectory:
    @pytest.mark.asyncio
    async def test_ingest_directory(self, tmp_path: Path, fake_store, no_ai) -> None:
        docs = tmp_path / "docs"
        (docs / "menu").mkdir(parents=True)
        (docs / "menu" / "breads.md").write_text("# Breads\n\nSourdough and rye.", encoding="utf-8")
        (docs / "faq.txt").write_text("We open at 8am every day.", encoding="utf-8")
        (docs / "notes.xyz").write_text("ignored", encoding="utf-8")
        pipeline = IngestionPipeline(fake_store, FileDocumentLoader(), config=no_ai)

        batch = await pipeline.ingest_directory(docs)

        assert batch.ok
        assert batch.total == 2
        assert batch.succeeded == 2
        categories = sorted(item.category for item in fake_store.items.values())
        assert categories == ["faq", "menu"]
        assert {item.source for item in fake_store.items.values()} == {"dir:docs"}

    @pytest.mark.asyncio
    async def test_root_directory_name_sets_category(self, tmp_path: Path, fake_store, no_ai) -> None:
        menu = tmp_path / "menu"
        menu.mkdir()
        (menu / "breads.txt").write_text("Sourdough and rye bread.", encoding="utf-8")
        pipeline = IngestionPipeline(fake_store, FileDocumentLoader(), config=no_ai)

        batch = await pipeline.ingest_directory(menu)

        assert batch.ok
        assert [item.category for item in fake_store.items.values()] == ["menu"]
        assert {item.source for item in fake_store.items.values()} == {"dir:menu"}

    @pytest.mark.asyncio
    async def test_empty_directory(self, tmp_path: Path, fake_store, no_ai) -> None:
        pipeline = IngestionPipeline(fake_store, FileDocumentLoader(), config=no_ai)

        batch = await pipeline.ingest_directory(tmp_path)

        assert not batch.ok
        assert batch.error == "No documents found in directory"

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path: Path, fake_store, no_ai) -> None:
        pipeline = IngestionPipeline(fake_store, FileDocumentLoader(), config=no_ai)

        batch = await pipeline.ingest_directory(tmp_path / "nope")

        assert not batch.ok
        assert "Directory not found" in batch.error

    @pytest.mark.asyncio
    async def test_invalidate_first(self, tmp_path: Path, fake_store, no_ai) -> None:
        (tmp_path / "hours.txt").write_text("Open 8am to 8pm.", encoding="utf-8")
        fake_store.add("Old hours: 9am to 5pm.", source="dir:legacy")
        pipeline = IngestionPipeline(fake_store, FileDocumentLoader(), config=no_ai)

        batch = await pipeline.ingest_directory(tmp_path, source_id="dir:legacy", invalidate_first=True)

        assert batch.ok
        assert [item.text for item in fake_store.items.values()] == ["Open 8am to 8pm."]

    @pytest.mark.asyncio
    async def test_reindex_source(self, fake_store, make_loader, no_ai) -> None:
        fake_store.add("one", source="sheet")
        fake_store.add("two", source="sheet")
        fake_store.add("three", source="other")
        pipeline = IngestionPipeline(fake_store, make_loader(), config=no_ai)

        result = await pipeline.reindex_source("sheet")

        assert result.ok
        assert result.invalidated == 2
        assert "re-ingest" in result.message
        assert len(fake_store.items) == 1


# ── State and introspection ─────────────────────────────────────────────


def test_pipeline_state_counters() -> None:
    state = PipelineState()
    state.record_success("menu", 3)
    state.record_success("menu", 2)
    state.record_failure("boom")

    snapshot = state.snapshot()
    assert snapshot["total_processed"] == 2
    assert snapshot["total_chunks"] == 5
    assert snapshot["total_errors"] == 1
    assert snapshot["by_category"] == {"menu": 2}
    assert state.last_error == "boom"
    assert not state.is_processing


@pytest.mark.asyncio
async def test_stats_are_per_instance(fake_store, make_loader, no_ai) -> None:
    first = IngestionPipeline(fake_store, make_loader(), config=no_ai)
    second = IngestionPipeline(fake_store, make_loader(), config=no_ai)

    await first.ingest_text("A short FAQ answer.", IngestOptions(category="faq"))

    assert first.get_stats()["stats"]["by_category"] == {"faq": 1}
    assert second.get_stats()["stats"]["total_processed"] == 0
    assert first.get_health()["vector_store"] is True
    assert first.get_config()["batch_size"] == no_ai.batch_size
