"""Unit tests for the file document loader."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from knowledge_rag.exceptions import LoadError
from knowledge_rag.ingestion.loader import (
    FileDocumentLoader,
    _extract_title_md,
    _html_to_text,
    _json_to_text,
    content_hash,
)


@pytest.fixture()
def loader() -> FileDocumentLoader:
    return FileDocumentLoader(max_file_size_bytes=10_000)


# ── Helpers ─────────────────────────────────────────────────────────────


def test_extract_title_md() -> None:
    assert _extract_title_md("intro\n# Seasonal Menu\n## Breads") == "Seasonal Menu"
    assert _extract_title_md("no heading here") == ""


def test_html_to_text_strips_boilerplate() -> None:
    html = (
        "<html><head><title>Hours</title><style>p{}</style></head>"
        "<body><nav>Home</nav><h1>Opening hours</h1><p>8am to 8pm</p>"
        "<script>track()</script></body></html>"
    )
    text, title = _html_to_text(html)
    assert title == "Hours"
    assert "8am to 8pm" in text
    assert "track()" not in text
    assert "Home" not in text


def test_json_to_text_flattens_paths() -> None:
    lines = _json_to_text({"menu": {"items": [{"name": "Rye", "price": 40}]}})
    assert lines == ["menu.items[0].name: Rye", "menu.items[0].price: 40"]


def test_content_hash_is_stable() -> None:
    assert content_hash("abc") == content_hash("abc")
    assert len(content_hash("abc")) == 16


# ── FileDocumentLoader ──────────────────────────────────────────────────


class TestFileDocumentLoader:
    @pytest.mark.asyncio
    async def test_markdown(self, loader: FileDocumentLoader, tmp_path: Path) -> None:
        path = tmp_path / "menu.md"
        path.write_text("# Seasonal Menu\n\nPumpkin bread is back.", encoding="utf-8")

        document = await loader.load(path, category="menu", metadata={"owner": "ops"})

        assert document.format == "markdown"
        assert document.title == "Seasonal Menu"
        assert document.content.startswith("# Seasonal Menu")
        assert document.metadata["category"] == "menu"
        assert document.metadata["owner"] == "ops"
        assert document.content_hash == content_hash(document.content)

    @pytest.mark.asyncio
    async def test_text_title_override(self, loader: FileDocumentLoader, tmp_path: Path) -> None:
        path = tmp_path / "hours.txt"
        path.write_text("Open daily.", encoding="utf-8")

        document = await loader.load(path, title="Opening hours")

        assert document.format == "text"
        assert document.title == "Opening hours"

    @pytest.mark.asyncio
    async def test_json(self, loader: FileDocumentLoader, tmp_path: Path) -> None:
        path = tmp_path / "prices.json"
        path.write_text(json.dumps({"rye": 40, "sourdough": 55}), encoding="utf-8")

        document = await loader.load(path)

        assert document.format == "json"
        assert document.content == "rye: 40\nsourdough: 55"

    @pytest.mark.asyncio
    async def test_invalid_json(self, loader: FileDocumentLoader, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(LoadError, match="Invalid JSON"):
            await loader.load(path)

    @pytest.mark.asyncio
    async def test_html(self, loader: FileDocumentLoader, tmp_path: Path) -> None:
        path = tmp_path / "about.html"
        path.write_text("<html><body><h1>About us</h1><p>Family bakery.</p></body></html>", encoding="utf-8")

        document = await loader.load(path)

        assert document.format == "html"
        assert document.title == "About us"
        assert "Family bakery." in document.content

    @pytest.mark.asyncio
    async def test_unsupported_extension(self, loader: FileDocumentLoader, tmp_path: Path) -> None:
        path = tmp_path / "data.xlsx"
        path.write_bytes(b"\x00\x01")

        with pytest.raises(LoadError, match="Unsupported file extension"):
            await loader.load(path)

    @pytest.mark.asyncio
    async def test_missing_file(self, loader: FileDocumentLoader, tmp_path: Path) -> None:
        with pytest.raises(LoadError, match="File not found"):
            await loader.load(tmp_path / "ghost.txt")

    @pytest.mark.asyncio
    async def test_too_large(self, loader: FileDocumentLoader, tmp_path: Path) -> None:
        path = tmp_path / "big.txt"
        path.write_text("x" * 20_000, encoding="utf-8")

        with pytest.raises(LoadError, match="File too large"):
            await loader.load(path)

    @pytest.mark.asyncio
    async def test_load_from_buffer(self, loader: FileDocumentLoader) -> None:
        document = await loader.load_from_buffer(b"# Promo\n\n2x1 on Tuesdays.", "promo.md")

        assert document.title == "Promo"
        assert document.metadata["original_file_name"] == "promo.md"
        assert "uploaded_at" in document.metadata
        assert "file_path" not in document.metadata

    @pytest.mark.asyncio
    async def test_load_from_buffer_rejects_unknown_type(self, loader: FileDocumentLoader) -> None:
        with pytest.raises(LoadError, match="Unsupported file extension"):
            await loader.load_from_buffer(b"...", "payload.exe")


def test_iter_supported_files(loader: FileDocumentLoader, tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    (tmp_path / "a.md").write_text("a", encoding="utf-8")
    (tmp_path / "sub" / "b.txt").write_text("b", encoding="utf-8")
    (tmp_path / "c.bin").write_text("c", encoding="utf-8")

    assert [p.name for p in loader.iter_supported_files(tmp_path)] == ["a.md", "b.txt"]
    assert [p.name for p in loader.iter_supported_files(tmp_path, recursive=False)] == ["a.md"]
    with pytest.raises(LoadError, match="Directory not found"):
        list(loader.iter_supported_files(tmp_path / "missing"))
