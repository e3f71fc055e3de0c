"""Document loaders — turn files, URLs and uploads into :class:`LoadedDocument`.

:class:`DocumentLoaderBase` is the contract the ingestion pipeline relies
on.  :class:`FileDocumentLoader` is the default implementation; it wraps
LangChain community loaders for the binary formats and uses
``requests`` + BeautifulSoup for web pages.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import tempfile
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from knowledge_rag.config import settings
from knowledge_rag.exceptions import LoadError
from knowledge_rag.ingestion.models import LoadedDocument

if TYPE_CHECKING:
    from langchain_core.documents import Document

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: tuple[str, ...] = (".txt", ".md", ".json", ".pdf", ".docx", ".html", ".htm")

_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def _extract_title_md(text: str) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("# "):
            return line.lstrip("# ").strip()
    return ""


def _extract_title_html(soup: Any) -> str:
    """Best-effort title from HTML."""
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(strip=True)
    return ""


def _html_to_text(raw: str) -> tuple[str, str]:
    """Strip boiler-plate tags and return ``(text, title)``."""
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(raw, "html.parser")
    title = _extract_title_html(soup)
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    return soup.get_text(separator="\n", strip=True), title


def _json_to_text(value: Any, prefix: str = "") -> list[str]:
    """Flatten JSON into ``path: value`` lines."""
    lines: list[str] = []
    if isinstance(value, dict):
        for key, item in value.items():
            lines.extend(_json_to_text(item, f"{prefix}.{key}" if prefix else str(key)))
    elif isinstance(value, list):
        for i, item in enumerate(value):
            lines.extend(_json_to_text(item, f"{prefix}[{i}]"))
    else:
        lines.append(f"{prefix}: {value}" if prefix else str(value))
    return lines


def _join_pages(docs: list[Document]) -> str:
    return "\n\n".join(d.page_content for d in docs if d.page_content)


class DocumentLoaderBase(ABC):
    """Backend-agnostic loader interface.

    Implementations raise :class:`~knowledge_rag.exceptions.LoadError` on
    unsupported types, oversize input and parse errors.
    """

    supported_extensions: tuple[str, ...] = SUPPORTED_EXTENSIONS

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def load(
        self,
        source: str | Path,
        *,
        title: str | None = None,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoadedDocument:
        """Load a local file or URL."""
        ...

    @abstractmethod
    async def load_from_buffer(
        self,
        data: bytes,
        file_name: str,
        *,
        title: str | None = None,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoadedDocument:
        """Load an in-memory upload; *file_name* selects the format."""
        ...

    # -- shared helpers -------------------------------------------------------

    def is_supported(self, file_name: str | Path) -> bool:
        return Path(file_name).suffix.lower() in self.supported_extensions

    def iter_supported_files(self, directory: str | Path, *, recursive: bool = True) -> Iterator[Path]:
        """Yield supported files under *directory* in sorted order."""
        root = Path(directory)
        if not root.is_dir():
            raise LoadError(f"Directory not found: {directory}")
        pattern = "**/*" if recursive else "*"
        for path in sorted(root.glob(pattern)):
            if path.is_file() and self.is_supported(path):
                yield path


class FileDocumentLoader(DocumentLoaderBase):
    """Load ``.txt``, ``.md``, ``.json``, ``.pdf``, ``.docx``, ``.html`` files and URLs.

    Parameters
    ----------
    max_file_size_bytes:
        Files larger than this are rejected.
    request_timeout:
        Timeout in seconds for URL fetches.
    """

    def __init__(
        self,
        *,
        max_file_size_bytes: int = settings.max_file_size_bytes,
        request_timeout: float = 30.0,
    ) -> None:
        self.max_file_size_bytes = max_file_size_bytes
        self.request_timeout = request_timeout

    async def load(
        self,
        source: str | Path,
        *,
        title: str | None = None,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoadedDocument:
        source_str = str(source)
        started = time.perf_counter()
        try:
            if source_str.startswith(("http://", "https://")):
                content, meta = await asyncio.to_thread(self._load_url, source_str)
            else:
                content, meta = await asyncio.to_thread(self._load_file, Path(source_str))
        except LoadError:
            raise
        except Exception as exc:
            raise LoadError(f"Failed to load {source_str}: {exc}") from exc

        meta["load_time_ms"] = round((time.perf_counter() - started) * 1000, 2)
        document = self._finish(content, meta, title=title, category=category, metadata=metadata)
        logger.info(
            "Loaded %s (format=%s, %d chars)",
            meta.get("file_name") or source_str,
            meta.get("format"),
            len(document.content),
        )
        return document

    async def load_from_buffer(
        self,
        data: bytes,
        file_name: str,
        *,
        title: str | None = None,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LoadedDocument:
        suffix = Path(file_name).suffix.lower()
        if not self.is_supported(file_name):
            raise LoadError(f"Unsupported file extension: {suffix or file_name}")

        with tempfile.TemporaryDirectory(prefix="rag-upload-") as tmp:
            path = Path(tmp) / Path(file_name).name
            path.write_bytes(data)
            document = await self.load(path, title=title, category=category, metadata=metadata)

        meta = {
            **document.metadata,
            "original_file_name": file_name,
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
        }
        meta.pop("file_path", None)
        return document.model_copy(update={"metadata": meta})

    # -- internals ------------------------------------------------------------

    def _finish(
        self,
        content: str,
        meta: dict[str, Any],
        *,
        title: str | None,
        category: str | None,
        metadata: dict[str, Any] | None,
    ) -> LoadedDocument:
        meta = {**meta, **(metadata or {})}
        if title:
            meta["title"] = title
        if category:
            meta["category"] = category
        return LoadedDocument(content=content, metadata=meta, content_hash=content_hash(content))

    def _load_file(self, path: Path) -> tuple[str, dict[str, Any]]:
        suffix = path.suffix.lower()
        if suffix not in self.supported_extensions:
            raise LoadError(
                f"Unsupported file extension: {suffix}. Supported: {', '.join(self.supported_extensions)}"
            )
        if not path.is_file():
            raise LoadError(f"File not found: {path}")
        size = path.stat().st_size
        if size > self.max_file_size_bytes:
            raise LoadError(
                f"File too large: {size / 1024 / 1024:.2f}MB. "
                f"Max: {self.max_file_size_bytes / 1024 / 1024:.0f}MB"
            )

        meta: dict[str, Any] = {
            "file_name": path.name,
            "file_path": str(path.resolve()),
            "file_size": size,
            "loaded_at": datetime.now(timezone.utc).isoformat(),
        }

        if suffix in (".txt", ".md"):
            from langchain_community.document_loaders import TextLoader

            content = _join_pages(TextLoader(str(path), encoding="utf-8", autodetect_encoding=True).load())
            meta["format"] = "markdown" if suffix == ".md" else "text"
            meta["title"] = (_extract_title_md(content) if suffix == ".md" else "") or path.stem
        elif suffix == ".json":
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise LoadError(f"Invalid JSON in {path.name}: {exc}") from exc
            content = "\n".join(_json_to_text(data))
            meta["format"] = "json"
            meta["title"] = path.stem
        elif suffix == ".pdf":
            from langchain_community.document_loaders import PyPDFLoader

            pages = PyPDFLoader(str(path)).load()
            content = _join_pages(pages)
            meta["format"] = "pdf"
            meta["pages"] = len(pages)
            meta["title"] = path.stem
        elif suffix == ".docx":
            from langchain_community.document_loaders import Docx2txtLoader

            content = _join_pages(Docx2txtLoader(str(path)).load())
            meta["format"] = "docx"
            meta["title"] = path.stem
        else:
            content, title = _html_to_text(path.read_text(encoding="utf-8", errors="replace"))
            meta["format"] = "html"
            meta["title"] = title or path.stem

        if not content.strip():
            logger.warning("Loaded %s but it contains no text", path.name)
        return content, meta

    def _load_url(self, url: str) -> tuple[str, dict[str, Any]]:
        import requests

        try:
            resp = requests.get(url, timeout=self.request_timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise LoadError(f"Failed to fetch {url}: {exc}") from exc

        if len(resp.content) > self.max_file_size_bytes:
            raise LoadError(f"Response too large for {url}")

        ctype = resp.headers.get("content-type", "")
        meta: dict[str, Any] = {
            "url": url,
            "content_type": ctype,
            "loaded_at": datetime.now(timezone.utc).isoformat(),
        }
        if "json" in ctype:
            content = "\n".join(_json_to_text(resp.json()))
            meta["format"] = "json"
        elif "markdown" in ctype or url.endswith((".md", ".mdx")) or ctype.startswith("text/plain"):
            content = resp.text
            meta["format"] = "markdown" if "markdown" in ctype or url.endswith((".md", ".mdx")) else "text"
            meta["title"] = _extract_title_md(content)
        else:
            content, title = _html_to_text(resp.text)
            meta["format"] = "html"
            meta["title"] = title
        meta["title"] = meta.get("title") or url
        return content, meta
