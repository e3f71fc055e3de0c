"""Chroma implementation of the vector-store abstraction.

Chunk TTLs are stored as an ``expires_at`` epoch timestamp in each
record's metadata (``-1`` = never).  Expired records are filtered out at
query time and can be purged with :meth:`ChromaVectorStore.cleanup_expired`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

import chromadb

from knowledge_rag.config import settings
from knowledge_rag.exceptions import StoreUnavailableError
from knowledge_rag.ingestion.embedder import get_embedding_function
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.models import MetadataFilter, UpsertItem, UpsertResult

logger = logging.getLogger(__name__)

NEVER_EXPIRES = -1.0

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _not_expired_clause(now: float) -> dict[str, Any]:
    return {
        "$or": [
            {"expires_at": {"$eq": NEVER_EXPIRES}},
            {"expires_at": {"$gt": now}},
        ]
    }


def _combine(*clauses: dict[str, Any] | None) -> dict[str, Any] | None:
    present = [c for c in clauses if c]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return {"$and": present}


def _flatten_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma only stores scalar metadata; serialise everything else to JSON."""
    flat: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            flat[key] = value
        else:
            flat[key] = json.dumps(value, default=str, ensure_ascii=False)
    return flat


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection (cosine space).
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    embedding_model:
        HuggingFace model id used for text → embedding conversion.
    client:
        Pre-built Chroma client (e.g. ``chromadb.EphemeralClient()`` in
        tests); overrides *host* / *port*.
    embeddings:
        Pre-built LangChain embeddings object; overrides *embedding_model*.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        embedding_model: str = settings.embedding_model,
        client: Any | None = None,
        embeddings: Any | None = None,
    ) -> None:
        super().__init__(collection_name)
        self._host = host
        self._port = port
        self._embedding_model = embedding_model
        self._embedder = embeddings
        self._ready = False
        try:
            self._client = client or chromadb.HttpClient(host=host, port=port)
            self._collection = self._client.get_or_create_collection(
                collection_name, metadata={"hnsw:space": "cosine"}
            )
            self._ready = True
        except Exception:
            logger.warning("Chroma connection to %s:%s failed", host, port, exc_info=True)

    @property
    def embedder(self) -> Any:
        if self._embedder is None:
            self._embedder = get_embedding_function(self._embedding_model)
        return self._embedder

    # -- VectorStoreBase overrides --------------------------------------------

    async def upsert_batch(self, items: list[UpsertItem]) -> UpsertResult:
        if not items:
            return UpsertResult()
        if not self._ready:
            return UpsertResult(errors=["Vector store not ready"])

        now = time.time()
        ingested_at = datetime.now(timezone.utc).isoformat()
        metadatas = []
        for item in items:
            expires_at = now + item.ttl.total_seconds() if item.ttl is not None else NEVER_EXPIRES
            metadatas.append(
                _flatten_metadata(
                    {
                        **item.metadata,
                        "category": item.category,
                        "source": item.source,
                        "expires_at": expires_at,
                        "ingested_at": ingested_at,
                    }
                )
            )

        try:
            embeddings = await asyncio.to_thread(self.embedder.embed_documents, [i.text for i in items])
            await asyncio.to_thread(
                self._collection.upsert,
                ids=[i.id for i in items],
                documents=[i.text for i in items],
                embeddings=embeddings,
                metadatas=metadatas,
            )
        except Exception as exc:
            logger.error("Chroma upsert of %d items failed: %s", len(items), exc)
            return UpsertResult(errors=[f"{type(exc).__name__}: {exc}"])
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
        self._require_ready()
        where = _combine(
            _build_chroma_where(filters or []),
            {"category": {"$eq": category}} if category else None,
            _not_expired_clause(time.time()),
        )
        embedding = await asyncio.to_thread(self.embedder.embed_query, query)
        results = await asyncio.to_thread(
            self._collection.query,
            query_embeddings=[embedding],
            n_results=k,
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        hits: list[dict[str, Any]] = []
        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        for doc_id, content, meta, dist in zip(ids, docs, metas, distances):
            # Cosine distance → similarity.
            score = 1.0 - dist
            if score < threshold:
                continue
            meta = dict(meta or {})
            hits.append(
                {
                    "id": doc_id,
                    "content": content or "",
                    "score": score,
                    "category": meta.get("category"),
                    "source": meta.get("source"),
                    "metadata": meta,
                }
            )
        return hits

    async def invalidate_by_source(self, source: str) -> int:
        self._require_ready()
        found = await asyncio.to_thread(self._collection.get, where={"source": {"$eq": source}}, include=[])
        ids = found.get("ids") or []
        if ids:
            await asyncio.to_thread(self._collection.delete, ids=ids)
        logger.info("Invalidated %d chunks from source %s", len(ids), source)
        return len(ids)

    def is_ready(self) -> bool:
        return self._ready

    def health_check(self) -> bool:
        if not self._ready:
            return False
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    async def get_stats(self) -> dict[str, Any]:
        stats = await super().get_stats()
        if self._ready:
            stats["count"] = await asyncio.to_thread(self._collection.count)
        return stats

    # -- extras ---------------------------------------------------------------

    def _require_ready(self) -> None:
        if not self._ready:
            raise StoreUnavailableError(f"Chroma at {self._host}:{self._port} is not reachable")

    async def cleanup_expired(self) -> int:
        """Delete records whose TTL has elapsed; return how many were removed."""
        self._require_ready()
        where = {
            "$and": [
                {"expires_at": {"$gte": 0}},
                {"expires_at": {"$lte": time.time()}},
            ]
        }
        found = await asyncio.to_thread(self._collection.get, where=where, include=[])
        ids = found.get("ids") or []
        if ids:
            await asyncio.to_thread(self._collection.delete, ids=ids)
        logger.info("Removed %d expired chunks", len(ids))
        return len(ids)
