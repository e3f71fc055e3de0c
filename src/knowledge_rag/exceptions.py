"""Exceptions raised inside the ingestion and retrieval core.

None of these cross the public entry points of
:class:`~knowledge_rag.ingestion.pipeline.IngestionPipeline` or
:class:`~knowledge_rag.retrieval.context.ContextBuilder`; they are
converted to structured results there.
"""


class KnowledgeRAGError(Exception):
    """Base exception for knowledge-rag errors."""

    def __init__(self, message: str, stage: str):
        self.message = message
        self.stage = stage
        super().__init__(message)


class LoadError(KnowledgeRAGError):
    """A document could not be loaded (unsupported type, too large, parse error)."""

    def __init__(self, message: str):
        super().__init__(message, "load")


class EnhancementError(KnowledgeRAGError):
    """The optional AI enhancement step failed."""

    def __init__(self, message: str):
        super().__init__(message, "enhance")


class StoreUnavailableError(KnowledgeRAGError):
    """The vector store is not connected or not ready."""

    def __init__(self, message: str = "Vector store not ready"):
        super().__init__(message, "store")


class SearchError(KnowledgeRAGError):
    """A similarity search against the vector store failed."""

    def __init__(self, message: str):
        super().__init__(message, "search")
