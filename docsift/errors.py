"""
Error taxonomy for ingestion and retrieval.

Only ``CorpusScanError`` is allowed to reach a search caller; the cascade
absorbs embedding and index failures by falling through to the next tier,
and the pipeline absorbs per-chunk failures by recording the chunk as
unindexed.
"""

from typing import Optional


class DocsiftError(Exception):
    """Base exception for the engine."""
    pass


class DuplicateContentError(DocsiftError):
    """Content with the same hash already exists for this owner."""

    def __init__(self, owner_id: str, content_hash: str, existing_document_id: Optional[str] = None):
        self.owner_id = owner_id
        self.content_hash = content_hash
        self.existing_document_id = existing_document_id
        super().__init__(
            f"Duplicate content for owner {owner_id!r} "
            f"(existing document: {existing_document_id or 'unknown'})"
        )


class EmbeddingProviderError(DocsiftError):
    """The embedding capability failed (transient or permanent)."""
    pass


class IndexWriteError(DocsiftError):
    """A vector or text store rejected a write."""
    pass


class IndexReadError(DocsiftError):
    """A vector or text store was unavailable during a query."""
    pass


class CorpusScanError(DocsiftError):
    """The live tier could not access the original source content."""
    pass


class DocumentNotFoundError(DocsiftError):
    """No document with the given id exists."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document {document_id!r} not found")


class SearchCancelledError(DocsiftError):
    """The caller abandoned the query while a tier was in flight."""
    pass
