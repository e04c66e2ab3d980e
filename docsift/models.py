"""Data models for the Docsift engine."""

import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class IndexState(str, Enum):
    """How much of a document made it into the indexes."""
    PENDING = "pending"
    INDEXED = "indexed"
    PARTIAL = "partial"
    UNINDEXED = "unindexed"


class SourceTier(str, Enum):
    """Search strategy that produced a result."""
    VECTOR = "vector"
    TEXT = "text"
    LIVE = "live"


class IngestStatus(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    PARTIAL = "partial"


def document_id_for(owner_id: str, content_hash: str) -> str:
    """Stable, owner-scoped document id."""
    return hashlib.sha256(f"{owner_id}:{content_hash}".encode()).hexdigest()[:24]


def chunk_id_for(document_id: str, ordinal: int) -> str:
    """Deterministic chunk id, so re-ingesting unchanged content upserts in place."""
    return hashlib.sha256(f"{document_id}:{ordinal}".encode()).hexdigest()[:32]


def estimate_tokens(text: str) -> int:
    """Roughly 4 characters per token."""
    return math.ceil(len(text) / 4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Document:
    """An ingested document. Chunks never outlive it."""
    id: str
    owner_id: str
    display_name: str
    original_name: str
    mime_type: str
    byte_size: int
    content_hash: str
    name_hash: str
    created_at: datetime = field(default_factory=_utcnow)
    source_path: Optional[str] = None
    index_state: IndexState = IndexState.PENDING
    indexed_chunk_count: int = 0
    total_chunk_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "displayName": self.display_name,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "byteSize": self.byte_size,
            "contentHash": self.content_hash,
            "nameHash": self.name_hash,
            "createdAt": self.created_at.isoformat(),
            "indexState": self.index_state.value,
            "indexedChunkCount": self.indexed_chunk_count,
            "totalChunkCount": self.total_chunk_count,
            "metadata": self.metadata,
        }


@dataclass
class Chunk:
    """A bounded word window of a document's text."""
    id: str
    document_id: str
    ordinal: int
    text: str
    token_count_estimate: int
    start_word: int = 0
    end_word: int = 0


@dataclass
class IndexEntry:
    """Vector-side record; metadata is denormalized so hits are self-describing."""
    chunk_id: str
    vector: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchResult:
    """A single search hit."""
    chunk_id: str
    document_id: str
    score: float  # similarity in [0,1] for vector, fixed confidence otherwise
    snippet: str
    source_tier: SourceTier
    display_name: str = ""
    ordinal: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunkId": self.chunk_id,
            "documentId": self.document_id,
            "score": self.score,
            "snippet": self.snippet,
            "sourceTier": self.source_tier.value,
            "displayName": self.display_name,
            "ordinal": self.ordinal,
        }


@dataclass
class SearchOutcome:
    """Results of one cascade run plus the tiers it went through."""
    results: List[SearchResult] = field(default_factory=list)
    tier: Optional[SourceTier] = None  # None when every tier came up empty
    attempted: List[SourceTier] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.tier is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "sourceTier": self.tier.value if self.tier else None,
            "attemptedTiers": [t.value for t in self.attempted],
        }


@dataclass
class DuplicateCheck:
    """Outcome of the deduplicator: a hard block and/or soft warnings."""
    exact_duplicate: Optional[Document] = None
    similar_candidates: List[Document] = field(default_factory=list)
    content_hash: str = ""
    name_hash: str = ""

    @property
    def is_duplicate(self) -> bool:
        return self.exact_duplicate is not None


@dataclass
class IngestResult:
    """Per-document ingestion report."""
    status: IngestStatus
    document_id: Optional[str] = None
    indexed_chunk_count: int = 0
    total_chunk_count: int = 0
    document: Optional[Document] = None
    similar_documents: List[Document] = field(default_factory=list)
    failed_chunk_ids: List[str] = field(default_factory=list)

    @property
    def warning_count(self) -> int:
        return len(self.failed_chunk_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "documentId": self.document_id,
            "indexedChunkCount": self.indexed_chunk_count,
            "totalChunkCount": self.total_chunk_count,
            "similarDocuments": [
                {"id": d.id, "displayName": d.display_name} for d in self.similar_documents
            ],
        }


@dataclass
class PurgeResult:
    """Which stores no longer reference a purged document."""
    vector_purged: bool
    text_purged: bool
    document_deleted: bool = False

    @property
    def ok(self) -> bool:
        return self.vector_purged and self.text_purged

    def to_dict(self) -> Dict[str, Any]:
        return {"vectorPurged": self.vector_purged, "textPurged": self.text_purged}
