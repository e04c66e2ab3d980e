"""
Docsift - Document Indexing & Cascading Retrieval Engine

Turns extracted document text into searchable chunks and answers queries
with progressively more robust strategies:
- Vector search over a USearch HNSW index
- Keyword/substring search over SQLite FTS5
- A live scan of the stored source files when both indexes come up empty

Key Features:
- Content-hash deduplication per owner, with similar-filename hints
- Deterministic word-window chunking (stable chunk ids)
- Bounded concurrent embedding with per-chunk skip-and-continue
- Retry with backoff on index writes
- Per-tier timeouts and caller cancellation
- Multiple embedding providers (OpenAI, HuggingFace, Jina AI)
- LRU cache for embedding queries
- REST API (FastAPI) and CLI

References:
- USearch: https://github.com/unum-cloud/usearch
- SQLite FTS5: https://www.sqlite.org/fts5.html
"""

from .config import DocsiftConfig
from .errors import (
    DocsiftError,
    DuplicateContentError,
    EmbeddingProviderError,
    IndexWriteError,
    IndexReadError,
    CorpusScanError,
    DocumentNotFoundError,
    SearchCancelledError,
)
from .models import (
    Document,
    Chunk,
    IndexEntry,
    SearchResult,
    SearchOutcome,
    DuplicateCheck,
    IngestResult,
    PurgeResult,
    IndexState,
    IngestStatus,
    SourceTier,
)
from .hashing import ContentHasher
from .chunking import Chunker
from .loaders import load_sources, read_source
from .embeddings import (
    BaseEmbeddingProvider,
    OpenAIEmbedding,
    HuggingFaceEmbedding,
    JinaEmbedding,
    create_embedding_provider,
    get_cache,
)
from .index import VectorIndex, USearchVectorIndex
from .storage import DocumentStore, TextIndex, SQLiteDocumentStore, SQLiteTextIndex
from .dedup import Deduplicator
from .pipeline import IndexingPipeline
from .scanner import LiveCorpusScanner
from .search import CascadingRetriever, TierState
from .engine import Docsift, create_docsift

__version__ = "1.0.0"
__all__ = [
    # Core
    "DocsiftConfig",
    "Docsift",
    "create_docsift",
    # Models
    "Document",
    "Chunk",
    "IndexEntry",
    "SearchResult",
    "SearchOutcome",
    "DuplicateCheck",
    "IngestResult",
    "PurgeResult",
    "IndexState",
    "IngestStatus",
    "SourceTier",
    # Errors
    "DocsiftError",
    "DuplicateContentError",
    "EmbeddingProviderError",
    "IndexWriteError",
    "IndexReadError",
    "CorpusScanError",
    "DocumentNotFoundError",
    "SearchCancelledError",
    # Loaders, hashing & chunking
    "load_sources",
    "read_source",
    "ContentHasher",
    "Chunker",
    # Embeddings
    "BaseEmbeddingProvider",
    "OpenAIEmbedding",
    "HuggingFaceEmbedding",
    "JinaEmbedding",
    "create_embedding_provider",
    "get_cache",
    # Capabilities
    "VectorIndex",
    "USearchVectorIndex",
    "DocumentStore",
    "TextIndex",
    "SQLiteDocumentStore",
    "SQLiteTextIndex",
    # Components
    "Deduplicator",
    "IndexingPipeline",
    "LiveCorpusScanner",
    "CascadingRetriever",
    "TierState",
]
