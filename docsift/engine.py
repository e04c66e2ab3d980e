"""Main Docsift engine: wires capabilities into the pipeline and the retriever."""

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .chunking import Chunker
from .config import DocsiftConfig
from .embeddings import BaseEmbeddingProvider, create_embedding_provider, get_cache
from .hashing import ContentHasher
from .index import USearchVectorIndex, VectorIndex
from .models import Document, IngestResult, PurgeResult, SearchOutcome, SearchResult
from .pipeline import IndexingPipeline
from .scanner import LiveCorpusScanner
from .search import CascadingRetriever
from .storage import DocumentStore, SQLiteDocumentStore, SQLiteTextIndex, TextIndex


class Docsift:
    """Document indexing and cascading retrieval engine."""

    def __init__(
        self,
        config: DocsiftConfig,
        *,
        embedder: Optional[BaseEmbeddingProvider] = None,
        vector_index: Optional[VectorIndex] = None,
        text_index: Optional[TextIndex] = None,
        document_store: Optional[DocumentStore] = None,
        openai_api_key: Optional[str] = None,
    ):
        self.config = config.validate()
        self._lock = threading.RLock()

        # Build whatever was not injected
        if embedder is None:
            kwargs: Dict[str, Any] = {}
            if config.embedding_provider.lower().startswith("openai") and openai_api_key:
                kwargs["openai_api_key"] = openai_api_key
            embedder = create_embedding_provider(
                config.embedding_provider, config.embedding_model, **kwargs
            )
        self.embedder = embedder
        if vector_index is None:
            vector_index = USearchVectorIndex(
                config.index_path,
                config.embedding_dim,
                metric=config.metric,
                dtype=config.dtype,
                connectivity=config.connectivity,
                expansion_add=config.expansion_add,
                expansion_search=config.expansion_search,
            )
        # Stores define __len__, so an empty injected one is falsy
        if text_index is None:
            text_index = SQLiteTextIndex(config.db_path)
        if document_store is None:
            document_store = SQLiteDocumentStore(config.db_path)
        self.vector_index = vector_index
        self.text_index = text_index
        self.document_store = document_store

        self.hasher = ContentHasher()
        self.chunker = Chunker(
            config.chunk_words, config.chunk_overlap_words, hasher=self.hasher
        )
        self.pipeline = IndexingPipeline(
            config,
            self.embedder,
            self.vector_index,
            self.text_index,
            self.document_store,
            hasher=self.hasher,
            chunker=self.chunker,
        )
        self.scanner = LiveCorpusScanner(self.document_store, self.chunker, config)
        self.retriever = CascadingRetriever(
            config, self.embedder, self.vector_index, self.text_index, self.scanner
        )

    def __enter__(self) -> "Docsift":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def ingest(
        self,
        owner_id: str,
        text: str,
        filename: str,
        mime_type: str = "text/plain",
        **kwargs: Any,
    ) -> IngestResult:
        """
        Ingest one document's extracted text for an owner.

        Extra keyword arguments (``byte_size``, ``staged_path``,
        ``display_name``, ``metadata``) go to ``IndexingPipeline.ingest``.
        """
        return self.pipeline.ingest(owner_id, text, filename, mime_type, **kwargs)

    def search(
        self,
        query: str,
        k: Optional[int] = None,
        *,
        owner_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """
        Search an owner's corpus.

        Example:
            >>> results = engine.search("refund policy", k=3, owner_id="u1")
            >>> results[0].source_tier
            <SourceTier.VECTOR: 'vector'>
        """
        return self.retriever.search(query, k, owner_id, cancel_event)

    def search_outcome(
        self,
        query: str,
        k: Optional[int] = None,
        *,
        owner_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchOutcome:
        return self.retriever.search_outcome(query, k, owner_id, cancel_event)

    def purge(self, document_id: str) -> PurgeResult:
        """Remove a document from both indexes. Raises DocumentNotFoundError."""
        with self._lock:
            return self.pipeline.purge(document_id)

    def get_document(self, document_id: str) -> Optional[Document]:
        return self.document_store.get(document_id)

    def list_documents(self, owner_id: Optional[str] = None) -> List[Document]:
        return self.document_store.list_documents(owner_id)

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        documents = self.document_store.list_documents()
        states: Dict[str, int] = {}
        for doc in documents:
            states[doc.index_state.value] = states.get(doc.index_state.value, 0) + 1
        return {
            "documents": len(documents),
            "index_states": states,
            "vector_entries": len(self.vector_index),
            "text_chunks": self.text_index.count(),
            "db_path": self.config.db_path,
            "index_path": self.config.index_path,
            "corpus_dir": self.config.corpus_dir,
            "embedding_provider": self.config.embedding_provider,
            "embedding_model": self.config.embedding_model,
            "embedding_dim": self.config.embedding_dim,
            "cache": get_cache().stats(),
        }

    def save(self) -> None:
        """Persist the vector index to disk."""
        with self._lock:
            self.vector_index.save()

    def close(self) -> None:
        """Save and close all connections."""
        with self._lock:
            self.save()
            for store in (self.text_index, self.document_store):
                close = getattr(store, "close", None)
                if close is not None:
                    close()


def create_docsift(
    db_path: str = "docsift.db",
    index_path: str = "docsift.usearch",
    corpus_dir: Union[str, Path] = "docsift_corpus",
    *,
    openai_api_key: Optional[str] = None,
    **overrides: Any,
) -> Docsift:
    """
    Create a Docsift instance with sensible defaults.

    Remaining keyword arguments override ``DocsiftConfig`` fields.

    Example:
        >>> engine = create_docsift("docs.db", "docs.usearch", "corpus")
        >>> engine.ingest("u1", text, "handbook.txt")
        >>> results = engine.search("refund policy", owner_id="u1")
    """
    config = DocsiftConfig(
        db_path=db_path,
        index_path=index_path,
        corpus_dir=str(corpus_dir),
        **overrides,
    )
    return Docsift(config, openai_api_key=openai_api_key)
