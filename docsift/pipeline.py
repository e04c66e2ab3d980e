"""Ingestion and purge orchestration for one document at a time."""

import logging
import re
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePath
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .chunking import Chunker
from .config import DocsiftConfig
from .dedup import Deduplicator
from .embeddings import BaseEmbeddingProvider
from .errors import (
    DocumentNotFoundError,
    DuplicateContentError,
    EmbeddingProviderError,
    IndexWriteError,
)
from .hashing import ContentHasher
from .index import VectorIndex
from .loaders import PDF_MIME
from .models import (
    Chunk,
    Document,
    IndexState,
    IngestResult,
    IngestStatus,
    PurgeResult,
    document_id_for,
)
from .storage import DocumentStore, TextIndex

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def _owner_dir_name(owner_id: str) -> str:
    return _UNSAFE_PATH_CHARS.sub("_", owner_id) or "_"


def _rereadable(mime_type: str, suffix: str) -> bool:
    """Can the live tier read this file back with the bundled loaders?"""
    return (
        mime_type == PDF_MIME
        or mime_type.startswith("text/")
        or suffix.lower() in (".pdf", ".txt", ".md", ".mdx")
    )


class IndexingPipeline:
    """
    Deduplicator -> Document record -> Chunker -> embed -> vector + text index.

    Per-chunk failures never abort a document: the chunk is logged and
    counted as unindexed, and the result reports how many made it.
    """

    def __init__(
        self,
        config: DocsiftConfig,
        embedder: BaseEmbeddingProvider,
        vector_index: VectorIndex,
        text_index: TextIndex,
        document_store: DocumentStore,
        hasher: Optional[ContentHasher] = None,
        chunker: Optional[Chunker] = None,
    ):
        self.config = config
        self.embedder = embedder
        self.vector_index = vector_index
        self.text_index = text_index
        self.document_store = document_store
        self.hasher = hasher or ContentHasher()
        self.chunker = chunker or Chunker(
            config.chunk_words, config.chunk_overlap_words, hasher=self.hasher
        )
        self.deduplicator = Deduplicator(
            document_store, self.hasher, config.name_similarity_threshold
        )
        self.corpus_dir = Path(config.corpus_dir)

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.config.index_write_attempts),
            wait=wait_exponential(
                multiplier=self.config.retry_wait_min,
                min=self.config.retry_wait_min,
                max=self.config.retry_wait_max,
            ),
            retry=retry_if_exception_type(IndexWriteError),
            reraise=True,
        )

    # ============ Ingestion ============

    def ingest(
        self,
        owner_id: str,
        text: str,
        filename: str,
        mime_type: str = "text/plain",
        *,
        byte_size: Optional[int] = None,
        staged_path: Optional[Union[str, Path]] = None,
        display_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        """
        Ingest one document's extracted text.

        Args:
            owner_id: Owner scope for deduplication and search
            text: Already-extracted plain text (may be empty)
            filename: Original filename, used for name-similarity hints
            mime_type: MIME type of the original file
            byte_size: Size of the original file (defaults to the staged
                       file size, else the UTF-8 size of ``text``)
            staged_path: Temporary upload owned by the engine from here on.
                         Kept as the document source when the live tier can
                         re-read it, otherwise discarded.
            display_name: Name shown in results (defaults to the file name)
            metadata: Extra document metadata

        Returns:
            IngestResult with status created, duplicate or partial
        """
        staged = Path(staged_path) if staged_path else None
        check = self.deduplicator.check(owner_id, text, filename)

        if check.is_duplicate:
            existing = check.exact_duplicate
            self._discard(staged)
            return IngestResult(
                status=IngestStatus.DUPLICATE,
                document_id=existing.id,
                indexed_chunk_count=existing.indexed_chunk_count,
                total_chunk_count=existing.total_chunk_count,
                document=existing,
                similar_documents=check.similar_candidates,
            )

        document_id = document_id_for(owner_id, check.content_hash)
        keep_staged = staged is not None and _rereadable(mime_type, staged.suffix)
        source_path = self._source_path(owner_id, document_id, staged.suffix if keep_staged else ".txt")

        if byte_size is None:
            byte_size = staged.stat().st_size if staged is not None else len(text.encode("utf-8"))

        document = Document(
            id=document_id,
            owner_id=owner_id,
            display_name=display_name or PurePath(filename.replace("\\", "/")).name,
            original_name=filename,
            mime_type=mime_type,
            byte_size=byte_size,
            content_hash=check.content_hash,
            name_hash=check.name_hash,
            source_path=str(source_path),
            metadata=dict(metadata or {}),
        )

        try:
            self.document_store.create(document)
        except DuplicateContentError as e:
            # Lost a race with a concurrent ingestion of the same content
            logger.info(f"Concurrent duplicate for owner {owner_id}: {e.existing_document_id}")
            self._discard(staged)
            existing = self.document_store.get(e.existing_document_id) if e.existing_document_id else None
            return IngestResult(
                status=IngestStatus.DUPLICATE,
                document_id=e.existing_document_id,
                indexed_chunk_count=existing.indexed_chunk_count if existing else 0,
                total_chunk_count=existing.total_chunk_count if existing else 0,
                document=existing,
                similar_documents=check.similar_candidates,
            )

        try:
            self._store_source(source_path, text, staged if keep_staged else None)
        except OSError:
            self.document_store.delete(document_id)
            raise
        if staged is not None and not keep_staged:
            self._discard(staged)

        chunks: List[Chunk] = []
        completed = False
        try:
            chunks = self.chunker.split(text, document_id)
            indexed, failed = self._index_chunks(document, chunks)
            completed = True
        finally:
            if not completed:
                # Never leave the record pending
                self.document_store.update_index_state(
                    document_id, IndexState.UNINDEXED, 0, len(chunks)
                )

        if failed and not indexed:
            state = IndexState.UNINDEXED
        elif failed:
            state = IndexState.PARTIAL
        else:
            state = IndexState.INDEXED
        self.document_store.update_index_state(document_id, state, len(indexed), len(chunks))
        document.index_state = state
        document.indexed_chunk_count = len(indexed)
        document.total_chunk_count = len(chunks)

        if indexed:
            try:
                self.vector_index.save()
            except Exception as e:
                logger.error(f"Failed to persist vector index after ingesting {document_id}: {e}")

        status = IngestStatus.PARTIAL if failed else IngestStatus.CREATED
        logger.info(
            f"Ingested {document.display_name!r} as {document_id}: "
            f"{len(indexed)} of {len(chunks)} chunks indexed ({state.value})"
        )
        return IngestResult(
            status=status,
            document_id=document_id,
            indexed_chunk_count=len(indexed),
            total_chunk_count=len(chunks),
            document=document,
            similar_documents=check.similar_candidates,
            failed_chunk_ids=failed,
        )

    def _index_chunks(self, document: Document, chunks: List[Chunk]) -> Tuple[List[str], List[str]]:
        if not chunks:
            return [], []

        def index_one(chunk: Chunk) -> Tuple[str, bool]:
            return chunk.id, self._index_chunk(document, chunk)

        workers = min(self.config.embed_concurrency, len(chunks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="embed") as executor:
            outcomes = list(executor.map(index_one, chunks))

        indexed = [chunk_id for chunk_id, ok in outcomes if ok]
        failed = [chunk_id for chunk_id, ok in outcomes if not ok]
        return indexed, failed

    def _index_chunk(self, document: Document, chunk: Chunk) -> bool:
        metadata = {
            "document_id": document.id,
            "owner_id": document.owner_id,
            "ordinal": chunk.ordinal,
            "display_name": document.display_name,
            "mime_type": document.mime_type,
            "snippet": chunk.text[:self.config.snippet_chars],
        }
        try:
            vector = self.embedder.embed(chunk.text)[0]
            self._retrying()(self.vector_index.upsert, chunk.id, vector, metadata)
            self._retrying()(self.text_index.upsert, chunk.id, chunk.text, metadata)
        except (EmbeddingProviderError, IndexWriteError) as e:
            logger.warning(
                f"Chunk {chunk.ordinal} of document {document.id} not indexed: {e}"
            )
            return False
        except Exception as e:
            logger.warning(
                f"Chunk {chunk.ordinal} of document {document.id} not indexed: {e}",
                exc_info=True,
            )
            return False
        return True

    # ============ Source files ============

    def _source_path(self, owner_id: str, document_id: str, suffix: str) -> Path:
        return self.corpus_dir / _owner_dir_name(owner_id) / f"{document_id}{suffix.lower()}"

    @staticmethod
    def _store_source(dest: Path, text: str, staged: Optional[Path]) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if staged is not None:
            shutil.move(str(staged), str(dest))
        else:
            dest.write_text(text, encoding="utf-8")

    @staticmethod
    def _discard(path: Optional[Path]) -> None:
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not discard staged file {path}: {e}")

    # ============ Deletion ============

    def purge(self, document_id: str) -> PurgeResult:
        """
        Remove every chunk of a document from both indexes.

        The document record and its stored source are removed only once
        both indexes are clean; otherwise the record stays so the purge
        can be re-run.

        Raises:
            DocumentNotFoundError: Unknown document id
        """
        document = self.document_store.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        vector_purged = self._purge_store("vector", self.vector_index.delete_document, document_id)
        text_purged = self._purge_store("text", self.text_index.delete_document, document_id)

        if not (vector_purged and text_purged):
            stale = [name for name, ok in (("vector", vector_purged), ("text", text_purged)) if not ok]
            logger.error(
                f"Index inconsistency: document {document_id} is still referenced by the "
                f"{' and '.join(stale)} index; document record kept for retry"
            )
            return PurgeResult(vector_purged=vector_purged, text_purged=text_purged)

        self.document_store.delete(document_id)
        if document.source_path:
            self._discard(Path(document.source_path))
        logger.info(f"Purged document {document_id}")
        return PurgeResult(vector_purged=True, text_purged=True, document_deleted=True)

    def _purge_store(self, name: str, delete: Callable[[str], int], document_id: str) -> bool:
        try:
            removed = self._retrying()(delete, document_id)
        except IndexWriteError as e:
            logger.error(f"Failed to purge document {document_id} from the {name} index: {e}")
            return False
        logger.debug(f"Removed {removed} chunks of {document_id} from the {name} index")
        return True
