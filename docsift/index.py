"""Vector index capability and its USearch HNSW implementation."""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
from usearch.index import Index as USearchIndex

from .errors import IndexReadError, IndexWriteError
from .models import IndexEntry

logger = logging.getLogger(__name__)


class VectorIndex(ABC):
    """Vector similarity store keyed by chunk id."""

    @abstractmethod
    def upsert(self, chunk_id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        """Insert or replace the vector for a chunk. Raises IndexWriteError."""

    @abstractmethod
    def query(
        self,
        vector: List[float],
        k: int,
        threshold: float,
        owner_id: Optional[str] = None,
    ) -> List[IndexEntry]:
        """
        Nearest chunks with similarity >= threshold, best first.

        Each returned entry carries ``metadata["similarity"]`` in [0, 1].
        Raises IndexReadError.
        """

    @abstractmethod
    def delete_document(self, document_id: str) -> int:
        """Remove every chunk of a document. Returns count removed. Raises IndexWriteError."""

    def save(self) -> None:
        """Persist pending changes (no-op for stores that write through)."""

    @abstractmethod
    def __len__(self) -> int:
        pass


def chunk_key(chunk_id: str) -> int:
    """USearch needs integer keys; take 60 bits of the hex chunk id."""
    return int(chunk_id[:15], 16)


class USearchVectorIndex(VectorIndex):
    """
    USearch HNSW index with a JSON metadata sidecar.

    USearch stores vectors only, so the denormalized chunk metadata lives
    in ``<index_path>.meta.json`` and is saved together with the index.
    """

    def __init__(
        self,
        index_path: str,
        embedding_dim: int,
        metric: str = "cos",
        dtype: str = "f16",
        connectivity: int = 32,
        expansion_add: int = 128,
        expansion_search: int = 64,
    ):
        self.index_path = Path(index_path)
        self.meta_path = self.index_path.with_name(self.index_path.name + ".meta.json")
        self.embedding_dim = embedding_dim
        self.metric = metric
        self.dtype = dtype
        self.connectivity = connectivity
        self.expansion_add = expansion_add
        self.expansion_search = expansion_search
        self._lock = threading.RLock()
        # Deletions not yet on disk; a failed save leaves this set
        self._unsaved_deletes = False

        self.index = self._init_index()
        self._meta: Dict[int, Dict[str, Any]] = self._load_meta()

    def _init_index(self) -> USearchIndex:
        """Initialize or load the USearch index."""
        if self.index_path.exists():
            index = USearchIndex.restore(str(self.index_path))
            if index is not None:
                if index.ndim != self.embedding_dim:
                    raise ValueError(
                        f"Index at {self.index_path} has {index.ndim} dimensions, "
                        f"embedding model produces {self.embedding_dim}"
                    )
                return index
            logger.warning(f"Could not restore {self.index_path}, starting a new index")

        metric = self.metric if self.metric in ("cos", "ip", "l2sq") else "cos"

        return USearchIndex(
            ndim=self.embedding_dim,
            metric=metric,
            dtype=self.dtype,
            connectivity=self.connectivity,
            expansion_add=self.expansion_add,
            expansion_search=self.expansion_search,
        )

    def _load_meta(self) -> Dict[int, Dict[str, Any]]:
        if not self.meta_path.exists():
            return {}
        with open(self.meta_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return {int(key): value for key, value in raw.items()}

    def _to_similarity(self, distance: float) -> float:
        if self.metric == "l2sq":
            return 1.0 / (1.0 + max(0.0, distance))
        # Cosine / inner-product distances are 1 - similarity
        return max(0.0, min(1.0, 1.0 - distance))

    def upsert(self, chunk_id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        if len(vector) != self.embedding_dim:
            raise IndexWriteError(
                f"Vector for {chunk_id} has {len(vector)} dimensions, index expects {self.embedding_dim}"
            )
        key = chunk_key(chunk_id)
        try:
            with self._lock:
                if key in self.index:
                    self.index.remove(key)
                self.index.add(key, np.array(vector, dtype=np.float32))
                self._meta[key] = {"chunk_id": chunk_id, **metadata}
        except Exception as e:
            raise IndexWriteError(f"USearch rejected chunk {chunk_id}: {e}") from e

    def query(
        self,
        vector: List[float],
        k: int,
        threshold: float,
        owner_id: Optional[str] = None,
    ) -> List[IndexEntry]:
        try:
            with self._lock:
                if len(self.index) == 0:
                    return []
                # Over-fetch when filtering by owner
                fetch_k = min(len(self.index), k * 3 if owner_id else k)
                matches = self.index.search(np.array(vector, dtype=np.float32), fetch_k)
                hits = [(int(m.key), float(m.distance)) for m in matches]
                meta = {key: self._meta.get(key) for key, _ in hits}
        except Exception as e:
            raise IndexReadError(f"USearch query failed: {e}") from e

        entries = []
        for key, distance in hits:
            info = meta[key]
            if info is None:
                continue
            if owner_id is not None and info.get("owner_id") != owner_id:
                continue
            similarity = self._to_similarity(distance)
            if similarity < threshold:
                continue
            entries.append(IndexEntry(
                chunk_id=info["chunk_id"],
                vector=[],
                metadata={**info, "similarity": similarity},
            ))
            if len(entries) >= k:
                break
        return entries

    def delete_document(self, document_id: str) -> int:
        try:
            with self._lock:
                keys = [key for key, info in self._meta.items()
                        if info.get("document_id") == document_id]
                for key in keys:
                    if key in self.index:
                        self.index.remove(key)
                    del self._meta[key]
                if keys:
                    self._unsaved_deletes = True
                if self._unsaved_deletes:
                    self.save()
                return len(keys)
        except Exception as e:
            raise IndexWriteError(f"USearch delete for document {document_id} failed: {e}") from e

    def save(self) -> None:
        """Persist index and metadata to disk."""
        with self._lock:
            self.index_path.parent.mkdir(parents=True, exist_ok=True)
            self.index.save(str(self.index_path))
            tmp = self.meta_path.with_suffix(".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({str(key): value for key, value in self._meta.items()}, f)
            tmp.replace(self.meta_path)
            self._unsaved_deletes = False

    def __len__(self) -> int:
        """Get number of vectors in index."""
        with self._lock:
            return len(self.index)
