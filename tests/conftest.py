import hashlib
import re
import threading
from typing import List, Optional

import numpy as np
import pytest

from docsift.config import DocsiftConfig
from docsift.embeddings import BaseEmbeddingProvider, get_cache
from docsift.engine import Docsift
from docsift.errors import IndexWriteError
from docsift.index import USearchVectorIndex
from docsift.storage import SQLiteTextIndex

DIM = 64
_TOKEN = re.compile(r"\w+")


class HashingEmbedder(BaseEmbeddingProvider):
    """Deterministic bag-of-words vectors: identical texts get identical vectors."""

    def __init__(self, dim: int = DIM, use_cache: bool = False):
        super().__init__("hashing-test", use_cache=use_cache)
        self._dim = dim
        self.calls = 0
        self._lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return self._dim

    def vector(self, text: str) -> List[float]:
        vec = np.zeros(self._dim, dtype=np.float32)
        for token in _TOKEN.findall(text.lower()):
            slot = int(hashlib.md5(token.encode()).hexdigest()[:8], 16) % self._dim
            vec[slot] += 1.0
        norm = np.linalg.norm(vec)
        if norm == 0:
            vec[0] = 1.0
            norm = 1.0
        return (vec / norm).tolist()

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        with self._lock:
            self.calls += 1
        return [self.vector(t) for t in texts]


class FailingEmbedder(HashingEmbedder):
    """Provider outage: every call raises."""

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        raise ConnectionError("embedding provider unreachable")


class FlakyEmbedder(HashingEmbedder):
    """Fails for any text containing ``poison``."""

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        if any("poison" in t for t in texts):
            raise TimeoutError("provider timed out")
        return super()._embed_batch(texts)


class SlowEmbedder(HashingEmbedder):
    """Blocks until released, to exercise tier timeouts and cancellation."""

    def __init__(self, delay: float = 5.0, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.release = threading.Event()
        self.started = threading.Event()

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.started.set()
        self.release.wait(self.delay)
        return super()._embed_batch(texts)


class BrokenTextIndex(SQLiteTextIndex):
    """Text index whose writes and/or deletes are rejected."""

    def __init__(self, db_path: str, fail_upsert: bool = False, fail_delete: bool = False):
        super().__init__(db_path)
        self.fail_upsert = fail_upsert
        self.fail_delete = fail_delete
        self.upsert_attempts = 0
        self.delete_attempts = 0

    def upsert(self, chunk_id, text, metadata):
        self.upsert_attempts += 1
        if self.fail_upsert:
            raise IndexWriteError("text store rejected write")
        super().upsert(chunk_id, text, metadata)

    def delete_document(self, document_id):
        self.delete_attempts += 1
        if self.fail_delete:
            raise IndexWriteError("text store unavailable")
        return super().delete_document(document_id)


class SaveFailingVectorIndex(USearchVectorIndex):
    """USearch index whose next `fail_saves` saves hit a full disk."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_saves = 0
        self.save_attempts = 0

    def save(self):
        self.save_attempts += 1
        if self.fail_saves:
            self.fail_saves -= 1
            raise OSError("No space left on device")
        super().save()


def words(n: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


@pytest.fixture(autouse=True)
def clear_embedding_cache():
    get_cache().clear()
    yield
    get_cache().clear()


@pytest.fixture
def config(tmp_path):
    return DocsiftConfig(
        embedding_dim=DIM,
        dtype="f32",
        db_path=str(tmp_path / "docsift.db"),
        index_path=str(tmp_path / "docsift.usearch"),
        corpus_dir=str(tmp_path / "corpus"),
        retry_wait_min=0.0,
        retry_wait_max=0.0,
        vector_timeout=2.0,
        text_timeout=2.0,
        live_timeout=5.0,
    )


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def make_engine(config):
    """Build engines over the shared temp paths; all are closed at teardown."""
    engines = []

    def _make(embedder: Optional[BaseEmbeddingProvider] = None, **kwargs) -> Docsift:
        engine = Docsift(config, embedder=embedder or HashingEmbedder(), **kwargs)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


@pytest.fixture
def engine(make_engine, embedder):
    return make_engine(embedder)
