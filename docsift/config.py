"""Configuration models for the Docsift engine."""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict


@dataclass
class DocsiftConfig:
    """Configuration for the Docsift indexing and retrieval engine."""

    # Embedding settings
    embedding_provider: str = "openai"  # 'openai', 'huggingface', 'jina'
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 1536  # text-embedding-3-small dimension

    # USearch HNSW parameters
    metric: str = "cos"  # 'cos', 'ip', 'l2sq'
    dtype: str = "f16"   # 'f32', 'f16', 'bf16', 'i8'
    connectivity: int = 32      # M parameter
    expansion_add: int = 128    # efConstruction
    expansion_search: int = 64  # ef

    # Chunking settings (words, not characters)
    chunk_words: int = 200
    chunk_overlap_words: int = 0  # stride = chunk_words - chunk_overlap_words

    # Ingestion
    embed_concurrency: int = 4
    index_write_attempts: int = 3
    retry_wait_min: float = 0.5
    retry_wait_max: float = 4.0

    # Thresholds
    similarity_threshold: float = 0.7       # vector tier cut-off
    name_similarity_threshold: float = 0.8  # near-duplicate filename hint

    # Fixed confidence for tiers without a similarity signal
    text_tier_score: float = 0.8
    live_tier_score: float = 0.7

    # Per-tier timeouts (seconds)
    vector_timeout: float = 10.0
    text_timeout: float = 5.0
    live_timeout: float = 30.0

    # Search settings
    default_k: int = 5
    snippet_chars: int = 300

    # Storage paths
    db_path: str = "docsift.db"
    index_path: str = "docsift.usearch"
    corpus_dir: str = "docsift_corpus"

    def validate(self) -> "DocsiftConfig":
        """Raise ValueError on inconsistent settings. Returns self."""
        if self.chunk_words < 1:
            raise ValueError("chunk_words must be >= 1")
        if not 0 <= self.chunk_overlap_words < self.chunk_words:
            raise ValueError("chunk_overlap_words must be >= 0 and < chunk_words")
        if self.embed_concurrency < 1:
            raise ValueError("embed_concurrency must be >= 1")
        if self.index_write_attempts < 1:
            raise ValueError("index_write_attempts must be >= 1")
        for name in ("similarity_threshold", "name_similarity_threshold",
                     "text_tier_score", "live_tier_score"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.live_tier_score > self.text_tier_score:
            raise ValueError("live_tier_score must not exceed text_tier_score")
        for name in ("vector_timeout", "text_timeout", "live_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.default_k < 1:
            raise ValueError("default_k must be >= 1")
        return self

    @property
    def chunk_stride(self) -> int:
        return self.chunk_words - self.chunk_overlap_words

    @classmethod
    def from_env(cls, prefix: str = "DOCSIFT_", **overrides: Any) -> "DocsiftConfig":
        """
        Create config from environment variables.

        Every field can be set as ``<prefix><FIELD_NAME>`` in upper case,
        e.g. ``DOCSIFT_DB_PATH`` or ``DOCSIFT_SIMILARITY_THRESHOLD``.
        Keyword overrides win over the environment.
        """
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = os.environ.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            if f.type in (int, "int"):
                values[f.name] = int(raw)
            elif f.type in (float, "float"):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw
        values.update(overrides)
        return cls(**values).validate()
