"""Ingestion-time duplicate detection: hard block on content, soft hint on names."""

import logging
from difflib import SequenceMatcher
from typing import Optional

from .hashing import ContentHasher, normalize_filename
from .models import Document, DuplicateCheck
from .storage import DocumentStore

logger = logging.getLogger(__name__)


def name_similarity(a: str, b: str) -> float:
    """SequenceMatcher ratio over normalised filenames, in [0, 1]."""
    na, nb = normalize_filename(a), normalize_filename(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    return SequenceMatcher(None, na, nb).ratio()


class Deduplicator:
    """
    Decide whether an incoming document is an exact duplicate, a
    near-duplicate, or novel.

    Exact duplicates (same normalised content hash, same owner) must be
    refused by the caller. Similar filenames are only suggestions: a
    different document with a similar name is never blocked.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        hasher: Optional[ContentHasher] = None,
        name_similarity_threshold: float = 0.8,
    ):
        self.document_store = document_store
        self.hasher = hasher or ContentHasher()
        self.name_similarity_threshold = name_similarity_threshold

    def check(self, owner_id: str, content: str, filename: str) -> DuplicateCheck:
        content_hash = self.hasher.hash(content)
        exact = self.document_store.find_by_content_hash(owner_id, content_hash)

        name_hash = self.hasher.name_hash(filename)
        similar = []
        for doc in self.document_store.list_documents(owner_id):
            if exact is not None and doc.id == exact.id:
                continue
            if doc.name_hash == name_hash:
                score = 1.0
            else:
                score = name_similarity(filename, doc.original_name)
            if score >= self.name_similarity_threshold:
                similar.append((score, doc))

        similar.sort(key=lambda pair: pair[0], reverse=True)
        candidates = [doc for _, doc in similar]

        if exact is not None:
            logger.info(f"Exact duplicate of document {exact.id} for owner {owner_id}")
        elif candidates:
            logger.info(
                f"{filename!r} resembles {len(candidates)} existing document(s) for owner {owner_id}"
            )
        return DuplicateCheck(
            exact_duplicate=exact,
            similar_candidates=candidates,
            content_hash=content_hash,
            name_hash=name_hash,
        )
