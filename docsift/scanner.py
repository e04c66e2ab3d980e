"""Last-resort search: re-read stored sources and match raw text."""

import logging
import re
from typing import List, Optional, Tuple

from .chunking import Chunker, words_of
from .config import DocsiftConfig
from .errors import CorpusScanError
from .loaders import read_source
from .models import SearchResult, SourceTier, chunk_id_for
from .storage import DocumentStore

logger = logging.getLogger(__name__)

_TERM = re.compile(r"\w+", re.UNICODE)


def query_terms(query: str) -> List[str]:
    return [t.lower() for t in _TERM.findall(query)]


def snippet_around(text: str, position: int, length: int = 300) -> str:
    """A whitespace-collapsed excerpt of ``text`` with ``position`` inside it."""
    if len(text) <= length:
        return " ".join(text.split())
    start = max(0, position - length // 3)
    end = min(len(text), start + length)
    start = max(0, end - length)
    excerpt = " ".join(text[start:end].split())
    if start > 0:
        excerpt = "..." + excerpt
    if end < len(text):
        excerpt = excerpt + "..."
    return excerpt


def word_index_at(content: str, position: int) -> int:
    """Index (in ``words_of(content)``) of the word containing ``position``."""
    index = len(content[:position].split())
    # Match starts inside a word: that word was counted as preceding it
    if index and position > 0 and not content[position - 1].isspace():
        index -= 1
    return index


def find_match(content: str, query: str) -> Optional[int]:
    """
    Character offset of the first match in ``content``, or None.

    The whole query (case-insensitive) wins; otherwise every query term must
    occur somewhere and the earliest one is reported.
    """
    haystack = content.lower()
    phrase = " ".join(query.split()).lower()
    if not phrase:
        return None

    pos = haystack.find(phrase)
    if pos >= 0:
        return pos

    terms = query_terms(query)
    if not terms:
        return None
    positions = [haystack.find(term) for term in terms]
    if min(positions) < 0:
        return None
    return min(positions)


class LiveCorpusScanner:
    """
    Scan the original source of every document, bypassing both indexes.

    Tolerates an index that is stale, corrupted, or never populated. Each
    matching document yields one result attributed to the chunk that
    contains the match, so ids line up with what ingestion produces.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        chunker: Chunker,
        config: DocsiftConfig,
    ):
        self.document_store = document_store
        self.chunker = chunker
        self.config = config

    def scan(self, query: str, k: int, owner_id: Optional[str] = None) -> List[SearchResult]:
        """
        Raises:
            CorpusScanError: Documents cannot be listed, or nothing matched and
                             some sources could not be read.
        """
        try:
            documents = self.document_store.list_documents(owner_id)
        except Exception as e:
            raise CorpusScanError(f"Cannot list documents for live scan: {e}") from e

        results: List[SearchResult] = []
        failures: List[Tuple[str, str]] = []

        for doc in documents:
            if len(results) >= k:
                break
            if not doc.source_path:
                continue
            try:
                content = read_source(doc.source_path, doc.mime_type)
            except CorpusScanError as e:
                logger.warning(f"Live scan skipped document {doc.id}: {e}")
                failures.append((doc.id, str(e)))
                continue

            pos = find_match(content, query)
            if pos is None:
                continue

            total_words = len(words_of(content))
            ordinal = self.chunker.ordinal_for_word(word_index_at(content, pos), total_words)
            results.append(SearchResult(
                chunk_id=chunk_id_for(doc.id, ordinal),
                document_id=doc.id,
                score=self.config.live_tier_score,
                snippet=snippet_around(content, pos, self.config.snippet_chars),
                source_tier=SourceTier.LIVE,
                display_name=doc.display_name,
                ordinal=ordinal,
                metadata={"mime_type": doc.mime_type, "owner_id": doc.owner_id},
            ))

        if not results and failures:
            raise CorpusScanError(
                f"Live scan found no match and could not read {len(failures)} source(s): "
                + "; ".join(f"{doc_id}: {reason}" for doc_id, reason in failures[:3])
            )
        logger.debug(f"Live scan of {len(documents)} documents matched {len(results)}")
        return results
