"""Fixed-size word-window chunking."""

import logging
import threading
from collections import OrderedDict
from typing import List, Optional, Tuple

from .hashing import ContentHasher
from .models import Chunk, chunk_id_for, estimate_tokens

logger = logging.getLogger(__name__)


def words_of(text: str) -> List[str]:
    """Whitespace tokenization shared by the chunker and the live scanner."""
    return text.split()


def window_starts(n_words: int, window: int, stride: int) -> List[int]:
    """
    Start offsets of every window over ``n_words`` tokens.

    The walk stops after the first window that reaches the end, so the
    trailing partial window is kept and no window is wholly contained in
    the one before it.
    """
    starts = []
    for start in range(0, n_words, stride):
        starts.append(start)
        if start + window >= n_words:
            break
    return starts


class Chunker:
    """
    Split text into word windows of ``window_words`` with ``overlap_words``
    shared between neighbours.

    Every word of the input lands in at least one chunk. Windows for a given
    content hash are memoised; chunk ids are always derived from the
    document id and ordinal.
    """

    def __init__(
        self,
        window_words: int = 200,
        overlap_words: int = 0,
        cache_size: int = 64,
        hasher: Optional[ContentHasher] = None,
    ):
        if window_words < 1:
            raise ValueError("window_words must be >= 1")
        if not 0 <= overlap_words < window_words:
            raise ValueError("overlap_words must be >= 0 and < window_words")
        self.window_words = window_words
        self.overlap_words = overlap_words
        self.hasher = hasher or ContentHasher()
        self._cache: "OrderedDict[str, List[Tuple[int, int, str]]]" = OrderedDict()
        self._cache_size = cache_size
        self._lock = threading.Lock()

    @property
    def stride(self) -> int:
        return self.window_words - self.overlap_words

    def ordinal_for_word(self, word_index: int, total_words: int) -> int:
        """Ordinal of the chunk that starts at or before ``word_index``."""
        last = len(window_starts(total_words, self.window_words, self.stride)) - 1
        return max(0, min(word_index // self.stride, last))

    def _windows(self, text: str) -> List[Tuple[int, int, str]]:
        key = self.hasher.hash(text)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return cached

        words = words_of(text)
        windows = []
        for start in window_starts(len(words), self.window_words, self.stride):
            end = min(start + self.window_words, len(words))
            windows.append((start, end, " ".join(words[start:end])))

        with self._lock:
            self._cache[key] = windows
            if len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return windows

    def split(self, text: str, document_id: str) -> List[Chunk]:
        """
        Split text into chunks for one document.

        Args:
            text: Extracted plain text
            document_id: Owning document; feeds the deterministic chunk id

        Returns:
            Chunks ordered by ordinal (empty for blank input)
        """
        if not text or not text.strip():
            return []

        chunks = []
        for start, end, window_text in self._windows(text):
            ordinal = start // self.stride
            chunks.append(Chunk(
                id=chunk_id_for(document_id, ordinal),
                document_id=document_id,
                ordinal=ordinal,
                text=window_text,
                token_count_estimate=estimate_tokens(window_text),
                start_word=start,
                end_word=end,
            ))

        logger.debug(f"Split document {document_id} into {len(chunks)} chunks")
        return chunks
