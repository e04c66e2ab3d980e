"""Cascading retrieval: vector search, then text search, then a live scan."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Callable, List, Optional, TypeVar

from .config import DocsiftConfig
from .embeddings import BaseEmbeddingProvider
from .errors import (
    CorpusScanError,
    EmbeddingProviderError,
    IndexReadError,
    SearchCancelledError,
)
from .index import VectorIndex
from .models import SearchOutcome, SearchResult, SourceTier
from .scanner import LiveCorpusScanner, find_match, snippet_around
from .storage import TextIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How often a waiting tier checks for cancellation
_POLL_INTERVAL = 0.05


class TierState(str, Enum):
    """Cascade states. Transitions only move forward."""
    TRY_VECTOR = "try_vector"
    TRY_TEXT = "try_text"
    TRY_LIVE = "try_live"
    EXHAUSTED = "exhausted"


_NEXT_STATE = {
    TierState.TRY_VECTOR: TierState.TRY_TEXT,
    TierState.TRY_TEXT: TierState.TRY_LIVE,
    TierState.TRY_LIVE: TierState.EXHAUSTED,
}

_TIER_OF_STATE = {
    TierState.TRY_VECTOR: SourceTier.VECTOR,
    TierState.TRY_TEXT: SourceTier.TEXT,
    TierState.TRY_LIVE: SourceTier.LIVE,
}


class TierTimeoutError(Exception):
    """A tier did not answer within its timeout."""


class CascadingRetriever:
    """
    Answer a query with the first tier that yields a usable result set.

    Tiers run one after another, each bounded by its own timeout. Results of
    one query always come from a single tier. Vector and text failures
    (provider errors, index errors, timeouts) fall through to the next tier;
    only the live scan may raise ``CorpusScanError``, and only when it found
    nothing.
    """

    def __init__(
        self,
        config: DocsiftConfig,
        embedder: BaseEmbeddingProvider,
        vector_index: VectorIndex,
        text_index: TextIndex,
        scanner: LiveCorpusScanner,
    ):
        self.config = config
        self.embedder = embedder
        self.vector_index = vector_index
        self.text_index = text_index
        self.scanner = scanner

    def search(
        self,
        query: str,
        k: Optional[int] = None,
        owner_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """
        Search the owner-scoped corpus.

        Args:
            query: Natural-language query
            k: Maximum number of results (defaults to config.default_k)
            owner_id: Restrict to one owner's documents
            cancel_event: Set by the caller to abandon the query

        Returns:
            Results from a single tier; empty when every tier came up empty

        Raises:
            CorpusScanError: The live scan could not read sources and found nothing
            SearchCancelledError: ``cancel_event`` was set
            ValueError: ``k`` is below 1
        """
        return self.search_outcome(query, k, owner_id, cancel_event).results

    def search_outcome(
        self,
        query: str,
        k: Optional[int] = None,
        owner_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchOutcome:
        """Like ``search`` but also reports which tiers ran and which one answered."""
        if k is None:
            k = self.config.default_k
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        cancel_event = cancel_event or threading.Event()
        attempted: List[SourceTier] = []

        if not query or not query.strip():
            return SearchOutcome(results=[], tier=None, attempted=attempted)

        state = TierState.TRY_VECTOR
        while state is not TierState.EXHAUSTED:
            self._check_cancelled(cancel_event)
            tier = _TIER_OF_STATE[state]
            attempted.append(tier)

            results = self._run_state(state, query, k, owner_id, cancel_event)
            self._check_cancelled(cancel_event)

            if results:
                logger.info(f"Query answered by {tier.value} tier with {len(results)} result(s)")
                return SearchOutcome(results=results[:k], tier=tier, attempted=attempted)

            next_state = _NEXT_STATE[state]
            logger.info(f"{tier.value} tier returned nothing; moving to {next_state.value}")
            state = next_state

        return SearchOutcome(results=[], tier=None, attempted=attempted)

    # ============ States ============

    def _run_state(
        self,
        state: TierState,
        query: str,
        k: int,
        owner_id: Optional[str],
        cancel_event: threading.Event,
    ) -> List[SearchResult]:
        if state is TierState.TRY_VECTOR:
            try:
                return self._vector_tier(query, k, owner_id, cancel_event)
            except SearchCancelledError:
                raise
            except (EmbeddingProviderError, IndexReadError, TierTimeoutError) as e:
                logger.warning(f"Vector tier failed: {e}")
                return []
            except Exception as e:
                logger.warning(f"Vector tier failed unexpectedly: {e}", exc_info=True)
                return []

        if state is TierState.TRY_TEXT:
            try:
                return self._run_with_timeout(
                    lambda: self._text_tier(query, k, owner_id),
                    self.config.text_timeout,
                    cancel_event,
                )
            except SearchCancelledError:
                raise
            except (IndexReadError, TierTimeoutError) as e:
                logger.warning(f"Text tier failed: {e}")
                return []
            except Exception as e:
                logger.warning(f"Text tier failed unexpectedly: {e}", exc_info=True)
                return []

        # The last resort: a timeout here is reported like any unreadable corpus
        try:
            return self._run_with_timeout(
                lambda: self.scanner.scan(query, k, owner_id),
                self.config.live_timeout,
                cancel_event,
            )
        except TierTimeoutError as e:
            raise CorpusScanError(f"Live scan did not finish: {e}") from e

    def _vector_tier(
        self,
        query: str,
        k: int,
        owner_id: Optional[str],
        cancel_event: threading.Event,
    ) -> List[SearchResult]:
        def run():
            vector = self.embedder.embed(query, write_cache=False)[0]
            return vector, self.vector_index.query(
                vector, k, self.config.similarity_threshold, owner_id=owner_id
            )

        vector, entries = self._run_with_timeout(run, self.config.vector_timeout, cancel_event)
        self._check_cancelled(cancel_event)
        self.embedder.remember(query, vector)

        return [
            SearchResult(
                chunk_id=entry.chunk_id,
                document_id=entry.metadata.get("document_id", ""),
                score=float(entry.metadata.get("similarity", 0.0)),
                snippet=entry.metadata.get("snippet", ""),
                source_tier=SourceTier.VECTOR,
                display_name=entry.metadata.get("display_name", ""),
                ordinal=entry.metadata.get("ordinal"),
                metadata={"mime_type": entry.metadata.get("mime_type")},
            )
            for entry in entries
        ]

    def _text_tier(self, query: str, k: int, owner_id: Optional[str]) -> List[SearchResult]:
        rows = self.text_index.search(query, k, owner_id=owner_id)
        results = []
        for row in rows:
            content = row["content"] or ""
            pos = find_match(content, query)
            results.append(SearchResult(
                chunk_id=row["chunk_id"],
                document_id=row["document_id"],
                score=self.config.text_tier_score,
                snippet=snippet_around(content, pos or 0, self.config.snippet_chars),
                source_tier=SourceTier.TEXT,
                display_name=row.get("display_name") or "",
                ordinal=row.get("ordinal"),
                metadata={"mime_type": row.get("mime_type")},
            ))
        return results

    # ============ Timeouts and cancellation ============

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise SearchCancelledError("Search cancelled by caller")

    @staticmethod
    def _run_with_timeout(
        fn: Callable[[], T],
        timeout: float,
        cancel_event: threading.Event,
    ) -> T:
        """
        Run ``fn`` in a worker thread, waiting at most ``timeout`` seconds.

        A timed-out or cancelled call is abandoned: its worker finishes in the
        background and its result is discarded.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tier")
        try:
            future: Future = executor.submit(fn)
            deadline = time.monotonic() + timeout
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    future.cancel()
                    raise TierTimeoutError(f"no answer within {timeout:.2f}s")
                done, _ = wait([future], timeout=min(_POLL_INTERVAL, remaining))
                if done:
                    return future.result()
                if cancel_event.is_set():
                    future.cancel()
                    raise SearchCancelledError("Search cancelled by caller")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
