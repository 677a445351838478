"""Relevant-memory retrieval behind a pluggable ranking strategy.

Relevance is currently recency. An embedding ranker can replace
:class:`RecencyRanker` without touching the orchestrator.
"""

from __future__ import annotations

import logging
from typing import List, Protocol, Sequence

from .models import MemoryRecord
from .store import MemoryStore

logger = logging.getLogger(__name__)


class Ranker(Protocol):
    def rank(self, query: str, candidates: Sequence[MemoryRecord]) -> List[MemoryRecord]:
        """Return the candidates worth showing for ``query``, best first."""


class RecencyRanker:
    """Newest memories first; the query is ignored."""

    def rank(self, query: str, candidates: Sequence[MemoryRecord]) -> List[MemoryRecord]:
        return sorted(candidates, key=lambda r: r.created_at, reverse=True)


class MemoryRetriever:
    def __init__(
        self,
        store: MemoryStore,
        *,
        ranker: Ranker | None = None,
        limit: int = 5,
        candidate_pool: int | None = None,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.store = store
        self.ranker = ranker or RecencyRanker()
        self.limit = limit
        # Recency needs no more candidates than it returns; other rankers may want a wider pool.
        self.candidate_pool = max(candidate_pool or limit, limit)

    def retrieve(self, query: str) -> List[MemoryRecord]:
        """Relevant memories for ``query``; empty on any store failure."""
        logger.debug("Retrieving up to %d memories for %r", self.limit, query[:100])
        try:
            candidates = self.store.list_recent(self.candidate_pool)
            ranked = self.ranker.rank(query, candidates)[: self.limit]
        except Exception:
            logger.exception("Error getting relevant memories")
            return []
        logger.info("Retrieved %d relevant memories", len(ranked))
        return ranked
