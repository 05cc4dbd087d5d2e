"""Retrieval pipeline: scope filter -> embed -> max-similarity -> threshold -> rank.

    search()    ranks memories against one or more query texts, no side effects
    retrieve()  search() + a frecency boost for every memory returned

Several query texts (e.g. the last few chat turns) are scored together: a
memory's score is its best match against any of them. A single query is just
the one-row case of the same computation.
"""

from __future__ import annotations

import logging
from typing import Sequence

from lorekeeper.embeddings import Embedder
from lorekeeper.frecency import DEFAULT_BOOST
from lorekeeper.models import Memory, MemoryScope, ScoredMemory
from lorekeeper.similarity import max_similarity_matrix
from lorekeeper.storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIMILARITY = 0.2


def _as_queries(query_texts: str | Sequence[str]) -> list[str]:
    if isinstance(query_texts, str):
        query_texts = [query_texts]
    return [q for q in query_texts if q]


class RetrievalPipeline:
    """Turns query texts into ranked memories for one entity."""

    def __init__(self, storage: Storage, embedder: Embedder,
                 min_similarity: float = DEFAULT_MIN_SIMILARITY,
                 boost: float = DEFAULT_BOOST) -> None:
        self.storage = storage
        self.embedder = embedder
        self.min_similarity = min_similarity
        self.boost = boost

    async def search(self, entity_id: int,
                     query_texts: str | Sequence[str],
                     scope: MemoryScope | str,
                     channel_id: str | None = None,
                     guild_id: str | None = None,
                     *,
                     min_similarity: float | None = None,
                     limit: int | None = None) -> list[ScoredMemory]:
        """Memories scoring at least ``min_similarity``, best first.

        Memories without a stored embedding are skipped. Encoder and storage
        errors propagate; nothing partial is returned.
        """
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        scope = MemoryScope.parse(scope)
        queries = _as_queries(query_texts)
        if scope is MemoryScope.NONE or not queries:
            return []

        candidates = self.storage.memories_for_scope(entity_id, scope, channel_id, guild_id)
        if not candidates:
            return []

        query_vectors = await self.embedder.embed_many(queries)

        embeddings = self.storage.load_embeddings([m.id for m in candidates])
        embedded = [m for m in candidates if m.id in embeddings]
        if len(embedded) < len(candidates):
            logger.debug("Entity %s: %d memories have no embedding, skipped",
                         entity_id, len(candidates) - len(embedded))
        if not embedded:
            return []

        sims = max_similarity_matrix(query_vectors, [embeddings[m.id] for m in embedded])

        floor = self.min_similarity if min_similarity is None else min_similarity
        scored = [
            ScoredMemory(memory=mem, similarity=float(sim))
            for mem, sim in zip(embedded, sims)
            if sim >= floor
        ]
        # id as tie-breaker keeps equal scores in a fixed order between calls
        scored.sort(key=lambda s: (-s.similarity, s.memory.id))
        if limit is not None:
            scored = scored[:limit]

        logger.debug("Entity %s: %d/%d memories above %.2f for %d queries",
                     entity_id, len(scored), len(embedded), floor, len(queries))
        return scored

    async def retrieve(self, entity_id: int,
                       messages: str | Sequence[str],
                       scope: MemoryScope | str,
                       channel_id: str | None = None,
                       guild_id: str | None = None,
                       *,
                       min_similarity: float | None = None,
                       limit: int | None = None) -> list[Memory]:
        """search() for context building: every memory returned gets a frecency boost."""
        results = await self.search(
            entity_id, messages, scope, channel_id, guild_id,
            min_similarity=min_similarity, limit=limit,
        )
        if results:
            self.storage.boost_frecency([r.memory.id for r in results], self.boost)
        return [r.memory for r in results]
