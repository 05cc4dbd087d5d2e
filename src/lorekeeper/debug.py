"""Inspection helpers for embeddings and retrieval. Plain data, no transport.

None of these touch frecency: RAG checks go through search, not retrieve.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from lorekeeper.cache import CacheStats
from lorekeeper.embeddings import Embedder
from lorekeeper.models import MemoryScope
from lorekeeper.similarity import cosine_similarity
from lorekeeper.storage import Storage

if TYPE_CHECKING:
    from lorekeeper.memory import MemoryStore


@dataclass
class EmbeddingStatus:
    loaded: bool
    model_name: str
    dimensions: int
    cache: CacheStats | None = None


@dataclass
class EmbedCheck:
    dimensions: int
    elapsed_ms: int


@dataclass
class SimilarityCheck:
    similarity: float
    elapsed_ms: int


@dataclass
class EmbeddingCoverage:
    entity_id: int
    total: int
    with_embedding: int
    missing_ids: list[int] = field(default_factory=list)


@dataclass
class RagResult:
    id: int
    content: str
    similarity: float


def _elapsed_ms(t0: float) -> int:
    return round((time.perf_counter() - t0) * 1000)


def embedding_status(embedder: Embedder) -> EmbeddingStatus:
    return EmbeddingStatus(
        loaded=embedder.is_loaded,
        model_name=embedder.model_name,
        dimensions=embedder.dimensions,
        cache=embedder.cache.stats() if embedder.cache is not None else None,
    )


async def check_embed(embedder: Embedder, text: str) -> EmbedCheck:
    t0 = time.perf_counter()
    vec = await embedder.embed(text)
    return EmbedCheck(dimensions=int(vec.shape[0]), elapsed_ms=_elapsed_ms(t0))


async def check_similarity(embedder: Embedder, a: str, b: str) -> SimilarityCheck:
    t0 = time.perf_counter()
    va, vb = await asyncio.gather(embedder.embed(a), embedder.embed(b))
    return SimilarityCheck(
        similarity=cosine_similarity(va, vb), elapsed_ms=_elapsed_ms(t0),
    )


def embedding_coverage(storage: Storage, entity_id: int) -> EmbeddingCoverage:
    """Which of an entity's memories are missing a vector (and so never retrieved)."""
    ids = [m.id for m in storage.memories_for_entity(entity_id)]
    embedded = storage.embedded_ids(ids)
    return EmbeddingCoverage(
        entity_id=entity_id,
        total=len(ids),
        with_embedding=len(embedded),
        missing_ids=[i for i in ids if i not in embedded],
    )


async def check_rag_retrieval(store: MemoryStore, entity_id: int, query: str,
                              scope: MemoryScope | str = MemoryScope.GLOBAL,
                              channel_id: str | None = None,
                              guild_id: str | None = None,
                              min_similarity: float | None = None) -> list[RagResult]:
    results = await store.search_memories_by_similarity(
        entity_id, [query], scope, channel_id, guild_id,
        min_similarity=min_similarity,
    )
    return [
        RagResult(id=r.memory.id, content=r.memory.content, similarity=r.similarity)
        for r in results
    ]
