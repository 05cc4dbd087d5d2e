"""MemoryStore: the entry point. Entity memories with semantic retrieval and frecency.

API:
    await store.add_memory(entity_id, text)          — embed + persist
    store.get_memories_for_entity(entity_id)         — plain listing
    await store.update_memory(id, text)              — re-embeds
    store.remove_memory(id)                          — embedding goes first
    await store.set_memories(entity_id, texts)       — bulk replace
    await store.search_memories_by_similarity(...)   — ranked, no side effects
    await store.retrieve_relevant_memories(...)      — ranked + frecency boost
    store.decay_all_frecency() / cleanup_low_frecency_memories()
                                                     — for a scheduler
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from lorekeeper.config import Settings
from lorekeeper.context import format_memories_for_context
from lorekeeper.embeddings import Embedder, build_embedder
from lorekeeper.frecency import validate_boost, validate_decay_factor
from lorekeeper.models import Memory, MemoryScope, ScoredMemory
from lorekeeper.retrieval import RetrievalPipeline
from lorekeeper.storage import Storage

logger = logging.getLogger(__name__)


class MemoryStore:
    """Memories for every entity in one SQLite file.

    Content and embedding always change together: the new text is embedded
    first and only then written, in one transaction with its vector. If the
    encoder fails nothing is written and the EmbeddingError reaches the caller.
    """

    format_memories_for_context = staticmethod(format_memories_for_context)

    def __init__(self, path: str | Path | None = None,
                 embedder: Embedder | None = None,
                 settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self._storage = Storage(path or self.settings.db_path)
        self.embedder = embedder or build_embedder(self.settings)
        self.pipeline = RetrievalPipeline(
            self._storage,
            self.embedder,
            min_similarity=self.settings.min_similarity,
            boost=self.settings.frecency_boost,
        )

    @property
    def storage(self) -> Storage:
        return self._storage

    # ── CRUD ───────────────────────────────────────────────────────────

    async def add_memory(self, entity_id: int, content: str,
                         source_message_id: str | None = None,
                         source_channel_id: str | None = None,
                         source_guild_id: str | None = None) -> Memory:
        embedding = await self.embedder.embed(content)
        mem = self._storage.insert_memory(
            entity_id, content, embedding,
            source_message_id=source_message_id,
            source_channel_id=source_channel_id,
            source_guild_id=source_guild_id,
        )
        logger.debug("Added memory %s for entity %s", mem.id, entity_id)
        return mem

    def get_memory(self, memory_id: int) -> Memory | None:
        return self._storage.load_memory(memory_id)

    def get_memories_for_entity(self, entity_id: int) -> list[Memory]:
        """All of an entity's memories, highest frecency first, newest first on ties."""
        return self._storage.memories_for_entity(entity_id)

    def get_memories_for_scope(self, entity_id: int, scope: MemoryScope | str,
                               channel_id: str | None = None,
                               guild_id: str | None = None) -> list[Memory]:
        return self._storage.memories_for_scope(entity_id, scope, channel_id, guild_id)

    async def update_memory(self, memory_id: int, content: str) -> Memory | None:
        if self._storage.load_memory(memory_id) is None:
            return None
        embedding = await self.embedder.embed(content)
        return self._storage.update_content(memory_id, content, embedding)

    async def update_memory_by_content(self, entity_id: int, old_content: str,
                                       new_content: str) -> Memory | None:
        existing = self._storage.find_by_content(entity_id, old_content)
        if existing is None:
            return None
        embedding = await self.embedder.embed(new_content)
        return self._storage.update_content(existing.id, new_content, embedding)

    def remove_memory(self, memory_id: int) -> bool:
        return self._storage.delete_memory(memory_id)

    def remove_memory_by_content(self, entity_id: int, content: str) -> bool:
        return self._storage.delete_by_content(entity_id, content)

    async def set_memories(self, entity_id: int, contents: Iterable[str]) -> list[Memory]:
        """Replace all of an entity's memories (the edit flow).

        Every text is embedded before the old memories are touched.
        """
        contents = list(contents)
        embeddings = await self.embedder.embed_batch(contents)
        memories = self._storage.replace_all(entity_id, zip(contents, embeddings))
        logger.debug("Replaced memories for entity %s (%d)", entity_id, len(memories))
        return memories

    # ── Frecency ───────────────────────────────────────────────────────

    def boost_memory_frecency(self, memory_id: int, boost: float | None = None) -> None:
        """frecency = frecency * 0.95 + boost. Called when a memory is used."""
        if boost is None:
            boost = self.settings.frecency_boost
        self._storage.boost_frecency([memory_id], validate_boost(boost))

    def decay_all_frecency(self, decay_factor: float | None = None) -> int:
        """Multiply every memory's frecency by the decay factor. Run periodically."""
        if decay_factor is None:
            decay_factor = self.settings.decay_factor
        count = self._storage.decay_frecency(validate_decay_factor(decay_factor))
        logger.info("Decayed frecency of %d memories by %.3f", count, decay_factor)
        return count

    def cleanup_low_frecency_memories(self, threshold: float | None = None) -> int:
        """Delete memories whose frecency fell under the threshold. Returns how many."""
        if threshold is None:
            threshold = self.settings.cleanup_threshold
        count = self._storage.delete_below_frecency(threshold)
        logger.info("Removed %d memories with frecency < %s", count, threshold)
        return count

    # ── Retrieval ──────────────────────────────────────────────────────

    async def search_memories_by_similarity(
        self, entity_id: int, query_texts: str | Sequence[str],
        scope: MemoryScope | str,
        channel_id: str | None = None, guild_id: str | None = None,
        *, min_similarity: float | None = None, limit: int | None = None,
    ) -> list[ScoredMemory]:
        return await self.pipeline.search(
            entity_id, query_texts, scope, channel_id, guild_id,
            min_similarity=min_similarity, limit=limit,
        )

    async def retrieve_relevant_memories(
        self, entity_id: int, messages: str | Sequence[str],
        scope: MemoryScope | str,
        channel_id: str | None = None, guild_id: str | None = None,
        *, min_similarity: float | None = None, limit: int | None = None,
    ) -> list[Memory]:
        return await self.pipeline.retrieve(
            entity_id, messages, scope, channel_id, guild_id,
            min_similarity=min_similarity, limit=limit,
        )

    # ── utilities ──────────────────────────────────────────────────────

    @property
    def count(self) -> int:
        return self._storage.count()

    def close(self) -> None:
        self._storage.close()

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"MemoryStore(memories={self.count})"
