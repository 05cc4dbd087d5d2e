"""SQLite storage. Memories plus their embeddings, kept 1:1 by memory id."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

from lorekeeper.frecency import (
    BOOST_RETENTION,
    INITIAL_FRECENCY,
    validate_boost,
    validate_decay_factor,
)
from lorekeeper.models import Memory, MemoryScope
from lorekeeper.similarity import VectorLike, as_vector, vector_to_blob

_MEMORY_COLUMNS = (
    "id, entity_id, content, source_message_id, source_channel_id, "
    "source_guild_id, frecency, created_at, updated_at"
)
_DEFAULT_ORDER = "ORDER BY frecency DESC, created_at DESC, id DESC"


class Storage:
    """SQLite backend. One file holds every entity's memories."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.conn = sqlite3.connect(str(self.path))
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS memories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_id INTEGER NOT NULL,
                content TEXT NOT NULL,
                source_message_id TEXT,
                source_channel_id TEXT,
                source_guild_id TEXT,
                frecency REAL NOT NULL DEFAULT {INITIAL_FRECENCY},
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_memories_entity
                ON memories(entity_id);
            CREATE INDEX IF NOT EXISTS idx_memories_frecency
                ON memories(entity_id, frecency DESC);

            CREATE TABLE IF NOT EXISTS memory_embeddings (
                memory_id INTEGER PRIMARY KEY,
                embedding BLOB NOT NULL
            );
        """)
        self.conn.commit()

    # ── Memory CRUD ────────────────────────────────────────────────────

    def insert_memory(self, entity_id: int, content: str, embedding: VectorLike,
                      source_message_id: str | None = None,
                      source_channel_id: str | None = None,
                      source_guild_id: str | None = None) -> Memory:
        """Insert a memory and its embedding in one transaction."""
        with self.conn:
            memory_id = self._insert(entity_id, content, embedding,
                                     source_message_id, source_channel_id,
                                     source_guild_id)
        return self.load_memory(memory_id)

    def _insert(self, entity_id: int, content: str, embedding: VectorLike,
                source_message_id: str | None = None,
                source_channel_id: str | None = None,
                source_guild_id: str | None = None) -> int:
        now = time.time()
        cursor = self.conn.execute(
            """INSERT INTO memories
               (entity_id, content, source_message_id, source_channel_id,
                source_guild_id, frecency, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (entity_id, content, source_message_id, source_channel_id,
             source_guild_id, INITIAL_FRECENCY, now, now),
        )
        memory_id = cursor.lastrowid
        self._put_embedding(memory_id, embedding)
        return memory_id

    def load_memory(self, memory_id: int) -> Memory | None:
        row = self.conn.execute(
            f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_memory(row)

    def memories_for_entity(self, entity_id: int) -> list[Memory]:
        rows = self.conn.execute(
            f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE entity_id = ? {_DEFAULT_ORDER}",
            (entity_id,),
        ).fetchall()
        return [self._row_to_memory(r) for r in rows]

    def memories_for_scope(self, entity_id: int, scope: MemoryScope | str,
                           channel_id: str | None = None,
                           guild_id: str | None = None) -> list[Memory]:
        """Memories visible in a scope. Empty for NONE or a missing channel/guild id."""
        scope = MemoryScope.parse(scope)
        if scope is MemoryScope.GLOBAL:
            return self.memories_for_entity(entity_id)
        if scope is MemoryScope.GUILD and guild_id:
            column, value = "source_guild_id", guild_id
        elif scope is MemoryScope.CHANNEL and channel_id:
            column, value = "source_channel_id", channel_id
        else:
            return []
        rows = self.conn.execute(
            f"""SELECT {_MEMORY_COLUMNS} FROM memories
                WHERE entity_id = ? AND {column} = ? {_DEFAULT_ORDER}""",
            (entity_id, value),
        ).fetchall()
        return [self._row_to_memory(r) for r in rows]

    def find_by_content(self, entity_id: int, content: str) -> Memory | None:
        row = self.conn.execute(
            f"""SELECT {_MEMORY_COLUMNS} FROM memories
                WHERE entity_id = ? AND content = ? ORDER BY id LIMIT 1""",
            (entity_id, content),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_memory(row)

    def update_content(self, memory_id: int, content: str,
                       embedding: VectorLike) -> Memory | None:
        """Replace content and embedding together. None if the id is unknown."""
        with self.conn:
            cursor = self.conn.execute(
                "UPDATE memories SET content = ?, updated_at = ? WHERE id = ?",
                (content, time.time(), memory_id),
            )
            if cursor.rowcount == 0:
                return None
            self._put_embedding(memory_id, embedding)
        return self.load_memory(memory_id)

    def update_content_by_match(self, entity_id: int, old_content: str,
                                new_content: str,
                                embedding: VectorLike) -> Memory | None:
        existing = self.find_by_content(entity_id, old_content)
        if existing is None:
            return None
        return self.update_content(existing.id, new_content, embedding)

    def delete_memory(self, memory_id: int) -> bool:
        """Delete the embedding, then the record."""
        with self.conn:
            self.conn.execute(
                "DELETE FROM memory_embeddings WHERE memory_id = ?", (memory_id,)
            )
            cursor = self.conn.execute(
                "DELETE FROM memories WHERE id = ?", (memory_id,)
            )
        return cursor.rowcount > 0

    def delete_by_content(self, entity_id: int, content: str) -> bool:
        existing = self.find_by_content(entity_id, content)
        if existing is None:
            return False
        return self.delete_memory(existing.id)

    def replace_all(self, entity_id: int,
                    items: Iterable[tuple[str, VectorLike]]) -> list[Memory]:
        """Clear an entity's memories and insert new ones, atomically."""
        with self.conn:
            self.conn.execute(
                """DELETE FROM memory_embeddings WHERE memory_id IN
                   (SELECT id FROM memories WHERE entity_id = ?)""",
                (entity_id,),
            )
            self.conn.execute("DELETE FROM memories WHERE entity_id = ?", (entity_id,))
            ids = [self._insert(entity_id, content, emb) for content, emb in items]
        return [self.load_memory(i) for i in ids]

    def count(self, entity_id: int | None = None) -> int:
        if entity_id is None:
            return self.conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]
        return self.conn.execute(
            "SELECT COUNT(*) FROM memories WHERE entity_id = ?", (entity_id,)
        ).fetchone()[0]

    # ── Embeddings ─────────────────────────────────────────────────────

    def save_embedding(self, memory_id: int, embedding: VectorLike) -> None:
        with self.conn:
            self._put_embedding(memory_id, embedding)

    def _put_embedding(self, memory_id: int, embedding: VectorLike) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO memory_embeddings (memory_id, embedding) VALUES (?, ?)",
            (memory_id, vector_to_blob(embedding)),
        )

    def load_embedding(self, memory_id: int) -> np.ndarray | None:
        row = self.conn.execute(
            "SELECT embedding FROM memory_embeddings WHERE memory_id = ?",
            (memory_id,),
        ).fetchone()
        if row is None or not row[0]:
            return None
        return as_vector(row[0])

    def load_embeddings(self, memory_ids: Sequence[int]) -> dict[int, np.ndarray]:
        """Embeddings for the given ids; ids without one are simply absent."""
        found: dict[int, np.ndarray] = {}
        for chunk in _chunks(memory_ids):
            placeholders = ",".join("?" * len(chunk))
            rows = self.conn.execute(
                f"""SELECT memory_id, embedding FROM memory_embeddings
                    WHERE memory_id IN ({placeholders})""",
                chunk,
            ).fetchall()
            for memory_id, blob in rows:
                if blob:
                    found[memory_id] = as_vector(blob)
        return found

    def embedded_ids(self, memory_ids: Sequence[int]) -> set[int]:
        found: set[int] = set()
        for chunk in _chunks(memory_ids):
            placeholders = ",".join("?" * len(chunk))
            rows = self.conn.execute(
                f"SELECT memory_id FROM memory_embeddings WHERE memory_id IN ({placeholders})",
                chunk,
            ).fetchall()
            found.update(r[0] for r in rows)
        return found

    def delete_embedding(self, memory_id: int) -> bool:
        with self.conn:
            cursor = self.conn.execute(
                "DELETE FROM memory_embeddings WHERE memory_id = ?", (memory_id,)
            )
        return cursor.rowcount > 0

    # ── Frecency ───────────────────────────────────────────────────────

    def boost_frecency(self, memory_ids: Iterable[int], boost: float) -> None:
        """frecency = frecency * 0.95 + boost, as one SQL statement per memory.

        The arithmetic happens inside SQLite, so concurrent boosts of the same
        memory cannot lose updates.
        """
        boost = validate_boost(boost)
        now = time.time()
        with self.conn:
            self.conn.executemany(
                """UPDATE memories
                   SET frecency = frecency * ? + ?, updated_at = ?
                   WHERE id = ?""",
                [(BOOST_RETENTION, boost, now, mid) for mid in memory_ids],
            )

    def decay_frecency(self, factor: float) -> int:
        factor = validate_decay_factor(factor)
        with self.conn:
            cursor = self.conn.execute(
                "UPDATE memories SET frecency = frecency * ?", (factor,)
            )
        return cursor.rowcount

    def delete_below_frecency(self, threshold: float) -> int:
        """Delete memories under the threshold, embeddings first."""
        with self.conn:
            self.conn.execute(
                """DELETE FROM memory_embeddings WHERE memory_id IN
                   (SELECT id FROM memories WHERE frecency < ?)""",
                (threshold,),
            )
            cursor = self.conn.execute(
                "DELETE FROM memories WHERE frecency < ?", (threshold,)
            )
        return cursor.rowcount

    # ── Close ──────────────────────────────────────────────────────────

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> Storage:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ── Row mappers ────────────────────────────────────────────────────

    @staticmethod
    def _row_to_memory(row: tuple) -> Memory:
        return Memory(
            id=row[0],
            entity_id=row[1],
            content=row[2],
            source_message_id=row[3],
            source_channel_id=row[4],
            source_guild_id=row[5],
            frecency=row[6],
            created_at=row[7],
            updated_at=row[8],
        )


def _chunks(ids: Sequence[int], size: int = 500) -> Iterable[list[int]]:
    # keeps IN (...) under SQLite's bound-parameter limit
    ids = list(ids)
    for i in range(0, len(ids), size):
        yield ids[i:i + size]
