"""Embedding cache. TTL + capacity bounded, shields the encoder from repeated texts.

Eviction is by insertion order (oldest first), after purging expired
entries. Reads do not refresh an entry's position, so this approximates LRU
rather than implementing it.

Keys are a fast 32-bit string hash, not the text itself. Two texts that
collide share one slot and the second reads the first one's vector. That is
accepted for chat-sized inputs; pass ``key_fn=str`` for exact keys.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

import numpy as np

from lorekeeper.models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60.0
DEFAULT_MAX_SIZE = 500


def text_hash(text: str) -> str:
    """Polynomial rolling hash (h * 31 + c) folded to 32 bits, as hex."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return format(h, "08x")


@dataclass
class CacheStats:
    size: int
    max_size: int
    ttl: float
    hits: int
    misses: int


class EmbeddingCache:
    """Process-wide map text -> vector with per-entry expiry."""

    def __init__(self, ttl: float = DEFAULT_TTL, max_size: int = DEFAULT_MAX_SIZE,
                 clock: Callable[[], float] = time.monotonic,
                 key_fn: Callable[[str], str] = text_hash) -> None:
        if not 0 < ttl < math.inf:
            raise ValueError(f"ttl must be a positive finite number, got {ttl}")
        if max_size <= 0:
            raise ValueError(f"max_size must be > 0, got {max_size}")
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._key_fn = key_fn
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, text: str) -> np.ndarray | None:
        key = self._key_fn(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.embedding

    def put(self, text: str, embedding: np.ndarray) -> None:
        key = self._key_fn(text)
        vec = np.array(embedding, dtype=np.float32)
        vec.flags.writeable = False
        with self._lock:
            now = self._clock()
            if key in self._entries:
                # re-insertion restarts the TTL and moves the key to the back
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._evict(now)
            self._entries[key] = CacheEntry(embedding=vec, expires_at=now + self.ttl)

    def _evict(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expired(now)]
        for k in expired:
            del self._entries[k]
        if len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug("Embedding cache full, evicted oldest entry %s", oldest)
        elif expired:
            logger.debug("Embedding cache purged %d expired entries", len(expired))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                ttl=self.ttl,
                hits=self._hits,
                misses=self._misses,
            )

    def __len__(self) -> int:
        """Occupied slots, including expired entries not yet evicted."""
        with self._lock:
            return len(self._entries)

    def __contains__(self, text: str) -> bool:
        key = self._key_fn(text)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.expired(self._clock())

    def __repr__(self) -> str:
        return f"EmbeddingCache(size={len(self)}, max_size={self.max_size}, ttl={self.ttl})"
