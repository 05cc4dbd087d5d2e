"""Core data models. A Memory belongs to one entity and carries a frecency score."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from lorekeeper.frecency import INITIAL_FRECENCY


class MemoryScope(str, Enum):
    NONE = "none"          # memory disabled
    CHANNEL = "channel"    # only memories from the current channel
    GUILD = "guild"        # only memories from the current guild
    GLOBAL = "global"      # everything the entity remembers

    @classmethod
    def parse(cls, value: str | MemoryScope) -> MemoryScope:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown memory scope {value!r} (expected one of: {choices})") from None


@dataclass
class Memory:
    """A curated fact or event about an entity. Its embedding lives in storage."""

    id: int
    entity_id: int
    content: str
    source_message_id: str | None = None
    source_channel_id: str | None = None
    source_guild_id: str | None = None
    frecency: float = INITIAL_FRECENCY
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass
class ScoredMemory:
    """A memory together with its best similarity against the query texts."""

    memory: Memory
    similarity: float


@dataclass
class CacheEntry:
    embedding: np.ndarray
    expires_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at
