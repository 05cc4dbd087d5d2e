"""lorekeeper: semantic memory retrieval for roleplay entities."""

from lorekeeper.cache import EmbeddingCache
from lorekeeper.config import Settings
from lorekeeper.context import format_memories_for_context
from lorekeeper.embeddings import Embedder, EmbeddingProvider, hashing_encoder
from lorekeeper.errors import DimensionMismatchError, EmbeddingError, LorekeeperError
from lorekeeper.memory import MemoryStore
from lorekeeper.models import Memory, MemoryScope, ScoredMemory
from lorekeeper.similarity import cosine_similarity, max_similarity_matrix

__version__ = "0.1.0"
__all__ = [
    "MemoryStore", "Memory", "MemoryScope", "ScoredMemory", "Settings",
    "Embedder", "EmbeddingProvider", "EmbeddingCache", "hashing_encoder",
    "cosine_similarity", "max_similarity_matrix", "format_memories_for_context",
    "LorekeeperError", "EmbeddingError", "DimensionMismatchError",
]
