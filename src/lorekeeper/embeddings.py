"""Embeddings: a lazily-loaded text encoder behind a cache.

Built-in encoders:
    hashing_encoder(dims)               — numpy hashing vectorizer, no download
    sentence_transformer_loader(model)  — all-MiniLM-L6-v2 via sentence-transformers

The encoder is loaded on first use, in a worker thread. Concurrent first
callers share one in-flight load; if it fails they all see the same
EmbeddingError and the next call starts a fresh load.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np

from lorekeeper.cache import EmbeddingCache
from lorekeeper.config import EMBEDDING_DIMENSIONS, MODEL_NAME
from lorekeeper.errors import EmbeddingError
from lorekeeper.similarity import VectorLike, as_vector

if TYPE_CHECKING:
    from lorekeeper.config import Settings

logger = logging.getLogger(__name__)

# text -> vector, blocking
Encoder = Callable[[str], VectorLike]
# () -> Encoder, blocking and possibly slow (model download)
Loader = Callable[[], Encoder]

DEFAULT_BATCH_SIZE = 32

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


# ── Built-in encoders ──────────────────────────────────────────────────


def hashing_encoder(dims: int = EMBEDDING_DIMENSIONS) -> Encoder:
    """Hashing vectorizer: tokenize -> hash each token to an index -> normalized TF vector.

    Deterministic and fast; captures word overlap, not meaning. Good enough
    for development and tests. Empty text gives the zero vector.
    """

    def _encode(text: str) -> np.ndarray:
        vec = np.zeros(dims, dtype=np.float32)
        for token in _TOKEN_RE.findall(text.lower()):
            h = int(hashlib.md5(token.encode()).hexdigest(), 16)
            vec[h % dims] += 1.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec

    return _encode


def sentence_transformer_loader(model_name: str = MODEL_NAME,
                                device: str | None = None) -> Loader:
    """Loader for a sentence-transformers model (install the ``model`` extra)."""

    def _load() -> Encoder:
        from sentence_transformers import SentenceTransformer

        model = SentenceTransformer(model_name, device=device)

        def _encode(text: str) -> np.ndarray:
            return model.encode(text, normalize_embeddings=True, convert_to_numpy=True)

        return _encode

    return _load


# ── Provider ───────────────────────────────────────────────────────────


class EmbeddingProvider:
    """Wraps an external encoder. ``await encode(text)`` -> float32 vector."""

    def __init__(self, loader: Loader,
                 dimensions: int = EMBEDDING_DIMENSIONS,
                 model_name: str = MODEL_NAME,
                 timeout: float | None = None) -> None:
        self._loader = loader
        self.dimensions = dimensions
        self.model_name = model_name
        self.timeout = timeout
        self._encoder: Encoder | None = None
        self._loading: asyncio.Future | None = None

    @property
    def is_loaded(self) -> bool:
        return self._encoder is not None

    async def preload(self) -> None:
        """Load the model now instead of on the first query."""
        await self._get_encoder()

    def reset(self) -> None:
        """Drop the loaded encoder; the next call loads it again."""
        self._encoder = None
        self._loading = None

    async def _get_encoder(self) -> Encoder:
        if self._encoder is not None:
            return self._encoder
        # check-and-set runs without an await in between, so one event loop
        # can never start two loads
        if self._loading is None or self._loading.done():
            logger.debug("Loading embedding model %s", self.model_name)
            self._loading = asyncio.ensure_future(self._load())
        # shield: a cancelled waiter must not cancel the load for the others
        return await asyncio.shield(self._loading)

    async def _load(self) -> Encoder:
        try:
            encoder = await asyncio.to_thread(self._loader)
        except Exception as exc:
            self._loading = None
            raise EmbeddingError(
                f"Failed to load embedding model {self.model_name}: {exc}"
            ) from exc
        self._encoder = encoder
        self._loading = None
        logger.debug("Embedding model loaded: %s", self.model_name)
        return encoder

    async def encode(self, text: str) -> np.ndarray:
        encoder = await self._get_encoder()
        call = asyncio.to_thread(encoder, text)
        try:
            if self.timeout is not None:
                raw = await asyncio.wait_for(call, self.timeout)
            else:
                raw = await call
        except asyncio.TimeoutError as exc:
            raise EmbeddingError(f"Encoding timed out after {self.timeout}s") from exc
        except Exception as exc:
            raise EmbeddingError(f"Encoding failed: {exc}") from exc

        try:
            return as_vector(raw, self.dimensions)
        except ValueError as exc:
            raise EmbeddingError(f"Encoder returned an invalid vector: {exc}") from exc

    def __repr__(self) -> str:
        state = "loaded" if self.is_loaded else "not loaded"
        return f"EmbeddingProvider({self.model_name!r}, {self.dimensions}d, {state})"


def provider_from_settings(settings: Settings) -> EmbeddingProvider:
    if settings.encoder == "sentence-transformers":
        loader = sentence_transformer_loader(settings.model_name)
        model_name = settings.model_name
    else:
        dims = settings.dimensions

        def loader() -> Encoder:
            return hashing_encoder(dims)

        model_name = f"hashing-{dims}"
    return EmbeddingProvider(
        loader,
        dimensions=settings.dimensions,
        model_name=model_name,
        timeout=settings.encode_timeout,
    )


# ── Cache-assisted embedder ────────────────────────────────────────────


class Embedder:
    """Provider + cache. A cache miss always falls through to the provider."""

    def __init__(self, provider: EmbeddingProvider,
                 cache: EmbeddingCache | None = None,
                 batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.provider = provider
        self.cache = cache
        self.batch_size = batch_size

    @property
    def dimensions(self) -> int:
        return self.provider.dimensions

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    @property
    def is_loaded(self) -> bool:
        return self.provider.is_loaded

    async def embed(self, text: str) -> np.ndarray:
        if self.cache is not None:
            cached = self.cache.get(text)
            if cached is not None:
                return cached
        vec = await self.provider.encode(text)
        if self.cache is not None:
            self.cache.put(text, vec)
        return vec

    async def embed_many(self, texts: Sequence[str]) -> list[np.ndarray]:
        """Embed concurrently, results in input order. Fails if any text fails."""
        return list(await asyncio.gather(*(self.embed(t) for t in texts)))

    async def embed_batch(self, texts: Sequence[str],
                          chunk_size: int | None = None) -> list[np.ndarray]:
        """Embed many texts for bulk writes, one chunk at a time.

        Chunking bounds memory; each text is still encoded on its own since
        the encoder offers no real batched inference. Bypasses the cache.
        """
        size = chunk_size or self.batch_size
        results: list[np.ndarray] = []
        for i in range(0, len(texts), size):
            chunk = texts[i:i + size]
            for text in chunk:
                results.append(await self.provider.encode(text))
        return results


def build_embedder(settings: Settings) -> Embedder:
    cache = EmbeddingCache(ttl=settings.cache_ttl, max_size=settings.cache_max_size)
    return Embedder(provider_from_settings(settings), cache, batch_size=settings.batch_size)
