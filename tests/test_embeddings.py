"""Tests for the embedding provider, built-in encoders and the cached embedder."""

import asyncio
import threading
import time

import numpy as np
import pytest

from lorekeeper.cache import EmbeddingCache
from lorekeeper.config import Settings
from lorekeeper.embeddings import (
    Embedder,
    EmbeddingProvider,
    build_embedder,
    hashing_encoder,
    provider_from_settings,
)
from lorekeeper.errors import EmbeddingError
from lorekeeper.similarity import cosine_similarity

from conftest import DIMS, TableEncoder, make_axis


# ── hashing_encoder ────────────────────────────────────────────────────


def test_hashing_encoder_shape_and_norm():
    encode = hashing_encoder(dims=384)
    vec = encode("hello world")
    assert vec.shape == (384,)
    assert vec.dtype == np.float32
    assert np.linalg.norm(vec) == pytest.approx(1.0, abs=1e-6)


def test_hashing_encoder_deterministic():
    encode = hashing_encoder()
    assert np.array_equal(encode("deterministic test"), encode("deterministic test"))


def test_hashing_encoder_ignores_case_and_punctuation():
    encode = hashing_encoder()
    assert cosine_similarity(encode("Alice?"), encode("alice")) == pytest.approx(1.0, abs=1e-6)


def test_hashing_encoder_similar_texts():
    encode = hashing_encoder()
    a = encode("Alice loves green tea in the morning")
    b = encode("what tea does Alice drink in the morning")
    c = encode("the dragon sleeps under the mountain")
    assert cosine_similarity(a, b) > cosine_similarity(a, c)


def test_hashing_encoder_empty_text():
    vec = hashing_encoder()("")
    assert np.allclose(vec, 0.0)


# ── EmbeddingProvider ──────────────────────────────────────────────────


def test_provider_is_lazy():
    calls = []

    def loader():
        calls.append(1)
        return hashing_encoder()

    provider = EmbeddingProvider(loader)
    assert not provider.is_loaded
    assert calls == []

    vec = asyncio.run(provider.encode("hello"))
    assert vec.shape == (DIMS,)
    assert provider.is_loaded
    assert calls == [1]


def test_provider_single_flight_load():
    """Concurrent first callers share one load."""
    calls = []
    lock = threading.Lock()

    def loader():
        with lock:
            calls.append(1)
        time.sleep(0.05)
        return hashing_encoder()

    provider = EmbeddingProvider(loader)

    async def _run():
        return await asyncio.gather(*(provider.encode(f"text {i}") for i in range(8)))

    results = asyncio.run(_run())
    assert len(results) == 8
    assert len(calls) == 1


def test_provider_load_failure_reaches_every_waiter():
    calls = []

    def loader():
        calls.append(1)
        time.sleep(0.02)
        raise OSError("model download failed")

    provider = EmbeddingProvider(loader)

    async def _run():
        return await asyncio.gather(
            *(provider.encode("x") for _ in range(4)), return_exceptions=True,
        )

    results = asyncio.run(_run())
    assert len(calls) == 1
    assert all(isinstance(r, EmbeddingError) for r in results)
    assert not provider.is_loaded


def test_provider_retries_after_failed_load():
    attempts = []

    def loader():
        attempts.append(1)
        if len(attempts) == 1:
            raise OSError("transient")
        return hashing_encoder()

    provider = EmbeddingProvider(loader)

    with pytest.raises(EmbeddingError):
        asyncio.run(provider.encode("x"))
    vec = asyncio.run(provider.encode("x"))
    assert vec.shape == (DIMS,)
    assert len(attempts) == 2


def test_provider_wraps_encode_failure():
    encoder = TableEncoder({})
    provider = EmbeddingProvider(lambda: encoder)
    with pytest.raises(EmbeddingError) as exc_info:
        asyncio.run(provider.encode("unknown text"))
    assert isinstance(exc_info.value.__cause__, KeyError)


def test_provider_rejects_wrong_dimension():
    provider = EmbeddingProvider(lambda: hashing_encoder(dims=256), dimensions=384)
    with pytest.raises(EmbeddingError):
        asyncio.run(provider.encode("hello"))


def test_provider_timeout():
    def slow(text):
        time.sleep(0.5)
        return make_axis(1.0)

    provider = EmbeddingProvider(lambda: slow, timeout=0.05)
    with pytest.raises(EmbeddingError, match="timed out"):
        asyncio.run(provider.encode("hello"))


def test_provider_preload_and_reset():
    provider = EmbeddingProvider(lambda: hashing_encoder())
    asyncio.run(provider.preload())
    assert provider.is_loaded
    provider.reset()
    assert not provider.is_loaded


def test_provider_from_settings_hashing():
    provider = provider_from_settings(Settings(dimensions=128))
    assert provider.dimensions == 128
    assert provider.model_name == "hashing-128"
    vec = asyncio.run(provider.encode("hello"))
    assert vec.shape == (128,)


# ── Embedder ───────────────────────────────────────────────────────────


def _embedder(table, cache=True):
    encoder = TableEncoder(table)
    provider = EmbeddingProvider(lambda: encoder)
    return Embedder(provider, EmbeddingCache() if cache else None), encoder


def test_embedder_uses_cache():
    embedder, encoder = _embedder({"hello": make_axis(1.0)})

    async def _run():
        first = await embedder.embed("hello")
        second = await embedder.embed("hello")
        return first, second

    first, second = asyncio.run(_run())
    assert np.array_equal(first, second)
    assert encoder.calls == ["hello"]


def test_embedder_without_cache_always_encodes():
    embedder, encoder = _embedder({"hello": make_axis(1.0)}, cache=False)

    async def _run():
        await embedder.embed("hello")
        await embedder.embed("hello")

    asyncio.run(_run())
    assert encoder.calls == ["hello", "hello"]


def test_embedder_failure_not_cached():
    embedder, encoder = _embedder({"hello": make_axis(1.0)})
    encoder.fail = True
    with pytest.raises(EmbeddingError):
        asyncio.run(embedder.embed("hello"))
    assert "hello" not in embedder.cache

    encoder.fail = False
    vec = asyncio.run(embedder.embed("hello"))
    assert vec[0] == pytest.approx(1.0)


def test_embed_many_keeps_order():
    table = {"a": make_axis(1.0), "b": make_axis(0.0, 1.0), "c": make_axis(0.0, 0.0, 1.0)}
    embedder, _ = _embedder(table)
    vecs = asyncio.run(embedder.embed_many(["c", "a", "b"]))
    assert [int(np.argmax(v)) for v in vecs] == [2, 0, 1]


def test_embed_many_all_or_nothing():
    embedder, _ = _embedder({"a": make_axis(1.0)})
    with pytest.raises(EmbeddingError):
        asyncio.run(embedder.embed_many(["a", "missing"]))


def test_embed_batch_chunks():
    table = {f"t{i}": make_axis(1.0, i) for i in range(10)}
    embedder, encoder = _embedder(table)
    vecs = asyncio.run(embedder.embed_batch([f"t{i}" for i in range(10)], chunk_size=3))
    assert len(vecs) == 10
    assert encoder.calls == [f"t{i}" for i in range(10)]
    # bulk path skips the cache
    assert len(embedder.cache) == 0


def test_embed_batch_empty():
    embedder, encoder = _embedder({})
    assert asyncio.run(embedder.embed_batch([])) == []
    assert encoder.calls == []


def test_build_embedder_from_settings():
    embedder = build_embedder(Settings(cache_ttl=60, cache_max_size=10, batch_size=4))
    assert embedder.cache.ttl == 60
    assert embedder.cache.max_size == 10
    assert embedder.batch_size == 4
    assert not embedder.is_loaded
