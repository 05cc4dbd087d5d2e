"""Shared fixtures: temporary databases and encoders with hand-picked vectors."""

import os
import tempfile

import numpy as np
import pytest

from lorekeeper import Embedder, EmbeddingCache, EmbeddingProvider, MemoryStore
from lorekeeper.storage import Storage

DIMS = 384


def make_axis(*weights: float) -> np.ndarray:
    """Unit vector whose first components are ``weights``, rest zero."""
    vec = np.zeros(DIMS, dtype=np.float32)
    vec[:len(weights)] = weights
    return vec / np.linalg.norm(vec)


class TableEncoder:
    """Encoder backed by a dict. Counts calls, can be told to fail."""

    def __init__(self, table: dict[str, np.ndarray]):
        self.table = dict(table)
        self.calls: list[str] = []
        self.fail = False

    def __call__(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("encoder offline")
        return self.table[text]


@pytest.fixture
def axis():
    return make_axis


@pytest.fixture
def db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def storage(db_path):
    s = Storage(db_path)
    yield s
    s.close()


@pytest.fixture
def make_store(db_path):
    """Factory: make_store(table) -> (MemoryStore, TableEncoder) on a temp DB."""
    stores = []

    def _make(table: dict[str, np.ndarray], cache: bool = True):
        encoder = TableEncoder(table)
        provider = EmbeddingProvider(lambda: encoder, dimensions=DIMS, model_name="table")
        embedder = Embedder(provider, EmbeddingCache() if cache else None)
        store = MemoryStore(db_path, embedder=embedder)
        stores.append(store)
        return store, encoder

    yield _make
    for s in stores:
        s.close()
