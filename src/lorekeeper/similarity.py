"""Similarity kernel. Cosine for single pairs, batched max-similarity for retrieval.

Vectors from the encoder are unit length, but vectors read back from storage
are of unknown provenance, so norms are always recomputed.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np

from lorekeeper.errors import DimensionMismatchError

VectorLike = Union[bytes, bytearray, memoryview, np.ndarray, Sequence[float]]

_FLOAT32_SIZE = np.dtype(np.float32).itemsize


def as_vector(data: VectorLike, dimensions: int | None = None) -> np.ndarray:
    """Normalize a stored embedding to a 1-D float32 vector.

    Storage may hand back a raw byte buffer or an already-decoded vector;
    both are accepted.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        raw = bytes(data)
        if len(raw) % _FLOAT32_SIZE:
            raise ValueError(f"Embedding blob of {len(raw)} bytes is not a float32 buffer")
        vec = np.frombuffer(raw, dtype=np.float32)
    else:
        vec = np.asarray(data, dtype=np.float32)
    if vec.ndim != 1:
        vec = vec.reshape(-1)
    if dimensions is not None and vec.shape[0] != dimensions:
        raise DimensionMismatchError(vec.shape[0], dimensions)
    return vec


def vector_to_blob(vec: VectorLike) -> bytes:
    """float32 little-endian bytes, the on-disk form of an embedding."""
    return np.ascontiguousarray(as_vector(vec), dtype="<f4").tobytes()


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """dot(a, b) / (|a| * |b|). Zero vectors score 0.0.

    Raises DimensionMismatchError if the vectors differ in length.
    """
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(va.shape[0], vb.shape[0])

    norm = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb)) / norm


def _stack(vectors: Sequence[VectorLike] | np.ndarray) -> np.ndarray:
    """Copy vectors into one fresh contiguous row-major float32 matrix."""
    if isinstance(vectors, np.ndarray) and vectors.ndim == 2:
        return np.array(vectors, dtype=np.float32, order="C")
    rows = [as_vector(v) for v in vectors]
    width = rows[0].shape[0]
    for row in rows:
        if row.shape[0] != width:
            raise DimensionMismatchError(width, row.shape[0])
    return np.vstack(rows).astype(np.float32, order="C", copy=False)


def _unit_rows(mat: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(mat, axis=1, keepdims=True)
    # zero rows stay zero and score 0 against everything
    np.divide(mat, norms, out=mat, where=norms > 0)
    return mat


def max_similarity_matrix(queries: Sequence[VectorLike] | np.ndarray,
                          targets: Sequence[VectorLike] | np.ndarray) -> np.ndarray:
    """For each target j, the max over queries i of cosine(queries[i], targets[j]).

    Lets any one of several query texts (say, the last few chat turns) claim
    a memory that matches it strongly. Every M x N pair is scored; the result
    is the exact maximum, not an approximation.

    Returns a float32 array of length N; empty when M or N is zero.
    """
    if len(queries) == 0 or len(targets) == 0:
        return np.empty(0, dtype=np.float32)

    q = _unit_rows(_stack(queries))
    t = _unit_rows(_stack(targets))
    if q.shape[1] != t.shape[1]:
        raise DimensionMismatchError(q.shape[1], t.shape[1])

    # (M, D) @ (D, N) -> (M, N), reduced over the query axis
    scores = q @ t.T
    return scores.max(axis=0).astype(np.float32, copy=False)
