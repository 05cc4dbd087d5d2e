"""Exceptions raised by lorekeeper."""

from __future__ import annotations


class LorekeeperError(Exception):
    """Base class for every error raised by this package."""


class EmbeddingError(LorekeeperError):
    """The text encoder could not produce a vector (load, encode or timeout)."""


class DimensionMismatchError(LorekeeperError, ValueError):
    """Two vectors (or matrices) do not share the same dimension."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(
            f"Embedding dimension mismatch: {left}d vs {right}d. "
            f"Do not mix encoders."
        )
