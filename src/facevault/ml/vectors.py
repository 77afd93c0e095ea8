"""Vector math over face embeddings.

Every stored and query embedding is L2-normalized before it reaches the
matcher, so cosine similarity reduces to a plain dot product. The
``NormalizedEmbedding`` type marks the values that satisfy this.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, NewType

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from collections.abc import Sequence

Embedding = NewType("Embedding", NDArray[np.float32])
NormalizedEmbedding = NewType("NormalizedEmbedding", NDArray[np.float32])


def normalize(vector: NDArray[np.float32]) -> NormalizedEmbedding:
    """Scale a vector to unit L2 norm.

    A zero or non-finite norm leaves the vector unchanged instead of raising.
    """
    arr = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0 or not math.isfinite(norm):
        return NormalizedEmbedding(arr)
    return NormalizedEmbedding(arr / norm)


def euclidean_distance(a: NDArray[np.float32], b: NDArray[np.float32]) -> float:
    """Euclidean distance between two vectors of equal length."""
    return float(np.linalg.norm(np.asarray(a, dtype=np.float32) - np.asarray(b, dtype=np.float32)))


def cosine_similarity(a: NormalizedEmbedding, b: NormalizedEmbedding) -> float:
    """Cosine similarity of two unit vectors.

    This is the dot product only. Passing a vector that was not normalized
    yields a score that is not a cosine.
    """
    return float(np.dot(a, b))


def average(vectors: Sequence[NDArray[np.float32]]) -> NDArray[np.float32]:
    """Element-wise mean of a non-empty collection of equal-length vectors."""
    if len(vectors) == 0:
        raise ValueError("Cannot average an empty collection of vectors")
    return np.mean(np.stack(vectors).astype(np.float32), axis=0)
