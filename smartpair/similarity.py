"""
Cosine similarity utilities for embedding vectors
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def to_unit(vector: Sequence[float]) -> List[float]:
    """Scale a vector to unit length; the zero vector stays zero."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if not norm:
        return [0.0] * len(arr)
    return (arr / norm).tolist()


def cosine(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Cosine similarity of two vectors.

    Missing vectors, mismatched lengths and zero vectors all yield 0.0 so a
    broken signal never produces a spurious match.
    """
    if a is None or b is None or len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if not denom:
        return 0.0
    return float(np.dot(va, vb) / denom)


def similarity_matrix(vectors: List[Optional[Sequence[float]]]) -> np.ndarray:
    """
    Pairwise cosine similarity matrix.

    Rows for missing vectors are zero (including the diagonal), so images
    without an embedding never join anyone else's cluster.
    """
    n = len(vectors)
    matrix = np.zeros((n, n), dtype=np.float64)
    present = [i for i, v in enumerate(vectors) if v is not None and len(v) > 0]
    if not present:
        return matrix

    dim = len(vectors[present[0]])
    present = [i for i in present if len(vectors[i]) == dim]
    stacked = np.asarray([vectors[i] for i in present], dtype=np.float64)
    norms = np.linalg.norm(stacked, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    unit = stacked / norms
    sims = unit @ unit.T
    idx = np.asarray(present)
    matrix[np.ix_(idx, idx)] = sims
    return matrix


def is_degenerate(matrix: np.ndarray, cutoff: float = 0.98) -> bool:
    """True when nearly every pair looks identical (max off-diagonal > cutoff)."""
    n = matrix.shape[0]
    if n < 2:
        return False
    off = matrix[~np.eye(n, dtype=bool)]
    return bool(off.max() > cutoff)
