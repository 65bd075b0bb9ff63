from __future__ import annotations

from typing import Sequence

import numpy as np


def _normalize(vectors: np.ndarray) -> np.ndarray:
    if vectors.ndim == 1:
        norm = np.linalg.norm(vectors)
        return vectors if norm == 0 else vectors / norm
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    a = _normalize(np.asarray(left, dtype=np.float64))
    b = _normalize(np.asarray(right, dtype=np.float64))
    return float(np.dot(a, b))


def cosine_similarities(
    query: Sequence[float],
    candidates: Sequence[Sequence[float]],
) -> np.ndarray:
    if not candidates:
        return np.zeros(0, dtype=np.float64)
    matrix = _normalize(np.asarray(candidates, dtype=np.float64))
    vector = _normalize(np.asarray(query, dtype=np.float64))
    return matrix @ vector
