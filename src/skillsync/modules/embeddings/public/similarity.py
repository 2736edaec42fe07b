"""Vector math shared by the store and its callers."""

from __future__ import annotations

from typing import Literal, Sequence

import numpy as np

from skillsync.shared.errors import DimensionMismatchError

DistanceMetric = Literal["cosine", "l2", "ip"]


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float32).reshape(-1)


def compute_cosine_similarity(
    a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray
) -> float:
    """dot(a, b) / (|a| * |b|), clipped to [-1, 1]; 0.0 when either norm is 0."""
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.shape != vb.shape:
        raise DimensionMismatchError(
            f"Embedding dimension mismatch: {va.size} vs {vb.size}",
            got=vb.size,
            expected=va.size,
        )
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def distance_to_similarity(distance: float, metric: DistanceMetric = "cosine") -> float:
    if metric == "cosine":
        return 1.0 - distance
    return 1.0 / (1.0 + distance)


def estimate_memory_usage(vector_count: int, dimensions: int = 384, m: int = 16) -> int:
    """Rough index footprint: float32 payload plus ``m`` links per node."""
    return vector_count * (4 * dimensions + m * 8)


__all__ = [
    "DistanceMetric",
    "as_vector",
    "compute_cosine_similarity",
    "distance_to_similarity",
    "estimate_memory_usage",
]
