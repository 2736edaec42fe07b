"""In-memory similarity indexes over persisted embeddings.

Both variants are derived projections: they can always be rebuilt from the
``skill_embeddings`` table. The store picks one at construction and never
switches afterwards.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from types import ModuleType
from typing import Any, ClassVar, Iterable, Optional

import numpy as np

from skillsync.shared.errors import CapacityExceededError

logger = logging.getLogger(__name__)

Hit = tuple[str, float]


def load_hnswlib() -> Optional[ModuleType]:
    """Return the hnswlib module, or None when it is not installed."""
    try:
        import hnswlib  # lazy import; optional extra
    except ImportError as exc:
        logger.warning("hnswlib unavailable, using brute-force search: %s", exc)
        return None
    return hnswlib


def normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return np.zeros_like(vector, dtype=np.float32)
    return (vector / norm).astype(np.float32)


class VectorIndex(ABC):
    kind: ClassVar[str]

    def __init__(self, dimensions: int, max_elements: int):
        self.dimensions = dimensions
        self.max_elements = max_elements

    @abstractmethod
    def __len__(self) -> int: ...

    @abstractmethod
    def __contains__(self, skill_id: object) -> bool: ...

    @abstractmethod
    def upsert(self, skill_id: str, vector: np.ndarray) -> None: ...

    @abstractmethod
    def remove(self, skill_id: str) -> bool: ...

    @abstractmethod
    def search(self, query: np.ndarray, k: int) -> list[Hit]:
        """Up to ``k`` hits as (skill_id, cosine similarity)."""

    def set_ef(self, ef: int) -> None:
        """Query breadth; only meaningful for graph indexes."""

    def ensure_capacity(self, skill_id: str) -> None:
        if skill_id not in self and len(self) >= self.max_elements:
            raise CapacityExceededError(
                f"Index capacity exceeded: {len(self)}/{self.max_elements} vectors"
            )

    def bulk_load(self, rows: Iterable[tuple[str, np.ndarray]]) -> None:
        for skill_id, vector in rows:
            self.ensure_capacity(skill_id)
            self.upsert(skill_id, vector)


class BruteForceVectorIndex(VectorIndex):
    """Exact cosine search with numpy over every stored vector."""

    kind = "brute_force"

    def __init__(self, dimensions: int, max_elements: int):
        super().__init__(dimensions, max_elements)
        self._vectors: dict[str, np.ndarray] = {}
        self._matrix: Optional[np.ndarray] = None
        self._ids: list[str] = []

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._vectors

    def upsert(self, skill_id: str, vector: np.ndarray) -> None:
        self._vectors[skill_id] = normalize(vector)
        self._matrix = None

    def remove(self, skill_id: str) -> bool:
        if self._vectors.pop(skill_id, None) is None:
            return False
        self._matrix = None
        return True

    def search(self, query: np.ndarray, k: int) -> list[Hit]:
        if not self._vectors or k <= 0:
            return []
        if self._matrix is None:
            self._ids = sorted(self._vectors)
            self._matrix = np.vstack([self._vectors[i] for i in self._ids])
        scores = self._matrix.astype(np.float64) @ normalize(query).astype(np.float64)
        # Stable sort on ids already in order gives deterministic ties.
        order = np.argsort(-scores, kind="stable")[:k]
        return [(self._ids[i], float(scores[i])) for i in order]


class HnswVectorIndex(VectorIndex):
    """hnswlib graph in cosine space; deleted slots are reused."""

    kind = "hnsw"
    space = "cosine"

    def __init__(
        self,
        hnswlib: ModuleType,
        dimensions: int,
        max_elements: int,
        *,
        m: int,
        ef_construction: int,
        ef_search: int,
    ):
        super().__init__(dimensions, max_elements)
        self._hnswlib = hnswlib
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self._labels: dict[str, int] = {}
        self._ids: dict[int, str] = {}
        self._next_label = 0
        self._index = self._new_index()

    def _new_index(self) -> Any:
        index = self._hnswlib.Index(space=self.space, dim=self.dimensions)
        index.init_index(
            max_elements=self.max_elements,
            ef_construction=self.ef_construction,
            M=self.m,
            allow_replace_deleted=True,
        )
        index.set_ef(self.ef_search)
        index.set_num_threads(1)
        return index

    def __len__(self) -> int:
        return len(self._labels)

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._labels

    @property
    def labels(self) -> dict[str, int]:
        return dict(self._labels)

    @property
    def next_label(self) -> int:
        return self._next_label

    def upsert(self, skill_id: str, vector: np.ndarray) -> None:
        data = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        label = self._labels.get(skill_id)
        if label is not None:
            # Same label: hnswlib updates the element in place.
            self._index.add_items(data, np.asarray([label]))
            return
        self.ensure_capacity(skill_id)
        label = self._next_label
        self._index.add_items(data, np.asarray([label]), replace_deleted=True)
        self._next_label += 1
        self._labels[skill_id] = label
        self._ids[label] = skill_id

    def remove(self, skill_id: str) -> bool:
        label = self._labels.pop(skill_id, None)
        if label is None:
            return False
        del self._ids[label]
        self._index.mark_deleted(label)
        return True

    def search(self, query: np.ndarray, k: int) -> list[Hit]:
        k = min(k, len(self._labels))
        if k <= 0:
            return []
        data = np.asarray(query, dtype=np.float32).reshape(1, -1)
        try:
            labels, distances = self._knn(data, k, max(self.ef_search, k))
        except RuntimeError as exc:
            # Delete/replace churn can leave fewer than k live elements reachable at this ef.
            logger.debug("HNSW query returned fewer than %d results (%s); widening ef", k, exc)
            wide_ef = max(self.ef_search, k, self._index.get_current_count())
            try:
                labels, distances = self._knn(data, k, wide_ef)
            except RuntimeError:
                logger.warning("HNSW query failed after widening ef; scoring exactly")
                return self._exact_search(query, k)
        return [
            (self._ids[int(label)], 1.0 - float(distance))
            for label, distance in zip(labels[0], distances[0])
            if int(label) in self._ids
        ]

    def _knn(self, data: np.ndarray, k: int, ef: int) -> tuple[np.ndarray, np.ndarray]:
        self._index.set_ef(ef)
        try:
            return self._index.knn_query(data, k=k)
        finally:
            self._index.set_ef(self.ef_search)

    def _exact_search(self, query: np.ndarray, k: int) -> list[Hit]:
        ids = sorted(self._labels)
        vectors = np.asarray(
            self._index.get_items([self._labels[i] for i in ids]), dtype=np.float64
        )
        norms = np.linalg.norm(vectors, axis=1)
        norms[norms == 0.0] = 1.0
        scores = (vectors / norms[:, None]) @ normalize(query).astype(np.float64)
        order = np.argsort(-scores, kind="stable")[:k]
        return [(ids[i], float(scores[i])) for i in order]

    def set_ef(self, ef: int) -> None:
        self.ef_search = ef
        self._index.set_ef(ef)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._index.save_index(str(path))

    def load(self, path: Path, labels: dict[str, int], next_label: int) -> None:
        index = self._hnswlib.Index(space=self.space, dim=self.dimensions)
        index.load_index(
            str(path), max_elements=self.max_elements, allow_replace_deleted=True
        )
        index.set_ef(self.ef_search)
        index.set_num_threads(1)
        self._index = index
        self._labels = dict(labels)
        self._ids = {label: skill_id for skill_id, label in labels.items()}
        self._next_label = next_label
