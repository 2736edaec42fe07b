"""Hybrid embedding store: durable rows in SQLite plus an in-memory index.

The ``skill_embeddings`` table is the source of truth. The index (HNSW
graph, or exact brute force when hnswlib cannot be used) is rebuilt from
it whenever a saved snapshot is missing or stale.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import os
import threading
import time
from collections.abc import Mapping
from pathlib import Path
from types import ModuleType
from typing import Any, Iterable, Iterator, Literal, Optional, Sequence

import numpy as np

from skillsync.modules.storage import Database, create_database, initialize_schema
from skillsync.shared.config import Config
from skillsync.shared.errors import (
    CapacityExceededError,
    DimensionMismatchError,
    InvalidArgumentError,
    StorageError,
)
from skillsync.shared.types import from_iso, to_iso, utc_now

from ..internal.index_state import IndexStateStore, fingerprint_rows
from ..internal.vector_index import (
    BruteForceVectorIndex,
    HnswVectorIndex,
    VectorIndex,
    load_hnswlib,
)
from .similarity import as_vector, compute_cosine_similarity, estimate_memory_usage
from .types import (
    HNSW_PRESETS,
    BatchInsertError,
    BatchInsertResult,
    EmbeddingItem,
    EmbeddingRecord,
    HNSWConfig,
    IndexStats,
    SimilarityResult,
)

logger = logging.getLogger(__name__)

USE_HNSW_ENV = "SKILLSYNC_USE_HNSW"
# Scores closer than this are ordered by skill id.
SCORE_DECIMALS = 6

_ITEM_ERRORS = (DimensionMismatchError, InvalidArgumentError, CapacityExceededError)


def resolve_use_hnsw(explicit: Optional[bool] = None) -> bool:
    """Explicit flag, else SKILLSYNC_USE_HNSW ('true'/'1'), else True."""
    if explicit is not None:
        return explicit
    value = os.environ.get(USE_HNSW_ENV)
    if value is None:
        return True
    return value.strip().lower() in ("true", "1")


def is_hnsw_available() -> bool:
    return importlib.util.find_spec("hnswlib") is not None


def hnsw_config_from_settings(config: Config) -> HNSWConfig:
    return HNSWConfig(
        m=config.hnsw_m,
        ef_construction=config.hnsw_ef_construction,
        ef_search=config.hnsw_ef_search,
        dimensions=config.embedding_dimensions,
        max_elements=config.hnsw_max_elements,
        index_path=config.get_index_path(),
        auto_save=config.hnsw_auto_save,
    )


def _check_dimensions(db: Database, dimensions: int) -> None:
    """The embedding width is fixed per database."""
    row = db.fetch_one("SELECT value FROM embedding_meta WHERE key = 'dimensions'")
    if row is None:
        row = db.fetch_one("SELECT dimensions AS value FROM skill_embeddings LIMIT 1")
    if row is not None and int(row["value"]) != dimensions:
        raise DimensionMismatchError(
            f"Database holds {row['value']}-dimensional embeddings but {dimensions} "
            "were configured; a full reindex is required",
            got=dimensions,
            expected=int(row["value"]),
        )
    if not db.readonly:
        db.execute(
            "INSERT OR IGNORE INTO embedding_meta (key, value) VALUES ('dimensions', ?)",
            (str(dimensions),),
        )


class HNSWEmbeddingStore:
    """Embedding persistence with approximate nearest-neighbour search.

    Create instances with ``await HNSWEmbeddingStore.create(...)``. All
    mutations and reads go through one reentrant lock.
    """

    def __init__(
        self,
        database: Database,
        config: HNSWConfig,
        index: VectorIndex,
        *,
        hnswlib: Optional[ModuleType] = None,
        owns_database: bool = False,
    ):
        if isinstance(database, (str, Path)):
            raise TypeError(
                "Cannot open a database file in the constructor; "
                "use `await HNSWEmbeddingStore.create(db_path=...)`"
            )
        self.db = database
        self.config = config
        self._index = index
        self._hnswlib = hnswlib
        self._owns_database = owns_database
        self._lock = threading.RLock()
        self._closed = False

    # --- construction ---
    @classmethod
    async def create(
        cls,
        *,
        db_path: str | Path | None = None,
        database: Optional[Database] = None,
        config: Optional[HNSWConfig] = None,
        use_hnsw: Optional[bool] = None,
        driver: Literal["auto", "native", "snapshot"] = "auto",
    ) -> "HNSWEmbeddingStore":
        """Open storage, pick the index strategy and load or rebuild the index.

        Pass ``database`` to share an already open database (the store will
        not close it); otherwise ``db_path`` is opened (in-memory when None).
        """
        if database is not None and db_path is not None:
            raise InvalidArgumentError("Pass either db_path or database, not both")
        config = config or HNSWConfig()

        owns = database is None
        if database is None:
            database = await asyncio.to_thread(
                create_database, db_path if db_path is not None else ":memory:", driver=driver
            )
        else:
            await asyncio.to_thread(initialize_schema, database)

        try:
            hnswlib = None
            if resolve_use_hnsw(use_hnsw):
                hnswlib = await asyncio.to_thread(load_hnswlib)
            else:
                logger.info("HNSW disabled by configuration; using brute-force search")
            return await asyncio.to_thread(cls._open, database, config, hnswlib, owns)
        except BaseException:
            if owns:
                database.close()
            raise

    @classmethod
    def _open(
        cls,
        database: Database,
        config: HNSWConfig,
        hnswlib: Optional[ModuleType],
        owns: bool,
    ) -> "HNSWEmbeddingStore":
        _check_dimensions(database, config.dimensions)
        store = cls(
            database,
            config,
            cls._new_index(config, hnswlib),
            hnswlib=hnswlib,
            owns_database=owns,
        )
        if not (hnswlib is not None and config.index_path and store._load_snapshot(config.index_path)):
            store._index.bulk_load(store._iter_vectors())
        logger.info(
            "Embedding store ready: %d vectors, mode=%s",
            len(store._index),
            store._index.kind,
        )
        return store

    @staticmethod
    def _new_index(config: HNSWConfig, hnswlib: Optional[ModuleType]) -> VectorIndex:
        if hnswlib is None:
            return BruteForceVectorIndex(config.dimensions, config.max_elements)
        return HnswVectorIndex(
            hnswlib,
            config.dimensions,
            config.max_elements,
            m=config.m,
            ef_construction=config.ef_construction,
            ef_search=config.ef_search,
        )

    # --- validation ---
    def _validate(self, vector: Any, kind: str) -> np.ndarray:
        try:
            arr = np.asarray(vector, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise InvalidArgumentError(f"{kind} must be a sequence of numbers") from exc
        if arr.ndim != 1:
            raise DimensionMismatchError(
                f"{kind} must be one-dimensional, got shape {arr.shape}",
                expected=self.config.dimensions,
            )
        if arr.shape[0] != self.config.dimensions:
            raise DimensionMismatchError(
                f"{kind} dimension mismatch: got {arr.shape[0]}, expected {self.config.dimensions}",
                got=int(arr.shape[0]),
                expected=self.config.dimensions,
            )
        if not np.all(np.isfinite(arr)):
            raise InvalidArgumentError(f"{kind} contains NaN or infinite values")
        return arr

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError("Embedding store is closed")

    # --- writes ---
    def store_embedding(
        self, skill_id: str, vector: Sequence[float] | np.ndarray, text: str = ""
    ) -> bool:
        """Insert or replace; returns True when the id was new."""
        with self._lock:
            created = self._store_locked(skill_id, vector, text)
            self._maybe_auto_save()
            return created

    def _store_locked(self, skill_id: str, vector: Any, text: str) -> bool:
        self._ensure_open()
        if not isinstance(skill_id, str) or not skill_id:
            raise InvalidArgumentError("skill_id must be a non-empty string")
        arr = self._validate(vector, "Embedding")
        self._index.ensure_capacity(skill_id)
        created = skill_id not in self._index

        with self.db.transaction():
            self.db.execute(
                """
                INSERT INTO skill_embeddings (skill_id, embedding, dimensions, text, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(skill_id) DO UPDATE SET
                    embedding = excluded.embedding,
                    dimensions = excluded.dimensions,
                    text = excluded.text,
                    updated_at = excluded.updated_at
                """,
                (skill_id, arr.tobytes(), arr.shape[0], text or "", to_iso(utc_now())),
            )
            self._index.upsert(skill_id, arr)
        return created

    def batch_insert(
        self, items: Iterable[EmbeddingItem | tuple | Mapping[str, Any]]
    ) -> BatchInsertResult:
        """Store all items in one commit; a bad item is recorded and skipped.

        Each item runs in its own savepoint, so a rejected item leaves the
        others intact. A storage failure rolls back the whole batch.
        """
        started = time.perf_counter()
        inserted = updated = failed = 0
        errors: list[BatchInsertError] = []

        with self._lock:
            self._ensure_open()
            try:
                with self.db.transaction():
                    for raw in items:
                        item = _as_item(raw)
                        try:
                            created = self._store_locked(item.skill_id, item.vector, item.text)
                        except _ITEM_ERRORS as exc:
                            failed += 1
                            errors.append(
                                BatchInsertError(skill_id=str(item.skill_id), error=str(exc))
                            )
                            continue
                        if created:
                            inserted += 1
                        else:
                            updated += 1
            except BaseException:
                # Rolled-back rows may already be in the index.
                try:
                    self._index = self._build_index(self.config)
                except StorageError as exc:
                    logger.error("Could not resync index after failed batch: %s", exc)
                raise
            if inserted or updated:
                self._maybe_auto_save()

        return BatchInsertResult(
            inserted=inserted,
            updated=updated,
            failed=failed,
            errors=errors,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def remove_embedding(self, skill_id: str) -> bool:
        with self._lock:
            self._ensure_open()
            with self.db.transaction():
                result = self.db.execute(
                    "DELETE FROM skill_embeddings WHERE skill_id = ?", (skill_id,)
                )
                in_index = self._index.remove(skill_id)
            removed = result.changes > 0 or in_index
            if removed:
                self._maybe_auto_save()
            return removed

    # --- reads ---
    def get_embedding(self, skill_id: str) -> Optional[np.ndarray]:
        with self._lock:
            self._ensure_open()
            row = self.db.fetch_one(
                "SELECT embedding FROM skill_embeddings WHERE skill_id = ?", (skill_id,)
            )
        if row is None:
            return None
        return np.frombuffer(row["embedding"], dtype=np.float32).copy()

    def get_record(self, skill_id: str) -> Optional[EmbeddingRecord]:
        with self._lock:
            self._ensure_open()
            row = self.db.fetch_one(
                "SELECT * FROM skill_embeddings WHERE skill_id = ?", (skill_id,)
            )
        if row is None:
            return None
        return EmbeddingRecord(
            skill_id=row["skill_id"],
            vector=np.frombuffer(row["embedding"], dtype=np.float32).copy(),
            source_text=row["text"],
            updated_at=from_iso(row["updated_at"]),
        )

    def has_embedding(self, skill_id: str) -> bool:
        with self._lock:
            return skill_id in self._index

    def count(self) -> int:
        with self._lock:
            return len(self._index)

    def get_all_embeddings(self) -> dict[str, np.ndarray]:
        """Every stored vector; for maintenance, not for queries."""
        with self._lock:
            self._ensure_open()
            return dict(self._iter_vectors())

    def find_similar(
        self, query: Sequence[float] | np.ndarray, top_k: int = 10
    ) -> list[SimilarityResult]:
        """Up to ``top_k`` ids by descending cosine similarity."""
        if isinstance(top_k, bool) or not isinstance(top_k, (int, np.integer)) or top_k < 1:
            raise InvalidArgumentError(f"top_k must be a positive integer, got {top_k!r}")
        arr = self._validate(query, "Query")
        with self._lock:
            self._ensure_open()
            if len(self._index) == 0:
                return []
            hits = self._index.search(arr, int(top_k))

        scored = [
            (skill_id, round(float(np.clip(score, -1.0, 1.0)), SCORE_DECIMALS))
            for skill_id, score in hits
        ]
        scored.sort(key=lambda hit: (-hit[1], hit[0]))
        return [SimilarityResult(skill_id=i, score=s) for i, s in scored[:top_k]]

    def cosine_similarity(
        self, a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray
    ) -> float:
        va, vb = as_vector(a), as_vector(b)
        if va.size != vb.size:
            raise DimensionMismatchError(
                f"Embedding dimension mismatch: {va.size} vs {vb.size}",
                got=vb.size,
                expected=va.size,
            )
        if va.size != self.config.dimensions:
            raise DimensionMismatchError(
                f"Embedding dimension mismatch: got {va.size}, expected {self.config.dimensions}",
                got=va.size,
                expected=self.config.dimensions,
            )
        return compute_cosine_similarity(va, vb)

    def is_using_fallback(self) -> bool:
        return not isinstance(self._index, HnswVectorIndex)

    def get_stats(self) -> IndexStats:
        with self._lock:
            count = len(self._index)
            config = self.config
        return IndexStats(
            vector_count=count,
            max_capacity=config.max_elements,
            utilization_percent=round(count / config.max_elements * 100, 2),
            m=config.m,
            ef_construction=config.ef_construction,
            ef_search=config.ef_search,
            dimensions=config.dimensions,
            memory_usage_bytes=estimate_memory_usage(count, config.dimensions, config.m),
            is_hnsw_enabled=not self.is_using_fallback(),
            index_path=str(config.index_path) if config.index_path else None,
        )

    # --- index maintenance ---
    def set_ef_search(self, ef_search: int) -> None:
        if ef_search <= 0:
            raise InvalidArgumentError(f"ef_search must be positive, got {ef_search}")
        with self._lock:
            self.config = self.config.model_copy(update={"ef_search": ef_search})
            self._index.set_ef(ef_search)

    def save_index(self, path: str | Path | None = None) -> bool:
        """Write the HNSW snapshot; False in brute-force mode."""
        target = Path(path) if path else self.config.index_path
        if target is None:
            raise InvalidArgumentError("No index path configured")
        with self._lock:
            self._ensure_open()
            if not isinstance(self._index, HnswVectorIndex):
                logger.debug("Brute-force mode has no index snapshot to save")
                return False
            self._index.save(target)
            fingerprint = self._fingerprint()
            IndexStateStore(target).write(
                {
                    **self._snapshot_signature(),
                    "fingerprint": fingerprint["hash"],
                    "vector_count": fingerprint["count"],
                    "labels": self._index.labels,
                    "next_label": self._index.next_label,
                }
            )
            logger.debug("Saved HNSW snapshot to %s", target)
            return True

    def load_index(self, path: str | Path | None = None) -> bool:
        """Replace the in-memory index with a compatible snapshot."""
        target = Path(path) if path else self.config.index_path
        if target is None:
            raise InvalidArgumentError("No index path configured")
        with self._lock:
            self._ensure_open()
            if not isinstance(self._index, HnswVectorIndex):
                return False
            return self._load_snapshot(target)

    def rebuild_index(self, new_config: Optional[HNSWConfig] = None) -> None:
        """Rebuild from persisted rows, optionally with new tuning."""
        with self._lock:
            self._ensure_open()
            config = new_config or self.config
            if config.dimensions != self.config.dimensions:
                raise DimensionMismatchError(
                    "Changing dimensions requires a full reindex into a new database",
                    got=config.dimensions,
                    expected=self.config.dimensions,
                )
            index = self._build_index(config)
            self._index = index
            self.config = config
            logger.info("Rebuilt %s index with %d vectors", index.kind, len(index))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            try:
                if self.config.index_path and not self.is_using_fallback():
                    self.save_index()
            finally:
                self._closed = True
                if self._owns_database:
                    self.db.close()

    # --- helpers ---
    def _build_index(self, config: HNSWConfig) -> VectorIndex:
        index = self._new_index(config, self._hnswlib)
        index.bulk_load(self._iter_vectors())
        return index

    def _iter_vectors(self) -> Iterator[tuple[str, np.ndarray]]:
        rows = self.db.fetch_all(
            "SELECT skill_id, embedding FROM skill_embeddings ORDER BY skill_id"
        )
        for row in rows:
            yield row["skill_id"], np.frombuffer(row["embedding"], dtype=np.float32).copy()

    def _fingerprint(self) -> dict[str, Any]:
        rows = self.db.fetch_all("SELECT skill_id, updated_at FROM skill_embeddings")
        return fingerprint_rows((row["skill_id"], row["updated_at"]) for row in rows)

    def _snapshot_signature(self) -> dict[str, Any]:
        return {
            "space": HnswVectorIndex.space,
            "dimensions": self.config.dimensions,
            "m": self.config.m,
            "ef_construction": self.config.ef_construction,
            "max_elements": self.config.max_elements,
        }

    def _load_snapshot(self, path: Path) -> bool:
        if not isinstance(self._index, HnswVectorIndex):
            return False
        state_store = IndexStateStore(path)
        ok, reason, state = state_store.check_compatible(
            self._snapshot_signature(), self._fingerprint()
        )
        if not ok:
            logger.info("HNSW snapshot at %s not reused (%s); rebuilding", path, reason)
            return False
        try:
            labels = {str(k): int(v) for k, v in state["labels"].items()}
            self._index.load(path, labels, int(state["next_label"]))
        except (RuntimeError, OSError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Failed to load HNSW snapshot %s: %s", path, exc)
            return False
        logger.info("Loaded HNSW snapshot %s (%d vectors)", path, len(labels))
        return True

    def _maybe_auto_save(self) -> None:
        if self.config.auto_save and self.config.index_path and not self.is_using_fallback():
            self.save_index()


def _as_item(raw: EmbeddingItem | tuple | Mapping[str, Any]) -> EmbeddingItem:
    if isinstance(raw, EmbeddingItem):
        return raw
    if isinstance(raw, Mapping):
        vector = raw.get("vector", raw.get("embedding"))
        return EmbeddingItem(str(raw.get("skill_id", "")), vector, raw.get("text", "") or "")
    return EmbeddingItem(*raw)


async def create_hnsw_store(
    preset: str = "medium",
    **kwargs: Any,
) -> HNSWEmbeddingStore:
    """``create`` with tuning taken from ``HNSW_PRESETS``."""
    if preset not in HNSW_PRESETS:
        raise InvalidArgumentError(
            f"Unknown HNSW preset {preset!r}; choose from {', '.join(HNSW_PRESETS)}"
        )
    base = kwargs.pop("config", None) or HNSWConfig()
    config = base.model_copy(update=HNSW_PRESETS[preset])
    return await HNSWEmbeddingStore.create(config=config, **kwargs)


__all__ = [
    "HNSWEmbeddingStore",
    "create_hnsw_store",
    "hnsw_config_from_settings",
    "is_hnsw_available",
    "resolve_use_hnsw",
    "USE_HNSW_ENV",
]
