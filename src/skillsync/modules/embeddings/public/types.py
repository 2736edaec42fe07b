from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import NamedTuple, Optional, Sequence

import numpy as np
from pydantic import Field

from skillsync.shared.types import FrozenModel


class HNSWConfig(FrozenModel):
    """Index tuning. ``dimensions`` is fixed for the lifetime of a database."""

    m: int = Field(default=16, ge=2, description="Graph connectivity (node degree)")
    ef_construction: int = Field(default=200, ge=1, description="Build-time search breadth")
    ef_search: int = Field(default=100, ge=1, description="Query-time search breadth")
    dimensions: int = Field(default=384, ge=1, description="Vector width")
    max_elements: int = Field(default=100_000, ge=1, description="Index capacity")
    index_path: Optional[Path] = Field(
        default=None, description="Snapshot file; None disables save/load"
    )
    auto_save: bool = Field(default=False, description="Save snapshot after each mutation")


DEFAULT_HNSW_CONFIG = HNSWConfig()

# name -> (m, ef_construction, ef_search)
HNSW_PRESETS: dict[str, dict[str, int]] = {
    "small": {"m": 8, "ef_construction": 100, "ef_search": 50},
    "medium": {"m": 16, "ef_construction": 200, "ef_search": 100},
    "large": {"m": 32, "ef_construction": 400, "ef_search": 150},
    "xlarge": {"m": 48, "ef_construction": 500, "ef_search": 200},
}


class EmbeddingItem(NamedTuple):
    skill_id: str
    vector: Sequence[float]
    text: str = ""


@dataclass(frozen=True)
class EmbeddingRecord:
    skill_id: str
    vector: np.ndarray
    source_text: str
    updated_at: datetime


class SimilarityResult(FrozenModel):
    skill_id: str
    score: float = Field(..., ge=-1.0, le=1.0, description="Cosine similarity")


class BatchInsertError(FrozenModel):
    skill_id: str
    error: str


class BatchInsertResult(FrozenModel):
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[BatchInsertError] = Field(default_factory=list)
    duration_ms: float = 0.0


class IndexStats(FrozenModel):
    vector_count: int
    max_capacity: int
    utilization_percent: float
    m: int
    ef_construction: int
    ef_search: int
    dimensions: int
    memory_usage_bytes: int
    is_hnsw_enabled: bool
    index_path: Optional[str] = None


__all__ = [
    "BatchInsertError",
    "BatchInsertResult",
    "DEFAULT_HNSW_CONFIG",
    "EmbeddingItem",
    "EmbeddingRecord",
    "HNSWConfig",
    "HNSW_PRESETS",
    "IndexStats",
    "SimilarityResult",
]
