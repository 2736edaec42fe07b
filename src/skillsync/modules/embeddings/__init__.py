"""Public API for the embeddings module."""

from .internal.providers import EmbedFn, build_embed_fn, get_embedding
from .public.similarity import (
    compute_cosine_similarity,
    distance_to_similarity,
    estimate_memory_usage,
)
from .public.store import (
    USE_HNSW_ENV,
    HNSWEmbeddingStore,
    create_hnsw_store,
    hnsw_config_from_settings,
    is_hnsw_available,
    resolve_use_hnsw,
)
from .public.types import (
    DEFAULT_HNSW_CONFIG,
    HNSW_PRESETS,
    BatchInsertError,
    BatchInsertResult,
    EmbeddingItem,
    EmbeddingRecord,
    HNSWConfig,
    IndexStats,
    SimilarityResult,
)

__all__ = [
    "HNSWEmbeddingStore",
    "create_hnsw_store",
    "hnsw_config_from_settings",
    "is_hnsw_available",
    "resolve_use_hnsw",
    "USE_HNSW_ENV",
    "compute_cosine_similarity",
    "distance_to_similarity",
    "estimate_memory_usage",
    "get_embedding",
    "build_embed_fn",
    "EmbedFn",
    "DEFAULT_HNSW_CONFIG",
    "HNSW_PRESETS",
    "BatchInsertError",
    "BatchInsertResult",
    "EmbeddingItem",
    "EmbeddingRecord",
    "HNSWConfig",
    "IndexStats",
    "SimilarityResult",
]
