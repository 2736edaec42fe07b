"""Embedding provider abstraction."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from skillsync.shared.config import Config

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Optional[List[float]]]


def get_embedding(text: str, config: Config) -> Optional[List[float]]:
    """Fetch embedding according to provider; returns None when provider='none'."""
    provider = config.embedding_provider
    text = text.replace("\n", " ")

    if provider == "none":
        return None

    try:
        if provider == "openai":
            from openai import OpenAI  # lazy import

            client = OpenAI(api_key=config.openai_api_key)
            resp = client.embeddings.create(
                input=[text],
                model=config.openai_embedding_model,
                dimensions=config.embedding_dimensions,
            )
            return list(resp.data[0].embedding)

        if provider == "gemini":
            from google import genai  # lazy import
            from google.genai import types

            client = genai.Client(api_key=config.gemini_api_key)
            result = client.models.embed_content(
                model=config.gemini_embedding_model,
                contents=text,
                config=types.EmbedContentConfig(
                    output_dimensionality=config.embedding_dimensions
                ),
            )
            if result.embeddings:
                return list(result.embeddings[0].values)
            raise ValueError("Gemini embedding response missing embeddings")

        raise ValueError(f"Unsupported embedding_provider: {provider}")
    except Exception as exc:
        logger.error("Embedding error (%s): %s", provider, exc)
        raise


def build_embed_fn(config: Config) -> Optional[EmbedFn]:
    """Bind ``get_embedding`` to a config; None when embeddings are off."""
    if config.embedding_provider == "none":
        return None

    def embed(text: str) -> Optional[List[float]]:
        return get_embedding(text, config)

    return embed


__all__ = ["get_embedding", "build_embed_fn", "EmbedFn"]
