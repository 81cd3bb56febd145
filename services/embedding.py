"""Embedding providers — text → fixed-length vector.

Two implementations behind one async interface:

- :class:`LiteLLMEmbeddingProvider` calls a real embedding model through
  ``litellm.aembedding`` (rate-limited, see ``services.concurrency``).
- :class:`HashEmbeddingProvider` derives a deterministic pseudo-random unit
  vector from the text.  It carries no semantics and exists so the
  pipeline runs offline and in demo mode.

Dimensionality is only known inside this module.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any

import litellm
import numpy as np

from config.settings import get_settings
from errors.exceptions import EmbeddingFailure
from services.concurrency import rate_limited_call

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Abstract embedding capability."""

    name: str = "abstract"

    @property
    @abstractmethod
    def dimensions(self) -> int:
        ...

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*.  Raises :class:`EmbeddingFailure`."""
        ...


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """Real embedding model via LiteLLM (any provider it supports)."""

    name = "litellm"

    def __init__(self, model: str, dimensions: int) -> None:
        self._model = model
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        try:
            response = await rate_limited_call(
                litellm.aembedding,
                model=self._model,
                input=[text],
            )
            vector = _first_vector(response)
        except EmbeddingFailure:
            raise
        except Exception as exc:
            logger.error("Embedding call to %s failed: %s", self._model, exc)
            raise EmbeddingFailure(str(exc) or type(exc).__name__) from exc

        if len(vector) != self._dimensions:
            logger.debug(
                "Model %s returned %d dims (configured %d) — updating",
                self._model, len(vector), self._dimensions,
            )
            self._dimensions = len(vector)
        return vector


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic, non-semantic stand-in for offline and demo mode.

    The same text always maps to the same unit vector, so a chunk compared
    with itself scores 1.0, but unrelated texts score near 0.
    """

    name = "hash"

    def __init__(self, dimensions: int = 1536) -> None:
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        digest = hashlib.sha256((text or "").encode("utf-8")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
        vector = rng.standard_normal(self._dimensions)
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()


def _first_vector(response: Any) -> list[float]:
    data = response["data"] if isinstance(response, dict) else getattr(response, "data", None)
    if not data:
        raise EmbeddingFailure("Empty embedding response")
    item = data[0]
    vector = item["embedding"] if isinstance(item, dict) else getattr(item, "embedding", None)
    if not vector:
        raise EmbeddingFailure("Embedding response missing vector")
    return [float(v) for v in vector]


def _provider_key_present(model: str) -> bool:
    try:
        env = litellm.validate_environment(model=model)
    except Exception:
        logger.debug("Could not validate environment for %s", model, exc_info=True)
        return False
    return bool(env.get("keys_in_environment"))


def build_embedding_provider(backend: str, model: str, dimensions: int) -> EmbeddingProvider:
    """Pick a provider for ``backend`` ("auto" | "litellm" | "hash")."""
    backend = (backend or "auto").lower()
    if backend == "litellm":
        return LiteLLMEmbeddingProvider(model, dimensions)
    if backend == "hash":
        return HashEmbeddingProvider(dimensions)
    if backend != "auto":
        raise ValueError(f"Unknown embedding backend: {backend}")
    if _provider_key_present(model):
        return LiteLLMEmbeddingProvider(model, dimensions)
    logger.warning(
        "No API key found for embedding model %s — using non-semantic hash embeddings",
        model,
    )
    return HashEmbeddingProvider(dimensions)


# ── Module-level Singleton ───────────────────────────────────

_provider: EmbeddingProvider | None = None


def get_embedding_provider() -> EmbeddingProvider:
    """Return the configured embedding provider singleton."""
    global _provider
    if _provider is None:
        settings = get_settings()
        _provider = build_embedding_provider(
            settings.embedding_backend,
            settings.embedding_model,
            settings.embedding_dim,
        )
        logger.info("Embedding provider: %s (dims=%d)", _provider.name, _provider.dimensions)
    return _provider
