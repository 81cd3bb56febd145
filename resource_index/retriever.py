"""Similarity ranking over cached chunks."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from models.retrieval import TextChunk

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """``dot(a, b) / (|a| * |b|)``; 0.0 when undefined.

    Undefined means an empty vector, a dimension mismatch or a zero norm.
    """
    if len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0 or not np.isfinite(denom):
        return 0.0
    return float(np.dot(va, vb) / denom)


def rank(
    query_embedding: Sequence[float],
    chunks: Sequence[TextChunk],
    top_k: int = DEFAULT_TOP_K,
) -> list[TextChunk]:
    """Return at most ``top_k`` chunks, most similar first.

    Ties keep their original order.
    """
    if top_k <= 0 or not chunks:
        return []
    scored = [(cosine_similarity(query_embedding, c.embedding), c) for c in chunks]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [c for _, c in scored[:top_k]]


def filter_by_topic(chunks: Sequence[TextChunk], topic_slug: str) -> list[TextChunk]:
    """Keep only chunks tagged with *topic_slug*.

    An index where no chunk carries a topic slug is an unscoped legacy
    index: every chunk is kept and the reduced precision is logged.
    """
    if not any(c.topic_slug for c in chunks):
        if chunks:
            logger.warning(
                "Reduced precision: unscoped legacy index (%d chunks, no topic slugs) — "
                "using all chunks for topic '%s'",
                len(chunks), topic_slug,
            )
        return list(chunks)
    return [c for c in chunks if c.topic_slug == topic_slug]
